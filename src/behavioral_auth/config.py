"""
Configuration management for the behavioral authentication system.

This module loads runtime settings from environment variables and ``.env``
files and exposes them both as module-level values (paths, logging) and as
an ``AuthConfig`` object that is passed explicitly to every pipeline
component.
"""

import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from dotenv import load_dotenv

from .constants import (
    AUGMENTATION_FACTOR,
    AUTOENCODER_THRESHOLD_FLOOR,
    BOTTLENECK_SIZE,
    DEFAULT_FEATURE_LENGTH,
    DEFAULT_SECRET_FILE,
    FRAME_SIZE,
    HIDDEN_SIZE,
    HOP_SIZE,
    KEYSTROKE_SAMPLES_REQUIRED,
    LEARNING_RATE,
    N_MELS,
    N_MFCC,
    NOISE_LEVEL,
    THRESHOLD_PERCENTILE,
    TRAINING_ATTEMPTS,
    TRAINING_EPOCHS,
    VOICE_SAMPLES_REQUIRED,
    VOICE_SIMILARITY_THRESHOLD,
)
from .exceptions import ConfigurationError

# Load environment variables from .env file if it exists
load_dotenv()

# =============================================================================
# Base Paths
# =============================================================================
# Directory holding the installation data (profiles, secret)
DATA_DIR: Path = Path(
    os.getenv("BA_DATA_DIR", str(Path.home() / ".behavioral_auth"))
)

# Profile store directory used by the file-system backend
STORE_DIR: Path = Path(os.getenv("BA_STORE_DIR", str(DATA_DIR / "store")))

# Installation secret used for integrity tags
SECRET_FILE: Path = Path(os.getenv("BA_SECRET_FILE", str(DATA_DIR / DEFAULT_SECRET_FILE)))

# =============================================================================
# Logging Configuration
# =============================================================================
# Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Render log events as JSON lines instead of console output
STRUCTURED_LOGGING: bool = os.getenv("STRUCTURED_LOGGING", "true").lower() == "true"

# =============================================================================
# Processing Configuration
# =============================================================================
# Worker threads available for background training
MAX_WORKERS: int = int(os.getenv("MAX_WORKERS", "2"))

# Seed for random number generation (for reproducible training)
RANDOM_SEED: Optional[int] = None
if seed_str := os.getenv("RANDOM_SEED"):
    RANDOM_SEED = int(seed_str)

# Enable debug mode (more verbose output, skips import-time validation)
DEBUG_MODE: bool = os.getenv("DEBUG_MODE", "false").lower() == "true"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be an integer", config_key=name, config_value=value
        )


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be a number", config_key=name, config_value=value
        )


@dataclass(frozen=True)
class AuthConfig:
    """
    Tunable parameters of the biometric pipeline.

    The same instance must be used for enrollment and verification so that
    feature dimensions agree between training and scoring.

    Parameters
    ----------
    feature_length : int, default=DEFAULT_FEATURE_LENGTH
        Number of keys ``L`` captured per attempt; vectors have ``3L+1`` entries.
    keystroke_samples_required : int, default=KEYSTROKE_SAMPLES_REQUIRED
        Samples collected before a keystroke model is trained.
    voice_samples_required : int, default=VOICE_SAMPLES_REQUIRED
        Samples collected before a voice template is built.
    noise_level : float, default=NOISE_LEVEL
        Amplitude of the uniform augmentation noise.
    augmentation_factor : int, default=AUGMENTATION_FACTOR
        Noisy copies generated per original sample.
    threshold_floor : float, default=AUTOENCODER_THRESHOLD_FLOOR
        Lower bound of the reconstruction-error threshold.
    threshold_percentile : float, default=THRESHOLD_PERCENTILE
        Percentile of training errors used as the threshold.
    voice_similarity_threshold : float, default=VOICE_SIMILARITY_THRESHOLD
        Default acceptance threshold for voice verification.
    frame_size, hop_size : int
        Audio analysis window and hop in samples.
    n_mfcc, n_mels : int
        Cepstral coefficients per frame and mel bands used to compute them.
    epochs : int, default=TRAINING_EPOCHS
        Training epochs for the autoencoder.
    learning_rate : float, default=LEARNING_RATE
        Gradient descent step size.
    hidden_size, bottleneck_size : int
        Autoencoder layer sizes.
    training_attempts : int, default=TRAINING_ATTEMPTS
        Fresh initializations tried when training diverges.
    random_seed : Optional[int], default=None
        Seed for weight initialization, shuffling and augmentation.

    Examples
    --------
    >>> config = AuthConfig(feature_length=8, epochs=100)
    >>> config.vector_length
    25
    """

    feature_length: int = DEFAULT_FEATURE_LENGTH
    keystroke_samples_required: int = KEYSTROKE_SAMPLES_REQUIRED
    voice_samples_required: int = VOICE_SAMPLES_REQUIRED
    noise_level: float = NOISE_LEVEL
    augmentation_factor: int = AUGMENTATION_FACTOR
    threshold_floor: float = AUTOENCODER_THRESHOLD_FLOOR
    threshold_percentile: float = THRESHOLD_PERCENTILE
    voice_similarity_threshold: float = VOICE_SIMILARITY_THRESHOLD
    frame_size: int = FRAME_SIZE
    hop_size: int = HOP_SIZE
    n_mfcc: int = N_MFCC
    n_mels: int = N_MELS
    epochs: int = TRAINING_EPOCHS
    learning_rate: float = LEARNING_RATE
    hidden_size: int = HIDDEN_SIZE
    bottleneck_size: int = BOTTLENECK_SIZE
    training_attempts: int = TRAINING_ATTEMPTS
    random_seed: Optional[int] = None

    def __post_init__(self) -> None:
        self.validate()

    @property
    def vector_length(self) -> int:
        """Length of every keystroke feature vector (``3L+1``)."""
        return 3 * self.feature_length + 1

    @classmethod
    def from_env(cls) -> "AuthConfig":
        """
        Build a configuration from ``BA_*`` environment variables.

        Returns
        -------
        AuthConfig
            Configuration with environment overrides applied.

        Raises
        ------
        ConfigurationError
            If a variable cannot be parsed or a value is out of range.
        """
        return cls(
            feature_length=_env_int("BA_FEATURE_LENGTH", DEFAULT_FEATURE_LENGTH),
            keystroke_samples_required=_env_int(
                "BA_KEYSTROKE_SAMPLES_REQUIRED", KEYSTROKE_SAMPLES_REQUIRED
            ),
            voice_samples_required=_env_int(
                "BA_VOICE_SAMPLES_REQUIRED", VOICE_SAMPLES_REQUIRED
            ),
            noise_level=_env_float("BA_NOISE_LEVEL", NOISE_LEVEL),
            augmentation_factor=_env_int("BA_AUGMENTATION_FACTOR", AUGMENTATION_FACTOR),
            threshold_floor=_env_float("BA_THRESHOLD_FLOOR", AUTOENCODER_THRESHOLD_FLOOR),
            threshold_percentile=_env_float(
                "BA_THRESHOLD_PERCENTILE", THRESHOLD_PERCENTILE
            ),
            voice_similarity_threshold=_env_float(
                "BA_VOICE_SIMILARITY_THRESHOLD", VOICE_SIMILARITY_THRESHOLD
            ),
            frame_size=_env_int("BA_FRAME_SIZE", FRAME_SIZE),
            hop_size=_env_int("BA_HOP_SIZE", HOP_SIZE),
            n_mfcc=_env_int("BA_N_MFCC", N_MFCC),
            n_mels=_env_int("BA_N_MELS", N_MELS),
            epochs=_env_int("BA_EPOCHS", TRAINING_EPOCHS),
            learning_rate=_env_float("BA_LEARNING_RATE", LEARNING_RATE),
            hidden_size=_env_int("BA_HIDDEN_SIZE", HIDDEN_SIZE),
            bottleneck_size=_env_int("BA_BOTTLENECK_SIZE", BOTTLENECK_SIZE),
            training_attempts=_env_int("BA_TRAINING_ATTEMPTS", TRAINING_ATTEMPTS),
            random_seed=RANDOM_SEED,
        )

    def validate(self) -> bool:
        """
        Validate the configuration values.

        Returns
        -------
        bool
            True if the configuration is valid.

        Raises
        ------
        ConfigurationError
            If any parameter is out of range.
        """
        errors = []

        positive_ints = {
            "feature_length": self.feature_length,
            "keystroke_samples_required": self.keystroke_samples_required,
            "voice_samples_required": self.voice_samples_required,
            "frame_size": self.frame_size,
            "hop_size": self.hop_size,
            "n_mfcc": self.n_mfcc,
            "n_mels": self.n_mels,
            "epochs": self.epochs,
            "hidden_size": self.hidden_size,
            "bottleneck_size": self.bottleneck_size,
            "training_attempts": self.training_attempts,
        }
        for name, value in positive_ints.items():
            if not isinstance(value, int) or value < 1:
                errors.append(f"{name} must be a positive integer, got {value}")

        if self.augmentation_factor < 0:
            errors.append("augmentation_factor cannot be negative")

        if self.noise_level < 0:
            errors.append("noise_level cannot be negative")

        if self.threshold_floor < 0:
            errors.append("threshold_floor cannot be negative")

        if not 0 < self.threshold_percentile <= 100:
            errors.append("threshold_percentile must be in (0, 100]")

        if not 0.0 <= self.voice_similarity_threshold <= 1.0:
            errors.append("voice_similarity_threshold must be between 0.0 and 1.0")

        if self.learning_rate <= 0:
            errors.append("learning_rate must be positive")

        if self.hop_size > self.frame_size:
            errors.append("hop_size cannot exceed frame_size")

        if self.n_mfcc > self.n_mels:
            errors.append("n_mfcc cannot exceed n_mels")

        if errors:
            raise ConfigurationError(
                "Configuration validation failed:\n"
                + "\n".join(f"- {error}" for error in errors)
            )

        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert the configuration to a dictionary."""
        return asdict(self)


# =============================================================================
# Configuration Validation
# =============================================================================
def validate_configuration() -> bool:
    """
    Validate the module-level settings.

    Returns
    -------
    bool
        True if configuration is valid.

    Raises
    ------
    ConfigurationError
        If critical configuration parameters are invalid.
    """
    errors = []

    if MAX_WORKERS < 1:
        errors.append("MAX_WORKERS must be at least 1")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if LOG_LEVEL not in valid_log_levels:
        errors.append(f"LOG_LEVEL must be one of {valid_log_levels}")

    if errors:
        raise ConfigurationError(
            "Configuration validation failed:\n"
            + "\n".join(f"- {error}" for error in errors)
        )

    return True


def get_config_summary(config: Optional[AuthConfig] = None) -> dict:
    """
    Get a summary of the current configuration.

    Parameters
    ----------
    config : Optional[AuthConfig], default=None
        Pipeline configuration to include; built from the environment if None.

    Returns
    -------
    dict
        Dictionary containing key configuration parameters.
    """
    config = config or AuthConfig.from_env()
    return {
        "paths": {
            "data_dir": str(DATA_DIR),
            "store_dir": str(STORE_DIR),
            "secret_file": str(SECRET_FILE),
        },
        "processing": {
            "max_workers": MAX_WORKERS,
            "random_seed": RANDOM_SEED,
        },
        "pipeline": config.to_dict(),
        "logging": {
            "level": LOG_LEVEL,
            "structured": STRUCTURED_LOGGING,
        },
    }


# Validate configuration on import
if not DEBUG_MODE:
    validate_configuration()
