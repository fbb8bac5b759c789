"""
Constants and default parameters for the behavioral authentication system.

This module centralizes the tunable parameters of the biometric pipeline so
that enrollment and verification always agree on feature dimensions,
thresholds and training settings. Runtime overrides live in ``config.py``.
"""

from typing import Final, FrozenSet

# =============================================================================
# Keystroke Feature Dimensions
# =============================================================================

# Number of keys captured per attempt (L); the feature vector has 3L+1 entries
DEFAULT_FEATURE_LENGTH: Final[int] = 11

# Lower bound for the typing-duration denominator, in milliseconds
MIN_TYPING_DURATION_MS: Final[float] = 1.0

# Keys that carry no biometric signal and are dropped at capture time
IGNORED_KEYS: Final[FrozenSet[str]] = frozenset(
    {
        "Shift", "Control", "Alt", "Meta", "CapsLock", "Tab", "Escape",
        "ArrowUp", "ArrowDown", "ArrowLeft", "ArrowRight",
        "Home", "End", "PageUp", "PageDown", "Insert",
        "F1", "F2", "F3", "F4", "F5", "F6",
        "F7", "F8", "F9", "F10", "F11", "F12",
    }
)

# Keys counted as corrections
CORRECTION_KEYS: Final[FrozenSet[str]] = frozenset({"Backspace", "Delete"})

# =============================================================================
# Enrollment Parameters
# =============================================================================

# Samples required before a keystroke model is trained
KEYSTROKE_SAMPLES_REQUIRED: Final[int] = 5

# Samples required before a voice template is built
VOICE_SAMPLES_REQUIRED: Final[int] = 3

# Uniform noise amplitude used for training-time augmentation
NOISE_LEVEL: Final[float] = 0.1

# Noisy copies generated per original keystroke sample
AUGMENTATION_FACTOR: Final[int] = 3

# =============================================================================
# Autoencoder Parameters
# =============================================================================

HIDDEN_SIZE: Final[int] = 16
BOTTLENECK_SIZE: Final[int] = 8

# Half-width of the uniform bias initialization range
BIAS_INIT_RANGE: Final[float] = 0.05

TRAINING_EPOCHS: Final[int] = 200
LEARNING_RATE: Final[float] = 0.01

# Fresh initializations tried before a training run is declared failed
TRAINING_ATTEMPTS: Final[int] = 3

# Number of trailing epoch losses kept in the training statistics
LOSS_HISTORY_LENGTH: Final[int] = 10

# =============================================================================
# Decision Thresholds
# =============================================================================

# Reconstruction-error threshold floor
AUTOENCODER_THRESHOLD_FLOOR: Final[float] = 0.03

# Percentile of training errors used as the accept/reject boundary
THRESHOLD_PERCENTILE: Final[float] = 95.0

# Minimum overall similarity for a voice sample to be accepted
VOICE_SIMILARITY_THRESHOLD: Final[float] = 0.75

# Number of normalized features reported as keystroke deviations
DEVIATION_FEATURE_COUNT: Final[int] = 10

# =============================================================================
# Voice Analysis Parameters
# =============================================================================

FRAME_SIZE: Final[int] = 1024
HOP_SIZE: Final[int] = 512
N_MFCC: Final[int] = 13
N_MELS: Final[int] = 40

# Fraction of spectral energy below the rolloff frequency
ROLLOFF_PERCENT: Final[float] = 0.99

# Plausible human fundamental frequency range in Hz
MIN_PITCH_HZ: Final[float] = 50.0
MAX_PITCH_HZ: Final[float] = 500.0

# Similarity weights for the cepstral, spectral and temporal components
SIMILARITY_WEIGHTS: Final[dict] = {"cepstral": 0.5, "spectral": 0.3, "temporal": 0.2}

# =============================================================================
# Integrity Parameters (Argon2 key derivation)
# =============================================================================

ARGON2_TIME_COST: Final[int] = 2

# Memory cost in KB (19 MB)
ARGON2_MEMORY_COST: Final[int] = 19456

ARGON2_PARALLELISM: Final[int] = 1

# Length of the derived tag key in bytes
TAG_KEY_LENGTH: Final[int] = 32

# Fixed salt binding derived keys to this application
TAG_KEY_SALT: Final[bytes] = b"behavioral-auth/integrity-tag/v1"

# Length of a generated installation secret in bytes
SECRET_LENGTH: Final[int] = 32

# =============================================================================
# Profile and File Constants
# =============================================================================

PROFILE_VERSION: Final[str] = "1.0"
KEYSTROKE_PROFILE_TYPE: Final[str] = "keystroke_autoencoder"
VOICE_PROFILE_TYPE: Final[str] = "voice_template"

RECORD_FILE_SUFFIX: Final[str] = ".json"
DEFAULT_SECRET_FILE: Final[str] = "installation.secret"
DEFAULT_SECRET_ENV_VAR: Final[str] = "BA_SECRET"
