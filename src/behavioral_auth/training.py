"""
Profile training for the behavioral authentication system.

Keystroke enrollment samples are augmented with uniform noise, normalized
with min-max statistics of the augmented corpus and used to train an
autoencoder. The acceptance threshold is a percentile of the reconstruction
errors of the original samples, floored at a configured minimum.

Voice enrollment samples are averaged into a reference template.
"""

import math
from typing import List, Optional, Sequence

import numpy as np
import structlog

from .autoencoder import Autoencoder
from .config import AuthConfig
from .constants import LOSS_HISTORY_LENGTH
from .data_models import (
    AggregatedVoiceFeatures,
    TrainedProfile,
    TrainingStats,
    VoiceProfile,
)
from .exceptions import InsufficientSamplesError, ModelError
from .keystroke_features import KeystrokeSample, coerce_feature_vector
from .normalization import apply_normalization, fit_normalization
from .utils import retry, timer
from .voice_features import average_voice_features

# Initialize structured logger
logger = structlog.get_logger(__name__)


def augment_samples(
    samples: np.ndarray,
    noise_level: float,
    factor: int,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Build the augmented training corpus.

    Each original sample is followed by ``factor`` noisy copies with uniform
    noise in ``±noise_level``; noisy values are clamped at zero.

    Parameters
    ----------
    samples : np.ndarray
        Original samples, shape ``(n, d)``.
    noise_level : float
        Noise amplitude.
    factor : int
        Noisy copies per sample.
    rng : Optional[np.random.Generator], default=None
        Random generator.

    Returns
    -------
    np.ndarray
        Corpus of shape ``(n * (factor + 1), d)``.
    """
    rng = rng or np.random.default_rng()
    samples = np.atleast_2d(np.asarray(samples, dtype=np.float64))

    rows: List[np.ndarray] = []
    for sample in samples:
        rows.append(sample)
        for _ in range(factor):
            noise = rng.uniform(-noise_level, noise_level, size=sample.shape)
            rows.append(np.maximum(sample + noise, 0.0))
    return np.vstack(rows)


def compute_threshold(
    errors: Sequence[float], percentile: float, floor: float
) -> float:
    """
    Percentile rule for the acceptance threshold.

    The errors are sorted ascending and the value at index
    ``floor(percentile/100 * n)``, clamped to the last index, is taken; the
    threshold never falls below ``floor``.

    Examples
    --------
    >>> compute_threshold([0.01, 0.02, 0.05, 0.04, 0.03], 95.0, 0.03)
    0.05
    >>> compute_threshold([0.001, 0.002], 95.0, 0.03)
    0.03
    """
    ordered = sorted(float(e) for e in errors)
    if not ordered:
        return float(floor)
    index = min(int(math.floor(percentile / 100.0 * len(ordered))), len(ordered) - 1)
    return max(ordered[index], float(floor))


def _attempt_seed(base: Optional[int], attempt: int) -> Optional[int]:
    return None if base is None else base + attempt


@timer
def train_keystroke_profile(
    samples: Sequence[KeystrokeSample], config: Optional[AuthConfig] = None
) -> TrainedProfile:
    """
    Train a keystroke profile from enrollment samples.

    Parameters
    ----------
    samples : Sequence[KeystrokeSample]
        Enrollment samples, vectors or ``KeystrokeFeatureVector`` objects.
    config : Optional[AuthConfig], default=None
        Training parameters.

    Returns
    -------
    TrainedProfile
        Model, normalization statistics, threshold and training statistics.

    Raises
    ------
    InsufficientSamplesError
        If fewer samples than required are given.
    ValidationError
        If a sample is malformed.
    ModelError
        If every training attempt diverged.
    """
    config = config or AuthConfig()
    if len(samples) < config.keystroke_samples_required:
        raise InsufficientSamplesError(
            len(samples), config.keystroke_samples_required, modality="keystroke"
        )

    originals = np.vstack(
        [coerce_feature_vector(s, config.feature_length) for s in samples]
    )

    @retry(
        max_attempts=config.training_attempts,
        delay=0.0,
        exceptions=(ModelError,),
        pass_attempt=True,
    )
    def fit_once(attempt: int = 0) -> TrainedProfile:
        seed = _attempt_seed(config.random_seed, attempt)
        rng = np.random.default_rng(seed)

        corpus = augment_samples(
            originals, config.noise_level, config.augmentation_factor, rng
        )
        params = fit_normalization(corpus)
        normalized = apply_normalization(corpus, params)

        model = Autoencoder(
            config.vector_length,
            hidden_size=config.hidden_size,
            bottleneck_size=config.bottleneck_size,
            random_state=seed,
        )
        losses = model.train(normalized, config.epochs, config.learning_rate)

        errors = model.reconstruction_errors(apply_normalization(originals, params))
        if not np.isfinite(errors).all():
            raise ModelError("Reconstruction errors are non-finite")

        threshold = compute_threshold(
            errors, config.threshold_percentile, config.threshold_floor
        )
        stats = TrainingStats(
            sample_count=len(originals),
            augmented_sample_count=len(corpus),
            mean_error=float(errors.mean()),
            max_error=float(errors.max()),
            losses=losses[-LOSS_HISTORY_LENGTH:],
            epochs=config.epochs,
            attempts=attempt + 1,
        )
        return TrainedProfile(
            model=model, normalization=params, threshold=threshold, training_stats=stats
        )

    profile = fit_once()

    logger.info(
        "Keystroke profile trained",
        samples=profile.training_stats.sample_count,
        augmented_samples=profile.training_stats.augmented_sample_count,
        threshold=profile.threshold,
        mean_error=profile.training_stats.mean_error,
        attempts=profile.training_stats.attempts,
    )
    return profile


def build_voice_profile(
    samples: Sequence[AggregatedVoiceFeatures], config: Optional[AuthConfig] = None
) -> VoiceProfile:
    """
    Average enrollment samples into a voice template.

    Raises
    ------
    InsufficientSamplesError
        If fewer samples than required are given.
    """
    config = config or AuthConfig()
    if len(samples) < config.voice_samples_required:
        raise InsufficientSamplesError(
            len(samples), config.voice_samples_required, modality="voice"
        )

    reference = average_voice_features(samples)
    logger.info("Voice profile built", samples=len(samples))
    return VoiceProfile(reference=reference, sample_count=len(samples))
