"""
Verification of fresh samples against enrolled profiles.

Verification is a pure read followed by computation. It is total: a missing,
tampered or unreadable profile yields a denied ``VerificationResult``
carrying a ``NotEnrolledError`` instead of an exception, and tampering is
reported exactly like absence. Malformed samples still raise
``ValidationError`` to the caller.
"""

from typing import Iterable, Optional, Tuple, cast

import numpy as np
import structlog

from .config import AuthConfig
from .constants import DEVIATION_FEATURE_COUNT
from .data_models import (
    AggregatedVoiceFeatures,
    KeystrokeEvent,
    Modality,
    Profile,
    TrainedProfile,
    VerificationResult,
    VoiceProfile,
)
from .exceptions import IntegrityError, NotEnrolledError, StoreError, ValidationError
from .integrity_store import IntegrityStore
from .keystroke_features import KeystrokeSample, coerce_feature_vector, extract_keystroke_features
from .normalization import apply_normalization
from .utils import clamp
from .voice_features import calculate_similarity, extract_voice_features

# Initialize structured logger
logger = structlog.get_logger(__name__)

_NOT_ENROLLED_REASONS = {
    Modality.KEYSTROKE: "No biometric profile found. Please enroll first.",
    Modality.VOICE: "No voice profile found. Please enroll voice biometrics first.",
}


def keystroke_confidence(error: float, max_error: float, threshold: float) -> float:
    """
    Confidence of a keystroke decision, ``1 - error / (2 * max_error)`` clamped.

    Profiles without a recorded maximum training error fall back to
    ``max_error = 2 * threshold``.

    Examples
    --------
    >>> keystroke_confidence(0.01, 0.02, 0.03)
    0.75
    >>> keystroke_confidence(0.03, 0.0, 0.03)
    0.75
    """
    if max_error <= 0:
        max_error = 2.0 * threshold
    if max_error <= 0:
        return 1.0 if error <= 0 else 0.0
    return clamp(1.0 - error / (2.0 * max_error))


class VerificationEngine:
    """
    Scores samples against stored profiles.

    Parameters
    ----------
    store : IntegrityStore
        Store holding the enrolled profiles.
    config : Optional[AuthConfig], default=None
        Pipeline configuration; must match the one used at enrollment.

    Examples
    --------
    >>> engine = VerificationEngine(store)
    >>> result = engine.verify_keystroke("alice", "https://example.com", vector)
    >>> result.authenticated, result.reason
    (True, 'Authentication successful')
    """

    def __init__(self, store: IntegrityStore, config: Optional[AuthConfig] = None) -> None:
        self.store = store
        self.config = config or AuthConfig()

    @staticmethod
    def _require_scope(identity: str, context: str) -> None:
        if not identity or not isinstance(identity, str):
            raise ValueError("identity must be a non-empty string")
        if not context or not isinstance(context, str):
            raise ValueError("context must be a non-empty string")

    def _load(
        self, identity: str, context: str, modality: Modality
    ) -> Tuple[Optional[Profile], Optional[VerificationResult]]:
        try:
            profile = self.store.load_profile(identity, context, modality)
        except IntegrityError as e:
            logger.warning("Stored profile failed verification", modality=modality.value, **e.to_dict())
            profile = None
        except StoreError as e:
            logger.error("Profile could not be read", modality=modality.value, **e.to_dict())
            profile = None

        if profile is not None:
            return profile, None

        return None, VerificationResult(
            authenticated=False,
            modality=modality,
            reason=_NOT_ENROLLED_REASONS[modality],
            error=NotEnrolledError(identity, context, modality.value),
        )

    def verify_keystroke(
        self, identity: str, context: str, sample: KeystrokeSample
    ) -> VerificationResult:
        """
        Verify a keystroke sample.

        The sample is normalized with the stored statistics (extra dimensions
        dropped, missing ones zero-filled) and scored by the reconstruction
        error of the stored model.

        Parameters
        ----------
        identity : str
            Claimed identity.
        context : str
            Scope the identity belongs to.
        sample : KeystrokeSample
            Feature vector of the attempt.

        Returns
        -------
        VerificationResult
            ``authenticated`` is True when the error does not exceed the
            stored threshold.

        Raises
        ------
        ValueError
            If identity or context is missing.
        ValidationError
            If the sample is malformed.
        """
        self._require_scope(identity, context)
        vector = coerce_feature_vector(sample)

        profile, denied = self._load(identity, context, Modality.KEYSTROKE)
        if denied is not None:
            return denied
        profile = cast(TrainedProfile, profile)

        normalized = apply_normalization(vector, profile.normalization)
        error = profile.model.reconstruction_error(normalized)
        authenticated = bool(np.isfinite(error)) and error <= profile.threshold
        confidence = keystroke_confidence(
            error, profile.training_stats.max_error, profile.threshold
        )

        logger.info(
            "Keystroke verification",
            authenticated=authenticated,
            reconstruction_error=error,
            threshold=profile.threshold,
        )

        return VerificationResult(
            authenticated=authenticated,
            modality=Modality.KEYSTROKE,
            reason="Authentication successful" if authenticated else "Biometric pattern mismatch",
            score=error,
            threshold=profile.threshold,
            confidence=confidence,
            details={
                "deviations": np.minimum(
                    np.abs(normalized[:DEVIATION_FEATURE_COUNT]), 1.0
                ).tolist(),
                "mean_training_error": profile.training_stats.mean_error,
                "max_training_error": profile.training_stats.max_error,
            },
        )

    def verify_keystroke_events(
        self, identity: str, context: str, events: Iterable[KeystrokeEvent]
    ) -> VerificationResult:
        """Extract features from raw events, then ``verify_keystroke``."""
        features = extract_keystroke_features(events, self.config.feature_length)
        return self.verify_keystroke(identity, context, features)

    def verify_voice(
        self,
        identity: str,
        context: str,
        sample: AggregatedVoiceFeatures,
        threshold: Optional[float] = None,
    ) -> VerificationResult:
        """
        Verify a voice sample against the stored template.

        Parameters
        ----------
        identity : str
            Claimed identity.
        context : str
            Scope the identity belongs to.
        sample : AggregatedVoiceFeatures
            Features of the attempt.
        threshold : Optional[float], default=None
            Similarity needed to accept; the configured default when None.

        Returns
        -------
        VerificationResult
            ``authenticated`` is True when the similarity reaches the threshold.
        """
        self._require_scope(identity, context)
        if not isinstance(sample, AggregatedVoiceFeatures):
            raise ValidationError(
                "Voice sample must be AggregatedVoiceFeatures", field="sample", modality="voice"
            )
        if threshold is None:
            threshold = self.config.voice_similarity_threshold
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError(
                f"Threshold must be between 0 and 1, got {threshold}",
                field="threshold",
                modality="voice",
            )

        profile, denied = self._load(identity, context, Modality.VOICE)
        if denied is not None:
            return denied
        profile = cast(VoiceProfile, profile)

        similarity = calculate_similarity(sample, profile.reference)
        authenticated = similarity.overall >= threshold

        logger.info(
            "Voice verification",
            authenticated=authenticated,
            similarity=similarity.overall,
            threshold=threshold,
        )

        return VerificationResult(
            authenticated=authenticated,
            modality=Modality.VOICE,
            reason="Voice authentication successful" if authenticated else "Voice pattern mismatch",
            score=similarity.overall,
            threshold=threshold,
            confidence=similarity.confidence,
            details={
                "cepstral_similarity": similarity.cepstral,
                "spectral_similarity": similarity.spectral,
                "temporal_similarity": similarity.temporal,
                "metrics": similarity.details,
            },
        )

    def verify_voice_audio(
        self,
        identity: str,
        context: str,
        audio: np.ndarray,
        sample_rate: int,
        threshold: Optional[float] = None,
    ) -> VerificationResult:
        """Extract features from raw audio, then ``verify_voice``."""
        features = extract_voice_features(audio, sample_rate, self.config)
        return self.verify_voice(identity, context, features, threshold)
