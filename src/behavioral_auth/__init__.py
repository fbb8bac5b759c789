"""
BEHAVIORAL AUTH - On-device behavioral biometric authentication

Verifies a claimed identity from typing rhythm (keystroke dynamics) and the
acoustics of a short spoken phrase, entirely on the local device.

This package implements the biometric modeling and verification pipeline:
feature extraction, an autoencoder anomaly detector, a voice similarity
scorer, an enrollment state machine and a tamper-evident profile store.
"""

__version__ = "1.0.0"
__author__ = "Behavioral Auth Team"

from .config import AuthConfig
from .data_models import (
    AggregatedVoiceFeatures,
    KeystrokeEvent,
    KeystrokeFeatureVector,
    TrainedProfile,
    VerificationResult,
    VoiceProfile,
)
from .enrollment import EnrollmentController
from .exceptions import (
    BehavioralAuthError,
    IntegrityError,
    InsufficientSamplesError,
    ModelError,
    NotEnrolledError,
    ValidationError,
)
from .integrity_store import IntegrityStore
from .verification import VerificationEngine

__all__ = [
    "AuthConfig",
    "AggregatedVoiceFeatures",
    "KeystrokeEvent",
    "KeystrokeFeatureVector",
    "TrainedProfile",
    "VerificationResult",
    "VoiceProfile",
    "EnrollmentController",
    "BehavioralAuthError",
    "IntegrityError",
    "InsufficientSamplesError",
    "ModelError",
    "NotEnrolledError",
    "ValidationError",
    "IntegrityStore",
    "VerificationEngine",
]
