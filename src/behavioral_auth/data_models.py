"""
Data models for the behavioral authentication system.

This module defines the core data structures used throughout the biometric
pipeline. All models are dataclasses; the persisted ones provide
``to_dict``/``from_dict`` pairs producing plain JSON-compatible values so the
integrity store can serialize them canonically.

Profiles are explicit tagged variants (``TrainedProfile`` and
``VoiceProfile``) distinguished by their ``profile_type`` field.
"""

import json
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import numpy as np

from .autoencoder import Autoencoder
from .constants import (
    KEYSTROKE_PROFILE_TYPE,
    PROFILE_VERSION,
    VOICE_PROFILE_TYPE,
)
from .exceptions import ValidationError


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_float_list(values) -> List[float]:
    return [float(v) for v in np.asarray(values, dtype=np.float64).ravel()]


# =============================================================================
# Enumerations
# =============================================================================


class Modality(str, Enum):
    """Biometric modality of a sample, session or profile."""

    KEYSTROKE = "keystroke"
    VOICE = "voice"


class KeyEventKind(str, Enum):
    """Kind of a captured key event."""

    PRESS = "press"
    RELEASE = "release"

    @classmethod
    def parse(cls, value: Union[str, "KeyEventKind"]) -> "KeyEventKind":
        """Accept ``press``/``release`` as well as DOM-style ``keydown``/``keyup``."""
        if isinstance(value, cls):
            return value
        aliases = {"keydown": cls.PRESS, "keyup": cls.RELEASE}
        normalized = str(value).lower()
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(
                f"Unknown key event kind '{value}'", field="kind", modality="keystroke"
            )


class RecordKind(str, Enum):
    """Kind of record held in the integrity store."""

    KEYSTROKE_MODEL = "keystroke_model"
    VOICE_PROFILE = "voice_profile"
    KEYSTROKE_SAMPLE = "keystroke_sample"
    VOICE_SAMPLE = "voice_sample"

    @classmethod
    def profile_kind(cls, modality: Modality) -> "RecordKind":
        return cls.KEYSTROKE_MODEL if modality == Modality.KEYSTROKE else cls.VOICE_PROFILE

    @classmethod
    def sample_kind(cls, modality: Modality) -> "RecordKind":
        return cls.KEYSTROKE_SAMPLE if modality == Modality.KEYSTROKE else cls.VOICE_SAMPLE


class EnrollmentState(str, Enum):
    """States of the enrollment state machine."""

    IDLE = "idle"
    COLLECTING = "collecting"
    TRAINING = "training"
    COMPLETE = "complete"
    FAILED = "failed"


# =============================================================================
# Keystroke Models
# =============================================================================


@dataclass(frozen=True)
class KeystrokeEvent:
    """
    One key press or release.

    Parameters
    ----------
    key : str
        Key identifier (e.g. ``"a"``, ``"Backspace"``).
    kind : KeyEventKind
        Press or release; ``keydown``/``keyup`` strings are accepted.
    timestamp : float
        Monotonic timestamp in milliseconds.

    Examples
    --------
    >>> KeystrokeEvent("a", "keydown", 12.5).kind
    <KeyEventKind.PRESS: 'press'>
    """

    key: str
    kind: KeyEventKind
    timestamp: float

    def __post_init__(self) -> None:
        if not isinstance(self.key, str) or not self.key:
            raise ValidationError("key must be a non-empty string", field="key")
        object.__setattr__(self, "kind", KeyEventKind.parse(self.kind))
        if not np.isfinite(self.timestamp):
            raise ValidationError("timestamp must be finite", field="timestamp")

    @property
    def is_press(self) -> bool:
        return self.kind == KeyEventKind.PRESS


@dataclass
class KeystrokeFeatureVector:
    """
    Biometric sample derived from one authentication attempt.

    Parameters
    ----------
    hold_times : List[float]
        Hold (dwell) time of each matched press, in ms.
    press_press_deltas : List[float]
        Time between consecutive presses, in ms.
    release_press_deltas : List[float]
        Flight time between a release and the next press, in ms.
    typing_speed : float
        Presses per second.
    mean_flight_time : float
        Mean of the release-press deltas.
    correction_count : int
        Number of Backspace/Delete presses.
    hold_time_spread : float
        Population standard deviation of the hold times.
    vector : np.ndarray
        Fixed-length (``3L+1``) vector used for training and scoring.
    """

    hold_times: List[float]
    press_press_deltas: List[float]
    release_press_deltas: List[float]
    typing_speed: float
    mean_flight_time: float
    correction_count: int
    hold_time_spread: float
    vector: np.ndarray

    @property
    def length(self) -> int:
        return int(self.vector.shape[0])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hold_times": _as_float_list(self.hold_times),
            "press_press_deltas": _as_float_list(self.press_press_deltas),
            "release_press_deltas": _as_float_list(self.release_press_deltas),
            "typing_speed": float(self.typing_speed),
            "mean_flight_time": float(self.mean_flight_time),
            "correction_count": int(self.correction_count),
            "hold_time_spread": float(self.hold_time_spread),
            "vector": _as_float_list(self.vector),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeystrokeFeatureVector":
        return cls(
            hold_times=list(data["hold_times"]),
            press_press_deltas=list(data["press_press_deltas"]),
            release_press_deltas=list(data["release_press_deltas"]),
            typing_speed=float(data["typing_speed"]),
            mean_flight_time=float(data["mean_flight_time"]),
            correction_count=int(data["correction_count"]),
            hold_time_spread=float(data["hold_time_spread"]),
            vector=np.asarray(data["vector"], dtype=np.float64),
        )


# =============================================================================
# Voice Models
# =============================================================================


@dataclass
class VoiceFrameFeatures:
    """Acoustic measures of one analysis window."""

    mfcc: np.ndarray
    spectral_centroid: float
    spectral_flatness: float
    spectral_rolloff: float
    zcr: float
    rms: float
    energy: float

    def is_valid(self) -> bool:
        """True when the frame has coefficients and every measure is finite."""
        scalars = [
            self.spectral_centroid,
            self.spectral_flatness,
            self.spectral_rolloff,
            self.zcr,
            self.rms,
            self.energy,
        ]
        return (
            self.mfcc.size > 0
            and bool(np.isfinite(self.mfcc).all())
            and bool(np.isfinite(scalars).all())
        )


@dataclass
class AggregatedVoiceFeatures:
    """
    Statistics of one voice sample across all of its valid frames.

    This is the unit compared at verification time and the shape of the
    enrollment template.
    """

    mfcc_mean: np.ndarray
    mfcc_variance: np.ndarray
    spectral_centroid_mean: float = 0.0
    spectral_centroid_variance: float = 0.0
    spectral_flatness_mean: float = 0.0
    spectral_flatness_variance: float = 0.0
    spectral_rolloff_mean: float = 0.0
    spectral_rolloff_variance: float = 0.0
    zcr_mean: float = 0.0
    zcr_variance: float = 0.0
    rms_mean: float = 0.0
    rms_variance: float = 0.0
    energy_mean: float = 0.0
    energy_variance: float = 0.0
    pitch_mean: float = 0.0
    pitch_variance: float = 0.0
    pitch_range: float = 0.0
    frame_count: int = 0

    def __post_init__(self) -> None:
        self.mfcc_mean = np.asarray(self.mfcc_mean, dtype=np.float64)
        self.mfcc_variance = np.asarray(self.mfcc_variance, dtype=np.float64)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, np.ndarray):
                result[f.name] = _as_float_list(value)
            elif f.name == "frame_count":
                result[f.name] = int(value)
            else:
                result[f.name] = float(value)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AggregatedVoiceFeatures":
        known = {f.name for f in fields(cls)}
        missing = {"mfcc_mean", "mfcc_variance"} - set(data)
        if missing:
            raise ValidationError(
                f"Voice features missing fields: {sorted(missing)}", modality="voice"
            )
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SimilarityScore:
    """Result of comparing two ``AggregatedVoiceFeatures``."""

    overall: float
    cepstral: float
    spectral: float
    temporal: float
    confidence: float
    details: Dict[str, float] = field(default_factory=dict)


# =============================================================================
# Profiles
# =============================================================================


@dataclass
class NormalizationParams:
    """Per-feature min-max statistics frozen at training completion."""

    minimum: np.ndarray
    maximum: np.ndarray

    def __post_init__(self) -> None:
        self.minimum = np.asarray(self.minimum, dtype=np.float64)
        self.maximum = np.asarray(self.maximum, dtype=np.float64)
        if self.minimum.shape != self.maximum.shape or self.minimum.ndim != 1:
            raise ValidationError(
                "Normalization minimum and maximum must be 1D arrays of equal length",
                field="normalization",
            )

    @property
    def dimension(self) -> int:
        return int(self.minimum.shape[0])

    def to_dict(self) -> Dict[str, Any]:
        return {"min": _as_float_list(self.minimum), "max": _as_float_list(self.maximum)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NormalizationParams":
        return cls(minimum=data["min"], maximum=data["max"])


@dataclass
class TrainingStats:
    """Summary of a keystroke training run."""

    sample_count: int
    augmented_sample_count: int
    mean_error: float
    max_error: float
    losses: List[float] = field(default_factory=list)
    epochs: int = 0
    attempts: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sample_count": int(self.sample_count),
            "augmented_sample_count": int(self.augmented_sample_count),
            "mean_error": float(self.mean_error),
            "max_error": float(self.max_error),
            "losses": _as_float_list(self.losses),
            "epochs": int(self.epochs),
            "attempts": int(self.attempts),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrainingStats":
        return cls(
            sample_count=int(data["sample_count"]),
            augmented_sample_count=int(data["augmented_sample_count"]),
            mean_error=float(data["mean_error"]),
            max_error=float(data["max_error"]),
            losses=list(data.get("losses", [])),
            epochs=int(data.get("epochs", 0)),
            attempts=int(data.get("attempts", 1)),
        )


@dataclass
class TrainedProfile:
    """
    Persisted keystroke model for one (identity, context).

    Parameters
    ----------
    model : Autoencoder
        Trained anomaly detector.
    normalization : NormalizationParams
        Min-max statistics of the augmented training corpus.
    threshold : float
        Reconstruction-error acceptance threshold.
    training_stats : TrainingStats
        Statistics of the training run used for confidence scaling.
    created_at : datetime
        Creation time; profiles are replaced wholesale on re-enrollment.
    version : str
        Profile format version.
    """

    model: Autoencoder
    normalization: NormalizationParams
    threshold: float
    training_stats: TrainingStats
    created_at: datetime = field(default_factory=_utc_now)
    version: str = PROFILE_VERSION
    profile_type: str = KEYSTROKE_PROFILE_TYPE

    @property
    def modality(self) -> Modality:
        return Modality.KEYSTROKE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile_type": self.profile_type,
            "model": self.model.to_dict(),
            "normalization": self.normalization.to_dict(),
            "threshold": float(self.threshold),
            "training_stats": self.training_stats.to_dict(),
            "created_at": self.created_at.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrainedProfile":
        return cls(
            model=Autoencoder.from_dict(data["model"]),
            normalization=NormalizationParams.from_dict(data["normalization"]),
            threshold=float(data["threshold"]),
            training_stats=TrainingStats.from_dict(data["training_stats"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            version=data.get("version", PROFILE_VERSION),
        )


@dataclass
class VoiceProfile:
    """Persisted voice template for one (identity, context)."""

    reference: AggregatedVoiceFeatures
    sample_count: int
    created_at: datetime = field(default_factory=_utc_now)
    version: str = PROFILE_VERSION
    profile_type: str = VOICE_PROFILE_TYPE

    @property
    def modality(self) -> Modality:
        return Modality.VOICE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile_type": self.profile_type,
            "reference": self.reference.to_dict(),
            "sample_count": int(self.sample_count),
            "created_at": self.created_at.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VoiceProfile":
        return cls(
            reference=AggregatedVoiceFeatures.from_dict(data["reference"]),
            sample_count=int(data["sample_count"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            version=data.get("version", PROFILE_VERSION),
        )


Profile = Union[TrainedProfile, VoiceProfile]


def profile_from_dict(data: Dict[str, Any]) -> Profile:
    """
    Rebuild a profile from its serialized form, dispatching on ``profile_type``.

    Raises
    ------
    ValidationError
        If the profile type is unknown.
    """
    profile_type = data.get("profile_type")
    if profile_type == KEYSTROKE_PROFILE_TYPE:
        return TrainedProfile.from_dict(data)
    if profile_type == VOICE_PROFILE_TYPE:
        return VoiceProfile.from_dict(data)
    raise ValidationError(f"Unknown profile type '{profile_type}'", field="profile_type")


# =============================================================================
# Storage Models
# =============================================================================


@dataclass(frozen=True)
class StoreKey:
    """
    Structured composite key scoping a record.

    Parameters
    ----------
    context : str
        Origin or application scope the identity belongs to.
    identity : str
        Claimed identity (e.g. a username).
    kind : RecordKind
        Record kind.
    index : Optional[int], default=None
        Sample index for in-progress enrollment samples.

    Examples
    --------
    >>> key = StoreKey("https://example.com", "alice", RecordKind.VOICE_PROFILE)
    >>> StoreKey.decode(key.encode()) == key
    True
    """

    context: str
    identity: str
    kind: RecordKind
    index: Optional[int] = None

    def __post_init__(self) -> None:
        for name in ("context", "identity"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"{name} must be a non-empty string")
        object.__setattr__(self, "kind", RecordKind(self.kind))
        if self.index is not None and (not isinstance(self.index, int) or self.index < 0):
            raise ValidationError("sample index must be a non-negative integer", field="index")

    def encode(self) -> str:
        """Encode as an opaque backend identifier (a JSON array, never ambiguous)."""
        return json.dumps(
            [self.context, self.identity, self.kind.value, self.index],
            separators=(",", ":"),
            ensure_ascii=False,
        )

    @classmethod
    def decode(cls, record_id: str) -> "StoreKey":
        context, identity, kind, index = json.loads(record_id)
        return cls(context=context, identity=identity, kind=RecordKind(kind), index=index)


@dataclass
class PersistedRecord:
    """Storage envelope holding a payload and its integrity tag."""

    record_id: str
    kind: RecordKind
    payload: Dict[str, Any]
    tag: str
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.record_id,
            "kind": RecordKind(self.kind).value,
            "payload": self.payload,
            "tag": self.tag,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersistedRecord":
        return cls(
            record_id=data["id"],
            kind=RecordKind(data["kind"]),
            payload=data["payload"],
            tag=data["tag"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


# =============================================================================
# Enrollment and Verification Models
# =============================================================================


@dataclass
class EnrollmentSession:
    """In-progress enrollment for one (context, identity, modality)."""

    identity: str
    context: str
    modality: Modality
    required: int
    collected: int = 0
    state: EnrollmentState = EnrollmentState.IDLE
    last_error: Optional[str] = None
    started_at: datetime = field(default_factory=_utc_now)

    def record_count(self, count: int) -> None:
        """Update the collected count; counts never decrease within a session."""
        self.collected = max(self.collected, count)

    @property
    def is_ready(self) -> bool:
        return self.collected >= self.required


@dataclass
class EnrollmentProgress:
    """Snapshot of an enrollment session returned to callers."""

    identity: str
    context: str
    modality: Modality
    state: EnrollmentState
    collected: int
    required: int
    profile_created: bool = False
    message: str = ""
    threshold: Optional[float] = None

    @property
    def progress(self) -> str:
        return f"{self.collected}/{self.required}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "context": self.context,
            "modality": self.modality.value,
            "state": self.state.value,
            "collected": self.collected,
            "required": self.required,
            "profile_created": self.profile_created,
            "message": self.message,
            "threshold": self.threshold,
        }


@dataclass
class VerificationResult:
    """
    Outcome of a verification call.

    Verification is total: storage and enrollment problems are reported as
    ``authenticated=False`` with a reason and the underlying error instead
    of being raised.
    """

    authenticated: bool
    modality: Modality
    reason: str
    score: Optional[float] = None
    threshold: Optional[float] = None
    confidence: float = 0.0
    error: Optional[Exception] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utc_now)

    @property
    def error_code(self) -> Optional[str]:
        return getattr(self.error, "error_code", None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "authenticated": self.authenticated,
            "modality": self.modality.value,
            "reason": self.reason,
            "score": self.score,
            "threshold": self.threshold,
            "confidence": self.confidence,
            "error_code": self.error_code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }
