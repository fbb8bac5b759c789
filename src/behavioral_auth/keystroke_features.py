"""
Keystroke dynamics feature extraction for the behavioral authentication system.

This module turns the ordered key press/release events of one authentication
attempt into a fixed-length numeric vector of ``3L+1`` entries:

* the first ``L`` hold times,
* the first ``L-1`` press-press deltas,
* the first ``L-1`` release-press (flight) deltas,
* typing speed, mean flight time, correction count and hold-time spread,

zero-padded to the configured length. Extraction is a pure function of its
input; all timestamps are in milliseconds.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import structlog

from .constants import (
    CORRECTION_KEYS,
    DEFAULT_FEATURE_LENGTH,
    IGNORED_KEYS,
    MIN_TYPING_DURATION_MS,
)
from .data_models import KeystrokeEvent, KeystrokeFeatureVector
from .exceptions import ValidationError
from .normalization import align_vector
from .utils import timer

# Initialize structured logger
logger = structlog.get_logger(__name__)

KeystrokeSample = Union[KeystrokeFeatureVector, np.ndarray, Sequence[float]]


def is_biometric_key(key: str) -> bool:
    """
    Check whether a key carries biometric signal.

    Modifiers, navigation and function keys are discarded before capture.

    Examples
    --------
    >>> is_biometric_key("a"), is_biometric_key("Shift")
    (True, False)
    """
    return key not in IGNORED_KEYS


def feature_vector_length(feature_length: int = DEFAULT_FEATURE_LENGTH) -> int:
    """Length of the assembled vector for a given ``L``."""
    return 3 * feature_length + 1


def _match_release(
    key: str, press_ts: float, releases: List[KeystrokeEvent]
) -> Optional[float]:
    for release in releases:
        if release.key == key and release.timestamp > press_ts:
            return release.timestamp
    return None


@timer
def extract_keystroke_features(
    events: Iterable[KeystrokeEvent], feature_length: int = DEFAULT_FEATURE_LENGTH
) -> KeystrokeFeatureVector:
    """
    Extract timing features from one authentication attempt.

    Parameters
    ----------
    events : Iterable[KeystrokeEvent]
        Ordered press/release events.
    feature_length : int, default=DEFAULT_FEATURE_LENGTH
        Number of keys ``L``; the vector has ``3L+1`` entries.

    Returns
    -------
    KeystrokeFeatureVector
        Timing series, scalar features and the fixed-length vector.

    Raises
    ------
    ValidationError
        If there is no usable timing data or the vector is not finite.

    Examples
    --------
    >>> events = [
    ...     KeystrokeEvent("a", "press", 0.0), KeystrokeEvent("a", "release", 90.0),
    ...     KeystrokeEvent("b", "press", 150.0), KeystrokeEvent("b", "release", 230.0),
    ... ]
    >>> features = extract_keystroke_features(events, feature_length=11)
    >>> features.hold_times, features.length
    ([90.0, 80.0], 34)
    """
    if feature_length < 1:
        raise ValidationError(
            f"feature_length must be positive, got {feature_length}",
            field="feature_length",
        )

    events = [e for e in events if is_biometric_key(e.key)]
    presses = [e for e in events if e.is_press]
    releases = [e for e in events if not e.is_press]

    hold_times: List[float] = []
    matched_releases: List[Optional[float]] = []
    for press in presses:
        release_ts = _match_release(press.key, press.timestamp, releases)
        matched_releases.append(release_ts)
        if release_ts is not None:
            hold_times.append(release_ts - press.timestamp)

    press_press: List[float] = []
    flights: List[float] = []
    for current, following, release_ts in zip(presses, presses[1:], matched_releases):
        press_press.append(following.timestamp - current.timestamp)
        if release_ts is not None:
            flights.append(following.timestamp - release_ts)
        else:
            flights.append(following.timestamp - current.timestamp)

    if not hold_times and not press_press:
        raise ValidationError(
            "Insufficient keystroke timing data",
            field="events",
            modality="keystroke",
            context={"press_count": len(presses), "release_count": len(releases)},
        )

    total_time = max(sum(hold_times), sum(press_press), sum(flights))
    total_time = max(total_time, MIN_TYPING_DURATION_MS)
    typing_speed = len(presses) / (total_time / 1000.0)
    mean_flight = float(np.mean(flights)) if flights else 0.0
    corrections = sum(1 for p in presses if p.key in CORRECTION_KEYS)
    hold_spread = float(np.std(hold_times)) if hold_times else 0.0

    vector = np.concatenate(
        [
            np.asarray(hold_times[:feature_length], dtype=np.float64),
            np.asarray(press_press[: feature_length - 1], dtype=np.float64),
            np.asarray(flights[: feature_length - 1], dtype=np.float64),
            np.asarray(
                [typing_speed, mean_flight, float(corrections), hold_spread],
                dtype=np.float64,
            ),
        ]
    )
    vector = align_vector(vector, feature_vector_length(feature_length))

    if vector.size == 0:
        raise ValidationError("Empty feature vector", field="vector", modality="keystroke")
    if not np.isfinite(vector).all():
        raise ValidationError(
            "Feature vector contains non-finite values",
            field="vector",
            modality="keystroke",
        )

    logger.debug(
        "Keystroke features extracted",
        presses=len(presses),
        hold_count=len(hold_times),
        vector_length=len(vector),
    )

    return KeystrokeFeatureVector(
        hold_times=hold_times,
        press_press_deltas=press_press,
        release_press_deltas=flights,
        typing_speed=typing_speed,
        mean_flight_time=mean_flight,
        correction_count=corrections,
        hold_time_spread=hold_spread,
        vector=vector,
    )


def coerce_feature_vector(
    sample: KeystrokeSample, feature_length: Optional[int] = None
) -> np.ndarray:
    """
    Convert a keystroke sample into a validated 1D float vector.

    Parameters
    ----------
    sample : KeystrokeSample
        A ``KeystrokeFeatureVector``, an ndarray or a list of floats.
    feature_length : Optional[int], default=None
        When given, the vector is aligned to ``3L+1`` entries.

    Raises
    ------
    ValidationError
        If the vector is empty, not one-dimensional or not finite.
    """
    if isinstance(sample, KeystrokeFeatureVector):
        vector = sample.vector
    else:
        try:
            vector = np.asarray(sample, dtype=np.float64)
        except (TypeError, ValueError):
            raise ValidationError(
                "Keystroke sample must be numeric", field="sample", modality="keystroke"
            )

    if vector.ndim != 1 or vector.size == 0:
        raise ValidationError(
            "Keystroke sample must be a non-empty 1D vector",
            field="sample",
            modality="keystroke",
            context={"shape": vector.shape},
        )
    if not np.isfinite(vector).all():
        raise ValidationError(
            "Feature vector contains non-finite values",
            field="sample",
            modality="keystroke",
        )

    if feature_length is not None:
        vector = align_vector(vector, feature_vector_length(feature_length))
    return vector


def summarize_features(features: KeystrokeFeatureVector) -> Dict[str, Any]:
    """
    Summarize an extracted sample for debugging output.

    Returns
    -------
    Dict[str, Any]
        Series counts, scalar features and averages.
    """
    return {
        "hold_times_count": len(features.hold_times),
        "press_press_count": len(features.press_press_deltas),
        "flight_count": len(features.release_press_deltas),
        "typing_speed": round(features.typing_speed, 2),
        "mean_flight_time": round(features.mean_flight_time, 2),
        "correction_count": features.correction_count,
        "hold_time_spread": round(features.hold_time_spread, 2),
        "vector_length": features.length,
        "avg_hold_time": round(float(np.mean(features.hold_times)), 2)
        if features.hold_times
        else 0.0,
        "avg_press_press": round(float(np.mean(features.press_press_deltas)), 2)
        if features.press_press_deltas
        else 0.0,
    }
