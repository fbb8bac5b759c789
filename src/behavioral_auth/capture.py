"""
Capture interfaces for keystroke and audio input.

The pipeline never talks to a keyboard or microphone directly. It consumes
narrow sources: anything yielding ``KeystrokeEvent`` objects, and anything
returning mono samples with their sample rate. ``KeystrokeRecorder`` is the
in-memory event source used by host applications and tests;
``load_audio_file`` reads audio from disk for the command-line tools.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, Union

import librosa
import numpy as np
import structlog

from .data_models import KeystrokeEvent, KeyEventKind
from .exceptions import ValidationError
from .keystroke_features import is_biometric_key
from .utils import generate_session_id

# Initialize structured logger
logger = structlog.get_logger(__name__)


class KeyEventSource(Protocol):
    """Source of ordered key press/release events for one attempt."""

    def events(self) -> Iterable[KeystrokeEvent]:
        ...


class AudioSampleSource(Protocol):
    """Source of one mono audio sample."""

    def read(self) -> Tuple[np.ndarray, int]:
        ...


class KeystrokeRecorder:
    """
    In-memory keystroke event source.

    Non-biometric keys (modifiers, navigation, function keys) are dropped as
    they are recorded.

    Examples
    --------
    >>> recorder = KeystrokeRecorder()
    >>> recorder.record("a", "keydown", 0.0)
    True
    >>> recorder.record("Shift", "keydown", 5.0)
    False
    >>> len(recorder.events())
    1
    """

    def __init__(self, session_id: Optional[str] = None) -> None:
        self.session_id = session_id or generate_session_id("keystroke")
        self._events: List[KeystrokeEvent] = []
        self._ignored = 0

    def record(self, key: str, kind: Union[str, KeyEventKind], timestamp: float) -> bool:
        """
        Record one event.

        Returns
        -------
        bool
            False when the key was ignored.
        """
        if not is_biometric_key(key):
            self._ignored += 1
            return False
        self._events.append(KeystrokeEvent(key, kind, timestamp))
        return True

    def press(self, key: str, timestamp: float) -> bool:
        return self.record(key, KeyEventKind.PRESS, timestamp)

    def release(self, key: str, timestamp: float) -> bool:
        return self.record(key, KeyEventKind.RELEASE, timestamp)

    def events(self) -> List[KeystrokeEvent]:
        return list(self._events)

    def reset(self) -> None:
        """Discard recorded events and start a new session."""
        self._events.clear()
        self._ignored = 0
        self.session_id = generate_session_id("keystroke")

    def session_info(self) -> Dict[str, Any]:
        """Event counts and duration of the current session."""
        timestamps = [e.timestamp for e in self._events]
        return {
            "session_id": self.session_id,
            "event_count": len(self._events),
            "press_count": sum(1 for e in self._events if e.is_press),
            "ignored_count": self._ignored,
            "duration_ms": (max(timestamps) - min(timestamps)) if timestamps else 0.0,
        }


class ArrayAudioSource:
    """Audio source wrapping samples already in memory."""

    def __init__(self, samples: np.ndarray, sample_rate: int) -> None:
        self.samples = np.asarray(samples, dtype=np.float64)
        self.sample_rate = int(sample_rate)

    def read(self) -> Tuple[np.ndarray, int]:
        return self.samples, self.sample_rate


def load_audio_file(
    path: Union[str, Path], sample_rate: Optional[int] = None
) -> Tuple[np.ndarray, int]:
    """
    Load an audio file as mono float samples.

    Parameters
    ----------
    path : Union[str, Path]
        Audio file readable by librosa.
    sample_rate : Optional[int], default=None
        Resample to this rate; the native rate is kept when None.

    Returns
    -------
    Tuple[np.ndarray, int]
        Samples and their sample rate.

    Raises
    ------
    ValidationError
        If the file does not exist.
    """
    path = Path(path)
    if not path.is_file():
        raise ValidationError(
            f"Audio file not found: {path}", field="path", modality="voice"
        )

    samples, rate = librosa.load(str(path), sr=sample_rate, mono=True)
    logger.info("Audio file loaded", path=str(path), sample_rate=rate, samples=len(samples))
    return samples.astype(np.float64), int(rate)
