"""
Voice feature extraction for the behavioral authentication system.

This module implements frame-based acoustic analysis of mono audio:

1. The signal is split into overlapping windows (non-centered STFT).
2. Every window yields cepstral coefficients, spectral shape measures and
   temporal measures.
3. Valid frames are aggregated into per-sample means and variances, and
   autocorrelation pitch statistics are attached.

Samples are compared with a weighted blend of cepstral cosine similarity,
spectral similarity and temporal similarity. Spectral centroid and rolloff
are expressed as fractions of the Nyquist frequency so every scalar measure
lives on a comparable unit scale.
"""

from typing import Dict, List, Optional, Sequence, Tuple

import librosa
import numpy as np
import structlog
from scipy.signal import correlate

from .config import AuthConfig
from .constants import MAX_PITCH_HZ, MIN_PITCH_HZ, ROLLOFF_PERCENT, SIMILARITY_WEIGHTS
from .data_models import AggregatedVoiceFeatures, SimilarityScore, VoiceFrameFeatures
from .exceptions import ValidationError
from .utils import clamp, timer

# Initialize structured logger
logger = structlog.get_logger(__name__)

_SCALAR_MEASURES = (
    "spectral_centroid",
    "spectral_flatness",
    "spectral_rolloff",
    "zcr",
    "rms",
    "energy",
)


def _validate_audio(audio: np.ndarray, sample_rate: int, frame_size: int) -> np.ndarray:
    audio = np.asarray(audio, dtype=np.float64)

    if audio.ndim != 1:
        raise ValidationError(
            f"Audio must be mono (1D), got {audio.ndim}D",
            field="audio",
            modality="voice",
        )
    if audio.size == 0:
        raise ValidationError("Audio sample is empty", field="audio", modality="voice")
    if not np.isfinite(audio).all():
        raise ValidationError(
            "Audio contains non-finite values", field="audio", modality="voice"
        )
    if sample_rate <= 0:
        raise ValidationError(
            f"Sample rate must be positive, got {sample_rate}",
            field="sample_rate",
            modality="voice",
        )
    if audio.size < frame_size:
        raise ValidationError(
            "Audio is shorter than one analysis frame",
            field="audio",
            modality="voice",
            context={"samples": int(audio.size), "frame_size": frame_size},
        )
    return audio


def extract_frame_features(
    audio: np.ndarray, sample_rate: int, config: Optional[AuthConfig] = None
) -> List[VoiceFrameFeatures]:
    """
    Compute per-frame acoustic measures.

    Parameters
    ----------
    audio : np.ndarray
        Mono samples, typically in [-1, 1].
    sample_rate : int
        Sampling rate in Hz.
    config : Optional[AuthConfig], default=None
        Framing and cepstral parameters.

    Returns
    -------
    List[VoiceFrameFeatures]
        One entry per analysis window, invalid frames included.

    Raises
    ------
    ValidationError
        If the audio is empty, not mono, non-finite, shorter than one frame,
        or the sample rate is not positive.
    """
    config = config or AuthConfig()
    audio = _validate_audio(audio, sample_rate, config.frame_size)
    nyquist = sample_rate / 2.0

    magnitude = np.abs(
        librosa.stft(
            audio,
            n_fft=config.frame_size,
            hop_length=config.hop_size,
            win_length=config.frame_size,
            window="hann",
            center=False,
        )
    )
    power = magnitude**2

    mel = librosa.feature.melspectrogram(
        S=power, sr=sample_rate, n_fft=config.frame_size, n_mels=config.n_mels
    )
    mfcc = librosa.feature.mfcc(S=librosa.power_to_db(mel), n_mfcc=config.n_mfcc)

    centroid = librosa.feature.spectral_centroid(
        S=magnitude, sr=sample_rate, n_fft=config.frame_size
    )[0]
    flatness = librosa.feature.spectral_flatness(S=magnitude)[0]
    rolloff = librosa.feature.spectral_rolloff(
        S=magnitude, sr=sample_rate, n_fft=config.frame_size, roll_percent=ROLLOFF_PERCENT
    )[0]
    zcr = librosa.feature.zero_crossing_rate(
        audio, frame_length=config.frame_size, hop_length=config.hop_size, center=False
    )[0]
    rms = librosa.feature.rms(
        y=audio, frame_length=config.frame_size, hop_length=config.hop_size, center=False
    )[0]

    n_frames = min(mfcc.shape[1], len(centroid), len(zcr), len(rms))
    frames = [
        VoiceFrameFeatures(
            mfcc=mfcc[:, i].copy(),
            spectral_centroid=float(centroid[i] / nyquist),
            spectral_flatness=float(flatness[i]),
            spectral_rolloff=float(rolloff[i] / nyquist),
            zcr=float(zcr[i]),
            rms=float(rms[i]),
            energy=float(rms[i] ** 2),
        )
        for i in range(n_frames)
    ]

    logger.debug("Voice frames analysed", frame_count=len(frames), sample_rate=sample_rate)
    return frames


def estimate_pitch(frame: np.ndarray, sample_rate: int) -> float:
    """
    Estimate the fundamental frequency of one frame by autocorrelation.

    Returns
    -------
    float
        Pitch in Hz, or 0.0 when no estimate falls strictly inside the
        50-500 Hz voice range.

    Examples
    --------
    >>> sr = 16000
    >>> t = np.arange(1024) / sr
    >>> round(estimate_pitch(np.sin(2 * np.pi * 200 * t), sr))
    200
    """
    frame = np.asarray(frame, dtype=np.float64)
    frame = frame - frame.mean()
    if not np.any(frame):
        return 0.0

    autocorr = correlate(frame, frame, mode="full", method="fft")[len(frame) - 1 :]

    min_lag = max(1, int(sample_rate / MAX_PITCH_HZ))
    max_lag = min(int(sample_rate / MIN_PITCH_HZ), len(frame) // 2)
    if max_lag <= min_lag:
        return 0.0

    lag = min_lag + int(np.argmax(autocorr[min_lag : max_lag + 1]))
    if autocorr[lag] <= 0:
        return 0.0

    pitch = sample_rate / lag
    return float(pitch) if MIN_PITCH_HZ < pitch < MAX_PITCH_HZ else 0.0


def pitch_statistics(
    audio: np.ndarray, sample_rate: int, config: Optional[AuthConfig] = None
) -> Tuple[float, float, float]:
    """
    Mean, population variance and range of the valid per-frame pitch estimates.

    All three are 0.0 when no frame yields a valid estimate.
    """
    config = config or AuthConfig()
    audio = _validate_audio(audio, sample_rate, config.frame_size)

    windows = librosa.util.frame(
        audio, frame_length=config.frame_size, hop_length=config.hop_size, axis=0
    )
    estimates = np.array([estimate_pitch(w, sample_rate) for w in windows])
    valid = estimates[estimates > 0]

    if valid.size == 0:
        return 0.0, 0.0, 0.0
    return float(valid.mean()), float(valid.var()), float(valid.max() - valid.min())


def aggregate_frame_features(frames: Sequence[VoiceFrameFeatures]) -> AggregatedVoiceFeatures:
    """
    Aggregate valid frames into per-sample means and population variances.

    Raises
    ------
    ValidationError
        If no frame is valid.
    """
    valid = [f for f in frames if f.is_valid()]
    if not valid:
        raise ValidationError(
            "No valid audio frames found",
            field="audio",
            modality="voice",
            context={"frame_count": len(frames)},
        )

    mfcc = np.vstack([f.mfcc for f in valid])
    values: Dict[str, float] = {}
    for name in _SCALAR_MEASURES:
        series = np.array([getattr(f, name) for f in valid], dtype=np.float64)
        values[f"{name}_mean"] = float(series.mean())
        values[f"{name}_variance"] = float(series.var())

    return AggregatedVoiceFeatures(
        mfcc_mean=mfcc.mean(axis=0),
        mfcc_variance=mfcc.var(axis=0),
        frame_count=len(valid),
        **values,
    )


@timer
def extract_voice_features(
    audio: np.ndarray, sample_rate: int, config: Optional[AuthConfig] = None
) -> AggregatedVoiceFeatures:
    """
    Extract the aggregated voice features of one sample.

    Parameters
    ----------
    audio : np.ndarray
        Mono samples.
    sample_rate : int
        Sampling rate in Hz.
    config : Optional[AuthConfig], default=None
        Framing and cepstral parameters.

    Returns
    -------
    AggregatedVoiceFeatures
        Frame statistics with pitch mean, variance and range.

    Raises
    ------
    ValidationError
        For invalid audio or when no valid frames are found.
    """
    config = config or AuthConfig()
    frames = extract_frame_features(audio, sample_rate, config)
    features = aggregate_frame_features(frames)
    (
        features.pitch_mean,
        features.pitch_variance,
        features.pitch_range,
    ) = pitch_statistics(audio, sample_rate, config)

    logger.debug(
        "Voice features extracted",
        frame_count=features.frame_count,
        pitch_detected=features.pitch_mean > 0,
    )
    return features


def _cosine(a: np.ndarray, b: np.ndarray) -> float:
    n = min(len(a), len(b))
    if n == 0:
        return 0.0
    a, b = a[:n], b[:n]
    magnitude = float(np.linalg.norm(a) * np.linalg.norm(b))
    if magnitude == 0:
        return 0.0
    return float(np.dot(a, b) / magnitude)


def calculate_similarity(
    first: AggregatedVoiceFeatures, second: AggregatedVoiceFeatures
) -> SimilarityScore:
    """
    Compare two voice samples.

    The cepstral component is the cosine similarity of the MFCC means (0 when
    either has zero magnitude). The spectral and temporal components are one
    minus the mean absolute difference of their three measures. The overall
    score is the weighted blend clamped to [0, 1].

    Examples
    --------
    >>> score = calculate_similarity(features, features)
    >>> round(score.overall, 6)
    1.0
    """
    cepstral = _cosine(first.mfcc_mean, second.mfcc_mean)

    diffs = {
        f"{name}_diff": abs(getattr(first, f"{name}_mean") - getattr(second, f"{name}_mean"))
        for name in _SCALAR_MEASURES
    }
    spectral = 1.0 - (
        diffs["spectral_centroid_diff"]
        + diffs["spectral_flatness_diff"]
        + diffs["spectral_rolloff_diff"]
    ) / 3.0
    temporal = 1.0 - (diffs["zcr_diff"] + diffs["rms_diff"] + diffs["energy_diff"]) / 3.0

    overall = clamp(
        SIMILARITY_WEIGHTS["cepstral"] * cepstral
        + SIMILARITY_WEIGHTS["spectral"] * spectral
        + SIMILARITY_WEIGHTS["temporal"] * temporal
    )

    details = {"mfcc_similarity": cepstral, **{k: float(v) for k, v in diffs.items()}}
    details["pitch_diff"] = float(abs(first.pitch_mean - second.pitch_mean))

    return SimilarityScore(
        overall=overall,
        cepstral=cepstral,
        spectral=clamp(spectral),
        temporal=clamp(temporal),
        confidence=overall,
        details=details,
    )


def average_voice_features(
    samples: Sequence[AggregatedVoiceFeatures],
) -> AggregatedVoiceFeatures:
    """
    Element-wise mean of several samples, used as the enrollment template.

    Raises
    ------
    ValidationError
        If no samples are given or their coefficient counts differ.
    """
    if not samples:
        raise ValidationError(
            "No voice samples provided for profile creation", modality="voice"
        )

    sizes = {s.mfcc_mean.shape for s in samples}
    if len(sizes) != 1:
        raise ValidationError(
            "Voice samples have inconsistent coefficient counts",
            modality="voice",
            context={"shapes": sorted(sizes)},
        )

    scalars = {
        name: float(np.mean([getattr(s, name) for s in samples]))
        for name in [f"{m}_{stat}" for m in _SCALAR_MEASURES for stat in ("mean", "variance")]
        + ["pitch_mean", "pitch_variance", "pitch_range"]
    }

    return AggregatedVoiceFeatures(
        mfcc_mean=np.mean([s.mfcc_mean for s in samples], axis=0),
        mfcc_variance=np.mean([s.mfcc_variance for s in samples], axis=0),
        frame_count=int(round(np.mean([s.frame_count for s in samples]))),
        **scalars,
    )
