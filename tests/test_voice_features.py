"""Tests for voice feature extraction and similarity."""
from __future__ import annotations

import numpy as np
import pytest

from behavioral_auth.config import AuthConfig
from behavioral_auth.data_models import AggregatedVoiceFeatures, VoiceFrameFeatures
from behavioral_auth.exceptions import ValidationError
from behavioral_auth.voice_features import (
    aggregate_frame_features,
    average_voice_features,
    calculate_similarity,
    estimate_pitch,
    extract_frame_features,
    extract_voice_features,
    pitch_statistics,
)

from conftest import SAMPLE_RATE, make_noise_audio, make_voiced_audio


def test_frame_count_and_units(rng):
    audio = make_voiced_audio(rng)
    config = AuthConfig()
    frames = extract_frame_features(audio, SAMPLE_RATE, config)

    expected = 1 + (len(audio) - config.frame_size) // config.hop_size
    assert len(frames) == expected
    for frame in frames:
        assert frame.mfcc.shape == (13,)
        assert 0.0 <= frame.spectral_centroid <= 1.0
        assert 0.0 <= frame.spectral_rolloff <= 1.0
        assert 0.0 <= frame.zcr <= 1.0
        assert frame.energy == pytest.approx(frame.rms**2)


def test_extract_voice_features(rng):
    features = extract_voice_features(make_voiced_audio(rng), SAMPLE_RATE)

    assert features.mfcc_mean.shape == (13,)
    assert features.mfcc_variance.shape == (13,)
    assert features.frame_count > 0
    assert np.all(features.mfcc_variance >= 0)
    assert 140.0 < features.pitch_mean < 160.0


def test_estimate_pitch_of_pure_tone():
    t = np.arange(1024) / SAMPLE_RATE
    assert estimate_pitch(np.sin(2 * np.pi * 200 * t), SAMPLE_RATE) == pytest.approx(200.0)


def test_estimate_pitch_of_silence_is_zero():
    assert estimate_pitch(np.zeros(1024), SAMPLE_RATE) == 0.0


def test_pitch_statistics_without_voicing_are_zero():
    assert pitch_statistics(np.zeros(4096), SAMPLE_RATE) == (0.0, 0.0, 0.0)


def test_self_similarity_is_one(rng):
    features = extract_voice_features(make_voiced_audio(rng), SAMPLE_RATE)
    score = calculate_similarity(features, features)

    assert score.overall == pytest.approx(1.0)
    assert score.cepstral == pytest.approx(1.0)
    assert score.confidence == score.overall


def test_similar_voices_score_above_noise(rng):
    first = extract_voice_features(make_voiced_audio(rng), SAMPLE_RATE)
    second = extract_voice_features(make_voiced_audio(rng), SAMPLE_RATE)
    noise = extract_voice_features(make_noise_audio(rng), SAMPLE_RATE)

    same = calculate_similarity(first, second)
    different = calculate_similarity(first, noise)

    assert same.overall >= 0.75
    assert different.overall < 0.75
    assert 0.0 <= different.overall <= 1.0


def test_zero_magnitude_cepstra_give_zero_cosine():
    a = AggregatedVoiceFeatures(mfcc_mean=np.zeros(13), mfcc_variance=np.zeros(13))
    b = AggregatedVoiceFeatures(mfcc_mean=np.ones(13), mfcc_variance=np.zeros(13))
    score = calculate_similarity(a, b)

    assert score.cepstral == 0.0
    assert score.overall == pytest.approx(0.5)


def test_average_voice_features():
    a = AggregatedVoiceFeatures(
        mfcc_mean=np.full(13, 2.0), mfcc_variance=np.ones(13), zcr_mean=0.1, pitch_mean=100.0
    )
    b = AggregatedVoiceFeatures(
        mfcc_mean=np.full(13, 4.0), mfcc_variance=np.ones(13), zcr_mean=0.3, pitch_mean=200.0
    )
    template = average_voice_features([a, b])

    assert np.allclose(template.mfcc_mean, 3.0)
    assert template.zcr_mean == pytest.approx(0.2)
    assert template.pitch_mean == pytest.approx(150.0)

    with pytest.raises(ValidationError):
        average_voice_features([])


def test_invalid_frames_are_discarded():
    good = VoiceFrameFeatures(np.ones(13), 0.1, 0.2, 0.3, 0.05, 0.1, 0.01)
    bad = VoiceFrameFeatures(np.ones(13), float("nan"), 0.2, 0.3, 0.05, 0.1, 0.01)
    aggregated = aggregate_frame_features([good, bad])

    assert aggregated.frame_count == 1
    assert aggregated.spectral_centroid_mean == pytest.approx(0.1)

    with pytest.raises(ValidationError):
        aggregate_frame_features([bad])


@pytest.mark.parametrize(
    "audio, sample_rate",
    [
        (np.array([]), SAMPLE_RATE),
        (np.zeros(512), SAMPLE_RATE),
        (np.zeros((2, 4096)), SAMPLE_RATE),
        (np.full(4096, np.nan), SAMPLE_RATE),
        (np.zeros(4096), 0),
    ],
)
def test_invalid_audio_rejected(audio, sample_rate):
    with pytest.raises(ValidationError):
        extract_voice_features(audio, sample_rate)


def test_features_round_trip_through_dict(rng):
    features = extract_voice_features(make_voiced_audio(rng), SAMPLE_RATE)
    restored = AggregatedVoiceFeatures.from_dict(features.to_dict())

    assert np.allclose(restored.mfcc_mean, features.mfcc_mean)
    assert restored.frame_count == features.frame_count
