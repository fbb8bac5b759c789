"""End-to-end verification tests."""
from __future__ import annotations

import json

import numpy as np
import pytest

from behavioral_auth.config import AuthConfig
from behavioral_auth.data_models import Modality, RecordKind, StoreKey
from behavioral_auth.enrollment import EnrollmentController
from behavioral_auth.exceptions import NotEnrolledError, ValidationError
from behavioral_auth.keystroke_features import extract_keystroke_features
from behavioral_auth.normalization import apply_normalization
from behavioral_auth.verification import VerificationEngine, keystroke_confidence
from behavioral_auth.voice_features import extract_voice_features

from conftest import (
    CONTEXT,
    SAMPLE_RATE,
    make_events,
    make_keystroke_vector,
    make_noise_audio,
    make_voiced_audio,
)


@pytest.fixture
def keystroke_enrolled(store, keystroke_samples, fast_config):
    controller = EnrollmentController(store, fast_config)
    for index, sample in enumerate(keystroke_samples):
        controller.add_sample("alice", CONTEXT, index, sample)
    return store.load_profile("alice", CONTEXT, Modality.KEYSTROKE)


@pytest.fixture
def voice_enrolled(store, rng, fast_config):
    controller = EnrollmentController(store, fast_config)
    for index in range(3):
        features = extract_voice_features(make_voiced_audio(rng), SAMPLE_RATE)
        controller.add_sample("bob", CONTEXT, index, features)
    return store.load_profile("bob", CONTEXT, Modality.VOICE)


def test_training_sample_is_accepted(store, keystroke_samples, keystroke_enrolled, fast_config):
    profile = keystroke_enrolled
    errors = [
        profile.model.reconstruction_error(apply_normalization(s, profile.normalization))
        for s in keystroke_samples
    ]
    best = keystroke_samples[int(np.argmin(errors))]

    result = VerificationEngine(store, fast_config).verify_keystroke("alice", CONTEXT, best)

    assert result.authenticated
    assert result.reason == "Authentication successful"
    assert result.score <= result.threshold
    assert 0.0 <= result.confidence <= 1.0
    assert len(result.details["deviations"]) == 10
    assert all(0.0 <= d <= 1.0 for d in result.details["deviations"])


def test_scaled_sample_is_rejected(store, keystroke_samples, keystroke_enrolled, fast_config):
    result = VerificationEngine(store, fast_config).verify_keystroke(
        "alice", CONTEXT, keystroke_samples[0] * 10
    )

    assert not result.authenticated
    assert result.reason == "Biometric pattern mismatch"
    assert result.score > result.threshold
    assert result.error is None


def test_verify_from_raw_events(store, keystroke_enrolled, fast_config, rng):
    result = VerificationEngine(store, fast_config).verify_keystroke_events(
        "alice", CONTEXT, make_events(rng)
    )
    assert result.modality == Modality.KEYSTROKE
    assert result.score is not None


def test_shorter_sample_is_zero_filled(store, keystroke_samples, keystroke_enrolled, fast_config):
    result = VerificationEngine(store, fast_config).verify_keystroke(
        "alice", CONTEXT, keystroke_samples[0][:20]
    )
    assert result.score is not None
    assert np.isfinite(result.score)


def test_not_enrolled_is_denied(store, rng, fast_config):
    engine = VerificationEngine(store, fast_config)

    result = engine.verify_keystroke("nobody", CONTEXT, np.ones(34))
    assert not result.authenticated
    assert isinstance(result.error, NotEnrolledError)
    assert result.error_code == "AUTH_002"
    assert result.reason == "No biometric profile found. Please enroll first."

    voice = extract_voice_features(make_voiced_audio(rng), SAMPLE_RATE)
    result = engine.verify_voice("nobody", CONTEXT, voice)
    assert not result.authenticated
    assert isinstance(result.error, NotEnrolledError)


def test_tampered_profile_is_reported_as_not_enrolled(
    store, backend, keystroke_samples, keystroke_enrolled, fast_config
):
    record_id = StoreKey(CONTEXT, "alice", RecordKind.KEYSTROKE_MODEL).encode()
    envelope = json.loads(backend.get(record_id))
    envelope["payload"]["threshold"] = 1e9
    backend.put(record_id, json.dumps(envelope, sort_keys=True, separators=(",", ":")).encode())

    result = VerificationEngine(store, fast_config).verify_keystroke(
        "alice", CONTEXT, keystroke_samples[0] * 10
    )

    assert not result.authenticated
    assert isinstance(result.error, NotEnrolledError)


def test_profiles_are_scoped_by_context(store, keystroke_samples, keystroke_enrolled, fast_config):
    result = VerificationEngine(store, fast_config).verify_keystroke(
        "alice", "https://other.example", keystroke_samples[0]
    )
    assert isinstance(result.error, NotEnrolledError)


def test_voice_same_speaker_is_accepted(store, rng, voice_enrolled, fast_config):
    sample = extract_voice_features(make_voiced_audio(rng), SAMPLE_RATE)
    result = VerificationEngine(store, fast_config).verify_voice("bob", CONTEXT, sample)

    assert result.authenticated
    assert result.reason == "Voice authentication successful"
    assert result.threshold == fast_config.voice_similarity_threshold
    assert result.confidence == result.score
    assert "mfcc_similarity" in result.details["metrics"]


def test_voice_noise_is_rejected(store, rng, voice_enrolled, fast_config):
    result = VerificationEngine(store, fast_config).verify_voice_audio(
        "bob", CONTEXT, make_noise_audio(rng), SAMPLE_RATE
    )

    assert not result.authenticated
    assert result.reason == "Voice pattern mismatch"


def test_voice_custom_threshold(store, rng, voice_enrolled, fast_config):
    sample = extract_voice_features(make_voiced_audio(rng), SAMPLE_RATE)
    engine = VerificationEngine(store, fast_config)

    assert engine.verify_voice("bob", CONTEXT, sample, threshold=0.0).authenticated
    with pytest.raises(ValidationError):
        engine.verify_voice("bob", CONTEXT, sample, threshold=1.5)


def test_invalid_samples_raise(store, fast_config):
    engine = VerificationEngine(store, fast_config)

    with pytest.raises(ValidationError):
        engine.verify_keystroke("alice", CONTEXT, [])
    with pytest.raises(ValidationError):
        engine.verify_voice("alice", CONTEXT, [1.0, 2.0])
    with pytest.raises(ValueError):
        engine.verify_keystroke("alice", "", np.ones(34))


def test_keystroke_confidence():
    assert keystroke_confidence(0.0, 0.02, 0.03) == 1.0
    assert keystroke_confidence(0.01, 0.02, 0.03) == pytest.approx(0.75)
    assert keystroke_confidence(1.0, 0.02, 0.03) == 0.0
    assert keystroke_confidence(0.03, 0.0, 0.03) == pytest.approx(0.75)
    assert keystroke_confidence(0.2, 0.0, 0.03) == 0.0
    assert keystroke_confidence(0.0, 0.0, 0.0) == 1.0


def _steady_vector(rng, hold_ms=90.0, gap_ms=160.0):
    """Keystroke vector whose timing varies far less than the augmentation noise."""
    events = make_events(rng, hold_ms=hold_ms, gap_ms=gap_ms, jitter_ms=0.01)
    return extract_keystroke_features(events, 11).vector


def test_fresh_consistent_samples_are_accepted(store, rng):
    config = AuthConfig(random_seed=11)
    controller = EnrollmentController(store, config)
    for index in range(5):
        progress = controller.add_sample("alice", CONTEXT, index, _steady_vector(rng))
    assert progress.threshold >= config.threshold_floor

    engine = VerificationEngine(store, config)
    results = [
        engine.verify_keystroke("alice", CONTEXT, _steady_vector(rng)) for _ in range(10)
    ]
    assert all(r.authenticated for r in results)

    other_typist = engine.verify_keystroke(
        "alice", CONTEXT, _steady_vector(rng, hold_ms=140.0, gap_ms=230.0)
    )
    assert not other_typist.authenticated


def test_varied_enrollment_scores_fresh_samples_far_below_impostors(store, rng):
    config = AuthConfig(random_seed=11)
    controller = EnrollmentController(store, config)
    enrollment = [make_keystroke_vector(rng) for _ in range(5)]
    for index, sample in enumerate(enrollment):
        controller.add_sample("alice", CONTEXT, index, sample)

    engine = VerificationEngine(store, config)
    genuine = [
        engine.verify_keystroke("alice", CONTEXT, make_keystroke_vector(rng)).score
        for _ in range(10)
    ]
    impostor = engine.verify_keystroke("alice", CONTEXT, enrollment[0] * 10).score

    assert max(genuine) * 10 < impostor


def test_deviations_report_values_below_training_range(
    store, keystroke_samples, keystroke_enrolled, fast_config
):
    result = VerificationEngine(store, fast_config).verify_keystroke(
        "alice", CONTEXT, keystroke_samples[0] * 0.5
    )
    assert result.details["deviations"] == [1.0] * 10
