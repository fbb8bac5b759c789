"""Tests for the enrollment state machine."""
from __future__ import annotations

import pytest

from behavioral_auth.config import AuthConfig
from behavioral_auth.data_models import (
    EnrollmentState,
    Modality,
    RecordKind,
    StoreKey,
    TrainedProfile,
    VoiceProfile,
)
from behavioral_auth.enrollment import EnrollmentController, infer_modality
from behavioral_auth.exceptions import (
    InsufficientSamplesError,
    ModelError,
    StorageError,
    ValidationError,
)
from behavioral_auth.integrity_store import IntegrityStore
from behavioral_auth.secrets_provider import StaticSecretProvider
from behavioral_auth.storage_backends import InMemoryBackend
from behavioral_auth.voice_features import extract_voice_features

from conftest import CONTEXT, SAMPLE_RATE, make_keystroke_vector, make_voiced_audio


def test_keystroke_enrollment_completes_after_five_samples(store, keystroke_samples, fast_config):
    controller = EnrollmentController(store, fast_config)

    for index, sample in enumerate(keystroke_samples[:4]):
        progress = controller.add_sample("alice", CONTEXT, index, sample)
        assert progress.state == EnrollmentState.COLLECTING
        assert progress.progress == f"{index + 1}/5"
        assert not progress.profile_created

    progress = controller.add_sample("alice", CONTEXT, 4, keystroke_samples[4])
    assert progress.state == EnrollmentState.COMPLETE
    assert progress.profile_created
    assert progress.threshold >= fast_config.threshold_floor

    profile = store.load_profile("alice", CONTEXT, Modality.KEYSTROKE)
    assert isinstance(profile, TrainedProfile)
    assert store.load_samples("alice", CONTEXT, Modality.KEYSTROKE) == {}


def test_resubmitting_an_index_does_not_append(store, rng, fast_config):
    controller = EnrollmentController(store, fast_config)
    controller.add_sample("alice", CONTEXT, 0, make_keystroke_vector(rng))
    progress = controller.add_sample("alice", CONTEXT, 0, make_keystroke_vector(rng))

    assert progress.collected == 1
    assert len(store.load_samples("alice", CONTEXT, Modality.KEYSTROKE)) == 1


def test_voice_enrollment_completes_after_three_samples(store, rng, fast_config):
    controller = EnrollmentController(store, fast_config)
    samples = [extract_voice_features(make_voiced_audio(rng), SAMPLE_RATE) for _ in range(3)]

    assert controller.add_sample("bob", CONTEXT, 0, samples[0]).progress == "1/3"
    assert controller.add_sample("bob", CONTEXT, 1, samples[1]).progress == "2/3"
    progress = controller.add_sample("bob", CONTEXT, 2, samples[2])

    assert progress.state == EnrollmentState.COMPLETE
    assert progress.modality == Modality.VOICE
    profile = store.load_profile("bob", CONTEXT, Modality.VOICE)
    assert isinstance(profile, VoiceProfile)
    assert profile.sample_count == 3


def test_modalities_are_separate_sessions(store, rng, fast_config):
    controller = EnrollmentController(store, fast_config)
    controller.add_sample("alice", CONTEXT, 0, make_keystroke_vector(rng))
    voice = extract_voice_features(make_voiced_audio(rng), SAMPLE_RATE)
    progress = controller.add_sample("alice", CONTEXT, 0, voice)

    assert progress.modality == Modality.VOICE
    assert progress.progress == "1/3"
    assert infer_modality(voice) == Modality.VOICE
    assert infer_modality([1.0, 2.0]) == Modality.KEYSTROKE


def test_training_failure_keeps_collecting(store, keystroke_samples):
    config = AuthConfig(epochs=50, learning_rate=1e4, training_attempts=2, random_seed=3)
    controller = EnrollmentController(store, config)

    for index, sample in enumerate(keystroke_samples[:4]):
        controller.add_sample("alice", CONTEXT, index, sample)
    with pytest.raises(ModelError):
        controller.add_sample("alice", CONTEXT, 4, keystroke_samples[4])

    progress = controller.get_progress("alice", CONTEXT, Modality.KEYSTROKE)
    assert progress.state == EnrollmentState.COLLECTING
    assert progress.message
    assert store.load_profile("alice", CONTEXT, Modality.KEYSTROKE) is None
    assert len(store.load_samples("alice", CONTEXT, Modality.KEYSTROKE)) == 5


def test_retry_training_after_failure(store, keystroke_samples, fast_config):
    failing = EnrollmentController(
        store, AuthConfig(epochs=50, learning_rate=1e4, training_attempts=1)
    )
    for index, sample in enumerate(keystroke_samples[:4]):
        failing.add_sample("alice", CONTEXT, index, sample)
    with pytest.raises(ModelError):
        failing.add_sample("alice", CONTEXT, 4, keystroke_samples[4])

    # A new controller picks the stored samples up again
    controller = EnrollmentController(store, fast_config)
    assert controller.get_progress("alice", CONTEXT, Modality.KEYSTROKE).collected == 5
    progress = controller.retry_training("alice", CONTEXT, Modality.KEYSTROKE)

    assert progress.state == EnrollmentState.COMPLETE
    assert store.load_profile("alice", CONTEXT, Modality.KEYSTROKE) is not None


def test_retry_training_needs_samples(store, fast_config):
    controller = EnrollmentController(store, fast_config)
    with pytest.raises(InsufficientSamplesError):
        controller.retry_training("alice", CONTEXT, Modality.KEYSTROKE)


def test_session_survives_restart(store, rng, fast_config):
    EnrollmentController(store, fast_config).add_sample(
        "alice", CONTEXT, 0, make_keystroke_vector(rng)
    )
    progress = EnrollmentController(store, fast_config).add_sample(
        "alice", CONTEXT, 1, make_keystroke_vector(rng)
    )
    assert progress.progress == "2/5"


def test_reenrollment_replaces_profile(store, rng, fast_config):
    controller = EnrollmentController(store, fast_config)
    for _ in range(2):
        for index in range(5):
            progress = controller.add_sample("alice", CONTEXT, index, make_keystroke_vector(rng))
        assert progress.state == EnrollmentState.COMPLETE

    assert store.storage_stats()["records_by_kind"]["keystroke_model"] == 1


def test_cancel_discards_samples(store, rng, fast_config):
    controller = EnrollmentController(store, fast_config)
    controller.add_sample("alice", CONTEXT, 0, make_keystroke_vector(rng))

    assert controller.cancel("alice", CONTEXT, Modality.KEYSTROKE) is True
    assert store.load_samples("alice", CONTEXT, Modality.KEYSTROKE) == {}
    assert controller.get_progress("alice", CONTEXT, Modality.KEYSTROKE).state == EnrollmentState.IDLE
    assert controller.cancel("alice", CONTEXT, Modality.KEYSTROKE) is False


def test_get_progress_reports_stored_profile(store, keystroke_samples, fast_config):
    for index, sample in enumerate(keystroke_samples):
        EnrollmentController(store, fast_config).add_sample("alice", CONTEXT, index, sample)

    progress = EnrollmentController(store, fast_config).get_progress(
        "alice", CONTEXT, Modality.KEYSTROKE
    )
    assert progress.state == EnrollmentState.COMPLETE
    assert progress.profile_created


def test_async_enrollment(store, keystroke_samples, fast_config):
    controller = EnrollmentController(store, fast_config, max_workers=1)
    try:
        futures = [
            controller.add_sample_async("alice", CONTEXT, index, sample)
            for index, sample in enumerate(keystroke_samples)
        ]
        results = [f.result(timeout=120) for f in futures]
    finally:
        controller.shutdown()

    assert results[-1].state == EnrollmentState.COMPLETE
    assert store.load_profile("alice", CONTEXT, Modality.KEYSTROKE) is not None


def test_invalid_input_rejected(store, fast_config):
    controller = EnrollmentController(store, fast_config)

    with pytest.raises(ValidationError):
        controller.add_sample("alice", CONTEXT, 0, [float("nan")] * 34)
    with pytest.raises(ValidationError):
        controller.add_sample("alice", CONTEXT, -1, [1.0] * 34)
    with pytest.raises(ValueError):
        controller.add_sample("", CONTEXT, 0, [1.0] * 34)


class _ProfileWriteFailingBackend(InMemoryBackend):
    """Rejects keystroke model writes while ``failing`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = True

    def put(self, record_id: str, data: bytes) -> None:
        if self.failing and StoreKey.decode(record_id).kind == RecordKind.KEYSTROKE_MODEL:
            raise StorageError("disk full", record_id=record_id)
        super().put(record_id, data)


def test_persist_failure_returns_session_to_collecting(keystroke_samples, fast_config):
    backend = _ProfileWriteFailingBackend()
    store = IntegrityStore(backend, StaticSecretProvider(b"test-installation-secret"))
    controller = EnrollmentController(store, fast_config)

    for index, sample in enumerate(keystroke_samples[:4]):
        controller.add_sample("alice", CONTEXT, index, sample)
    with pytest.raises(StorageError):
        controller.add_sample("alice", CONTEXT, 4, keystroke_samples[4])

    progress = controller.get_progress("alice", CONTEXT, Modality.KEYSTROKE)
    assert progress.state == EnrollmentState.COLLECTING
    assert progress.message == "disk full"
    assert len(store.load_samples("alice", CONTEXT, Modality.KEYSTROKE)) == 5

    backend.failing = False
    progress = controller.retry_training("alice", CONTEXT, Modality.KEYSTROKE)
    assert progress.state == EnrollmentState.COMPLETE
    assert store.load_profile("alice", CONTEXT, Modality.KEYSTROKE) is not None


def test_cancel_during_training_discards_profile(
    store, keystroke_samples, fast_config, monkeypatch
):
    controller = EnrollmentController(store, fast_config)
    build_profile = controller._build_profile

    def build_then_cancel(session, samples):
        profile = build_profile(session, samples)
        controller.cancel("alice", CONTEXT, Modality.KEYSTROKE)
        return profile

    monkeypatch.setattr(controller, "_build_profile", build_then_cancel)

    for index, sample in enumerate(keystroke_samples[:4]):
        controller.add_sample("alice", CONTEXT, index, sample)
    progress = controller.add_sample("alice", CONTEXT, 4, keystroke_samples[4])

    assert progress.state == EnrollmentState.IDLE
    assert progress.message == "Enrollment cancelled"
    assert not progress.profile_created
    assert store.load_profile("alice", CONTEXT, Modality.KEYSTROKE) is None
    assert store.load_samples("alice", CONTEXT, Modality.KEYSTROKE) == {}
