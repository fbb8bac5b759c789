"""Shared pytest fixtures."""
from __future__ import annotations

import string
from typing import List

import numpy as np
import pytest

from behavioral_auth.config import AuthConfig
from behavioral_auth.data_models import KeystrokeEvent
from behavioral_auth.integrity_store import IntegrityStore
from behavioral_auth.keystroke_features import extract_keystroke_features
from behavioral_auth.secrets_provider import StaticSecretProvider
from behavioral_auth.storage_backends import InMemoryBackend

CONTEXT = "https://example.com"
SAMPLE_RATE = 16000


def make_events(
    rng: np.random.Generator,
    n_keys: int = 12,
    hold_ms: float = 90.0,
    gap_ms: float = 160.0,
    jitter_ms: float = 8.0,
) -> List[KeystrokeEvent]:
    """Press/release events for ``n_keys`` distinct letters typed at a steady rhythm."""
    events = []
    t = 0.0
    for key in string.ascii_lowercase[:n_keys]:
        hold = hold_ms + rng.uniform(-jitter_ms, jitter_ms)
        events.append(KeystrokeEvent(key, "press", t))
        events.append(KeystrokeEvent(key, "release", t + hold))
        t += gap_ms + rng.uniform(-jitter_ms, jitter_ms)
    return events


def make_keystroke_vector(rng: np.random.Generator, feature_length: int = 11) -> np.ndarray:
    return extract_keystroke_features(make_events(rng), feature_length).vector


def make_voiced_audio(
    rng: np.random.Generator,
    f0: float = 150.0,
    seconds: float = 1.0,
    sample_rate: int = SAMPLE_RATE,
) -> np.ndarray:
    """Harmonic tone with a little noise, standing in for a spoken phrase."""
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    f = f0 * (1.0 + rng.uniform(-0.02, 0.02))
    audio = (
        0.3 * np.sin(2 * np.pi * f * t)
        + 0.15 * np.sin(2 * np.pi * 2 * f * t)
        + 0.08 * np.sin(2 * np.pi * 3 * f * t)
    )
    return audio + rng.normal(0.0, 0.01, size=t.shape)


def make_noise_audio(
    rng: np.random.Generator, seconds: float = 1.0, sample_rate: int = SAMPLE_RATE
) -> np.ndarray:
    return rng.uniform(-0.5, 0.5, size=int(seconds * sample_rate))


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def fast_config() -> AuthConfig:
    """Default pipeline parameters with fewer epochs and a fixed seed."""
    return AuthConfig(epochs=100, random_seed=7)


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def store(backend: InMemoryBackend) -> IntegrityStore:
    return IntegrityStore(backend, StaticSecretProvider(b"test-installation-secret"))


@pytest.fixture
def keystroke_samples(rng: np.random.Generator) -> List[np.ndarray]:
    return [make_keystroke_vector(rng) for _ in range(5)]
