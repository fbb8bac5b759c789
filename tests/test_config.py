"""Tests for configuration loading and validation."""
from __future__ import annotations

import pytest

from behavioral_auth.config import AuthConfig, get_config_summary, validate_configuration
from behavioral_auth.exceptions import BehavioralAuthError, ConfigurationError, ValidationError


def test_defaults():
    config = AuthConfig()
    assert config.feature_length == 11
    assert config.vector_length == 34
    assert config.keystroke_samples_required == 5
    assert config.voice_samples_required == 3
    assert config.threshold_floor == 0.03
    assert config.voice_similarity_threshold == 0.75
    assert config.validate() is True


def test_from_env(monkeypatch):
    monkeypatch.setenv("BA_FEATURE_LENGTH", "8")
    monkeypatch.setenv("BA_VOICE_SIMILARITY_THRESHOLD", "0.6")
    monkeypatch.setenv("BA_EPOCHS", "50")
    config = AuthConfig.from_env()

    assert config.feature_length == 8
    assert config.vector_length == 25
    assert config.voice_similarity_threshold == 0.6
    assert config.epochs == 50


def test_from_env_rejects_garbage(monkeypatch):
    monkeypatch.setenv("BA_EPOCHS", "many")
    with pytest.raises(ConfigurationError) as exc_info:
        AuthConfig.from_env()
    assert exc_info.value.context["config_key"] == "BA_EPOCHS"


@pytest.mark.parametrize(
    "overrides",
    [
        {"feature_length": 0},
        {"voice_similarity_threshold": 1.5},
        {"learning_rate": 0.0},
        {"hop_size": 2048, "frame_size": 1024},
        {"n_mfcc": 50, "n_mels": 40},
        {"noise_level": -0.1},
        {"threshold_percentile": 0},
    ],
)
def test_invalid_values_rejected(overrides):
    with pytest.raises(ConfigurationError):
        AuthConfig(**overrides)


def test_module_settings_validate():
    assert validate_configuration() is True


def test_config_summary():
    summary = get_config_summary(AuthConfig(epochs=10))
    assert summary["pipeline"]["epochs"] == 10
    assert "store_dir" in summary["paths"]


def test_error_serialization():
    error = ValidationError("bad sample", field="vector", modality="keystroke")
    data = error.to_dict()

    assert isinstance(error, BehavioralAuthError)
    assert data["error_code"] == "AUTH_001"
    assert data["context"] == {"field": "vector", "modality": "keystroke"}
    assert "AUTH_001" in str(error)
