"""Tests for the shared decorators and helpers."""
from __future__ import annotations

import json

import pytest
import structlog

from behavioral_auth.exceptions import ModelError, ValidationError
from behavioral_auth.utils import clamp, configure_logging, generate_session_id, retry, timer


def test_retry_passes_attempt_number():
    seen = []

    @retry(max_attempts=3, exceptions=(ModelError,), pass_attempt=True)
    def flaky(attempt=0):
        seen.append(attempt)
        if attempt < 2:
            raise ModelError("diverged")
        return "ok"

    assert flaky() == "ok"
    assert seen == [0, 1, 2]


def test_retry_reraises_last_error():
    calls = []

    @retry(max_attempts=2, exceptions=(ModelError,))
    def always_fails():
        calls.append(1)
        raise ModelError("diverged", epoch=len(calls))

    with pytest.raises(ModelError) as exc_info:
        always_fails()
    assert len(calls) == 2
    assert exc_info.value.context["epoch"] == 2


def test_retry_ignores_other_exceptions():
    calls = []

    @retry(max_attempts=3, exceptions=(ModelError,))
    def invalid():
        calls.append(1)
        raise ValidationError("bad input")

    with pytest.raises(ValidationError):
        invalid()
    assert len(calls) == 1


def test_retry_rejects_zero_attempts():
    with pytest.raises(ValueError):
        retry(max_attempts=0)


def test_timer_preserves_result_and_errors():
    @timer
    def double(x):
        return 2 * x

    @timer
    def broken():
        raise ValidationError("nope")

    assert double(4) == 8
    assert double.__name__ == "double"
    with pytest.raises(ValidationError):
        broken()


def test_helpers():
    assert clamp(1.5) == 1.0
    assert clamp(-0.2) == 0.0
    assert clamp(5.0, 0.0, 10.0) == 5.0
    assert generate_session_id("keystroke").startswith("keystroke_")
    assert generate_session_id() != generate_session_id()


def test_logging_goes_to_stderr(capsys):
    configure_logging("INFO", structured=True)
    structlog.get_logger("behavioral_auth.test").info("Stage completed", stage="demo")
    captured = capsys.readouterr()

    assert captured.out == ""
    event = json.loads(captured.err.strip().splitlines()[-1])
    assert event["event"] == "Stage completed"
    assert event["level"] == "info"
