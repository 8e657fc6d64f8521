from __future__ import annotations

import pydantic
import pytest

from gitstream.config import CLEARNODE_URLS, Settings
from gitstream.errors import RequestTimeout, ValidationError
from gitstream.logging import _redact_secrets


def test_defaults_pick_sandbox(monkeypatch):
    monkeypatch.delenv("CLEARNODE_URL", raising=False)
    monkeypatch.delenv("CLEARNODE_SANDBOX", raising=False)
    s = Settings(_env_file=None)
    assert s.resolved_clearnode_url == CLEARNODE_URLS["sandbox"]
    assert s.session_asset == "usdc"
    assert s.min_distribution_amount == 10_000_000


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CLEARNODE_SANDBOX", "false")
    monkeypatch.setenv("CLEARNODE_MAX_RECONNECTS", "2")
    monkeypatch.setenv("LOG_FORMAT", "Console")
    monkeypatch.delenv("CLEARNODE_URL", raising=False)
    s = Settings(_env_file=None)
    assert s.resolved_clearnode_url == CLEARNODE_URLS["production"]
    assert s.max_reconnect_attempts == 2
    assert s.log_format == "console"


def test_explicit_url_wins_and_must_be_websocket():
    assert Settings(_env_file=None, clearnode_url="wss://node.example/ws").resolved_clearnode_url == "wss://node.example/ws"
    with pytest.raises(pydantic.ValidationError):
        Settings(_env_file=None, clearnode_url="https://node.example")


def test_operator_key_is_secret(settings):
    assert settings.operator_key().startswith("0x")
    assert settings.operator_key() not in repr(settings)


def test_problem_body():
    problem = ValidationError("bad tiers", details={"total": 90}).to_problem()
    assert problem == {
        "type": "https://docs.gitstream.dev/errors#validation_error",
        "title": "Validation Failed",
        "status": 400,
        "code": "validation_error",
        "detail": "bad tiers",
        "details": {"total": 90},
    }
    timeout = RequestTimeout()
    assert (timeout.status_code, timeout.kind, str(timeout)) == (504, "timeout", "Request timeout")


def test_secrets_are_redacted():
    event = _redact_secrets(None, "info", {"event": "x", "private_key": "0xabc", "signature": "0xdef", "amount": "1"})
    assert event == {"event": "x", "private_key": "***", "signature": "***", "amount": "1"}
