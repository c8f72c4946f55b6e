"""Settings tests — env loading and the production guard."""

import pytest
from pydantic import ValidationError

from hassstream.config import Settings
from hassstream.realtime.broadcaster import BroadcastLimits


def test_defaults_match_broadcast_constants(monkeypatch):
    for var in ("HASSSTREAM_MAX_CLIENTS", "HASSSTREAM_ENVIRONMENT"):
        monkeypatch.delenv(var, raising=False)

    limits = BroadcastLimits.from_settings(Settings())
    assert limits == BroadcastLimits()


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("HASSSTREAM_MAX_CLIENTS", "5")
    monkeypatch.setenv("HASSSTREAM_HASS_TOKEN", "abc")

    s = Settings()
    assert s.max_clients == 5
    assert s.hass_token == "abc"


def test_production_requires_token(monkeypatch):
    monkeypatch.setenv("HASSSTREAM_ENVIRONMENT", "production")
    monkeypatch.delenv("HASSSTREAM_HASS_TOKEN", raising=False)

    with pytest.raises(ValidationError, match="HASSSTREAM_HASS_TOKEN"):
        Settings()


def test_production_with_token_ok(monkeypatch):
    monkeypatch.setenv("HASSSTREAM_ENVIRONMENT", "production")
    monkeypatch.setenv("HASSSTREAM_HASS_TOKEN", "long-lived-token")

    assert Settings().environment == "production"


def test_debug_forces_debug_log_level(monkeypatch):
    monkeypatch.setenv("HASSSTREAM_DEBUG", "true")
    monkeypatch.setenv("HASSSTREAM_LOG_LEVEL", "WARNING")

    assert Settings().effective_log_level == "DEBUG"


def test_log_level_used_when_not_debugging(monkeypatch):
    monkeypatch.delenv("HASSSTREAM_DEBUG", raising=False)
    monkeypatch.setenv("HASSSTREAM_LOG_LEVEL", "WARNING")

    assert Settings().effective_log_level == "WARNING"
