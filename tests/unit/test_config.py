"""Unit tests for config validation and the typed Settings view."""

import pytest

from autosender.config import DEFAULT_CONFIG, Settings, validate_config_value
from autosender.repository import get_config, set_config


@pytest.mark.unit
def test_init_db_seeds_defaults(conn):
    assert get_config(conn) == DEFAULT_CONFIG


@pytest.mark.unit
def test_set_config_round_trip(conn):
    set_config(conn, "max_retries", "5")
    set_config(conn, "retry_jitter_factor", "0.25")
    cfg = get_config(conn)
    assert cfg["max_retries"] == "5"
    settings = Settings.from_config(cfg)
    assert settings.max_retries == 5
    assert settings.retry_jitter_factor == 0.25


@pytest.mark.unit
def test_set_config_rejects_unknown_key(conn):
    with pytest.raises(ValueError, match="Allowed keys"):
        set_config(conn, "colour", "blue")


@pytest.mark.unit
@pytest.mark.parametrize("key,value", [
    ("max_retries", "three"),
    ("max_retries", "-1"),
    ("poll_interval_ms", "1.5"),
    ("retry_jitter_factor", "lots"),
    ("submission_api_url", "   "),
])
def test_validate_rejects_bad_values(key, value):
    with pytest.raises(ValueError):
        validate_config_value(key, value)


@pytest.mark.unit
@pytest.mark.parametrize("key", [
    "lookahead", "cb_half_open_max_attempts", "poll_interval_ms", "lock_ttl_seconds", "cb_failure_threshold",
])
def test_zero_rejected_where_it_would_stall(key):
    with pytest.raises(ValueError, match=">= 1"):
        validate_config_value(key, "0")
    assert validate_config_value(key, "1") == "1"


@pytest.mark.unit
def test_zero_retries_is_allowed():
    assert validate_config_value("max_retries", "0") == "0"
    assert validate_config_value("retry_jitter_factor", "0") == "0"


@pytest.mark.unit
def test_settings_builders():
    settings = Settings.from_config({"retry_base_delay_ms": "200", "cb_failure_threshold": "2", "ignored": "x"})
    retry = settings.retry_config()
    breaker = settings.breaker_config()
    assert retry.base_delay_ms == 200
    assert retry.max_retries == 3
    assert breaker.failure_threshold == 2
    assert breaker.open_duration_ms == 30000


@pytest.mark.unit
def test_env_selects_database(monkeypatch):
    from autosender.config import db_path, api_key

    monkeypatch.setenv("AUTOSENDER_DB", "/tmp/other.db")
    monkeypatch.setenv("AUTOSENDER_API_KEY", "secret")
    assert db_path() == "/tmp/other.db"
    assert api_key() == "secret"
