import os
from dataclasses import dataclass
from typing import Dict, Mapping

from .circuit_breaker import CircuitBreakerConfig
from .retry import RetryConfig

DB_ENV = "AUTOSENDER_DB"
API_KEY_ENV = "AUTOSENDER_API_KEY"
DEFAULT_DB_FILE = "autosender.db"

DEFAULT_CONFIG = {
    "max_retries": "3",
    "poll_interval_ms": "5000",
    "lock_ttl_seconds": "300",
    "lookahead": "10",
    "retry_max_retries": "3",
    "retry_base_delay_ms": "1000",
    "retry_max_delay_ms": "30000",
    "retry_jitter_factor": "0.1",
    "cb_failure_threshold": "5",
    "cb_failure_window_ms": "60000",
    "cb_open_duration_ms": "30000",
    "cb_half_open_max_attempts": "1",
    "submission_api_url": "https://api.jabinja.com",
    "storage_dir": "./storage",
}

ALLOWED_CONFIG_KEYS = set(DEFAULT_CONFIG.keys())

FLOAT_KEYS = {"retry_jitter_factor"}
STRING_KEYS = {"submission_api_url", "storage_dir"}
INT_KEYS = ALLOWED_CONFIG_KEYS - FLOAT_KEYS - STRING_KEYS

# Keys where zero would stall the worker.
POSITIVE_KEYS = {
    "poll_interval_ms", "lock_ttl_seconds", "lookahead",
    "cb_failure_threshold", "cb_half_open_max_attempts",
}


def db_path() -> str:
    return os.environ.get(DB_ENV, DEFAULT_DB_FILE)


def api_key() -> str:
    return os.environ.get(API_KEY_ENV, "")


def validate_config_value(key: str, value: str) -> str:
    if key not in ALLOWED_CONFIG_KEYS:
        raise ValueError(f"Allowed keys: {', '.join(sorted(ALLOWED_CONFIG_KEYS))}")
    value = str(value).strip()
    if key in STRING_KEYS:
        if not value:
            raise ValueError(f"{key} cannot be empty.")
        return value
    try:
        number = float(value) if key in FLOAT_KEYS else int(value)
    except ValueError:
        kind = "a number" if key in FLOAT_KEYS else "an integer"
        raise ValueError(f"{key} must be {kind}.")
    if key in POSITIVE_KEYS and number < 1:
        raise ValueError(f"{key} must be >= 1.")
    if number < 0:
        raise ValueError(f"{key} must be >= 0.")
    return value


@dataclass(frozen=True)
class Settings:
    max_retries: int = 3
    poll_interval_ms: int = 5000
    lock_ttl_seconds: int = 300
    lookahead: int = 10
    retry_max_retries: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 30000
    retry_jitter_factor: float = 0.1
    cb_failure_threshold: int = 5
    cb_failure_window_ms: int = 60000
    cb_open_duration_ms: int = 30000
    cb_half_open_max_attempts: int = 1
    submission_api_url: str = "https://api.jabinja.com"
    storage_dir: str = "./storage"

    @classmethod
    def from_config(cls, cfg: Mapping[str, str]) -> "Settings":
        merged: Dict[str, str] = dict(DEFAULT_CONFIG)
        merged.update({k: v for k, v in cfg.items() if k in ALLOWED_CONFIG_KEYS})
        values = {}
        for key, raw in merged.items():
            if key in FLOAT_KEYS:
                values[key] = float(raw)
            elif key in INT_KEYS:
                values[key] = int(raw)
            else:
                values[key] = raw
        return cls(**values)

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.retry_max_retries,
            base_delay_ms=self.retry_base_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
            jitter_factor=self.retry_jitter_factor,
        )

    def breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.cb_failure_threshold,
            failure_window_ms=self.cb_failure_window_ms,
            open_duration_ms=self.cb_open_duration_ms,
            half_open_max_attempts=self.cb_half_open_max_attempts,
        )
