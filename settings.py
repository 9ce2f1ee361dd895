from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_STORE_PATH_ENV = "SNAPSHOT_STORE_PATH"
_MAX_DAYS_ENV = "MAX_DAYS_WITHOUT_DATA"
_LOOKBACK_ENV = "LOOKBACK_DAYS"
_CALL_DELAY_ENV = "TELEMETRY_CALL_DELAY_SECONDS"
_SNAPSHOT_MAX_AGE_ENV = "SNAPSHOT_MAX_AGE_DAYS"
_BASE_URL_ENV = "TELEMETRY_BASE_URL"
_USERNAME_ENV = "TELEMETRY_USERNAME"
_PASSWORD_ENV = "TELEMETRY_PASSWORD"
_TIMEOUT_ENV = "TELEMETRY_TIMEOUT_SECONDS"
_TOKEN_TTL_ENV = "TELEMETRY_TOKEN_TTL_MINUTES"
_UTC_OFFSET_ENV = "TELEMETRY_UTC_OFFSET_HOURS"
_DEVICE_MAP_ENV = "DEVICE_MAP_PATH"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    snapshot_store_path: Optional[str]
    max_days_without_data: int
    lookback_days: int
    call_delay_seconds: float
    snapshot_max_age_days: int
    telemetry_base_url: str
    telemetry_username: str
    telemetry_password: str
    telemetry_timeout_seconds: float
    token_ttl_minutes: int
    utc_offset_hours: int
    device_map_path: Optional[str]
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_int_env(name: str, default: int, minimum: int = 0) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _read_float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def _read_utc_offset(default: int) -> int:
    value = os.getenv(_UTC_OFFSET_ENV)
    if value is None:
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if -12 <= parsed <= 14 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        snapshot_store_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/snapshots.json"),
        max_days_without_data=_read_int_env(_MAX_DAYS_ENV, 3),
        lookback_days=_read_int_env(_LOOKBACK_ENV, 3),
        call_delay_seconds=_read_float_env(_CALL_DELAY_ENV, 2.0),
        snapshot_max_age_days=_read_int_env(_SNAPSHOT_MAX_AGE_ENV, 30),
        telemetry_base_url=_read_str_env(
            _BASE_URL_ENV, "https://machinelink-plus.rootcloud.com/rmms"
        ),
        telemetry_username=_read_str_env(_USERNAME_ENV, ""),
        telemetry_password=_read_str_env(_PASSWORD_ENV, ""),
        telemetry_timeout_seconds=_read_float_env(_TIMEOUT_ENV, 600.0),
        token_ttl_minutes=_read_int_env(_TOKEN_TTL_ENV, 40, minimum=1),
        utc_offset_hours=_read_utc_offset(-3),
        device_map_path=_read_optional_env(_DEVICE_MAP_ENV, "./devices.json"),
        log_level=_read_log_level("INFO"),
    )
