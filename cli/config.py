from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 3600.0
DEFAULT_LOOKBACK_DAYS = 3

_BASE_URL_ENV = "API_BASE_URL"
_TIMEOUT_ENV = "CLI_REQUEST_TIMEOUT"
_LOOKBACK_ENV = "CLI_LOOKBACK_DAYS"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = DEFAULT_TIMEOUT
    lookback_days: int = DEFAULT_LOOKBACK_DAYS


def _read_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_lookback(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def load_config(
    base_url: Optional[str] = None,
    request_timeout: Optional[float] = None,
    lookback_days: Optional[int] = None,
) -> CLIConfig:
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    if request_timeout is None:
        request_timeout = _read_float(os.getenv(_TIMEOUT_ENV), DEFAULT_TIMEOUT)
    if lookback_days is None:
        lookback_days = _read_lookback(os.getenv(_LOOKBACK_ENV), DEFAULT_LOOKBACK_DAYS)
    return CLIConfig(
        base_url=url.rstrip("/"),
        request_timeout=request_timeout,
        lookback_days=lookback_days,
    )
