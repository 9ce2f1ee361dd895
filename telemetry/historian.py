"""HTTP adapter for the historian telemetry API."""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import httpx

from models.records import TelemetrySample
from settings import get_settings
from telemetry.base import TelemetryError
from telemetry.devices import DeviceRegistry, build_default_registry

logger = logging.getLogger(__name__)

_LOGIN_PATH = "/auth/login"
_HISTORIAN_PATH = "/metrics/historian-data"
_PROPERTIES = "mileage,total_electric_consumption"
_PAGE_SIZE = 200000


def day_window(day: date, utc_offset_hours: int) -> Tuple[str, str]:
    """Return the UTC bounds of a local calendar day as API timestamps."""
    local_tz = timezone(timedelta(hours=utc_offset_hours))
    start = datetime(day.year, day.month, day.day, tzinfo=local_tz).astimezone(timezone.utc)
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    return (
        start.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
        end.strftime("%Y-%m-%dT%H:%M:%S.") + f"{end.microsecond // 1000:03d}Z",
    )


def parse_rows(rows: List[Any]) -> List[TelemetrySample]:
    samples: List[TelemetrySample] = []
    for row in rows:
        if not isinstance(row, (list, tuple)) or len(row) < 2:
            continue
        consumption = row[2] if len(row) > 2 else None
        samples.append(TelemetrySample(timestamp=row[0], mileage=row[1], consumption=consumption))
    return samples


class HistorianClient:
    """Token-authenticated client returning one day of samples per call."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        registry: DeviceRegistry,
        timeout: float = 600.0,
        token_ttl_minutes: int = 40,
        utc_offset_hours: int = -3,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._username = username
        self._password = password
        self._registry = registry
        self._token_ttl = token_ttl_minutes * 60
        self._utc_offset_hours = utc_offset_hours
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    async def aclose(self) -> None:
        await self._client.aclose()

    def serial_number_of(self, device_id: str) -> str:
        return self._registry.serial_number_of(device_id)

    def is_known_device(self, device_id: str) -> bool:
        return self._registry.is_known_device(device_id)

    async def fetch_day(self, device_id: str, day: date) -> Optional[List[TelemetrySample]]:
        token = await self._ensure_token()
        start_time, end_time = day_window(day, self._utc_offset_hours)
        params = {
            "startTime": start_time,
            "endTime": end_time,
            "pageIndex": 1,
            "pageSize": _PAGE_SIZE,
            "properties": _PROPERTIES,
        }
        payload = await self._request_json(
            "GET",
            f"{_HISTORIAN_PATH}/{device_id}",
            params=params,
            headers={"access_token": token, "Content-Type": "application/json"},
        )

        if not payload.get("success"):
            raise TelemetryError(
                f"Historian request for device {device_id} failed: "
                f"{payload.get('errMessage') or 'unknown error'}"
            )

        data = payload.get("data")
        if not isinstance(data, dict):
            raise TelemetryError(f"Historian response for device {device_id} has no data object.")

        inner = data.get("payload")
        if inner is None:
            logger.info(
                "No telemetry for day", extra={"device_id": device_id, "date": day.isoformat()}
            )
            return None

        rows = inner.get("rows") if isinstance(inner, dict) else None
        if rows is None:
            rows = []
        if not isinstance(rows, list):
            raise TelemetryError(f"Historian rows for device {device_id} are not a list.")

        return parse_rows(rows)

    async def _ensure_token(self) -> str:
        if self._token is not None and time.monotonic() < self._token_expires_at:
            return self._token

        logger.info("Requesting historian access token")
        payload = await self._request_json(
            "POST",
            _LOGIN_PATH,
            json={"username": self._username, "password": self._password, "encrypted": True},
            headers={"Content-Type": "application/json", "language": "en-US"},
        )
        if not payload.get("success"):
            raise TelemetryError(
                f"Historian login failed: {payload.get('errMessage') or 'unknown error'}"
            )

        token = ((payload.get("data") or {}).get("userInfoClient") or {}).get("access_token")
        if not isinstance(token, str) or not token:
            raise TelemetryError("Historian login response is missing an access token.")

        self._token = token
        self._token_expires_at = time.monotonic() + self._token_ttl
        return token

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise TelemetryError(f"Historian request to {url} timed out.") from exc
        except httpx.HTTPError as exc:
            raise TelemetryError(f"Historian request to {url} failed: {exc}") from exc
        except ValueError as exc:
            raise TelemetryError(f"Historian response from {url} is not valid JSON.") from exc

        if not isinstance(payload, dict):
            raise TelemetryError(f"Historian response from {url} has an unexpected format.")
        return payload


@lru_cache
def build_default_source() -> HistorianClient:
    settings = get_settings()
    return HistorianClient(
        base_url=settings.telemetry_base_url,
        username=settings.telemetry_username,
        password=settings.telemetry_password,
        registry=build_default_registry(),
        timeout=settings.telemetry_timeout_seconds,
        token_ttl_minutes=settings.token_ttl_minutes,
        utc_offset_hours=settings.utc_offset_hours,
    )
