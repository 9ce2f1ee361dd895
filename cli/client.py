from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the aggregator service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.request_timeout)

    def close(self) -> None:
        self._client.close()

    def collect(
        self,
        device_ids: List[str],
        start_date: date,
        end_date: date,
        lookback_days: Optional[int] = None,
    ) -> Dict[str, Any]:
        if not device_ids:
            raise typer.BadParameter("At least one device id is required.")
        if start_date > end_date:
            raise typer.BadParameter("Start date must not be after end date.")

        body: Dict[str, Any] = {
            "device_ids": device_ids,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
        }
        if lookback_days is not None:
            body["lookback_days"] = lookback_days
        try:
            response = self._client.post("/collections", json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def list_snapshots(self) -> Dict[str, Any]:
        try:
            response = self._client.get("/snapshots")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def cleanup_snapshots(self, max_age_days: Optional[int] = None) -> List[str]:
        params = {} if max_age_days is None else {"max_age_days": max_age_days}
        try:
            response = self._client.post("/snapshots/cleanup", params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        removed = response.json().get("removed")
        if not isinstance(removed, list):
            raise typer.BadParameter("Unexpected response payload when cleaning snapshots.")
        return removed

    def reset_snapshots(self) -> None:
        try:
            response = self._client.delete("/snapshots")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
