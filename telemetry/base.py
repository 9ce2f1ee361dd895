"""Interface consumed by the collection orchestrator."""

from __future__ import annotations

from datetime import date
from typing import List, Optional, Protocol

from models.records import TelemetrySample


class TelemetryError(Exception):
    """Transient failure while querying the telemetry source."""


class TelemetrySource(Protocol):
    """Structural interface of a telemetry backend.

    ``fetch_day`` returns the samples of one local calendar day in ascending
    timestamp order, ``None`` when the source reports no data for that day,
    and raises ``TelemetryError`` on transient failures.
    """

    async def fetch_day(self, device_id: str, day: date) -> Optional[List[TelemetrySample]]:
        ...

    def serial_number_of(self, device_id: str) -> str:
        ...

    def is_known_device(self, device_id: str) -> bool:
        ...
