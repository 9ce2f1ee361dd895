"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any


class ReadingStatus(str, Enum):
    """Terminal state of one device-day after status resolution."""

    online = "Online"
    offline = "Offline"
    error = "Error"
    persisted = "Persisted"


@dataclass(slots=True)
class TelemetrySample:
    """A single intra-day sample as delivered by the telemetry source.

    Counter values are kept as received; validation happens in the sample
    selector so that one malformed sample never discards the whole day.
    """

    timestamp: datetime | str | None
    mileage: Any
    consumption: Any


@dataclass(frozen=True, slots=True)
class CumulativeReading:
    """Authoritative cumulative counters extracted for one device-day."""

    mileage: float
    consumption: float


@dataclass(slots=True)
class DailyReading:
    """One row per device and calendar day."""

    device_id: str
    date: date
    status: ReadingStatus
    cumulative_mileage: float = 0.0
    cumulative_consumption: float = 0.0
    serial_number: str | None = None
    daily_mileage: float = 0.0
    daily_consumption: float = 0.0
    consumption_per_km: float = 0.0
    seeded: bool = False

    @property
    def is_reportable(self) -> bool:
        return not self.seeded and self.daily_mileage > 0 and self.daily_consumption > 0
