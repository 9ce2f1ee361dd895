from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Union

import pytest

from datastore.snapshot_table import SnapshotTable
from models.records import TelemetrySample
from services.persistence import PersistenceStore
from telemetry.base import TelemetryError

DayAnswer = Union[List[TelemetrySample], None, Exception]

FIXED_NOW = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


class FakeTelemetrySource:
    """In-memory telemetry source answering from a per device-day script.

    Days missing from the script answer "no data".
    """

    def __init__(
        self,
        answers: Optional[Dict[tuple[str, date], DayAnswer]] = None,
        serials: Optional[Dict[str, str]] = None,
    ) -> None:
        self.answers: Dict[tuple[str, date], DayAnswer] = dict(answers or {})
        self.serials = dict(serials or {})
        self.calls: List[tuple[str, date]] = []

    async def fetch_day(self, device_id: str, day: date) -> Optional[List[TelemetrySample]]:
        self.calls.append((device_id, day))
        answer = self.answers.get((device_id, day))
        if isinstance(answer, Exception):
            raise answer
        return answer

    def serial_number_of(self, device_id: str) -> str:
        return self.serials.get(device_id, "unknown")

    def is_known_device(self, device_id: str) -> bool:
        return device_id in self.serials


def samples(*values: tuple[float, float]) -> List[TelemetrySample]:
    return [
        TelemetrySample(
            timestamp=datetime(2024, 1, 1, hour, tzinfo=timezone.utc),
            mileage=mileage,
            consumption=consumption,
        )
        for hour, (mileage, consumption) in enumerate(values)
    ]


@pytest.fixture()
def make_source() -> Callable[..., FakeTelemetrySource]:
    return FakeTelemetrySource


@pytest.fixture()
def make_samples() -> Callable[..., List[TelemetrySample]]:
    return samples


@pytest.fixture()
def transient_error() -> TelemetryError:
    return TelemetryError("timed out")


@pytest.fixture()
def store() -> PersistenceStore:
    return PersistenceStore(
        table=SnapshotTable(name="test"),
        max_days_without_data=3,
        clock=lambda: FIXED_NOW,
    )
