"""Last-known cumulative readings per device, used to backfill missing days."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, List, Optional

from app.schemas import PersistedSnapshot
from datastore.snapshot_table import SnapshotTable, build_default_table
from models.records import DailyReading, ReadingStatus
from settings import get_settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_DAYS_WITHOUT_DATA = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PersistenceStore:
    """Continuity policy on top of a snapshot table.

    ``put`` always overwrites, zero readings included: the eligibility check
    needs the last day that was touched, not only the last day with data.
    """

    def __init__(
        self,
        table: SnapshotTable,
        max_days_without_data: int = DEFAULT_MAX_DAYS_WITHOUT_DATA,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.table = table
        self.max_days_without_data = max_days_without_data
        self._clock = clock

    def get(self, device_id: str) -> Optional[PersistedSnapshot]:
        return self.table.get_item(device_id)

    def put(self, device_id: str, reading: DailyReading) -> PersistedSnapshot:
        snapshot = PersistedSnapshot(
            device_id=device_id,
            date=reading.date,
            cumulative_mileage=reading.cumulative_mileage,
            cumulative_consumption=reading.cumulative_consumption,
            saved_at=self._clock(),
        )
        self.table.put_item(snapshot)
        if reading.cumulative_mileage > 0 and reading.cumulative_consumption > 0:
            logger.debug(
                "Snapshot saved",
                extra={
                    "device_id": device_id,
                    "date": reading.date.isoformat(),
                    "mileage": reading.cumulative_mileage,
                    "consumption": reading.cumulative_consumption,
                },
            )
        else:
            logger.debug(
                "Zero snapshot saved for continuity",
                extra={"device_id": device_id, "date": reading.date.isoformat()},
            )
        return snapshot

    def is_eligible(self, device_id: str, current_date: date) -> bool:
        snapshot = self.get(device_id)
        if snapshot is None:
            return False
        gap = (current_date - snapshot.date).days
        return gap <= self.max_days_without_data

    def materialize_fallback(
        self, device_id: str, current_date: date
    ) -> Optional[DailyReading]:
        if not self.is_eligible(device_id, current_date):
            return None
        snapshot = self.get(device_id)
        if snapshot is None:
            return None
        return DailyReading(
            device_id=device_id,
            date=current_date,
            status=ReadingStatus.persisted,
            cumulative_mileage=snapshot.cumulative_mileage,
            cumulative_consumption=snapshot.cumulative_consumption,
        )

    def cleanup(self, max_age_days: int) -> List[str]:
        """Remove snapshots saved more than ``max_age_days`` ago."""
        threshold = self._clock() - timedelta(days=max_age_days)
        removed: List[str] = []
        for snapshot in self.table.scan():
            saved_at = snapshot.saved_at
            if saved_at.tzinfo is None:
                saved_at = saved_at.replace(tzinfo=timezone.utc)
            if saved_at < threshold:
                self.table.delete_item(snapshot.device_id)
                removed.append(snapshot.device_id)

        if removed:
            logger.info(
                "Stale snapshots removed",
                extra={"removed": len(removed), "reason": f"older than {max_age_days} days"},
            )
        return sorted(removed)

    def reset(self) -> None:
        self.table.clear()
        logger.info("Snapshot store reset")

    def snapshots(self) -> List[PersistedSnapshot]:
        return sorted(self.table.scan(), key=lambda snapshot: snapshot.device_id)

    def devices(self) -> List[str]:
        return [snapshot.device_id for snapshot in self.snapshots()]


@lru_cache
def build_default_store() -> PersistenceStore:
    settings = get_settings()
    return PersistenceStore(
        table=build_default_table(),
        max_days_without_data=settings.max_days_without_data,
    )
