"""Pydantic schemas for the HTTP API layer and the snapshot store."""

from __future__ import annotations

import datetime as dt
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from models.records import DailyReading, ReadingStatus


class PersistedSnapshot(BaseModel):
    """Last known cumulative counters for a device."""

    device_id: str
    date: dt.date
    cumulative_mileage: float = Field(0.0, ge=0)
    cumulative_consumption: float = Field(0.0, ge=0)
    saved_at: dt.datetime


class CollectionRequest(BaseModel):
    """Payload accepted by the collection endpoint."""

    device_ids: List[str] = Field(..., min_length=1)
    start_date: dt.date
    end_date: dt.date
    lookback_days: Optional[int] = Field(
        default=None, ge=0, description="Days fetched before start_date to seed deltas."
    )

    @model_validator(mode="after")
    def _check_range(self) -> "CollectionRequest":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date.")
        return self


class DailyReadingOut(BaseModel):
    """Report-ready daily row."""

    device_id: str
    serial_number: Optional[str] = None
    date: dt.date
    status: ReadingStatus
    cumulative_mileage: float
    cumulative_consumption: float
    daily_mileage: float
    daily_consumption: float
    consumption_per_km: float

    @classmethod
    def from_reading(cls, reading: DailyReading) -> "DailyReadingOut":
        return cls(
            device_id=reading.device_id,
            serial_number=reading.serial_number,
            date=reading.date,
            status=reading.status,
            cumulative_mileage=reading.cumulative_mileage,
            cumulative_consumption=reading.cumulative_consumption,
            daily_mileage=reading.daily_mileage,
            daily_consumption=reading.daily_consumption,
            consumption_per_km=reading.consumption_per_km,
        )


class FleetSummaryOut(BaseModel):
    """Aggregate metrics over report-ready readings."""

    total_distance: float = 0.0
    total_consumption: float = 0.0
    avg_distance: float = 0.0
    avg_consumption: float = 0.0
    avg_consumption_per_km: float = 0.0
    online_count: int = Field(0, ge=0)
    offline_count: int = Field(0, ge=0)
    persisted_count: int = Field(0, ge=0)
    error_count: int = Field(0, ge=0)
    reading_count: int = Field(0, ge=0)
    reportable_count: int = Field(0, ge=0)


class CollectionResponse(BaseModel):
    """Result of a collection run."""

    readings: List[DailyReadingOut] = Field(default_factory=list)
    summary: FleetSummaryOut
    devices: Dict[str, FleetSummaryOut] = Field(default_factory=dict)
    cancelled: bool = False


class PersistenceInfo(BaseModel):
    """Overview of the snapshot store contents."""

    total_devices: int = Field(..., ge=0)
    devices: List[str] = Field(default_factory=list)
    snapshots: List[PersistedSnapshot] = Field(default_factory=list)


class CleanupResponse(BaseModel):
    """Devices whose snapshots were removed by a cleanup sweep."""

    removed: List[str] = Field(default_factory=list)
