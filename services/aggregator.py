"""Period filtering, report filtering and fleet aggregation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List

from models.records import DailyReading, ReadingStatus
from services.deltas import group_by_device

logger = logging.getLogger(__name__)


@dataclass
class FleetSummary:
    """Computed statistics for a set of daily readings."""

    total_distance: float = 0.0
    total_consumption: float = 0.0
    avg_distance: float = 0.0
    avg_consumption: float = 0.0
    avg_consumption_per_km: float = 0.0
    online_count: int = 0
    offline_count: int = 0
    persisted_count: int = 0
    error_count: int = 0
    reading_count: int = 0
    reportable_count: int = 0


def filter_by_period(
    readings: Iterable[DailyReading], start_date: date, end_date: date
) -> List[DailyReading]:
    """Drop rows outside ``[start_date, end_date]``, i.e. the lookback prefix."""
    return [reading for reading in readings if start_date <= reading.date <= end_date]


def filter_reportable(readings: Iterable[DailyReading]) -> List[DailyReading]:
    """Keep rows with strictly positive distance and consumption."""
    kept: List[DailyReading] = []
    for reading in readings:
        if reading.is_reportable:
            kept.append(reading)
            continue
        logger.debug(
            "Reading excluded from report",
            extra={
                "device_id": reading.device_id,
                "date": reading.date.isoformat(),
                "status": reading.status.value,
                "mileage": reading.daily_mileage,
                "consumption": reading.daily_consumption,
            },
        )
    return kept


class Aggregator:
    """Pure aggregation component that can be unit tested in isolation."""

    def aggregate(self, readings: Iterable[DailyReading]) -> FleetSummary:
        """Summarize period readings.

        Status counters cover every reading passed in; the numeric figures
        only cover the report-ready subset. ``avg_consumption_per_km`` is the
        mean of the per-day ratios, not total consumption over total distance.
        """
        period = list(readings)
        summary = FleetSummary(reading_count=len(period))

        for reading in period:
            if reading.status is ReadingStatus.online:
                summary.online_count += 1
            elif reading.status is ReadingStatus.offline:
                summary.offline_count += 1
            elif reading.status is ReadingStatus.persisted:
                summary.persisted_count += 1
            elif reading.status is ReadingStatus.error:
                summary.error_count += 1

        reportable = filter_reportable(period)
        count = len(reportable)
        summary.reportable_count = count
        if not count:
            return summary

        ratio_total = 0.0
        for reading in reportable:
            summary.total_distance += reading.daily_mileage
            summary.total_consumption += reading.daily_consumption
            ratio_total += reading.consumption_per_km

        summary.avg_distance = summary.total_distance / count
        summary.avg_consumption = summary.total_consumption / count
        summary.avg_consumption_per_km = ratio_total / count
        return summary

    def aggregate_by_device(self, readings: Iterable[DailyReading]) -> Dict[str, FleetSummary]:
        groups = group_by_device(readings)
        return {device_id: self.aggregate(groups[device_id]) for device_id in sorted(groups)}
