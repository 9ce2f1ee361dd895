"""Unit tests for the filters and the aggregation logic."""

from __future__ import annotations

from datetime import date

import pytest

from models.records import DailyReading, ReadingStatus
from services.aggregator import Aggregator, filter_by_period, filter_reportable


def _reading(
    day: int,
    mileage: float,
    consumption: float,
    status: ReadingStatus = ReadingStatus.online,
    device_id: str = "dev-a",
    seeded: bool = False,
) -> DailyReading:
    """Helper to build derived readings without running the delta computer."""

    return DailyReading(
        device_id=device_id,
        date=date(2024, 1, day),
        status=status,
        daily_mileage=mileage,
        daily_consumption=consumption,
        consumption_per_km=consumption / mileage if mileage > 0 else 0.0,
        seeded=seeded,
    )


def test_aggregate_empty_iterable_returns_default_summary() -> None:
    summary = Aggregator().aggregate([])

    assert summary.total_distance == 0
    assert summary.avg_consumption_per_km == 0
    assert summary.reading_count == 0
    assert summary.online_count == 0


def test_filter_by_period_strips_lookback_prefix() -> None:
    readings = [_reading(day, 10, 1) for day in range(2, 11)]

    kept = filter_by_period(readings, date(2024, 1, 5), date(2024, 1, 10))

    assert [reading.date.day for reading in kept] == [5, 6, 7, 8, 9, 10]


def test_filter_reportable_requires_both_values_positive() -> None:
    readings = [
        _reading(1, 10, 2),
        _reading(2, 0, 2),
        _reading(3, 10, 0),
        _reading(4, 0, 0, status=ReadingStatus.offline),
        _reading(5, 500, 60, seeded=True),
    ]

    kept = filter_reportable(readings)

    assert [reading.date.day for reading in kept] == [1]
    assert all(r.daily_mileage > 0 and r.daily_consumption > 0 for r in kept)


def test_aggregate_averages_per_day_ratios() -> None:
    readings = [
        _reading(1, 100, 50),
        _reading(2, 10, 1),
    ]

    summary = Aggregator().aggregate(readings)

    assert summary.total_distance == 110
    assert summary.total_consumption == 51
    assert summary.avg_distance == 55
    assert summary.avg_consumption == 25.5
    assert summary.avg_consumption_per_km == pytest.approx((0.5 + 0.1) / 2)
    assert summary.avg_consumption_per_km != pytest.approx(51 / 110)


def test_status_counts_cover_unreportable_readings() -> None:
    readings = [
        _reading(1, 40, 8),
        _reading(2, 0, 0, status=ReadingStatus.persisted),
        _reading(3, 0, 0, status=ReadingStatus.offline),
        _reading(4, 0, 0, status=ReadingStatus.error),
        _reading(5, 0, 0),
    ]

    summary = Aggregator().aggregate(readings)

    assert summary.online_count == 2
    assert summary.persisted_count == 1
    assert summary.offline_count == 1
    assert summary.error_count == 1
    assert summary.reading_count == 5
    assert summary.reportable_count == 1
    assert summary.total_distance == 40
    assert summary.avg_distance == 40


def test_aggregate_by_device() -> None:
    readings = [
        _reading(1, 10, 2, device_id="b"),
        _reading(1, 20, 4, device_id="a"),
        _reading(2, 30, 3, device_id="a"),
    ]

    per_device = Aggregator().aggregate_by_device(readings)

    assert list(per_device) == ["a", "b"]
    assert per_device["a"].total_distance == 50
    assert per_device["b"].total_consumption == 2
