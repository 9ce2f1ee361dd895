"""Conversion of cumulative counters into day-over-day deltas."""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List

from models.records import DailyReading


def consumption_per_km(daily_mileage: float, daily_consumption: float) -> float:
    if daily_mileage > 0:
        return daily_consumption / daily_mileage
    return 0.0


def group_by_device(readings: Iterable[DailyReading]) -> Dict[str, List[DailyReading]]:
    groups: Dict[str, List[DailyReading]] = {}
    for reading in readings:
        groups.setdefault(reading.device_id, []).append(reading)
    return groups


def compute_daily_deltas(readings: Iterable[DailyReading]) -> List[DailyReading]:
    """Fill the derived fields of every reading and return new instances.

    The first reading of each device has no baseline, so it absorbs its whole
    cumulative value and is marked ``seeded``. Later readings are clamped at
    zero to tolerate counter resets.
    """

    groups = group_by_device(readings)
    derived: List[DailyReading] = []
    for device_id in sorted(groups):
        previous: DailyReading | None = None
        for reading in sorted(groups[device_id], key=lambda item: item.date):
            if previous is None:
                daily_mileage = reading.cumulative_mileage
                daily_consumption = reading.cumulative_consumption
                seeded = True
            else:
                daily_mileage = max(0.0, reading.cumulative_mileage - previous.cumulative_mileage)
                daily_consumption = max(
                    0.0, reading.cumulative_consumption - previous.cumulative_consumption
                )
                seeded = False

            derived.append(
                replace(
                    reading,
                    daily_mileage=daily_mileage,
                    daily_consumption=daily_consumption,
                    consumption_per_km=consumption_per_km(daily_mileage, daily_consumption),
                    seeded=seeded,
                )
            )
            previous = reading

    return derived
