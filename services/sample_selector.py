"""Extraction of the authoritative daily reading from raw intra-day samples."""

from __future__ import annotations

import logging
import math
from typing import Any, Optional, Sequence

from models.records import CumulativeReading, TelemetrySample

logger = logging.getLogger(__name__)


def _coerce_counter(value: Any) -> float:
    if value is None or isinstance(value, bool):
        raise ValueError("missing counter value")
    parsed = float(value)
    if math.isnan(parsed) or math.isinf(parsed):
        raise ValueError("non-finite counter value")
    if parsed < 0:
        raise ValueError("negative counter value")
    return parsed


def select_daily_reading(
    samples: Sequence[TelemetrySample],
    device_id: Optional[str] = None,
) -> Optional[CumulativeReading]:
    """Return the last sample whose mileage and consumption are both positive.

    Devices emit zero or garbage samples around day boundaries, so the scan
    runs backwards and stops at the first usable sample rather than taking the
    last one blindly.
    """

    for index in range(len(samples) - 1, -1, -1):
        sample = samples[index]
        try:
            mileage = _coerce_counter(sample.mileage)
            consumption = _coerce_counter(sample.consumption)
        except (TypeError, ValueError) as exc:
            logger.warning(
                "Skipping invalid sample",
                extra={
                    "device_id": device_id,
                    "sample_index": index,
                    "reason": str(exc),
                    "invalid_value": f"{sample.mileage!r}/{sample.consumption!r}",
                },
            )
            continue

        if mileage > 0 and consumption > 0:
            return CumulativeReading(mileage=mileage, consumption=consumption)

    return None
