"""Sequential collection of daily readings across devices and days."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from functools import lru_cache
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from models.records import DailyReading, ReadingStatus, TelemetrySample
from services.aggregator import Aggregator, FleetSummary, filter_by_period, filter_reportable
from services.deltas import compute_daily_deltas
from services.persistence import PersistenceStore, build_default_store
from services.sample_selector import select_daily_reading
from settings import get_settings
from telemetry.base import TelemetrySource
from telemetry.historian import build_default_source

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 3
DEFAULT_CALL_DELAY_SECONDS = 2.0


class CancellationToken:
    """Cooperative stop signal checked between day iterations."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class FetchOutcome(str, Enum):
    samples = "samples"
    no_data = "no_data"
    failure = "failure"


@dataclass(frozen=True)
class FetchResult:
    """What the telemetry source answered for one device-day."""

    outcome: FetchOutcome
    samples: Sequence[TelemetrySample] = ()
    reason: Optional[str] = None


@dataclass(frozen=True)
class DayResolution:
    """Terminal status of a device-day and the reading it produced."""

    status: ReadingStatus
    reading: DailyReading
    persist: bool


@dataclass
class CollectionResult:
    """Output of a collection run.

    ``readings`` holds the report-ready rows of the requested period,
    ``period_readings`` every derived row of the period.
    """

    readings: List[DailyReading] = field(default_factory=list)
    summary: FleetSummary = field(default_factory=FleetSummary)
    device_summaries: Dict[str, FleetSummary] = field(default_factory=dict)
    period_readings: List[DailyReading] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class _CollectionRun:
    """Per-run state shared across the devices of one ``collect`` call."""

    calls_made: int = 0


def _empty_reading(device_id: str, day: date, status: ReadingStatus) -> DailyReading:
    return DailyReading(device_id=device_id, date=day, status=status)


def resolve_day(
    device_id: str,
    day: date,
    fetched: FetchResult,
    store: PersistenceStore,
) -> DayResolution:
    """Map a fetch result to exactly one of Online, Persisted, Offline or Error."""

    if fetched.outcome is FetchOutcome.failure:
        return DayResolution(
            status=ReadingStatus.error,
            reading=_empty_reading(device_id, day, ReadingStatus.error),
            persist=False,
        )

    if fetched.outcome is FetchOutcome.samples:
        selected = select_daily_reading(fetched.samples, device_id=device_id)
        if selected is not None:
            reading = DailyReading(
                device_id=device_id,
                date=day,
                status=ReadingStatus.online,
                cumulative_mileage=selected.mileage,
                cumulative_consumption=selected.consumption,
            )
            return DayResolution(status=ReadingStatus.online, reading=reading, persist=True)

    fallback = store.materialize_fallback(device_id, day)
    if fallback is not None:
        return DayResolution(status=ReadingStatus.persisted, reading=fallback, persist=False)

    return DayResolution(
        status=ReadingStatus.offline,
        reading=_empty_reading(device_id, day, ReadingStatus.offline),
        persist=True,
    )


class CollectionOrchestrator:
    """Coordinates telemetry queries, continuity fallback and aggregation."""

    def __init__(
        self,
        source: TelemetrySource,
        store: PersistenceStore,
        aggregator: Aggregator,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        call_delay_seconds: float = DEFAULT_CALL_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.source = source
        self.store = store
        self.aggregator = aggregator
        self.lookback_days = lookback_days
        self.call_delay_seconds = call_delay_seconds
        self._sleep = sleep

    async def collect(
        self,
        device_ids: Iterable[str],
        start_date: date,
        end_date: date,
        lookback_days: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> CollectionResult:
        """Collect, derive and summarize daily readings for ``[start_date, end_date]``.

        Telemetry and store failures degrade individual days; they never abort
        the run. Only invalid arguments raise.
        """
        lookback = self.lookback_days if lookback_days is None else lookback_days
        if start_date > end_date:
            raise ValueError("start_date must not be after end_date.")
        if lookback < 0:
            raise ValueError("lookback_days must not be negative.")

        token = cancel_token or CancellationToken()
        run = _CollectionRun()
        collected: List[DailyReading] = []

        for device_id in device_ids:
            if token.cancelled:
                break
            try:
                await self.collect_device(
                    device_id,
                    start_date,
                    end_date,
                    lookback,
                    token,
                    into=collected,
                    run=run,
                )
            except Exception:  # noqa: BLE001
                logger.exception("Device collection aborted", extra={"device_id": device_id})

        derived = compute_daily_deltas(collected)
        period = filter_by_period(derived, start_date, end_date)
        reportable = filter_reportable(period)
        summary = self.aggregator.aggregate(period)

        logger.info(
            "Collection finished",
            extra={"reading_count": len(period), "reportable_count": len(reportable)},
        )
        return CollectionResult(
            readings=reportable,
            summary=summary,
            device_summaries=self.aggregator.aggregate_by_device(period),
            period_readings=period,
            cancelled=token.cancelled,
        )

    async def collect_device(
        self,
        device_id: str,
        start_date: date,
        end_date: date,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        cancel_token: Optional[CancellationToken] = None,
        into: Optional[List[DailyReading]] = None,
        run: Optional[_CollectionRun] = None,
    ) -> List[DailyReading]:
        """Append one raw reading per day from ``start_date - lookback_days`` to ``end_date``.

        Readings go to ``into`` as each day resolves, so days already resolved
        survive a later failure. Returns the list appended to.
        """
        if not self.source.is_known_device(device_id):
            logger.warning("Device missing from serial mapping", extra={"device_id": device_id})
        serial_number = self.source.serial_number_of(device_id)

        readings: List[DailyReading] = [] if into is None else into
        run = run or _CollectionRun()
        current = start_date - timedelta(days=lookback_days)
        while current <= end_date:
            if cancel_token is not None and cancel_token.cancelled:
                logger.warning(
                    "Collection cancelled",
                    extra={"device_id": device_id, "date": current.isoformat()},
                )
                break

            fetched = await self._query(device_id, current, run)
            resolution = resolve_day(device_id, current, fetched, self.store)
            resolution.reading.serial_number = serial_number
            if resolution.persist:
                self.store.put(device_id, resolution.reading)

            logger.info(
                "Day resolved",
                extra={
                    "device_id": device_id,
                    "serial_number": serial_number,
                    "date": current.isoformat(),
                    "status": resolution.status.value,
                    "reason": fetched.reason,
                },
            )
            readings.append(resolution.reading)
            current += timedelta(days=1)

        return readings

    async def _query(self, device_id: str, day: date, run: _CollectionRun) -> FetchResult:
        if run.calls_made and self.call_delay_seconds > 0:
            await self._sleep(self.call_delay_seconds)
        run.calls_made += 1

        try:
            samples = await self.source.fetch_day(device_id, day)
            if samples is None:
                return FetchResult(outcome=FetchOutcome.no_data, reason="no data")
            return FetchResult(outcome=FetchOutcome.samples, samples=list(samples))
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Telemetry query failed",
                extra={"device_id": device_id, "date": day.isoformat(), "reason": str(exc)},
            )
            return FetchResult(outcome=FetchOutcome.failure, reason=str(exc))


@lru_cache
def build_default_orchestrator() -> CollectionOrchestrator:
    """Factory that wires the orchestrator with the configured collaborators."""
    settings = get_settings()
    return CollectionOrchestrator(
        source=build_default_source(),
        store=build_default_store(),
        aggregator=Aggregator(),
        lookback_days=settings.lookback_days,
        call_delay_seconds=settings.call_delay_seconds,
    )
