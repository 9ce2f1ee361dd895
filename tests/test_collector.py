import asyncio
import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from app.schemas import PersistedSnapshot
from datastore.snapshot_table import SnapshotTable
from models.records import DailyReading, ReadingStatus
from services.aggregator import Aggregator
from services.collector import (
    CancellationToken,
    CollectionOrchestrator,
    FetchOutcome,
    FetchResult,
    resolve_day,
)
from services.persistence import PersistenceStore

FIXED_NOW = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


def _orchestrator(source, store, delay: float = 0.0, sleep=None) -> CollectionOrchestrator:
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return CollectionOrchestrator(
        source=source,
        store=store,
        aggregator=Aggregator(),
        lookback_days=3,
        call_delay_seconds=delay,
        **kwargs,
    )


def _days(start: date, end: date) -> list[date]:
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def _seed_snapshot(store: PersistenceStore, device_id: str, day: date, mileage: float, consumption: float) -> None:
    store.put(
        device_id,
        DailyReading(
            device_id=device_id,
            date=day,
            status=ReadingStatus.online,
            cumulative_mileage=mileage,
            cumulative_consumption=consumption,
        ),
    )


def test_lookback_prefix_is_fetched_but_not_returned(make_source, make_samples, store) -> None:
    start, end = date(2024, 1, 5), date(2024, 1, 10)
    answers = {
        ("dev", day): make_samples((1000 + 10 * index, 100 + index))
        for index, day in enumerate(_days(date(2024, 1, 2), end))
    }
    source = make_source(answers)

    result = asyncio.run(_orchestrator(source, store).collect(["dev"], start, end))

    assert [day for _, day in source.calls] == _days(date(2024, 1, 2), end)
    assert [reading.date for reading in result.period_readings] == _days(start, end)
    assert all(reading.date >= start for reading in result.readings)
    assert all(reading.daily_mileage == 10 for reading in result.readings)
    assert len(result.readings) == 6
    assert result.summary.total_distance == 60
    assert result.summary.online_count == 6
    assert result.cancelled is False


def test_gap_days_use_persisted_snapshot(make_source, make_samples, store) -> None:
    d0 = date(2024, 1, 4)
    store.put(
        "dev",
        DailyReading(
            device_id="dev",
            date=d0 - timedelta(days=1),
            status=ReadingStatus.online,
            cumulative_mileage=290,
            cumulative_consumption=38,
        ),
    )
    source = make_source(
        {
            ("dev", d0): make_samples((300, 40)),
            ("dev", date(2024, 1, 7)): make_samples((350, 48)),
        }
    )

    result = asyncio.run(
        _orchestrator(source, store).collect(
            ["dev"], date(2024, 1, 5), date(2024, 1, 7), lookback_days=1
        )
    )

    gap_days = result.period_readings[:2]
    assert [reading.status for reading in gap_days] == [ReadingStatus.persisted] * 2
    assert all(reading.cumulative_mileage == 300 for reading in gap_days)
    assert all(reading.daily_mileage == 0 for reading in gap_days)
    last = result.period_readings[2]
    assert last.status is ReadingStatus.online
    assert (last.daily_mileage, last.daily_consumption) == (50, 8)
    assert [reading.date for reading in result.readings] == [date(2024, 1, 7)]
    assert result.summary.persisted_count == 2

    snapshot = store.get("dev")
    assert snapshot is not None
    assert snapshot.date == date(2024, 1, 7)


def test_error_day_is_not_persisted(make_source, make_samples, store, transient_error) -> None:
    day_one, day_two = date(2024, 1, 5), date(2024, 1, 6)
    source = make_source(
        {
            ("dev", day_one): make_samples((100, 10)),
            ("dev", day_two): transient_error,
        }
    )

    result = asyncio.run(
        _orchestrator(source, store).collect(["dev"], day_one, day_two, lookback_days=0)
    )

    error_row = result.period_readings[1]
    assert error_row.status is ReadingStatus.error
    assert error_row.cumulative_mileage == 0
    assert result.summary.error_count == 1
    snapshot = store.get("dev")
    assert snapshot is not None
    assert snapshot.date == day_one
    assert snapshot.cumulative_mileage == 100


def test_unexpected_source_exception_becomes_error(make_source, store) -> None:
    day = date(2024, 1, 5)
    source = make_source({("dev", day): RuntimeError("boom")})

    result = asyncio.run(_orchestrator(source, store).collect(["dev"], day, day, lookback_days=0))

    assert [reading.status for reading in result.period_readings] == [ReadingStatus.error]


def test_no_data_without_snapshot_is_offline_and_persisted(make_source, store) -> None:
    day = date(2024, 1, 5)

    result = asyncio.run(
        _orchestrator(make_source(), store).collect(["dev"], day, day, lookback_days=0)
    )

    assert [reading.status for reading in result.period_readings] == [ReadingStatus.offline]
    snapshot = store.get("dev")
    assert snapshot is not None
    assert snapshot.date == day
    assert snapshot.cumulative_mileage == 0


def test_stale_snapshot_is_not_reused(make_source, store) -> None:
    _seed_snapshot(store, "dev", date(2024, 1, 1), 300, 40)
    day = date(2024, 1, 5)

    result = asyncio.run(
        _orchestrator(make_source(), store).collect(["dev"], day, day, lookback_days=0)
    )

    reading = result.period_readings[0]
    assert reading.status is ReadingStatus.offline
    assert reading.cumulative_mileage == 0


def test_samples_without_valid_values_fall_back(make_source, make_samples, store) -> None:
    _seed_snapshot(store, "dev", date(2024, 1, 4), 300, 40)
    day = date(2024, 1, 5)
    source = make_source({("dev", day): make_samples((0, 0), (0, 0))})

    result = asyncio.run(_orchestrator(source, store).collect(["dev"], day, day, lookback_days=0))

    reading = result.period_readings[0]
    assert reading.status is ReadingStatus.persisted
    assert reading.cumulative_mileage == 300


def test_every_device_gets_a_gap_free_sequence(make_source, make_samples, store, transient_error) -> None:
    start, end = date(2024, 1, 5), date(2024, 1, 9)
    source = make_source(
        {
            ("a", date(2024, 1, 3)): make_samples((10, 1)),
            ("a", date(2024, 1, 6)): transient_error,
            ("b", date(2024, 1, 8)): make_samples((50, 5)),
        }
    )
    orchestrator = _orchestrator(source, store)

    for device_id in ("a", "b"):
        rows = asyncio.run(orchestrator.collect_device(device_id, start, end, lookback_days=3))
        assert [row.date for row in rows] == _days(date(2024, 1, 2), end)


def test_devices_are_processed_sequentially(make_source, store) -> None:
    source = make_source()
    day = date(2024, 1, 5)

    asyncio.run(_orchestrator(source, store).collect(["a", "b"], day, day, lookback_days=1))

    assert source.calls == [
        ("a", date(2024, 1, 4)),
        ("a", day),
        ("b", date(2024, 1, 4)),
        ("b", day),
    ]


def test_rerun_with_same_store_state_is_deterministic(make_source, make_samples, transient_error) -> None:
    def fresh_store() -> PersistenceStore:
        table = SnapshotTable(name="test")
        table.put_item(
            PersistedSnapshot(
                device_id="dev",
                date=date(2024, 1, 1),
                cumulative_mileage=90,
                cumulative_consumption=9,
                saved_at=FIXED_NOW,
            )
        )
        return PersistenceStore(table=table, clock=lambda: FIXED_NOW)

    answers = {
        ("dev", date(2024, 1, 3)): make_samples((100, 10)),
        ("dev", date(2024, 1, 5)): transient_error,
        ("dev", date(2024, 1, 6)): make_samples((150, 16), (0, 0)),
    }

    first = asyncio.run(
        _orchestrator(make_source(answers), fresh_store()).collect(
            ["dev"], date(2024, 1, 4), date(2024, 1, 8)
        )
    )
    second = asyncio.run(
        _orchestrator(make_source(answers), fresh_store()).collect(
            ["dev"], date(2024, 1, 4), date(2024, 1, 8)
        )
    )

    assert first.period_readings == second.period_readings
    assert first.readings == second.readings


def test_cancellation_stops_between_days(make_source, store) -> None:
    token = CancellationToken()

    class CancellingSource(make_source):  # type: ignore[misc, valid-type]
        async def fetch_day(self, device_id, day):
            result = await super().fetch_day(device_id, day)
            if len(self.calls) == 2:
                token.cancel()
            return result

    source = CancellingSource()
    result = asyncio.run(
        _orchestrator(source, store).collect(
            ["a", "b"], date(2024, 1, 5), date(2024, 1, 10), cancel_token=token
        )
    )

    assert len(source.calls) == 2
    assert result.cancelled is True
    assert all(reading.device_id == "a" for reading in result.period_readings)


def test_delay_is_inserted_between_calls(make_source, store) -> None:
    delays: list[float] = []

    async def record_sleep(seconds: float) -> None:
        delays.append(seconds)

    orchestrator = _orchestrator(make_source(), store, delay=2.0, sleep=record_sleep)
    asyncio.run(orchestrator.collect(["a"], date(2024, 1, 5), date(2024, 1, 7), lookback_days=0))

    assert delays == [2.0, 2.0]


def test_invalid_arguments_raise(make_source, store) -> None:
    orchestrator = _orchestrator(make_source(), store)

    with pytest.raises(ValueError):
        asyncio.run(orchestrator.collect(["a"], date(2024, 1, 6), date(2024, 1, 5)))
    with pytest.raises(ValueError):
        asyncio.run(
            orchestrator.collect(["a"], date(2024, 1, 5), date(2024, 1, 6), lookback_days=-1)
        )


def test_seed_row_stays_out_of_report_without_lookback(make_source, make_samples, store) -> None:
    day = date(2024, 1, 5)
    source = make_source({("dev", day): make_samples((12000, 1500))})

    result = asyncio.run(_orchestrator(source, store).collect(["dev"], day, day, lookback_days=0))

    assert result.period_readings[0].seeded is True
    assert result.readings == []
    assert result.summary.total_distance == 0
    assert result.summary.online_count == 1


def test_unknown_device_is_logged_and_serial_attached(make_source, store, caplog) -> None:
    source = make_source(serials={"known": "KT090"})
    day = date(2024, 1, 5)

    with caplog.at_level(logging.WARNING):
        result = asyncio.run(
            _orchestrator(source, store).collect(["known", "other"], day, day, lookback_days=0)
        )

    serials = {reading.device_id: reading.serial_number for reading in result.period_readings}
    assert serials == {"known": "KT090", "other": "unknown"}
    warnings = [r for r in caplog.records if r.name == "services.collector"]
    assert any(getattr(r, "device_id", None) == "other" for r in warnings)


def test_resolve_day_covers_every_outcome(make_samples, store) -> None:
    day = date(2024, 1, 5)

    online = resolve_day("dev", day, FetchResult(FetchOutcome.samples, make_samples((5, 1))), store)
    failed = resolve_day("dev", day, FetchResult(FetchOutcome.failure, reason="timeout"), store)
    offline = resolve_day("dev", day, FetchResult(FetchOutcome.no_data), store)

    assert (online.status, online.persist) == (ReadingStatus.online, True)
    assert (failed.status, failed.persist) == (ReadingStatus.error, False)
    assert (offline.status, offline.persist) == (ReadingStatus.offline, True)

    store.put("dev", online.reading)
    persisted = resolve_day("dev", day + timedelta(days=1), FetchResult(FetchOutcome.no_data), store)
    assert (persisted.status, persisted.persist) == (ReadingStatus.persisted, False)


def test_rerunning_an_older_window_keeps_the_newer_snapshot(make_source, store) -> None:
    _seed_snapshot(store, "dev", date(2024, 1, 10), 300, 40)
    day = date(2024, 1, 9)

    result = asyncio.run(_orchestrator(make_source(), store).collect(["dev"], day, day, lookback_days=0))

    assert result.period_readings[0].status is ReadingStatus.persisted
    snapshot = store.get("dev")
    assert snapshot is not None
    assert snapshot.date == date(2024, 1, 10)
    assert snapshot.cumulative_mileage == 300


def test_malformed_sample_stream_becomes_an_error_day(make_source, make_samples, store) -> None:
    broken_day = date(2024, 1, 7)

    def broken_stream():
        yield from make_samples((100, 10))
        raise ValueError("truncated payload")

    class BrokenStreamSource(make_source):  # type: ignore[misc, valid-type]
        async def fetch_day(self, device_id, day):
            result = await super().fetch_day(device_id, day)
            if day == broken_day:
                return broken_stream()
            return result

    source = BrokenStreamSource(
        {
            ("dev", date(2024, 1, 4)): make_samples((90, 9)),
            ("dev", date(2024, 1, 5)): make_samples((100, 10)),
            ("dev", date(2024, 1, 8)): make_samples((130, 13)),
        }
    )

    result = asyncio.run(
        _orchestrator(source, store).collect(["dev"], date(2024, 1, 5), date(2024, 1, 8), lookback_days=1)
    )

    statuses = {reading.date: reading.status for reading in result.period_readings}
    assert list(statuses) == _days(date(2024, 1, 5), date(2024, 1, 8))
    assert statuses[broken_day] is ReadingStatus.error
    assert statuses[date(2024, 1, 8)] is ReadingStatus.online
    snapshot = store.get("dev")
    assert snapshot is not None
    assert snapshot.date == date(2024, 1, 8)


def test_readings_resolved_before_a_device_failure_are_kept(make_source, make_samples, store) -> None:
    class ExplodingStore(PersistenceStore):
        def put(self, device_id, reading):
            if reading.date == date(2024, 1, 6):
                raise RuntimeError("disk gone")
            return super().put(device_id, reading)

    failing_store = ExplodingStore(table=store.table, clock=lambda: FIXED_NOW)
    source = make_source(
        {
            ("dev", date(2024, 1, 5)): make_samples((100, 10)),
            ("dev", date(2024, 1, 6)): make_samples((120, 12)),
        }
    )

    result = asyncio.run(
        _orchestrator(source, failing_store).collect(
            ["dev", "other"], date(2024, 1, 5), date(2024, 1, 7), lookback_days=0
        )
    )

    rows = [(reading.device_id, reading.date) for reading in result.period_readings]
    assert ("dev", date(2024, 1, 5)) in rows
    assert [day for device_id, day in rows if device_id == "other"] == _days(
        date(2024, 1, 5), date(2024, 1, 7)
    )


def test_overlapping_runs_each_apply_their_own_delays(make_source, store) -> None:
    delays: list[float] = []

    async def record_sleep(seconds: float) -> None:
        delays.append(seconds)
        await asyncio.sleep(0)

    orchestrator = _orchestrator(make_source(), store, delay=2.0, sleep=record_sleep)

    async def run_both() -> None:
        await asyncio.gather(
            orchestrator.collect(["a"], date(2024, 1, 5), date(2024, 1, 7), lookback_days=0),
            orchestrator.collect(["b"], date(2024, 1, 5), date(2024, 1, 7), lookback_days=0),
        )

    asyncio.run(run_both())

    assert delays == [2.0] * 4
