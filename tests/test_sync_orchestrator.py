import asyncio
from datetime import datetime, timezone

import pytest

from medguard.models.models import ExternalSystem
from medguard.schemas.analysis import SweepResult
from medguard.services.alert_aggregator import AlertAggregator
from medguard.services.alert_store import AlertStore
from medguard.services.errors import SourceAuthFailed, SourceUnreachable, StoreError
from medguard.services.sweep_scheduler import SweepScheduler
from medguard.services.sync_orchestrator import SyncOrchestrator, SystemNotFound


class UrlAdapter:
    """Fake adapter keyed by system URL."""

    def __init__(self, batches):
        self.batches = batches
        self.since = []

    async def validate(self, system):
        outcome = self.batches.get(system.url, [])
        if isinstance(outcome, Exception):
            raise outcome

    async def fetch(self, system, limit=None, since=None):
        self.since.append(since)
        await self.validate(system)
        return list(self.batches.get(system.url, []))[:limit]


def _orchestrator(session_factory, batches):
    adapter = UrlAdapter(batches)
    store = AlertStore(session_factory)
    return SyncOrchestrator(session_factory, adapter, AlertAggregator(adapter, store))


def _row(session_factory, system_id):
    db = session_factory()
    try:
        return db.query(ExternalSystem).filter(ExternalSystem.id == system_id).first()
    finally:
        db.close()


def _login(make_record, record_id, system_id, hour):
    return make_record(
        record_id=record_id,
        system_id=system_id,
        event_type="login_failed",
        created_at=datetime(2025, 1, 15, hour, 0, tzinfo=timezone.utc),
        success=False,
        ip_address="203.0.113.5"
    )


def test_sweep_updates_status_of_each_system(session_factory, add_system, make_record):
    ok_id = add_system("ECG Monitor")
    down_id = add_system("Pump Hub")
    orchestrator = _orchestrator(session_factory, {
        "https://ecg-monitor.example.test": [_login(make_record, "1", ok_id, 3)],
        "https://pump-hub.example.test": SourceUnreachable("connection refused", down_id),
    })

    result = asyncio.run(orchestrator.run_sweep())

    assert [s.system_name for s in result.failed_systems] == ["Pump Hub"]
    ok_row, down_row = _row(session_factory, ok_id), _row(session_factory, down_id)
    assert ok_row.status == "active"
    assert ok_row.last_sync is not None
    assert down_row.status == "error"
    assert down_row.last_sync is None
    assert "connection refused" in down_row.last_error


def test_inactive_systems_only_swept_when_named(session_factory, add_system):
    active_id = add_system("ECG Monitor")
    idle_id = add_system("Archive", status="inactive")
    orchestrator = _orchestrator(session_factory, {})

    assert [s.id for s in orchestrator.load_systems()] == [active_id]
    assert [s.id for s in orchestrator.load_systems([idle_id])] == [idle_id]


def test_unknown_system_raises(session_factory):
    orchestrator = _orchestrator(session_factory, {})

    with pytest.raises(SystemNotFound):
        asyncio.run(orchestrator.analyze_one(404))


def test_sync_failure_marks_system_error(session_factory, add_system):
    system_id = add_system("ECG Monitor")
    orchestrator = _orchestrator(session_factory, {
        "https://ecg-monitor.example.test": SourceAuthFailed("Invalid API key", system_id)
    })

    with pytest.raises(SourceAuthFailed):
        asyncio.run(orchestrator.sync_system(system_id))
    assert _row(session_factory, system_id).status == "error"


def test_successful_sync_clears_previous_error(session_factory, add_system):
    system_id = add_system("ECG Monitor", status="error")
    orchestrator = _orchestrator(session_factory, {})

    system = asyncio.run(orchestrator.sync_system(system_id))

    assert system.status.value == "active"
    assert system.last_sync is None
    assert _row(session_factory, system_id).last_error is None


def test_fetch_logs_merges_newest_first_and_reports_failures(session_factory, add_system, make_record):
    a_id = add_system("ECG Monitor")
    b_id = add_system("Ventilator")
    c_id = add_system("Pump Hub")
    orchestrator = _orchestrator(session_factory, {
        "https://ecg-monitor.example.test": [_login(make_record, "a", a_id, 2)],
        "https://ventilator.example.test": [_login(make_record, "b", b_id, 5)],
        "https://pump-hub.example.test": SourceUnreachable("down", c_id),
    })

    records, names, failures = asyncio.run(orchestrator.fetch_logs())

    assert [r.id for r in records] == ["b", "a"]
    assert names[a_id] == "ECG Monitor"
    assert failures == [
        {"system_id": c_id, "system_name": "Pump Hub", "kind": "unreachable", "message": "down"}
    ]


class BrokenStore:
    def save(self, alerts):
        raise StoreError("database is locked", 0, list(alerts))


def test_second_sweep_reads_only_past_last_sync(session_factory, add_system, make_record):
    system_id = add_system("ECG Monitor")
    orchestrator = _orchestrator(session_factory, {
        "https://ecg-monitor.example.test": [_login(make_record, "1", system_id, 3)],
    })

    asyncio.run(orchestrator.run_sweep())
    first_sync = _row(session_factory, system_id).last_sync
    asyncio.run(orchestrator.run_sweep())
    asyncio.run(orchestrator.run_sweep(incremental=False))

    since = orchestrator.adapter.since
    assert since[0] is None
    assert since[1] == first_sync
    assert since[2] is None


def test_store_failure_keeps_last_sync(session_factory, add_system, make_record):
    system_id = add_system("ECG Monitor")
    adapter = UrlAdapter({
        "https://ecg-monitor.example.test": [_login(make_record, "1", system_id, 3)],
    })
    orchestrator = SyncOrchestrator(session_factory, adapter, AlertAggregator(adapter, BrokenStore()))

    result = asyncio.run(orchestrator.run_sweep())
    with pytest.raises(StoreError):
        asyncio.run(orchestrator.analyze_one(system_id))

    assert result.systems[0].error_kind == "store_error"
    row = _row(session_factory, system_id)
    assert row.status == "active"
    assert row.last_sync is None


def test_analyze_one_advances_last_sync_to_read_start(session_factory, add_system):
    system_id = add_system("ECG Monitor")
    orchestrator = _orchestrator(session_factory, {})
    before = datetime.now(timezone.utc)

    asyncio.run(orchestrator.analyze_one(system_id))
    last_sync = _row(session_factory, system_id).last_sync
    asyncio.run(orchestrator.analyze_one(system_id))

    assert last_sync.replace(tzinfo=timezone.utc) >= before.replace(microsecond=0)
    assert orchestrator.adapter.since == [None, last_sync]


class CountingOrchestrator:
    def __init__(self):
        self.calls = 0
        self.events = []

    async def run_sweep(self, system_ids=None, per_system_limit=None, cancel_event=None):
        self.calls += 1
        self.events.append(cancel_event)
        return SweepResult(ruleset_version="test")


def test_scheduler_disabled_when_interval_is_zero():
    async def _go():
        scheduler = SweepScheduler(CountingOrchestrator(), 0)
        scheduler.start()
        return scheduler.running

    assert asyncio.run(_go()) is False


def test_scheduler_sweeps_until_stopped():
    orchestrator = CountingOrchestrator()

    async def _go():
        scheduler = SweepScheduler(orchestrator, 3600)
        scheduler.start()
        await asyncio.sleep(0.05)
        assert scheduler.running
        await scheduler.stop()
        return scheduler

    scheduler = asyncio.run(_go())

    assert orchestrator.calls == 1
    assert orchestrator.events[0] is scheduler.cancel_event
    assert scheduler.running is False
