from __future__ import annotations

import asyncio

import pytest

from tests.fakes import FakeSnapshot, FakeStore, make_records
from users_core.errors import HttpError, NetworkError
from users_core.records import Record
from users_core.sync_engine import SyncEngine, SyncPhase


def test_initialize_success_saves_snapshot():
    store = FakeStore(make_records(3))
    snap = FakeSnapshot()
    events = []
    engine = SyncEngine(store, snapshot=snap, on_status=lambda typ, d: events.append(typ))
    assert engine.phase is SyncPhase.UNINITIALIZED

    asyncio.run(engine.initialize())

    assert engine.phase is SyncPhase.READY
    assert engine.error is None
    assert engine.degraded is False
    assert list(engine.records) == [1, 2, 3]
    assert snap.saves == 1
    assert snap.records == make_records(3)
    assert snap.loads == 0
    assert events == ["load_start", "loaded"]


def test_initialize_falls_back_to_offline_snapshot():
    store = FakeStore()
    store.fail_next("list", None, NetworkError("connection refused"))
    snap = FakeSnapshot(make_records(3))
    events = []
    engine = SyncEngine(store, snapshot=snap, load_retry_max=1, on_status=lambda typ, d: events.append(typ))

    asyncio.run(engine.initialize())

    assert engine.phase is SyncPhase.READY
    assert engine.error is None
    assert engine.degraded is True
    assert engine.all_records() == make_records(3)
    assert "offline" in events
    assert snap.saves == 0


def test_initialize_without_snapshot_surfaces_error():
    store = FakeStore()
    failure = NetworkError("connection refused")
    store.fail_next("list", None, failure)
    engine = SyncEngine(store, snapshot=FakeSnapshot(), load_retry_max=1)

    asyncio.run(engine.initialize())

    assert engine.phase is SyncPhase.READY
    assert engine.error is failure
    assert engine.degraded is False
    assert len(engine.records) == 0


def test_initialize_retries_transient_failures():
    store = FakeStore(make_records(2))
    store.fail_next("list", None, NetworkError("blip"))
    store.fail_next("list", None, HttpError(503, "busy"))
    engine = SyncEngine(store, load_retry_max=3, load_retry_backoff_s=0.0)

    asyncio.run(engine.initialize())

    assert store.count("list") == 3
    assert engine.error is None
    assert len(engine.records) == 2


def test_initialize_does_not_retry_client_errors():
    store = FakeStore()
    store.fail_next("list", None, HttpError(403, "forbidden"))
    engine = SyncEngine(store, load_retry_max=3, load_retry_backoff_s=0.0)

    asyncio.run(engine.initialize())

    assert store.count("list") == 1
    assert isinstance(engine.error, HttpError)


def test_retry_backoff_sleeps_between_attempts(monkeypatch):
    import users_core.sync_engine as sync_mod

    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    monkeypatch.setattr(sync_mod.asyncio, "sleep", fake_sleep)
    store = FakeStore()
    for _ in range(3):
        store.fail_next("list", None, NetworkError("down"))
    engine = SyncEngine(store, load_retry_max=3, load_retry_backoff_s=0.5, load_retry_backoff_max_s=0.75)

    asyncio.run(engine.initialize())

    assert sleeps == [0.5, 0.75]
    assert isinstance(engine.error, NetworkError)


def test_exhausted_retries_surface_the_last_failure():
    store = FakeStore()
    failures = [NetworkError("down 1"), HttpError(502, "bad gateway"), NetworkError("down 3")]
    for exc in failures:
        store.fail_next("list", None, exc)
    events = []
    engine = SyncEngine(
        store,
        load_retry_max=3,
        load_retry_backoff_s=0.0,
        on_status=lambda typ, d: events.append((typ, d.get("attempt"))),
    )

    asyncio.run(engine.initialize())

    assert store.count("list") == 3
    assert engine.error is failures[-1]
    assert [e for e in events if e[0] == "load_retry"] == [("load_retry", 1), ("load_retry", 2)]
    assert events[-1] == ("load_error", None)


def test_refresh_failure_keeps_in_memory_set():
    store = FakeStore(make_records(2))
    snap = FakeSnapshot([Record(id=9, name="Stale", email="stale@x.com")])
    engine = SyncEngine(store, snapshot=snap, load_retry_max=1)
    asyncio.run(engine.initialize())

    store.fail_next("list", None, NetworkError("gone"))
    asyncio.run(engine.refresh())

    assert engine.all_records() == make_records(2)
    assert engine.degraded is True
    assert engine.error is None
    assert snap.loads == 0


def test_external_update_replaces_set_wholesale():
    engine = SyncEngine(FakeStore(make_records(3)), load_retry_max=1)
    asyncio.run(engine.initialize())

    pushed = [Record(id=7, name="Pushed", email="p@x.com")]
    engine.apply_external_update(pushed)

    assert engine.all_records() == pushed


def test_external_update_readies_uninitialized_engine():
    engine = SyncEngine(FakeStore(), load_retry_max=1)
    engine.apply_external_update(make_records(1))
    assert engine.phase is SyncPhase.READY
    assert len(engine.records) == 1


def test_external_update_wins_over_in_flight_edit():
    async def scenario():
        ann = Record(id=1, name="Ann", email="ann@x.com")
        store = FakeStore([ann])
        engine = SyncEngine(store, load_retry_max=1)
        await engine.initialize()

        gate = store.hold("update", 1)
        store.fail_next("update", 1, NetworkError("offline"))
        task = asyncio.create_task(engine.update(1, {"name": "Annie"}))
        await asyncio.sleep(0)

        pushed = Record(id=1, name="Pushed Ann", email="ann@x.com")
        engine.apply_external_update([pushed])
        assert engine.get(1) == pushed

        gate.set()
        with pytest.raises(NetworkError):
            await task
        # Last writer (the push) stays; the rollback only undoes its own write.
        assert engine.get(1) == pushed

    asyncio.run(scenario())


def test_dispose_resets_state():
    engine = SyncEngine(FakeStore(make_records(2)), load_retry_max=1)
    asyncio.run(engine.initialize())
    engine.dispose()
    assert engine.phase is SyncPhase.UNINITIALIZED
    assert len(engine.records) == 0


def test_export_csv_lists_records_by_id():
    engine = SyncEngine(FakeStore([Record(2, "Zed", "z@x.com"), Record(1, "Amy", "a@x.com")]), load_retry_max=1)
    asyncio.run(engine.initialize())
    assert engine.export_csv() == "id,name,email\r\n1,Amy,a@x.com\r\n2,Zed,z@x.com\r\n"
