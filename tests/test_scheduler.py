"""Tests for the per-folder timer scheduler.

Intervals are scaled with ``seconds_per_minute`` so one "minute" is 50 ms.
"""

import asyncio
import time

import pytest

from sadis.errors import ConnectError
from sadis.monitor.oplog import OperationLog
from sadis.monitor.scheduler import Scheduler
from sadis.schemas.ingest import EntryKind, Severity
from sadis.storage.local_store import LocalStore

MINUTE = 0.05


@pytest.fixture
def oplog():
    return OperationLog()


@pytest.fixture
async def scheduler(oplog, fake_ftp):
    sched = Scheduler(
        oplog=oplog,
        store=LocalStore(),
        session_factory=fake_ftp.factory,
        seconds_per_minute=MINUTE,
    )
    yield sched
    sched.stop()
    await sched.wait_idle()


def _sessions_for(fake_ftp, path):
    return [s for s in fake_ftp.sessions if s.cwd == path]


class TestApply:
    async def test_one_timer_per_folder(self, scheduler, fake_ftp, make_config):
        fake_ftp.listings["/a"] = []
        fake_ftp.listings["/b"] = []
        fake_ftp.listings["/c"] = []
        config = make_config(("A", "/a", 1), ("B", "/b", 2), ("C", "/c", 3))

        scheduler.apply(config)

        assert scheduler.timer_count == 3
        assert set(scheduler.workers) == {"f0", "f1", "f2"}

    async def test_immediate_first_tick(self, scheduler, fake_ftp, make_config):
        fake_ftp.add_file("/a", "a.dat", b"x")
        scheduler.apply(make_config(("A", "/a", 100)))

        await asyncio.sleep(0.02)
        await scheduler.wait_idle()

        assert len(fake_ftp.sessions) == 1
        assert scheduler.workers["f0"].last_result.downloaded == 1

    async def test_ticks_repeat_at_interval(self, scheduler, fake_ftp, make_config):
        fake_ftp.listings["/a"] = []
        scheduler.apply(make_config(("A", "/a", 1)))

        await asyncio.sleep(MINUTE * 3.5)

        assert len(fake_ftp.sessions) >= 3

    async def test_reapply_replaces_timers(self, scheduler, fake_ftp, make_config):
        fake_ftp.listings["/a"] = []
        fake_ftp.listings["/b"] = []
        scheduler.apply(make_config(("A", "/a", 1), ("B", "/b", 1)))
        old_workers = scheduler.workers

        scheduler.apply(make_config(("A", "/a", 1)))

        assert scheduler.timer_count == 1
        assert list(scheduler.workers) == ["f0"]
        assert scheduler.workers["f0"] is old_workers["f0"]

    async def test_build_without_timers(self, scheduler, fake_ftp, make_config):
        fake_ftp.listings["/a"] = []
        scheduler.apply(make_config(("A", "/a", 1)), active=False, start_timers=False)
        assert scheduler.timer_count == 0

        results = await scheduler.run_once()

        assert len(results) == 1
        assert results[0].success


class TestReconfigure:
    async def test_reapply_during_cycle_does_not_overlap(
        self, scheduler, fake_ftp, make_config, oplog
    ):
        fake_ftp.add_file("/a", "a.dat", b"x")
        fake_ftp.delay = 0.2
        config = make_config(("A", "/a", 100))
        scheduler.apply(config)
        await asyncio.sleep(0.02)

        scheduler.apply(config)
        await asyncio.sleep(0.02)
        await scheduler.wait_idle()

        assert fake_ftp.max_active == 1
        assert any("skipping this tick" in e.message for e in oplog.snapshot())
        assert scheduler.workers["f0"].last_result.downloaded == 1

    async def test_changed_folder_waits_for_old_cycle(self, scheduler, fake_ftp, make_config):
        fake_ftp.add_file("/a", "a.dat", b"x")
        fake_ftp.delay = 0.2
        scheduler.apply(make_config(("A", "/a", 100)))
        await asyncio.sleep(0.02)
        old = scheduler.workers["f0"]

        scheduler.apply(make_config(("A", "/a", 50)))
        await asyncio.sleep(0.02)
        new = scheduler.workers["f0"]

        assert new is not old
        assert new.busy
        assert len(fake_ftp.sessions) == 1

        await scheduler.wait_idle()
        assert fake_ftp.max_active == 1
        assert new.last_result is old.last_result
        assert new.last_result.downloaded == 1


class TestStop:
    async def test_stop_closes_gate(self, scheduler, fake_ftp, make_config):
        fake_ftp.listings["/a"] = []
        scheduler.apply(make_config(("A", "/a", 1)))
        assert scheduler.active

        scheduler.stop()

        assert not scheduler.active

    async def test_stop_cancels_all_timers(self, scheduler, fake_ftp, make_config, oplog):
        for path in ("/a", "/b", "/c"):
            fake_ftp.add_file(path, "x.dat", b"x")
        scheduler.apply(make_config(("A", "/a", 1), ("B", "/b", 2), ("C", "/c", 3)))
        await asyncio.sleep(0.01)

        scheduler.stop()
        assert scheduler.timer_count == 0
        await scheduler.wait_idle()
        sessions_at_stop = len(fake_ftp.sessions)
        entries_at_stop = len(oplog)

        await asyncio.sleep(MINUTE * 3)

        assert len(fake_ftp.sessions) == sessions_at_stop
        new_entries = oplog.snapshot()[: len(oplog) - entries_at_stop]
        assert all(e.severity == Severity.INFO for e in new_entries)

    async def test_in_flight_cycle_finishes(self, scheduler, fake_ftp, make_config):
        fake_ftp.add_file("/a", "a.dat", b"x")
        fake_ftp.delay = 0.05
        scheduler.apply(make_config(("A", "/a", 100)))
        await asyncio.sleep(0.01)
        assert scheduler.in_flight == 1

        scheduler.stop()
        await scheduler.wait_idle()

        assert scheduler.workers["f0"].last_result.downloaded == 1


class TestActiveGate:
    async def test_paused_ticks_are_skipped_and_logged(
        self, scheduler, fake_ftp, make_config, oplog
    ):
        fake_ftp.listings["/a"] = []
        scheduler.apply(make_config(("A", "/a", 1)), active=False)

        await asyncio.sleep(MINUTE * 2.5)

        assert fake_ftp.sessions == []
        assert scheduler.timer_count == 1
        assert any("paused, skipping" in e.message for e in oplog.snapshot())

    async def test_resume_without_reconfiguring(self, scheduler, fake_ftp, make_config):
        fake_ftp.listings["/a"] = []
        scheduler.apply(make_config(("A", "/a", 1)), active=False)
        workers = scheduler.workers

        scheduler.set_active(True)
        await asyncio.sleep(MINUTE * 1.5)

        assert scheduler.workers == workers
        assert len(fake_ftp.sessions) >= 1


class TestIsolation:
    async def test_failing_folder_does_not_block_others(self, scheduler, fake_ftp, make_config):
        fake_ftp.listings["/a"] = []
        fake_ftp.add_file("/b", "b.dat", b"b")
        # A's timer dispatches first, so A's first connect consumes the error
        fake_ftp.connect_errors.append(ConnectError("connect timed out"))
        scheduler.apply(make_config(("A", "/a", 100), ("B", "/b", 1)))

        await asyncio.sleep(MINUTE * 3.5)
        await scheduler.wait_idle()

        a = scheduler.workers["f0"].last_result
        assert not a.success
        assert len(_sessions_for(fake_ftp, "/b")) >= 3

    async def test_folders_tick_independently(self, scheduler, fake_ftp, make_config):
        fake_ftp.listings["/a"] = []
        fake_ftp.add_entry("/b", "d", EntryKind.DIRECTORY)
        scheduler.apply(make_config(("A", "/a", 1), ("B", "/b", 1)))

        await asyncio.sleep(MINUTE * 2.5)

        assert len(_sessions_for(fake_ftp, "/a")) >= 2
        assert len(_sessions_for(fake_ftp, "/b")) >= 2

    async def test_overlapping_ticks_never_run_concurrently(
        self, scheduler, fake_ftp, make_config, oplog
    ):
        fake_ftp.listings["/a"] = []
        fake_ftp.delay = MINUTE * 2.5  # each cycle outlasts two intervals
        scheduler.apply(make_config(("A", "/a", 1)))

        await asyncio.sleep(MINUTE * 3.5)
        scheduler.stop()
        await scheduler.wait_idle()

        assert fake_ftp.max_active == 1
        assert any("skipping this tick" in e.message for e in oplog.snapshot())


class TestStall:
    async def test_missed_ticks_are_not_replayed(self, scheduler, fake_ftp, make_config):
        fake_ftp.listings["/a"] = []
        scheduler.apply(make_config(("A", "/a", 1)))
        await asyncio.sleep(0.01)
        sessions_before = len(fake_ftp.sessions)

        time.sleep(MINUTE * 4)  # block the loop past several ticks
        await asyncio.sleep(MINUTE * 0.2)

        assert len(fake_ftp.sessions) - sessions_before == 1
