import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from auto_update import AutoUpdateScheduler, auto_update_status_message
from errors import CommandFailed
from fakes import FakeHost, wait_for
from models import OutdatedPackage, PackageType
from settings import Settings

OUTDATED = [OutdatedPackage("wget", PackageType.FORMULA, "1.0", "1.1")]


@pytest.fixture
def make_scheduler(config):
    created = []

    def _make(host, interval=3600.0, log_hide_delay=0.0):
        scheduler = AutoUpdateScheduler(host, config, interval=interval, log_hide_delay=log_hide_delay)
        created.append(scheduler)
        return scheduler

    yield _make
    for scheduler in created:
        scheduler.shutdown()


class TestStatusMessage:
    NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def test_disabled(self):
        assert auto_update_status_message(False, self.NOW, self.NOW) == "Auto-update is disabled"

    def test_enabled_never_run(self):
        assert auto_update_status_message(True, None) == "Auto-update enabled (waiting for next check)"

    def test_enabled_with_last_run(self):
        message = auto_update_status_message(True, self.NOW - timedelta(minutes=5), self.NOW)
        assert message == "Last auto-update: 5 minutes ago"


class TestCycle:
    def test_nothing_outdated_stamps_without_log(self, make_scheduler):
        host = FakeHost(outdated=[])
        scheduler = make_scheduler(host)

        assert scheduler.run_cycle(threading.Event())

        assert scheduler.last_run is not None
        assert host.log == []
        assert host.hidden == 0
        assert host.refreshes == 0
        assert not host.operation_lock.locked()

    def test_upgrade_streams_into_log(self, make_scheduler):
        host = FakeHost(outdated=OUTDATED, chunks=["==> Upgrading wget\n", "done\n"])
        scheduler = make_scheduler(host)

        assert scheduler.run_cycle(threading.Event())

        assert host.log[0] == "Auto-updating 1 package(s)...\n"
        assert host.log[1:3] == ["==> Upgrading wget\n", "done\n"]
        assert host.log[3].startswith("\nAuto-update completed successfully at ")
        assert host.refreshes == 1
        assert host.hidden == 1
        assert host.running == [True, False]
        assert host.streams[0].closed
        assert scheduler.last_run is not None
        assert not scheduler.is_busy
        assert not host.operation_lock.locked()

    def test_logs_are_hidden_after_the_delay(self, make_scheduler):
        host = FakeHost(outdated=OUTDATED, chunks=["x"])
        scheduler = make_scheduler(host, log_hide_delay=0.3)

        started = time.monotonic()
        scheduler.run_cycle(threading.Event())

        assert time.monotonic() - started >= 0.3
        assert host.hidden == 1

    def test_fetch_failure_reports_error_without_stamp(self, make_scheduler):
        host = FakeHost(fetch_error=CommandFailed("Error: offline"))
        scheduler = make_scheduler(host)

        assert not scheduler.run_cycle(threading.Event())

        assert host.errors == ["Auto-update failed: Error: offline"]
        assert scheduler.last_run is None
        assert not host.operation_lock.locked()

    def test_failed_upgrade_is_not_stamped(self, make_scheduler):
        host = FakeHost(outdated=OUTDATED, chunks=["Error: boom\n"], exit_status=1)
        scheduler = make_scheduler(host)

        assert not scheduler.run_cycle(threading.Event())

        assert scheduler.last_run is None
        assert host.errors == ["Auto-update failed: brew upgrade exited with status 1"]
        assert host.refreshes == 0
        assert host.hidden == 0

    def test_cancel_during_upgrade_stops_consuming(self, make_scheduler):
        cancelled = threading.Event()

        def on_chunk(index):
            if index == 1:
                cancelled.set()

        host = FakeHost(outdated=OUTDATED, chunks=["one\n", "two\n", "three\n"], on_chunk=on_chunk)
        scheduler = make_scheduler(host)

        assert not scheduler.run_cycle(cancelled)

        assert host.log == ["Auto-updating 1 package(s)...\n", "one\n"]
        assert host.streams[0].closed
        assert host.errors == []
        assert scheduler.last_run is None
        assert not host.operation_lock.locked()

    def test_waits_for_manual_operation(self, make_scheduler):
        host = FakeHost(outdated=[])
        scheduler = make_scheduler(host)
        host.operation_lock.acquire()

        worker = threading.Thread(target=scheduler.run_cycle, args=(threading.Event(),))
        worker.start()
        time.sleep(0.4)
        assert host.fetch_calls == 0

        host.operation_lock.release()
        worker.join(5)
        assert host.fetch_calls == 1

    def test_cancel_while_waiting_for_lock(self, make_scheduler):
        host = FakeHost(outdated=[])
        scheduler = make_scheduler(host)
        host.operation_lock.acquire()
        cancelled = threading.Event()
        results = []

        worker = threading.Thread(target=lambda: results.append(scheduler.run_cycle(cancelled)))
        worker.start()
        cancelled.set()
        worker.join(5)

        assert results == [False]
        assert host.fetch_calls == 0
        host.operation_lock.release()


class TestLoop:
    def test_enable_persists_and_runs_immediately(self, make_scheduler, config):
        host = FakeHost(outdated=[])
        scheduler = make_scheduler(host)

        scheduler.enable()

        assert config.is_auto_update_enabled()
        assert wait_for(lambda: host.fetch_calls == 1)
        assert wait_for(lambda: scheduler.last_run is not None)
        assert scheduler.status_message().startswith("Last auto-update: ")

    def test_disable_persists_and_stops(self, make_scheduler, config):
        host = FakeHost(outdated=[])
        scheduler = make_scheduler(host)
        scheduler.enable()
        wait_for(lambda: host.fetch_calls == 1)

        scheduler.disable()

        assert not config.is_auto_update_enabled()
        assert scheduler.live_task_count() == 0
        assert scheduler.status_message() == "Auto-update is disabled"

    def test_rapid_toggling_leaves_no_loops(self, make_scheduler):
        host = FakeHost(outdated=[])
        scheduler = make_scheduler(host)

        for _ in range(10):
            scheduler.enable()
            scheduler.disable()

        assert scheduler.live_task_count() == 0

    def test_enabling_twice_keeps_one_loop(self, make_scheduler):
        host = FakeHost(outdated=[])
        scheduler = make_scheduler(host)

        scheduler.enable()
        scheduler.enable()

        assert wait_for(lambda: scheduler.live_task_count() == 1)

    def test_failure_keeps_the_schedule(self, make_scheduler):
        host = FakeHost(fetch_error=CommandFailed("offline"))
        scheduler = make_scheduler(host, interval=0.05)

        scheduler.enable()

        assert wait_for(lambda: host.fetch_calls >= 3)
        assert scheduler.live_task_count() == 1
        assert scheduler.last_run is None
        scheduler.disable()

    def test_unexpected_error_is_reported_and_loop_continues(self, make_scheduler):
        host = FakeHost(fetch_error=ValueError("bad data"))
        scheduler = make_scheduler(host, interval=0.05)

        scheduler.enable()

        assert wait_for(lambda: host.fetch_calls >= 2)
        assert "Auto-update failed: bad data" in host.errors
        scheduler.disable()
        assert not host.operation_lock.locked()

    def test_resume_starts_loop_only_when_enabled(self, make_scheduler, config):
        host = FakeHost(outdated=[])
        scheduler = make_scheduler(host)

        scheduler.resume()
        assert scheduler.live_task_count() == 0
        assert host.fetch_calls == 0

        config.set_auto_update_enabled(True)
        scheduler.resume()
        assert wait_for(lambda: host.fetch_calls == 1)

    def test_shutdown_keeps_persisted_flag(self, make_scheduler, config):
        host = FakeHost(outdated=[])
        scheduler = make_scheduler(host)
        scheduler.enable()

        scheduler.shutdown()

        assert config.is_auto_update_enabled()
        assert scheduler.live_task_count() == 0

    def test_dead_loops_are_not_retained(self, make_scheduler):
        host = FakeHost(outdated=[])
        scheduler = make_scheduler(host)

        for _ in range(5):
            scheduler.enable()
            scheduler.disable()
        scheduler.enable()

        assert len(scheduler._tasks) == 1

    def test_flag_cleared_by_another_process_stops_loop(self, make_scheduler, config):
        host = FakeHost(outdated=[])
        scheduler = make_scheduler(host, interval=0.05)
        scheduler.enable()
        assert wait_for(lambda: host.fetch_calls >= 1)

        Settings(config_file=config.config_file).set_auto_update_enabled(False)

        assert wait_for(lambda: scheduler.live_task_count() == 0)
        assert not scheduler.enabled
        calls = host.fetch_calls
        time.sleep(0.2)
        assert host.fetch_calls == calls

    def test_interval_defaults_to_a_day(self, config):
        scheduler = AutoUpdateScheduler(FakeHost(), config)
        assert scheduler.interval == 24 * 3600
        assert scheduler.log_hide_delay == 30
