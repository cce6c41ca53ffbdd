"""Background loop that periodically upgrades outdated packages."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Optional

from errors import BrewError, CommandFailed
from models import format_relative_time

logger = logging.getLogger(__name__)

# How often a cycle waiting for the operation lock looks at its cancel flag.
LOCK_POLL_INTERVAL = 0.25


def auto_update_status_message(enabled: bool, last_run: Optional[datetime],
                               now: Optional[datetime] = None) -> str:
    if not enabled:
        return "Auto-update is disabled"
    if last_run is None:
        return "Auto-update enabled (waiting for next check)"
    return f"Last auto-update: {format_relative_time(last_run, now)}"


class _LoopTask:
    """One run of the scheduler loop together with its cancel flag."""

    def __init__(self, target):
        self.cancelled = threading.Event()
        self.thread = threading.Thread(
            target=target,
            args=(self.cancelled,),
            name="brew-auto-update",
            daemon=True,
        )

    def start(self):
        self.thread.start()

    def cancel(self):
        self.cancelled.set()

    def is_alive(self) -> bool:
        return self.thread.is_alive()


class AutoUpdateScheduler:
    """Checks for outdated packages and upgrades them at a fixed interval.

    The persisted enabled flag lives in *store* (see ``settings.Settings``);
    everything else is in memory. *host* is the state owner: it provides the
    brew queries, the log surface and the ``operation_lock`` shared with manual
    operations, so an auto-update cycle never runs next to an install.
    """

    def __init__(self, host, store, interval: Optional[float] = None,
                 log_hide_delay: Optional[float] = None, join_timeout: float = 5.0):
        self._host = host
        self._store = store
        if interval is None:
            interval = store.get_float("auto_update_interval_hours") * 3600
        if log_hide_delay is None:
            log_hide_delay = store.get_float("auto_update_log_hide_seconds")
        self.interval = interval
        self.log_hide_delay = log_hide_delay
        self.join_timeout = join_timeout

        self._state_lock = threading.Lock()
        self._task: Optional[_LoopTask] = None
        self._tasks: list[_LoopTask] = []
        self._busy = False
        self._last_run: Optional[datetime] = None

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------
    @property
    def enabled(self) -> bool:
        return self._store.is_auto_update_enabled()

    @property
    def is_busy(self) -> bool:
        with self._state_lock:
            return self._busy

    @property
    def last_run(self) -> Optional[datetime]:
        with self._state_lock:
            return self._last_run

    @last_run.setter
    def last_run(self, value: Optional[datetime]):
        with self._state_lock:
            self._last_run = value

    def status_message(self, now: Optional[datetime] = None) -> str:
        return auto_update_status_message(self.enabled, self.last_run, now)

    def live_task_count(self) -> int:
        with self._state_lock:
            self._tasks = [task for task in self._tasks if task.is_alive()]
            return len(self._tasks)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def enable(self):
        self._store.set_auto_update_enabled(True)
        self._start_loop()
        logger.info("Auto-update enabled")

    def disable(self):
        self._store.set_auto_update_enabled(False)
        self._stop_loop()
        logger.info("Auto-update disabled")

    def resume(self):
        """Start the loop at launch if it was enabled in a previous session."""
        with self._state_lock:
            running = self._task is not None
        if self.enabled and not running:
            self._start_loop()

    def shutdown(self):
        """Stop the loop without changing the persisted flag."""
        self._stop_loop()

    def _start_loop(self):
        with self._state_lock:
            if self._task is not None:
                self._task.cancel()
            task = _LoopTask(self._loop)
            self._task = task
            self._tasks = [t for t in self._tasks if t.is_alive()]
            self._tasks.append(task)
            task.start()

    def _stop_loop(self):
        with self._state_lock:
            if self._task is not None:
                self._task.cancel()
            self._task = None
            tasks = list(self._tasks)

        current = threading.current_thread()
        for task in tasks:
            task.cancel()
            if task.thread is not current:
                task.thread.join(self.join_timeout)
                if task.is_alive():
                    logger.warning("Auto-update loop did not stop within %ss", self.join_timeout)

    def _loop(self, cancelled: threading.Event):
        logger.debug("Auto-update loop started")
        while not cancelled.is_set():
            # "brewdeck auto-update off" in another process only writes the file.
            self._store.reload_auto_update_flag()
            if not self.enabled:
                break

            try:
                self.run_cycle(cancelled)
            except Exception as exc:
                logger.exception("Unexpected error during auto-update")
                self._host.report_error(f"Auto-update failed: {exc}")

            if cancelled.is_set() or not self.enabled:
                break
            if cancelled.wait(self.interval):
                break
        logger.debug("Auto-update loop stopped")

    # ------------------------------------------------------------------
    # update cycle
    # ------------------------------------------------------------------
    def run_cycle(self, cancelled: threading.Event) -> bool:
        """Run one check-and-upgrade pass. Returns True if it completed."""

        if not self._acquire_operation(cancelled):
            return False

        self._set_busy(True)
        try:
            completed = self._perform_update(cancelled)
        finally:
            self._set_busy(False)
            self._host.operation_lock.release()

        if completed == "upgraded" and not cancelled.wait(self.log_hide_delay):
            self._host.hide_logs()
        return completed is not None

    def _acquire_operation(self, cancelled: threading.Event) -> bool:
        lock = self._host.operation_lock
        while not cancelled.is_set():
            if lock.acquire(timeout=LOCK_POLL_INTERVAL):
                if cancelled.is_set():
                    lock.release()
                    return False
                return True
        return False

    def _set_busy(self, busy: bool):
        with self._state_lock:
            self._busy = busy
        self._host.set_operation_running(busy)

    def _stamp(self):
        self.last_run = datetime.now().astimezone()

    def _perform_update(self, cancelled: threading.Event) -> Optional[str]:
        try:
            outdated = self._host.fetch_outdated_packages()
            if cancelled.is_set():
                return None

            if not outdated:
                self._stamp()
                return "up-to-date"

            self._host.begin_log(f"Auto-updating {len(outdated)} package(s)...\n")
            stream = self._host.stream_upgrade_all()
            try:
                for chunk in stream:
                    if cancelled.is_set():
                        logger.info("Auto-update cancelled during upgrade")
                        return None
                    self._host.append_log(chunk)
            finally:
                stream.close()

            if cancelled.is_set():
                return None
            if stream.exit_status:
                raise CommandFailed(f"brew upgrade exited with status {stream.exit_status}")

            self._stamp()
            finished_at = datetime.now().strftime("%H:%M:%S")
            self._host.append_log(f"\nAuto-update completed successfully at {finished_at}\n")
            self._host.refresh()
            return "upgraded"
        except BrewError as exc:
            if cancelled.is_set():
                return None
            logger.error("Auto-update failed: %s", exc)
            self._host.report_error(f"Auto-update failed: {exc}")
            return None
