import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from auto_update import AutoUpdateScheduler
from cache import PackageCache
from errors import BrewError, OperationInProgress
from models import OutdatedPackage, Package, format_size
from providers import BrewService, install_args, uninstall_args, upgrade_args
from runner import ActionStream
from settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class BrewController:
    """Owns the package lists, the operation log and the auto updater.

    Every state change goes through ``_update`` under one lock and is then
    announced to the subscribers with the name of the changed field.
    """

    def __init__(
        self,
        service: Optional[BrewService] = None,
        config: Optional[Settings] = None,
        cache: Optional[PackageCache] = None,
        scheduler: Optional[AutoUpdateScheduler] = None,
    ):
        self.config = config or default_settings
        self.service = service or BrewService(config=self.config)
        self.cache = cache or PackageCache(self.config.get_cache_path())
        self.operation_lock = threading.Lock()

        self._lock = threading.RLock()
        self._listeners: List[Callable[[str], None]] = []
        self._log_listeners: List[Callable[[str], None]] = []

        self.installed_packages: List[Package] = []
        self.outdated_packages: List[OutdatedPackage] = []
        self.search_results: List[Package] = []
        self.is_loading = False
        self.error: Optional[str] = None
        self.operation_output = ""
        self.is_running_operation = False
        self.show_logs = False
        self.total_disk_usage = 0

        self.scheduler = scheduler or AutoUpdateScheduler(self, self.config)
        self._load_cache()

    # ------------------------------------------------------------------
    # observation
    # ------------------------------------------------------------------
    def subscribe(self, callback: Callable[[str], None]):
        with self._lock:
            self._listeners.append(callback)

    def subscribe_log(self, callback: Callable[[str], None]):
        """Receive every piece of text added to the operation log."""
        with self._lock:
            self._log_listeners.append(callback)

    def _update(self, **fields):
        with self._lock:
            for name, value in fields.items():
                setattr(self, name, value)
            listeners = list(self._listeners)
        for name in fields:
            for callback in listeners:
                callback(name)

    def _emit_log(self, text: str):
        with self._lock:
            listeners = list(self._log_listeners)
        for callback in listeners:
            callback(text)

    # ------------------------------------------------------------------
    # cache
    # ------------------------------------------------------------------
    def _load_cache(self):
        cached = self.cache.load()
        if cached:
            logger.info("Loaded %d packages from cache", len(cached))
            self._update(installed_packages=cached, total_disk_usage=_total_size(cached))

    def _save_cache(self):
        try:
            self.cache.save(self.installed_packages)
        except OSError as exc:
            logger.error("Error saving cache: %s", exc)
            self._update(error=f"Failed to save cache: {exc}")

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def close(self):
        self.scheduler.shutdown()

    def refresh(self) -> bool:
        """Reload installed and outdated packages; the old listing survives a failure."""
        self._update(is_loading=True, error=None)
        try:
            with ThreadPoolExecutor(max_workers=2) as pool:
                installed_future = pool.submit(self.service.fetch_installed_packages)
                outdated_future = pool.submit(self.service.fetch_outdated_packages)
                installed = installed_future.result()
                outdated = outdated_future.result()
        except BrewError as exc:
            logger.error("Refresh failed: %s", exc)
            self._update(error=str(exc), is_loading=False)
            return False

        self._update(
            installed_packages=installed,
            outdated_packages=outdated,
            total_disk_usage=_total_size(installed),
            is_loading=False,
        )
        self._save_cache()
        return True

    def search(self, query: str) -> List[Package]:
        if len(query) < 2:
            self._update(search_results=[])
            return []

        self._update(is_loading=True)
        try:
            results = self.service.search_packages(query)
        except BrewError as exc:
            logger.error("Search for %r failed: %s", query, exc)
            self._update(error=str(exc), is_loading=False)
            return []
        self._update(search_results=results, is_loading=False)
        return results

    def dismiss_error(self):
        self._update(error=None)

    @property
    def formatted_total_size(self) -> str:
        return format_size(self.total_disk_usage)

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------
    def install(self, name: str) -> int:
        return self._run_operation(install_args(name), f"Starting installation of {name}...\n")

    def uninstall(self, package: Package) -> int:
        return self._run_operation(
            uninstall_args(package), f"Starting uninstallation of {package.name}...\n"
        )

    def upgrade(self, name: str) -> int:
        return self._run_operation(upgrade_args(name), f"Starting upgrade of {name}...\n")

    def upgrade_all(self) -> int:
        return self._run_operation(
            upgrade_args(), "Starting upgrade of all outdated packages...\n"
        )

    def _run_operation(self, arguments: List[str], banner: str) -> int:
        if not self.operation_lock.acquire(blocking=False):
            raise OperationInProgress()

        try:
            self._update(is_running_operation=True, error=None)
            self.begin_log(banner)
            stream = self.service.perform_action(arguments)
            try:
                for chunk in stream:
                    self.append_log(chunk)
            finally:
                stream.close()
            status = stream.exit_status or 0
        finally:
            self._update(is_running_operation=False)
            self.operation_lock.release()

        self.refresh()
        # refresh() clears the error, so a failed action is reported afterwards.
        if status != 0:
            self._update(error=f"brew {arguments[0]} exited with status {status}")
        return status

    # ------------------------------------------------------------------
    # auto update
    # ------------------------------------------------------------------
    @property
    def auto_update_enabled(self) -> bool:
        return self.config.is_auto_update_enabled()

    def set_auto_update_enabled(self, enabled: bool):
        if enabled:
            self.scheduler.enable()
        else:
            self.scheduler.disable()

    @property
    def auto_update_status_message(self) -> str:
        return self.scheduler.status_message()

    # Hooks used by AutoUpdateScheduler.
    def fetch_outdated_packages(self) -> List[OutdatedPackage]:
        return self.service.fetch_outdated_packages()

    def stream_upgrade_all(self) -> ActionStream:
        return self.service.stream_upgrade_all()

    def set_operation_running(self, running: bool):
        self._update(is_running_operation=running)

    def begin_log(self, text: str):
        self._update(operation_output=text, show_logs=True)
        self._emit_log(text)

    def append_log(self, text: str):
        with self._lock:
            self._update(operation_output=self.operation_output + text)
            self._emit_log(text)

    def hide_logs(self):
        self._update(show_logs=False)

    def report_error(self, message: str):
        self._update(error=message)


def _total_size(packages: List[Package]) -> int:
    return sum(p.size_on_disk for p in packages if p.size_on_disk is not None)
