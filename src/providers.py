import logging
from typing import Iterable, List, Mapping, Optional

from models import OutdatedPackage, Package, PackageType, parse_info_response, parse_outdated_response
from runner import ActionStream, ProcessRunner, StreamingExecutor, locate_brew
from settings import Settings, settings as default_settings
from sizes import SizeIndexer, reconcile_sizes

logger = logging.getLogger(__name__)


def _is_search_name(token: str) -> bool:
    """Filter section headers out of ``brew search`` output."""
    if not token or "==>" in token:
        return False
    lowered = token.lower()
    return "formulae" not in lowered and "casks" not in lowered


def install_args(name: str) -> list[str]:
    return ["install", "--", name]


def uninstall_args(package: Package) -> list[str]:
    if package.type is PackageType.CASK:
        return ["uninstall", "--cask", "--zap", "--", package.name]
    return ["uninstall", "--", package.name]


def upgrade_args(name: Optional[str] = None) -> list[str]:
    return ["upgrade", "--", name] if name else ["upgrade"]


class BrewService:
    """Queries and actions against the local Homebrew installation."""

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        executor: Optional[StreamingExecutor] = None,
        indexer: Optional[SizeIndexer] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        brew_path = self.config.get_brew_path() or locate_brew(self.config.get_brew_candidates())
        self.runner = runner or ProcessRunner(brew_path)
        self.executor = executor or StreamingExecutor(brew_path)
        self.indexer = indexer or SizeIndexer(
            self.runner, query_timeout=self.config.get_float("command_timeout")
        )
        logger.info("BrewService initialized, brew path: %s", self.runner.brew_path)

    def fetch_package_sizes(self) -> Mapping[str, int]:
        return self.indexer.build_index()

    def fetch_installed_packages(self) -> List[Package]:
        """Installed formulae and casks with sizes filled in from the size index."""
        sizes = self.fetch_package_sizes()
        output = self.runner.run(
            ["info", "--json=v2", "--installed"],
            timeout=self.config.get_float("listing_timeout"),
        )
        response = parse_info_response(output)
        return reconcile_sizes(response.packages, sizes)

    def fetch_outdated_packages(self) -> List[OutdatedPackage]:
        output = self.runner.run(
            ["outdated", "--json=v2"],
            timeout=self.config.get_float("listing_timeout"),
        )
        return parse_outdated_response(output)

    def search_packages(self, query: str) -> List[Package]:
        if len(query) < 2:
            return []

        timeout = self.config.get_float("search_timeout")
        output = self.runner.run(["search", "--", query], timeout=timeout)
        names = [token.strip() for token in output.split()]
        names = [token for token in names if _is_search_name(token)]
        if not names:
            return []

        limit = int(self.config.get("search_result_limit", 15) or 15)
        info = self.runner.run(["info", "--json=v2", "--", *names[:limit]], timeout=timeout)
        return parse_info_response(info).packages

    def perform_action(self, arguments: Iterable[str]) -> ActionStream:
        return self.executor.stream(list(arguments))

    def stream_upgrade_all(self) -> ActionStream:
        return self.perform_action(upgrade_args())
