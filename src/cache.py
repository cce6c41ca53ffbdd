import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional

from models import Package

logger = logging.getLogger(__name__)


class PackageCache:
    """Snapshot of the installed packages for a fast cold start."""

    def __init__(self, path: Optional[Path] = None):
        if path is None:
            path = Path(tempfile.gettempdir()) / "brew_cache.json"
        self.path = Path(path)

    def load(self) -> List[Package]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return [Package.from_dict(item) for item in data]
        except (OSError, ValueError, TypeError, KeyError) as exc:
            logger.warning("Error loading cache %s: %s", self.path, exc)
            return []

    def save(self, packages: Iterable[Package]):
        """Write the snapshot atomically; raises OSError on failure."""
        payload = [package.to_dict() for package in packages]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".brew_cache.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
