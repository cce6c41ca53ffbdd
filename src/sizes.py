"""On-disk package sizes from ``du`` and matching them to package records."""

from __future__ import annotations

import logging
import os
import re
import shlex
from dataclasses import replace
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from errors import BrewError
from models import Package, PackageType
from runner import ProcessRunner, run_shell

logger = logging.getLogger(__name__)

# Lines for the store directories themselves are totals, not packages.
RESERVED_NAMES = ("cellar", "caskroom")

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)(.*)$", re.DOTALL)


def _entry_name(path: str) -> str:
    path = path.strip().strip("/")
    return path.rsplit("/", 1)[-1]


def parse_du_output(output: str) -> dict[str, int]:
    """Parse ``du -sk`` output into a name -> bytes map.

    Tab separated lines are split on the first tab, anything else falls back to
    a leading integer followed by the path. The last occurrence of a name wins.
    """

    sizes: dict[str, int] = {}
    for line in output.splitlines():
        if not line:
            continue

        parts = line.split("\t", 1)
        if len(parts) == 2:
            size_str, path = parts[0].strip(), parts[1]
        else:
            match = _LEADING_INT.match(line)
            if not match:
                continue
            size_str, path = match.group(1), match.group(2).strip()
            if not path:
                continue

        try:
            size_kb = int(size_str)
        except ValueError:
            continue
        if size_kb < 0:
            continue

        name = _entry_name(path)
        if not name or name.lower() in RESERVED_NAMES:
            continue
        sizes[name] = size_kb * 1024

    return sizes


class SizeIndexer:
    """Builds the name -> bytes index for the Cellar and the Caskroom."""

    def __init__(self, runner: ProcessRunner, shell: Callable[[str], str] = run_shell,
                 query_timeout: float = 30.0):
        self._runner = runner
        self._shell = shell
        self._query_timeout = query_timeout

    def store_paths(self) -> list[str]:
        paths: list[str] = []
        for flag in ("--cellar", "--caskroom"):
            try:
                path = self._runner.run([flag], timeout=self._query_timeout).strip()
            except BrewError as exc:
                logger.warning("brew %s failed, skipping that store: %s", flag, exc)
                continue
            if path and os.path.isdir(path):
                paths.append(path)
            else:
                logger.debug("Store for brew %s does not exist: %r", flag, path)
        return paths

    def build_index(self) -> Mapping[str, int]:
        paths = self.store_paths()
        if not paths:
            logger.warning("No paths to scan for package sizes")
            return MappingProxyType({})

        globs = " ".join(f"{shlex.quote(path)}/*" for path in paths)
        command = f"du -sk {globs} 2>/dev/null"
        output = self._shell(command)

        parsed = parse_du_output(output)
        logger.info("Parsed %d package sizes", len(parsed))

        index: dict[str, int] = {}
        for name, size in parsed.items():
            index[name] = size
            index.setdefault(name.lower(), size)
        return MappingProxyType(index)


def size_candidates(name: str) -> list[str]:
    """Name variants tried against the size index, most specific first."""

    short = name.rsplit("/", 1)[-1]
    variants = [
        name,
        short,
        name.lower(),
        short.lower(),
        re.sub(r"\s+", "-", name.strip().lower()),
        re.sub(r"\s+", "-", short.strip().lower()),
    ]
    seen: list[str] = []
    for variant in variants:
        if variant and variant not in seen:
            seen.append(variant)
    return seen


def needs_size_lookup(package: Package) -> bool:
    # Homebrew reports 0 for formulae whose installed size it did not record.
    if package.type is PackageType.CASK:
        return True
    return package.size_on_disk is None or package.size_on_disk == 0


def resolve_size(package: Package, index: Mapping[str, int]) -> Optional[int]:
    names: Iterable[str] = [package.name]
    if package.full_name and package.full_name != package.name:
        names = [package.name, package.full_name]

    for name in names:
        for candidate in size_candidates(name):
            size = index.get(candidate)
            if size is not None:
                return size
    return None


def reconcile_sizes(packages: Iterable[Package], index: Mapping[str, int]) -> list[Package]:
    """Fill in missing sizes from *index*; records without a match are kept unchanged."""

    result: list[Package] = []
    for package in packages:
        if not needs_size_lookup(package):
            result.append(package)
            continue

        size = resolve_size(package, index)
        if size is None:
            logger.warning("No size found for %s: %s", package.type.value, package.name)
            result.append(package)
            continue

        logger.debug("Set size for %s from du: %d bytes", package.name, size)
        result.append(replace(package, size_on_disk=size))
    return result
