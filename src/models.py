from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
import json
from typing import Any, List, Optional

from errors import ParsingError


class PackageType(str, Enum):
    FORMULA = "formula"
    CASK = "cask"


@dataclass
class Package:
    name: str                  # formula name or cask token
    type: PackageType
    latest_version: str = ""
    full_name: Optional[str] = None     # tap-qualified formula name, display name for casks
    description: Optional[str] = None
    homepage: Optional[str] = None
    installed_version: Optional[str] = None
    is_outdated: bool = False
    size_on_disk: Optional[int] = None  # None = unknown, 0 = known to be empty
    dependencies: Optional[List[str]] = None
    installation_path: Optional[str] = None
    install_date: Optional[datetime] = None

    @property
    def is_installed(self) -> bool:
        return self.installed_version is not None

    @property
    def formatted_size(self) -> Optional[str]:
        if self.size_on_disk is None:
            return None
        return format_size(self.size_on_disk)

    @classmethod
    def from_formula(cls, data: dict) -> "Package":
        installed = data.get("installed") or []
        first = installed[0] if installed else {}
        deps = first.get("runtime_dependencies")
        return cls(
            name=data["name"],
            type=PackageType.FORMULA,
            full_name=data.get("full_name"),
            description=data.get("desc"),
            homepage=data.get("homepage"),
            installed_version=first.get("version"),
            latest_version=(data.get("versions") or {}).get("stable") or "",
            is_outdated=bool(data.get("outdated", False)),
            size_on_disk=first.get("installed_size"),
            dependencies=[d["full_name"] for d in deps] if deps is not None else None,
            install_date=_from_timestamp(first.get("time")),
        )

    @classmethod
    def from_cask(cls, data: dict) -> "Package":
        names = data.get("name") or []
        return cls(
            name=data["token"],
            type=PackageType.CASK,
            full_name=names[0] if names else None,
            description=data.get("desc"),
            homepage=data.get("homepage"),
            installed_version=data.get("installed"),
            latest_version=data.get("version") or "",
            is_outdated=bool(data.get("outdated", False)),
            install_date=_from_timestamp(data.get("installed_time")),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["install_date"] = self.install_date.isoformat() if self.install_date else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Package":
        data = dict(data)
        data["type"] = PackageType(data["type"])
        if data.get("install_date"):
            data["install_date"] = datetime.fromisoformat(data["install_date"])
        return cls(**data)


@dataclass(frozen=True)
class OutdatedPackage:
    name: str
    type: PackageType
    installed_version: str
    latest_version: str

    @classmethod
    def from_json(cls, data: dict, package_type: PackageType) -> "OutdatedPackage":
        installed = data.get("installed_versions") or []
        return cls(
            name=data["name"],
            type=package_type,
            installed_version=installed[0] if installed else "",
            latest_version=data["current_version"],
        )


@dataclass
class InfoResponse:
    formulae: List[Package] = field(default_factory=list)
    casks: List[Package] = field(default_factory=list)

    @property
    def packages(self) -> List[Package]:
        return self.formulae + self.casks


def _from_timestamp(value) -> Optional[datetime]:
    if not isinstance(value, (int, float)):
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _load_json_object(text: str) -> dict:
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise ParsingError(f"Failed to parse Homebrew output: {exc}") from exc
    if not isinstance(data, dict):
        raise ParsingError("Failed to parse Homebrew output: expected a JSON object.")
    return data


def parse_info_response(text: str) -> InfoResponse:
    """Decode ``brew info --json=v2`` output."""
    data = _load_json_object(text)
    try:
        return InfoResponse(
            formulae=[Package.from_formula(f) for f in data.get("formulae") or []],
            casks=[Package.from_cask(c) for c in data.get("casks") or []],
        )
    except (KeyError, TypeError, AttributeError, IndexError) as exc:
        raise ParsingError(f"Failed to parse Homebrew output: missing {exc}") from exc


def parse_outdated_response(text: str) -> List[OutdatedPackage]:
    """Decode ``brew outdated --json=v2`` output."""
    data = _load_json_object(text)
    try:
        outdated = [OutdatedPackage.from_json(f, PackageType.FORMULA) for f in data.get("formulae") or []]
        outdated += [OutdatedPackage.from_json(c, PackageType.CASK) for c in data.get("casks") or []]
    except (KeyError, TypeError, AttributeError, IndexError) as exc:
        raise ParsingError(f"Failed to parse Homebrew output: missing {exc}") from exc
    return outdated


def format_size(size: int) -> str:
    """Human readable size in decimal units, the way Finder reports it."""
    if size == 0:
        return "0 bytes"
    if abs(size) < 1000:
        return f"{size} byte" if abs(size) == 1 else f"{size} bytes"

    value = float(size)
    for unit, decimals in (("KB", 0), ("MB", 1), ("GB", 2), ("TB", 2), ("PB", 2)):
        value /= 1000
        if abs(value) < 1000 or unit == "PB":
            text = f"{value:.{decimals}f}"
            if "." in text:
                text = text.rstrip("0").rstrip(".")
            return f"{text} {unit}"
    return f"{size} bytes"


def format_relative_time(when: datetime, now: Optional[datetime] = None) -> str:
    """Describe *when* relative to *now*, e.g. "5 minutes ago" or "in 2 hours"."""
    if now is None:
        now = datetime.now(tz=when.tzinfo)
    seconds = int((now - when).total_seconds())
    if abs(seconds) < 1:
        return "just now"

    span = abs(seconds)
    for unit, length in (
        ("year", 365 * 86400),
        ("month", 30 * 86400),
        ("week", 7 * 86400),
        ("day", 86400),
        ("hour", 3600),
        ("minute", 60),
        ("second", 1),
    ):
        if span >= length:
            count = span // length
            break
    label = f"{count} {unit}" if count == 1 else f"{count} {unit}s"
    return f"{label} ago" if seconds > 0 else f"in {label}"
