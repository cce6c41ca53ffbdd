import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class Settings:
    """Central settings management with sensible defaults."""

    DEFAULTS = {
        # Homebrew location
        "brew_path": "auto",  # "auto" or an explicit path to the brew executable
        "brew_path_candidates": [
            "/opt/homebrew/bin/brew",
            "/usr/local/bin/brew",
            "/usr/bin/brew",
        ],

        # Timeouts (seconds)
        "command_timeout": 30,
        "listing_timeout": 60,
        "search_timeout": 30,

        # Search
        "search_result_limit": 15,

        # Snapshot of the installed packages ("" = system temp directory)
        "cache_path": "",

        # Auto update
        "auto_update_enabled": False,
        "auto_update_interval_hours": 24,
        "auto_update_log_hide_seconds": 30,
    }

    def __init__(self, config_file: Optional[Path] = None):
        if config_file is None:
            config_file = Path.home() / ".config" / "brewdeck" / "settings.json"
        self.config_file = Path(config_file)
        self.config_dir = self.config_file.parent
        self._data: Dict[str, Any] = {}
        self.load()

    def load(self):
        """Load settings from file and fall back to defaults."""
        self._data = dict(self.DEFAULTS)

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    user_data = json.load(f)
                if isinstance(user_data, dict):
                    self._data.update(user_data)
                else:
                    logger.warning("Ignoring settings file %s: not a JSON object", self.config_file)
            except (OSError, ValueError) as e:
                logger.warning("Could not load settings: %s", e)

    def save(self) -> bool:
        """Persist the current settings."""
        tmp_file = self.config_file.with_suffix(".json.tmp")
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_file, 'w', encoding='utf-8') as f:
                json.dump(self._data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_file, self.config_file)
        except OSError as e:
            logger.error("Error while saving settings: %s", e)
            return False
        return True

    def get(self, key: str, default=None) -> Any:
        """Retrieve a setting value."""
        return self._data.get(key, default)

    def set(self, key: str, value: Any):
        """Store a setting value."""
        self._data[key] = value

    def reset_to_defaults(self):
        """Reset all settings."""
        self._data = dict(self.DEFAULTS)
        self.save()

    # ---- Convenience methods ----

    def is_auto_update_enabled(self) -> bool:
        return bool(self.get("auto_update_enabled", False))

    def set_auto_update_enabled(self, enabled: bool) -> bool:
        """Store and persist the auto update flag."""
        self.set("auto_update_enabled", bool(enabled))
        return self.save()

    def reload_auto_update_flag(self) -> bool:
        """Re-read only the auto update flag from disk; other unsaved values are kept."""
        if not self.config_file.exists():
            return self.is_auto_update_enabled()
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                user_data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Could not reload settings: %s", e)
            return self.is_auto_update_enabled()
        if isinstance(user_data, dict) and "auto_update_enabled" in user_data:
            self.set("auto_update_enabled", bool(user_data["auto_update_enabled"]))
        return self.is_auto_update_enabled()

    def get_brew_path(self) -> Optional[str]:
        """Return the configured brew path, or None to probe the default locations."""
        path = self.get("brew_path", "auto")
        if not path or path == "auto":
            return None
        return str(path)

    def get_brew_candidates(self) -> list[str]:
        return list(self.get("brew_path_candidates") or self.DEFAULTS["brew_path_candidates"])

    def get_float(self, key: str) -> float:
        """Return a numeric setting, falling back to the default on bad values."""
        try:
            return float(self.get(key))
        except (TypeError, ValueError):
            return float(self.DEFAULTS[key])

    def get_cache_path(self) -> Optional[Path]:
        path = self.get("cache_path", "")
        return Path(path).expanduser() if path else None


# Global instance
settings = Settings()
