import pytest

from settings import Settings


@pytest.fixture
def config(tmp_path):
    """Settings stored in a temporary directory."""
    cfg = Settings(config_file=tmp_path / "config" / "settings.json")
    cfg.set("cache_path", str(tmp_path / "brew_cache.json"))
    return cfg


@pytest.fixture
def fake_brew(tmp_path):
    """Write an executable shell script that plays the part of brew."""

    def _make(body: str, name: str = "brew") -> str:
        script = tmp_path / name
        script.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
        script.chmod(0o755)
        return str(script)

    return _make


@pytest.fixture(scope="session")
def qapp():
    from PySide6.QtCore import QCoreApplication

    app = QCoreApplication.instance() or QCoreApplication([])
    yield app
