import json

from settings import Settings


class TestSettings:
    def test_defaults_without_file(self, tmp_path):
        cfg = Settings(config_file=tmp_path / "settings.json")
        assert cfg.get("auto_update_enabled") is False
        assert cfg.get_float("auto_update_interval_hours") == 24.0
        assert cfg.get_brew_path() is None
        assert cfg.get_cache_path() is None

    def test_auto_update_flag_persists(self, tmp_path):
        path = tmp_path / "cfg" / "settings.json"
        cfg = Settings(config_file=path)

        assert cfg.set_auto_update_enabled(True)

        assert json.loads(path.read_text())["auto_update_enabled"] is True
        assert Settings(config_file=path).is_auto_update_enabled()

    def test_user_values_override_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"search_result_limit": 5, "brew_path": "/custom/brew"}))
        cfg = Settings(config_file=path)
        assert cfg.get("search_result_limit") == 5
        assert cfg.get("listing_timeout") == 60
        assert cfg.get_brew_path() == "/custom/brew"

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path, caplog):
        path = tmp_path / "settings.json"
        path.write_text("{not json")
        cfg = Settings(config_file=path)
        assert cfg.get("command_timeout") == 30
        assert "Could not load settings" in caplog.text

    def test_non_object_file_is_ignored(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[1, 2]")
        assert Settings(config_file=path).get("command_timeout") == 30

    def test_bad_numeric_value_falls_back(self, tmp_path):
        cfg = Settings(config_file=tmp_path / "settings.json")
        cfg.set("command_timeout", "soon")
        assert cfg.get_float("command_timeout") == 30.0

    def test_save_failure_returns_false(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        cfg = Settings(config_file=blocker / "settings.json")
        assert cfg.set_auto_update_enabled(True) is False

    def test_reset_to_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        cfg = Settings(config_file=path)
        cfg.set("search_result_limit", 3)
        cfg.reset_to_defaults()
        assert cfg.get("search_result_limit") == 15
        assert json.loads(path.read_text())["search_result_limit"] == 15

    def test_brew_candidates(self, tmp_path):
        cfg = Settings(config_file=tmp_path / "settings.json")
        assert cfg.get_brew_candidates()[0] == "/opt/homebrew/bin/brew"
        cfg.set("brew_path_candidates", [])
        assert cfg.get_brew_candidates() == Settings.DEFAULTS["brew_path_candidates"]

    def test_reload_picks_up_flag_written_elsewhere(self, tmp_path):
        path = tmp_path / "settings.json"
        cfg = Settings(config_file=path)
        cfg.set_auto_update_enabled(True)
        cfg.set("search_result_limit", 3)

        Settings(config_file=path).set_auto_update_enabled(False)

        assert cfg.reload_auto_update_flag() is False
        assert not cfg.is_auto_update_enabled()
        assert cfg.get("search_result_limit") == 3

    def test_reload_without_file_keeps_memory_value(self, tmp_path):
        cfg = Settings(config_file=tmp_path / "settings.json")
        cfg.set("auto_update_enabled", True)
        assert cfg.reload_auto_update_flag() is True
