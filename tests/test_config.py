"""Tests for winecellar.config: defaults, persistence, recent/favorite lists."""

import json

from winecellar.config import DEFAULT_CFG, MAX_RECENT_PREFIXES, ConfigStore, WineDebugLevel, load_cfg
from winecellar.models import WineArch, WindowsVersion


class TestLoadCfg:

    def test_creates_file_with_defaults(self, tmp_path):
        path = tmp_path / "sub" / "config.json"
        cfg = load_cfg(path)
        assert path.exists()
        assert cfg == DEFAULT_CFG

    def test_stored_values_overlay_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"wine_debug_level": "warn"}))
        cfg = load_cfg(path)
        assert cfg["wine_debug_level"] == "warn"
        assert cfg["dxvk_async"] is True

    def test_defaults_are_not_shared(self, tmp_path):
        cfg = load_cfg(tmp_path / "config.json")
        cfg["recent_prefixes"].append("x")
        assert DEFAULT_CFG["recent_prefixes"] == []


class TestConfigStore:

    def test_typed_defaults(self, config):
        assert config.default_architecture is WineArch.WIN64
        assert config.default_windows_version is WindowsVersion.WIN10
        assert config.enable_dxvk_by_default is True
        assert config.wine_debug_level is WineDebugLevel.NONE
        assert config.default_wine_version is None

    def test_setters_persist(self, config):
        config.wine_debug_level = WineDebugLevel.WARNINGS
        config.default_architecture = WineArch.WIN32
        config.default_wine_version = "wine-9.0"

        reloaded = ConfigStore(config.config_file)
        assert reloaded.wine_debug_level is WineDebugLevel.WARNINGS
        assert reloaded.default_architecture is WineArch.WIN32
        assert reloaded.default_wine_version == "wine-9.0"

    def test_unknown_values_fall_back(self, config):
        config.cfg["wine_debug_level"] = "loud"
        config.cfg["default_windows_version"] = "win95"
        assert config.wine_debug_level is WineDebugLevel.NONE
        assert config.default_windows_version is WindowsVersion.WIN10

    def test_recent_prefixes_move_to_front_and_are_bounded(self, config):
        for i in range(MAX_RECENT_PREFIXES + 3):
            config.add_recent_prefix(f"p{i}")
        config.add_recent_prefix("p5")

        recent = config.recent_prefixes
        assert len(recent) == MAX_RECENT_PREFIXES
        assert recent[0] == "p5"
        assert recent.count("p5") == 1
        assert "p0" not in recent

    def test_remove_recent_prefix(self, config):
        config.add_recent_prefix("a")
        config.add_recent_prefix("b")
        config.remove_recent_prefix("a")
        assert ConfigStore(config.config_file).recent_prefixes == ["b"]

    def test_toggle_favorite(self, config):
        config.toggle_favorite("app")
        assert config.is_favorite("app")
        config.toggle_favorite("app")
        assert not config.is_favorite("app")

    def test_reset_to_defaults(self, config):
        config.add_recent_prefix("a")
        config.enable_dxvk_by_default = False
        config.reset_to_defaults()
        assert config.recent_prefixes == []
        assert config.enable_dxvk_by_default is True

    def test_debug_level_display_names(self):
        assert WineDebugLevel.NONE.display_name == "None (Recommended)"
        assert [l.value for l in WineDebugLevel] == ["-all", "err", "warn", "trace", "+all"]
