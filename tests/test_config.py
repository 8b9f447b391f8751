"""Tests for configuration loading and saving."""

import re
from collections.abc import Generator
from pathlib import Path

import pytest

import wificomp.config as config_module
from wificomp.config import Settings, load_config, save_config
from wificomp.data.models import MatchMode, SortBy, TimeWindow


def _read_env_as_dict(env_path: Path) -> dict[str, str]:
    """Parse .env file into key -> value dict (WIFICOMP_* only, simple KEY=VALUE)."""
    result: dict[str, str] = {}
    if not env_path.exists():
        return result
    for line in env_path.read_text().splitlines():
        m = re.match(r"([A-Za-z_][A-Za-z0-9_]*)=(.*)$", line.strip())
        if m and m.group(1).startswith("WIFICOMP_"):
            result[m.group(1)] = m.group(2).strip().strip('"')
    return result


@pytest.fixture
def env_file(tmp_path: Path) -> Generator[Path, None, None]:
    """Use a temporary .env file instead of the real one."""
    env_path = tmp_path / ".env"
    original = config_module._ENV_FILE
    config_module._ENV_FILE = env_path
    yield env_path
    config_module._ENV_FILE = original


class TestVisibleColumns:
    def test_default_shows_everything(self, env_file):
        cfg = Settings()
        assert cfg.visible_columns == ["ssid", "bssid", "signal", "channel", "band"]

    def test_comma_separated_env(self, env_file, monkeypatch):
        monkeypatch.setenv("WIFICOMP_VISIBLE_COLUMNS", "SSID, signal,bogus")
        cfg = Settings()
        assert cfg.visible_columns == ["ssid", "signal"]
        assert cfg.column_visible("signal")
        assert not cfg.column_visible("bssid")


class TestDefaults:
    def test_duration_target(self, env_file, monkeypatch):
        assert Settings().duration_target_secs() == 300
        monkeypatch.setenv("WIFICOMP_DEFAULT_TIMER_SECS", "0")
        assert Settings().duration_target_secs() is None

    def test_enum_values_from_env(self, env_file, monkeypatch):
        monkeypatch.setenv("WIFICOMP_HISTORY_WINDOW", "10m")
        monkeypatch.setenv("WIFICOMP_COMPARE_MATCH_BY", "both")
        cfg = Settings()
        assert cfg.history_window is TimeWindow.last_10m
        assert cfg.compare_match_by is MatchMode.both


class TestSaveConfig:
    def test_writes_env(self, env_file):
        save_config({"sort_by": "channel", "visible_columns": ["ssid", "signal"]})
        values = _read_env_as_dict(env_file)
        assert values["WIFICOMP_SORT_BY"] == "channel"
        assert values["WIFICOMP_VISIBLE_COLUMNS"] == "ssid,signal"

    def test_saved_values_load_next_run(self, env_file):
        save_config({"sort_by": "ssid", "visible_columns": ["bssid"], "alert_threshold_dbm": -70})
        cfg = load_config()
        assert cfg.sort_by is SortBy.ssid
        assert cfg.visible_columns == ["bssid"]
        assert cfg.alert_threshold_dbm == -70

    def test_none_clears_value(self, env_file):
        save_config({"alert_threshold_dbm": -70})
        save_config({"alert_threshold_dbm": None})
        assert _read_env_as_dict(env_file)["WIFICOMP_ALERT_THRESHOLD_DBM"] == ""
        assert load_config().alert_threshold_dbm is None

    def test_ignores_unknown_keys(self, env_file):
        save_config({"not_a_setting": "x", "port": 9000})
        values = _read_env_as_dict(env_file)
        assert "WIFICOMP_NOT_A_SETTING" not in values
        assert values["WIFICOMP_PORT"] == "9000"

    def test_preserves_other_lines(self, env_file):
        env_file.write_text("# local overrides\nOTHER_VAR=1\nWIFICOMP_PORT=8001\n")
        save_config({"host": "0.0.0.0"})
        text = env_file.read_text()
        assert "# local overrides" in text
        assert "OTHER_VAR=1" in text
        values = _read_env_as_dict(env_file)
        assert values["WIFICOMP_PORT"] == "8001"
        assert values["WIFICOMP_HOST"] == "0.0.0.0"

    def test_quotes_values_with_spaces(self, env_file):
        save_config({"interface": "my iface"})
        assert 'WIFICOMP_INTERFACE="my iface"' in env_file.read_text()
