"""Application configuration via environment variables and .env file.

The values saved here are the next run's defaults.
"""

import re
from pathlib import Path
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode
from pydantic_settings.sources import DotEnvSettingsSource, PydanticBaseSettingsSource

from wificomp.data.models import (
    DataMode,
    FrequencyFilter,
    MatchMode,
    Metric,
    SortBy,
    TimeWindow,
)

# Path to .env file (patch in tests to use tmp_path / ".env")
_ENV_FILE: Path = Path(".env")

# Columns the live AP listing can show
KNOWN_COLUMNS = ("ssid", "bssid", "signal", "channel", "band")


def _field_to_env_key(name: str) -> str:
    """Convert Settings field name to WIFICOMP_ env var name."""
    return "WIFICOMP_" + name.upper()


def _parse_env_line(line: str) -> tuple[str, str] | None:
    """Parse a single KEY=VALUE or KEY="VALUE" line. Returns (key, value) or None."""
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    m = re.match(r"([A-Za-z_][A-Za-z0-9_]*)=(.*)$", line)
    if not m:
        return None
    key, raw = m.group(1), m.group(2).strip()
    if raw.startswith('"') and raw.endswith('"') and len(raw) >= 2:
        raw = raw[1:-1].replace('\\"', '"').replace("\\n", "\n")
    return (key, raw)


def _format_env_value(value: str) -> str:
    """Format a value for .env: quote if it contains special chars."""
    if not value:
        return ""
    if re.search(r'[\s#"\\\n]', value):
        return '"' + value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n") + '"'
    return value


def _config_value_to_env_str(v: str | list[str] | int | float | bool | Path | None) -> str:
    """Convert a config value to .env string."""
    if isinstance(v, list):
        return ",".join(str(x) for x in v)
    if v is None:
        return ""
    return str(v)


class Settings(BaseSettings):
    model_config = {
        "env_prefix": "WIFICOMP_",
        "env_file_encoding": "utf-8",
        "env_ignore_empty": True,
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Load .env from _ENV_FILE (patchable in tests)
        return (
            init_settings,
            env_settings,
            DotEnvSettingsSource(
                settings_cls,
                env_file=_ENV_FILE,
                env_file_encoding="utf-8",
            ),
            file_secret_settings,
        )

    # Storage
    db_path: Path = Path("./data/wificomp.db")
    sessions_dir: Path = Path("./data/sessions")
    exports_dir: Path = Path("./data/exports")

    # Logging
    log_level: str = "info"

    # Scan source: "iw" or "mock"
    scan_source: str = "iw"
    interface: str | None = None
    use_sudo: bool = True
    scan_timeout: int = 30  # seconds before a scan is abandoned

    # Live scan
    auto_scan_interval: int = 5  # seconds between timer-driven scans
    default_timer_secs: int = 300  # 0 = no duration target
    tick_interval: float = 0.25  # main loop period in seconds

    # AP listing
    # Env: WIFICOMP_VISIBLE_COLUMNS="ssid,signal,channel"
    visible_columns: Annotated[list[str], NoDecode] = list(KNOWN_COLUMNS)
    highlight_best: bool = True
    sort_by: SortBy = SortBy.signal
    frequency_filter: FrequencyFilter = FrequencyFilter.all
    alert_threshold_dbm: int | None = None

    # History
    history_window: TimeWindow = TimeWindow.last_5m
    history_data_mode: DataMode = DataMode.raw

    # Comparison
    compare_match_by: MatchMode = MatchMode.bssid
    compare_metric: Metric = Metric.average

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    @field_validator("visible_columns", mode="before")
    @classmethod
    def parse_visible_columns(cls, v: object) -> list[str]:
        """Parse comma-separated string or list, keeping known columns only."""
        if isinstance(v, str):
            items = [s.strip().lower() for s in v.split(",")]
        elif isinstance(v, list):
            items = [str(s).strip().lower() for s in v]
        else:
            return []
        return [s for s in items if s in KNOWN_COLUMNS]

    def column_visible(self, column: str) -> bool:
        return column in self.visible_columns

    def duration_target_secs(self) -> int | None:
        """Default session duration target, None when disabled."""
        return self.default_timer_secs or None


def save_config(values: dict[str, str | list[str] | int | float | bool | None]) -> None:
    """Save configuration to .env file.

    Only stores keys that correspond to valid Settings fields.
    Merges with existing .env (preserves non-WIFICOMP_* lines and other vars).
    """
    valid_fields = set(Settings.model_fields.keys())
    filtered = {k: v for k, v in values.items() if k in valid_fields}

    # Read existing .env: keep non-WIFICOMP lines as-is, collect WIFICOMP_* into dict
    other_lines: list[str] = []
    app_vars: dict[str, str] = {}
    if _ENV_FILE.exists():
        with open(_ENV_FILE, encoding="utf-8") as f:
            for line in f:
                parsed = _parse_env_line(line)
                if parsed is None:
                    other_lines.append(line.rstrip("\n"))
                else:
                    key, val = parsed
                    if key.startswith("WIFICOMP_"):
                        app_vars[key] = val
                    else:
                        other_lines.append(line.rstrip("\n"))

    for name, val in filtered.items():
        app_vars[_field_to_env_key(name)] = _config_value_to_env_str(val)

    # Write: other lines first, then WIFICOMP_* in stable order
    with open(_ENV_FILE, "w", encoding="utf-8") as f:
        for line in other_lines:
            f.write(line + "\n")
        if other_lines:
            f.write("\n")
        for key in sorted(app_vars):
            f.write(f"{key}={_format_env_value(app_vars[key])}\n")


def load_config() -> Settings:
    """Load configuration from .env and environment (env overrides .env)."""
    return Settings()


settings = Settings()
