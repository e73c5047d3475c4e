import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

DEFAULT_SETTINGS_PATH = Path("config/settings.yaml")
ENV_PREFIX = "APP_LIFECYCLE_"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    data_root: Path = Path("data")
    catalog_root: Path = Path("catalog")
    scripts_root: Path = Path("scripts")
    db_path: Optional[Path] = None
    probe_host: str = "127.0.0.1"
    script_timeout: Optional[float] = None
    log_level: str = "INFO"

    @property
    def database_path(self) -> Path:
        if self.db_path is None:
            return self.data_root / "state" / "apps.db"
        return self.db_path


class AppPaths:
    """
    Every per-app location on disk, derived from one Settings value.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def catalog_apps_root(self) -> Path:
        return self.settings.catalog_root / "apps"

    def catalog_dir(self, app_id: str) -> Path:
        return self.catalog_apps_root / app_id

    def catalog_manifest(self, app_id: str) -> Path:
        return self.catalog_dir(app_id) / "config.json"

    def app_data_dir(self, app_id: str) -> Path:
        return self.settings.data_root / "app-data" / app_id

    def env_file(self, app_id: str) -> Path:
        return self.app_data_dir(app_id) / "app.env"

    def local_manifest(self, app_id: str) -> Path:
        return self.app_data_dir(app_id) / "config.json"

    def installed_dir(self, app_id: str) -> Path:
        return self.settings.data_root / "apps" / app_id

    def script_candidates(self, app_id: str) -> list[Path]:
        return [
            self.installed_dir(app_id) / "scripts" / "app.sh",
            self.catalog_dir(app_id) / "scripts" / "app.sh",
            self.settings.scripts_root / "app.sh",
        ]


def _from_mapping(raw: Dict[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for key in ("data_root", "catalog_root", "scripts_root", "db_path"):
        if raw.get(key):
            values[key] = Path(str(raw[key]))
    if raw.get("probe_host"):
        values["probe_host"] = str(raw["probe_host"]).strip()
    if raw.get("script_timeout") not in (None, ""):
        values["script_timeout"] = float(raw["script_timeout"])
    if raw.get("log_level"):
        values["log_level"] = str(raw["log_level"]).upper()
    return values


def load_settings(path: Union[str, Path, None] = None) -> Settings:
    """
    Build Settings from an optional YAML file, then environment overrides.

    Precedence: APP_LIFECYCLE_* env vars > YAML file > defaults.
    A missing YAML file is not an error; a malformed one is.
    """
    p = Path(path) if path else DEFAULT_SETTINGS_PATH
    raw: Dict[str, Any] = {}
    if p.exists():
        raw = yaml.safe_load(p.read_text()) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Settings file must be a mapping: {p}")
        logger.debug("loaded settings from %s", p)

    settings = replace(Settings(), **_from_mapping(raw))

    env: Dict[str, Any] = {}
    for key in ("data_root", "catalog_root", "scripts_root", "db_path", "probe_host", "script_timeout", "log_level"):
        value = os.environ.get(ENV_PREFIX + key.upper())
        if value is not None:
            env[key] = value
    return replace(settings, **_from_mapping(env))


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
