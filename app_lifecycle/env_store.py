import logging
import os
from typing import Dict, Mapping

from app_lifecycle.config import AppPaths
from app_lifecycle.utils import ensure_dir

logger = logging.getLogger(__name__)


def parse_env(text: str) -> Dict[str, str]:
    env: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.rstrip("\r")
        if not line.strip() or "=" not in line:
            continue
        key, value = line.split("=", 1)
        env[key] = value
    return env


def render_env(env: Mapping[str, str]) -> str:
    return "".join(f"{k}={v}\n" for k, v in env.items())


class EnvFileStore:
    """
    Persists an app's KEY=VALUE environment (app-data/<id>/app.env).
    The file on disk is the only copy; nothing is kept in memory.
    """

    def __init__(self, paths: AppPaths):
        self.paths = paths

    def exists(self, app_id: str) -> bool:
        return self.paths.env_file(app_id).is_file()

    def read(self, app_id: str) -> Dict[str, str]:
        p = self.paths.env_file(app_id)
        if not p.is_file():
            return {}
        return parse_env(p.read_text())

    def write(self, app_id: str, env: Mapping[str, str]) -> None:
        p = self.paths.env_file(app_id)
        ensure_dir(str(p.parent))
        tmp = p.with_name(p.name + ".tmp")
        tmp.write_text(render_env(env))
        os.replace(tmp, p)
        logger.debug("wrote %d variables to %s", len(env), p)

    def delete(self, app_id: str) -> bool:
        p = self.paths.env_file(app_id)
        if not p.exists():
            return False
        p.unlink()
        return True
