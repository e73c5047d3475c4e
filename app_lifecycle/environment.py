import logging
from typing import Dict, Mapping, Optional

from app_lifecycle.config_store import ConfigStore
from app_lifecycle.env_store import EnvFileStore
from app_lifecycle.errors import ConfigOutdated, MissingField
from app_lifecycle.utils import random_token
from app_lifecycle.validators import validate_form

logger = logging.getLogger(__name__)


class EnvironmentResolver:
    def __init__(self, configs: ConfigStore, envs: EnvFileStore):
        self.configs = configs
        self.envs = envs

    def get_environment(self, app_id: str) -> Dict[str, str]:
        return self.envs.read(app_id)

    def validate_environment(self, app_id: str) -> None:
        """
        Raises ConfigOutdated when a field the manifest now requires has no
        value in the persisted env file (the manifest changed since the last
        generation).
        """
        manifest = self.configs.require(app_id)
        env = self.envs.read(app_id)
        missing = [f.key for f in manifest.form_fields if f.required and not env.get(f.key)]
        if missing:
            logger.info("app %s env is missing %s", app_id, ", ".join(missing))
            raise ConfigOutdated(app_id, missing)

    def generate_environment(self, app_id: str, user_fields: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """
        Rewrite app.env from user values plus random fields.

        Random fields keep their persisted value when one exists; otherwise a
        token of the field's length is generated. The file is replaced as a
        whole, so keys neither supplied nor random are dropped.
        """
        manifest = self.configs.require(app_id)
        ok, errors = validate_form(dict(user_fields or {}))
        if not ok:
            raise ValueError("; ".join(f"{e['field']}: {e['message']}" for e in errors))
        user_fields = {k: str(v) for k, v in (user_fields or {}).items()}

        for f in manifest.form_fields:
            if f.required and not f.random_generate and not user_fields.get(f.key):
                raise MissingField(f.key, f.label)

        current = self.envs.read(app_id)
        env: Dict[str, str] = {}

        for f in manifest.form_fields:
            if not f.random_generate:
                continue
            if current.get(f.key):
                env[f.key] = current[f.key]
            elif user_fields.get(f.key):
                env[f.key] = user_fields[f.key]
            else:
                env[f.key] = random_token(f.min_length)
                logger.info("generated value for %s.%s", app_id, f.key)

        for key, value in user_fields.items():
            env.setdefault(key, value)

        self.envs.write(app_id, env)
        return env

    def remove_environment(self, app_id: str) -> bool:
        return self.envs.delete(app_id)
