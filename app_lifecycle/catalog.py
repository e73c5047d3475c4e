import logging
from typing import List, Optional, Protocol

from app_lifecycle.config_store import ConfigStore
from app_lifecycle.errors import LoadError
from app_lifecycle.models import AppManifest, InstalledApp, UpdateInfo

logger = logging.getLogger(__name__)


class InstalledRegistry(Protocol):
    def get(self, app_id: str) -> Optional[InstalledApp]: ...


class CatalogLister:
    def __init__(self, configs: ConfigStore):
        self.configs = configs

    def list_available_apps(self) -> List[AppManifest]:
        """
        Every catalog app with a readable config.json, in directory order.
        Malformed entries are logged and skipped.
        """
        apps: List[AppManifest] = []
        seen = set()
        for path in self.configs.iter_catalog():
            app_id = path.parent.name
            try:
                manifest = self.configs.read_manifest(path, app_id)
            except LoadError as e:
                logger.warning("skipping catalog entry %s: %s", app_id, e.reason)
                continue
            if manifest.id in seen:
                logger.warning("skipping catalog entry %s: duplicate id %s", app_id, manifest.id)
                continue
            seen.add(manifest.id)
            apps.append(manifest)
        return apps


class UpdateChecker:
    def __init__(self, configs: ConfigStore, registry: InstalledRegistry):
        self.configs = configs
        self.registry = registry

    def get_update_info(self, app_id: str) -> Optional[UpdateInfo]:
        """None when the app is not installed."""
        installed = self.registry.get(app_id)
        if installed is None:
            return None

        latest = self.configs.catalog_manifest(app_id)
        if latest is None:
            latest = self.configs.resolve(app_id).manifest

        current = installed.version if installed.version is not None else 1
        return UpdateInfo(current=current, latest=latest.available_version, version=latest.version)
