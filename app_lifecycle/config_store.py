import json
import logging
from pathlib import Path
from typing import Iterator, Optional

from app_lifecycle.config import AppPaths
from app_lifecycle.errors import AppNotFound, LoadError
from app_lifecycle.models import AppManifest, ResolutionSource, ResolvedManifest
from app_lifecycle.validators import is_valid_app_id, validate_manifest

logger = logging.getLogger(__name__)


class ConfigStore:
    """
    Reads app manifests (config.json) from the catalog or from the
    locally installed override. Nothing is cached: every call hits disk.
    """

    def __init__(self, paths: AppPaths):
        self.paths = paths

    def read_manifest(self, path: Path, app_id: Optional[str] = None) -> AppManifest:
        app_id = app_id or path.parent.name
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            raise LoadError(app_id, str(e)) from e

        ok, errors = validate_manifest(data)
        if not ok:
            raise LoadError(app_id, "; ".join(f"{e['field']}: {e['message']}" for e in errors))

        description = self._read_description(path.parent)
        if description is not None:
            data = dict(data, description=description)
        return AppManifest.from_dict(data)

    def _read_description(self, app_dir: Path) -> Optional[str]:
        p = app_dir / "metadata" / "description.md"
        if not p.is_file():
            return None
        try:
            return p.read_text()
        except OSError:
            logger.warning("could not read %s", p)
            return None

    def is_installed(self, app_id: str) -> bool:
        return is_valid_app_id(app_id) and self.paths.local_manifest(app_id).is_file()

    def exists(self, app_id: str) -> bool:
        if not is_valid_app_id(app_id):
            return False
        return self.is_installed(app_id) or self.paths.catalog_manifest(app_id).is_file()

    def resolve(self, app_id: str) -> ResolvedManifest:
        """
        Local override wins over the catalog copy once the app is installed.
        Raises LoadError when no source yields a valid manifest.
        """
        if not is_valid_app_id(app_id):
            raise LoadError(app_id, "invalid app id")

        if self.is_installed(app_id):
            path = self.paths.local_manifest(app_id)
            return ResolvedManifest(self.read_manifest(path, app_id), ResolutionSource.LOCAL_OVERRIDE, path)

        path = self.paths.catalog_manifest(app_id)
        if path.is_file():
            return ResolvedManifest(self.read_manifest(path, app_id), ResolutionSource.CATALOG, path)

        raise LoadError(app_id, "no manifest found")

    def require(self, app_id: str) -> AppManifest:
        """Like resolve(), but a manifest missing everywhere is AppNotFound."""
        if not self.exists(app_id):
            raise AppNotFound(app_id)
        return self.resolve(app_id).manifest

    def catalog_manifest(self, app_id: str) -> Optional[AppManifest]:
        path = self.paths.catalog_manifest(app_id)
        if not is_valid_app_id(app_id) or not path.is_file():
            return None
        return self.read_manifest(path, app_id)

    def iter_catalog(self) -> Iterator[Path]:
        root = self.paths.catalog_apps_root
        if not root.is_dir():
            return
        for entry in root.iterdir():
            if entry.is_dir() and (entry / "config.json").is_file():
                yield entry / "config.json"
