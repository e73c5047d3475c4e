import logging
import shutil
import threading
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from app_lifecycle.app_repository import AppRepository
from app_lifecycle.catalog import CatalogLister, UpdateChecker
from app_lifecycle.config import AppPaths, Settings
from app_lifecycle.config_store import ConfigStore
from app_lifecycle.env_store import EnvFileStore
from app_lifecycle.environment import EnvironmentResolver
from app_lifecycle.errors import AppNotFound, RequirementsNotMet, ScriptFailed
from app_lifecycle.locks import KeyedLock
from app_lifecycle.models import (
    AppManifest,
    AppStatus,
    InstalledApp,
    ResolvedManifest,
    ScriptResult,
    UpdateInfo,
)
from app_lifecycle.requirements import PortProber, RequirementChecker, SocketPortProber
from app_lifecycle.scripts import ScriptExecutor, ScriptRunner, SubprocessExecutor
from app_lifecycle.utils import ensure_dir

logger = logging.getLogger(__name__)


class AppLifecycleManager:
    """
    Entry point for every app operation.

    Read-only queries (info, update status, listing, requirements) go
    straight to disk. Anything that writes the env file or runs a script
    holds the app's lock, so two calls for the same app id never interleave
    inside this process.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        port_prober: Optional[PortProber] = None,
        executor: Optional[ScriptExecutor] = None,
        repository: Optional[AppRepository] = None,
    ):
        self.settings = settings
        self.paths = AppPaths(settings)
        self.configs = ConfigStore(self.paths)
        self.envs = EnvFileStore(self.paths)
        self.repo = repository or AppRepository(settings.database_path)
        self.requirements = RequirementChecker(
            self.configs, port_prober or SocketPortProber(settings.probe_host)
        )
        self.environment = EnvironmentResolver(self.configs, self.envs)
        self.scripts = ScriptRunner(
            self.paths, executor or SubprocessExecutor(), default_timeout=settings.script_timeout
        )
        self.catalog = CatalogLister(self.configs)
        self.updates = UpdateChecker(self.configs, self.repo)
        self.locks = KeyedLock()

    # -------------------------
    # Core operations
    # -------------------------

    def check_requirements(self, app_id: str) -> bool:
        return self.requirements.check_requirements(app_id)

    def get_environment(self, app_id: str) -> Dict[str, str]:
        return self.environment.get_environment(app_id)

    def validate_environment(self, app_id: str) -> None:
        self.environment.validate_environment(app_id)

    def generate_environment(self, app_id: str, user_fields: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        with self.locks.hold(app_id):
            return self.environment.generate_environment(app_id, user_fields)

    def run_script(
        self,
        args: Sequence[str],
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ScriptResult:
        app_id = args[1] if len(args) > 1 else ""
        with self.locks.hold(app_id):
            return self.scripts.run_script(args, timeout=timeout, cancel=cancel)

    def resolve_app(self, app_id: str) -> ResolvedManifest:
        return self.configs.resolve(app_id)

    def get_app_info(self, app_id: str) -> AppManifest:
        return self.configs.resolve(app_id).manifest

    def get_update_info(self, app_id: str) -> Optional[UpdateInfo]:
        return self.updates.get_update_info(app_id)

    def update_available(self, app_id: str) -> bool:
        info = self.get_update_info(app_id)
        return bool(info and info.update_available)

    def list_available_apps(self) -> List[AppManifest]:
        return self.catalog.list_available_apps()

    def list_installed_apps(self) -> List[InstalledApp]:
        return self.repo.list()

    def get_logs(self, app_id: str) -> List[str]:
        return self.scripts.logs.get(app_id)

    # -------------------------
    # Installed tree
    # -------------------------

    def ensure_app_folder(self, app_id: str, clean: bool = False) -> None:
        """
        Copy the catalog app folder into the installed tree and its
        config.json into app-data as the local override.
        """
        source = self.paths.catalog_dir(app_id)
        if not self.paths.catalog_manifest(app_id).is_file():
            raise AppNotFound(app_id)

        target = self.paths.installed_dir(app_id)
        if clean and target.exists():
            shutil.rmtree(target)
        if not target.exists():
            ensure_dir(str(target.parent))
            shutil.copytree(source, target)

        data_dir = self.paths.app_data_dir(app_id)
        ensure_dir(str(data_dir))
        shutil.copyfile(self.paths.catalog_manifest(app_id), self.paths.local_manifest(app_id))
        metadata = source / "metadata"
        if metadata.is_dir():
            shutil.copytree(metadata, data_dir / "metadata", dirs_exist_ok=True)
        logger.info("app folder ready for %s (clean=%s)", app_id, clean)

    def _remove_app_folder(self, app_id: str) -> None:
        target = self.paths.installed_dir(app_id)
        if target.exists():
            shutil.rmtree(target)
        local = self.paths.local_manifest(app_id)
        if local.exists():
            local.unlink()
        metadata = self.paths.app_data_dir(app_id) / "metadata"
        if metadata.exists():
            shutil.rmtree(metadata)

    def _snapshot_app_folder(self, app_id: str) -> Tuple[Path, Optional[str]]:
        """Move the installed tree aside and keep the local override text."""
        target = self.paths.installed_dir(app_id)
        backup = target.with_name(f"{target.name}.bak")
        if backup.exists():
            shutil.rmtree(backup)
        if target.exists():
            target.rename(backup)
        local = self.paths.local_manifest(app_id)
        return backup, local.read_text(encoding="utf-8") if local.is_file() else None

    def _restore_app_folder(self, app_id: str, backup: Path, local_text: Optional[str]) -> None:
        target = self.paths.installed_dir(app_id)
        if backup.exists():
            if target.exists():
                shutil.rmtree(target)
            backup.rename(target)
        if local_text is not None:
            self.paths.local_manifest(app_id).write_text(local_text, encoding="utf-8")

    def _require_installed(self, app_id: str) -> InstalledApp:
        app = self.repo.get(app_id)
        if app is None:
            raise AppNotFound(app_id)
        return app

    # -------------------------
    # Lifecycle flows
    # -------------------------

    def install_app(
        self,
        app_id: str,
        form: Mapping[str, str],
        *,
        exposed: bool = False,
        domain: Optional[str] = None,
    ) -> InstalledApp:
        with self.locks.hold(app_id):
            if self.repo.get(app_id) is not None:
                logger.info("app %s already installed, starting it", app_id)
                return self.start_app(app_id)

            if not self.check_requirements(app_id):
                raise RequirementsNotMet(app_id)

            manifest = self.configs.catalog_manifest(app_id) or self.configs.require(app_id)
            self.ensure_app_folder(app_id, clean=True)
            self.repo.create(
                id=app_id,
                status=AppStatus.INSTALLING.value,
                version=manifest.available_version,
                config=dict(form),
                exposed=exposed,
                domain=domain,
            )

            had_env = self.envs.exists(app_id)
            try:
                self.environment.generate_environment(app_id, form)
                self.scripts.run_script(["install", app_id])
            except Exception:
                logger.exception("install of %s failed, rolling back", app_id)
                self.repo.delete(app_id)
                self._remove_app_folder(app_id)
                if not had_env:
                    self.environment.remove_environment(app_id)
                raise

            logger.info("app %s installed (version %s)", app_id, manifest.available_version)
            return self.repo.update_status(app_id, AppStatus.RUNNING.value)

    def start_app(self, app_id: str) -> InstalledApp:
        with self.locks.hold(app_id):
            app = self._require_installed(app_id)
            self.environment.validate_environment(app_id)
            self.environment.generate_environment(app_id, app.config)

            self.repo.update_status(app_id, AppStatus.STARTING.value)
            try:
                self.scripts.run_script(["start", app_id])
            except ScriptFailed:
                self.repo.update_status(app_id, AppStatus.STOPPED.value)
                raise
            return self.repo.update_status(app_id, AppStatus.RUNNING.value)

    def stop_app(self, app_id: str) -> InstalledApp:
        with self.locks.hold(app_id):
            self._require_installed(app_id)
            self.repo.update_status(app_id, AppStatus.STOPPING.value)
            try:
                self.scripts.run_script(["stop", app_id])
            except ScriptFailed:
                self.repo.update_status(app_id, AppStatus.RUNNING.value)
                raise
            return self.repo.update_status(app_id, AppStatus.STOPPED.value)

    def update_config(
        self,
        app_id: str,
        form: Mapping[str, str],
        *,
        exposed: Optional[bool] = None,
        domain: Optional[str] = None,
    ) -> InstalledApp:
        with self.locks.hold(app_id):
            self._require_installed(app_id)
            self.environment.generate_environment(app_id, form)
            if domain is not None:
                return self.repo.update(app_id, config=dict(form), exposed=exposed, domain=domain)
            return self.repo.update(app_id, config=dict(form), exposed=exposed)

    def uninstall_app(self, app_id: str) -> None:
        with self.locks.hold(app_id):
            self._require_installed(app_id)
            self.repo.update_status(app_id, AppStatus.UNINSTALLING.value)
            try:
                self.scripts.run_script(["stop", app_id])
                self.scripts.run_script(["uninstall", app_id])
            except ScriptFailed:
                self.repo.update_status(app_id, AppStatus.STOPPED.value)
                raise

            self.environment.remove_environment(app_id)
            self._remove_app_folder(app_id)
            self.repo.delete(app_id)
            logger.info("app %s uninstalled", app_id)

    def update_app(self, app_id: str) -> InstalledApp:
        with self.locks.hold(app_id):
            self._require_installed(app_id)
            self.repo.update_status(app_id, AppStatus.UPDATING.value)
            backup, local_text = self._snapshot_app_folder(app_id)
            try:
                self.ensure_app_folder(app_id, clean=True)
                self.scripts.run_script(["update", app_id])
            except (ScriptFailed, AppNotFound):
                logger.warning("update of %s failed, restoring previous app folder", app_id)
                self._restore_app_folder(app_id, backup, local_text)
                self.repo.update_status(app_id, AppStatus.STOPPED.value)
                raise
            if backup.exists():
                shutil.rmtree(backup)

            manifest = self.configs.resolve(app_id).manifest
            logger.info("app %s updated to version %s", app_id, manifest.available_version)
            return self.repo.update(app_id, status=AppStatus.STOPPED.value, version=manifest.available_version)
