import json
import random
import string
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from app_lifecycle.config import AppPaths, Settings
from app_lifecycle.manager import AppLifecycleManager
from app_lifecycle.models import ScriptResult


class FakePortProber:
    def __init__(self, bound=()):
        self.bound = set(bound)
        self.calls: List[int] = []

    def is_port_bound(self, port: int) -> bool:
        self.calls.append(port)
        return port in self.bound


class FakeExecutor:
    """Records every invocation; verbs listed in `failures` exit non-zero."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.failures: Dict[str, ScriptResult] = {}

    def execute(self, argv, *, cwd=None, env=None, timeout=None, cancel=None):
        self.calls.append({"argv": list(argv), "cwd": cwd, "env": env, "timeout": timeout})
        verb = argv[2]
        if verb in self.failures:
            return self.failures[verb]
        return ScriptResult(exit_code=0, stdout=f"{verb} ok\n", stderr="")

    @property
    def verbs(self) -> List[str]:
        return [c["argv"][2] for c in self.calls]


def random_app_id() -> str:
    return "app-" + "".join(random.choices(string.ascii_lowercase + string.digits, k=8))


def _write_json(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_root=tmp_path / "data",
        catalog_root=tmp_path / "catalog",
        scripts_root=tmp_path / "scripts",
        db_path=tmp_path / "state" / "apps.db",
    )


@pytest.fixture
def paths(settings) -> AppPaths:
    return AppPaths(settings)


@pytest.fixture
def prober() -> FakePortProber:
    return FakePortProber(bound={53})


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def manager(settings, prober, executor) -> AppLifecycleManager:
    return AppLifecycleManager(settings, port_prober=prober, executor=executor)


@pytest.fixture
def make_app(paths, manager):
    """
    Write a catalog app and, with installed=True, its local override,
    env file and registry row.
    """

    def _make(
        *,
        installed: bool = False,
        required_port: Optional[int] = None,
        random_field: bool = False,
        available_version: int = 2,
        version_marker: Optional[int] = None,
        app_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        app_id = app_id or random_app_id()
        fields = [{"env_variable": "TEST_FIELD", "label": "Test field", "type": "text", "required": True}]
        if random_field:
            fields.append({"env_variable": "RANDOM_FIELD", "label": "Random field", "type": "random", "required": True})

        manifest: Dict[str, Any] = {
            "id": app_id,
            "name": f"Test app {app_id}",
            "available_version": available_version,
            "version": "1.0.0",
            "port": 8400,
            "form_fields": fields,
            "requirements": {"ports": [required_port]} if required_port else {},
        }
        _write_json(paths.catalog_manifest(app_id), manifest)

        if installed:
            _write_json(paths.local_manifest(app_id), manifest)
            paths.env_file(app_id).write_text("TEST_FIELD=test\n")
            manager.repo.create(
                id=app_id,
                status="stopped",
                version=version_marker,
                config={"TEST_FIELD": "test"},
            )
        return manifest

    return _make
