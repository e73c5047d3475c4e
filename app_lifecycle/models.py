from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

DEFAULT_SECRET_LENGTH = 32


class ResolutionSource(str, Enum):
    CATALOG = "catalog"
    LOCAL_OVERRIDE = "local_override"


class AppStatus(str, Enum):
    INSTALLING = "installing"
    RUNNING = "running"
    STARTING = "starting"
    STOPPING = "stopping"
    STOPPED = "stopped"
    UNINSTALLING = "uninstalling"
    UPDATING = "updating"


@dataclass(frozen=True)
class FormField:
    key: str
    label: str = ""
    required: bool = False
    random_generate: bool = False
    min_length: int = DEFAULT_SECRET_LENGTH

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormField":
        key = str(data["env_variable"])
        return cls(
            key=key,
            label=str(data.get("label") or key),
            required=bool(data.get("required", False)),
            random_generate=data.get("type") == "random",
            min_length=int(data.get("min") or DEFAULT_SECRET_LENGTH),
        )


@dataclass(frozen=True)
class AppManifest:
    id: str
    name: str
    available_version: int = 1
    version: Optional[str] = None
    port: Optional[int] = None
    required_ports: Tuple[int, ...] = ()
    form_fields: Tuple[FormField, ...] = ()
    description: str = ""
    available: bool = True
    exposable: bool = False
    author: Optional[str] = None
    source: Optional[str] = None
    categories: Tuple[str, ...] = ()
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppManifest":
        requirements = data.get("requirements") or {}
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            available_version=int(data.get("tipi_version", data.get("available_version", 1))),
            version=str(data["version"]) if data.get("version") is not None else None,
            port=int(data["port"]) if data.get("port") is not None else None,
            required_ports=tuple(int(p) for p in requirements.get("ports") or []),
            form_fields=tuple(FormField.from_dict(f) for f in data.get("form_fields") or []),
            description=str(data.get("description") or ""),
            available=bool(data.get("available", True)),
            exposable=bool(data.get("exposable", False)),
            author=data.get("author"),
            source=data.get("source"),
            categories=tuple(data.get("categories") or ()),
            raw=dict(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "available_version": self.available_version,
            "version": self.version,
            "port": self.port,
            "required_ports": list(self.required_ports),
            "form_fields": [
                {
                    "env_variable": f.key,
                    "label": f.label,
                    "required": f.required,
                    "random": f.random_generate,
                    "min": f.min_length,
                }
                for f in self.form_fields
            ],
            "description": self.description,
            "available": self.available,
            "exposable": self.exposable,
            "author": self.author,
            "source": self.source,
            "categories": list(self.categories),
        }


@dataclass(frozen=True)
class ResolvedManifest:
    manifest: AppManifest
    source: ResolutionSource
    path: Path


@dataclass(frozen=True)
class UpdateInfo:
    current: int
    latest: int
    version: Optional[str] = None

    @property
    def update_available(self) -> bool:
        return self.latest > self.current


@dataclass
class ScriptResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""


@dataclass
class InstalledApp:
    id: str
    status: str
    version: Optional[int]
    config: Dict[str, str]
    exposed: bool
    domain: Optional[str]
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
