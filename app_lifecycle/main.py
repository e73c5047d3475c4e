"""
HTTP surface for the lifecycle manager.

Run with:
    app-lifecycle
or
    uvicorn app_lifecycle.main:create_app --factory
"""
import logging
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from app_lifecycle.config import configure_logging, load_settings
from app_lifecycle.errors import (
    AppNotFound,
    ConfigOutdated,
    LoadError,
    MissingField,
    RequirementsNotMet,
    ScriptFailed,
)
from app_lifecycle.manager import AppLifecycleManager
from app_lifecycle.models import InstalledApp
from app_lifecycle.validators import is_valid_app_id, validate_form

logger = logging.getLogger(__name__)


def _installed_to_dict(app_obj: Optional[InstalledApp]) -> Dict[str, Any]:
    if app_obj is None:
        return {}
    return {
        "id": app_obj.id,
        "status": app_obj.status,
        "version": app_obj.version if app_obj.version is not None else 1,
        "config": app_obj.config,
        "exposed": app_obj.exposed,
        "domain": app_obj.domain,
        "created_at": app_obj.created_at,
        "updated_at": app_obj.updated_at,
    }


def _form_from_payload(payload: Dict[str, Any]) -> Dict[str, str]:
    form = payload.get("form") or {}
    ok, errors = validate_form(form)
    if not ok:
        raise HTTPException(422, {"errors": errors})
    return {k: str(v) for k, v in form.items()}


def create_app(manager: Optional[AppLifecycleManager] = None) -> FastAPI:
    if manager is None:
        settings = load_settings()
        configure_logging(settings.log_level)
        manager = AppLifecycleManager(settings)

    app = FastAPI(title="App Lifecycle Manager", version="0.3.0")
    app.state.manager = manager

    @app.exception_handler(AppNotFound)
    async def _not_found(request: Request, exc: AppNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(LoadError)
    async def _load_error(request: Request, exc: LoadError):
        return JSONResponse(status_code=404, content={"detail": str(exc), "reason": exc.reason})

    @app.exception_handler(MissingField)
    async def _missing_field(request: Request, exc: MissingField):
        return JSONResponse(status_code=422, content={"detail": str(exc), "field": exc.key})

    @app.exception_handler(ConfigOutdated)
    async def _config_outdated(request: Request, exc: ConfigOutdated):
        return JSONResponse(status_code=409, content={"detail": str(exc), "missing": exc.missing})

    @app.exception_handler(RequirementsNotMet)
    async def _requirements(request: Request, exc: RequirementsNotMet):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ScriptFailed)
    async def _script_failed(request: Request, exc: ScriptFailed):
        logger.warning("%s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Lifecycle script failed", "exit_code": exc.exit_code, "stderr": exc.detail},
        )

    def _check_id(app_id: str) -> None:
        if not is_valid_app_id(app_id):
            raise HTTPException(422, "Invalid app id")

    # -------------------------
    # Read-only queries
    # -------------------------

    @app.get("/apps")
    def list_apps():
        return [m.to_dict() for m in manager.list_available_apps()]

    @app.get("/apps/installed")
    def list_installed():
        return [_installed_to_dict(a) for a in manager.list_installed_apps()]

    @app.get("/apps/{app_id}")
    def app_info(app_id: str):
        resolved = manager.resolve_app(app_id)
        return {**resolved.manifest.to_dict(), "source": resolved.source.value}

    @app.get("/apps/{app_id}/requirements")
    def app_requirements(app_id: str):
        _check_id(app_id)
        return {"id": app_id, "ok": manager.check_requirements(app_id)}

    @app.get("/apps/{app_id}/update")
    def app_update(app_id: str):
        info = manager.get_update_info(app_id)
        if info is None:
            raise HTTPException(404, "App not installed")
        return {
            "current": info.current,
            "latest": info.latest,
            "version": info.version,
            "update_available": info.update_available,
        }

    @app.get("/apps/{app_id}/logs")
    def app_logs(app_id: str):
        return {"id": app_id, "lines": manager.get_logs(app_id)}

    # -------------------------
    # Lifecycle
    # -------------------------

    @app.post("/apps/{app_id}/install")
    def install_app(app_id: str, payload: dict = Body(default={})):
        _check_id(app_id)
        form = _form_from_payload(payload)
        installed = manager.install_app(
            app_id,
            form,
            exposed=bool(payload.get("exposed", False)),
            domain=payload.get("domain") or None,
        )
        return _installed_to_dict(installed)

    @app.put("/apps/{app_id}/config")
    def update_config(app_id: str, payload: dict = Body(default={})):
        _check_id(app_id)
        form = _form_from_payload(payload)
        exposed = payload.get("exposed")
        updated = manager.update_config(
            app_id,
            form,
            exposed=bool(exposed) if exposed is not None else None,
            domain=payload.get("domain"),
        )
        return _installed_to_dict(updated)

    @app.post("/apps/{app_id}/start")
    def start_app(app_id: str):
        _check_id(app_id)
        return _installed_to_dict(manager.start_app(app_id))

    @app.post("/apps/{app_id}/stop")
    def stop_app(app_id: str):
        _check_id(app_id)
        return _installed_to_dict(manager.stop_app(app_id))

    @app.post("/apps/{app_id}/update")
    def update_app(app_id: str):
        _check_id(app_id)
        return _installed_to_dict(manager.update_app(app_id))

    @app.post("/apps/{app_id}/uninstall")
    def uninstall_app(app_id: str):
        _check_id(app_id)
        manager.uninstall_app(app_id)
        return {"ok": True}

    return app


def run(host: str = "127.0.0.1", port: int = 8100) -> None:
    import uvicorn

    uvicorn.run(create_app(), host=host, port=port)
