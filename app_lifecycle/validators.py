from __future__ import annotations

import re
from typing import Any, Dict, Tuple

APP_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def _err(field: str, message: str) -> Dict[str, Any]:
    return {"field": field, "message": message}


def _is_port(value: Any) -> bool:
    try:
        port_int = int(value)
    except (TypeError, ValueError):
        return False
    return 1 <= port_int <= 65535


def is_valid_app_id(app_id: str) -> bool:
    return bool(app_id) and bool(APP_ID_RE.match(app_id))


def validate_manifest(payload: Any) -> Tuple[bool, list[Dict[str, Any]]]:
    """
    Validates a parsed config.json manifest.
    Returns: (ok, errors[])
    """
    if not isinstance(payload, dict):
        return False, [_err("", "manifest must be a JSON object")]

    errors: list[Dict[str, Any]] = []

    app_id = str(payload.get("id") or "").strip()
    name = str(payload.get("name") or "").strip()

    if not app_id:
        errors.append(_err("id", "id is required"))
    elif not is_valid_app_id(app_id):
        errors.append(_err("id", "id may only contain letters, numbers, '_' and '-'"))

    if not name:
        errors.append(_err("name", "name is required"))

    for key in ("tipi_version", "available_version"):
        if key not in payload:
            continue
        try:
            int(payload[key])
        except (TypeError, ValueError):
            errors.append(_err(key, f"{key} must be an integer"))

    if payload.get("port") is not None and not _is_port(payload["port"]):
        errors.append(_err("port", "port must be between 1 and 65535"))

    requirements = payload.get("requirements") or {}
    if not isinstance(requirements, dict):
        errors.append(_err("requirements", "requirements must be an object"))
    else:
        ports = requirements.get("ports") or []
        if not isinstance(ports, list):
            errors.append(_err("requirements.ports", "ports must be a list"))
        elif not all(_is_port(p) for p in ports):
            errors.append(_err("requirements.ports", "every port must be between 1 and 65535"))

    fields = payload.get("form_fields") or []
    if not isinstance(fields, list):
        errors.append(_err("form_fields", "form_fields must be a list"))
    else:
        for i, f in enumerate(fields):
            if not isinstance(f, dict) or not str(f.get("env_variable") or "").strip():
                errors.append(_err(f"form_fields[{i}]", "env_variable is required"))
            elif f.get("min") is not None:
                # random fields use min as the generated length
                lowest = 1 if f.get("type") == "random" else 0
                try:
                    if int(f["min"]) < lowest:
                        raise ValueError
                except (TypeError, ValueError):
                    errors.append(_err(f"form_fields[{i}].min", f"min must be an integer >= {lowest}"))

    return (len(errors) == 0, errors)


def validate_form(payload: Any) -> Tuple[bool, list[Dict[str, Any]]]:
    """
    Validates user supplied form values (install / config update).
    Keys must be usable as env variable names; values must be single line.
    """
    if not isinstance(payload, dict):
        return False, [_err("form", "form must be an object")]

    errors: list[Dict[str, Any]] = []
    for key, value in payload.items():
        if not isinstance(key, str) or not key or "=" in key or "\n" in key:
            errors.append(_err(str(key), "invalid variable name"))
            continue
        if not isinstance(value, (str, int, float, bool)):
            errors.append(_err(key, "value must be a scalar"))
        elif "\n" in str(value):
            errors.append(_err(key, "value must not contain newlines"))
    return (len(errors) == 0, errors)
