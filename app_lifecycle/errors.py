from typing import Optional


class AppLifecycleError(Exception):
    """Base class for every failure surfaced by the lifecycle manager."""


class AppNotFound(AppLifecycleError):
    def __init__(self, app_id: str):
        self.app_id = app_id
        super().__init__(f"App {app_id} not found")


class LoadError(AppLifecycleError):
    def __init__(self, app_id: str, reason: Optional[str] = None):
        self.app_id = app_id
        self.reason = reason
        super().__init__(f"Error loading app {app_id}")


class MissingField(AppLifecycleError):
    def __init__(self, key: str, label: Optional[str] = None):
        self.key = key
        self.label = label or key
        super().__init__(f"Variable {key} is required")


class ConfigOutdated(AppLifecycleError):
    def __init__(self, app_id: str, missing: Optional[list] = None):
        self.app_id = app_id
        self.missing = list(missing or [])
        super().__init__("New info needed. App config needs to be updated")


class RequirementsNotMet(AppLifecycleError):
    def __init__(self, app_id: str):
        self.app_id = app_id
        super().__init__(f"App {app_id} requirements not met")


class ScriptFailed(AppLifecycleError):
    def __init__(self, exit_code: int, detail: str = ""):
        self.exit_code = exit_code
        self.detail = detail
        msg = f"Script exited with code {exit_code}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ScriptTimeout(ScriptFailed):
    def __init__(self, timeout: float, detail: str = ""):
        self.timeout = timeout
        msg = f"timed out after {timeout}s"
        super().__init__(-1, f"{msg}: {detail}" if detail else msg)


class ScriptCancelled(ScriptFailed):
    def __init__(self, detail: str = ""):
        super().__init__(-1, detail or "cancelled")
