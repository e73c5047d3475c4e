import logging
from typing import Protocol

from app_lifecycle.config_store import ConfigStore
from app_lifecycle.utils import port_is_open

logger = logging.getLogger(__name__)


class PortProber(Protocol):
    def is_port_bound(self, port: int) -> bool: ...


class SocketPortProber:
    """A port counts as bound when something accepts a TCP connection on it."""

    def __init__(self, host: str = "127.0.0.1", timeout: float = 0.25):
        self.host = host
        self.timeout = timeout

    def is_port_bound(self, port: int) -> bool:
        return port_is_open(self.host, port, timeout=self.timeout)


class RequirementChecker:
    def __init__(self, configs: ConfigStore, prober: PortProber):
        self.configs = configs
        self.prober = prober

    def check_requirements(self, app_id: str) -> bool:
        """
        False when any required port is already bound.
        Raises AppNotFound when the app has no manifest.
        """
        manifest = self.configs.require(app_id)
        ok = True
        for port in manifest.required_ports:
            if self.prober.is_port_bound(port):
                logger.warning("app %s requires port %s which is in use", app_id, port)
                ok = False
        return ok
