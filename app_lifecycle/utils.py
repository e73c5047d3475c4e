import os
import secrets
import socket
import string
import sys

ALPHANUMERIC = string.ascii_letters + string.digits


def is_windows() -> bool:
    return sys.platform.startswith("win")


def port_is_open(host: str, port: int, timeout: float = 0.25) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def random_token(length: int = 32) -> str:
    return "".join(secrets.choice(ALPHANUMERIC) for _ in range(length))


def tail_text(text: str, limit: int = 2000) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[-limit:]
