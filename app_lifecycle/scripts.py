import logging
import os
import signal
import subprocess
import threading
import time
from collections import deque
from pathlib import Path
from typing import Deque, Dict, List, Mapping, Optional, Protocol, Sequence

from app_lifecycle.config import AppPaths
from app_lifecycle.errors import ScriptCancelled, ScriptFailed, ScriptTimeout
from app_lifecycle.models import ScriptResult
from app_lifecycle.utils import is_windows, tail_text

logger = logging.getLogger(__name__)

class ScriptExecutor(Protocol):
    def execute(
        self,
        argv: Sequence[str],
        *,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ScriptResult: ...


class LogTail:
    """Last N output lines per app, shared by every script run."""

    def __init__(self, maxlen: int = 300):
        self._maxlen = maxlen
        self._logs: Dict[str, Deque[str]] = {}
        self._lock = threading.RLock()

    def append(self, name: str, line: str) -> None:
        with self._lock:
            if name not in self._logs:
                self._logs[name] = deque(maxlen=self._maxlen)
            self._logs[name].append(line.rstrip("\n"))

    def get(self, name: str) -> List[str]:
        with self._lock:
            return list(self._logs.get(name, ()))


class SubprocessExecutor:
    """
    Runs a lifecycle script as a child process in its own process group.

    stdout and stderr are drained by daemon threads so a chatty script
    cannot block on a full pipe. On timeout or cancellation the whole
    process group is killed.
    """

    def __init__(self, poll_interval: float = 0.1):
        self.poll_interval = poll_interval

    def _pump(self, stream, sink: List[str]) -> None:
        try:
            for line in iter(stream.readline, ""):
                if not line:
                    break
                sink.append(line)
        finally:
            stream.close()

    def _kill(self, p: subprocess.Popen) -> None:
        if p.poll() is not None:
            return
        try:
            if is_windows():
                subprocess.run(
                    ["taskkill", "/PID", str(p.pid), "/T", "/F"],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            else:
                os.killpg(os.getpgid(p.pid), signal.SIGKILL)
        except ProcessLookupError:
            pass
        p.wait()

    def execute(
        self,
        argv: Sequence[str],
        *,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ScriptResult:
        popen_kwargs = dict(
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
        )
        if is_windows():
            popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            popen_kwargs["start_new_session"] = True

        try:
            p = subprocess.Popen(list(argv), **popen_kwargs)
        except OSError as e:
            return ScriptResult(exit_code=127, stderr=str(e))

        out: List[str] = []
        err: List[str] = []
        pumps = [
            threading.Thread(target=self._pump, args=(p.stdout, out), daemon=True),
            threading.Thread(target=self._pump, args=(p.stderr, err), daemon=True),
        ]
        for t in pumps:
            t.start()

        deadline = time.monotonic() + timeout if timeout is not None else None
        while p.poll() is None:
            if cancel is not None and cancel.is_set():
                self._kill(p)
                self._join(pumps)
                raise ScriptCancelled(tail_text("".join(err)))
            if deadline is not None and time.monotonic() >= deadline:
                self._kill(p)
                self._join(pumps)
                raise ScriptTimeout(timeout, tail_text("".join(err)))
            time.sleep(self.poll_interval)

        self._join(pumps)
        return ScriptResult(exit_code=p.returncode, stdout="".join(out), stderr="".join(err))

    def _join(self, pumps: List[threading.Thread]) -> None:
        for t in pumps:
            t.join(timeout=2.0)


class ScriptRunner:
    def __init__(
        self,
        paths: AppPaths,
        executor: ScriptExecutor,
        default_timeout: Optional[float] = None,
        shell: str = "bash",
        log_tail: Optional[LogTail] = None,
    ):
        self.paths = paths
        self.executor = executor
        self.default_timeout = default_timeout
        self.shell = shell
        self.logs = log_tail or LogTail()

    def _record(self, app_id: str, text: str) -> None:
        for line in text.splitlines():
            self.logs.append(app_id, line)

    def script_path(self, app_id: str) -> Path:
        candidates = self.paths.script_candidates(app_id)
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return candidates[-1]

    def _env(self, app_id: str) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(
            {
                "APP_ID": app_id,
                "DATA_ROOT": str(self.paths.settings.data_root),
                "CATALOG_ROOT": str(self.paths.settings.catalog_root),
            }
        )
        return env

    def run_script(
        self,
        args: Sequence[str],
        *,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ScriptResult:
        """
        Run the lifecycle script as `app.sh <verb> <app_id> [extra...]`.

        Blocks until the script exits. A non-zero exit raises ScriptFailed;
        nothing is retried.
        """
        if len(args) < 2 or not args[0] or not args[1]:
            raise ValueError("run_script needs at least a verb and an app id")

        verb, app_id = args[0], args[1]
        script = self.script_path(app_id)
        argv = [self.shell, str(script), *args]
        if timeout is None:
            timeout = self.default_timeout

        logger.info("running %s %s (script=%s)", verb, app_id, script)
        self.logs.append(app_id, f"[manager] {verb}: {' '.join(argv)}")
        started = time.monotonic()
        try:
            result = self.executor.execute(
                argv,
                cwd=str(script.parent) if script.parent.is_dir() else None,
                env=self._env(app_id),
                timeout=timeout,
                cancel=cancel,
            )
        except ScriptFailed as e:
            self.logs.append(app_id, f"[manager] {verb} aborted: {e}")
            logger.error("%s %s aborted: %s", verb, app_id, e)
            raise
        elapsed = time.monotonic() - started
        self._record(app_id, result.stdout)
        self._record(app_id, result.stderr)
        self.logs.append(app_id, f"[manager] {verb} exited with code {result.exit_code}")

        if result.exit_code != 0:
            detail = tail_text(result.stderr) or tail_text(result.stdout)
            logger.error("%s %s failed with code %s after %.1fs", verb, app_id, result.exit_code, elapsed)
            raise ScriptFailed(result.exit_code, detail)

        logger.info("%s %s finished in %.1fs", verb, app_id, elapsed)
        return result
