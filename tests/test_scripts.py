import shutil
import sys
import threading
import time

import pytest

from app_lifecycle.errors import ScriptCancelled, ScriptFailed, ScriptTimeout
from app_lifecycle.models import ScriptResult
from app_lifecycle.scripts import ScriptRunner, SubprocessExecutor

needs_bash = pytest.mark.skipif(
    sys.platform.startswith("win") or shutil.which("bash") is None, reason="requires bash"
)


def test_run_script_invokes_shared_script(manager, executor, make_app, settings):
    app = make_app(installed=True)

    manager.run_script(["install", app["id"]])

    argv = executor.calls[0]["argv"]
    assert argv == ["bash", str(settings.scripts_root / "app.sh"), "install", app["id"]]
    assert executor.calls[0]["env"]["APP_ID"] == app["id"]


def test_run_script_passes_extra_args(manager, executor, make_app):
    app = make_app(installed=True)
    manager.run_script(["update", app["id"], "--force"])
    assert executor.calls[0]["argv"][2:] == ["update", app["id"], "--force"]


def test_script_path_prefers_installed_tree(manager, make_app, paths):
    app = make_app()
    catalog_script = paths.catalog_dir(app["id"]) / "scripts" / "app.sh"
    catalog_script.parent.mkdir(parents=True)
    catalog_script.write_text("#!/bin/bash\n")
    assert manager.scripts.script_path(app["id"]) == catalog_script

    installed_script = paths.installed_dir(app["id"]) / "scripts" / "app.sh"
    installed_script.parent.mkdir(parents=True)
    installed_script.write_text("#!/bin/bash\n")
    assert manager.scripts.script_path(app["id"]) == installed_script


def test_failed_script_raises(manager, executor, make_app):
    app = make_app(installed=True)
    executor.failures["install"] = ScriptResult(exit_code=3, stdout="", stderr="docker: not found\n")

    with pytest.raises(ScriptFailed) as e:
        manager.run_script(["install", app["id"]])

    assert e.value.exit_code == 3
    assert e.value.detail == "docker: not found"
    assert executor.verbs == ["install"]


def test_failure_detail_falls_back_to_stdout(manager, executor, make_app):
    app = make_app(installed=True)
    executor.failures["start"] = ScriptResult(exit_code=1, stdout="port taken\n", stderr="")

    with pytest.raises(ScriptFailed, match="port taken"):
        manager.run_script(["start", app["id"]])


def test_run_script_needs_verb_and_app(manager):
    with pytest.raises(ValueError):
        manager.run_script(["install"])
    with pytest.raises(ValueError):
        manager.run_script([])


def test_output_is_kept_in_log_tail(manager, make_app):
    app = make_app(installed=True)
    manager.run_script(["stop", app["id"]])

    lines = manager.get_logs(app["id"])
    assert "stop ok" in lines
    assert lines[-1] == "[manager] stop exited with code 0"


def test_default_timeout_is_forwarded(paths, executor):
    runner = ScriptRunner(paths, executor, default_timeout=12.5)
    runner.run_script(["start", "some-app"])
    assert executor.calls[0]["timeout"] == 12.5


@needs_bash
def test_subprocess_executor_captures_output(paths, settings):
    script = settings.scripts_root / "app.sh"
    script.parent.mkdir(parents=True)
    script.write_text('echo "$1 $2 $APP_ID"\necho oops >&2\nexit 0\n')

    runner = ScriptRunner(paths, SubprocessExecutor(poll_interval=0.01))
    result = runner.run_script(["install", "demo"])

    assert result.exit_code == 0
    assert result.stdout == "install demo demo\n"
    assert result.stderr == "oops\n"


@needs_bash
def test_subprocess_executor_reports_exit_code(paths, settings):
    script = settings.scripts_root / "app.sh"
    script.parent.mkdir(parents=True)
    script.write_text('echo "cannot $1" >&2\nexit 4\n')

    runner = ScriptRunner(paths, SubprocessExecutor(poll_interval=0.01))
    with pytest.raises(ScriptFailed) as e:
        runner.run_script(["start", "demo"])

    assert e.value.exit_code == 4
    assert e.value.detail == "cannot start"


@needs_bash
def test_missing_script_fails(paths):
    runner = ScriptRunner(paths, SubprocessExecutor(poll_interval=0.01))
    with pytest.raises(ScriptFailed) as e:
        runner.run_script(["start", "demo"])
    assert e.value.exit_code == 127


@needs_bash
def test_subprocess_executor_timeout(paths, settings):
    script = settings.scripts_root / "app.sh"
    script.parent.mkdir(parents=True)
    script.write_text("sleep 10\n")

    runner = ScriptRunner(paths, SubprocessExecutor(poll_interval=0.01))
    started = time.monotonic()
    with pytest.raises(ScriptTimeout):
        runner.run_script(["install", "demo"], timeout=0.3)
    assert time.monotonic() - started < 5


@needs_bash
def test_timeout_keeps_stderr(paths, settings):
    script = settings.scripts_root / "app.sh"
    script.parent.mkdir(parents=True)
    script.write_text("echo \"pulling image\" >&2\nsleep 10\n")

    runner = ScriptRunner(paths, SubprocessExecutor(poll_interval=0.01))
    with pytest.raises(ScriptTimeout) as e:
        runner.run_script(["install", "demo"], timeout=0.5)
    assert e.value.exit_code == -1
    assert "timed out" in e.value.detail
    assert "pulling image" in e.value.detail


@needs_bash
def test_subprocess_executor_cancel(paths, settings):
    script = settings.scripts_root / "app.sh"
    script.parent.mkdir(parents=True)
    script.write_text("sleep 10\n")

    cancel = threading.Event()
    threading.Timer(0.2, cancel.set).start()

    runner = ScriptRunner(paths, SubprocessExecutor(poll_interval=0.01))
    started = time.monotonic()
    with pytest.raises(ScriptCancelled):
        runner.run_script(["install", "demo"], cancel=cancel)
    assert time.monotonic() - started < 5
