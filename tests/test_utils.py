from __future__ import annotations

import io
import subprocess
import sys

import pytest

from gcr_plugin.utils import LAUNCH_FAILURE_CODE, SubprocessError, format_command, run_command, trace


def test_format_command_masks_secrets() -> None:
    command = ["docker", "login", "-u", "_json_key", "-p", "s3cr3t", "gcr.io"]
    assert format_command(command, secrets=["s3cr3t"]) == "docker login -u _json_key -p ******** gcr.io"
    assert format_command(command) == " ".join(command)


def test_trace_writes_command_line() -> None:
    stream = io.StringIO()
    trace(["docker", "push", "gcr.io/a/b:latest"], stream=stream)
    assert stream.getvalue() == "+ docker push gcr.io/a/b:latest\n"


def test_run_command_traces_before_running(capsys: pytest.CaptureFixture[str]) -> None:
    result = run_command([sys.executable, "-c", "print('hello')"], stdout=subprocess.PIPE)
    assert result.returncode == 0
    assert result.stdout.strip() == "hello"
    assert capsys.readouterr().out.startswith(f"+ {sys.executable} -c")


def test_run_command_raises_on_non_zero_exit() -> None:
    with pytest.raises(SubprocessError) as excinfo:
        run_command([sys.executable, "-c", "import sys; sys.exit(3)"])
    assert excinfo.value.returncode == 3


def test_run_command_without_check_returns_result() -> None:
    result = run_command([sys.executable, "-c", "import sys; sys.exit(4)"], check=False)
    assert result.returncode == 4


def test_run_command_reports_missing_binary() -> None:
    with pytest.raises(SubprocessError) as excinfo:
        run_command(["/nonexistent/docker", "info"])
    assert excinfo.value.returncode == LAUNCH_FAILURE_CODE
    assert "/nonexistent/docker info" in str(excinfo.value)
