from __future__ import annotations

import subprocess
import sys
from typing import IO, Iterable, Optional, Sequence, Union

# Shell convention for "command not found".
LAUNCH_FAILURE_CODE = 127

_MASK = "********"

Redirect = Union[int, IO[str], None]


class PluginError(RuntimeError):
    """Base class for every failure the plugin reports before exiting."""


class SubprocessError(PluginError):
    """Raised when a subprocess exits with a non-zero status code."""

    def __init__(self, command: Sequence[str], returncode: int, stdout: str = "", stderr: str = "") -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        # Only the binary and subcommand: later arguments may carry credentials.
        message = f"Command {' '.join(self.command[:2])} failed with exit code {returncode}"
        if self.stderr.strip():
            message += f": {self.stderr.strip()}"
        super().__init__(message)


def format_command(command: Sequence[str], secrets: Iterable[str] = ()) -> str:
    """Render an argument vector for the build log, masking secret values."""

    hidden = {secret for secret in secrets if secret}
    return " ".join(_MASK if arg in hidden else arg for arg in command)


def trace(command: Sequence[str], *, secrets: Iterable[str] = (), stream: Optional[IO[str]] = None) -> None:
    """Echo a command to the build log right before it runs."""

    out = stream if stream is not None else sys.stdout
    out.write(f"+ {format_command(command, secrets)}\n")
    out.flush()


def run_command(
    command: Sequence[str],
    *,
    stdout: Redirect = None,
    stderr: Redirect = None,
    check: bool = True,
    secrets: Iterable[str] = (),
) -> subprocess.CompletedProcess[str]:
    """Trace and execute a subprocess command and return the completed process.

    ``stdout``/``stderr`` follow :func:`subprocess.run`: ``None`` inherits the
    plugin's streams, ``subprocess.DEVNULL`` discards, ``subprocess.PIPE``
    captures. A binary that cannot be launched is reported with exit code 127.
    """

    trace(command, secrets=secrets)
    try:
        result = subprocess.run(
            list(command),
            stdout=stdout,
            stderr=stderr,
            text=True,
            check=False,
        )
    except OSError as exc:
        result = subprocess.CompletedProcess(list(command), LAUNCH_FAILURE_CODE, "", str(exc))
    if check and result.returncode != 0:
        raise SubprocessError(command, result.returncode, result.stdout or "", result.stderr or "")
    return result
