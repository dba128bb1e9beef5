"""Synchronous external command execution with uniform error reporting."""

import logging
import shlex
import subprocess
from pathlib import Path
from typing import IO, Mapping, Optional, Sequence, Union

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Raised when an external command cannot be run to a successful exit."""

    def __init__(self, label: str, message: str):
        super().__init__(message)
        self.label = label


class CommandNotStarted(CommandError):
    """The process could not be started at all (missing binary, bad cwd, ...)."""

    def __init__(self, label: str, cause: OSError):
        super().__init__(label, f"failed to exec {label}: {cause}")
        self.cause = cause


class CommandFailed(CommandError):
    """The process ran but exited non-zero or was killed by a signal."""

    def __init__(
        self,
        label: str,
        exit_code: Optional[int],
        signal: Optional[int],
        stdout: str = "",
        stderr: str = "",
    ):
        self.exit_code = exit_code
        self.signal = signal
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(label, self._render(label))

    @property
    def reason(self) -> str:
        if self.signal is not None:
            return f"terminated by signal {self.signal}"
        return f"exited with code {self.exit_code}"

    def _render(self, label: str) -> str:
        output = f"command failed: {label}: {self.reason}"
        if self.stderr:
            output += f"\nstderr:\n{self.stderr}\n"
        if self.stdout:
            output += f"\nstdout:\n{self.stdout}\n"
        return output


def command_label(argv: Sequence[str]) -> str:
    """Construct a human-readable label for use in log and error messages."""
    return shlex.join(str(arg) for arg in argv)


def _decode(value: Optional[bytes]) -> str:
    if not value:
        return ""
    return value.decode("utf-8", errors="replace")


def run_command(
    argv: Sequence[str],
    *,
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Mapping[str, str]] = None,
    stdout: Optional[IO] = None,
    stderr: Optional[IO] = None,
) -> str:
    """
    Run a command to completion and return its decoded stdout.

    Streams not redirected to a file are captured so they can be attached
    to the error on failure.

    Args:
        argv: Program and arguments
        cwd: Working directory for the child
        env: Complete environment for the child (default: inherit)
        stdout: Open file to receive stdout instead of capturing it
        stderr: Open file to receive stderr instead of capturing it

    Returns:
        Captured stdout ("" when stdout was redirected)

    Raises:
        CommandNotStarted: If the process could not be spawned
        CommandFailed: If the process exited non-zero or was signalled
    """
    argv = [str(arg) for arg in argv]
    label = command_label(argv)
    logger.debug("running %s (cwd=%s)", label, cwd or ".")

    try:
        result = subprocess.run(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdout=stdout if stdout is not None else subprocess.PIPE,
            stderr=stderr if stderr is not None else subprocess.PIPE,
            shell=False,
        )
    except OSError as e:
        raise CommandNotStarted(label, e) from e

    captured_stdout = _decode(result.stdout)
    if result.returncode == 0:
        return captured_stdout

    # Negative return codes mean the child was killed by that signal (POSIX)
    if result.returncode < 0:
        exit_code, signal = None, -result.returncode
    else:
        exit_code, signal = result.returncode, None

    raise CommandFailed(
        label,
        exit_code=exit_code,
        signal=signal,
        stdout=captured_stdout,
        stderr=_decode(result.stderr),
    )
