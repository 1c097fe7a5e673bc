"""
Execution of external GDAL and SAGA command-line tools.

Commands are built as argument lists (see commands.py) and run without a
shell. Every call blocks until the child exits, captures its exit code and
output, and can be bounded by a timeout or cancelled through a
threading.Event from another thread.
"""

import logging
import shutil
import subprocess
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

# How often a running child is checked for timeout and cancellation
POLL_INTERVAL = 0.5  # seconds


class ToolError(Exception):
    """Raised when an external tool cannot be run to completion."""

    def __init__(self, message: str, command: "ToolCommand") -> None:
        super().__init__(message)
        self.command = command


class ToolNotFoundError(ToolError):
    """The program is not installed or not on PATH."""


class ToolFailedError(ToolError):
    """The program exited with a non-zero status."""

    def __init__(self, message: str, command: "ToolCommand", result: "ToolResult") -> None:
        super().__init__(message, command)
        self.result = result


class ToolTimeoutError(ToolError):
    """The program ran longer than the allowed timeout and was killed."""


class ToolCancelledError(ToolError):
    """The program was killed because the run was cancelled."""


@dataclass(frozen=True)
class ToolCommand:
    """A program and its arguments, kept as a list so no shell quoting is involved."""

    program: str
    args: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def build(cls, program: str, *args: str | Path | float | int) -> "ToolCommand":
        return cls(program=program, args=tuple(str(a) for a in args))

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]

    def __str__(self) -> str:
        return " ".join(self.argv)


@dataclass
class ToolResult:
    """Outcome of one finished tool invocation."""

    command: ToolCommand
    returncode: int
    stdout: str
    stderr: str
    duration: float  # seconds

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ToolRunner(Protocol):
    """Anything that can execute a ToolCommand and return its result."""

    def __call__(self, command: ToolCommand) -> ToolResult: ...


def resolve_program(program: str) -> str | None:
    """Return the full path of a program, or None if it cannot be found."""
    return shutil.which(program)


def run_tool(
    command: ToolCommand,
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
    check: bool = True,
) -> ToolResult:
    """
    Run an external tool and wait for it to finish.

    Args:
        command: Program and arguments to run
        timeout: Kill the program after this many seconds (None = wait forever)
        cancel_event: Kill the program as soon as this event is set
        check: Raise ToolFailedError when the exit code is non-zero

    Returns:
        ToolResult with exit code, captured output and duration

    Raises:
        ToolNotFoundError: If the program does not exist
        ToolError: If the program exists but cannot be started
        ToolTimeoutError: If the timeout elapsed
        ToolCancelledError: If cancel_event was set
        ToolFailedError: If check is True and the exit code is non-zero
    """
    if cancel_event is not None and cancel_event.is_set():
        raise ToolCancelledError(f"Cancelled before start: {command.program}", command)

    logger.debug(f"Running: {command}")
    start = time.monotonic()

    try:
        proc = subprocess.Popen(
            command.argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError(f"Program not found: {command.program}", command) from e
    except OSError as e:
        # The file exists but cannot be executed
        raise ToolError(f"Cannot start {command.program}: {e}", command) from e

    while True:
        try:
            stdout, stderr = proc.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            elapsed = time.monotonic() - start

            if cancel_event is not None and cancel_event.is_set():
                _kill(proc)
                raise ToolCancelledError(f"Cancelled after {elapsed:.1f}s: {command.program}", command) from None

            if timeout is not None and elapsed > timeout:
                _kill(proc)
                raise ToolTimeoutError(f"Timed out after {timeout:.1f}s: {command.program}", command) from None

    result = ToolResult(
        command=command,
        returncode=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
        duration=time.monotonic() - start,
    )

    if result.ok:
        logger.debug(f"{command.program} finished in {result.duration:.1f}s")
        if result.stderr.strip():
            logger.debug(f"{command.program} stderr: {result.stderr.strip()}")
    else:
        logger.error(f"{command.program} exited with code {result.returncode}")
        if result.stderr.strip():
            logger.error(f"{command.program} stderr: {result.stderr.strip()}")
        if check:
            raise ToolFailedError(
                f"{command.program} exited with code {result.returncode}: {result.stderr.strip()}",
                command,
                result,
            )

    return result


def _kill(proc: subprocess.Popen) -> None:
    proc.kill()
    proc.communicate()


class SubprocessRunner:
    """
    Default ToolRunner that executes commands with run_tool.

    Holds the timeout and cancellation event shared by every stage of one
    pipeline run.
    """

    def __init__(self, timeout: float | None = None, cancel_event: threading.Event | None = None) -> None:
        self.timeout = timeout
        self.cancel_event = cancel_event or threading.Event()

    def __call__(self, command: ToolCommand) -> ToolResult:
        return run_tool(command, timeout=self.timeout, cancel_event=self.cancel_event)

    def cancel(self) -> None:
        """Kill the currently running tool and refuse further work."""
        self.cancel_event.set()


def check_tools(programs: Sequence[str]) -> dict[str, str | None]:
    """Map each program name to its resolved path (None when missing)."""
    return {program: resolve_program(program) for program in programs}
