"""
Runs the guarded command as a child process.

Output is read line by line while the child runs and handed to the caller's
callbacks, so whatever a job printed before it was killed still reaches the
job log.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import IO, Callable, List, Optional


UTC = timezone.utc

LineCallback = Callable[[str], None]


@dataclass
class CommandResult:
    command: List[str]
    success: bool
    return_code: int
    duration_seconds: float
    stdout: str
    stderr: str
    error: Optional[str] = None


def _pump(stream: IO[str], collected: List[str], on_line: Optional[LineCallback]) -> None:
    with stream:
        for line in stream:
            line = line.rstrip("\n")
            collected.append(line)
            if on_line is not None:
                on_line(line)


def _kill_group(process: subprocess.Popen) -> None:
    # The child leads its own session, so this also reaches its descendants.
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        process.kill()


def run_command(
    command: List[str],
    timeout: Optional[float] = None,
    cwd: Optional[str] = None,
    on_stdout: Optional[LineCallback] = None,
    on_stderr: Optional[LineCallback] = None,
) -> CommandResult:
    started = datetime.now(tz=UTC)
    try:
        process = subprocess.Popen(
            command,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=True,
        )
    except OSError as exc:
        duration = (datetime.now(tz=UTC) - started).total_seconds()
        return CommandResult(
            command=command,
            success=False,
            return_code=-2,
            duration_seconds=duration,
            stdout="",
            stderr=str(exc),
            error="exception",
        )

    stdout_lines: List[str] = []
    stderr_lines: List[str] = []
    readers = [
        threading.Thread(target=_pump, args=(process.stdout, stdout_lines, on_stdout), daemon=True),
        threading.Thread(target=_pump, args=(process.stderr, stderr_lines, on_stderr), daemon=True),
    ]
    for reader in readers:
        reader.start()

    error = None
    try:
        return_code = process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_group(process)
        process.wait()
        return_code = -1
        error = "timeout"
    for reader in readers:
        reader.join()

    duration = (datetime.now(tz=UTC) - started).total_seconds()
    if error == "timeout":
        stderr_lines.append(f"Timed out after {timeout} seconds.")
    return CommandResult(
        command=command,
        success=error is None and return_code == 0,
        return_code=return_code,
        duration_seconds=duration,
        stdout="\n".join(stdout_lines),
        stderr="\n".join(stderr_lines),
        error=error,
    )
