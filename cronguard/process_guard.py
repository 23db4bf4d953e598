"""
Single-instance detection through the PID file.

A missing, corrupt or orphaned PID file is a normal condition and maps to
"not running"; none of these functions raise for it.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Tuple


FAILED_SENTINEL = "failed"

STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_STALE = "stale"
STATUS_FAILED = "failed"
STATUS_CORRUPT = "corrupt"


def read_pid(pid_file: Path) -> Optional[int]:
    try:
        content = Path(pid_file).read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError):
        return None
    # int() alone would accept "1_0" and non-ASCII digits.
    if not (content.isascii() and content.lstrip("+").isdigit()):
        return None
    pid = int(content)
    if pid <= 0:
        return None
    return pid


def process_exists(pid: int) -> bool:
    """Check for a live process using signal 0, which is never delivered."""
    if pid <= 0:
        # 0 and negative ids address process groups, not a process.
        return False
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # Alive, but owned by another user.
        return True
    except (OverflowError, ValueError):
        return False
    except OSError:
        return False


def is_already_running(pid_file: Path) -> bool:
    pid = read_pid(pid_file)
    if pid is None:
        return False
    return process_exists(pid)


def pid_file_status(pid_file: Path) -> Tuple[str, Optional[int]]:
    path = Path(pid_file)
    if not path.exists():
        return STATUS_IDLE, None
    try:
        content = path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError):
        return STATUS_CORRUPT, None
    if content == FAILED_SENTINEL:
        return STATUS_FAILED, None
    pid = read_pid(path)
    if pid is None:
        return STATUS_CORRUPT, None
    if process_exists(pid):
        return STATUS_RUNNING, pid
    return STATUS_STALE, pid
