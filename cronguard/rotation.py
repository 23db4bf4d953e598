"""
Rotation and retention of the job log.

The active log lives at ``<log_dir>/<log_name>``. Rotation renames it to
``<log_name>.old.<YYYY-MM-DDTHH:MM:SS>`` and starts a fresh file; pruning
deletes the oldest archives once there are more than the configured count.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import LogFileError, RotationError


ARCHIVE_MARKER = ".old."
ARCHIVE_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
ARCHIVE_TIME_FORMAT_FINE = "%Y-%m-%dT%H:%M:%S.%f"
BYTES_PER_MIB = 1024 * 1024
LOG_CREATED_MARKER = "Log file created."
CREATED_SCAN_LINES = 20

# Once pruning is triggered (more archives than LogMaxCount) it always trims
# down to this many, whatever LogMaxCount is.
MIN_RETAINED_LOGS = 5

REASON_SIZE = "size"
REASON_AGE = "age"


@dataclass(frozen=True)
class RotationOutcome:
    rotated: bool
    archive: Optional[Path] = None
    reason: Optional[str] = None


def archive_name(log_name: str, when: datetime, fine: bool = False) -> str:
    fmt = ARCHIVE_TIME_FORMAT_FINE if fine else ARCHIVE_TIME_FORMAT
    return f"{log_name}{ARCHIVE_MARKER}{when.strftime(fmt)}"


def parse_archive_time(file_name: str, log_name: str) -> Optional[datetime]:
    prefix = log_name + ARCHIVE_MARKER
    if not file_name.startswith(prefix):
        return None
    suffix = file_name[len(prefix):]
    for fmt in (ARCHIVE_TIME_FORMAT, ARCHIVE_TIME_FORMAT_FINE):
        try:
            return datetime.strptime(suffix, fmt)
        except ValueError:
            continue
    return None


def _leading_timestamp(log_file: Path) -> Optional[datetime]:
    try:
        with log_file.open("r", encoding="utf-8", errors="replace") as handle:
            for _ in range(CREATED_SCAN_LINES):
                line = handle.readline(256)
                if not line:
                    break
                try:
                    return datetime.strptime(line[:19], ARCHIVE_TIME_FORMAT)
                except ValueError:
                    continue
    except OSError:
        return None
    return None


def log_created_at(log_file: Path) -> datetime:
    """Best available creation time of the active log.

    Linux does not expose file birth time through os.stat, so the first
    timestamped line near the top of the log is preferred. Every line this
    project writes begins with one, so a log that started with a foreign
    header is still dated by the first line appended to it.

    Only when none of the first lines carry a timestamp does this fall back
    to birth time, then ``st_mtime``. Each run writes to the log, so on Linux
    such a file keeps looking new and only rotates on size.
    """
    stamped = _leading_timestamp(log_file)
    if stamped is not None:
        return stamped
    info = os.stat(log_file)
    birth = getattr(info, "st_birthtime", None)
    return datetime.fromtimestamp(birth if birth is not None else info.st_mtime)


def rotation_reason(
    log_file: Path,
    max_size_mib: float,
    max_age_days: int,
    now: datetime,
) -> Optional[str]:
    if log_file.stat().st_size > max_size_mib * BYTES_PER_MIB:
        return REASON_SIZE
    if log_created_at(log_file) < now - timedelta(days=max_age_days):
        return REASON_AGE
    return None


def create_log_file(log_file: Path, now: Optional[datetime] = None) -> None:
    now = now or datetime.now()
    try:
        with log_file.open("a", encoding="utf-8") as handle:
            handle.write(f"{now.strftime(ARCHIVE_TIME_FORMAT)}: {LOG_CREATED_MARKER}\n")
    except OSError as exc:
        raise LogFileError(f"Could not create log file at '{log_file}': {exc}") from exc


def maybe_rotate(
    log_file: Path,
    max_size_mib: float,
    max_age_days: int,
    now: Optional[datetime] = None,
) -> RotationOutcome:
    now = now or datetime.now()
    log_file = Path(log_file)
    if not log_file.is_file():
        return RotationOutcome(rotated=False)

    try:
        reason = rotation_reason(log_file, max_size_mib, max_age_days, now)
    except OSError as exc:
        raise RotationError(f"Could not inspect log file '{log_file}': {exc}") from exc
    if reason is None:
        return RotationOutcome(rotated=False)

    archive = log_file.with_name(archive_name(log_file.name, now))
    if archive.exists():
        archive = log_file.with_name(archive_name(log_file.name, now, fine=True))
    try:
        os.rename(log_file, archive)
    except OSError as exc:
        raise RotationError(f"Could not move log file from '{log_file}' to '{archive}': {exc}") from exc

    create_log_file(log_file, now)
    return RotationOutcome(rotated=True, archive=archive, reason=reason)


def list_archives(log_dir: Path, log_name: str) -> List[Path]:
    prefix = log_name + ARCHIVE_MARKER
    try:
        return [
            entry
            for entry in Path(log_dir).iterdir()
            if entry.name.startswith(prefix) and entry.is_file()
        ]
    except OSError as exc:
        raise LogFileError(f"Could not get file list from the log path '{log_dir}': {exc}") from exc


def _archive_sort_key(path: Path, log_name: str) -> Tuple[datetime, str]:
    stamped = parse_archive_time(path.name, log_name)
    if stamped is None:
        try:
            stamped = datetime.fromtimestamp(path.stat().st_mtime)
        except OSError:
            stamped = datetime.min
    return stamped, path.name


def prune(log_dir: Path, log_name: str, keep_count: int) -> List[Path]:
    archives = list_archives(log_dir, log_name)
    if len(archives) <= keep_count:
        return []

    ordered = sorted(archives, key=lambda path: _archive_sort_key(path, log_name))
    doomed = ordered[: max(0, len(ordered) - MIN_RETAINED_LOGS)]
    deleted: List[Path] = []
    for path in doomed:
        try:
            path.unlink()
        except OSError as exc:
            raise LogFileError(f"Could not delete log file '{path}': {exc}") from exc
        deleted.append(path)
    return deleted
