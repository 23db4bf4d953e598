from __future__ import annotations

import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import List

import pytest

from cronguard import rotation
from cronguard.errors import EXIT_LOG_DIR, EXIT_LOG_FILE, LogFileError, RotationError
from cronguard.rotation import (
    MIN_RETAINED_LOGS,
    REASON_AGE,
    REASON_SIZE,
    archive_name,
    list_archives,
    log_created_at,
    maybe_rotate,
    parse_archive_time,
    prune,
)

NOW = datetime(2026, 10, 19, 12, 0, 0)
LOG_NAME = "current.log"


def _log(tmp_path: Path, body: str) -> Path:
    path = tmp_path / LOG_NAME
    path.write_text(body, encoding="utf-8")
    return path


def _archives(tmp_path: Path, count: int) -> List[Path]:
    paths = []
    for day in range(count):
        stamp = datetime(2026, 1, 1) + timedelta(days=day)
        path = tmp_path / archive_name(LOG_NAME, stamp)
        path.write_text(f"archive {day}\n", encoding="utf-8")
        paths.append(path)
    return paths


def test_small_recent_log_is_left_alone(tmp_path: Path) -> None:
    log = _log(tmp_path, f"{NOW:%Y-%m-%dT%H:%M:%S} INFO hello\n")
    before = log.read_text(encoding="utf-8")

    outcome = maybe_rotate(log, max_size_mib=10, max_age_days=90, now=NOW)

    assert outcome.rotated is False
    assert outcome.archive is None
    assert log.read_text(encoding="utf-8") == before
    assert list_archives(tmp_path, LOG_NAME) == []


def test_missing_log_is_a_noop(tmp_path: Path) -> None:
    assert maybe_rotate(tmp_path / LOG_NAME, 10, 90, now=NOW).rotated is False


def test_oversized_log_is_archived_and_recreated(tmp_path: Path) -> None:
    original = "x" * 2048
    log = _log(tmp_path, original)

    outcome = maybe_rotate(log, max_size_mib=1 / 1024, max_age_days=90, now=NOW)

    assert outcome.rotated is True
    assert outcome.reason == REASON_SIZE
    assert outcome.archive == tmp_path / "current.log.old.2026-10-19T12:00:00"
    assert outcome.archive.read_text(encoding="utf-8") == original
    assert log.read_text(encoding="utf-8") == "2026-10-19T12:00:00: Log file created.\n"


def test_size_threshold_is_strictly_greater_than(tmp_path: Path) -> None:
    log = _log(tmp_path, "y" * 1024)
    assert maybe_rotate(log, max_size_mib=1 / 1024, max_age_days=90, now=NOW).rotated is False


def test_log_older_than_max_age_is_rotated(tmp_path: Path) -> None:
    log = _log(tmp_path, "2026-01-01T00:00:00 INFO first line\n")

    outcome = maybe_rotate(log, max_size_mib=10, max_age_days=90, now=NOW)

    assert outcome.rotated is True
    assert outcome.reason == REASON_AGE


def test_future_dated_log_is_not_rotated_by_age(tmp_path: Path) -> None:
    # Age means "created more than max_age_days ago"; a creation time beyond
    # now + max_age_days does not trigger rotation.
    log = _log(tmp_path, "2999-01-01T00:00:00 INFO from the future\n")
    assert maybe_rotate(log, max_size_mib=10, max_age_days=90, now=NOW).rotated is False


def test_created_at_skips_untimestamped_header(tmp_path: Path) -> None:
    log = _log(tmp_path, "# legacy header\n\n2026-01-01T00:00:00 INFO appended\n")
    os.utime(log, (NOW.timestamp(), NOW.timestamp()))

    assert log_created_at(log) == datetime(2026, 1, 1)
    outcome = maybe_rotate(log, max_size_mib=10, max_age_days=90, now=NOW)
    assert outcome.rotated is True
    assert outcome.reason == REASON_AGE


def test_created_at_falls_back_to_file_times(tmp_path: Path) -> None:
    log = _log(tmp_path, "no timestamp here\n")
    stamp = datetime(2020, 5, 1, 8, 30, 0).timestamp()
    os.utime(log, (stamp, stamp))

    created = log_created_at(log)

    if getattr(os.stat(log), "st_birthtime", None) is None:
        assert created == datetime.fromtimestamp(stamp)
    else:
        assert isinstance(created, datetime)


def test_same_second_rotation_does_not_overwrite_archive(tmp_path: Path) -> None:
    existing = tmp_path / archive_name(LOG_NAME, NOW)
    existing.write_text("earlier archive\n", encoding="utf-8")
    log = _log(tmp_path, "z" * 4096)

    outcome = maybe_rotate(log, max_size_mib=1 / 1024, max_age_days=90, now=NOW)

    assert existing.read_text(encoding="utf-8") == "earlier archive\n"
    assert outcome.archive is not None and outcome.archive != existing
    assert parse_archive_time(outcome.archive.name, LOG_NAME) == NOW


def test_rename_failure_raises_rotation_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    log = _log(tmp_path, "x" * 4096)

    def fail_rename(src: object, dst: object) -> None:
        raise PermissionError("read-only")

    monkeypatch.setattr(rotation.os, "rename", fail_rename)
    with pytest.raises(RotationError) as excinfo:
        maybe_rotate(log, max_size_mib=1 / 1024, max_age_days=90, now=NOW)
    assert excinfo.value.exit_code == EXIT_LOG_DIR
    assert log.exists()


def test_parse_archive_time() -> None:
    assert parse_archive_time("current.log.old.2026-03-04T05:06:07", LOG_NAME) == datetime(2026, 3, 4, 5, 6, 7)
    assert parse_archive_time("current.log.old.banana", LOG_NAME) is None
    assert parse_archive_time("other.log.old.2026-03-04T05:06:07", LOG_NAME) is None


def test_prune_trims_to_five_most_recent(tmp_path: Path) -> None:
    paths = _archives(tmp_path, 12)
    (tmp_path / LOG_NAME).write_text("active\n", encoding="utf-8")
    (tmp_path / "other.log.old.2026-01-01T00:00:00").write_text("unrelated\n", encoding="utf-8")

    deleted = prune(tmp_path, LOG_NAME, keep_count=10)

    assert deleted == paths[:7]
    remaining = sorted(list_archives(tmp_path, LOG_NAME))
    assert remaining == paths[-MIN_RETAINED_LOGS:]
    assert (tmp_path / LOG_NAME).exists()
    assert (tmp_path / "other.log.old.2026-01-01T00:00:00").exists()


def test_prune_is_noop_at_or_below_threshold(tmp_path: Path) -> None:
    paths = _archives(tmp_path, 10)
    assert prune(tmp_path, LOG_NAME, keep_count=10) == []
    assert sorted(list_archives(tmp_path, LOG_NAME)) == paths


def test_prune_never_goes_below_floor_when_max_count_is_small(tmp_path: Path) -> None:
    paths = _archives(tmp_path, 4)
    assert prune(tmp_path, LOG_NAME, keep_count=2) == []
    assert sorted(list_archives(tmp_path, LOG_NAME)) == paths


def test_prune_orders_by_timestamp_not_name(tmp_path: Path) -> None:
    unstamped = tmp_path / "current.log.old.zzz"
    unstamped.write_text("hand-made archive\n", encoding="utf-8")
    stamp = datetime(2000, 1, 1).timestamp()
    os.utime(unstamped, (stamp, stamp))
    older = tmp_path / archive_name(LOG_NAME, datetime(2025, 12, 31, 23, 59, 59))
    older.write_text("old\n", encoding="utf-8")
    _archives(tmp_path, 6)
    fine = tmp_path / archive_name(LOG_NAME, datetime(2026, 2, 1), fine=True)
    fine.write_text("newest\n", encoding="utf-8")

    deleted = prune(tmp_path, LOG_NAME, keep_count=6)

    assert deleted[:2] == [unstamped, older]
    assert len(deleted) == 4
    assert fine.exists()
    assert len(list_archives(tmp_path, LOG_NAME)) == MIN_RETAINED_LOGS


def test_prune_listing_failure_raises_log_file_error(tmp_path: Path) -> None:
    with pytest.raises(LogFileError) as excinfo:
        prune(tmp_path / "missing", LOG_NAME, keep_count=10)
    assert excinfo.value.exit_code == EXIT_LOG_FILE


def test_prune_delete_failure_raises_log_file_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _archives(tmp_path, 12)

    def fail_unlink(self: Path, missing_ok: bool = False) -> None:
        raise PermissionError("sticky")

    monkeypatch.setattr(Path, "unlink", fail_unlink)
    with pytest.raises(LogFileError) as excinfo:
        prune(tmp_path, LOG_NAME, keep_count=10)
    assert excinfo.value.exit_code == EXIT_LOG_FILE
