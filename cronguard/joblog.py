"""
Operator-facing job log.

Every line goes to the job's own log file (and stdout); selected lines are
also forwarded to the system journal.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import List, Optional

from .journal import Journal, Level, default_journal


LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


class JobFileHandler(logging.handlers.WatchedFileHandler):
    """Appends to the job log and reopens it after it has been renamed away.

    Records emitted while the log directory does not exist yet are held and
    written out with the first record that can reach the file.
    """

    def __init__(self, filename: Path) -> None:
        super().__init__(str(filename), encoding="utf-8", delay=True)
        self._pending: List[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        if not os.path.isdir(os.path.dirname(self.baseFilename)):
            self._pending.append(record)
            return
        if self._pending:
            pending, self._pending = self._pending, []
            for held in pending:
                super().emit(held)
        super().emit(record)


class JobLogger:
    def __init__(
        self,
        log_file: Path,
        identity: str,
        journal: Optional[Journal] = None,
        debug: bool = False,
        console: bool = True,
    ) -> None:
        self.log_file = Path(log_file)
        self.identity = identity
        self.journal = journal if journal is not None else default_journal()
        self.debug_enabled = debug

        self._logger = logging.getLogger(f"cronguard.job.{identity}")
        self._logger.propagate = False
        self._logger.setLevel(logging.DEBUG if debug else logging.INFO)
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
        file_handler = JobFileHandler(self.log_file)
        file_handler.setFormatter(formatter)
        self._logger.addHandler(file_handler)
        if console:
            stream_handler = logging.StreamHandler(sys.stdout)
            stream_handler.setFormatter(formatter)
            self._logger.addHandler(stream_handler)

    def log(self, message: str, level: Level = Level.INFO, system: bool = True) -> None:
        if system:
            self.journal.write(message, level, self.identity)
        self._logger.log(level.logging_level, message)

    def info(self, message: str) -> None:
        """Log to the job log file only."""
        self.log(message, Level.INFO, system=False)

    def debug(self, message: str) -> None:
        if self.debug_enabled:
            self.log(message, Level.DEBUG, system=False)

    def warning(self, message: str) -> None:
        self.log(message, Level.WARNING)

    def error(self, message: str) -> None:
        self.log(message, Level.ERR)

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()
