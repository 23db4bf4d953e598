"""
Severity levels and system journal sinks.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Protocol

try:
    import syslog
except ImportError:  # pragma: no cover - not available on Windows
    syslog = None


class Level(IntEnum):
    """Syslog priorities, most severe first."""

    EMERG = 0
    ALERT = 1
    CRIT = 2
    ERR = 3
    WARNING = 4
    NOTICE = 5
    INFO = 6
    DEBUG = 7

    @property
    def logging_level(self) -> int:
        return LOGGING_LEVELS[self]


LOGGING_LEVELS = {
    Level.EMERG: logging.CRITICAL,
    Level.ALERT: logging.CRITICAL,
    Level.CRIT: logging.CRITICAL,
    Level.ERR: logging.ERROR,
    Level.WARNING: logging.WARNING,
    Level.NOTICE: logging.INFO,
    Level.INFO: logging.INFO,
    Level.DEBUG: logging.DEBUG,
}


class Journal(Protocol):
    def write(self, message: str, level: Level, identity: str) -> None:
        ...


class NullJournal:
    def write(self, message: str, level: Level, identity: str) -> None:
        return None


class SyslogJournal:
    """Writes to the system journal through the platform syslog(3)."""

    def write(self, message: str, level: Level, identity: str) -> None:
        if syslog is None:
            return
        if not message.strip() and not identity.strip():
            return
        syslog.openlog(identity, syslog.LOG_PID, syslog.LOG_USER)
        try:
            # One entry per line, otherwise journald shows "#012" separators.
            for line in message.splitlines():
                if line.strip():
                    syslog.syslog(syslog.LOG_USER | int(level), line.strip())
        finally:
            syslog.closelog()


def default_journal() -> Journal:
    if syslog is None:
        return NullJournal()
    return SyslogJournal()
