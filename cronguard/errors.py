"""
Exception hierarchy and process exit codes.
"""

from __future__ import annotations

from typing import Optional


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_LOG_DIR = 1
EXIT_LOG_FILE = 2
EXIT_PID_DIR = 3
EXIT_PID_FILE = 4
EXIT_ALREADY_RUNNING = 5


class CronGuardError(Exception):
    """Base error for cronguard."""


class ConfigError(CronGuardError):
    """Config validation error."""


class InvalidTransition(CronGuardError):
    """A lifecycle method was called from a state that does not allow it."""


class StartupError(CronGuardError):
    """Filesystem failure that must end the run with a specific exit code."""

    exit_code = EXIT_LOG_DIR

    def __init__(self, message: str, exit_code: Optional[int] = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class RotationError(StartupError):
    """The active log could not be moved to its archive name."""

    exit_code = EXIT_LOG_DIR


class LogFileError(StartupError):
    """The log file could not be created, listed or pruned."""

    exit_code = EXIT_LOG_FILE
