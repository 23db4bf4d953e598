"""
cronguard: lifecycle guard for cron-style job executions.
"""

from __future__ import annotations

from .config import Configuration, load_config
from .errors import ConfigError, CronGuardError, InvalidTransition, StartupError
from .lifecycle import JobRun, LifecycleController, RunState
from .notifier import Event, HealthChecksNotifier

__version__ = "0.1.0"

__all__ = [
    "Configuration",
    "ConfigError",
    "CronGuardError",
    "Event",
    "HealthChecksNotifier",
    "InvalidTransition",
    "JobRun",
    "LifecycleController",
    "RunState",
    "StartupError",
    "load_config",
]
