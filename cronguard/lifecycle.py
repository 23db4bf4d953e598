"""
Job lifecycle: startup sequencing and the two terminal transitions.

    Created -> Starting -> Running -> Completed
                  |           |
                  +-----------+--> Failed

``start()`` creates the log and PID directories, enforces a single running
instance through the PID file, writes the PID file and rotates/prunes the
job log. ``fail()`` is the only abort path: it leaves the PID file holding
the ``failed`` sentinel and ends the process. ``complete()`` removes the
PID file and returns to the caller.

The instance check and the PID file write are two separate steps. Two
invocations starting at the same moment can both pass the check; no file
lock closes that window.
"""

from __future__ import annotations

import os
import sys
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from .config import Configuration
from .errors import (
    EXIT_ALREADY_RUNNING,
    EXIT_FAILURE,
    EXIT_LOG_DIR,
    EXIT_LOG_FILE,
    EXIT_PID_DIR,
    EXIT_PID_FILE,
    InvalidTransition,
    StartupError,
)
from .joblog import JobLogger
from .journal import Level
from .notifier import Event, HealthChecksNotifier
from .process_guard import FAILED_SENTINEL, is_already_running, process_exists, read_pid
from .rotation import maybe_rotate, prune


DEFAULT_IDENTITY = "Cron app"
DEFAULT_FAIL_MESSAGE = "Ending cron app in a failed state."
DEFAULT_COMPLETE_MESSAGE = "Process complete."


class RunState(str, Enum):
    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: Dict[RunState, Set[RunState]] = {
    RunState.CREATED: {RunState.STARTING},
    RunState.STARTING: {RunState.RUNNING, RunState.FAILED},
    RunState.RUNNING: {RunState.COMPLETED, RunState.FAILED},
    RunState.COMPLETED: set(),
    RunState.FAILED: set(),
}


@dataclass
class JobRun:
    identity: str
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    process_id: int = -1
    start_time: Optional[datetime] = None
    stop_time: Optional[datetime] = None
    state: RunState = RunState.CREATED

    @property
    def duration(self) -> Optional[timedelta]:
        if self.start_time is None or self.stop_time is None:
            return None
        return self.stop_time - self.start_time

    @property
    def terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.state]

    def require(self, target: RunState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(
                f'Cannot move run "{self.identity}" from {self.state.value} to {target.value}.'
            )

    def transition(self, target: RunState) -> None:
        self.require(target)
        self.state = target


def readable_duration(delta: Optional[timedelta]) -> str:
    if delta is None:
        return "unknown"
    remaining = max(0, int(delta.total_seconds()))
    parts: List[str] = []
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60), ("second", 1)):
        amount, remaining = divmod(remaining, size)
        if amount:
            parts.append(f"{amount} {unit}{'' if amount == 1 else 's'}")
    if not parts:
        millis = int(delta.total_seconds() * 1000)
        return f"{max(0, millis)} milliseconds"
    return ", ".join(parts)


class LifecycleController:
    def __init__(
        self,
        config: Optional[Configuration] = None,
        identity: str = DEFAULT_IDENTITY,
        logger: Optional[JobLogger] = None,
        notifier: Optional[HealthChecksNotifier] = None,
        exit_func: Callable[[int], object] = sys.exit,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config or Configuration.defaults()
        self.run = JobRun(identity=identity)
        self.log = logger or JobLogger(self.config.log_file, identity, debug=self.config.debug)
        self.notifier = notifier or HealthChecksNotifier(
            self.config.healthchecks_url,
            self.config.healthchecks_timeout,
        )
        self._exit = exit_func
        self._clock = clock

    @property
    def state(self) -> RunState:
        return self.run.state

    def __enter__(self) -> "LifecycleController":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self.run.state is not RunState.RUNNING:
            return False
        if exc_type is None:
            self.complete()
        elif issubclass(exc_type, SystemExit) and exc.code in (0, None):
            self.complete()
        elif issubclass(exc_type, SystemExit):
            code = exc.code if isinstance(exc.code, int) else EXIT_FAILURE
            self.fail(f"Job exited with status {exc.code}.", exit_code=code)
        else:
            self.fail(f"Unhandled {exc_type.__name__}: {exc}", exit_code=EXIT_FAILURE)
        return False

    def start(self) -> JobRun:
        run = self.run
        run.transition(RunState.STARTING)
        run.start_time = self._clock()
        run.process_id = os.getpid()

        self.log.log(f"Starting {run.identity}.")
        self._notify(Event.START)

        try:
            self._ensure_directory(self.config.log_dir, "log", EXIT_LOG_DIR)
            self._ensure_directory(self.config.pid_dir, "PID", EXIT_PID_DIR)
            if self._another_instance_running():
                # The other run owns the PID file: no sentinel, no notification.
                self.log.log("The process is currently running. Exiting.", Level.WARNING)
                self._exit(EXIT_ALREADY_RUNNING)
                return run
            self._write_pid_file()
            self._rotate_logs()
        except StartupError as exc:
            self.fail(str(exc), exit_code=exc.exit_code)
            return run

        run.transition(RunState.RUNNING)
        return run

    def fail(self, message: str = DEFAULT_FAIL_MESSAGE, exit_code: int = EXIT_FAILURE) -> None:
        self.run.require(RunState.FAILED)
        self.log.log(message, Level.ERR)
        self._write_failed_sentinel()
        self._record_stop()
        self._notify(Event.FAIL)
        self.run.transition(RunState.FAILED)
        self._exit(exit_code)

    def complete(self, message: str = DEFAULT_COMPLETE_MESSAGE) -> None:
        self.run.require(RunState.COMPLETED)
        self.log.log(message)
        self.log.debug("Attempting to remove the pid file.")
        try:
            self.config.pid_file.unlink()
        except FileNotFoundError:
            self.log.debug(f"The pid file at '{self.config.pid_file}' was already gone.")
        except OSError as exc:
            self.log.debug(f"Failed to remove the pid file at '{self.config.pid_file}' with message: '{exc}'.")
            self.fail("Failed to remove the pid file.", exit_code=EXIT_LOG_FILE)
            return
        else:
            self.log.info("Pid file removed.")
        self._record_stop()
        self._notify(Event.COMPLETE)
        self.run.transition(RunState.COMPLETED)

    def _ensure_directory(self, directory: Path, label: str, exit_code: int) -> None:
        if directory.is_dir():
            return
        self.log.info(f"The {label} directory does not exist, attempting to create it.")
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self.log.debug(f"Could not create the {label} path ('{directory}') with message: '{exc}'")
            raise StartupError(f"Could not create the {label} path.", exit_code) from exc
        self.log.info(f"The {label} directory was created successfully.")

    def _another_instance_running(self) -> bool:
        pid_file = self.config.pid_file
        if not pid_file.exists():
            return False
        stored = read_pid(pid_file)
        if stored != self.run.process_id and is_already_running(pid_file):
            return True

        self.log.log("The PID is assumed to be orphaned or not running.")
        self.log.info("Attempting to remove pid file.")
        try:
            pid_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            self.log.debug(f"Could not delete PID file ('{pid_file}') with message: '{exc}'")
            raise StartupError("Exiting with error. Could not remove PID file.", EXIT_PID_FILE) from exc
        self.log.info("The PID file was deleted successfully.")
        return False

    def _write_pid_file(self) -> None:
        pid_file = self.config.pid_file
        self.log.log(f"Process id is '{self.run.process_id}'.")
        self.log.log("Creating PID file.")
        try:
            pid_file.write_text(str(self.run.process_id), encoding="utf-8")
        except OSError as exc:
            self.log.debug(f"Could not create PID file at ('{pid_file}') with message: '{exc}'")
            raise StartupError("Exiting with error. Could not write PID file.", EXIT_PID_FILE) from exc
        self.log.info("PID file created successfully.")

    def _rotate_logs(self) -> None:
        cfg = self.config
        outcome = maybe_rotate(cfg.log_file, cfg.log_max_size, cfg.log_max_age, now=self._clock())
        if outcome.rotated and outcome.archive is not None:
            self.log.log(f"Log file rotated ({outcome.reason}) to '{outcome.archive.name}'.")

        deleted = prune(cfg.log_dir, cfg.log_name, cfg.log_max_count)
        if deleted:
            self.log.info(
                f"The log limit is set at {cfg.log_max_count}; deleted {len(deleted)} old log file(s)."
            )
        for path in deleted:
            self.log.debug(f"Deleted old log file {path.name}.")

    def _write_failed_sentinel(self) -> None:
        pid_file = self.config.pid_file
        owner = read_pid(pid_file)
        if owner is not None and owner != self.run.process_id and process_exists(owner):
            self.log.debug(f"PID file belongs to running process {owner}; leaving it untouched.")
            return
        try:
            pid_file.write_text(FAILED_SENTINEL, encoding="utf-8")
        except OSError as exc:
            self.log.debug(f"Could not mark PID file ('{pid_file}') as failed: '{exc}'")

    def _record_stop(self) -> None:
        self.run.stop_time = self._clock()
        self.log.info(f"Total run time: {readable_duration(self.run.duration)}.")

    def _notify(self, event: Event) -> None:
        if not self.notifier.enabled:
            return
        self.log.info(f"Sending healthchecks {event.value}.")
        try:
            acknowledged = self.notifier.notify(event, self.run.run_id)
        except Exception as exc:
            self.log.debug(f"Healthchecks {event.value} failed with message: '{exc}'")
            return
        if not acknowledged:
            self.log.debug(f"Healthchecks {event.value} was not acknowledged.")
