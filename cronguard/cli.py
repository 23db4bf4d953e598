"""
Command line entry point.

    cronguard --config guard.yaml run -- /usr/local/bin/backup.sh --full
    cronguard --config guard.yaml status
    cronguard --config guard.yaml validate
    cronguard --config guard.yaml export-cron --schedule "30 2 * * *" -- backup.sh
"""

from __future__ import annotations

import argparse
import logging
import os
import shlex
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from croniter import croniter

from .config import DEFAULT_CONFIG, load_config
from .errors import EXIT_ALREADY_RUNNING, EXIT_FAILURE, EXIT_OK, ConfigError, CronGuardError
from .journal import Level
from .lifecycle import LifecycleController
from .process_guard import STATUS_RUNNING, pid_file_status
from .runner import run_command


logger = logging.getLogger("cronguard")


def setup_logging() -> logging.Logger:
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)
    return logger


def _strip_separator(command: List[str]) -> List[str]:
    if command and command[0] == "--":
        return command[1:]
    return command


def _default_identity(command: List[str]) -> str:
    return Path(command[0]).name


def command_run(
    config_path: Path,
    command: List[str],
    identity: Optional[str],
    timeout: Optional[float],
) -> int:
    if not command:
        raise CronGuardError("Error: run requires a command after --.")
    config = load_config(config_path)
    name = identity or _default_identity(command)
    guard = LifecycleController(config, identity=name)
    guard.start()

    guard.log.info(f"Running {shlex.join(command)}")
    result = run_command(
        command,
        timeout=timeout,
        on_stdout=guard.log.info,
        on_stderr=lambda line: guard.log.log(line, Level.WARNING, system=False),
    )

    if result.success:
        guard.complete(f"{name} completed in {result.duration_seconds:.2f}s.")
        return EXIT_OK
    if result.error == "timeout":
        guard.fail(f"{name} timed out after {timeout} seconds.", exit_code=EXIT_FAILURE)
    else:
        guard.fail(f"{name} failed with exit code {result.return_code}.", exit_code=EXIT_FAILURE)
    return EXIT_FAILURE


def command_status(config_path: Path) -> int:
    config = load_config(config_path)
    status, pid = pid_file_status(config.pid_file)
    if pid is not None:
        print(f"{status} (pid {pid})")
    else:
        print(status)
    return EXIT_ALREADY_RUNNING if status == STATUS_RUNNING else EXIT_OK


def command_validate(config_path: Path) -> int:
    config = load_config(config_path)
    print(f"Config valid: {config_path}")
    print(f"Log file: {config.log_file}")
    print(f"Log rotation: > {config.log_max_size:g} MiB or older than {config.log_max_age} day(s)")
    print(f"Log retention: prune when more than {config.log_max_count} archive(s)")
    print(f"PID file: {config.pid_file}")
    print(f"Debug: {config.debug}")
    print(f"Health checks: {config.healthchecks_url or 'disabled'}")
    return EXIT_OK


def command_export_cron(
    config_path: Path,
    schedule: str,
    command: List[str],
    identity: Optional[str],
) -> int:
    if not command:
        raise CronGuardError("Error: export-cron requires a command after --.")
    if not croniter.is_valid(schedule):
        raise ConfigError(f'Error: Invalid cron expression "{schedule}".')
    load_config(config_path)

    name = identity or _default_identity(command)
    next_fire = croniter(schedule, datetime.now()).get_next(datetime)
    guarded = (
        f"{shlex.quote(sys.executable)} -m cronguard --config {shlex.quote(str(config_path.resolve()))} "
        f"run --identity {shlex.quote(name)} -- {shlex.join(command)}"
    )
    print("# cronguard cron export")
    print(f"# job: {name}")
    print(f"# next run: {next_fire.isoformat()}")
    print(f"{schedule} cd {shlex.quote(os.getcwd())} && {guarded}")
    return EXIT_OK


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Single-instance guard, log rotation and health checks for cron jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default=os.environ.get("CRONGUARD_CONFIG", DEFAULT_CONFIG),
        help=f"Path to cronguard YAML or TOML config (default: $CRONGUARD_CONFIG or {DEFAULT_CONFIG})",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a command under the guard")
    run_parser.add_argument("--identity", help="Name used in logs (default: command basename)")
    run_parser.add_argument("--timeout", type=float, help="Kill the command after this many seconds")
    run_parser.add_argument("argv", nargs=argparse.REMAINDER, help="Command to run, after --")

    subparsers.add_parser("status", help="Show the PID file state")
    subparsers.add_parser("validate", help="Validate config and print effective settings")

    export_parser = subparsers.add_parser("export-cron", help="Print a crontab line for a guarded command")
    export_parser.add_argument("--schedule", required=True, help='Cron expression, e.g. "*/15 * * * *"')
    export_parser.add_argument("--identity", help="Name used in logs (default: command basename)")
    export_parser.add_argument("argv", nargs=argparse.REMAINDER, help="Command to run, after --")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging()
    args = parse_args(argv)
    config_path = Path(args.config).resolve()

    try:
        if args.command == "run":
            if args.timeout is not None and args.timeout <= 0:
                raise CronGuardError("--timeout must be > 0")
            return command_run(
                config_path,
                _strip_separator(args.argv),
                identity=args.identity,
                timeout=args.timeout,
            )
        if args.command == "status":
            return command_status(config_path)
        if args.command == "validate":
            return command_validate(config_path)
        if args.command == "export-cron":
            return command_export_cron(
                config_path,
                args.schedule,
                _strip_separator(args.argv),
                identity=args.identity,
            )
        raise CronGuardError(f"Unsupported command: {args.command}")
    except CronGuardError as exc:
        logger.error(str(exc))
        return EXIT_FAILURE
    except Exception as exc:  # pragma: no cover - defensive
        logger.exception("Unexpected error: %s", exc)
        return EXIT_FAILURE
