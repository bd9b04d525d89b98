"""Command-line host for the mirroring service.

Subcommands:

- ``run`` (default) -- start the scheduler and poll until SIGINT/SIGTERM,
  or until ``q`` + Enter on an interactive console.
- ``once`` -- run a single sync cycle in the foreground and print the
  cycle report.
- ``init`` -- write a commented starter config file.
"""

import argparse
import json
import logging
import signal
import sys
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import (
    discover_config_files,
    ensure_config,
    load_hierarchical_config,
)
from .config_schema import UnifiedConfig, build_config
from .errors import ConfigurationError, MirrorError
from .logger import setup_logging
from .mirror.reporter import format_cycle_report, outcome_to_json
from .mirror.scheduler import SyncScheduler

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2


def _stderr_print(msg: str) -> None:
    """Print a user-facing message to stderr."""
    print(msg, file=sys.stderr, flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="remote-mirror",
        description="Keep two directory trees (local or UNC) mirrored by polling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .remote_mirror/config.yml)
  remote-mirror

  # Override both roots
  remote-mirror run --path1 /srv/a --path2 //fileserver/share

  # One cycle, JSON report
  remote-mirror once --json

  # Run as a background service, logging to a file only
  remote-mirror run --service --log-file /var/log/remote-mirror.log
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"remote-mirror version {__version__}",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--path1",
        help="First tree root (takes precedence over MIRROR_PATH1 and config files)",
    )
    common.add_argument(
        "--path2",
        help="Second tree root (takes precedence over MIRROR_PATH2 and config files)",
    )
    common.add_argument(
        "--interval",
        type=int,
        dest="check_interval_sec",
        help="Seconds between polls (1-86400)",
    )
    common.add_argument(
        "--verbosity",
        type=int,
        choices=(1, 2, 3),
        dest="logger_verbosity",
        help="Log verbosity tier: 1 startup/errors, 2 per-file, 3 per-cycle",
    )
    common.add_argument("--state-dir", help="Directory for catalog files")
    common.add_argument("--log-file", help="Log file path")
    common.add_argument(
        "--debug", action="store_true", help="Enable DEBUG logging"
    )
    common.add_argument(
        "--service",
        action="store_true",
        help="Log to file only and wait on signals only",
    )

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", parents=[common], help="Poll until stopped")
    once = sub.add_parser("once", parents=[common], help="Run one cycle")
    once.add_argument(
        "--json", action="store_true", help="Print the report as JSON"
    )
    init = sub.add_parser("init", help="Write a starter config file")
    init.add_argument("--path", help="Config file to create")

    # Bare `remote-mirror` behaves like `remote-mirror run`
    parser.set_defaults(
        command="run",
        path1=None,
        path2=None,
        check_interval_sec=None,
        logger_verbosity=None,
        state_dir=None,
        log_file=None,
        debug=False,
        service=False,
    )
    return parser


def load_settings(args: argparse.Namespace) -> tuple[Config, UnifiedConfig]:
    """Resolve the service configuration from every source.

    Precedence: CLI args > env vars (.env loaded first) > YAML > defaults.

    Raises:
        ConfigurationError: If the result is invalid.
    """
    # .env first so ${VAR} interpolation in YAML can use its values
    load_dotenv()

    unified = UnifiedConfig()
    yaml_fallbacks: dict[str, Any] | None = None
    config_files = discover_config_files()
    if config_files:
        try:
            unified = build_config(load_hierarchical_config())
        except (ValueError, yaml.YAMLError) as exc:
            raise ConfigurationError(
                f"Invalid config file {config_files[0]}: {exc}"
            ) from exc
        yaml_fallbacks = unified.mirror.model_dump(exclude_none=True)
        logger.debug("Using config file: %s", config_files[0])

    config = load_config(
        path1=args.path1,
        path2=args.path2,
        check_interval_sec=args.check_interval_sec,
        logger_verbosity=args.logger_verbosity,
        state_dir=args.state_dir,
        yaml_fallbacks=yaml_fallbacks,
    )
    return config, unified


def _configure_logging(
    args: argparse.Namespace, config: Config, unified: UnifiedConfig
) -> None:
    setup_logging(
        mode="service" if args.service else "console",
        debug=args.debug,
        level=unified.logging.level,
        log_file=args.log_file or unified.logging.file,
        debug_format=unified.logging.format,
        verbosity=config.logger_verbosity,
    )


def _install_signal_handlers(
    quit_event: threading.Event,
    on_signal: Callable[[], None] | None = None,
) -> None:
    def _handle(signum: int, _frame: object) -> None:
        logger.info("Received signal %d, stopping", signum)
        quit_event.set()
        if on_signal is not None:
            on_signal()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def _watch_console(quit_event: threading.Event) -> None:
    """Set *quit_event* when the user types ``q`` + Enter."""

    def _read() -> None:
        for line in sys.stdin:
            if line.strip().lower() == "q":
                quit_event.set()
                return

    threading.Thread(target=_read, name="console-quit", daemon=True).start()


def cmd_run(args: argparse.Namespace) -> int:
    config, unified = load_settings(args)
    _configure_logging(args, config, unified)

    quit_event = threading.Event()
    scheduler = SyncScheduler(config)
    # Handlers go in first so a signal during seeding cancels the start
    _install_signal_handlers(quit_event, on_signal=scheduler.stop)
    scheduler.start()
    if not args.service and sys.stdin is not None and sys.stdin.isatty():
        _stderr_print("Mirroring. Type q + Enter to stop.")
        _watch_console(quit_event)

    try:
        # Short waits keep the main thread responsive to signals
        while not quit_event.wait(1.0):
            pass
    finally:
        scheduler.stop()
    return EXIT_OK


def cmd_once(args: argparse.Namespace) -> int:
    config, unified = load_settings(args)
    _configure_logging(args, config, unified)

    scheduler = SyncScheduler(config)
    outcomes = scheduler.run_cycle()
    if args.json:
        print(json.dumps([outcome_to_json(o) for o in outcomes], indent=2))
    else:
        print(format_cycle_report(outcomes))
    return EXIT_ERROR if any(o.failed for o in outcomes) else EXIT_OK


def cmd_init(args: argparse.Namespace) -> int:
    target = Path(args.path).expanduser() if args.path else None
    path = ensure_config(target)
    print(path)
    return EXIT_OK


_COMMANDS = {"run": cmd_run, "once": cmd_once, "init": cmd_init}


def main(argv: list[str] | None = None) -> int:
    """Entry point. Returns the process exit status."""
    args = build_parser().parse_args(argv)
    try:
        return _COMMANDS[args.command](args)
    except ConfigurationError as exc:
        _stderr_print(f"Configuration error: {exc}")
        return EXIT_CONFIG
    except MirrorError as exc:
        _stderr_print(f"Error: {exc}")
        return EXIT_ERROR
    except KeyboardInterrupt:
        _stderr_print("\nInterrupted.")
        return EXIT_OK
