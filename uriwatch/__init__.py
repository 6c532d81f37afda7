"""uriwatch - continuous availability and latency monitor for a single URI."""

import argparse
import logging
import signal
import sys
import time
from threading import Event
from typing import Optional

__version__ = "0.1.0"

# Global shutdown event for signal handlers
_shutdown_event: Optional[Event] = None

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application.

    Records go to stderr so they never interleave with the dashboard on stdout.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def _handle_shutdown(signum: int, frame: object) -> None:
    """Signal handler for graceful shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, stopping after the current cycle...", sig_name)
    if _shutdown_event is not None:
        _shutdown_event.set()


def _load(args: argparse.Namespace, require_uri: bool = True):
    """Build the configuration from file, environment and flags, or exit(1)."""
    from .config import ConfigError, build_config

    overrides = {
        "uri": args.uri,
        "log_file": args.log_file,
        "interval_seconds": getattr(args, "interval", None),
        "timeout_seconds": getattr(args, "timeout", None),
        "latency_slo_ms": getattr(args, "latency_slo_ms", None),
        "clear_screen": False if getattr(args, "no_clear", False) else None,
        "fixed_rate": True if getattr(args, "fixed_rate", False) else None,
        "incremental": True if getattr(args, "incremental", False) else None,
    }

    try:
        config = build_config(args.config, overrides, getattr(args, "header", None))
        if require_uri and not config.uri:
            raise ConfigError("A target URI (--uri) is required")
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)
    return config


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - probe the target until interrupted."""
    global _shutdown_event

    _setup_logging(args.verbose)

    from .dashboard import Dashboard
    from .eventlog import EventLog, EventLogError
    from .monitor import Monitor

    if args.count is not None and args.count < 1:
        logger.error("Configuration error: --count must be at least 1")
        sys.exit(1)

    config = _load(args)
    logger.info("uriwatch %s starting...", __version__)

    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    monitor = Monitor(config, EventLog(config.log_file), Dashboard.from_config(config))

    try:
        monitor.run(_shutdown_event, max_cycles=args.count)
    except KeyboardInterrupt:
        # Backup handler if signal doesn't work
        logger.info("Keyboard interrupt received")
    except EventLogError as e:
        logger.error("Event log error: %s", e)
        sys.exit(1)


def _cmd_report(args: argparse.Namespace) -> None:
    """Execute the report command - render one snapshot from the existing log."""
    _setup_logging(args.verbose)

    from pathlib import Path

    from .aggregator import aggregate
    from .dashboard import Dashboard
    from .eventlog import EventLog, EventLogError

    config = _load(args, require_uri=False)

    if not Path(config.log_file).exists():
        logger.error("Event log not found at %s", config.log_file)
        sys.exit(1)

    event_log = EventLog(config.log_file)
    now = int(time.time())
    try:
        report = aggregate(event_log.scan(), now, config.windows, config.latency_slo_ms)
        last = event_log.last()
    except EventLogError as e:
        logger.error("Event log error: %s", e)
        sys.exit(1)

    dashboard = Dashboard.from_config(config)
    dashboard.draw(now, last, report)


def _cmd_prune(args: argparse.Namespace) -> None:
    """Execute the prune command - drop rows older than the retention horizon."""
    _setup_logging(args.verbose)

    from pathlib import Path

    from .eventlog import EventLog, EventLogError

    config = _load(args, require_uri=False)

    if not Path(config.log_file).exists():
        logger.error("Event log not found at %s", config.log_file)
        sys.exit(1)

    cutoff = int(time.time()) - config.retention_seconds
    try:
        removed = EventLog(config.log_file).prune(cutoff)
    except EventLogError as e:
        logger.error("Event log error: %s", e)
        sys.exit(1)

    print(f"Removed {removed} rows older than {config.retention_seconds} seconds from {config.log_file}.")


def _add_target_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--uri",
        help="Target URI to probe",
    )
    parser.add_argument(
        "--log-file",
        help="CSV event log path (default: ~/.local/share/uriwatch/logs/<sanitized-uri>.csv)",
    )
    parser.add_argument(
        "-c", "--config",
        help="Optional YAML configuration file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the uriwatch package."""
    parser = argparse.ArgumentParser(
        description="uriwatch - continuously probe a URI and render rolling availability/latency metrics"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"uriwatch {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Run subcommand
    run_parser = subparsers.add_parser(
        "run",
        help="Probe the target and redraw the dashboard until interrupted",
        epilog=(
            "Success criteria: HTTP status < 400 is success, HTTP status >= 400 "
            "is failure, and network errors are failures."
        ),
    )
    _add_target_arguments(run_parser)
    run_parser.add_argument(
        "--interval",
        help="Seconds between probes (default: 30)",
    )
    run_parser.add_argument(
        "--timeout",
        help="Per-probe timeout in seconds (default: 15)",
    )
    run_parser.add_argument(
        "--latency-slo-ms",
        help="Latency threshold for the latency %% column (default: 1000)",
    )
    run_parser.add_argument(
        "--header",
        action="append",
        metavar="'Name: Value'",
        help="Extra HTTP header (repeatable)",
    )
    run_parser.add_argument(
        "--no-clear",
        action="store_true",
        help="Do not clear the screen between updates",
    )
    run_parser.add_argument(
        "--fixed-rate",
        action="store_true",
        help="Subtract each cycle's duration from the sleep (default: fixed delay)",
    )
    run_parser.add_argument(
        "--incremental",
        action="store_true",
        help="Keep window statistics in memory instead of rescanning the log each cycle",
    )
    run_parser.add_argument(
        "--count",
        type=int,
        help="Stop after this many probes",
    )
    run_parser.set_defaults(func=_cmd_run)

    # Report subcommand
    report_parser = subparsers.add_parser(
        "report",
        help="Render one dashboard snapshot from an existing event log",
    )
    _add_target_arguments(report_parser)
    report_parser.add_argument(
        "--latency-slo-ms",
        help="Latency threshold for the latency %% column (default: 1000)",
    )
    report_parser.set_defaults(func=_cmd_report, no_clear=True)

    # Prune subcommand
    prune_parser = subparsers.add_parser(
        "prune",
        help="Remove rows older than the retention horizon from an event log",
    )
    _add_target_arguments(prune_parser)
    prune_parser.set_defaults(func=_cmd_prune)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    args.func(args)
