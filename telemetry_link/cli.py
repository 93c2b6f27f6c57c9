"""Command-line interface for the telemetry link."""

from __future__ import annotations

import argparse
import getpass
import logging
import math
import signal
import socket
import sys
import time
from datetime import datetime
from pathlib import Path

from telemetry_link.collector import Collector
from telemetry_link.commands import Command
from telemetry_link.errors import TelemetryError
from telemetry_link.exporter import export
from telemetry_link.producer import Producer
from telemetry_link.protocol import DEFAULT_PORT
from telemetry_link.samples import Kind, Sample
from telemetry_link.store import Store

logger = logging.getLogger(__name__)


# =============================================================================
# Logging setup
# =============================================================================


def setup_logging(verbose: bool, debug: bool) -> None:
    """Configure logging based on verbosity flags."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


# =============================================================================
# Export target
# =============================================================================


def current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def current_host() -> str:
    return socket.gethostname() or "unknown"


def resolve_output(args: argparse.Namespace, store: Store) -> Path:
    """Pick the export file: explicit path, else an auto-named file in a dir."""
    if args.output:
        return Path(args.output)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_dir = Path(args.output_dir or ".")
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir / f"{store.session_name()}_{timestamp}.csv"


# =============================================================================
# Command handlers
# =============================================================================


def cmd_record(args: argparse.Namespace) -> int:
    """Handle 'record' command - receive from a collector, then export."""
    store = Store()
    producer = Producer(store, host=args.host, port=args.port, on_status=print)

    # Handle SIGINT gracefully
    def signal_handler(_sig: int, _frame: object) -> None:
        producer.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)

    status = 0
    try:
        producer.run()
    except TelemetryError as e:
        logger.error("Recording failed: %s", e)
        status = 1
    finally:
        producer.stats.print_summary()

    if len(store) == 0:
        print("Nothing recorded")
        return status

    path = resolve_output(args, store)
    rows = export(store, path, user=current_user(), host=current_host())
    print(f"Wrote {rows} rows to {path}")
    return status


def cmd_serve(args: argparse.Namespace) -> int:
    """Handle 'serve' command - stream a synthetic drive to one recorder."""
    store = Store()
    collector = Collector(store, bind=args.bind, port=args.port)

    def signal_handler(_sig: int, _frame: object) -> None:
        collector.stop(timeout=0)

    signal.signal(signal.SIGINT, signal_handler)

    try:
        collector.listen()
    except TelemetryError as e:
        logger.error("Cannot start collector: %s", e)
        return 1

    print(f"Waiting for a recorder on port {collector.address[1]}")
    collector.start()
    while not collector.wait_connected(timeout=0.5):
        if not collector.running:
            return 1 if collector.error else 0

    store.add_command(Command.drive_dist(args.count))
    store.update_totals(0.0, 0.0)
    for tick in range(args.count):
        if not collector.running:
            break
        speed = int(200 + 50 * math.sin(tick / 10))
        store.update_totals(speed * args.interval, speed * args.interval)
        store.append_record(
            [
                Sample.of(Kind.CALC_SPEED, speed, speed),
                Sample.of(Kind.DRIVEN_DISTANCE, 0.0, 0.0),
                Sample.of(Kind.CUR_TAR_SPEEDS, speed, 200),
            ]
        )
        time.sleep(args.interval)

    collector.stop()
    if collector.error:
        logger.error("Collector failed: %s", collector.error)
        return 1
    print(f"Sent {collector.frames_sent} frames")
    return 0


# =============================================================================
# Argument parsing
# =============================================================================


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Robot telemetry link: stream samples and record them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s record -H robot.local                  # Record until the robot ends the stream
    %(prog)s record -H 10.0.0.5 -o run1.csv         # Explicit output file
    %(prog)s record -H 10.0.0.5 --output-dir logs   # Auto-named file in logs/
    %(prog)s serve --count 500 --interval 0.02      # Synthetic robot for testing

Defaults:
    - port: 3333
    - output: <session name>_<timestamp>.csv in the current directory
        """,
    )

    # Global options
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help=f"TCP port (default: {DEFAULT_PORT})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Enable debug output",
    )

    # Subcommands
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # record
    record_parser = subparsers.add_parser(
        "record", help="Connect to a collector and export what it sends"
    )
    record_parser.add_argument(
        "-H",
        "--host",
        default="localhost",
        help="Collector host (default: localhost)",
    )
    output_group = record_parser.add_mutually_exclusive_group()
    output_group.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        help="Export file",
    )
    output_group.add_argument(
        "--output-dir",
        metavar="DIR",
        help="Directory for an export file named after the session",
    )

    # serve
    serve_parser = subparsers.add_parser(
        "serve", help="Run a collector fed with a synthetic drive"
    )
    serve_parser.add_argument(
        "--bind",
        default="0.0.0.0",
        help="Address to listen on (default: 0.0.0.0)",
    )
    serve_parser.add_argument(
        "--interval",
        type=float,
        default=0.05,
        metavar="SEC",
        help="Seconds between samples (default: 0.05)",
    )
    serve_parser.add_argument(
        "--count",
        type=int,
        default=200,
        metavar="N",
        help="Number of records to send (default: 200)",
    )

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    return args


# =============================================================================
# Main entry point
# =============================================================================


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.verbose, args.debug)

    handlers = {
        "record": cmd_record,
        "serve": cmd_serve,
    }

    handler = handlers.get(args.command)
    if handler is None:
        logger.error("Unknown command: %s", args.command)
        return 1
    return handler(args)
