"""
Pool Monitor command line.

Usage:
    python -m pool_monitor watch --address 0xabc... --address 0xdef...
    python -m pool_monitor watch --state-file ./state.json --log-level DEBUG

Options are read from POOL_MONITOR_* environment variables (or a .env
file). Every data event is logged as one JSON line. Ctrl-C stops watching.
"""

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

from pool_monitor.app import MonitorApp
from pool_monitor.config import MonitorConfig
from pool_monitor.exceptions import PoolMonitorError
from pool_monitor.models import NormalizedEvent, Signal


logger = logging.getLogger("pool_monitor")


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def log_event(event: NormalizedEvent) -> None:
    logger.info(json.dumps(event.to_dict(), default=str))


def log_exception(error: Exception) -> None:
    logger.warning(f"[cli] {error}")


async def run_watch(
    addresses: list[str],
    state_file: Optional[Path] = None,
    dotenv_path: Optional[str] = None,
) -> None:
    """Watch until cancelled."""
    config = MonitorConfig.from_env(dotenv_path)
    app = MonitorApp(config, state_file=state_file)
    try:
        await app.init(addresses)
        app.scheduler.on(Signal.EXCEPTION, log_exception)
        await app.watch(log_event)
        logger.info(f"[cli] Watching pool {config.pool_id}, state in {app.state_file}")
        await asyncio.Event().wait()
    finally:
        await app.close()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="pool-monitor",
        description="Watch a pool of addresses on the Ethplorer bulk monitor API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    watch = subparsers.add_parser("watch", help="Watch the pool and log events")
    watch.add_argument(
        "--address",
        action="append",
        default=[],
        help="Address to add to the pool (repeatable)",
    )
    watch.add_argument(
        "--state-file",
        type=Path,
        default=None,
        help="State file (default: <tmpdir>/poolMonitorState.json)",
    )
    watch.add_argument(
        "--env-file",
        default=None,
        help="dotenv file to load (default: .env lookup)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )

    args = parser.parse_args()

    setup_logging(args.log_level)

    try:
        asyncio.run(run_watch(args.address, args.state_file, args.env_file))
    except KeyboardInterrupt:
        print("\nShutting down...")
    except PoolMonitorError as e:
        parser.exit(1, f"pool-monitor: {e}\n")


if __name__ == "__main__":
    main()
