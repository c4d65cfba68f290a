"""
Swarm: Main Entry Point
========================
This is where everything starts. Running this file:
1. Loads your configuration from .env
2. Reports any settings problems
3. Connects to the database
4. Starts the swarm (headless) or the API server for the dashboard

Usage:
    python main.py                  # Headless: run the swarm with .env settings
    python main.py --scan-only      # Score tokens and tag narratives, never trade
    python main.py --api            # Serve the dashboard API; start/stop from there
    python main.py --log-level DEBUG
"""

import asyncio
import argparse
import sys

from agent.swarm import SwarmController
from config.settings import settings
from database.db import Database
from utils.errors import ConfigError
from utils.logger import setup_logging, get_logger

logger = get_logger(__name__)


def report_settings_problems() -> None:
    for problem in settings.validate():
        logger.warning("config_issue", issue=problem)


async def run_headless(scan_only: bool) -> int:
    """Run one swarm until Ctrl+C. Returns the process exit code."""
    db = Database(settings.db_path)
    await db.initialize()
    controller = SwarmController(db, settings)

    logger.info(
        "swarm_cli_starting",
        scan_only=scan_only,
        max_position_sol=settings.max_position_sol,
        max_concurrent=settings.max_concurrent_trades,
    )

    try:
        await controller.start(settings.default_swarm_config(scan_only=scan_only))
        # Loops run in the background from here
        await asyncio.Event().wait()
    except ConfigError as e:
        logger.error("cannot_start", error=str(e))
        return 1
    except asyncio.CancelledError:
        logger.info("swarm_cli_stopping", reason="interrupted")
    finally:
        await controller.stop()
        await db.close()
        logger.info("swarm_cli_stopped")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Swarm: autonomous Solana memecoin trader")
    parser.add_argument("--api", action="store_true", help="Serve the dashboard API instead of running headless")
    parser.add_argument("--scan-only", action="store_true", help="Ignore the wallet key, never trade")
    parser.add_argument("--log-level", help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ERROR)")
    args = parser.parse_args()

    setup_logging(
        log_level=args.log_level or settings.log_level,
        log_dir="logs",
        json_logs=settings.log_json,
    )
    report_settings_problems()

    if args.api:
        from dashboard.app import run_dashboard
        run_dashboard(settings)
        return

    try:
        code = asyncio.run(run_headless(args.scan_only))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
