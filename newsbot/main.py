"""
Main entry point for the prediction market news monitor.

Each cycle runs the full flow:
1. Fetch current markets from Polymarket
2. Ingest snapshots and price history
3. Detect anomalies and score markets
4. Gate the noisiest markets against recent reports
5. Generate, store and optionally push news reports

The CLI also exposes the stored data (reports, markets, history) and the
database maintenance commands.
"""

import argparse
import json
import logging
import signal
import sys
import threading
from typing import Optional

from newsbot.config import Config
from newsbot.coordinator import ReportCoordinator
from newsbot.models import CycleResult
from newsbot.report_writer import build_report_generator
from newsbot.reporter import (
    format_history,
    format_market_overview,
    format_reports,
    market_history,
    market_overview,
    recent_reports,
)
from newsbot.scheduler import Scheduler
from newsbot.storage import Storage, StorageError
from newsbot.telegram_notifier import TelegramReportNotifier, is_configured as telegram_configured


def setup_logging() -> None:
    """Configure logging for the application."""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_level = getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if Config.LOG_FILE:
        Config.ensure_directories()
        handlers.append(logging.FileHandler(Config.LOG_FILE))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers
    )


logger = logging.getLogger(__name__)


def build_coordinator(storage: Storage) -> ReportCoordinator:
    """
    Wire the coordinator with the configured generator and notifier.

    Args:
        storage: Initialized snapshot store

    Returns:
        ReportCoordinator ready to run cycles
    """
    generator = build_report_generator()
    logger.info(f"Using report generator: {generator.name}")

    on_report = TelegramReportNotifier(storage) if telegram_configured() else None
    if on_report:
        logger.info("Telegram delivery enabled")

    return ReportCoordinator(storage=storage, generator=generator, on_report=on_report)


def _validate_config() -> bool:
    is_valid, errors = Config.validate()
    if not is_valid:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
    return is_valid


def _open_storage() -> Optional[Storage]:
    try:
        Config.ensure_directories()
        return Storage()
    except StorageError as e:
        logger.error(f"Cannot open database: {e}")
        return None


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the news monitor.

    Returns:
        Exit code (0 for success, 1 for failure, 130 when interrupted)
    """
    parser = argparse.ArgumentParser(
        description="Prediction Market News Monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run one news cycle
  python -m newsbot.main

  # Run continuously (every 5 minutes by default)
  python -m newsbot.main --schedule

  # Run every 10 minutes with offline template reports
  python -m newsbot.main --schedule --interval 10 --provider template

  # Show the latest reports, markets, or one market's history
  python -m newsbot.main --reports 10
  python -m newsbot.main --markets
  python -m newsbot.main --history 12345 --hours 6

  # Clear stored data
  python -m newsbot.main --clear reports
        """
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--schedule",
        action="store_true",
        help="Run continuously at a fixed interval"
    )
    mode.add_argument(
        "--reports",
        type=int,
        nargs="?",
        const=20,
        default=None,
        metavar="N",
        help="Show the N most recent reports and exit (default 20)"
    )
    mode.add_argument(
        "--markets",
        action="store_true",
        help="Show stored markets with their current anomalies and exit"
    )
    mode.add_argument(
        "--history",
        metavar="MARKET_ID",
        default=None,
        help="Show the price history of a market and exit"
    )
    mode.add_argument(
        "--clear",
        choices=["all", "reports", "markets"],
        default=None,
        help="Delete stored data and exit"
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Minutes between cycles (overrides SCAN_INTERVAL_MINUTES)"
    )
    parser.add_argument(
        "--hours",
        type=int,
        default=24,
        help="History window in hours for --history (default 24)"
    )
    parser.add_argument(
        "--provider",
        choices=["anthropic", "openai", "template"],
        default=None,
        help="Report generator to use (overrides REPORT_PROVIDER)"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print --reports, --markets and --history output as JSON"
    )

    args = parser.parse_args(argv)

    setup_logging()

    if args.provider:
        Config.REPORT_PROVIDER = args.provider

    storage = _open_storage()
    if storage is None:
        return 1

    if args.reports is not None:
        return _show_reports(storage, args.reports, args.json)

    if args.markets:
        return _show_markets(storage, args.json)

    if args.history:
        return _show_history(storage, args.history, args.hours, args.json)

    if args.clear:
        return _clear(storage, args.clear)

    if not _validate_config():
        return 1

    coordinator = build_coordinator(storage)

    if args.schedule:
        return _run_scheduled_mode(coordinator, args.interval)

    return _run_single_mode(coordinator)


def _run_single_mode(coordinator: ReportCoordinator) -> int:
    """
    Run one cycle and exit.

    A cycle that emits nothing is still a success.

    Returns:
        Exit code
    """
    try:
        result = coordinator.run_cycle()
        _log_cycle_summary(result)
        return 0

    except KeyboardInterrupt:
        logger.info("Cycle interrupted by user")
        return 130

    except Exception as e:
        logger.error(f"Fatal error in cycle: {e}", exc_info=True)
        return 1


def _run_scheduled_mode(coordinator: ReportCoordinator, interval_minutes: Optional[int] = None) -> int:
    """
    Run cycles on an interval until SIGINT or SIGTERM.

    Args:
        coordinator: Wired coordinator
        interval_minutes: Minutes between cycles. If None, uses Config.SCAN_INTERVAL_MINUTES

    Returns:
        Exit code
    """
    logger.info("Starting in scheduled mode")

    scheduler = Scheduler()
    shutdown = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        coordinator.request_stop()
        shutdown.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    def run_cycle() -> CycleResult:
        result = coordinator.run_cycle()
        _log_cycle_summary(result)
        return result

    try:
        if not scheduler.start(run_cycle, interval_minutes=interval_minutes):
            logger.error("Failed to start scheduler")
            return 1

        status = scheduler.get_status()
        logger.info(f"Interval: {status['interval_minutes']} minutes")
        logger.info("Scheduler is running. Press Ctrl+C to stop.")

        while not shutdown.wait(1.0):
            pass

        scheduler.stop(wait=True)
        return 0

    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
        coordinator.request_stop()
        scheduler.stop(wait=True)
        return 130

    except Exception as e:
        logger.error(f"Fatal error in scheduled mode: {e}", exc_info=True)
        if scheduler.is_running:
            scheduler.stop(wait=False)
        return 1


def _log_cycle_summary(result: CycleResult) -> None:
    if result.emitted:
        logger.info(f"Emitted {result.emitted} report(s): {result.report_ids}")
    else:
        logger.info("No reports emitted this cycle")


def _show_reports(storage: Storage, limit: int, as_json: bool) -> int:
    if as_json:
        print(json.dumps(recent_reports(storage, limit=limit), indent=2))
    else:
        print(format_reports(storage.list_reports(limit=limit)))
    return 0


def _show_markets(storage: Storage, as_json: bool) -> int:
    overview = market_overview(storage)
    if as_json:
        print(json.dumps(overview, indent=2))
    else:
        print(format_market_overview(overview))
    return 0


def _show_history(storage: Storage, market_id: str, hours: int, as_json: bool) -> int:
    if hours < 1:
        logger.error("--hours must be at least 1")
        return 1

    history = market_history(storage, market_id, hours=hours)
    if as_json:
        print(json.dumps(history, indent=2))
    else:
        print(format_history(market_id, history))
    return 0


def _clear(storage: Storage, target: str) -> int:
    before = storage.count_rows()

    if target == "all":
        ok = storage.purge_all()
    elif target == "reports":
        ok = storage.clear_reports()
    else:
        ok = storage.clear_markets()

    if not ok:
        logger.error(f"Failed to clear {target}")
        return 1

    for table, count in before.items():
        logger.info(f"  {table}: {count} rows before clear")
    logger.info(f"Cleared {target}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
