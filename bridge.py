import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Load configuration from single .env file
load_dotenv("fuel-price-bridge.env")

from services.monitor import (
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_INTERVAL_MS,
    PROBE_MODES,
    ConnectivityMonitor,
)
from services.price_update import PriceUpdateService
from sinks.record_api import RecordApiSink
from sources.memory import InMemoryRecords
from sources.record_api import RecordApiSource
from transport.controller_client import DEFAULT_PORT, DEFAULT_TIMEOUT_MS, ControllerClient
from transport.mock_controller import MockController

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(levelname)s - %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)

# Exit code when at least one panel was not updated
EXIT_UPDATE_FAILED = 2


def _int_setting(name: str, default: int) -> int:
    """Read a positive integer from the environment with hard fail on garbage"""
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.error(f"{name} must be an integer, got {raw!r} in fuel-price-bridge.env")
        sys.exit(1)
    if value <= 0:
        logger.error(f"{name} must be positive, got {value} in fuel-price-bridge.env")
        sys.exit(1)
    return value


def get_settings() -> dict:
    """Collect controller and monitor settings from the environment"""
    probe_mode = os.getenv("MONITOR_PROBE") or "connect"
    if probe_mode not in PROBE_MODES:
        logger.error(f"MONITOR_PROBE must be one of {', '.join(PROBE_MODES)}, got {probe_mode!r}")
        sys.exit(1)

    return {
        "controller_port": _int_setting("CONTROLLER_PORT", DEFAULT_PORT),
        "controller_timeout_ms": _int_setting("CONTROLLER_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
        "monitor_interval_ms": _int_setting("MONITOR_INTERVAL_MS", DEFAULT_INTERVAL_MS),
        "monitor_failure_threshold": _int_setting("MONITOR_FAILURE_THRESHOLD", DEFAULT_FAILURE_THRESHOLD),
        "monitor_probe": probe_mode,
    }


def get_record_store(backend: str):
    """Initialize the selected record backend with hard fail on misconfiguration

    Returns:
        (source, sink) pair; the file backend uses one object for both.
    """
    if backend == "api":
        url = os.getenv("RECORDS_API_URL")
        if not url:
            logger.error("Records API: RECORDS_API_URL not configured in fuel-price-bridge.env")
            sys.exit(1)
        token = os.getenv("RECORDS_API_TOKEN")
        logger.info("Using records: REST API")
        return RecordApiSource(base_url=url, token=token), RecordApiSink(base_url=url, token=token)
    elif backend == "file":
        path = os.getenv("RECORDS_FILE")
        if not path:
            logger.error("Records: RECORDS_FILE not configured in fuel-price-bridge.env")
            sys.exit(1)
        try:
            records = InMemoryRecords.from_json_file(path)
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Records: Cannot load {path}: {e}")
            sys.exit(1)
        logger.info(f"Using records: {path}")
        return records, records
    else:
        logger.error(f"Unknown records backend: {backend}")
        sys.exit(1)


def get_client(settings: dict) -> ControllerClient:
    return ControllerClient(
        port=settings["controller_port"],
        timeout_ms=settings["controller_timeout_ms"],
    )


async def run_monitor(backend: str) -> int:
    settings = get_settings()
    source, sink = get_record_store(backend)
    await source.connect()

    monitor = ConnectivityMonitor(
        get_client(settings),
        sink=sink,
        failure_threshold=settings["monitor_failure_threshold"],
        probe_mode=settings["monitor_probe"],
    )
    interval_ms = settings["monitor_interval_ms"]

    async def log_stats():
        """Periodically report how many stations are reachable"""
        while True:
            await asyncio.sleep(interval_ms / 1000)
            stats = monitor.get_monitoring_stats()
            logger.info(
                f"Monitor: {stats['onlineStations']} online, {stats['offlineStations']} offline, "
                f"{stats['unknownStations']} unknown of {stats['totalStations']} stations"
            )

    try:
        stations = await source.list_stations()
        started = monitor.watch_stations(stations, interval_ms)
        if not started:
            logger.error("Monitor: No station with a controller address to monitor")
            return 1

        logger.info(f"Monitor: Watching {started} stations (probe: {settings['monitor_probe']})")
        async with asyncio.TaskGroup() as tg:
            tg.create_task(log_stats())
    finally:
        await monitor.stop_all_monitoring()
        await source.close()
    return 0


async def run_update(backend: str, station_id: str, prices: dict, actor: str) -> int:
    settings = get_settings()
    source, sink = get_record_store(backend)
    await source.connect()

    service = PriceUpdateService(source, sink, get_client(settings))
    try:
        result = await service.update_prices(station_id, prices, actor)
    finally:
        await source.close()

    for error in result.errors:
        target = f"panel {error.panel_id}" if error.panel_id else f"station {station_id}"
        logger.error(f"Update: {target}: {error.kind.value}: {error.message}")

    if result.success:
        logger.info(f"Update: All {result.panels_updated} panels show {result.prices.as_dict()}")
        return 0
    logger.warning(f"Update: Only {result.panels_updated} panels updated")
    return EXIT_UPDATE_FAILED


async def run_mock_controller(host: str, port: int) -> int:
    async with MockController(host=host, port=port):
        # Serve until interrupted
        await asyncio.Event().wait()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fuel Price Bridge")
    subparsers = parser.add_subparsers(dest="command", required=True)

    monitor = subparsers.add_parser("monitor", help="Track controller reachability of every station")
    monitor.add_argument(
        "--records",
        type=str,
        default="api",
        choices=["api", "file"],
        help="Record backend to use (default: api)"
    )

    update = subparsers.add_parser("update", help="Push new prices to every panel of a station")
    update.add_argument("--station", required=True, help="Station id")
    update.add_argument("--regular", required=True, help="Regular gasoline price")
    update.add_argument("--premium", required=True, help="Premium gasoline price")
    update.add_argument("--diesel", required=True, help="Diesel price")
    update.add_argument("--actor", default="cli", help="Who requested the change (default: cli)")
    update.add_argument(
        "--records",
        type=str,
        default="api",
        choices=["api", "file"],
        help="Record backend to use (default: api)"
    )

    mock = subparsers.add_parser("mock-controller", help="Run a simulated LED controller")
    mock.add_argument("--host", default="127.0.0.1", help="Address to bind (default: 127.0.0.1)")
    mock.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"Port to bind (default: {DEFAULT_PORT})")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "monitor":
        return asyncio.run(run_monitor(args.records))
    elif args.command == "update":
        prices = {"regular": args.regular, "premium": args.premium, "diesel": args.diesel}
        return asyncio.run(run_update(args.records, args.station, prices, args.actor))
    else:
        return asyncio.run(run_mock_controller(args.host, args.port))


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.info("Script stopped by user.")
