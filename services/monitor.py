"""Station connectivity monitor - one asyncio probe loop per station

Design:
- Every monitored station gets its own task, so a hanging probe only ever
  delays that station's next tick.
- Each station row is written by its own loop (and by run_probe) under a
  per-station asyncio.Lock; readers get copies.
- Online/offline changes are pushed to the record layer as fire-and-forget
  tasks; the loop never waits for them.
- Stopping a station cancels its timer. A probe that is already in flight
  is shielded and runs to completion, but its result is dropped.
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from protocol.commands import create_status_query_frame
from sinks.base import RecordSink
from sources.base import Station
from transport.controller_client import ControllerClient

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 30000
DEFAULT_FAILURE_THRESHOLD = 3
PROBE_MODES = ("connect", "status")


class LinkState(str, Enum):
    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass
class ConnectionStatus:
    """
    Connectivity of one station as seen by the monitor.

    Attributes:
        state: UNKNOWN until the first success or the first full failure run.
        last_seen: Time of the last successful probe; never moves backwards.
        consecutive_failures: Failed probes since the last success.
    """
    state: LinkState = LinkState.UNKNOWN
    last_seen: datetime | None = None
    consecutive_failures: int = 0

    @property
    def is_online(self) -> bool:
        return self.state is LinkState.ONLINE

    def as_dict(self) -> dict:
        return {
            "state": self.state.value,
            "isOnline": self.is_online,
            "lastSeen": self.last_seen.isoformat() if self.last_seen else None,
            "consecutiveFailures": self.consecutive_failures,
        }


@dataclass(frozen=True)
class MonitoringTarget:
    station_id: str
    controller_address: str
    poll_interval_ms: int
    controller_port: int | None = None


class _Watch:
    """One live registration: target, status row, lock and loop task."""

    def __init__(self, target: MonitoringTarget):
        self.target = target
        self.status = ConnectionStatus()
        self.lock = asyncio.Lock()
        self.task: asyncio.Task | None = None
        self.stopped = False


class ConnectivityMonitor:
    """
    Tracks whether each station's controller is reachable.

    A station goes ONLINE on any successful probe. It goes OFFLINE only
    after failure_threshold consecutive failures; shorter failure runs keep
    the previous state.
    """

    def __init__(
        self,
        client: ControllerClient,
        sink: RecordSink | None = None,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        probe_timeout_ms: int | None = None,
        probe_mode: str = "connect",
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Args:
            client: Transport used for probes.
            sink: Receives station status changes; None disables notifications.
            failure_threshold: Consecutive failures before a station is OFFLINE.
            probe_timeout_ms: Per-probe time budget (default: the client's).
            probe_mode: "connect" (TCP connect only) or "status" (status-query round trip).
            clock: Returns the current time (default: UTC now).
        """
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {failure_threshold}")
        if probe_mode not in PROBE_MODES:
            raise ValueError(f"probe_mode must be one of {PROBE_MODES}, got {probe_mode!r}")

        self.client = client
        self.sink = sink
        self.failure_threshold = failure_threshold
        self.probe_timeout_ms = probe_timeout_ms
        self.probe_mode = probe_mode
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._watches: dict[str, _Watch] = {}
        self._in_flight: set[asyncio.Task] = set()
        self._notifications: set[asyncio.Task] = set()

    # --- registration -------------------------------------------------

    def start_monitoring(
        self,
        station_id: str,
        address: str,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        port: int | None = None,
    ) -> MonitoringTarget:
        """
        Start (or restart) the probe loop for a station.

        Must be called from a running event loop. Re-registering a station
        cancels its previous loop first, so there is never more than one.
        """
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")

        if station_id in self._watches:
            self.stop_monitoring(station_id)

        target = MonitoringTarget(station_id, address, interval_ms, port)
        watch = _Watch(target)
        watch.task = asyncio.create_task(self._loop(watch), name=f"monitor-{station_id}")
        self._watches[station_id] = watch

        logger.info(f"Monitor: Started monitoring station {station_id} at {address} every {interval_ms} ms")
        return target

    def watch_stations(self, stations: list[Station], interval_ms: int = DEFAULT_INTERVAL_MS) -> int:
        """Register every station from the record layer; returns how many were started."""
        started = 0
        for station in stations:
            if not station.controller_address:
                logger.warning(f"Monitor: Station {station.id} has no controller address, skipping")
                continue
            self.start_monitoring(station.id, station.controller_address, interval_ms, station.controller_port)
            started += 1
        return started

    def stop_monitoring(self, station_id: str) -> bool:
        """Cancel a station's loop and drop its status row. False if it was not monitored."""
        watch = self._watches.pop(station_id, None)
        if watch is None:
            return False

        watch.stopped = True
        if watch.task is not None:
            watch.task.cancel()
        logger.info(f"Monitor: Stopped monitoring station {station_id}")
        return True

    async def stop_all_monitoring(self) -> None:
        """Cancel every loop and wait for in-flight probes and notifications to settle."""
        logger.info(f"Monitor: Stopping all monitoring ({len(self._watches)} stations)")

        tasks = []
        for station_id in list(self._watches):
            watch = self._watches[station_id]
            self.stop_monitoring(station_id)
            if watch.task is not None:
                tasks.append(watch.task)

        pending = tasks + list(self._in_flight) + list(self._notifications)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info("Monitor: All monitoring stopped")

    # --- queries ------------------------------------------------------

    def is_monitoring(self, station_id: str) -> bool:
        return station_id in self._watches

    def get_connection_status(self, station_id: str) -> ConnectionStatus | None:
        watch = self._watches.get(station_id)
        return replace(watch.status) if watch else None

    def get_all_connection_statuses(self) -> dict[str, ConnectionStatus]:
        return {station_id: replace(watch.status) for station_id, watch in self._watches.items()}

    def get_monitoring_stats(self) -> dict:
        states = [watch.status.state for watch in self._watches.values()]
        return {
            "totalStations": len(states),
            "onlineStations": states.count(LinkState.ONLINE),
            "offlineStations": states.count(LinkState.OFFLINE),
            "unknownStations": states.count(LinkState.UNKNOWN),
            "monitoringIntervals": sum(
                1 for watch in self._watches.values() if watch.task is not None and not watch.task.done()
            ),
        }

    # --- probing ------------------------------------------------------

    async def run_probe(self, station_id: str) -> ConnectionStatus:
        """
        Probe a monitored station right now and return its updated status.

        Raises:
            KeyError: If the station is not monitored.
        """
        watch = self._watches[station_id]
        await self._probe_and_record(watch)
        return replace(watch.status)

    async def _loop(self, watch: _Watch) -> None:
        loop = asyncio.get_running_loop()
        interval = watch.target.poll_interval_ms / 1000

        while True:
            started = loop.time()
            probe = asyncio.create_task(self._probe_and_record(watch))
            self._in_flight.add(probe)
            probe.add_done_callback(self._in_flight.discard)

            # Cancelling the loop must not abort the probe itself
            await asyncio.shield(probe)

            delay = max(0.0, interval - (loop.time() - started))
            await asyncio.sleep(delay)

    async def _probe_and_record(self, watch: _Watch) -> None:
        reachable = await self._probe(watch.target)
        await self._record(watch, reachable)

    async def _probe(self, target: MonitoringTarget) -> bool:
        try:
            if self.probe_mode == "status":
                result = await self.client.send_frame(
                    target.controller_address,
                    target.controller_port,
                    create_status_query_frame(),
                    self.probe_timeout_ms,
                )
                return result.success
            return await self.client.check_reachable(
                target.controller_address, target.controller_port, self.probe_timeout_ms
            )
        except Exception:
            logger.exception(f"Monitor: Probe error for station {target.station_id}")
            return False

    async def _record(self, watch: _Watch, reachable: bool) -> None:
        station_id = watch.target.station_id

        async with watch.lock:
            if watch.stopped:
                logger.debug(f"Monitor: Dropping probe result for stopped station {station_id}")
                return

            status = watch.status
            previous = status.state

            if reachable:
                now = self._clock()
                if status.last_seen is None or now > status.last_seen:
                    status.last_seen = now
                status.consecutive_failures = 0
                status.state = LinkState.ONLINE
                logger.debug(f"Monitor: Heartbeat successful for station {station_id}")
            else:
                status.consecutive_failures += 1
                if status.consecutive_failures >= self.failure_threshold:
                    status.state = LinkState.OFFLINE
                logger.debug(
                    f"Monitor: Heartbeat failed for station {station_id} "
                    f"({status.consecutive_failures}/{self.failure_threshold})"
                )

            if status.state is previous:
                return

            if status.state is LinkState.ONLINE:
                logger.info(f"Monitor: Station {station_id} came online")
            else:
                logger.warning(
                    f"Monitor: Station {station_id} marked offline after "
                    f"{status.consecutive_failures} consecutive failures"
                )
            self._notify(station_id, status.is_online, status.last_seen)

    def _notify(self, station_id: str, is_online: bool, last_seen: datetime | None) -> None:
        if self.sink is None:
            return
        task = asyncio.create_task(self._send_notification(station_id, is_online, last_seen))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _send_notification(self, station_id: str, is_online: bool, last_seen: datetime | None) -> None:
        try:
            await self.sink.update_station_status(station_id, is_online, last_seen)
        except Exception as e:
            logger.warning(f"Monitor: Failed to record status of station {station_id}: {e}")
