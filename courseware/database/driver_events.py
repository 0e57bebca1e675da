"""
Driver event bridge for the MongoDB connection manager.

PyMongo reports topology and heartbeat changes through monitoring listeners.
DriverEventListener turns those callbacks into DriverEvent values pushed onto
an asyncio.Queue, which the connection manager consumes from a single task.
CommandLogger is the verbose query logger enabled in development mode.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from pymongo import monitoring

logger = logging.getLogger(__name__)
query_logger = logging.getLogger('courseware.database.queries')


class DriverEventKind(str, Enum):
    """State-change notifications surfaced by the driver."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class DriverEvent:
    """
    A single driver notification.

    Attributes:
        kind: What happened
        generation: Client generation that produced the event
        address: (host, port) of the readable server for CONNECTED events
        error: Driver error text for ERROR events
    """
    kind: DriverEventKind
    generation: int
    address: Optional[Tuple[str, int]] = None
    error: Optional[str] = None


def _readable_address(description) -> Optional[Tuple[str, int]]:
    """Address of the first readable server in a topology description."""
    for address, server in description.server_descriptions().items():
        if server.is_readable:
            return address
    return None


class DriverEventListener(monitoring.TopologyListener, monitoring.ServerHeartbeatListener):
    """
    Translates PyMongo monitoring callbacks into DriverEvents.

    Monitoring callbacks may run outside the event loop thread, so events are
    handed to the queue with ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        queue: "asyncio.Queue[DriverEvent]",
        loop: asyncio.AbstractEventLoop,
        generation: int
    ):
        self._queue = queue
        self._loop = loop
        self.generation = generation

    def _emit(self, kind: DriverEventKind, **details) -> None:
        event = DriverEvent(kind=kind, generation=self.generation, **details)
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    # Topology events

    def opened(self, event: monitoring.TopologyOpenedEvent) -> None:
        logger.debug(f"Topology {event.topology_id} opened")

    def description_changed(self, event: monitoring.TopologyDescriptionChangedEvent) -> None:
        was_readable = event.previous_description.has_readable_server()
        is_readable = event.new_description.has_readable_server()

        if is_readable and not was_readable:
            self._emit(
                DriverEventKind.CONNECTED,
                address=_readable_address(event.new_description)
            )
        elif was_readable and not is_readable:
            self._emit(DriverEventKind.DISCONNECTED)

    def closed(self, event: monitoring.TopologyClosedEvent) -> None:
        logger.debug(f"Topology {event.topology_id} closed")

    # Heartbeat events

    def started(self, event: monitoring.ServerHeartbeatStartedEvent) -> None:
        pass

    def succeeded(self, event: monitoring.ServerHeartbeatSucceededEvent) -> None:
        pass

    def failed(self, event: monitoring.ServerHeartbeatFailedEvent) -> None:
        self._emit(
            DriverEventKind.ERROR,
            address=event.connection_id,
            error=str(event.reply)
        )


class CommandLogger(monitoring.CommandListener):
    """Logs every driver command; registered only in development mode."""

    def started(self, event: monitoring.CommandStartedEvent) -> None:
        query_logger.debug(
            f"[{event.request_id}] {event.database_name}.{event.command_name} {event.command}"
        )

    def succeeded(self, event: monitoring.CommandSucceededEvent) -> None:
        query_logger.debug(
            f"[{event.request_id}] {event.command_name} succeeded in {event.duration_micros}us"
        )

    def failed(self, event: monitoring.CommandFailedEvent) -> None:
        query_logger.debug(
            f"[{event.request_id}] {event.command_name} failed in {event.duration_micros}us: {event.failure}"
        )
