"""
Database Connection Manager for Courseware

Owns the lifecycle of one MongoDB connection: connects with the configured
options, follows driver state changes, retries failed or dropped connections
a bounded number of times, and closes the connection on SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal
import sys
from dataclasses import dataclass, asdict
from enum import Enum, IntEnum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from courseware.config.config_manager import ConfigManager, MissingConfigurationError
from courseware.database.driver_events import (
    CommandLogger,
    DriverEvent,
    DriverEventKind,
    DriverEventListener,
    query_logger
)

# Configure logging
logger = logging.getLogger(__name__)


class DatabaseConnectionError(Exception):
    """Raised when database connection operations fail."""
    pass


class TransientConnectionFailure(DatabaseConnectionError):
    """A driver-reported connect failure or disconnect; recovered by retrying."""
    pass


class RetryExhaustedError(DatabaseConnectionError):
    """Retry ceiling reached; logged before the process exits with status 1."""
    pass


class ShutdownFailureError(DatabaseConnectionError):
    """Closing the connection during termination failed; the process exits with status 1."""
    pass


class ConnectionState(str, Enum):
    """Connection manager state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    TERMINATED = "terminated"


class ReadyState(IntEnum):
    """Low-level socket connectivity, numbered the way document drivers report it."""
    DISCONNECTED = 0
    CONNECTED = 1
    CONNECTING = 2
    DISCONNECTING = 3


@dataclass(frozen=True)
class ConnectionStatus:
    """Point-in-time snapshot of the connection for health checks."""
    is_connected: bool
    ready_state: ReadyState
    host: Optional[str] = None
    port: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['ready_state'] = int(self.ready_state)
        return data


ClientFactory = Callable[..., AsyncMongoClient]


class DatabaseConnectionManager:
    """
    Manages a single MongoDB connection with automatic recovery.

    Features:
    - Async connection through PyMongo's AsyncMongoClient
    - Driver state changes consumed from one event queue
    - Bounded retry with fixed delay (exponential backoff optional)
    - Clean close on SIGINT/SIGTERM
    - Status snapshot for health checks

    Unrecoverable failures (retry ceiling reached, close failure during
    termination) end the process through ``exit_process``.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        client_factory: Optional[ClientFactory] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        exit_process: Callable[[int], Any] = sys.exit
    ):
        """
        Initialize DatabaseConnectionManager.

        Args:
            config_manager: Configuration manager for database settings
            client_factory: Builds the driver client (defaults to AsyncMongoClient)
            sleep: Awaitable used for the retry delay
            exit_process: Called with the exit status on fatal conditions
        """
        self.config = config_manager
        self.options = config_manager.connection_options
        self.retry_policy = config_manager.retry_policy

        self._client_factory = client_factory or AsyncMongoClient
        self._sleep = sleep
        self._exit = exit_process

        self._state = ConnectionState.DISCONNECTED
        self._retry_count = 0
        self._client: Optional[AsyncMongoClient] = None
        self._address: Optional[Tuple[str, int]] = None
        self._closing = False
        self._attempt_in_progress = False

        # Driver event channel; generation tags events with the client that produced them
        self._events: Optional[asyncio.Queue] = None
        self._event_task: Optional[asyncio.Task] = None
        self._generation = 0

        self._termination_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    async def connect(self) -> None:
        """
        Connect to the database.

        Failures are not raised to the caller: they go through
        handle_connection_error(), which retries or terminates the process.
        Only one attempt (with its retry chain) runs at a time.
        """
        if self._state is ConnectionState.TERMINATED:
            logger.debug("Connect requested after termination, ignoring")
            return
        if self._attempt_in_progress:
            logger.debug("Connection attempt already in progress")
            return

        self._attempt_in_progress = True
        try:
            await self._attempt_connection()
        finally:
            self._attempt_in_progress = False

    async def _attempt_connection(self) -> None:
        self._state = ConnectionState.CONNECTING
        try:
            uri = self.config.require_mongo_uri()
            await self._open_client(uri)
        except MissingConfigurationError as e:
            logger.error(f"Database configuration error: {e}")
            self._state = ConnectionState.ERROR
            await self.handle_connection_error()
            return
        except (PyMongoError, ValueError) as e:
            # Malformed addresses surface as ValueError from the URI parser
            failure = TransientConnectionFailure(f"Error connecting to database: {e}")
            logger.error(str(failure))
            self._state = ConnectionState.ERROR
            await self.handle_connection_error()
            return

        self._mark_connected()

    async def _open_client(self, uri: str) -> None:
        """Replace any previous client and wait for the driver handshake."""
        await self._discard_client()
        self._ensure_event_consumer()

        self._generation += 1
        listeners = [
            DriverEventListener(self._events, asyncio.get_running_loop(), self._generation)
        ]
        if self.config.is_development:
            query_logger.setLevel(logging.DEBUG)
            listeners.append(CommandLogger())

        self._client = self._client_factory(
            uri,
            event_listeners=listeners,
            **self.options.to_client_kwargs()
        )
        await self._client.admin.command('ping')

    async def _discard_client(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        self._address = None
        try:
            await client.close()
        except PyMongoError as e:
            logger.warning(f"Error closing previous database client: {e}")

    def _mark_connected(self) -> None:
        self._state = ConnectionState.CONNECTED
        self._retry_count = 0
        logger.info("Database connected")

    async def handle_connection_error(self) -> None:
        """
        Retry after a fixed delay, or terminate once the ceiling is reached.
        """
        if self._retry_count < self.retry_policy.max_retries:
            self._retry_count += 1
            delay = self.retry_policy.delay_for(self._retry_count)
            logger.warning(
                f"Retrying connection {self._retry_count}/{self.retry_policy.max_retries} in {delay}s"
            )
            await self._sleep(delay)
            if self._state is ConnectionState.TERMINATED:
                logger.debug("Termination during retry wait, abandoning reconnect")
                return
            await self._attempt_connection()
            return

        error = RetryExhaustedError(
            f"Max retries ({self.retry_policy.max_retries}) reached, giving up on database connection"
        )
        logger.critical(str(error))
        self._state = ConnectionState.TERMINATED
        self._exit(1)

    async def handle_disconnection(self) -> None:
        """Reconnect unless already connected or an attempt is running."""
        if self._state is ConnectionState.CONNECTED:
            return
        if self._attempt_in_progress:
            logger.debug("Reconnect requested while an attempt is in progress")
            return
        logger.info("Attempting to reconnect to MongoDB...")
        await self.connect()

    async def handle_app_termination(self) -> None:
        """
        Close the connection and exit the process.

        Exits with status 0 on a clean close, 1 if closing fails. The close
        call is awaited without a timeout.
        """
        self._state = ConnectionState.TERMINATED
        self._closing = True
        await self._stop_event_consumer()

        try:
            if self._client is not None:
                await self._client.close()
        except Exception as e:
            error = ShutdownFailureError(f"Error closing database connection: {e}")
            logger.error(str(error))
            self._exit(1)
            return
        finally:
            self._closing = False

        self._client = None
        self._address = None
        logger.info("Database connection closed through app termination")
        self._exit(0)

    async def close(self) -> None:
        """Close the connection without exiting the process."""
        await self._stop_event_consumer()
        await self._discard_client()
        if self._state is not ConnectionState.TERMINATED:
            self._state = ConnectionState.DISCONNECTED
        logger.info("Database connection closed")

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """
        Route SIGINT and SIGTERM to handle_app_termination().

        Args:
            loop: Event loop to register on (defaults to the running loop)
        """
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._on_termination_signal, sig)
        logger.debug("Installed SIGINT/SIGTERM handlers")

    def _on_termination_signal(self, sig: signal.Signals) -> None:
        if self._termination_task is not None:
            logger.debug(f"Ignoring {sig.name}, termination already in progress")
            return
        logger.info(f"Received {sig.name}, shutting down")
        self._termination_task = asyncio.ensure_future(self.handle_app_termination())

    def get_connection_status(self) -> ConnectionStatus:
        """Snapshot of the current connection; no side effects."""
        host, port = self._address if self._address else (None, None)
        return ConnectionStatus(
            is_connected=self.is_connected,
            ready_state=self._ready_state(),
            host=host,
            port=port
        )

    def _ready_state(self) -> ReadyState:
        if self._closing:
            return ReadyState.DISCONNECTING
        if self._state is ConnectionState.CONNECTED:
            return ReadyState.CONNECTED
        if self._state is ConnectionState.CONNECTING:
            return ReadyState.CONNECTING
        return ReadyState.DISCONNECTED

    def get_database(self):
        """
        Get the connected database.

        Uses the database named in MONGO_URI, falling back to MONGO_DB_NAME.

        Raises:
            DatabaseConnectionError: If not connected
        """
        if self._client is None or not self.is_connected:
            raise DatabaseConnectionError("Database is not connected")
        return self._client.get_default_database(default=self.config.database_name)

    def get_collection(self, name: str):
        """Get a collection from the connected database."""
        return self.get_database()[name]

    # Driver event consumption

    def _ensure_event_consumer(self) -> None:
        if self._event_task is not None and not self._event_task.done():
            return
        self._events = asyncio.Queue()
        self._event_task = asyncio.create_task(self._consume_driver_events())

    async def _stop_event_consumer(self) -> None:
        task, self._event_task = self._event_task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _consume_driver_events(self) -> None:
        while True:
            event = await self._events.get()
            await self._handle_driver_event(event)

    async def _handle_driver_event(self, event: DriverEvent) -> None:
        if self._state is ConnectionState.TERMINATED or event.generation != self._generation:
            return

        if event.kind is DriverEventKind.CONNECTED:
            self._address = event.address
            if self._state is not ConnectionState.CONNECTED and not self._attempt_in_progress:
                self._mark_connected()

        elif event.kind is DriverEventKind.DISCONNECTED:
            if self._state is not ConnectionState.CONNECTED:
                return
            logger.warning("Database disconnected")
            self._state = ConnectionState.DISCONNECTED
            self._address = None
            await self._recover()

        elif event.kind is DriverEventKind.ERROR:
            if self._state is ConnectionState.CONNECTED:
                logger.warning(f"Database connection error: {event.error}")

    async def _recover(self) -> None:
        if self._attempt_in_progress:
            return
        self._attempt_in_progress = True
        try:
            await self.handle_connection_error()
        finally:
            self._attempt_in_progress = False
