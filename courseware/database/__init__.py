"""
Database package for Courseware.

Provides MongoDB connection lifecycle management and driver event handling.
"""

from .connection_manager import (
    DatabaseConnectionManager,
    DatabaseConnectionError,
    TransientConnectionFailure,
    RetryExhaustedError,
    ShutdownFailureError,
    ConnectionState,
    ConnectionStatus,
    ReadyState
)
from .driver_events import DriverEvent, DriverEventKind, DriverEventListener, CommandLogger

__all__ = [
    'DatabaseConnectionManager',
    'DatabaseConnectionError',
    'TransientConnectionFailure',
    'RetryExhaustedError',
    'ShutdownFailureError',
    'ConnectionState',
    'ConnectionStatus',
    'ReadyState',
    'DriverEvent',
    'DriverEventKind',
    'DriverEventListener',
    'CommandLogger'
]
