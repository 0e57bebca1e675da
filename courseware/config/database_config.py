"""
Database Configuration Values

Immutable driver options and retry policy for the MongoDB connection manager.
"""

import socket
from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class ConnectionOptions:
    """
    Driver options used for every connection attempt.

    Attributes:
        max_pool_size: Upper bound on pooled sockets per server
        server_selection_timeout_ms: How long the driver waits for a usable server
        socket_timeout_ms: Per-operation socket timeout
        family: Preferred address family (4 for IPv4, 6 for IPv6)
    """

    max_pool_size: int = 10
    server_selection_timeout_ms: int = 5000
    socket_timeout_ms: int = 45000
    family: int = 4

    def __post_init__(self):
        if self.max_pool_size < 1:
            raise ValueError(f"max_pool_size must be at least 1, got {self.max_pool_size}")
        if self.server_selection_timeout_ms <= 0:
            raise ValueError(
                f"server_selection_timeout_ms must be positive, got {self.server_selection_timeout_ms}"
            )
        if self.socket_timeout_ms <= 0:
            raise ValueError(f"socket_timeout_ms must be positive, got {self.socket_timeout_ms}")
        if self.family not in (4, 6):
            raise ValueError(f"family must be 4 or 6, got {self.family}")

    @property
    def address_family(self) -> socket.AddressFamily:
        """Socket address family matching ``family``."""
        return socket.AF_INET if self.family == 4 else socket.AF_INET6

    def to_client_kwargs(self) -> Dict[str, Any]:
        """
        Keyword arguments for the MongoDB client constructor.

        PyMongo resolves hosts without an address family switch, so
        ``family`` is kept on the options but not passed to the driver.
        """
        return {
            'maxPoolSize': self.max_pool_size,
            'serverSelectionTimeoutMS': self.server_selection_timeout_ms,
            'socketTimeoutMS': self.socket_timeout_ms
        }


@dataclass(frozen=True)
class RetryPolicy:
    """
    Reconnection policy.

    The default is a fixed delay between attempts. Exponential backoff is
    available by setting ``backoff`` to ``"exponential"``.
    """

    VALID_BACKOFFS = ('fixed', 'exponential')

    max_retries: int = 3
    retry_interval: float = 5.0
    backoff: str = 'fixed'
    max_interval: float = 60.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries can not be negative, got {self.max_retries}")
        if self.retry_interval < 0:
            raise ValueError(f"retry_interval can not be negative, got {self.retry_interval}")
        if self.backoff not in self.VALID_BACKOFFS:
            raise ValueError(
                f"Invalid backoff '{self.backoff}', expected one of {', '.join(self.VALID_BACKOFFS)}"
            )

    def delay_for(self, attempt: int) -> float:
        """
        Seconds to wait before retry number ``attempt`` (1-based).

        Args:
            attempt: Retry number, starting at 1

        Returns:
            Delay in seconds
        """
        if self.backoff == 'exponential':
            return min(self.retry_interval * (2 ** (attempt - 1)), self.max_interval)
        return self.retry_interval
