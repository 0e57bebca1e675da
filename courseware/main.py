"""
Courseware service entry point.

Loads configuration, connects to MongoDB, ensures indexes and then waits
until SIGINT/SIGTERM closes the connection and exits the process.
"""

import argparse
import asyncio
import logging
from typing import Optional, Sequence

from courseware.config.config_manager import ConfigManager, ConfigValidationError
from courseware.database.connection_manager import DatabaseConnectionManager
from courseware.services.user_crud_manager import UserCRUDManager, UserStoreError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


async def run(config: ConfigManager) -> None:
    """Connect, prepare the collections and serve until terminated."""
    db_manager = DatabaseConnectionManager(config)
    db_manager.install_signal_handlers()

    await db_manager.connect()
    logger.info(f"Connection status: {db_manager.get_connection_status().to_dict()}")

    try:
        await UserCRUDManager(db_manager).ensure_indexes()
    except UserStoreError as e:
        logger.warning(f"Could not ensure user indexes: {e}")

    # Runs until a termination signal exits the process
    await asyncio.Event().wait()


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Courseware backend service")
    parser.add_argument("--config-dir", help="Directory containing .env files")
    parser.add_argument("--env", help="Execution mode, overrides APP_ENV")
    args = parser.parse_args(argv)

    try:
        config = ConfigManager(config_dir=args.config_dir, env=args.env)
    except ConfigValidationError as e:
        configure_logging("INFO")
        logger.critical(f"Invalid configuration: {e}")
        raise SystemExit(1)

    configure_logging(config.log_level)
    asyncio.run(run(config))


if __name__ == "__main__":
    main()
