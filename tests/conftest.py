"""
Centralized test configuration and fixtures for Courseware.

This module provides shared test fixtures that:
1. Isolate tests from the developer's environment variables
2. Provide a mocked ConfigManager and MongoDB client for the connection manager
3. Provide a mocked connection manager with per-collection mocks for CRUD tests
"""

import logging
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest
from bson import ObjectId

from courseware.config.config_manager import ConfigManager
from courseware.config.database_config import ConnectionOptions, RetryPolicy
from courseware.database.connection_manager import DatabaseConnectionManager

# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TEST_MONGO_URI = "mongodb://localhost:27017/courseware_test"


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable ConfigManager reads from the process environment."""
    for key in ConfigManager.TRACKED_VARS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def config_manager():
    """Mock ConfigManager with a reachable MongoDB target and default policies."""
    config = Mock(spec=ConfigManager)
    config.mongo_uri = TEST_MONGO_URI
    config.require_mongo_uri.return_value = TEST_MONGO_URI
    config.database_name = "courseware_test"
    config.is_development = False
    config.connection_options = ConnectionOptions()
    config.retry_policy = RetryPolicy()
    return config


def make_mongo_client(ping_side_effect=None):
    """Mock AsyncMongoClient whose ping follows ``ping_side_effect``."""
    client = Mock()
    client.admin.command = AsyncMock(side_effect=ping_side_effect, return_value={'ok': 1.0})
    client.close = AsyncMock()
    client.get_default_database.return_value = MagicMock()
    return client


@pytest.fixture
def client_builder():
    """Factory fixture building mock clients with a scripted ping."""
    return make_mongo_client


@pytest.fixture
def mongo_client():
    return make_mongo_client()


@pytest.fixture
def client_factory(mongo_client):
    return Mock(return_value=mongo_client)


@pytest.fixture
def fake_sleep():
    return AsyncMock()


@pytest.fixture
def fake_exit():
    return Mock()


def make_collection():
    """Mock collection with the async methods the CRUD managers use."""
    collection = Mock()
    collection.insert_one = AsyncMock(return_value=Mock(inserted_id=ObjectId()))
    collection.find_one = AsyncMock(return_value=None)
    collection.update_one = AsyncMock(return_value=Mock(matched_count=1, modified_count=1))
    collection.replace_one = AsyncMock(return_value=Mock(matched_count=1, modified_count=1))
    collection.delete_one = AsyncMock(return_value=Mock(deleted_count=1))
    collection.create_index = AsyncMock()
    cursor = Mock()
    cursor.to_list = AsyncMock(return_value=[])
    collection.find = Mock(return_value=cursor)
    return collection


@pytest.fixture
def collections():
    return {'users': make_collection(), 'courses': make_collection()}


@pytest.fixture
def mock_database_manager(collections):
    """Mock connection manager that hands out the mocked collections."""
    manager = Mock(spec=DatabaseConnectionManager)
    manager.get_collection.side_effect = lambda name: collections[name]
    return manager


# Pytest configuration

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: mark test as requiring a running MongoDB")
    config.addinivalue_line("markers", "slow: mark test as slow running")
