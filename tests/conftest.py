"""Shared fixtures for Downzer tests."""

import shutil
import tempfile

import httpx
import mongomock
import pytest

from downzer.core.config import Config
from downzer.core.engine import Engine
from downzer.db.repository import TaskRepository


@pytest.fixture
def mock_db():
    """In-memory MongoDB via mongomock."""
    client = mongomock.MongoClient()
    db = client["downzer_test"]
    yield db
    client.close()


@pytest.fixture
def store(mock_db):
    """TaskRepository backed by mongomock."""
    return TaskRepository(mock_db)


@pytest.fixture
def short_tmp():
    """Short temp directory (Unix socket paths are limited to ~100 bytes)."""
    path = tempfile.mkdtemp(prefix="dz")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def config(short_tmp):
    return Config(
        socket_path=f"{short_tmp}/ctl.sock",
        progress_flush_interval=0.05,
        daemon_linger=0.0,
    )


@pytest.fixture
def make_engine(config):
    """Factory: Engine whose HTTP client is served by handler(request) -> httpx.Response."""

    def factory(handler=None, store=None) -> Engine:
        transport = httpx.MockTransport(handler) if handler else None
        return Engine(config, store, transport=transport)

    return factory
