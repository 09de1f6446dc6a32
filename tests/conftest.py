"""
Pytest configuration and shared fixtures for the Plume RPC tests.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio

from plume_rpc.config import ServerConfig
from plume_rpc.logging import ROOT_LOGGER_NAME
from plume_rpc.routing import Responder
from plume_rpc.server import RPCServer

pytest_plugins = ["pytest_asyncio"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


# =============================================================================
# Test Doubles
# =============================================================================


class PlainHasher:
    """Reversible stand-in for bcrypt so tests stay fast."""

    PREFIX = "plain$"

    def hash_password(self, password: str) -> str:
        return f"{self.PREFIX}{password}"

    def verify_password(self, *, password: str, password_hash: str) -> bool:
        return password_hash == f"{self.PREFIX}{password}"


class FakeClock:
    """Logical clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def echo_handler(args: dict[str, Any], _user: dict[str, Any] | None, respond: Responder) -> None:
    respond.send({"result": args}, 200)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _restore_log_level() -> Iterator[None]:
    """Undo the package log level a started server applies."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    level = logger.level
    yield
    logger.setLevel(level)


@pytest.fixture
def hasher() -> PlainHasher:
    return PlainHasher()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def users_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "users.json"


@pytest.fixture
def config(users_path: Path) -> ServerConfig:
    """Test configuration bound to an ephemeral port."""
    return ServerConfig(port=0, users_path=users_path)


@pytest_asyncio.fixture
async def server(
    config: ServerConfig, hasher: PlainHasher, clock: FakeClock
) -> AsyncIterator[RPCServer]:
    """A running server with an echo RPC."""
    srv = RPCServer(config, hasher=hasher, clock=clock)
    srv.add_rpc("echo", echo_handler)
    await srv.start()
    try:
        yield srv
    finally:
        await srv.stop()


@pytest_asyncio.fixture
async def client(server: RPCServer) -> AsyncIterator[httpx.AsyncClient]:
    """HTTP client pointed at the running server."""
    host, port = server.address
    async with httpx.AsyncClient(base_url=f"http://{host}:{port}", timeout=5.0) as c:
        yield c
