"""
Pytest configuration and shared fixtures.

Every test gets a fresh SQLite file under tmp_path, so tests never share
queue state.
"""

import asyncio
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.api.main import create_app
from queuectl.db import close_db, create_schema, get_session_factory, init_db
from queuectl.types.job import CommandResult


@pytest.fixture
def database_url(tmp_path) -> str:
    """Get a database URL pointing at a fresh SQLite file."""
    return f"sqlite+aiosqlite:///{tmp_path / 'queuectl-test.db'}"


@pytest_asyncio.fixture
async def initialized_db(database_url: str) -> AsyncGenerator[str]:
    """Initialize the global engine, tables and default config."""
    await init_db(database_url)
    await create_schema()

    yield database_url

    await close_db()


@pytest_asyncio.fixture
async def db_session(initialized_db: str) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    session_factory = get_session_factory()

    async with session_factory() as session:
        yield session

        # Rollback any uncommitted changes
        await session.rollback()


@pytest_asyncio.fixture
async def app(initialized_db: str) -> AsyncGenerator[FastAPI]:
    """Create a FastAPI app for testing with initialized database."""
    yield create_app()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class FakeRunner:
    """
    Command runner stand-in returning scripted results.

    Commands of the form ``ok`` succeed and anything else fails. An
    optional delay simulates a slow command.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.commands: list[str] = []

    async def execute(self, command: str, timeout_seconds: float = 0) -> CommandResult:
        self.commands.append(command)
        if self.delay:
            await asyncio.sleep(self.delay)
        if command == "ok":
            return CommandResult(success=True, exit_code=0, stdout="done\n")
        return CommandResult(success=False, exit_code=1, stderr=f"{command}: failed\n")


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Runner that succeeds for 'ok' and fails otherwise."""
    return FakeRunner()


@pytest.fixture
def slow_runner() -> FakeRunner:
    """Runner whose commands take long enough to stop mid-flight."""
    return FakeRunner(delay=0.3)
