"""
AuthGate — Test Configuration (conftest.py)
=============================================

What:  Shared pytest fixtures for the entire test suite.
How:   Database tests run against real SQLite files (aiosqlite) injected
       through the registry's engine factory; HTTP tests drive the app
       through httpx's ASGITransport.

Fixture Hierarchy:
    test_settings          fast Argon2, one probe attempt, temp static root
    sqlite_engine_factory  maps each entry's `dbname` to a SQLite file
    write_config           writes a registry document, returns its path
    registry               initialized registry with one "default" client
                           and the users table created
    passwords / auth_service
    app / test_client      application wired to the fixtures above

ASGITransport does not run the lifespan, so the app receives an
already initialized registry.
"""

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, List

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

# Override settings for testing BEFORE any authgate imports
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["SESSION_SECRET"] = "test-session-secret-with-enough-entropy-0123456789"
os.environ["ARGON2_TIME_COST"] = "1"
os.environ["ARGON2_MEMORY_COST"] = "8"
os.environ["ARGON2_PARALLELISM"] = "1"
os.environ.pop("DB_HOST", None)

from authgate.config import Settings  # noqa: E402
from authgate.database import Base  # noqa: E402
from authgate.registry import ConnectionRegistry  # noqa: E402
from authgate.services.auth_service import AuthService  # noqa: E402
from authgate.services.password import PasswordService  # noqa: E402


def pg_entry(name: str, dbname: str = None, **extra: Any) -> Dict[str, Any]:
    """A valid PostgreSQL client entry; `dbname` selects the SQLite file in tests."""
    entry = {
        "name": name,
        "rdbms": "postgresql",
        "host": "db.internal",
        "port": 5432,
        "dbname": dbname or f"{name}.db",
        "user": "app",
        "passwd": "s3cret-pw",
    }
    entry.update(extra)
    return entry


async def create_tables(registry: ConnectionRegistry) -> None:
    for name in registry.client_names:
        client = await registry.get_client(name)
        async with client.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


# ══════════════════════════════════════════════════════════════════════════
# Settings & factories
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def public_dir(tmp_path) -> Path:
    root = tmp_path / "public"
    (root / "css").mkdir(parents=True)
    (root / "index.html").write_text("<h1>AuthGate</h1>")
    (root / "login.html").write_text("<h1>Log in</h1>")
    (root / "register.html").write_text("<h1>Register</h1>")
    (root / "dashboard.html").write_text("<h1>Dashboard</h1>")
    (root / "css" / "app.css").write_text("body { margin: 0; }")
    return root


@pytest.fixture
def test_settings(tmp_path, public_dir) -> Settings:
    return Settings(
        deploy_root=str(tmp_path / "deploy"),
        db_config_path=None,
        db_host=None,
        db_connect_timeout=2.0,
        db_connect_attempts=1,
        argon2_time_cost=1,
        argon2_memory_cost=8,
        argon2_parallelism=1,
        public_dir=str(public_dir),
        log_level="WARNING",
    )


@pytest.fixture
def sqlite_engine_factory(tmp_path) -> Callable:
    """
    Engine factory for ConnectionRegistry backed by SQLite files.

    A `dbname` pointing into a directory that does not exist produces an
    engine whose connectivity probe fails.
    """
    created = []

    def factory(config, settings):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / config.dbname}")
        created.append(config.name)
        return engine

    factory.created = created
    return factory


@pytest.fixture
def write_config(tmp_path) -> Callable[..., Path]:
    def write(entries: List[Any], key: str = "dbs", filename: str = "config.json") -> Path:
        path = tmp_path / filename
        path.write_text(json.dumps({key: entries}))
        return path

    return write


# ══════════════════════════════════════════════════════════════════════════
# Registry & services
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def registry(test_settings, sqlite_engine_factory, write_config):
    path = write_config([pg_entry("default")])
    reg = ConnectionRegistry(settings=test_settings, engine_factory=sqlite_engine_factory)
    assert await reg.initialize(str(path)) is True
    await create_tables(reg)
    yield reg
    await reg.dispose()


@pytest_asyncio.fixture
async def empty_registry(test_settings, sqlite_engine_factory, tmp_path):
    reg = ConnectionRegistry(settings=test_settings, engine_factory=sqlite_engine_factory)
    assert await reg.initialize(str(tmp_path / "absent.json")) is False
    yield reg
    await reg.dispose()


@pytest.fixture
def passwords(test_settings) -> PasswordService:
    return PasswordService.from_settings(test_settings)


@pytest.fixture
def auth_service(registry, passwords) -> AuthService:
    return AuthService(registry=registry, passwords=passwords)


# ══════════════════════════════════════════════════════════════════════════
# HTTP
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def app(test_settings, registry, passwords):
    from authgate.main import create_app
    return create_app(settings=test_settings, registry=registry, passwords=passwords)


@pytest_asyncio.fixture
async def test_client(app):
    """
    HTTPX AsyncClient talking to the app; keeps cookies between requests.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def make_entry() -> Callable[..., Dict[str, Any]]:
    return pg_entry
