"""
AuthGate — Database Client Handles
====================================

What:  Declarative base, the `DatabaseClient` handle held by the registry,
       connection URL assembly, engine construction and the startup
       connectivity probe.
How:   Each client wraps one async SQLAlchemy engine (asyncpg driver) with its
       own pool and session factory. The registry builds them once at startup.
Who:   ConnectionRegistry builds clients; AuthService opens sessions on them.

Connection Pooling Strategy:
    pool_size=<connection_number>: persistent connections per client
    max_overflow=0:               the configured size is a hard cap
    pool_pre_ping:                validates connections before use
    pool_recycle:                 recycles long-lived connections

Timeouts (asyncpg connect args):
    timeout          bounds connection establishment (startup fail-fast)
                     entry `timeout`, else connect_timeout from connection_info,
                     else DB_CONNECT_TIMEOUT
    command_timeout  bounds every query issued through the pool
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncGenerator, Dict, NamedTuple, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    stop_after_attempt,
    wait_exponential_jitter,
)

from authgate.config import Settings
from authgate.exceptions import ClientValidationError, ConnectivityError
from authgate.redaction import redact, redact_url
from authgate.schemas.database import DatabaseClientConfig

logger = logging.getLogger(__name__)

ASYNC_DRIVER = "postgresql+asyncpg"

# libpq keyword → SQLAlchemy URL component
_KEYWORD_TO_URL = {
    "host": "host",
    "hostaddr": "host",
    "port": "port",
    "dbname": "database",
    "user": "username",
    "password": "password",
}

# libpq options asyncpg takes as server settings
_SERVER_SETTINGS = frozenset({"application_name"})

# URL query options the asyncpg dialect consumes itself
_DIALECT_QUERY_OPTIONS = frozenset({"prepared_statement_cache_size"})


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models (shared metadata for Alembic)."""
    pass


# ══════════════════════════════════════════════════════════════════════════
# Connection URL assembly
# ══════════════════════════════════════════════════════════════════════════


def _parse_keyword_descriptor(descriptor: str) -> Dict[str, str]:
    """
    Parses a libpq keyword/value string: `host=a port=5432 password='x y'`.
    """
    pairs: Dict[str, str] = {}
    i, n = 0, len(descriptor)
    while i < n:
        while i < n and descriptor[i].isspace():
            i += 1
        if i >= n:
            break
        eq = descriptor.find("=", i)
        if eq == -1:
            raise ValueError("connection_info is not a key=value descriptor")
        key = descriptor[i:eq].strip()
        i = eq + 1
        while i < n and descriptor[i].isspace():
            i += 1
        if i < n and descriptor[i] == "'":
            i += 1
            chars = []
            while i < n and descriptor[i] != "'":
                if descriptor[i] == "\\" and i + 1 < n:
                    i += 1
                chars.append(descriptor[i])
                i += 1
            if i >= n:
                raise ValueError("unterminated quoted value in connection_info")
            i += 1
            value = "".join(chars)
        else:
            start = i
            while i < n and not descriptor[i].isspace():
                i += 1
            value = descriptor[start:i]
        if not key:
            raise ValueError("empty key in connection_info")
        pairs[key.lower()] = value
    return pairs


class ConnectionTarget(NamedTuple):
    """Where and how one client connects: URL plus asyncpg connect options."""

    url: URL
    sslmode: str
    connect_timeout: Optional[float] = None
    server_settings: Optional[Dict[str, str]] = None


def _apply_libpq_options(
    options: Dict[str, str], sslmode: str, client_name: str
) -> Tuple[str, Optional[float], Optional[Dict[str, str]]]:
    """
    Maps libpq options onto asyncpg connect arguments.

    sslmode          → ssl
    connect_timeout  → timeout (seconds; 0 or less means "use the default")
    application_name → server_settings

    Any other option is dropped with a warning naming the key only.
    """
    connect_timeout: Optional[float] = None
    server_settings: Dict[str, str] = {}
    dropped = []
    for key, value in options.items():
        if key == "sslmode":
            sslmode = value
        elif key == "connect_timeout":
            seconds = float(value)
            connect_timeout = seconds if seconds > 0 else None
        elif key in _SERVER_SETTINGS:
            server_settings[key] = value
        else:
            dropped.append(key)
    if dropped:
        logger.warning(
            "Client '%s': ignoring unsupported connection_info option(s): %s",
            client_name,
            ", ".join(sorted(dropped)),
        )
    return sslmode, connect_timeout, server_settings or None


def build_connection_url(config: DatabaseClientConfig) -> ConnectionTarget:
    """
    Builds the asyncpg URL and connect options for one client.

    Precomposed `connection_info` is passed through: a URL is re-targeted
    at the asyncpg driver, a libpq keyword string is translated component by
    component. Otherwise the URL is assembled from the discrete fields.
    libpq options in either form go through _apply_libpq_options(); only
    options the asyncpg dialect reads itself stay in the URL query.

    Raises:
        ClientValidationError: connection_info cannot be interpreted.
    """
    if config.connection_info is None:
        url = URL.create(
            drivername=ASYNC_DRIVER,
            username=config.user,
            password=config.passwd,
            host=config.host,
            port=config.port,
            database=config.dbname,
        )
        return ConnectionTarget(url, config.sslmode)

    descriptor = config.connection_info.strip()
    try:
        if "://" in descriptor:
            url = make_url(descriptor)
            kept, options = {}, {}
            for key, value in url.query.items():
                # repeated keys arrive as a tuple; libpq keeps the last one
                if isinstance(value, tuple):
                    value = value[-1]
                if key in _DIALECT_QUERY_OPTIONS:
                    kept[key] = value
                else:
                    options[key] = value
            url = url.set(drivername=ASYNC_DRIVER, query=kept)
        else:
            options = {}
            components = {}
            for key, value in _parse_keyword_descriptor(descriptor).items():
                if key in _KEYWORD_TO_URL:
                    components[_KEYWORD_TO_URL[key]] = value
                else:
                    options[key] = value
            if "port" in components:
                components["port"] = int(components["port"])
            url = URL.create(drivername=ASYNC_DRIVER, **components)

        sslmode, connect_timeout, server_settings = _apply_libpq_options(
            options, config.sslmode, config.name
        )
        return ConnectionTarget(url, sslmode, connect_timeout, server_settings)
    except (ArgumentError, ValueError) as e:
        raise ClientValidationError(
            message="connection_info could not be parsed",
            client_name=config.name,
            context={"reason": redact(str(e))},
        ) from None


def connect_timeout_for(config: DatabaseClientConfig, settings: Settings) -> float:
    """Entry `timeout`, else connection_info's connect_timeout, else the service default."""
    if config.timeout:
        return config.timeout
    return build_connection_url(config).connect_timeout or settings.db_connect_timeout


# ══════════════════════════════════════════════════════════════════════════
# Client handle
# ══════════════════════════════════════════════════════════════════════════


@dataclass
class DatabaseClient:
    """
    A named, pooled database client.

    Attributes:
        name:        registry key
        engine:      async SQLAlchemy engine owning the pool
        descriptor:  password-free rendering of the connection URL (loggable)
    """

    name: str
    engine: AsyncEngine
    descriptor: str = ""
    session_factory: async_sessionmaker = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Yields an AsyncSession; rolls back on error and always closes.

        Commit is left to the caller.
        """
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> None:
        """Runs `SELECT 1` on a pooled connection."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def dispose(self) -> None:
        await self.engine.dispose()


# ══════════════════════════════════════════════════════════════════════════
# Engine construction & connectivity
# ══════════════════════════════════════════════════════════════════════════


def create_client_engine(config: DatabaseClientConfig, settings: Settings) -> AsyncEngine:
    """
    Default engine factory used by ConnectionRegistry.

    The pool holds exactly `config.pool_size` connections.
    """
    target = build_connection_url(config)
    connect_timeout = config.timeout or target.connect_timeout or settings.db_connect_timeout
    connect_args = {
        "ssl": target.sslmode,
        "timeout": connect_timeout,
        "command_timeout": settings.db_query_timeout,
    }
    if target.server_settings:
        connect_args["server_settings"] = target.server_settings
    logger.debug("Creating engine for client '%s': %s", config.name, redact_url(target.url))
    return create_async_engine(
        target.url,
        pool_size=config.pool_size,
        max_overflow=0,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_recycle=settings.db_pool_recycle,
        pool_timeout=connect_timeout,
        connect_args=connect_args,
        echo=settings.log_level == "DEBUG",
    )


async def verify_connectivity(
    client: DatabaseClient,
    timeout: float,
    attempts: int,
) -> None:
    """
    Probes the client with `SELECT 1`, each attempt bounded by `timeout`.

    Retries with exponential backoff + jitter (tenacity). Awaited during
    registry initialization so an unreachable database is detected at
    startup rather than on the first request.

    Raises:
        ConnectivityError: every attempt failed.
    """
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential_jitter(initial=0.5, max=5),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=False,
        ):
            with attempt:
                await asyncio.wait_for(client.ping(), timeout=timeout)
    except RetryError as e:
        last = e.last_attempt.exception()
        raise ConnectivityError(
            client.name,
            context={
                "target": client.descriptor,
                "error_type": type(last).__name__ if last else "unknown",
                "error": redact(str(last)) if last else "",
                "attempts": attempts,
            },
        ) from None
