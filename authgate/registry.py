"""
AuthGate — Connection Registry
================================

What:  Discovers the registry document, builds one pooled client per valid
       entry, verifies each one at startup, and resolves a default client.
How:   `initialize()` runs once per registry instance (guarded by an
       asyncio.Lock). Afterwards the client map never changes, so getters
       read it without locking.
Who:   Constructed by `create_app()` and stored on `app.state.registry`;
       handed to AuthService through FastAPI dependencies.

Lifecycle:
    UNINITIALIZED ──initialize()──▶ INITIALIZING ──▶ READY

    READY is terminal and is reached even when no client could be built:
    the service then answers 503 instead of refusing to start.

Failure policy:
    config file missing / unparsable   → READY with zero clients (logged)
    entry invalid (rdbms, fields)      → that entry skipped (logged)
    entry unreachable at startup       → that entry skipped (logged)
    duplicate entry name               → later entry skipped (logged)

Default client policy:
    An entry named "default" is the default even if registered after others;
    otherwise the first successfully registered entry is.
"""

import asyncio
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from authgate.config import Settings, settings as default_settings
from authgate.database import (
    DatabaseClient,
    connect_timeout_for,
    create_client_engine,
    verify_connectivity,
)
from authgate.discovery import ConfigDiscovery
from authgate.exceptions import (
    ClientValidationError,
    ConfigNotFoundError,
    ConfigParseError,
    ConnectivityError,
    ServiceUnavailableError,
)
from authgate.redaction import redact, redact_url
from authgate.schemas.database import (
    CLIENT_LIST_ALIASES,
    DEFAULT_CLIENT_NAME,
    DatabaseClientConfig,
)

logger = logging.getLogger(__name__)

EngineFactory = Callable[[DatabaseClientConfig, Settings], AsyncEngine]


class RegistryState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class ConnectionRegistry:
    """
    Named database clients plus the default-resolution policy.

    Args:
        settings:        service settings (timeouts, discovery, fallback)
        engine_factory:  builds an AsyncEngine for one validated entry;
                         defaults to the asyncpg factory in authgate.database
        discovery:       ConfigDiscovery used to locate the document
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine_factory: Optional[EngineFactory] = None,
        discovery: Optional[ConfigDiscovery] = None,
    ):
        self._settings = settings or default_settings
        self._engine_factory = engine_factory or create_client_engine
        self._discovery = discovery or ConfigDiscovery.from_settings(self._settings)

        self._clients: Dict[str, DatabaseClient] = {}
        self._default: Optional[DatabaseClient] = None
        self._config_path: Optional[Path] = None
        self._state = RegistryState.UNINITIALIZED
        self._outcome = False
        self._lock = asyncio.Lock()

    # ── Read-only state ───────────────────────────────────────────────────

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is RegistryState.READY

    @property
    def config_path(self) -> Optional[Path]:
        """Path the document was loaded from (None if not found)."""
        return self._config_path

    @property
    def client_names(self) -> Tuple[str, ...]:
        """Registered names in registration order."""
        return tuple(self._clients)

    # ── Initialization ────────────────────────────────────────────────────

    async def initialize(self, config_path: Optional[Union[str, Path]] = None) -> bool:
        """
        Builds the registry once.

        Args:
            config_path: file to locate; falls back to `db_config_path` and
                then `db_config_filename` from settings.

        Returns:
            True when at least one client is registered. The outcome is
            cached: later calls (explicit or via the getters) return it
            without rediscovering or reparsing anything.
        """
        if self._state is RegistryState.READY:
            logger.debug("Connection registry already initialized")
            return self._outcome

        async with self._lock:
            if self._state is RegistryState.READY:
                return self._outcome

            self._state = RegistryState.INITIALIZING
            logger.info("Initializing connection registry...")
            try:
                await self._build(config_path)
            finally:
                if self._clients and self._default is None:
                    self._default = self._resolve_default()
                self._outcome = bool(self._clients)
                self._state = RegistryState.READY

        if self._outcome:
            logger.info(
                "Connection registry ready: %d client(s) %s, default '%s'",
                len(self._clients),
                list(self._clients),
                self._default.name if self._default else None,
            )
        else:
            logger.error(
                "Connection registry ready with ZERO clients; "
                "database-backed endpoints will answer 503"
            )
        return self._outcome

    async def _build(self, config_path: Optional[Union[str, Path]]) -> None:
        try:
            entries = self.load_entries(config_path)
        except (ConfigNotFoundError, ConfigParseError) as e:
            logger.error("Registry configuration unusable: %s | Context: %s", e.message, redact(e.context))
            return

        for index, entry in enumerate(entries):
            try:
                config = DatabaseClientConfig.from_entry(entry)
            except ClientValidationError as e:
                logger.warning(
                    "Skipping client entry #%d: %s | Context: %s",
                    index,
                    e.message,
                    redact(e.context),
                )
                continue

            if config.name in self._clients:
                logger.warning(
                    "Skipping client entry #%d: name '%s' is already registered",
                    index,
                    config.name,
                )
                continue

            client = await self._build_client(config)
            if client is not None:
                self._clients[config.name] = client
                logger.info("✓ Database client '%s' registered (%s)", config.name, client.descriptor)

    def load_entries(self, config_path: Optional[Union[str, Path]] = None) -> List[Any]:
        """
        Raw client entries from the discovered document, or the single
        environment-derived entry when no document exists and DB_HOST is set.

        Raises:
            ConfigNotFoundError, ConfigParseError
        """
        filename = config_path or self._settings.db_config_path or self._settings.db_config_filename
        try:
            path = self._discovery.locate(filename)
        except ConfigNotFoundError:
            fallback = self._environment_entry()
            if fallback is None:
                raise
            logger.warning("Falling back to DB_* environment variables for client 'default'")
            return [fallback]

        self._config_path = path
        return load_client_entries(path)

    def _environment_entry(self) -> Optional[Dict[str, Any]]:
        s = self._settings
        if not s.db_host:
            return None
        return {
            "name": DEFAULT_CLIENT_NAME,
            "rdbms": "postgresql",
            "host": s.db_host,
            "port": s.db_port,
            "dbname": s.db_name,
            "user": s.db_user,
            "passwd": s.db_pass,
            "sslmode": s.db_sslmode,
        }

    async def _build_client(self, config: DatabaseClientConfig) -> Optional[DatabaseClient]:
        """Creates and probes one client; returns None when it must be skipped."""
        try:
            engine = self._engine_factory(config, self._settings)
        except ClientValidationError as e:
            logger.warning("Skipping client '%s': %s | Context: %s", config.name, e.message, redact(e.context))
            return None
        except Exception as e:
            logger.error(
                "Skipping client '%s': engine construction failed (%s: %s)",
                config.name,
                type(e).__name__,
                redact(str(e)),
            )
            return None

        client = DatabaseClient(name=config.name, engine=engine, descriptor=redact_url(engine.url))
        try:
            await verify_connectivity(
                client,
                timeout=connect_timeout_for(config, self._settings),
                attempts=self._settings.db_connect_attempts,
            )
        except ConnectivityError as e:
            logger.error("Skipping client '%s': %s | Context: %s", config.name, e.message, redact(e.context))
            await client.dispose()
            return None
        return client

    def _resolve_default(self) -> Optional[DatabaseClient]:
        if DEFAULT_CLIENT_NAME in self._clients:
            return self._clients[DEFAULT_CLIENT_NAME]
        return next(iter(self._clients.values()), None)

    # ── Lookup ────────────────────────────────────────────────────────────

    async def get_client(self, name: Optional[str] = None) -> Optional[DatabaseClient]:
        """
        Returns the named client, or the default client when `name` is None.

        Triggers the one-time auto-initialization (default discovery) when
        called before `initialize()`. Returns None when no client matches.
        """
        if self._state is not RegistryState.READY:
            await self.initialize()

        if name is None:
            if self._default is None and self._clients:
                self._default = self._resolve_default()
            return self._default

        client = self._clients.get(name)
        if client is None:
            logger.warning("Database client '%s' not found", name)
        return client

    async def require_client(self, name: Optional[str] = None) -> DatabaseClient:
        """
        Like get_client(), but raises ServiceUnavailableError instead of
        returning None.
        """
        client = await self.get_client(name)
        if client is None:
            raise ServiceUnavailableError(context={"client": name or DEFAULT_CLIENT_NAME})
        return client

    async def dispose(self) -> None:
        """Closes every pool. Called from the application lifespan on shutdown."""
        for client in self._clients.values():
            try:
                await client.dispose()
            except Exception as e:
                logger.error("Failed to dispose client '%s': %s", client.name, redact(str(e)))


def load_client_entries(path: Path) -> List[Any]:
    """
    Reads the JSON document at `path` and returns the raw client entries.

    The first alias in CLIENT_LIST_ALIASES that is present AND holds an
    array is used; other aliases are ignored (no merging).

    Raises:
        ConfigParseError: unreadable file, invalid JSON, non-object
        document, or no alias holding an array.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigParseError(
            message="Configuration file could not be read",
            context={"path": str(path), "error_type": type(e).__name__},
        ) from None
    except json.JSONDecodeError as e:
        raise ConfigParseError(
            message="Configuration file is not valid JSON",
            context={"path": str(path), "line": e.lineno, "column": e.colno},
        ) from None

    if not isinstance(data, dict):
        raise ConfigParseError(
            message="Configuration document must be a JSON object",
            context={"path": str(path)},
        )

    for alias in CLIENT_LIST_ALIASES:
        value = data.get(alias)
        if isinstance(value, list):
            logger.info("Loaded %d client entries from '%s' in %s", len(value), alias, path)
            return value

    raise ConfigParseError(
        message="Configuration document has no client list",
        context={"path": str(path), "expected_one_of": list(CLIENT_LIST_ALIASES)},
    )


def get_registry(request: Request) -> ConnectionRegistry:
    """FastAPI dependency: the registry built by the application factory."""
    return request.app.state.registry


def select_default_config(entries: List[Any]) -> Optional[DatabaseClientConfig]:
    """
    Picks the entry the registry would make the default, without connecting.

    Invalid entries are ignored. Used by the Alembic environment.
    """
    valid: List[DatabaseClientConfig] = []
    for entry in entries:
        try:
            valid.append(DatabaseClientConfig.from_entry(entry))
        except ClientValidationError:
            continue
    for config in valid:
        if config.name == DEFAULT_CLIENT_NAME:
            return config
    return valid[0] if valid else None
