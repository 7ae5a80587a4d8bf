"""
AuthGate — Connection Registry Tests
======================================

What we test:
    ✅ initialize() is idempotent and caches its outcome
    ✅ Default resolution ("default" wins, else first registered)
    ✅ Invalid, duplicate and unreachable entries are skipped
    ✅ Missing / malformed document degrades to zero clients
    ✅ Getters auto-initialize exactly once
    ✅ DB_* environment fallback
"""

import asyncio
import json
from pathlib import Path

import pytest

from authgate.exceptions import ConfigNotFoundError, ConfigParseError, ServiceUnavailableError
from authgate.registry import (
    ConnectionRegistry,
    RegistryState,
    load_client_entries,
    select_default_config,
)


def make_registry(test_settings, factory, **overrides):
    settings = test_settings.model_copy(update=overrides) if overrides else test_settings
    return ConnectionRegistry(settings=settings, engine_factory=factory)


class TestInitialize:

    @pytest.mark.asyncio
    async def test_single_entry_becomes_default(self, test_settings, sqlite_engine_factory, write_config, make_entry):
        path = write_config([make_entry("primary")])
        registry = make_registry(test_settings, sqlite_engine_factory)

        assert registry.state is RegistryState.UNINITIALIZED
        assert await registry.initialize(str(path)) is True
        assert registry.state is RegistryState.READY
        assert registry.config_path == path

        client = await registry.get_client()
        assert client is not None
        assert client.name == "primary"
        await registry.dispose()

    @pytest.mark.asyncio
    async def test_second_call_does_not_rebuild(self, test_settings, sqlite_engine_factory, write_config, make_entry):
        path = write_config([make_entry("default")])
        registry = make_registry(test_settings, sqlite_engine_factory)

        assert await registry.initialize(str(path)) is True
        path.write_text(json.dumps({"dbs": []}))
        assert await registry.initialize(str(path)) is True

        assert sqlite_engine_factory.created == ["default"]
        assert registry.client_names == ("default",)
        await registry.dispose()

    @pytest.mark.asyncio
    async def test_concurrent_initialize_builds_once(self, test_settings, sqlite_engine_factory, write_config, make_entry):
        path = write_config([make_entry("default")])
        registry = make_registry(test_settings, sqlite_engine_factory)

        results = await asyncio.gather(*(registry.initialize(str(path)) for _ in range(5)))

        assert results == [True] * 5
        assert sqlite_engine_factory.created == ["default"]
        await registry.dispose()

    @pytest.mark.asyncio
    async def test_missing_document_gives_zero_clients(self, test_settings, sqlite_engine_factory, tmp_path):
        registry = make_registry(test_settings, sqlite_engine_factory)

        assert await registry.initialize(str(tmp_path / "nowhere.json")) is False
        assert registry.is_ready
        assert registry.client_names == ()
        assert registry.config_path is None
        assert await registry.get_client() is None

    @pytest.mark.asyncio
    async def test_zero_clients_outcome_is_cached(self, test_settings, sqlite_engine_factory, tmp_path, write_config, make_entry):
        registry = make_registry(test_settings, sqlite_engine_factory)
        assert await registry.initialize(str(tmp_path / "nowhere.json")) is False

        # The document appearing later does not change a READY registry
        path = write_config([make_entry("default")], filename="nowhere.json")
        assert await registry.initialize(str(path)) is False
        assert sqlite_engine_factory.created == []

    @pytest.mark.asyncio
    async def test_malformed_json_gives_zero_clients(self, test_settings, sqlite_engine_factory, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        registry = make_registry(test_settings, sqlite_engine_factory)

        assert await registry.initialize(str(path)) is False
        assert registry.state is RegistryState.READY

    @pytest.mark.asyncio
    async def test_unreadable_location_gives_zero_clients(self, test_settings, sqlite_engine_factory, tmp_path, monkeypatch):
        def is_file(path):
            raise PermissionError(13, "Permission denied", str(path))

        monkeypatch.setattr(Path, "is_file", is_file)
        registry = make_registry(test_settings, sqlite_engine_factory)

        assert await registry.initialize(str(tmp_path / "config.json")) is False
        assert registry.state is RegistryState.READY
        assert registry.client_names == ()


class TestEntryHandling:

    @pytest.mark.asyncio
    async def test_unsupported_rdbms_is_skipped(self, test_settings, sqlite_engine_factory, write_config, make_entry):
        path = write_config([make_entry("legacy", rdbms="mysql"), make_entry("main")])
        registry = make_registry(test_settings, sqlite_engine_factory)

        assert await registry.initialize(str(path)) is True
        assert registry.client_names == ("main",)
        assert sqlite_engine_factory.created == ["main"]
        await registry.dispose()

    @pytest.mark.asyncio
    async def test_incomplete_entry_is_skipped(self, test_settings, sqlite_engine_factory, write_config, make_entry):
        broken = make_entry("broken")
        del broken["host"]
        path = write_config([broken, "not-an-object", make_entry("ok")])
        registry = make_registry(test_settings, sqlite_engine_factory)

        assert await registry.initialize(str(path)) is True
        assert registry.client_names == ("ok",)
        await registry.dispose()

    @pytest.mark.asyncio
    async def test_duplicate_name_keeps_first(self, test_settings, sqlite_engine_factory, write_config, make_entry):
        path = write_config([make_entry("main", dbname="one.db"), make_entry("main", dbname="two.db")])
        registry = make_registry(test_settings, sqlite_engine_factory)

        await registry.initialize(str(path))

        assert registry.client_names == ("main",)
        client = await registry.get_client("main")
        assert "one.db" in str(client.engine.url)
        await registry.dispose()

    @pytest.mark.asyncio
    async def test_unreachable_entry_is_skipped(self, test_settings, sqlite_engine_factory, write_config, make_entry):
        path = write_config([
            make_entry("down", dbname="missing-dir/down.db"),
            make_entry("up"),
        ])
        registry = make_registry(test_settings, sqlite_engine_factory)

        assert await registry.initialize(str(path)) is True
        assert registry.client_names == ("up",)
        assert (await registry.get_client()).name == "up"
        await registry.dispose()

    @pytest.mark.asyncio
    async def test_every_entry_unreachable(self, test_settings, sqlite_engine_factory, write_config, make_entry):
        path = write_config([make_entry("down", dbname="missing-dir/down.db")])
        registry = make_registry(test_settings, sqlite_engine_factory)

        assert await registry.initialize(str(path)) is False
        with pytest.raises(ServiceUnavailableError):
            await registry.require_client()

    @pytest.mark.asyncio
    async def test_engine_factory_failure_is_skipped(self, test_settings, write_config, make_entry):
        def exploding_factory(config, settings):
            raise RuntimeError("password=hunter2 rejected")

        path = write_config([make_entry("default")])
        registry = make_registry(test_settings, exploding_factory)

        assert await registry.initialize(str(path)) is False


class TestDefaultResolution:

    @pytest.mark.asyncio
    async def test_named_default_wins_regardless_of_order(self, test_settings, sqlite_engine_factory, write_config, make_entry):
        path = write_config([make_entry("a"), make_entry("default"), make_entry("b")])
        registry = make_registry(test_settings, sqlite_engine_factory)

        await registry.initialize(str(path))

        assert (await registry.get_client()).name == "default"
        assert registry.client_names == ("a", "default", "b")
        await registry.dispose()

    @pytest.mark.asyncio
    async def test_first_registered_without_named_default(self, test_settings, sqlite_engine_factory, write_config, make_entry):
        path = write_config([make_entry("a"), make_entry("b")])
        registry = make_registry(test_settings, sqlite_engine_factory)

        await registry.initialize(str(path))

        assert (await registry.get_client()).name == "a"
        await registry.dispose()

    @pytest.mark.asyncio
    async def test_unknown_name_returns_none(self, registry):
        assert await registry.get_client("reporting") is None

    @pytest.mark.asyncio
    async def test_require_unknown_name_raises(self, registry):
        with pytest.raises(ServiceUnavailableError):
            await registry.require_client("reporting")


class TestAutoInitialization:

    @pytest.mark.asyncio
    async def test_getter_triggers_default_discovery(self, test_settings, sqlite_engine_factory, write_config, make_entry):
        path = write_config([make_entry("default")])
        registry = make_registry(test_settings, sqlite_engine_factory, db_config_path=str(path))

        client = await registry.get_client()

        assert client is not None
        assert registry.is_ready
        await registry.get_client()
        assert sqlite_engine_factory.created == ["default"]
        await registry.dispose()

    @pytest.mark.asyncio
    async def test_getter_without_document_returns_none(self, test_settings, sqlite_engine_factory, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        registry = make_registry(test_settings, sqlite_engine_factory, db_config_filename="absent.json")

        assert await registry.get_client() is None
        assert registry.is_ready


class TestEnvironmentFallback:

    def test_fallback_entry_when_document_missing(self, test_settings, sqlite_engine_factory, tmp_path):
        registry = make_registry(
            test_settings,
            sqlite_engine_factory,
            db_host="pg.internal",
            db_name="app",
            db_user="app",
            db_pass="pw",
        )

        entries = registry.load_entries(str(tmp_path / "absent.json"))

        assert len(entries) == 1
        assert entries[0]["name"] == "default"
        assert entries[0]["host"] == "pg.internal"

    def test_no_fallback_without_db_host(self, test_settings, sqlite_engine_factory, tmp_path):
        registry = make_registry(test_settings, sqlite_engine_factory)

        with pytest.raises(ConfigNotFoundError) as exc_info:
            registry.load_entries(str(tmp_path / "absent.json"))

        assert len(exc_info.value.attempted) == 5


class TestLoadClientEntries:

    @pytest.mark.parametrize("key", ["dbs", "db_clients", "databases"])
    def test_aliases(self, write_config, make_entry, key):
        path = write_config([make_entry("x")], key=key)
        assert [e["name"] for e in load_client_entries(path)] == ["x"]

    def test_first_array_alias_wins(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"dbs": "oops", "db_clients": [{"name": "a"}], "databases": [{"name": "b"}]}))
        assert load_client_entries(path) == [{"name": "a"}]

    def test_no_alias_raises(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"servers": []}))
        with pytest.raises(ConfigParseError):
            load_client_entries(path)

    def test_non_object_document_raises(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[]")
        with pytest.raises(ConfigParseError):
            load_client_entries(path)


class TestSelectDefaultConfig:

    def test_prefers_named_default(self, make_entry):
        config = select_default_config([make_entry("a"), make_entry("default")])
        assert config.name == "default"

    def test_skips_invalid_entries(self, make_entry):
        config = select_default_config([make_entry("bad", rdbms="oracle"), make_entry("b")])
        assert config.name == "b"

    def test_none_when_nothing_valid(self):
        assert select_default_config([{"name": "x"}]) is None
