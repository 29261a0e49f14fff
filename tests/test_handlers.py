"""
Handler Tests

MCP tool handlers, tool catalog and the server's call_tool routing, all on
top of a CatalogContainer wired to FakeDatabase and the sample packages.
"""

import json

import pytest

import server
from container import CatalogContainer
from handlers import get_compiled_handler, get_handler, list_all_handlers
from handlers.catalog_handlers import parse_cache_names
from errors import ValidationError
from tools import get_tool_catalog

from tests.conftest import FakeDatabase, sample_config


def payload_of(result):
    assert len(result) == 1
    return json.loads(result[0].text)


class TestRegistry:

    def test_static_handlers(self):
        assert list_all_handlers() == ["get_metadata", "clear_cache", "entity_operation"]
        assert get_handler("list_project") is None


class TestGetMetadata:

    @pytest.mark.asyncio
    async def test_full_bundle(self, container):
        result = payload_of(await get_handler("get_metadata")(container, {}))

        assert result["success"] is True
        assert set(result["data"]) >= {"application_info", "entities", "tables", "tools", "endpoints", "version"}
        assert "Project" in result["data"]["entities"]

    @pytest.mark.asyncio
    async def test_single_section(self, container):
        result = payload_of(await get_handler("get_metadata")(container, {"section": "application_info"}))

        assert set(result["data"]) == {"application_info", "version"}
        assert result["data"]["application_info"]["name"] == "Sample App"

    @pytest.mark.asyncio
    async def test_unknown_section(self, container):
        result = payload_of(await get_handler("get_metadata")(container, {"section": "secrets"}))

        assert result["success"] is False
        assert result["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_refresh_recompiles(self, container, fake_db):
        await get_handler("get_metadata")(container, {})
        await get_handler("get_metadata")(container, {})
        assert fake_db.get_all_tables.await_count == 1

        await get_handler("get_metadata")(container, {"refresh": True})
        # The schema snapshot is still cached; only the bundle is rebuilt
        assert fake_db.get_all_tables.await_count == 1


class TestClearCache:

    @pytest.mark.asyncio
    async def test_clears_both_by_default(self, container, fake_db):
        await container.generator.get_metadata()

        result = payload_of(await get_handler("clear_cache")(container, {}))

        assert result == {
            "success": True,
            "data": {"cleared": 2, "caches": ["schema_analysis", "metadata"]},
            "message": "Cache cleared successfully",
        }
        await container.generator.get_metadata()
        assert fake_db.get_all_tables.await_count == 2

    @pytest.mark.asyncio
    async def test_metadata_only_keeps_schema(self, container, fake_db):
        await container.generator.get_metadata()

        result = payload_of(await get_handler("clear_cache")(container, {"caches": ["metadata"]}))

        assert result["data"]["caches"] == ["metadata"]
        await container.generator.get_metadata()
        assert fake_db.get_all_tables.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_cache_name(self, container):
        result = payload_of(await get_handler("clear_cache")(container, {"caches": ["bogus"]}))
        assert result["error"] == "VALIDATION_ERROR"

    def test_parse_cache_names(self):
        assert parse_cache_names(None) == []
        assert parse_cache_names("schema") == ["schema"]
        assert parse_cache_names('["schema", "metadata"]') == ["schema", "metadata"]
        with pytest.raises(ValidationError):
            parse_cache_names({"schema": True})


class TestEntityOperation:

    @pytest.mark.asyncio
    async def test_json_string_payload(self, container, fake_db):
        fake_db.fetch.return_value = [{"id": 1, "name": "Apollo"}]
        fake_db.fetchval.return_value = 1

        result = payload_of(await get_handler("entity_operation")(container, {
            "entity": "Project",
            "operation": "list",
            "payload": '{"limit": 5}',
        }))

        assert result["success"] is True
        assert result["data"] == [{"id": 1, "name": "Apollo"}]
        assert result["pagination"]["limit"] == 5

    @pytest.mark.asyncio
    async def test_flat_arguments_become_payload(self, container, fake_db):
        fake_db.fetchrow.return_value = {"id": 2, "name": "Apollo"}

        result = payload_of(await get_handler("entity_operation")(container, {
            "entity": "Project", "operation": "create", "name": "Apollo",
        }))

        assert result["message"] == "Record created successfully"
        assert fake_db.fetchrow.await_args.args[1:] == ("Apollo",)

    @pytest.mark.asyncio
    async def test_missing_entity(self, container, fake_db):
        result = payload_of(await get_handler("entity_operation")(container, {"operation": "list"}))

        assert result["error"] == "VALIDATION_ERROR"
        fake_db.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_payload(self, container):
        result = payload_of(await get_handler("entity_operation")(container, {
            "entity": "Project", "operation": "list", "payload": "{not json",
        }))
        assert result["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_excluded_entity(self, container):
        result = payload_of(await get_handler("entity_operation")(container, {"entity": "User", "operation": "list"}))
        assert result["error"] == "ENTITY_NOT_FOUND"


class TestCompiledTools:

    @pytest.mark.asyncio
    async def test_compiled_tool_dispatches(self, container, fake_db):
        handler = await get_compiled_handler(container, "search_project")

        result = payload_of(await handler(container, {"query": "acme"}))

        assert result["success"] is True
        assert result["query"] == "acme"
        assert fake_db.fetch.await_args.args[1] == "%acme%"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, container):
        assert await get_compiled_handler(container, "list_ghost") is None

    @pytest.mark.asyncio
    async def test_custom_tool_has_no_executor(self):
        container = CatalogContainer(
            FakeDatabase(),
            sample_config(custom_tools=[{"name": "export_report", "description": "Monthly export"}]),
        )
        handler = await get_compiled_handler(container, "export_report")

        result = payload_of(await handler(container, {}))

        assert result["error"] == "INVALID_OPERATION"
        assert "export_report" in result["message"]

    @pytest.mark.asyncio
    async def test_tool_catalog(self, container):
        bundle = await container.generator.get_metadata()
        tools = get_tool_catalog(bundle)
        names = [tool.name for tool in tools]

        assert names[:3] == ["get_metadata", "entity_operation", "clear_cache"]
        assert names[3:] == [t["name"] for t in bundle.tools]
        assert tools[names.index("create_project")].inputSchema["required"] == ["name"]

    @pytest.mark.asyncio
    async def test_tool_catalog_skips_name_collisions(self):
        container = CatalogContainer(
            FakeDatabase(),
            sample_config(custom_tools=[{"name": "get_metadata", "description": "shadow"}]),
        )
        bundle = await container.generator.get_metadata()

        names = [tool.name for tool in get_tool_catalog(bundle)]

        assert names.count("get_metadata") == 1


class TestServerRouting:

    @pytest.mark.asyncio
    async def test_unknown_tool(self, container, monkeypatch):
        monkeypatch.setattr(server, "container", container)

        result = await server.handle_call_tool("no_such_tool", {})

        assert result[0].text == "Unknown tool: no_such_tool"

    @pytest.mark.asyncio
    async def test_routes_compiled_tool(self, container, monkeypatch, fake_db):
        monkeypatch.setattr(server, "container", container)
        fake_db.fetchval.return_value = 0

        result = payload_of(await server.handle_call_tool("list_task", {"limit": 3}))

        assert result["pagination"] == {"limit": 3, "offset": 0, "total": 0, "has_more": False}

    @pytest.mark.asyncio
    async def test_disabled_catalog(self, monkeypatch):
        disabled = CatalogContainer(FakeDatabase(), sample_config(enabled=False))
        monkeypatch.setattr(server, "container", disabled)

        result = payload_of(await server.handle_call_tool("get_metadata", {}))

        assert result["error"] == "CATALOG_DISABLED"
        assert await server.handle_list_tools() == []

    @pytest.mark.asyncio
    async def test_handler_failure_is_reported(self, container, monkeypatch):
        monkeypatch.setattr(server, "container", container)

        async def broken(*args, **kwargs):
            raise RuntimeError("bundle exploded")

        monkeypatch.setattr(container.generator, "get_metadata", broken)

        result = await server.handle_call_tool("get_metadata", {})

        assert result[0].text == "Error executing get_metadata: bundle exploded"
