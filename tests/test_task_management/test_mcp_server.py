"""Unit tests for the FastMCP tool server."""

import json
from typing import Any

import pytest
from fastmcp import Client

from gtd_buddy.task_management.catalog import ToolCatalog
from gtd_buddy.task_management.mcp_server import INSTRUCTIONS, TOOL_NAMES, create_mcp_server
from gtd_buddy.task_management.schemas import TOOL_SCHEMAS


def payload(result: Any) -> dict[str, Any]:
    """Decode the JSON text content of a tool result."""
    return json.loads(result.content[0].text)


@pytest.mark.unit
class TestMCPServerTools:
    """Test the tools exposed over MCP."""

    @pytest.mark.asyncio
    async def test_lists_every_tool(self, catalog: ToolCatalog) -> None:
        """Test that the server exposes exactly the catalog's tools."""
        async with Client(create_mcp_server(catalog)) as client:
            tools = await client.list_tools()

        assert sorted(tool.name for tool in tools) == sorted(TOOL_NAMES)
        assert sorted(TOOL_NAMES) == sorted(catalog.tool_names)

    @pytest.mark.asyncio
    async def test_tools_follow_input_schemas(self, catalog: ToolCatalog) -> None:
        """Test that each tool is described and takes its input model's schema."""
        async with Client(create_mcp_server(catalog)) as client:
            tools = await client.list_tools()

        assert TOOL_NAMES == list(TOOL_SCHEMAS)
        assert {tool.name for tool in tools} == set(TOOL_NAMES)
        for tool in tools:
            assert tool.description
            assert tool.inputSchema["additionalProperties"] is False

    @pytest.mark.asyncio
    async def test_null_argument_clears_field(self, catalog: ToolCatalog) -> None:
        """Test that an explicit null is passed through to the catalog."""
        async with Client(create_mcp_server(catalog)) as client:
            created = payload(
                await client.call_tool_mcp("create_task", {"title": "Run", "energyLevel": 4})
            )
            updated = payload(
                await client.call_tool_mcp(
                    "update_task", {"taskId": created["task"]["id"], "energyLevel": None}
                )
            )

        assert updated["updatedFields"] == ["energyLevel"]
        assert updated["task"]["energyLevel"] is None

    @pytest.mark.asyncio
    async def test_parameters_use_wire_names(self, catalog: ToolCatalog) -> None:
        """Test that tool parameters are camelCase."""
        async with Client(create_mcp_server(catalog)) as client:
            tools = {tool.name: tool for tool in await client.list_tools()}

        update = tools["update_task"].inputSchema
        assert "taskId" in update["properties"]
        assert "clearFields" in update["properties"]
        assert update["required"] == ["taskId"]

    @pytest.mark.asyncio
    async def test_create_task(self, catalog: ToolCatalog) -> None:
        """Test creating a task through an MCP tool call."""
        async with Client(create_mcp_server(catalog)) as client:
            result = await client.call_tool_mcp("create_task", {"title": "Buy milk"})

        data = payload(result)
        assert data["success"] is True
        assert data["task"]["category"] == "Inbox"
        assert data["task"]["priority"] == "media"

    @pytest.mark.asyncio
    async def test_clear_fields_through_mcp(self, catalog: ToolCatalog) -> None:
        """Test that clearFields reaches the catalog."""
        async with Client(create_mcp_server(catalog)) as client:
            created = payload(
                await client.call_tool_mcp(
                    "create_task", {"title": "Pay rent", "dueDate": "2026-03-12"}
                )
            )
            task_id = created["task"]["id"]
            updated = payload(
                await client.call_tool_mcp(
                    "update_task", {"taskId": task_id, "clearFields": ["dueDate"]}
                )
            )

        assert updated["success"] is True
        assert updated["task"]["dueDate"] is None
        assert updated["updatedFields"] == ["dueDate"]

    @pytest.mark.asyncio
    async def test_catalog_failure_is_a_payload(self, catalog: ToolCatalog) -> None:
        """Test that catalog failures come back as structured payloads."""
        async with Client(create_mcp_server(catalog)) as client:
            result = await client.call_tool_mcp("delete_task", {"taskId": "missing"})

        data = payload(result)
        assert data["success"] is False
        assert data["error"]["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_query_tools_without_arguments(self, catalog: ToolCatalog) -> None:
        """Test that query tools run with every default."""
        async with Client(create_mcp_server(catalog)) as client:
            summary = payload(await client.call_tool_mcp("get_summary", {}))
            inbox = payload(await client.call_tool_mcp("get_inbox", {}))

        assert summary["summary"]["total"] == 0
        assert inbox["count"] == 0

    def test_instructions_describe_categories(self) -> None:
        """Test that the server instructions name every category."""
        for label in ("Inbox", "Próximas acciones", "Multitarea", "A la espera", "Algún día"):
            assert label in INSTRUCTIONS
