"""Tests for JSON-RPC handling of MCP messages."""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import pytest
from fastmcp import Client
from mcp.types import LATEST_PROTOCOL_VERSION

from gtd_buddy.task_management.catalog import ToolCatalog
from gtd_buddy.task_management.mcp_server import INSTRUCTIONS, create_mcp_server
from gtd_buddy.task_management.protocol import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    McpProtocol,
    error_response,
    is_notification,
)


def request(method: str, params: dict | None = None, request_id: int = 1) -> dict:
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def tool_payload(response: dict) -> dict:
    return json.loads(response["result"]["content"][0]["text"])


@asynccontextmanager
async def connect(catalog: ToolCatalog) -> AsyncIterator[McpProtocol]:
    """Protocol handler connected to an in-memory server."""
    async with Client(create_mcp_server(catalog)) as client:
        yield McpProtocol(client, "gtd-buddy-test", "9.9.9")


@pytest.mark.unit
class TestMessageHelpers:
    """Test cases for JSON-RPC helpers."""

    def test_error_response(self) -> None:
        """Test the error object shape."""
        assert error_response(7, -32601, "Method not found: x") == {
            "jsonrpc": "2.0",
            "id": 7,
            "error": {"code": -32601, "message": "Method not found: x"},
        }

    def test_is_notification(self) -> None:
        """Test that only messages without an id are notifications."""
        assert is_notification({"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert not is_notification(request("ping"))
        assert not is_notification([1, 2])


@pytest.mark.unit
class TestMcpProtocol:
    """Test cases for McpProtocol.handle."""

    @pytest.mark.asyncio
    async def test_initialize(self, catalog: ToolCatalog) -> None:
        """Test the initialize handshake result."""
        async with connect(catalog) as protocol:
            response = await protocol.handle(
                request("initialize", {"protocolVersion": "1999-01-01", "capabilities": {}})
            )

        result = response["result"]
        assert response["id"] == 1
        assert result["protocolVersion"] == LATEST_PROTOCOL_VERSION
        assert result["serverInfo"] == {"name": "gtd-buddy-test", "version": "9.9.9"}
        assert result["capabilities"]["tools"] == {"listChanged": False}
        assert result["instructions"] == INSTRUCTIONS

    @pytest.mark.asyncio
    async def test_initialize_keeps_supported_version(self, catalog: ToolCatalog) -> None:
        """Test that a supported requested version is echoed back."""
        async with connect(catalog) as protocol:
            response = await protocol.handle(
                request("initialize", {"protocolVersion": LATEST_PROTOCOL_VERSION})
            )

        assert response["result"]["protocolVersion"] == LATEST_PROTOCOL_VERSION

    @pytest.mark.asyncio
    async def test_ping(self, catalog: ToolCatalog) -> None:
        """Test ping returns an empty result."""
        async with connect(catalog) as protocol:
            response = await protocol.handle(request("ping", request_id=3))

        assert response == {"jsonrpc": "2.0", "id": 3, "result": {}}

    @pytest.mark.asyncio
    async def test_tools_list(self, catalog: ToolCatalog) -> None:
        """Test that every tool is listed with its input schema."""
        async with connect(catalog) as protocol:
            response = await protocol.handle(request("tools/list"))

        tools = response["result"]["tools"]
        assert len(tools) == 25
        create = next(tool for tool in tools if tool["name"] == "create_task")
        assert create["inputSchema"]["required"] == ["title"]

    @pytest.mark.asyncio
    async def test_tools_call(self, catalog: ToolCatalog) -> None:
        """Test calling a tool through JSON-RPC."""
        async with connect(catalog) as protocol:
            response = await protocol.handle(
                request("tools/call", {"name": "quick_capture", "arguments": {"title": "Idea"}})
            )

        result = response["result"]
        assert result["isError"] is False
        payload = json.loads(result["content"][0]["text"])
        assert payload["success"] is True
        assert payload["task"]["category"] == "Inbox"

    @pytest.mark.asyncio
    async def test_unknown_method(self, catalog: ToolCatalog) -> None:
        """Test that unknown methods are reported."""
        async with connect(catalog) as protocol:
            response = await protocol.handle(request("resources/list"))

        assert response["error"]["code"] == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "message",
        [
            [1, 2, 3],
            {"id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "id": 1},
            {"jsonrpc": "2.0", "id": 1, "method": 42},
        ],
    )
    async def test_invalid_request(self, catalog: ToolCatalog, message: object) -> None:
        """Test that malformed messages are rejected."""
        async with connect(catalog) as protocol:
            response = await protocol.handle(message)

        assert response["error"]["code"] == INVALID_REQUEST

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "params",
        [
            ["not", "an", "object"],
            {"arguments": {}},
            {"name": "create_task", "arguments": "title=x"},
        ],
    )
    async def test_invalid_params(self, catalog: ToolCatalog, params: object) -> None:
        """Test that malformed tools/call params are rejected."""
        async with connect(catalog) as protocol:
            response = await protocol.handle(
                {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": params}
            )

        assert response["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_notification_has_no_response(self, catalog: ToolCatalog) -> None:
        """Test that notifications are accepted silently."""
        async with connect(catalog) as protocol:
            response = await protocol.handle(
                {"jsonrpc": "2.0", "method": "notifications/initialized"}
            )

        assert response is None

    @pytest.mark.asyncio
    async def test_explicit_null_clears_field(self, catalog: ToolCatalog) -> None:
        """Test that a null argument reaches the catalog and clears the field."""
        async with connect(catalog) as protocol:
            created = await protocol.handle(
                request(
                    "tools/call",
                    {
                        "name": "create_task",
                        "arguments": {"title": "Pay rent", "dueDate": "2026-03-12"},
                    },
                )
            )
            task_id = tool_payload(created)["task"]["id"]
            updated = await protocol.handle(
                request(
                    "tools/call",
                    {"name": "update_task", "arguments": {"taskId": task_id, "dueDate": None}},
                    request_id=2,
                )
            )
            listed = await protocol.handle(
                request("tools/call", {"name": "list_tasks", "arguments": {}}, request_id=3)
            )

        payload = tool_payload(updated)
        assert payload["success"] is True
        assert payload["updatedFields"] == ["dueDate"]
        assert payload["task"]["dueDate"] is None
        assert tool_payload(listed)["tasks"][0]["dueDate"] is None

    @pytest.mark.asyncio
    async def test_wrong_types_are_structured_validation_errors(
        self, catalog: ToolCatalog
    ) -> None:
        """Test that badly typed arguments come back as a validation payload."""
        async with connect(catalog) as protocol:
            response = await protocol.handle(
                request(
                    "tools/call",
                    {"name": "list_tasks", "arguments": {"limit": "abc", "completed": "maybe"}},
                )
            )

        result = response["result"]
        assert result["isError"] is False
        assert result["structuredContent"]["success"] is False
        error = tool_payload(response)["error"]
        assert error["code"] == "validation_error"
        assert {item["field"] for item in error["fields"]} == {"limit", "completed"}

    @pytest.mark.asyncio
    async def test_unknown_argument_is_a_validation_error(self, catalog: ToolCatalog) -> None:
        """Test that unexpected argument names are reported field by field."""
        async with connect(catalog) as protocol:
            response = await protocol.handle(
                request("tools/call", {"name": "get_summary", "arguments": {"bogus": 1}})
            )

        error = tool_payload(response)["error"]
        assert error["code"] == "validation_error"
        assert error["fields"][0]["field"] == "bogus"
