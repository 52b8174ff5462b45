"""JSON-RPC 2.0 message handling for one MCP session."""

import logging
from typing import Any

from fastmcp import Client
from mcp.shared.exceptions import McpError
from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS
from mcp.types import LATEST_PROTOCOL_VERSION

from .config import DEFAULT_MCP_SERVER_NAME, DEFAULT_MCP_SERVER_VERSION
from .mcp_server import INSTRUCTIONS

logger = logging.getLogger(__name__)

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SESSION_CLOSED = -32001


class JsonRpcError(Exception):
    """An error to be returned as a JSON-RPC error object."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def success_response(request_id: Any, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_response(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def is_notification(message: Any) -> bool:
    """Notifications carry no id and never get a response."""
    return isinstance(message, dict) and "id" not in message


class McpProtocol:
    """
    Dispatches JSON-RPC messages to a connected FastMCP client.

    The client talks to the session's own FastMCP server in memory, so tool
    listing and tool calls go through the same code path as any MCP client.
    """

    def __init__(
        self,
        client: Client,
        server_name: str = DEFAULT_MCP_SERVER_NAME,
        server_version: str = DEFAULT_MCP_SERVER_VERSION,
    ) -> None:
        self._client = client
        self._server_name = server_name
        self._server_version = server_version

    async def handle(self, message: Any) -> dict[str, Any] | None:
        """
        Handle one JSON-RPC message.

        Args:
            message: Decoded JSON-RPC message

        Returns:
            Response object, or None for notifications
        """
        request_id = message.get("id") if isinstance(message, dict) else None

        if (
            not isinstance(message, dict)
            or message.get("jsonrpc") != "2.0"
            or not isinstance(message.get("method"), str)
        ):
            return error_response(request_id, INVALID_REQUEST, "Invalid Request")

        method = message["method"]
        params = message.get("params") or {}

        if is_notification(message):
            logger.debug(f"Notification received: {method}")
            return None

        try:
            if not isinstance(params, dict):
                raise JsonRpcError(INVALID_PARAMS, "params must be an object")
            result = await self._dispatch(method, params)
        except JsonRpcError as e:
            return error_response(request_id, e.code, e.message)
        except McpError as e:
            return error_response(request_id, e.error.code, e.error.message)
        except Exception:
            logger.exception(f"Unhandled error processing {method}")
            return error_response(request_id, INTERNAL_ERROR, "Internal error")

        return success_response(request_id, result)

    async def _dispatch(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        if method == "initialize":
            return self._initialize(params)
        if method == "ping":
            await self._client.ping()
            return {}
        if method == "tools/list":
            tools = await self._client.list_tools()
            return {
                "tools": [
                    tool.model_dump(mode="json", by_alias=True, exclude_none=True)
                    for tool in tools
                ]
            }
        if method == "tools/call":
            return await self._call_tool(params)
        raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")

    def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        return {
            "protocolVersion": version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self._server_name, "version": self._server_version},
            "instructions": INSTRUCTIONS,
        }

    async def _call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        arguments = params.get("arguments") or {}
        if not isinstance(name, str) or not name:
            raise JsonRpcError(INVALID_PARAMS, "tools/call requires a tool name")
        if not isinstance(arguments, dict):
            raise JsonRpcError(INVALID_PARAMS, "tools/call arguments must be an object")

        logger.debug(f"Calling tool {name}")
        result = await self._client.call_tool_mcp(name, arguments)
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)
