"""GTD tool server: task and context tools exposed over MCP."""

from .catalog import ToolCatalog
from .config import ServerConfig
from .database import SQLiteDocumentStore
from .exceptions import (
    ConfigurationError,
    GTDBuddyError,
    NotFoundError,
    OwnershipError,
    StoreTransientError,
    ValidationError,
)
from .http_server import create_app
from .interfaces import DocumentStore
from .mcp_server import TOOL_NAMES, create_mcp_server
from .models import Context, ContextStatus, GTDCategory, Subtask, Task, TaskPriority
from .sessions import McpSession, SessionRegistry

__all__ = [
    "Context",
    "ContextStatus",
    "ConfigurationError",
    "DocumentStore",
    "GTDBuddyError",
    "GTDCategory",
    "McpSession",
    "NotFoundError",
    "OwnershipError",
    "SQLiteDocumentStore",
    "ServerConfig",
    "SessionRegistry",
    "StoreTransientError",
    "Subtask",
    "Task",
    "TaskPriority",
    "ToolCatalog",
    "TOOL_NAMES",
    "ValidationError",
    "create_app",
    "create_mcp_server",
]
