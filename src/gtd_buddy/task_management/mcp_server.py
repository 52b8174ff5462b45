"""MCP server for GTD task management using FastMCP."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastmcp import FastMCP
from fastmcp.tools import Tool
from fastmcp.tools.tool import ToolResult

from .catalog import ToolCatalog
from .config import DEFAULT_MCP_SERVER_NAME
from .schemas import TOOL_SCHEMAS

logger = logging.getLogger(__name__)

INSTRUCTIONS = """
GTD-Buddy MCP Server - Personal Task Management with GTD Methodology

This server provides tools to manage tasks and contexts following the Getting
Things Done (GTD) methodology.

## GTD Categories:
- **Inbox**: Unprocessed items that need to be categorized
- **Próximas acciones**: Next actions - concrete tasks you can do right now
- **Multitarea**: Multi-step projects with subtasks
- **A la espera**: Waiting for - tasks delegated or waiting on others
- **Algún día**: Someday/maybe - ideas for the future

English aliases (inbox, nextActions, multiStep, waiting, someday) are accepted
on input. Priorities are baja, media and alta (or low, medium, high).

## Contexts:
Contexts represent locations or situations where tasks can be done
(e.g., @home, @office, @phone, @computer).

## Quick Actions:
Tasks that take less than 2 minutes should be marked as quick actions
(isQuickAction: true) and done immediately.

## Updates:
Update tools change only the fields you pass. To clear an optional field,
pass it as null or name it in clearFields (e.g. clearFields: ["dueDate"]).

## Available Tools:

### Task Management:
- list_tasks, create_task, quick_capture, update_task, delete_task
- complete_task, move_task, mark_reviewed, clear_completed_tasks
- add_subtask, complete_subtask, remove_subtask

### Context Management:
- list_contexts, create_context, update_context, delete_context

### Queries:
- get_inbox, get_today, get_overdue, get_quick_actions, get_next_actions
- get_by_context, search_tasks, get_summary, get_weekly_review

## Tips:
1. Process your Inbox regularly - categorize or delete items
2. Keep next actions concrete and actionable
3. Use contexts to filter tasks by where you are
4. Review "Algún día" items periodically
5. Complete quick actions immediately (2-minute rule)
""".strip()

TOOL_NAMES = list(TOOL_SCHEMAS)

TOOL_DESCRIPTIONS = {
    # Task tools
    "list_tasks": (
        "List tasks, newest first. Filter by category, contextId or completed; "
        "limit is 1-100 (default 50)."
    ),
    "create_task": (
        "Create a new task (defaults to Inbox, priority media). Optional fields: "
        "description, category, priority (baja/media/alta), contextId, energyLevel (1-5), "
        "estimatedMinutes (1-480), dueDate (YYYY-MM-DD or ISO-8601), isQuickAction, "
        "subtasks (objects with a title)."
    ),
    "quick_capture": "Capture a thought straight into the Inbox for later processing.",
    "update_task": (
        "Update task fields. Only the fields you pass are changed; pass null or list "
        "a field in clearFields to clear description, contextId, energyLevel, "
        "estimatedMinutes or dueDate."
    ),
    "delete_task": "Permanently delete a task.",
    "complete_task": "Mark a task as completed, or reopen it with completed=false.",
    "move_task": "Move a task to another GTD category.",
    "add_subtask": "Append a step to a multi-step task.",
    "complete_subtask": "Mark a subtask as completed, or reopen it with completed=false.",
    "remove_subtask": "Remove a subtask.",
    "mark_reviewed": "Record that a task was looked at during the weekly review.",
    "clear_completed_tasks": "Delete all completed tasks, optionally only in one category.",
    # Context tools
    "list_contexts": "List GTD contexts (e.g. @home, @office, @phone), ordered by name.",
    "create_context": "Create a new context. Names must be unique.",
    "update_context": (
        "Update a context. Only the fields you pass are changed; pass null or list "
        "a field in clearFields to clear description, color or icon."
    ),
    "delete_context": "Delete a context. Tasks using it keep no context.",
    # Query tools
    "get_inbox": "Get unprocessed Inbox items.",
    "get_today": "Get pending tasks due today.",
    "get_overdue": "Get pending tasks due before today.",
    "get_quick_actions": "Get pending 2-minute quick actions (default limit 20).",
    "get_next_actions": 'Get pending tasks in "Próximas acciones", optionally for one context.',
    "get_by_context": "Get tasks assigned to a context.",
    "search_tasks": "Search task titles and descriptions (case-insensitive).",
    "get_summary": "Get dashboard counts: per category, overdue, due today, quick actions.",
    "get_weekly_review": (
        "Get the weekly review checklist: overdue, waiting-for and stale actions."
    ),
}


class CatalogTool(Tool):
    """
    A tool that hands the caller's arguments to the catalog untouched.

    Arguments are not validated here: an explicit null must reach the catalog
    as null, and type errors must come back as the catalog's structured
    validation payload.
    """

    execute: Callable[[str, Any], Awaitable[dict[str, Any]]]

    async def run(self, arguments: dict[str, Any]) -> ToolResult:
        payload = await self.execute(self.name, arguments)
        return ToolResult(structured_content=payload)


def create_mcp_server(
    catalog: ToolCatalog, name: str = DEFAULT_MCP_SERVER_NAME
) -> FastMCP:
    """
    Create a FastMCP server exposing every tool of a catalog.

    Input schemas are generated from the tool input models, so parameters use
    the camelCase names of the wire protocol.

    Args:
        catalog: Tool catalog bound to the acting identity
        name: Server name reported to clients

    Returns:
        Configured FastMCP server
    """
    # Schema checks stay with the catalog so failures keep their structured payload
    mcp = FastMCP(name, instructions=INSTRUCTIONS, strict_input_validation=False)

    for tool_name, schema in TOOL_SCHEMAS.items():
        mcp.add_tool(
            CatalogTool(
                name=tool_name,
                description=TOOL_DESCRIPTIONS[tool_name],
                parameters=schema.model_json_schema(by_alias=True),
                execute=catalog.execute,
            )
        )

    logger.debug(f"MCP server {name} created for user {catalog.user_id}")
    return mcp
