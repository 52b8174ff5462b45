"""Tool catalog: every GTD operation, bound to one acting identity."""

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, tzinfo
from typing import Any

from .config import CONTEXTS_COLLECTION, DEFAULT_SEARCH_SCAN_LIMIT, TASKS_COLLECTION
from .exceptions import (
    ConflictError,
    GTDBuddyError,
    NotFoundError,
    OwnershipError,
    StoreError,
    StoreTransientError,
    ValidationError,
)
from .interfaces import SERVER_TIMESTAMP, DocumentStore, OrderBy, QueryFilter
from .models import Context, GTDCategory, Subtask, Task, TaskPriority
from .queries import build_summary, build_weekly_review, day_bounds, matches_search
from .schemas import (
    AddSubtaskInput,
    ByContextInput,
    ClearCompletedInput,
    CompleteSubtaskInput,
    CompleteTaskInput,
    ContextIdInput,
    CreateContextInput,
    CreateTaskInput,
    EmptyInput,
    LimitInput,
    ListContextsInput,
    ListTasksInput,
    MoveTaskInput,
    NextActionsInput,
    QuickActionsInput,
    QuickCaptureInput,
    SearchTasksInput,
    SubtaskIdInput,
    TaskIdInput,
    UpdateContextInput,
    UpdateTaskInput,
    validate_tool_input,
)

logger = logging.getLogger(__name__)

# Input field name -> stored document key
TASK_FIELDS = {
    "title": "title",
    "description": "description",
    "category": "category",
    "priority": "priority",
    "context_id": "contextId",
    "energy_level": "energyLevel",
    "estimated_minutes": "estimatedMinutes",
    "due_date": "dueDate",
    "is_quick_action": "isQuickAction",
}
CONTEXT_FIELDS = {
    "name": "name",
    "description": "description",
    "color": "color",
    "icon": "icon",
    "status": "status",
}

TRANSIENT_ERROR_MESSAGE = "The task store is temporarily unavailable, please retry"
INTERNAL_ERROR_MESSAGE = "An internal error occurred"

NEWEST_FIRST = [OrderBy("createdAt", descending=True)]
DUE_FIRST = [OrderBy("dueDate")]


def error_payload(
    code: str, message: str, fields: list[dict[str, str]] | None = None
) -> dict[str, Any]:
    """Build the structured failure payload returned by every tool."""
    error: dict[str, Any] = {"code": code, "message": message}
    if fields:
        error["fields"] = fields
    return {"success": False, "error": error}


class ToolCatalog:
    """
    The fixed set of GTD tools, implemented against a document store.

    The acting identity is fixed at construction. It is written into every
    new document and added to every query, and every id-based operation
    checks ownership before touching the store.
    """

    def __init__(
        self,
        store: DocumentStore,
        user_id: str,
        clock: Callable[[], datetime] | None = None,
        timezone: tzinfo | None = None,
    ) -> None:
        """
        Initialize the catalog.

        Args:
            store: Document store for tasks and contexts
            user_id: Acting identity for every call
            clock: Source of the current instant (defaults to UTC now)
            timezone: Timezone defining "today" (defaults to the system timezone)
        """
        self._store = store
        self._user_id = user_id
        self._clock = clock or (lambda: datetime.now(UTC))
        self._timezone = timezone
        self._handlers: dict[str, Callable[[Any], Awaitable[dict[str, Any]]]] = {
            "list_tasks": self.list_tasks,
            "create_task": self.create_task,
            "quick_capture": self.quick_capture,
            "update_task": self.update_task,
            "delete_task": self.delete_task,
            "complete_task": self.complete_task,
            "move_task": self.move_task,
            "add_subtask": self.add_subtask,
            "complete_subtask": self.complete_subtask,
            "remove_subtask": self.remove_subtask,
            "mark_reviewed": self.mark_reviewed,
            "clear_completed_tasks": self.clear_completed_tasks,
            "list_contexts": self.list_contexts,
            "create_context": self.create_context,
            "update_context": self.update_context,
            "delete_context": self.delete_context,
            "get_inbox": self.get_inbox,
            "get_today": self.get_today,
            "get_overdue": self.get_overdue,
            "get_quick_actions": self.get_quick_actions,
            "get_next_actions": self.get_next_actions,
            "get_by_context": self.get_by_context,
            "search_tasks": self.search_tasks,
            "get_summary": self.get_summary,
            "get_weekly_review": self.get_weekly_review,
        }

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    async def execute(self, tool_name: str, arguments: Any = None) -> dict[str, Any]:
        """
        Validate arguments and run a tool.

        Args:
            tool_name: Name of the tool
            arguments: Raw argument object

        Returns:
            ``{"success": True, ...}`` or a structured error payload
        """
        try:
            params = validate_tool_input(tool_name, arguments, self._timezone)
            result = await self._handlers[tool_name](params)
        except ValidationError as e:
            logger.warning(f"Tool {tool_name} rejected input: {e}")
            return error_payload(e.code, str(e), [error.to_dict() for error in e.errors])
        except OwnershipError as e:
            logger.warning(f"Tool {tool_name} denied, entity owned by another identity: {e}")
            return error_payload(e.code, str(e))
        except (NotFoundError, ConflictError) as e:
            logger.warning(f"Tool {tool_name} failed: {e}")
            return error_payload(e.code, str(e))
        except StoreTransientError as e:
            logger.error(f"Tool {tool_name} hit a transient store failure: {e}")
            return error_payload(e.code, TRANSIENT_ERROR_MESSAGE)
        except StoreError:
            logger.exception(f"Tool {tool_name} failed in the store")
            return error_payload("internal_error", INTERNAL_ERROR_MESSAGE)
        except GTDBuddyError as e:
            logger.warning(f"Tool {tool_name} failed: {e}")
            return error_payload(e.code, str(e))
        except Exception:
            logger.exception(f"Unexpected error in tool {tool_name}")
            return error_payload("internal_error", INTERNAL_ERROR_MESSAGE)

        return {"success": True, **result}

    # Store helpers

    def _owned(self) -> QueryFilter:
        return QueryFilter("userId", "==", self._user_id)

    async def _get_owned_task(self, task_id: str) -> Task:
        """
        Fetch a task, checking it belongs to the acting identity.

        Raises:
            NotFoundError: If the task does not exist
            OwnershipError: If the task belongs to another identity
        """
        document = await self._store.get(TASKS_COLLECTION, task_id)
        if document is None:
            raise NotFoundError(f"Task {task_id} not found")
        if document.data.get("userId") != self._user_id:
            raise OwnershipError(f"Task {task_id} not found")
        return Task.from_document(document)

    async def _get_owned_context(self, context_id: str) -> Context:
        document = await self._store.get(CONTEXTS_COLLECTION, context_id)
        if document is None:
            raise NotFoundError(f"Context {context_id} not found")
        if document.data.get("userId") != self._user_id:
            raise OwnershipError(f"Context {context_id} not found")
        return Context.from_document(document)

    async def _query_tasks(
        self,
        filters: list[QueryFilter],
        order_by: list[OrderBy] | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        documents = await self._store.query(
            TASKS_COLLECTION, [self._owned(), *filters], order_by, limit
        )
        return [Task.from_document(document) for document in documents]

    async def _update_task(self, task_id: str, partial: dict[str, Any]) -> Task:
        partial["updatedAt"] = SERVER_TIMESTAMP
        await self._store.update(TASKS_COLLECTION, task_id, partial)
        return await self._get_owned_task(task_id)

    def _completion_changes(self, task: Task, completed: bool) -> dict[str, Any] | None:
        """
        Fields for a pending <-> completed transition.

        Returns None when the task is already in the requested state, so the
        existing completedAt is preserved.
        """
        if task.completed == completed:
            return None
        return {"completed": completed, "completedAt": self._clock() if completed else None}

    async def _create_task_document(self, data: dict[str, Any]) -> Task:
        data.update(
            {
                "completed": False,
                "userId": self._user_id,
                "createdAt": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
            }
        )
        task_id = await self._store.create(TASKS_COLLECTION, data)
        logger.info(f"Created task {task_id} in {data['category'].value}")
        return await self._get_owned_task(task_id)

    async def _ensure_unique_context_name(self, name: str, exclude_id: str | None = None) -> None:
        documents = await self._store.query(
            CONTEXTS_COLLECTION, [self._owned(), QueryFilter("name", "==", name)]
        )
        if any(document.id != exclude_id for document in documents):
            raise ConflictError(f'Context "{name}" already exists')

    # Task tools

    async def list_tasks(self, params: ListTasksInput) -> dict[str, Any]:
        filters = []
        if params.category is not None:
            filters.append(QueryFilter("category", "==", params.category))
        if params.context_id is not None:
            filters.append(QueryFilter("contextId", "==", params.context_id))
        if params.completed is not None:
            filters.append(QueryFilter("completed", "==", params.completed))

        tasks = await self._query_tasks(filters, NEWEST_FIRST, params.limit)
        return {"tasks": [task.to_response() for task in tasks], "count": len(tasks)}

    async def create_task(self, params: CreateTaskInput) -> dict[str, Any]:
        now = self._clock()
        task = await self._create_task_document(
            {
                "title": params.title,
                "description": params.description,
                "category": params.category,
                "priority": params.priority,
                "contextId": params.context_id,
                "energyLevel": params.energy_level,
                "estimatedMinutes": params.estimated_minutes,
                "dueDate": params.due_date,
                "isQuickAction": params.is_quick_action,
                "subtasks": [
                    Subtask(
                        id=uuid.uuid4().hex,
                        title=item.title,
                        completed=item.completed,
                        completed_at=now if item.completed else None,
                    ).to_document()
                    for item in params.subtasks
                ],
            }
        )
        return {
            "task": task.to_response(),
            "message": f'Task "{task.title}" created in {task.category.value}',
        }

    async def quick_capture(self, params: QuickCaptureInput) -> dict[str, Any]:
        task = await self._create_task_document(
            {
                "title": params.title,
                "description": params.description,
                "category": GTDCategory.INBOX,
                "priority": TaskPriority.MEDIUM,
                "isQuickAction": False,
                "subtasks": [],
            }
        )
        return {"task": task.to_response(), "message": f'Captured "{task.title}" in Inbox'}

    async def update_task(self, params: UpdateTaskInput) -> dict[str, Any]:
        task = await self._get_owned_task(params.task_id)
        changes = params.changes()

        partial = {
            TASK_FIELDS[name]: value for name, value in changes.items() if name in TASK_FIELDS
        }
        completed = changes.get("completed")
        if completed is not None:
            partial.update(self._completion_changes(task, completed) or {})

        if not partial:
            return {"task": task.to_response(), "updatedFields": [], "message": "No changes"}

        updated_fields = sorted(partial)
        updated = await self._update_task(task.id, partial)
        logger.info(f"Updated task {task.id} fields: {updated_fields}")
        return {
            "task": updated.to_response(),
            "updatedFields": updated_fields,
            "message": "Task updated",
        }

    async def delete_task(self, params: TaskIdInput) -> dict[str, Any]:
        task = await self._get_owned_task(params.task_id)
        await self._store.delete(TASKS_COLLECTION, task.id)
        logger.info(f"Deleted task {task.id}")
        return {"taskId": task.id, "message": f'Task "{task.title}" deleted'}

    async def complete_task(self, params: CompleteTaskInput) -> dict[str, Any]:
        task = await self._get_owned_task(params.task_id)
        changes = self._completion_changes(task, params.completed)
        if changes is None:
            state = "completed" if task.completed else "pending"
            return {
                "task": task.to_response(),
                "changed": False,
                "message": f"Task already {state}",
            }

        updated = await self._update_task(task.id, changes)
        logger.info(f"Task {task.id} completed={params.completed}")
        return {
            "task": updated.to_response(),
            "changed": True,
            "message": "Task completed" if params.completed else "Task reopened",
        }

    async def move_task(self, params: MoveTaskInput) -> dict[str, Any]:
        task = await self._get_owned_task(params.task_id)
        previous = task.category
        if previous == params.category:
            return {
                "task": task.to_response(),
                "previousCategory": previous.value,
                "message": f'Task already in "{previous.value}"',
            }

        updated = await self._update_task(task.id, {"category": params.category})
        return {
            "task": updated.to_response(),
            "previousCategory": previous.value,
            "message": f'Task moved from "{previous.value}" to "{params.category.value}"',
        }

    async def add_subtask(self, params: AddSubtaskInput) -> dict[str, Any]:
        task = await self._get_owned_task(params.task_id)
        subtask = Subtask(id=uuid.uuid4().hex, title=params.title)
        subtasks = [*task.subtasks, subtask]
        updated = await self._update_task(
            task.id, {"subtasks": [item.to_document() for item in subtasks]}
        )
        return {
            "task": updated.to_response(),
            "subtask": subtask.to_response(),
            "message": f'Subtask "{subtask.title}" added',
        }

    def _find_subtask(self, task: Task, subtask_id: str) -> Subtask:
        for subtask in task.subtasks:
            if subtask.id == subtask_id:
                return subtask
        raise NotFoundError(f"Subtask {subtask_id} not found in task {task.id}")

    async def complete_subtask(self, params: CompleteSubtaskInput) -> dict[str, Any]:
        task = await self._get_owned_task(params.task_id)
        subtask = self._find_subtask(task, params.subtask_id)
        if subtask.completed != params.completed:
            subtask.completed = params.completed
            subtask.completed_at = self._clock() if params.completed else None
            task = await self._update_task(
                task.id, {"subtasks": [item.to_document() for item in task.subtasks]}
            )
        return {
            "task": task.to_response(),
            "message": "Subtask completed" if params.completed else "Subtask reopened",
        }

    async def remove_subtask(self, params: SubtaskIdInput) -> dict[str, Any]:
        task = await self._get_owned_task(params.task_id)
        subtask = self._find_subtask(task, params.subtask_id)
        remaining = [item for item in task.subtasks if item.id != subtask.id]
        updated = await self._update_task(
            task.id, {"subtasks": [item.to_document() for item in remaining]}
        )
        return {"task": updated.to_response(), "message": f'Subtask "{subtask.title}" removed'}

    async def mark_reviewed(self, params: TaskIdInput) -> dict[str, Any]:
        task = await self._get_owned_task(params.task_id)
        updated = await self._update_task(task.id, {"lastReviewed": self._clock()})
        return {"task": updated.to_response(), "message": "Task marked as reviewed"}

    async def clear_completed_tasks(self, params: ClearCompletedInput) -> dict[str, Any]:
        filters = [QueryFilter("completed", "==", True)]
        if params.category is not None:
            filters.append(QueryFilter("category", "==", params.category))

        documents = await self._store.query(TASKS_COLLECTION, [self._owned(), *filters])
        deleted = await self._store.batch_delete(
            TASKS_COLLECTION, [document.id for document in documents]
        )
        logger.info(f"Cleared {deleted} completed task(s)")
        return {"deleted": deleted, "message": f"Removed {deleted} completed task(s)"}

    # Context tools

    async def list_contexts(self, params: ListContextsInput) -> dict[str, Any]:
        filters = [self._owned()]
        if params.status is not None:
            filters.append(QueryFilter("status", "==", params.status))
        documents = await self._store.query(CONTEXTS_COLLECTION, filters, [OrderBy("name")])
        contexts = [Context.from_document(document) for document in documents]
        return {
            "contexts": [context.to_response() for context in contexts],
            "count": len(contexts),
        }

    async def create_context(self, params: CreateContextInput) -> dict[str, Any]:
        await self._ensure_unique_context_name(params.name)
        context_id = await self._store.create(
            CONTEXTS_COLLECTION,
            {
                "name": params.name,
                "description": params.description,
                "color": params.color,
                "icon": params.icon,
                "status": params.status,
                "userId": self._user_id,
                "createdAt": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
            },
        )
        logger.info(f"Created context {context_id}: {params.name}")
        context = await self._get_owned_context(context_id)
        return {"context": context.to_response(), "message": f'Context "{context.name}" created'}

    async def update_context(self, params: UpdateContextInput) -> dict[str, Any]:
        context = await self._get_owned_context(params.context_id)
        changes = params.changes()

        name = changes.get("name")
        if name is not None and name != context.name:
            await self._ensure_unique_context_name(name, exclude_id=context.id)

        partial = {CONTEXT_FIELDS[key]: value for key, value in changes.items()}
        if not partial:
            return {"context": context.to_response(), "message": "No changes"}

        partial["updatedAt"] = SERVER_TIMESTAMP
        await self._store.update(CONTEXTS_COLLECTION, context.id, partial)
        updated = await self._get_owned_context(context.id)
        return {"context": updated.to_response(), "message": "Context updated"}

    async def delete_context(self, params: ContextIdInput) -> dict[str, Any]:
        context = await self._get_owned_context(params.context_id)
        # Referencing tasks keep their contextId; queries treat it as no context
        referencing = await self._store.query(
            TASKS_COLLECTION, [self._owned(), QueryFilter("contextId", "==", context.id)]
        )
        await self._store.delete(CONTEXTS_COLLECTION, context.id)
        logger.info(f"Deleted context {context.id} ({len(referencing)} task(s) referenced it)")

        result: dict[str, Any] = {
            "contextId": context.id,
            "message": f'Context "{context.name}" deleted',
            "affectedTasks": len(referencing),
        }
        if referencing:
            result["warning"] = (
                f"{len(referencing)} task(s) were using this context "
                "and now have no context assigned"
            )
        return result

    # Query tools

    async def get_inbox(self, params: LimitInput) -> dict[str, Any]:
        tasks = await self._query_tasks(
            [
                QueryFilter("category", "==", GTDCategory.INBOX),
                QueryFilter("completed", "==", False),
            ],
            NEWEST_FIRST,
            params.limit,
        )
        return {
            "inbox": [task.to_response() for task in tasks],
            "count": len(tasks),
            "message": (
                "Inbox is empty! Great job processing your tasks."
                if not tasks
                else f"You have {len(tasks)} item(s) to process in your Inbox."
            ),
        }

    async def get_today(self, params: LimitInput) -> dict[str, Any]:
        start, end = day_bounds(self._clock(), self._timezone)
        tasks = await self._query_tasks(
            [
                QueryFilter("dueDate", ">=", start),
                QueryFilter("dueDate", "<", end),
                QueryFilter("completed", "==", False),
            ],
            DUE_FIRST,
            params.limit,
        )
        return {
            "today": [task.to_response() for task in tasks],
            "count": len(tasks),
            "date": start.date().isoformat(),
            "message": (
                "No tasks due today."
                if not tasks
                else f"You have {len(tasks)} task(s) due today."
            ),
        }

    async def get_overdue(self, params: LimitInput) -> dict[str, Any]:
        start, _ = day_bounds(self._clock(), self._timezone)
        tasks = await self._query_tasks(
            [QueryFilter("dueDate", "<", start), QueryFilter("completed", "==", False)],
            DUE_FIRST,
            params.limit,
        )
        return {
            "overdue": [task.to_response() for task in tasks],
            "count": len(tasks),
            "message": (
                "No overdue tasks. You're on track!"
                if not tasks
                else f"You have {len(tasks)} overdue task(s) that need attention!"
            ),
        }

    async def get_quick_actions(self, params: QuickActionsInput) -> dict[str, Any]:
        tasks = await self._query_tasks(
            [QueryFilter("isQuickAction", "==", True), QueryFilter("completed", "==", False)],
            NEWEST_FIRST,
            params.limit,
        )
        return {
            "quickActions": [task.to_response() for task in tasks],
            "count": len(tasks),
            "tip": (
                "Quick actions take less than 2 minutes. Do them now!"
                if tasks
                else "No quick actions pending."
            ),
        }

    async def get_next_actions(self, params: NextActionsInput) -> dict[str, Any]:
        filters = [
            QueryFilter("category", "==", GTDCategory.NEXT_ACTIONS),
            QueryFilter("completed", "==", False),
        ]
        if params.context_id is not None:
            filters.append(QueryFilter("contextId", "==", params.context_id))

        tasks = await self._query_tasks(filters, NEWEST_FIRST, params.limit)
        return {
            "nextActions": [task.to_response() for task in tasks],
            "count": len(tasks),
            "message": (
                "No next actions defined. Process your Inbox!"
                if not tasks
                else f"You have {len(tasks)} next action(s) ready to do."
            ),
        }

    async def get_by_context(self, params: ByContextInput) -> dict[str, Any]:
        filters = [QueryFilter("contextId", "==", params.context_id)]
        if not params.include_completed:
            filters.append(QueryFilter("completed", "==", False))
        tasks = await self._query_tasks(filters, NEWEST_FIRST, params.limit)

        # A deleted or foreign context resolves to "no context", not an error
        try:
            context: Context | None = await self._get_owned_context(params.context_id)
        except NotFoundError:
            context = None

        return {
            "context": {
                "id": params.context_id,
                "name": context.name if context else None,
                "exists": context is not None,
            },
            "tasks": [task.to_response() for task in tasks],
            "count": len(tasks),
        }

    async def search_tasks(self, params: SearchTasksInput) -> dict[str, Any]:
        filters = []
        if not params.include_completed:
            filters.append(QueryFilter("completed", "==", False))

        # No full-text index: scan a bounded window and match in memory
        candidates = await self._query_tasks(filters, NEWEST_FIRST, DEFAULT_SEARCH_SCAN_LIMIT)
        results = [task for task in candidates if matches_search(task, params.query)]
        results = results[: params.limit]
        return {
            "query": params.query,
            "results": [task.to_response() for task in results],
            "count": len(results),
        }

    async def get_summary(self, params: EmptyInput) -> dict[str, Any]:
        pending = await self._query_tasks([QueryFilter("completed", "==", False)])
        return build_summary(pending, self._clock(), self._timezone)

    async def get_weekly_review(self, params: EmptyInput) -> dict[str, Any]:
        tasks = await self._query_tasks([], NEWEST_FIRST)
        return build_weekly_review(tasks, self._clock(), self._timezone)
