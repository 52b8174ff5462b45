"""Input schemas and validation for every tool in the catalog."""

from datetime import date, datetime, time, tzinfo
from typing import Annotated, Any, ClassVar

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationInfo,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .config import (
    DEFAULT_LIST_LIMIT,
    DEFAULT_QUICK_ACTIONS_LIMIT,
    DEFAULT_SEARCH_LIMIT,
    MAX_CONTEXT_DESCRIPTION_LENGTH,
    MAX_CONTEXT_NAME_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    MAX_ENERGY_LEVEL,
    MAX_ESTIMATED_MINUTES,
    MAX_LIST_LIMIT,
    MAX_TITLE_LENGTH,
    MIN_ENERGY_LEVEL,
    MIN_ESTIMATED_MINUTES,
)
from .exceptions import FieldError, NotFoundError, ValidationError
from .models import (
    ENERGY_LABELS,
    ContextStatus,
    GTDCategory,
    TaskPriority,
    parse_category,
    parse_priority,
)


def _non_empty(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


def _identifier(value: str) -> str:
    value = _non_empty(value)
    if "/" in value:
        raise ValueError("must not contain '/'")
    return value


def _category(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return parse_category(value)
        except ValueError:
            allowed = ", ".join(c.value for c in GTDCategory)
            raise ValueError(f"must be one of: {allowed}") from None
    return value


def _priority(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return parse_priority(value)
        except ValueError:
            allowed = ", ".join(p.value for p in TaskPriority)
            raise ValueError(f"must be one of: {allowed}") from None
    return value


def _energy(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() in ENERGY_LABELS:
        return ENERGY_LABELS[value.strip().lower()]
    return value


def _instant(value: Any, info: ValidationInfo) -> Any:
    """Parse ``YYYY-MM-DD`` or ISO-8601 date-times; naive values use the server timezone."""
    timezone: tzinfo | None = (info.context or {}).get("timezone")
    if timezone is None:
        timezone = datetime.now().astimezone().tzinfo

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        try:
            if len(text) == 10:
                parsed = datetime.combine(date.fromisoformat(text), time.min)
            else:
                parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError("must be an ISO-8601 date (YYYY-MM-DD) or date-time") from None
    else:
        return value

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone)
    return parsed


NonEmptyStr = Annotated[str, AfterValidator(_non_empty)]
Identifier = Annotated[str, AfterValidator(_identifier)]
Title = Annotated[str, Field(max_length=MAX_TITLE_LENGTH), AfterValidator(_non_empty)]
Description = Annotated[str, Field(max_length=MAX_DESCRIPTION_LENGTH)]
Category = Annotated[GTDCategory, BeforeValidator(_category)]
Priority = Annotated[TaskPriority, BeforeValidator(_priority)]
EnergyLevel = Annotated[
    int, BeforeValidator(_energy), Field(ge=MIN_ENERGY_LEVEL, le=MAX_ENERGY_LEVEL)
]
EstimatedMinutes = Annotated[int, Field(ge=MIN_ESTIMATED_MINUTES, le=MAX_ESTIMATED_MINUTES)]
Instant = Annotated[datetime, BeforeValidator(_instant)]
Limit = Annotated[int, Field(ge=1, le=MAX_LIST_LIMIT)]
ContextName = Annotated[
    str, Field(max_length=MAX_CONTEXT_NAME_LENGTH), AfterValidator(_non_empty)
]
ContextDescription = Annotated[str, Field(max_length=MAX_CONTEXT_DESCRIPTION_LENGTH)]
ShortText = Annotated[str, Field(max_length=64)]


class ToolInput(BaseModel):
    """Base for tool inputs: camelCase on the wire, unknown fields rejected."""

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def check(self) -> list[FieldError]:
        """Cross-field checks that run after type validation."""
        return []


class PartialUpdateInput(ToolInput):
    """
    Input for partial updates.

    A field missing from the input is left untouched. A field explicitly set
    to null, or named in ``clearFields``, is cleared.
    """

    ID_FIELDS: ClassVar[frozenset[str]] = frozenset()
    CLEARABLE: ClassVar[frozenset[str]] = frozenset()

    clear_fields: list[str] = Field(default_factory=list)

    def _clear_targets(self) -> tuple[set[str], list[FieldError]]:
        by_alias = {to_camel(name): name for name in self.CLEARABLE}
        targets: set[str] = set()
        errors = []
        for index, requested in enumerate(self.clear_fields):
            name = by_alias.get(requested) or (requested if requested in self.CLEARABLE else None)
            if name is None:
                allowed = ", ".join(sorted(by_alias))
                errors.append(
                    FieldError(f"clearFields.{index}", f"must be one of: {allowed}")
                )
            else:
                targets.add(name)
        return targets, errors

    def check(self) -> list[FieldError]:
        targets, errors = self._clear_targets()
        provided = self.model_fields_set - self.ID_FIELDS - {"clear_fields"}
        for name in sorted(provided):
            value = getattr(self, name)
            if value is None and name not in self.CLEARABLE:
                errors.append(FieldError(to_camel(name), "cannot be cleared"))
            elif value is not None and name in targets:
                errors.append(
                    FieldError(to_camel(name), "cannot be both set and listed in clearFields")
                )
        return errors

    def changes(self) -> dict[str, Any]:
        """Fields to write: provided values, with None meaning clear."""
        targets, _ = self._clear_targets()
        provided = self.model_fields_set - self.ID_FIELDS - {"clear_fields"}
        result = {name: getattr(self, name) for name in provided}
        for name in targets:
            result[name] = None
        return result


# Task tools


class SubtaskInput(ToolInput):
    title: Title
    completed: bool = False


class ListTasksInput(ToolInput):
    category: Category | None = None
    context_id: Identifier | None = None
    completed: bool | None = None
    limit: Limit = DEFAULT_LIST_LIMIT


class CreateTaskInput(ToolInput):
    title: Title
    description: Description = ""
    category: Category = GTDCategory.INBOX
    priority: Priority = TaskPriority.MEDIUM
    context_id: Identifier | None = None
    energy_level: EnergyLevel | None = None
    estimated_minutes: EstimatedMinutes | None = None
    due_date: Instant | None = None
    is_quick_action: bool = False
    subtasks: list[SubtaskInput] = Field(default_factory=list)


class QuickCaptureInput(ToolInput):
    title: Title
    description: Description = ""


class UpdateTaskInput(PartialUpdateInput):
    ID_FIELDS: ClassVar[frozenset[str]] = frozenset({"task_id"})
    CLEARABLE: ClassVar[frozenset[str]] = frozenset(
        {"description", "context_id", "energy_level", "estimated_minutes", "due_date"}
    )

    task_id: Identifier
    title: Title | None = None
    description: Description | None = None
    category: Category | None = None
    priority: Priority | None = None
    context_id: Identifier | None = None
    energy_level: EnergyLevel | None = None
    estimated_minutes: EstimatedMinutes | None = None
    due_date: Instant | None = None
    is_quick_action: bool | None = None
    completed: bool | None = None


class TaskIdInput(ToolInput):
    task_id: Identifier


class CompleteTaskInput(ToolInput):
    task_id: Identifier
    completed: bool = True


class MoveTaskInput(ToolInput):
    task_id: Identifier
    category: Category


class AddSubtaskInput(ToolInput):
    task_id: Identifier
    title: Title


class CompleteSubtaskInput(ToolInput):
    task_id: Identifier
    subtask_id: Identifier
    completed: bool = True


class SubtaskIdInput(ToolInput):
    task_id: Identifier
    subtask_id: Identifier


class ClearCompletedInput(ToolInput):
    category: Category | None = None


# Context tools


class ListContextsInput(ToolInput):
    status: ContextStatus | None = None


class CreateContextInput(ToolInput):
    name: ContextName
    description: ContextDescription | None = None
    color: ShortText | None = None
    icon: ShortText | None = None
    status: ContextStatus = ContextStatus.ACTIVE


class UpdateContextInput(PartialUpdateInput):
    ID_FIELDS: ClassVar[frozenset[str]] = frozenset({"context_id"})
    CLEARABLE: ClassVar[frozenset[str]] = frozenset({"description", "color", "icon"})

    context_id: Identifier
    name: ContextName | None = None
    description: ContextDescription | None = None
    color: ShortText | None = None
    icon: ShortText | None = None
    status: ContextStatus | None = None


class ContextIdInput(ToolInput):
    context_id: Identifier


# Query tools


class LimitInput(ToolInput):
    limit: Limit = DEFAULT_LIST_LIMIT


class QuickActionsInput(ToolInput):
    limit: Limit = DEFAULT_QUICK_ACTIONS_LIMIT


class NextActionsInput(ToolInput):
    context_id: Identifier | None = None
    limit: Limit = DEFAULT_LIST_LIMIT


class ByContextInput(ToolInput):
    context_id: Identifier
    include_completed: bool = False
    limit: Limit = DEFAULT_LIST_LIMIT


class SearchTasksInput(ToolInput):
    query: NonEmptyStr
    include_completed: bool = False
    limit: Limit = DEFAULT_SEARCH_LIMIT


class EmptyInput(ToolInput):
    pass


TOOL_SCHEMAS: dict[str, type[ToolInput]] = {
    "list_tasks": ListTasksInput,
    "create_task": CreateTaskInput,
    "quick_capture": QuickCaptureInput,
    "update_task": UpdateTaskInput,
    "delete_task": TaskIdInput,
    "complete_task": CompleteTaskInput,
    "move_task": MoveTaskInput,
    "add_subtask": AddSubtaskInput,
    "complete_subtask": CompleteSubtaskInput,
    "remove_subtask": SubtaskIdInput,
    "mark_reviewed": TaskIdInput,
    "clear_completed_tasks": ClearCompletedInput,
    "list_contexts": ListContextsInput,
    "create_context": CreateContextInput,
    "update_context": UpdateContextInput,
    "delete_context": ContextIdInput,
    "get_inbox": LimitInput,
    "get_today": LimitInput,
    "get_overdue": LimitInput,
    "get_quick_actions": QuickActionsInput,
    "get_next_actions": NextActionsInput,
    "get_by_context": ByContextInput,
    "search_tasks": SearchTasksInput,
    "get_summary": EmptyInput,
    "get_weekly_review": EmptyInput,
}


def _reason(message: str) -> str:
    prefix = "Value error, "
    return message[len(prefix) :] if message.startswith(prefix) else message


def validate_tool_input(
    tool_name: str, raw: Any, timezone: tzinfo | None = None
) -> ToolInput:
    """
    Validate raw tool arguments against the tool's schema.

    Args:
        tool_name: Name of the tool in the catalog
        raw: Raw argument object (a mapping, or None for no arguments)
        timezone: Timezone applied to naive dates

    Returns:
        Typed, normalized input model

    Raises:
        NotFoundError: If the tool name is unknown
        ValidationError: Listing every violated field constraint
    """
    schema = TOOL_SCHEMAS.get(tool_name)
    if schema is None:
        raise NotFoundError(f"Unknown tool: {tool_name}")

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationError([FieldError("arguments", "must be an object")])

    try:
        model = schema.model_validate(raw, context={"timezone": timezone})
    except PydanticValidationError as e:
        raise ValidationError(
            [
                FieldError(
                    ".".join(str(part) for part in error["loc"]) or "arguments",
                    _reason(error["msg"]),
                )
                for error in e.errors()
            ]
        ) from e

    errors = model.check()
    if errors:
        raise ValidationError(errors)
    return model
