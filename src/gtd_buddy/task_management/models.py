"""Data models for GTD tasks and contexts."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .interfaces import Document

logger = logging.getLogger(__name__)


class GTDCategory(str, Enum):
    """GTD category enumeration (stored labels)."""

    INBOX = "Inbox"
    NEXT_ACTIONS = "Próximas acciones"
    MULTI_STEP = "Multitarea"
    WAITING = "A la espera"
    SOMEDAY = "Algún día"


class TaskPriority(str, Enum):
    """Task priority enumeration (stored labels)."""

    LOW = "baja"
    MEDIUM = "media"
    HIGH = "alta"


class ContextStatus(str, Enum):
    """Context status enumeration."""

    ACTIVE = "active"
    INACTIVE = "inactive"


CATEGORY_ALIASES: dict[str, GTDCategory] = {
    "inbox": GTDCategory.INBOX,
    "nextactions": GTDCategory.NEXT_ACTIONS,
    "next_actions": GTDCategory.NEXT_ACTIONS,
    "multistep": GTDCategory.MULTI_STEP,
    "multi_step": GTDCategory.MULTI_STEP,
    "waiting": GTDCategory.WAITING,
    "someday": GTDCategory.SOMEDAY,
}

PRIORITY_ALIASES: dict[str, TaskPriority] = {
    "low": TaskPriority.LOW,
    "medium": TaskPriority.MEDIUM,
    "high": TaskPriority.HIGH,
}

# The web app stores energy as a label; the tool server uses 1-5.
ENERGY_LABELS: dict[str, int] = {
    "baja": 1,
    "low": 1,
    "media": 3,
    "medium": 3,
    "alta": 5,
    "high": 5,
}


def parse_category(value: str) -> GTDCategory:
    """
    Resolve a category label or alias.

    Raises:
        ValueError: If the value is not a known category
    """
    try:
        return GTDCategory(value)
    except ValueError:
        alias = CATEGORY_ALIASES.get(value.strip().lower())
        if alias is None:
            raise
        return alias


def parse_priority(value: str) -> TaskPriority:
    """
    Resolve a priority label or English alias.

    Raises:
        ValueError: If the value is not a known priority
    """
    try:
        return TaskPriority(value)
    except ValueError:
        alias = PRIORITY_ALIASES.get(value.strip().lower())
        if alias is None:
            raise
        return alias


def energy_level_from_value(value: Any) -> int | None:
    """Map a stored energy value (int or legacy label) to 1-5, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        return ENERGY_LABELS.get(value.strip().lower())
    return None


def isoformat(value: datetime | None) -> str | None:
    """Render an instant as an ISO-8601 string."""
    return value.isoformat() if value else None


def _as_datetime(value: Any) -> datetime | None:
    return value if isinstance(value, datetime) else None


@dataclass
class Subtask:
    """A step of a multi-step task."""

    id: str
    title: str
    completed: bool = False
    completed_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subtask":
        completed = bool(data.get("completed", False))
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title", "")),
            completed=completed,
            completed_at=_as_datetime(data.get("completedAt")) if completed else None,
        )

    def to_document(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "completed": self.completed,
        }
        if self.completed and self.completed_at:
            data["completedAt"] = self.completed_at
        return data

    def to_response(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "completed": self.completed,
            "completedAt": isoformat(self.completed_at),
        }


@dataclass
class Task:
    """Represents a GTD task."""

    id: str
    title: str
    user_id: str
    category: GTDCategory = GTDCategory.INBOX
    priority: TaskPriority = TaskPriority.MEDIUM
    description: str = ""
    completed: bool = False
    is_quick_action: bool = False
    context_id: str | None = None
    energy_level: int | None = None
    estimated_minutes: int | None = None
    due_date: datetime | None = None
    completed_at: datetime | None = None
    last_reviewed: datetime | None = None
    subtasks: list[Subtask] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return not self.completed

    @classmethod
    def from_document(cls, document: Document) -> "Task":
        """
        Build a Task from a store document.

        Documents written by other clients may omit fields or carry legacy
        values; those are mapped to explicit defaults here.

        Args:
            document: Store document

        Returns:
            Task object
        """
        data = document.data

        try:
            category = parse_category(str(data.get("category", GTDCategory.INBOX.value)))
        except ValueError:
            logger.warning(
                f"Task {document.id} has unknown category {data.get('category')!r}, "
                "treating as Inbox"
            )
            category = GTDCategory.INBOX

        try:
            priority = parse_priority(str(data.get("priority", TaskPriority.MEDIUM.value)))
        except ValueError:
            priority = TaskPriority.MEDIUM

        completed = bool(data.get("completed", False))

        return cls(
            id=document.id,
            title=str(data.get("title", "")),
            user_id=str(data.get("userId", "")),
            category=category,
            priority=priority,
            description=data.get("description") or "",
            completed=completed,
            is_quick_action=bool(data.get("isQuickAction", False)),
            context_id=data.get("contextId") or None,
            energy_level=energy_level_from_value(data.get("energyLevel")),
            estimated_minutes=data.get("estimatedMinutes"),
            due_date=_as_datetime(data.get("dueDate")),
            completed_at=_as_datetime(data.get("completedAt")) if completed else None,
            last_reviewed=_as_datetime(data.get("lastReviewed")),
            subtasks=[
                Subtask.from_dict(item)
                for item in data.get("subtasks") or []
                if isinstance(item, dict)
            ],
            created_at=_as_datetime(data.get("createdAt")),
            updated_at=_as_datetime(data.get("updatedAt")),
        )

    def to_response(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary for tool output."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "priority": self.priority.value,
            "completed": self.completed,
            "completedAt": isoformat(self.completed_at),
            "contextId": self.context_id,
            "energyLevel": self.energy_level,
            "estimatedMinutes": self.estimated_minutes,
            "isQuickAction": self.is_quick_action,
            "dueDate": isoformat(self.due_date),
            "lastReviewed": isoformat(self.last_reviewed),
            "subtasks": [subtask.to_response() for subtask in self.subtasks],
            "userId": self.user_id,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


@dataclass
class Context:
    """A situational tag (place, tool, person) used to filter tasks."""

    id: str
    name: str
    user_id: str
    description: str | None = None
    color: str | None = None
    icon: str | None = None
    status: ContextStatus = ContextStatus.ACTIVE
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_document(cls, document: Document) -> "Context":
        data = document.data
        try:
            status = ContextStatus(data.get("status", ContextStatus.ACTIVE.value))
        except ValueError:
            status = ContextStatus.ACTIVE
        return cls(
            id=document.id,
            name=str(data.get("name", "")),
            user_id=str(data.get("userId", "")),
            description=data.get("description") or None,
            color=data.get("color") or None,
            icon=data.get("icon") or None,
            status=status,
            created_at=_as_datetime(data.get("createdAt")),
            updated_at=_as_datetime(data.get("updatedAt")),
        )

    def to_response(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "icon": self.icon,
            "status": self.status.value,
            "userId": self.user_id,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
