"""Pure helpers for GTD date windows, search and dashboard aggregation."""

from datetime import datetime, time, timedelta, tzinfo
from typing import Any

from .config import INBOX_ALERT_THRESHOLD, WEEKLY_REVIEW_STALE_DAYS
from .models import GTDCategory, Task


def day_bounds(now: datetime, timezone: tzinfo | None = None) -> tuple[datetime, datetime]:
    """
    Compute the current local day as a half-open interval.

    Args:
        now: Current instant (aware)
        timezone: Timezone defining "today" (defaults to the system timezone)

    Returns:
        Tuple of (start of today, start of tomorrow)
    """
    local = now.astimezone(timezone)
    zone = local.tzinfo
    start = datetime.combine(local.date(), time.min, tzinfo=zone)
    end = datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=zone)
    return start, end


def is_overdue(task: Task, start_of_day: datetime) -> bool:
    """A pending task whose due date is strictly before today."""
    return task.is_pending and task.due_date is not None and task.due_date < start_of_day


def is_due_today(task: Task, start_of_day: datetime, end_of_day: datetime) -> bool:
    return task.due_date is not None and start_of_day <= task.due_date < end_of_day


def matches_search(task: Task, query: str) -> bool:
    """Case-insensitive substring match against title and description."""
    needle = query.casefold()
    return needle in task.title.casefold() or needle in (task.description or "").casefold()


def count_by_category(tasks: list[Task]) -> dict[str, int]:
    counts = {category.value: 0 for category in GTDCategory}
    for task in tasks:
        counts[task.category.value] += 1
    return counts


def build_summary(
    pending_tasks: list[Task], now: datetime, timezone: tzinfo | None = None
) -> dict[str, Any]:
    """
    Aggregate dashboard counts from one scan of the identity's pending tasks.

    Args:
        pending_tasks: All incomplete tasks of the identity
        now: Current instant
        timezone: Timezone defining "today"

    Returns:
        Dictionary with ``summary`` counts, ``alerts`` and the local ``date``
    """
    start, end = day_bounds(now, timezone)
    by_category = count_by_category(pending_tasks)
    overdue = sum(1 for task in pending_tasks if is_overdue(task, start))
    due_today = sum(1 for task in pending_tasks if is_due_today(task, start, end))
    quick_actions = sum(1 for task in pending_tasks if task.is_quick_action)
    inbox = by_category[GTDCategory.INBOX.value]

    alerts = []
    if overdue > 0:
        alerts.append(f"{overdue} overdue task(s)!")
    if inbox > INBOX_ALERT_THRESHOLD:
        alerts.append(f"Inbox has {inbox} items - time to process!")
    if due_today > 0:
        alerts.append(f"{due_today} task(s) due today")

    return {
        "summary": {
            "total": len(pending_tasks),
            "byCategory": by_category,
            "overdue": overdue,
            "dueToday": due_today,
            "quickActions": quick_actions,
        },
        "alerts": alerts,
        "date": start.date().isoformat(),
    }


def build_weekly_review(
    tasks: list[Task], now: datetime, timezone: tzinfo | None = None
) -> dict[str, Any]:
    """
    Build the weekly review checklist from all of the identity's tasks.

    Next actions and projects count as stale when they have not been
    reviewed (or, failing that, updated) in the last week.
    """
    start, _ = day_bounds(now, timezone)
    week_ago = now - timedelta(days=WEEKLY_REVIEW_STALE_DAYS)

    pending = [task for task in tasks if task.is_pending]
    completed_this_week = [
        task
        for task in tasks
        if task.completed and task.completed_at is not None and task.completed_at >= week_ago
    ]

    def is_stale(task: Task) -> bool:
        reference = task.last_reviewed or task.updated_at or task.created_at
        return reference is None or reference < week_ago

    active_categories = (GTDCategory.NEXT_ACTIONS, GTDCategory.MULTI_STEP)
    stale = [
        task for task in pending if task.category in active_categories and is_stale(task)
    ]
    waiting = [task for task in pending if task.category == GTDCategory.WAITING]
    overdue = [task for task in pending if is_overdue(task, start)]
    inbox = sum(1 for task in pending if task.category == GTDCategory.INBOX)

    steps = []
    if inbox:
        steps.append(f"Process {inbox} Inbox item(s) to zero")
    if overdue:
        steps.append(f"Reschedule or finish {len(overdue)} overdue task(s)")
    if waiting:
        steps.append(f"Follow up on {len(waiting)} item(s) you are waiting for")
    if stale:
        steps.append(f"Review {len(stale)} action(s) untouched for a week")
    steps.append("Look through Algún día for anything to activate")

    return {
        "review": {
            "pendingByCategory": count_by_category(pending),
            "completedThisWeek": len(completed_this_week),
            "overdue": [task.to_response() for task in overdue],
            "waitingFor": [task.to_response() for task in waiting],
            "staleActions": [task.to_response() for task in stale],
        },
        "steps": steps,
        "date": start.date().isoformat(),
    }
