"""Translate function calls into task store operations."""

import asyncio
from collections.abc import Awaitable
from datetime import date
from typing import Any, Literal, TypeVar

from taskflow.models.task import Priority, Status, Task
from taskflow.models.turn import TurnContext
from taskflow.services.attachments import AttachmentResolver, ResolvedAttachments
from taskflow.services.persistence import GuardedWrite, PersistenceGuard
from taskflow.services.tasks import TaskStore
from taskflow.utils.dates import parse_due_date
from taskflow.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TaskFilter = Literal["all", "todo", "in_progress", "done", "overdue", "high", "medium", "low"]


def not_found(title_search: str) -> dict[str, Any]:
    return {"success": False, "error": f'No task found matching "{title_search}"'}


def task_result(write: GuardedWrite[Task], attachments: ResolvedAttachments) -> dict[str, Any]:
    """Shape a created or updated task for the model."""
    result: dict[str, Any] = {
        "success": True,
        "task": write.value.as_dict(include_attachment_data=False),
        "attached_images": write.attached_images,
    }
    if write.attachments_dropped:
        result["attachments_dropped"] = True
    notes = [n for n in [write.note, *attachments.notes] if n]
    if notes:
        result["note"] = " ".join(notes)
    return result


class TaskOperations:
    """Task CRUD on behalf of the model.

    Targets are found by case-insensitive substring match on titles, taking the
    first match in store order. Misses, including a task deleted between lookup and
    write, are returned as structured not-found results rather than raised.
    """

    def __init__(
        self,
        store: TaskStore,
        resolver: AttachmentResolver,
        guard: PersistenceGuard | None = None,
        timeout: float | None = None,
    ):
        self.store = store
        self.resolver = resolver
        self.guard = guard or PersistenceGuard(timeout=timeout)
        self.timeout = timeout

    async def _store_call(self, call: Awaitable[T]) -> T:
        if self.timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=self.timeout)

    async def find_by_title(self, title_search: str) -> Task | None:
        """First task whose title contains the search string, ignoring case."""
        needle = title_search.lower()
        for task in await self._store_call(self.store.get_all_tasks()):
            if needle in task.title.lower():
                return task
        return None

    async def create_task(
        self,
        context: TurnContext,
        title: str,
        description: str | None = None,
        priority: Priority | None = None,
        due_date: str | None = None,
        attach_chat_images: bool = False,
        attach_generated_images: bool = False,
    ) -> dict[str, Any]:
        """Create a task, attaching any requested images.

        Raises:
            ValueError: If the due date cannot be parsed
        """
        parsed_due = parse_due_date(due_date) if due_date else None
        resolved = await self.resolver.resolve(context, attach_chat_images, attach_generated_images)

        async def write(include_attachments: bool) -> Task:
            return await self.store.create_task(
                title=title,
                description=description,
                priority=priority or "medium",
                due_date=parsed_due,
                attachments=resolved.attachments if include_attachments else None,
            )

        outcome = await self.guard.write(write, len(resolved.attachments), action="created")
        logger.info(f"Created task '{title}' with {outcome.attached_images} attachment(s)")
        return task_result(outcome, resolved)

    async def list_tasks(self, task_filter: TaskFilter = "all", limit: int | None = None) -> dict[str, Any]:
        """List tasks matching a status, priority or overdue filter."""
        match task_filter:
            case "overdue":
                tasks = await self._store_call(self.store.get_overdue_tasks(date.today()))
            case "high" | "medium" | "low":
                tasks = await self._store_call(self.store.get_tasks_by_priority(task_filter))
            case "todo" | "in_progress" | "done":
                tasks = await self._store_call(self.store.get_tasks_by_status(task_filter))
            case _:
                tasks = await self._store_call(self.store.get_all_tasks())

        if limit:
            tasks = tasks[:limit]

        return {
            "success": True,
            "count": len(tasks),
            "tasks": [task.as_dict(include_attachment_data=False) for task in tasks],
        }

    async def update_task(
        self,
        context: TurnContext,
        title_search: str,
        status: Status | None = None,
        priority: Priority | None = None,
        new_title: str | None = None,
        description: str | None = None,
        due_date: str | None = None,
        attach_chat_images: bool = False,
        attach_generated_images: bool = False,
    ) -> dict[str, Any]:
        """Update the first task matching the search; new images are appended.

        Raises:
            ValueError: If the due date cannot be parsed
        """
        target = await self.find_by_title(title_search)
        if target is None:
            return not_found(title_search)

        changes: dict[str, Any] = {}
        if status:
            changes["status"] = status
        if priority:
            changes["priority"] = priority
        if new_title:
            changes["title"] = new_title
        if description:
            changes["description"] = description
        if due_date:
            changes["due_date"] = parse_due_date(due_date)

        resolved = await self.resolver.resolve(context, attach_chat_images, attach_generated_images)

        async def write(include_attachments: bool) -> Task | None:
            update = dict(changes)
            if include_attachments:
                update["attachments"] = [*target.attachments, *resolved.attachments]
            return await self.store.update_task(target.id, update)

        outcome = await self.guard.write(write, len(resolved.attachments), action="updated")
        if outcome.value is None:
            logger.warning(f"Task {target.id} disappeared before it could be updated")
            return not_found(title_search)

        logger.info(f"Updated task '{outcome.value.title}' ({', '.join(changes) or 'no field changes'})")
        return task_result(outcome, resolved)

    async def delete_task(self, title_search: str) -> dict[str, Any]:
        """Delete the first task matching the search."""
        target = await self.find_by_title(title_search)
        if target is None:
            return not_found(title_search)

        if not await self._store_call(self.store.delete_task(target.id)):
            return not_found(title_search)

        logger.info(f"Deleted task '{target.title}'")
        return {"success": True, "deleted": target.title}

    async def delete_all_tasks(self) -> dict[str, Any]:
        """Delete every task."""
        tasks = await self._store_call(self.store.get_all_tasks())
        deleted = 0
        for task in tasks:
            if await self._store_call(self.store.delete_task(task.id)):
                deleted += 1

        logger.info(f"Deleted all tasks ({deleted})")
        return {"success": True, "deleted_count": deleted}

