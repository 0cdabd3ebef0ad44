"""Task store interface and implementations."""

import json
from dataclasses import replace
from datetime import UTC, date, datetime
from typing import Any, Protocol

from cuid2 import cuid_wrapper

from taskflow.config import get_settings
from taskflow.errors import FatalError
from taskflow.models.task import Attachment, Priority, Status, Task

cuid = cuid_wrapper()

UPDATABLE_FIELDS = {"title", "description", "priority", "status", "due_date", "attachments"}


class TaskStoreError(Exception):
    """A task store operation failed."""


class PayloadTooLargeError(TaskStoreError):
    """The record exceeds the backend's size limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"Task payload of {size} bytes exceeds the {limit} byte limit")
        self.size = size
        self.limit = limit


class TaskStoreUnavailableError(TaskStoreError, FatalError):
    """The store cannot be reached or refuses our credentials."""


class TaskStore(Protocol):
    """Interface for task persistence backends."""

    async def create_task(
        self,
        title: str,
        description: str | None = None,
        priority: Priority = "medium",
        due_date: date | None = None,
        attachments: list[Attachment] | None = None,
    ) -> Task:
        """Create and return a new task.

        Raises:
            PayloadTooLargeError: If the record is too large to store
        """
        ...

    async def get_all_tasks(self) -> list[Task]:
        """Get all tasks, newest first."""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """Get a task by ID."""
        ...

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> Task | None:
        """Apply changes to a task.

        Returns:
            The updated task, or None if it no longer exists

        Raises:
            PayloadTooLargeError: If the updated record is too large to store
        """
        ...

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task. Returns False if it did not exist."""
        ...

    async def get_tasks_by_status(self, status: Status) -> list[Task]: ...

    async def get_tasks_by_priority(self, priority: Priority) -> list[Task]: ...

    async def get_overdue_tasks(self, today: date | None = None) -> list[Task]:
        """Tasks due before today that are not done, earliest due first."""
        ...


class InMemoryTaskStore:
    """In-memory task store with a per-record size limit.

    The limit mirrors hosted key-value backends that reject large request bodies.
    """

    def __init__(self, max_payload_bytes: int = 2 * 1024 * 1024):
        """Initialize an empty store.

        Args:
            max_payload_bytes: Maximum serialized size of a single task record
        """
        self.max_payload_bytes = max_payload_bytes
        self.tasks: dict[str, Task] = {}

    async def create_task(
        self,
        title: str,
        description: str | None = None,
        priority: Priority = "medium",
        due_date: date | None = None,
        attachments: list[Attachment] | None = None,
    ) -> Task:
        """Create and return a new task."""
        task = Task(
            id=cuid(),
            title=title,
            description=description,
            priority=priority,
            due_date=due_date,
            attachments=list(attachments or []),
        )
        self._check_payload(task)
        self.tasks[task.id] = task
        return replace(task, attachments=list(task.attachments))

    async def get_all_tasks(self) -> list[Task]:
        """Get all tasks, newest first."""
        return self._newest_first(self.tasks.values())

    async def get_task(self, task_id: str) -> Task | None:
        """Get a task by ID."""
        task = self.tasks.get(task_id)
        return replace(task, attachments=list(task.attachments)) if task else None

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> Task | None:
        """Apply changes to a task; unknown fields are rejected."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise TaskStoreError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        task = self.tasks.get(task_id)
        if task is None:
            return None

        if "attachments" in changes:
            changes = {**changes, "attachments": list(changes["attachments"] or [])}

        updated = replace(task, **changes, updated_at=datetime.now(UTC))
        self._check_payload(updated)
        self.tasks[task_id] = updated
        return replace(updated, attachments=list(updated.attachments))

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task."""
        return self.tasks.pop(task_id, None) is not None

    async def get_tasks_by_status(self, status: Status) -> list[Task]:
        return self._newest_first(t for t in self.tasks.values() if t.status == status)

    async def get_tasks_by_priority(self, priority: Priority) -> list[Task]:
        return self._newest_first(t for t in self.tasks.values() if t.priority == priority)

    async def get_overdue_tasks(self, today: date | None = None) -> list[Task]:
        """Tasks due before today that are not done, earliest due first."""
        today = today or date.today()
        overdue = [t for t in self.tasks.values() if t.is_overdue(today)]
        overdue.sort(key=lambda t: t.due_date)
        return [replace(t, attachments=list(t.attachments)) for t in overdue]

    def _newest_first(self, tasks) -> list[Task]:
        # Insertion order is creation order
        return [replace(t, attachments=list(t.attachments)) for t in reversed(list(tasks))]

    def _check_payload(self, task: Task) -> None:
        size = len(json.dumps(task.as_dict(include_attachment_data=True)))
        if size > self.max_payload_bytes:
            raise PayloadTooLargeError(size, self.max_payload_bytes)


_task_store: InMemoryTaskStore | None = None


def get_task_store() -> InMemoryTaskStore:
    """Get or create the task store instance."""
    global _task_store
    if _task_store is None:
        _task_store = InMemoryTaskStore(max_payload_bytes=get_settings().store_max_payload_bytes)
    return _task_store
