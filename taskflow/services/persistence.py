"""Store writes that fall back to dropping attachments when the payload is too large."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from taskflow.services.tasks import PayloadTooLargeError
from taskflow.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class GuardedWrite(Generic[T]):
    """Result of a guarded write."""

    value: T
    attached_images: int
    note: str | None = None

    @property
    def attachments_dropped(self) -> bool:
        return self.note is not None


class PersistenceGuard:
    """Retries a rejected write once without its attachments."""

    def __init__(self, timeout: float | None = None):
        """Initialize the guard.

        Args:
            timeout: Seconds allowed for each store call, None for no limit
        """
        self.timeout = timeout

    async def write(
        self,
        operation: Callable[[bool], Awaitable[T]],
        attachment_count: int,
        action: str = "saved",
    ) -> GuardedWrite[T]:
        """Run a store write, dropping attachments if the store rejects the size.

        Args:
            operation: Performs the write; called with True to include attachments
            attachment_count: Number of new attachments in the write
            action: Verb for the note, e.g. "created" or "updated"

        Raises:
            PayloadTooLargeError: If the write has no attachments to drop, or the retry is also too large
            Exception: Any other store error, unchanged and without retry
        """
        try:
            value = await self._call(operation, attachment_count > 0)
        except PayloadTooLargeError as e:
            if attachment_count == 0:
                raise
            logger.warning(f"Task attachment too large ({e.size} > {e.limit} bytes), retrying without image")
            value = await self._call(operation, False)
            return GuardedWrite(
                value=value,
                attached_images=0,
                note=f"Image was too large to store. Task {action} without attachment.",
            )

        return GuardedWrite(value=value, attached_images=attachment_count)

    async def _call(self, operation: Callable[[bool], Awaitable[T]], include_attachments: bool) -> T:
        if self.timeout is None:
            return await operation(include_attachments)
        return await asyncio.wait_for(operation(include_attachments), timeout=self.timeout)
