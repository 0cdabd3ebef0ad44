"""Task and attachment data models."""

import base64
import binascii
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any, Literal

Priority = Literal["low", "medium", "high"]
Status = Literal["todo", "in_progress", "done"]


@dataclass(frozen=True)
class Attachment:
    """Binary image payload attached to a task."""

    name: str
    media_type: str
    data: bytes

    @property
    def size(self) -> int:
        """Size of the raw payload in bytes."""
        return len(self.data)

    @property
    def data_url(self) -> str:
        """Payload encoded as a base64 data URL."""
        return f"data:{self.media_type};base64,{base64.b64encode(self.data).decode('ascii')}"

    @classmethod
    def from_data_url(cls, data_url: str, name: str) -> "Attachment":
        """Decode a base64 data URL.

        Raises:
            ValueError: If the URL is not a base64 data URL
        """
        if not data_url.startswith("data:") or "," not in data_url:
            raise ValueError("Not a data URL")

        header, payload = data_url[5:].split(",", 1)
        media_type, _, encoding = header.partition(";")
        if encoding != "base64":
            raise ValueError("Only base64 data URLs are supported")

        try:
            data = base64.b64decode(payload, validate=True)
        except binascii.Error as e:
            raise ValueError("Invalid base64 payload") from e

        return cls(name=name, media_type=media_type or "application/octet-stream", data=data)

    def as_dict(self, include_data: bool = True) -> dict[str, Any]:
        """Return the attachment as a dictionary.

        Without data only the metadata is returned, which is what the model sees.
        """
        result: dict[str, Any] = {"name": self.name, "media_type": self.media_type}
        if include_data:
            result["data_url"] = self.data_url
        else:
            result["size_bytes"] = self.size
        return result


@dataclass
class Task:
    """Task business model."""

    id: str
    title: str
    description: str | None = None
    priority: Priority = "medium"
    status: Status = "todo"
    due_date: date | None = None
    attachments: list[Attachment] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def is_overdue(self, today: date) -> bool:
        """Whether the task is past its due date and not done."""
        return self.due_date is not None and self.due_date < today and self.status != "done"

    def as_dict(self, include_attachment_data: bool = True) -> dict[str, Any]:
        """Return the task as a dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "attachments": [a.as_dict(include_data=include_attachment_data) for a in self.attachments],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def summary_line(self) -> str:
        """One-line summary used in the system prompt."""
        due = f", due {self.due_date.isoformat()}" if self.due_date else ""
        return f"- [{self.status}] {self.title} ({self.priority}{due})"
