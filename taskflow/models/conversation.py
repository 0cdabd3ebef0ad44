"""Chat request, streamed event and HTTP response models."""

from datetime import date, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from taskflow.models.messages import ConversationMessage
from taskflow.models.task import Priority, Status


class ChatRequest(BaseModel):
    """Request model for the chat endpoint."""

    messages: list[ConversationMessage] = Field(..., min_length=1)
    model: str | None = None


class StopReason(StrEnum):
    END_TURN = "end_turn"
    MAX_ROUNDS = "max_rounds"
    CANCELLED = "cancelled"


class TextDeltaEvent(BaseModel):
    """A chunk of assistant text, streamed as it arrives."""

    type: Literal["text_delta"] = "text_delta"
    text: str


class FunctionCallEvent(BaseModel):
    type: Literal["function_call"] = "function_call"
    call_id: str
    name: str
    arguments: dict[str, Any]


class FunctionResultEvent(BaseModel):
    """Result of a function call. `images` are data URLs for display only."""

    type: Literal["function_result"] = "function_result"
    call_id: str
    name: str
    output: dict[str, Any]
    is_error: bool = False
    images: list[str] = Field(default_factory=list)


class DoneEvent(BaseModel):
    """End of the turn.

    `messages` holds the messages appended during the turn so the caller can
    send them back with its next request.
    """

    type: Literal["done"] = "done"
    text: str
    rounds: int
    stop_reason: StopReason
    messages: list[ConversationMessage] = Field(default_factory=list)


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


ConversationEvent = Annotated[
    TextDeltaEvent | FunctionCallEvent | FunctionResultEvent | DoneEvent | ErrorEvent,
    Field(discriminator="type"),
]


class ConversationResult(BaseModel):
    """Outcome of one orchestrated turn."""

    text: str
    rounds: int
    stop_reason: StopReason
    messages: list[ConversationMessage] = Field(default_factory=list)


class TaskUpdateRequest(BaseModel):
    """Partial task update from the task panel."""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    priority: Priority | None = None
    status: Status | None = None
    due_date: date | None = None


class ImageGenerationRequest(BaseModel):
    prompt: str = Field(..., max_length=4000)


class ImageGenerationResponse(BaseModel):
    image_data_url: str
    media_type: str
    name: str


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
