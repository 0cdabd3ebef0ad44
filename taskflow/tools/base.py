"""Base types and definitions for tools."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel

from taskflow.models.task import Attachment
from taskflow.models.turn import TurnContext


class FunctionName(StrEnum):
    """The closed set of functions the model may call."""

    CREATE_TASK = "create_task"
    LIST_TASKS = "list_tasks"
    UPDATE_TASK = "update_task"
    DELETE_TASK = "delete_task"
    DELETE_ALL_TASKS = "delete_all_tasks"
    GENERATE_IMAGE = "generate_image"


@dataclass
class FunctionOutcome:
    """Result of a function call.

    `output` is what the model sees. `images` are passed to the caller for display
    only and never sent back to the model.
    """

    output: dict[str, Any]
    is_error: bool = False
    images: list[Attachment] = field(default_factory=list)

    @classmethod
    def failure(cls, error: str) -> "FunctionOutcome":
        return cls(output={"success": False, "error": error}, is_error=True)


ToolHandler = Callable[[Any, TurnContext], Awaitable[FunctionOutcome]]


@dataclass
class ToolDefinition:
    """Definition of a tool available to the AI assistant."""

    name: FunctionName
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler
    read_only: bool = False

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        return self.input_schema_class.model_json_schema()

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)
