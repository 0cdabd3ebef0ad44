"""Task management functions."""

from pydantic import BaseModel, Field

from taskflow.models.task import Priority, Status
from taskflow.models.turn import TurnContext
from taskflow.services.task_operations import TaskFilter, TaskOperations
from taskflow.tools.base import FunctionName, FunctionOutcome, ToolDefinition


def outcome(output: dict) -> FunctionOutcome:
    """Wrap a structured operation result; not-found results are not errors."""
    return FunctionOutcome(output=output)


class AttachmentFlags(BaseModel):
    attach_chat_images: bool = Field(
        default=False,
        description="Set to true to attach all user-uploaded images from the chat to this task",
    )
    attach_generated_images: bool = Field(
        default=False,
        description=(
            "Set to true to attach AI-generated images from the conversation to this task. "
            "Uses the most recent generate_image result."
        ),
    )


class CreateTaskInput(AttachmentFlags):
    """Input schema for create_task."""

    title: str = Field(..., min_length=1, max_length=200, description="The task title")
    description: str | None = Field(default=None, description="Task description or notes")
    priority: Priority | None = Field(default=None, description="Task priority level")
    due_date: str | None = Field(
        default=None,
        description="Due date as YYYY-MM-DD, or 'today', 'tomorrow', 'next week' or a weekday like 'friday'",
        examples=["2025-03-01", "tomorrow", "friday"],
    )


class ListTasksInput(BaseModel):
    """Input schema for list_tasks."""

    filter: TaskFilter = Field(default="all", description="Filter tasks by status, priority or overdue")
    limit: int | None = Field(default=None, ge=1, le=500, description="Max number of tasks to return")


class UpdateTaskInput(AttachmentFlags):
    """Input schema for update_task."""

    title_search: str = Field(..., min_length=1, description="Search string to find the task by title")
    status: Status | None = Field(default=None, description="New status")
    priority: Priority | None = Field(default=None, description="New priority")
    new_title: str | None = Field(default=None, max_length=200, description="New title if renaming")
    description: str | None = Field(default=None, description="New or updated description")
    due_date: str | None = Field(default=None, description="New due date as YYYY-MM-DD or a phrase like 'tomorrow'")


class DeleteTaskInput(BaseModel):
    """Input schema for delete_task."""

    title_search: str = Field(..., min_length=1, description="Search string to find the task to delete")


class EmptyInput(BaseModel):
    """Empty input schema for functions that take no parameters."""


def create_create_task_tool(operations: TaskOperations) -> ToolDefinition:
    async def create_task_handler(params: CreateTaskInput, context: TurnContext) -> FunctionOutcome:
        try:
            result = await operations.create_task(
                context,
                title=params.title,
                description=params.description,
                priority=params.priority,
                due_date=params.due_date,
                attach_chat_images=params.attach_chat_images,
                attach_generated_images=params.attach_generated_images,
            )
        except ValueError as e:
            return FunctionOutcome.failure(str(e))
        return outcome(result)

    return ToolDefinition(
        name=FunctionName.CREATE_TASK,
        description=(
            "Create a single task. Call this once per task; for several tasks call it several times. "
            "Set attach_chat_images to true to attach user-uploaded images, and/or attach_generated_images "
            "to true to attach the AI-generated image from the conversation."
        ),
        input_schema_class=CreateTaskInput,
        handler=create_task_handler,
    )


def create_list_tasks_tool(operations: TaskOperations) -> ToolDefinition:
    async def list_tasks_handler(params: ListTasksInput, context: TurnContext) -> FunctionOutcome:
        return outcome(await operations.list_tasks(params.filter, params.limit))

    return ToolDefinition(
        name=FunctionName.LIST_TASKS,
        description=(
            "List tasks, newest first, with optional filtering. "
            "'overdue' returns unfinished tasks whose due date has passed, earliest first."
        ),
        input_schema_class=ListTasksInput,
        handler=list_tasks_handler,
        read_only=True,
    )


def create_update_task_tool(operations: TaskOperations) -> ToolDefinition:
    async def update_task_handler(params: UpdateTaskInput, context: TurnContext) -> FunctionOutcome:
        try:
            result = await operations.update_task(
                context,
                title_search=params.title_search,
                status=params.status,
                priority=params.priority,
                new_title=params.new_title,
                description=params.description,
                due_date=params.due_date,
                attach_chat_images=params.attach_chat_images,
                attach_generated_images=params.attach_generated_images,
            )
        except ValueError as e:
            return FunctionOutcome.failure(str(e))
        return outcome(result)

    return ToolDefinition(
        name=FunctionName.UPDATE_TASK,
        description=(
            "Update a task's status, priority, title, description, due date or attachments. "
            "The task is found by searching its title. New images are added to the existing ones."
        ),
        input_schema_class=UpdateTaskInput,
        handler=update_task_handler,
    )


def create_delete_task_tool(operations: TaskOperations) -> ToolDefinition:
    async def delete_task_handler(params: DeleteTaskInput, context: TurnContext) -> FunctionOutcome:
        return outcome(await operations.delete_task(params.title_search))

    return ToolDefinition(
        name=FunctionName.DELETE_TASK,
        description="Permanently delete a task by searching its title.",
        input_schema_class=DeleteTaskInput,
        handler=delete_task_handler,
    )


def create_delete_all_tasks_tool(operations: TaskOperations) -> ToolDefinition:
    async def delete_all_tasks_handler(params: EmptyInput, context: TurnContext) -> FunctionOutcome:
        return outcome(await operations.delete_all_tasks())

    return ToolDefinition(
        name=FunctionName.DELETE_ALL_TASKS,
        description="Delete ALL tasks. Only use when the user explicitly asks to clear everything.",
        input_schema_class=EmptyInput,
        handler=delete_all_tasks_handler,
    )
