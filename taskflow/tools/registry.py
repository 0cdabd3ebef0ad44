"""Registry of the functions the assistant can call."""

from pydantic import ValidationError

from taskflow.config import get_settings
from taskflow.errors import FatalError
from taskflow.models.llm import LLMToolDefinition
from taskflow.models.messages import FunctionCallPart
from taskflow.models.turn import TurnContext
from taskflow.services.attachments import AttachmentResolver
from taskflow.services.image_generation import ImageGenerationPipeline, get_image_pipeline
from taskflow.services.task_operations import TaskOperations
from taskflow.services.tasks import get_task_store
from taskflow.tools.base import FunctionOutcome, ToolDefinition
from taskflow.tools.image_tools import create_generate_image_tool
from taskflow.tools.task_tools import (
    create_create_task_tool,
    create_delete_all_tasks_tool,
    create_delete_task_tool,
    create_list_tasks_tool,
    create_update_task_tool,
)
from taskflow.utils.logging import get_logger

logger = get_logger(__name__)


class FunctionRegistry:
    """Registry for the assistant's functions.

    The set of functions is fixed at construction, so the model sees the same
    tool list on every round.
    """

    def __init__(self, operations: TaskOperations, pipeline: ImageGenerationPipeline):
        """Initialize registry with service dependencies."""
        self.operations = operations
        self.pipeline = pipeline
        self._tools: dict[str, ToolDefinition] = {}
        self._register_default_tools()
        self.definitions = [
            LLMToolDefinition(name=tool.name, description=tool.description, input_schema=tool.get_json_schema())
            for tool in self._tools.values()
        ]
        logger.debug(f"Registered functions: {', '.join(self.get_tool_names())}")

    def _register_default_tools(self) -> None:
        tools = [
            create_create_task_tool(self.operations),
            create_list_tasks_tool(self.operations),
            create_update_task_tool(self.operations),
            create_delete_task_tool(self.operations),
            create_delete_all_tasks_tool(self.operations),
            create_generate_image_tool(self.pipeline),
        ]

        for tool in tools:
            self._tools[tool.name] = tool

    def get_tool_names(self) -> list[str]:
        """Get list of all registered function names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def is_read_only(self, name: str) -> bool:
        """Whether a function only reads tasks and may run alongside others."""
        tool = self._tools.get(name)
        return tool is not None and tool.read_only

    async def execute(self, call: FunctionCallPart, context: TurnContext) -> FunctionOutcome:
        """Run one function call.

        Unknown names, invalid arguments and handler failures become error
        outcomes for the model.

        Raises:
            FatalError: If a dependency failed in a way that must abort the turn
        """
        if not self.has_tool(call.name):
            logger.error(f"Unknown function requested: {call.name}")
            return FunctionOutcome.failure(f"Unknown function {call.name}")

        tool = self._tools[call.name]
        try:
            params = tool.parse_input(call.arguments)
        except ValidationError as e:
            logger.warning(f"Invalid arguments for {call.name}: {e.error_count()} error(s)")
            return FunctionOutcome.failure(f"Invalid arguments for {call.name}: {e}")

        logger.debug(f"Executing function: {call.name} with input: {call.arguments}")
        try:
            result = await tool.handler(params, context)
        except FatalError:
            raise
        except TimeoutError:
            logger.error(f"Function {call.name} timed out")
            return FunctionOutcome.failure(f"{call.name} timed out. Please try again.")
        except Exception as e:
            logger.error(f"Function {call.name} failed: {e}")
            return FunctionOutcome.failure(f"Error: {e!s}")

        logger.debug(f"Function {call.name} returned: {str(result.output)[:100]}...")
        return result


_function_registry: FunctionRegistry | None = None


def get_function_registry() -> FunctionRegistry:
    """Get or create the function registry."""
    global _function_registry
    if _function_registry is None:
        settings = get_settings()
        pipeline = get_image_pipeline()
        operations = TaskOperations(
            store=get_task_store(),
            resolver=AttachmentResolver(pipeline),
            timeout=settings.store_timeout,
        )
        _function_registry = FunctionRegistry(operations, pipeline)
    return _function_registry
