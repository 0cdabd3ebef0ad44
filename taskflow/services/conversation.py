"""Conversation service: builds each turn and hands it to the orchestrator."""

from collections.abc import AsyncIterator
from datetime import date

from taskflow.config import Settings, get_settings
from taskflow.models.conversation import ConversationEvent
from taskflow.models.messages import ConversationMessage
from taskflow.models.task import Task
from taskflow.models.turn import TurnContext
from taskflow.services.orchestrator import ConversationOrchestrator, get_orchestrator
from taskflow.services.tasks import TaskStore, get_task_store
from taskflow.utils.logging import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are TaskFlow AI, a sharp, efficient task management assistant.
Today's date: {today}.

## Current Tasks
{task_summary}

## Capabilities
You have functions to CREATE, READ, UPDATE, and DELETE tasks in a real task store.
You can also GENERATE IMAGES with the generate_image function when users want to create, draw, design, or \
visualize anything.
Always use your functions. Never pretend to create or delete tasks without calling them.

## Image Attachments
You can attach images to tasks in two ways:
1. **User-uploaded images**: when a user shares images in the chat, set `attach_chat_images: true` on \
create_task or update_task.
2. **AI-generated images**: when a user wants to save a generated image to a task, set \
`attach_generated_images: true` on create_task or update_task. The most recent generated image is attached.

You can use both flags together. ALWAYS use them when the user wants images attached to tasks.
When a user says "save that image" or "add that image to a task", use `attach_generated_images: true`.
When creating a task that references a generated image, ALWAYS set `attach_generated_images: true`.

## Response Style
- Use **markdown formatting**: headers, bold, lists, code blocks when appropriate
- Be concise and action-oriented
- After completing actions, briefly confirm what was done
- When listing tasks, use structured formatting
- Proactively suggest next actions when relevant (e.g., "Want me to set a due date?")

## Rules
- To create multiple tasks: call create_task once for EACH task
- To delete a task: call delete_task with a search string matching the title
- To mark done: call update_task with status "done"
- Always confirm what was actually done after function calls
- If the user's request is ambiguous, ask for clarification"""


def build_system_prompt(tasks: list[Task], today: date | None = None) -> str:
    """Render the system prompt with the current task list."""
    task_summary = "\n".join(task.summary_line() for task in tasks) if tasks else "No tasks yet."
    return SYSTEM_PROMPT.format(today=(today or date.today()).isoformat(), task_summary=task_summary)


class ConversationService:
    """Service for handling conversational AI interactions.

    Each request carries the full history; nothing about a conversation is kept
    between requests.
    """

    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        store: TaskStore,
        settings: Settings | None = None,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.settings = settings or get_settings()

    async def build_context(self, messages: list[ConversationMessage], model: str | None = None) -> TurnContext:
        """Build the per-request turn context.

        Raises:
            ValueError: If the latest user message exceeds the token limit
        """
        self._validate_latest_message(messages)

        selected_model = self.settings.select_model(model)
        if model and selected_model != model:
            logger.warning(f"Requested model {model} is not allowed, using {selected_model}")

        tasks = await self.store.get_all_tasks()
        return TurnContext(
            messages=list(messages),
            system_prompt=build_system_prompt(tasks),
            model=selected_model,
        )

    async def stream_turn(
        self, messages: list[ConversationMessage], model: str | None = None
    ) -> AsyncIterator[ConversationEvent]:
        """Build a turn and stream its events.

        Raises:
            ValueError: If the latest user message exceeds the token limit
        """
        context = await self.build_context(messages, model)
        logger.info(f"Processing turn with {len(messages)} message(s) on {context.model}")
        return self.orchestrator.stream(context)

    def _validate_latest_message(self, messages: list[ConversationMessage]) -> None:
        latest = next((m for m in reversed(messages) if m.role == "user"), None)
        if latest is None:
            return
        try:
            self.orchestrator.client.validate_message_tokens(latest.text)
        except ValueError as e:
            logger.warning(f"Message validation failed: {e}")
            raise ValueError(
                "Your message is too long. Please shorten it or split it into several messages."
            ) from e


_conversation_service: ConversationService | None = None


def get_conversation_service() -> ConversationService:
    """Get or create the conversation service."""
    global _conversation_service
    if _conversation_service is None:
        _conversation_service = ConversationService(orchestrator=get_orchestrator(), store=get_task_store())
    return _conversation_service
