"""Per-request conversation turn state."""

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum

from taskflow.models.messages import ConversationMessage
from taskflow.models.task import Attachment
from taskflow.utils.logging import get_logger

logger = get_logger(__name__)


class OrchestratorState(StrEnum):
    """Where the orchestrator is in a turn."""

    AWAITING_MODEL = "awaiting_model"
    EXECUTING_FUNCTIONS = "executing_functions"
    DONE = "done"


@dataclass
class ImageScratch:
    """Images generated and prompts requested during the current turn.

    Lives only as long as the request; never shared between turns.
    """

    generated: list[Attachment] = field(default_factory=list)
    pending_prompts: list[str] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def record_prompt(self, prompt: str) -> None:
        self.pending_prompts.append(prompt)

    def record_image(self, image: Attachment) -> None:
        self.generated.append(image)

    @property
    def latest_prompt(self) -> str | None:
        return self.pending_prompts[-1] if self.pending_prompts else None


@dataclass
class TurnContext:
    """Everything the orchestrator and function handlers share for one turn."""

    messages: list[ConversationMessage]
    system_prompt: str
    model: str
    images: ImageScratch = field(default_factory=ImageScratch)
    state: OrchestratorState = OrchestratorState.AWAITING_MODEL
    rounds: int = 0
    cancelled: bool = False

    def append(self, message: ConversationMessage) -> None:
        """Append a message to the history. Existing messages are never changed."""
        self.messages.append(message)

    def transition(self, state: OrchestratorState) -> None:
        logger.debug(f"Turn state {self.state} -> {state}")
        self.state = state

    def cancel(self) -> None:
        """Stop starting new model rounds."""
        self.cancelled = True
