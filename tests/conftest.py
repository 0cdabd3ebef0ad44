"""Shared fixtures and scripted fakes for the test suite."""

import base64
from collections.abc import Awaitable, Callable
from itertools import count

import pytest

from taskflow.clients.images import GenerationCandidate, ImagePayload
from taskflow.models.llm import LLMMessage, LLMResponse, LLMToolDefinition, LLMUsage, TextBlock, ToolUseBlock
from taskflow.models.messages import ConversationMessage
from taskflow.models.turn import TurnContext
from taskflow.services.attachments import AttachmentResolver
from taskflow.services.image_generation import ImageGenerationPipeline
from taskflow.services.task_operations import TaskOperations
from taskflow.services.tasks import InMemoryTaskStore
from taskflow.tools.registry import FunctionRegistry

_call_ids = count(1)


def text_response(text: str) -> LLMResponse:
    """A model response that ends the turn."""
    return LLMResponse(
        content=[TextBlock(text=text)],
        stop_reason="end_turn",
        usage=LLMUsage(input_tokens=10, output_tokens=5, total_tokens=15),
        model="claude-test",
    )


def tool_response(*calls: tuple[str, dict], text: str = "") -> LLMResponse:
    """A model response requesting function calls, given as (name, arguments) pairs."""
    content: list = [TextBlock(text=text)] if text else []
    content.extend(ToolUseBlock(id=f"toolu_{next(_call_ids)}", name=name, input=args) for name, args in calls)
    return LLMResponse(
        content=content,
        stop_reason="tool_use",
        usage=LLMUsage(input_tokens=10, output_tokens=5, total_tokens=15),
        model="claude-test",
    )


class FakeLLMClient:
    """Returns scripted responses in order and records every request."""

    def __init__(self, responses: list[LLMResponse] | None = None, max_chars: int = 8000):
        self.responses = list(responses or [])
        self.max_chars = max_chars
        self.requests: list[list[LLMMessage]] = []
        self.tools_seen: list[list[LLMToolDefinition]] = []
        self.models_seen: list[str | None] = []

    async def create_message(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition] | None = None,
        on_text: Callable[[str], Awaitable[None]] | None = None,
        **kwargs,
    ) -> LLMResponse:
        self.requests.append(list(messages))
        self.tools_seen.append(list(tools or []))
        self.models_seen.append(kwargs.get("model"))

        response = self.responses.pop(0)

        if on_text and response.text:
            await on_text(response.text)
        return response

    def validate_message_tokens(self, message: str) -> None:
        if len(message) > self.max_chars:
            raise ValueError("Message exceeds token limit")


def fake_payload(size: int = 64, media_type: str = "image/jpeg") -> ImagePayload:
    """An image payload whose base64 encoding is exactly `size` characters."""
    raw = b"x" * (size // 4 * 3)
    return ImagePayload(b64_data=base64.b64encode(raw).decode("ascii"), media_type=media_type)


class FakeImageClient:
    """Plays back scripted outcomes: an ImagePayload is returned, an exception raised."""

    def __init__(self, outcomes: list[ImagePayload | Exception] | None = None):
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[str, GenerationCandidate]] = []

    async def generate(self, prompt: str, candidate: GenerationCandidate) -> ImagePayload:
        self.calls.append((prompt, candidate))
        outcome = self.outcomes.pop(0) if self.outcomes else fake_payload(media_type=candidate.media_type)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_context(*messages: ConversationMessage | dict, model: str = "claude-test") -> TurnContext:
    """Build a turn context from messages or plain dicts."""
    history = [m if isinstance(m, ConversationMessage) else ConversationMessage.model_validate(m) for m in messages]
    return TurnContext(messages=history, system_prompt="You are a test assistant.", model=model)


def data_url(data: bytes = b"\x89PNG fake", media_type: str = "image/png") -> str:
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


@pytest.fixture
def store():
    """Empty in-memory task store."""
    return InMemoryTaskStore()


@pytest.fixture
def image_client():
    return FakeImageClient()


@pytest.fixture
def pipeline(image_client):
    return ImageGenerationPipeline(image_client)


@pytest.fixture
def operations(store, pipeline):
    return TaskOperations(store=store, resolver=AttachmentResolver(pipeline))


@pytest.fixture
def registry(operations, pipeline):
    return FunctionRegistry(operations, pipeline)
