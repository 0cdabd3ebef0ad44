"""Bounded model <-> function-call loop for one conversation turn."""

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

from taskflow.clients.anthropic import get_anthropic_client
from taskflow.config import get_settings
from taskflow.errors import FatalError
from taskflow.models.conversation import (
    ConversationEvent,
    ConversationResult,
    DoneEvent,
    ErrorEvent,
    FunctionCallEvent,
    FunctionResultEvent,
    StopReason,
    TextDeltaEvent,
)
from taskflow.models.llm import (
    ContentBlock,
    ImageBlock,
    LLMMessage,
    LLMResponse,
    LLMToolDefinition,
    LLMUsage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from taskflow.models.messages import (
    ConversationMessage,
    FilePart,
    FunctionCallPart,
    FunctionResultPart,
    TextPart,
)
from taskflow.models.turn import OrchestratorState, TurnContext
from taskflow.tools.base import FunctionOutcome
from taskflow.tools.registry import FunctionRegistry, get_function_registry
from taskflow.utils.logging import get_logger

logger = get_logger(__name__)

BUDGET_EXCEEDED_MESSAGE = (
    "I've reached the limit of steps I can take for this request (task budget exceeded). "
    "Please try a narrower request."
)

EventSink = Callable[[ConversationEvent], Awaitable[None]]


class CompletionClient(Protocol):
    """The part of the LLM client the conversation layer depends on."""

    async def create_message(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition] | None = None,
        on_text: Callable[[str], Awaitable[None]] | None = None,
        **kwargs,
    ) -> LLMResponse: ...

    def validate_message_tokens(self, message: str) -> None: ...


def _image_source(part: FilePart) -> dict[str, str]:
    if part.is_inline:
        _, _, data = part.url.partition(",")
        return {"type": "base64", "media_type": part.media_type, "data": data}
    return {"type": "url", "url": part.url}


def to_llm_messages(history: list[ConversationMessage]) -> list[LLMMessage]:
    """Convert conversation history into provider messages.

    Function calls become tool use blocks on the assistant side and results
    become tool result blocks on the user side. Calls without a result, and
    results without a call, are dropped so the provider never sees an orphan.
    Consecutive messages with the same role are merged.
    """
    call_ids = {
        call.call_id for message in history if message.role == "assistant" for call in message.function_calls
    }
    result_ids = {result.call_id for message in history for result in message.function_results}

    converted: list[LLMMessage] = []

    def add(role: str, blocks: list[ContentBlock]) -> None:
        if not blocks:
            return
        if converted and converted[-1].role == role:
            previous = converted[-1]
            converted[-1] = LLMMessage(role=role, content=[*previous.content, *blocks])
        else:
            converted.append(LLMMessage(role=role, content=blocks))

    for message in history:
        speaker: list[ContentBlock] = []
        results: list[ContentBlock] = []

        for part in message.parts:
            match part:
                case TextPart(text=text) if text.strip():
                    speaker.append(TextBlock(text=text))
                case FilePart() if message.role == "user":
                    if part.is_image:
                        speaker.append(ImageBlock(source=_image_source(part)))
                    else:
                        speaker.append(TextBlock(text=f"[Attached file: {part.filename or part.media_type}]"))
                case FunctionCallPart() if message.role == "assistant" and part.call_id in result_ids:
                    speaker.append(ToolUseBlock(id=part.call_id, name=part.name, input=part.arguments))
                case FunctionResultPart() if part.call_id in call_ids:
                    results.append(
                        ToolResultBlock(
                            tool_use_id=part.call_id,
                            content=json.dumps(part.output, default=str),
                            is_error=part.is_error,
                        )
                    )

        if message.role == "assistant":
            add("assistant", speaker)
            add("user", results)
        else:
            # Tool results must open the user message that follows the tool use
            add("user", [*results, *speaker])

    return converted


class ConversationOrchestrator:
    """Drives one turn through AWAITING_MODEL -> EXECUTING_FUNCTIONS -> ... -> DONE.

    The turn ends when the model answers without calling a function, when the
    round ceiling is reached, or when the caller cancels. Reaching the ceiling is
    not an error: the turn still ends with a user-facing answer.
    """

    def __init__(
        self,
        client: CompletionClient,
        registry: FunctionRegistry,
        max_rounds: int = 20,
        llm_timeout: float | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            client: LLM completion client
            registry: Functions available to the model
            max_rounds: Maximum number of model requests per turn
            llm_timeout: Seconds allowed for each model request, None for no limit
        """
        self.client = client
        self.registry = registry
        self.max_rounds = max_rounds
        self.llm_timeout = llm_timeout

    async def run(self, context: TurnContext, emit: EventSink) -> ConversationResult:
        """Run a turn to completion, emitting events along the way.

        Raises:
            FatalError: If the model service or task store fails fatally
        """
        start = len(context.messages)
        last_text = ""
        usage = LLMUsage()

        def finish(text: str, stop_reason: StopReason) -> ConversationResult:
            context.transition(OrchestratorState.DONE)
            logger.info(
                f"Turn finished after {context.rounds} round(s): {stop_reason}, "
                f"{usage.total_tokens} tokens, cache hit rate {usage.cache_hit_rate:.1f}%"
            )
            return ConversationResult(
                text=text,
                rounds=context.rounds,
                stop_reason=stop_reason,
                messages=context.messages[start:],
            )

        logger.info(
            f"Starting turn with {len(context.messages)} messages, "
            f"{len(self.registry.definitions)} functions, max_rounds: {self.max_rounds}"
        )

        while context.rounds < self.max_rounds:
            if context.cancelled:
                return finish(last_text, StopReason.CANCELLED)

            context.transition(OrchestratorState.AWAITING_MODEL)
            context.rounds += 1
            logger.debug(f"Round {context.rounds}/{self.max_rounds}")

            response = await self._request_model(context, emit)
            usage.add(response.usage)

            text = response.text
            if text.strip():
                last_text = text

            calls = [
                FunctionCallPart(call_id=block.id, name=block.name, arguments=block.input)
                for block in response.tool_calls
            ]

            if not calls:
                if text:
                    context.append(ConversationMessage(role="assistant", parts=(TextPart(text=text),)))
                return finish(text, StopReason.END_TURN)

            context.transition(OrchestratorState.EXECUTING_FUNCTIONS)
            logger.info(f"Model requested {len(calls)} function call(s): {', '.join(c.name for c in calls)}")

            text_parts = (TextPart(text=text),) if text else ()
            context.append(ConversationMessage(role="assistant", parts=(*text_parts, *calls)))
            for call in calls:
                await emit(FunctionCallEvent(call_id=call.call_id, name=call.name, arguments=call.arguments))

            outcomes = await self._execute_calls(calls, context)

            results = [
                FunctionResultPart(
                    call_id=call.call_id,
                    name=call.name,
                    output=outcome.output,
                    is_error=outcome.is_error,
                )
                for call, outcome in zip(calls, outcomes, strict=True)
            ]
            context.append(ConversationMessage(role="assistant", parts=tuple(results)))
            for result, outcome in zip(results, outcomes, strict=True):
                await emit(
                    FunctionResultEvent(
                        call_id=result.call_id,
                        name=result.name,
                        output=result.output,
                        is_error=result.is_error,
                        images=[image.data_url for image in outcome.images],
                    )
                )

        if context.cancelled:
            return finish(last_text, StopReason.CANCELLED)

        logger.warning(f"Turn reached max rounds ({self.max_rounds})")
        if last_text:
            return finish(last_text, StopReason.MAX_ROUNDS)

        await emit(TextDeltaEvent(text=BUDGET_EXCEEDED_MESSAGE))
        context.append(ConversationMessage(role="assistant", parts=(TextPart(text=BUDGET_EXCEEDED_MESSAGE),)))
        return finish(BUDGET_EXCEEDED_MESSAGE, StopReason.MAX_ROUNDS)

    async def _request_model(self, context: TurnContext, emit: EventSink) -> LLMResponse:
        async def on_text(text: str) -> None:
            await emit(TextDeltaEvent(text=text))

        request = self.client.create_message(
            messages=to_llm_messages(context.messages),
            system_prompt=context.system_prompt,
            tools=self.registry.definitions,
            on_text=on_text,
            model=context.model,
        )
        if self.llm_timeout is None:
            return await request
        return await asyncio.wait_for(request, timeout=self.llm_timeout)

    async def _execute_calls(self, calls: list[FunctionCallPart], context: TurnContext) -> list[FunctionOutcome]:
        """Run a round's calls and return outcomes in request order.

        Read-only calls each run in their own lane. Everything else shares one lane
        and runs sequentially in request order, since those calls touch tasks or the
        turn's image state. A fatal error stops its lane; the other lanes finish
        before it is re-raised.
        """
        outcomes: list[FunctionOutcome | None] = [None] * len(calls)
        sequential = [i for i, call in enumerate(calls) if not self.registry.is_read_only(call.name)]

        async def run_one(index: int) -> None:
            outcomes[index] = await self.registry.execute(calls[index], context)

        async def run_sequential() -> None:
            for index in sequential:
                await run_one(index)

        lanes = [run_one(i) for i, call in enumerate(calls) if self.registry.is_read_only(call.name)]
        if sequential:
            lanes.append(run_sequential())

        errors = [e for e in await asyncio.gather(*lanes, return_exceptions=True) if isinstance(e, BaseException)]
        for error in errors:
            if isinstance(error, FatalError):
                raise error
        if errors:
            raise errors[0]

        return [outcome or FunctionOutcome.failure("Function was not run") for outcome in outcomes]

    async def stream(self, context: TurnContext) -> AsyncIterator[ConversationEvent]:
        """Run a turn in the background and yield its events.

        Closing the iterator cancels the turn: a model request in flight is
        cancelled, function calls in flight finish, and no further round starts.
        """
        queue: asyncio.Queue[ConversationEvent | None] = asyncio.Queue()

        async def produce() -> None:
            try:
                result = await self.run(context, queue.put)
                await queue.put(
                    DoneEvent(
                        text=result.text,
                        rounds=result.rounds,
                        stop_reason=result.stop_reason,
                        messages=result.messages,
                    )
                )
            except FatalError as e:
                logger.error(f"Turn aborted: {e}", exc_info=True)
                await queue.put(ErrorEvent(message=str(e)))
            except Exception as e:
                logger.error(f"Turn failed: {e}", exc_info=True)
                await queue.put(
                    ErrorEvent(message="I apologize, but I'm experiencing technical difficulties. Please try again.")
                )
            finally:
                await queue.put(None)

        task = asyncio.create_task(produce())
        _background_turns.add(task)
        task.add_done_callback(_background_turns.discard)

        try:
            while (event := await queue.get()) is not None:
                yield event
        finally:
            if not task.done():
                logger.info(f"Caller stopped listening; cancelling turn in state {context.state}")
                context.cancel()
                if context.state is OrchestratorState.AWAITING_MODEL:
                    task.cancel()


# Strong references so a turn abandoned by its caller is not garbage collected mid-flight
_background_turns: set[asyncio.Task] = set()

_orchestrator: ConversationOrchestrator | None = None


def get_orchestrator() -> ConversationOrchestrator:
    """Get or create the conversation orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        settings = get_settings()
        _orchestrator = ConversationOrchestrator(
            client=get_anthropic_client(),
            registry=get_function_registry(),
            max_rounds=settings.max_rounds,
            llm_timeout=settings.llm_timeout,
        )
    return _orchestrator
