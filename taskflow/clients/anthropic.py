"""Anthropic API client with rate limiting and error handling."""

import asyncio
import json
import os
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal, TypeVar

import tiktoken
from anthropic import (
    APIConnectionError,
    APIStatusError,
    AsyncAnthropic,
    AuthenticationError,
    PermissionDeniedError,
)
from anthropic.types import ContentBlock as AnthropicContentBlock
from anthropic.types import Message
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from pydantic import BaseModel

from taskflow.config import get_settings
from taskflow.errors import FatalError
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
from taskflow.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TextCallback = Callable[[str], Awaitable[None]]

# Rough per-image cost for a 1024x1024 image
IMAGE_TOKEN_ESTIMATE = 1600


class LLMServiceError(FatalError):
    """The completion service failed in a way retrying will not fix."""


class CacheControl(BaseModel):
    """Cache control configuration for prompt caching."""

    type: Literal["ephemeral"] = "ephemeral"
    ttl: Literal["5m", "1h"] = "5m"


class AnthropicTool(BaseModel):
    """Tool definition for Anthropic API."""

    name: str
    description: str
    input_schema: dict[str, Any]
    cache_control: CacheControl | None = None


@dataclass
class AnthropicConfig:
    """Configuration for Anthropic API client."""

    model: str = "claude-3-5-sonnet-20241022"
    max_tokens: int = 2048
    temperature: float = 0.1
    max_retries: int = 3
    retry_delay: float = 1.0
    timeout: float = 60.0

    # Token limits for validation and truncation
    max_message_tokens: int = 2000  # Maximum tokens per individual message
    max_conversation_tokens: int = 200000
    token_headroom: int = 2000  # Reserve tokens for response


class AnthropicRateLimiter:
    """Client-side rate limiter using the limits library."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 40_000):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute
            tokens_per_minute: Maximum tokens per minute
        """
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def check_rate_limit(self, estimated_tokens: int, identifier: str = "anthropic") -> None:
        """Wait until the request fits within the request and token windows."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_window(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        if not self.limiter.hit(self.token_limit, token_identifier, cost=estimated_tokens):
            await self._wait_for_window(self.token_limit, token_identifier, "Token")

    async def _wait_for_window(self, limit, identifier: str, label: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        if window_stats:
            wait_time = max(0.0, window_stats.reset_time - time.time())
            if wait_time > 0:
                logger.warning(f"{label} rate limit exceeded, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)


class AnthropicClient:
    """Low-level Anthropic API client with rate limiting and error handling."""

    tokenizer: tiktoken.Encoding | None = None
    api_key: str
    client: AsyncAnthropic
    config: AnthropicConfig
    rate_limiter: AnthropicRateLimiter = AnthropicRateLimiter()

    def __init__(self, api_key: str | None = None, config: AnthropicConfig | None = None):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            config: Client configuration
        """
        anthropic_api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")

        self.api_key = anthropic_api_key
        self.config = config or AnthropicConfig()

        # Retries are handled here so the total attempt count stays bounded
        self.client = AsyncAnthropic(api_key=self.api_key, timeout=self.config.timeout, max_retries=0)

        try:
            # Close approximation for Claude
            self.tokenizer = tiktoken.encoding_for_model("gpt-4")
        except Exception:
            self.tokenizer = None

    async def create_message(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition] | None = None,
        on_text: TextCallback | None = None,
        **kwargs,
    ) -> LLMResponse:
        """Create a message with Claude API.

        Args:
            messages: Conversation history
            system_prompt: System prompt for Claude
            tools: Available tools for Claude
            on_text: Called with each text delta; enables streaming
            **kwargs: Additional parameters for Claude API (model, max_tokens, temperature)

        Returns:
            Provider-agnostic response

        Raises:
            LLMServiceError: If the request fails after the bounded retries
        """
        anthropic_tools = self._build_tools(tools)
        truncated_messages = self.truncate_conversation(messages, system_prompt, anthropic_tools)

        estimated_tokens = self._estimate_tokens(truncated_messages, system_prompt)
        logger.debug(f"Estimated tokens: {estimated_tokens}")
        await self.rate_limiter.check_rate_limit(estimated_tokens)

        request_params: dict[str, Any] = {
            "model": kwargs.get("model", self.config.model),
            "max_tokens": kwargs.get("max_tokens", self.config.max_tokens),
            "temperature": kwargs.get("temperature", self.config.temperature),
            "system": system_prompt,
            "messages": [msg.model_dump() for msg in truncated_messages],
        }
        if anthropic_tools:
            request_params["tools"] = [tool.model_dump(exclude_none=True) for tool in anthropic_tools]

        logger.debug(
            f"Making Anthropic API call with model: {request_params['model']}, "
            f"{len(truncated_messages)} messages, {len(anthropic_tools)} tools"
        )

        if on_text is None:
            response = await self._request_with_retries(lambda: self.client.messages.create(**request_params))
        else:
            streamed = False

            async def forward(text: str) -> None:
                nonlocal streamed
                streamed = True
                await on_text(text)

            response = await self._request_with_retries(
                lambda: self._stream_message(request_params, forward),
                can_retry=lambda: not streamed,
            )

        logger.debug(
            f"Response received - Stop reason: {response.stop_reason}, Content blocks: {len(response.content)}"
        )

        return LLMResponse(
            content=self._convert_content_blocks(response.content),
            stop_reason=response.stop_reason,
            usage=self._convert_usage(response),
            model=response.model,
        )

    async def _stream_message(self, request_params: dict[str, Any], on_text: TextCallback) -> Message:
        async with self.client.messages.stream(**request_params) as stream:
            async for text in stream.text_stream:
                await on_text(text)
            return await stream.get_final_message()

    async def _request_with_retries(
        self, call: Callable[[], Awaitable[T]], can_retry: Callable[[], bool] | None = None
    ) -> T:
        """Execute Anthropic API request with retry logic.

        Rate limits, server errors and connection failures are retried with backoff.
        Everything else, and any failure on the last attempt, becomes an LLMServiceError.
        """
        for attempt in range(self.config.max_retries):
            last_attempt = attempt == self.config.max_retries - 1
            try:
                return await call()

            except (AuthenticationError, PermissionDeniedError) as e:
                raise LLMServiceError(f"LLM request was rejected: {e.message}") from e

            except APIStatusError as e:
                retry_allowed = not last_attempt and (can_retry is None or can_retry())
                if e.status_code == 429 and retry_allowed:
                    retry_after = 60
                    if e.response is not None:
                        retry_after = int(e.response.headers.get("retry-after", 60))
                    if retry_after < 120:
                        logger.warning(f"Anthropic rate limit hit, retrying in {retry_after}s")
                        await asyncio.sleep(retry_after)
                        continue

                elif e.status_code >= 500 and retry_allowed:
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue

                raise LLMServiceError(f"LLM request failed with status {e.status_code}: {e.message}") from e

            except APIConnectionError as e:
                retry_allowed = not last_attempt and (can_retry is None or can_retry())
                if retry_allowed:
                    logger.warning(f"Anthropic connection error on attempt {attempt + 1}: {e}")
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue
                raise LLMServiceError(f"Could not reach the LLM service: {e}") from e

        raise LLMServiceError(f"Failed to complete request after {self.config.max_retries} attempts")

    def _build_tools(self, tools: list[LLMToolDefinition] | None) -> list[AnthropicTool]:
        """Convert tool definitions, marking the last one so all definitions are cached."""
        if not tools:
            return []

        anthropic_tools = []
        for i, tool in enumerate(tools):
            cache_control = CacheControl(type="ephemeral", ttl="5m") if i == len(tools) - 1 else None
            anthropic_tools.append(
                AnthropicTool(
                    name=tool.name,
                    description=tool.description,
                    input_schema=tool.input_schema,
                    cache_control=cache_control,
                )
            )
        return anthropic_tools

    def _convert_usage(self, response: Message) -> LLMUsage:
        usage = response.usage
        if not usage:
            return LLMUsage()
        return LLMUsage(
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.input_tokens + usage.output_tokens,
            cache_creation_input_tokens=usage.cache_creation_input_tokens or 0,
            cache_read_input_tokens=usage.cache_read_input_tokens or 0,
        )

    def _convert_content_blocks(self, anthropic_content: list[AnthropicContentBlock]) -> list[ContentBlock]:
        """Keep text and tool use blocks; anything else (thinking, server tools) is dropped."""
        converted: list[ContentBlock] = []
        for block in anthropic_content:
            match block.type:
                case "text":
                    converted.append(TextBlock(text=block.text))
                case "tool_use":
                    converted.append(ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {})))
                case other:
                    logger.warning(f"Ignoring unsupported content block type: {other}")
        return converted

    def _message_tokens(self, message: LLMMessage) -> int:
        if isinstance(message.content, str):
            return self.estimate_message_tokens(message.content)

        text_content = ""
        image_tokens = 0
        for block in message.content:
            if isinstance(block, TextBlock):
                text_content += block.text
            elif isinstance(block, ToolResultBlock):
                text_content += block.content
            elif isinstance(block, ToolUseBlock):
                text_content += block.name + json.dumps(block.input)
            elif isinstance(block, ImageBlock):
                image_tokens += IMAGE_TOKEN_ESTIMATE
        return self.estimate_message_tokens(text_content) + image_tokens

    def _estimate_tokens(self, messages: list[LLMMessage], system_prompt: str) -> int:
        """Estimate token count for rate limiting."""
        return self.estimate_message_tokens(system_prompt) + sum(self._message_tokens(m) for m in messages)

    def estimate_message_tokens(self, message: str) -> int:
        """Estimate token count for a single message.

        Args:
            message: Message content

        Returns:
            Estimated token count
        """
        try:
            return len(self.tokenizer.encode(message)) if self.tokenizer else len(message) // 4
        except Exception:
            # Fallback: roughly 4 characters per token
            return len(message) // 4

    def validate_message_tokens(self, message: str) -> None:
        """Validate that a message doesn't exceed token limits.

        Raises:
            ValueError: If message exceeds token limit
        """
        token_count = self.estimate_message_tokens(message)
        if token_count > self.config.max_message_tokens:
            raise ValueError(
                f"Message exceeds token limit: {token_count} tokens > {self.config.max_message_tokens} limit"
            )

    def _context_budget(self, system_prompt: str, tools: list[AnthropicTool] | None) -> int:
        """Tokens left for messages once the system prompt, tools and response headroom are reserved."""
        fixed = self.estimate_message_tokens(system_prompt)
        if tools:
            fixed += self.estimate_message_tokens(
                "".join(tool.name + tool.description + json.dumps(tool.input_schema) for tool in tools)
            )
        return self.config.max_conversation_tokens - self.config.token_headroom - fixed

    def truncate_conversation(
        self, messages: list[LLMMessage], system_prompt: str, tools: list[AnthropicTool] | None = None
    ) -> list[LLMMessage]:
        """Drop the oldest messages until the conversation fits the context window.

        The kept tail always starts with a plain user message, so no tool result
        is left without the tool use it answers.
        If nothing fits, only the latest plain user message is kept.

        Raises:
            ValueError: If nothing fits and there is no plain user message to keep
        """
        if not messages:
            return messages

        budget = self._context_budget(system_prompt, tools)

        start = len(messages)
        used = 0
        while start > 0:
            cost = self._message_tokens(messages[start - 1])
            if used + cost > budget:
                break
            used += cost
            start -= 1

        if start == 0:
            return messages

        kept = messages[start:]
        while kept and not _is_plain_user_message(kept[0]):
            kept = kept[1:]

        if not kept:
            # Nothing fits; the latest user message alone still makes a valid request
            kept = [m for m in messages if _is_plain_user_message(m)][-1:]
            if not kept:
                raise ValueError("Conversation does not fit within the context window")

        logger.warning(f"Truncated conversation from {len(messages)} to {len(kept)} messages ({budget} token budget)")
        return kept


def _is_plain_user_message(message: LLMMessage) -> bool:
    if message.role != "user":
        return False
    if isinstance(message.content, str):
        return True
    return not any(isinstance(block, ToolResultBlock) for block in message.content)


_anthropic_client: AnthropicClient | None = None


def get_anthropic_client() -> AnthropicClient:
    """Get or create Anthropic client instance."""
    global _anthropic_client
    if _anthropic_client is None:
        settings = get_settings()
        _anthropic_client = AnthropicClient(
            api_key=settings.anthropic_api_key,
            config=AnthropicConfig(model=settings.default_model, timeout=settings.llm_timeout),
        )
    return _anthropic_client
