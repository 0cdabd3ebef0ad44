"""OpenAI image generation client with typed failure kinds."""

import os
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

import openai
from openai import AsyncOpenAI

from taskflow.config import get_settings
from taskflow.utils.logging import get_logger

logger = get_logger(__name__)

Encoding = Literal["jpeg", "png", "webp"]


class ImageErrorKind(StrEnum):
    """How the pipeline should react to a failed request."""

    UNSUPPORTED = "unsupported"  # the model or a parameter is not available; try the next candidate
    TRANSIENT = "transient"  # timeout, connection or server failure; try the next candidate
    FATAL = "fatal"  # credentials, permissions or quota; stop


class ImageServiceError(Exception):
    """Image generation request failed."""

    def __init__(self, kind: ImageErrorKind, message: str, status_code: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


@dataclass(frozen=True)
class GenerationCandidate:
    """One model/quality/encoding combination to try."""

    model: str
    quality: str
    encoding: Encoding
    style_hint: str = ""

    @property
    def media_type(self) -> str:
        return f"image/{self.encoding}"

    @property
    def label(self) -> str:
        return f"{self.model}/{self.quality}/{self.encoding}"


@dataclass
class ImagePayload:
    """Base64 image returned by the service."""

    b64_data: str
    media_type: str

    @property
    def encoded_size(self) -> int:
        return len(self.b64_data)


def classify_openai_error(error: Exception) -> ImageErrorKind:
    """Map an OpenAI SDK exception onto an ImageErrorKind."""
    if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError)):
        return ImageErrorKind.TRANSIENT
    if isinstance(error, (openai.NotFoundError, openai.BadRequestError, openai.UnprocessableEntityError)):
        return ImageErrorKind.UNSUPPORTED
    if isinstance(error, openai.InternalServerError):
        return ImageErrorKind.TRANSIENT
    if isinstance(error, openai.APIStatusError) and error.status_code >= 500:
        return ImageErrorKind.TRANSIENT
    return ImageErrorKind.FATAL


class OpenAIImageClient:
    """Issues single image generation requests against the OpenAI Images API."""

    def __init__(self, api_key: str | None = None, timeout: float = 90.0, size: str = "1024x1024"):
        """Initialize the client.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY env var)
            timeout: Per-request timeout in seconds
            size: Requested image dimensions
        """
        openai_api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not openai_api_key:
            raise ValueError("OPENAI_API_KEY environment variable is required")

        self.size = size
        # One attempt per candidate; the pipeline decides what happens next
        self.client = AsyncOpenAI(api_key=openai_api_key, timeout=timeout, max_retries=0)

    async def generate(self, prompt: str, candidate: GenerationCandidate) -> ImagePayload:
        """Generate one image for a candidate.

        Raises:
            ImageServiceError: With a kind describing whether another candidate may succeed
        """
        params: dict[str, Any] = {
            "model": candidate.model,
            "prompt": f"{prompt}. {candidate.style_hint}".strip() if candidate.style_hint else prompt,
            "n": 1,
            "size": self.size,
            "quality": candidate.quality,
        }
        if candidate.model.startswith("dall-e"):
            params["response_format"] = "b64_json"
        else:
            params["output_format"] = candidate.encoding

        try:
            response = await self.client.images.generate(**params)
        except openai.OpenAIError as e:
            kind = classify_openai_error(e)
            status_code = getattr(e, "status_code", None)
            raise ImageServiceError(kind, f"{candidate.label}: {e}", status_code=status_code) from e

        image = response.data[0] if response.data else None
        if image is None or not image.b64_json:
            raise ImageServiceError(ImageErrorKind.TRANSIENT, f"{candidate.label}: response contained no image")

        return ImagePayload(b64_data=image.b64_json, media_type=candidate.media_type)


_image_client: OpenAIImageClient | None = None


def get_image_client() -> OpenAIImageClient | None:
    """Get or create the image client, or None when no API key is configured."""
    global _image_client
    if _image_client is None:
        settings = get_settings()
        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY is not set; image generation is disabled")
            return None
        _image_client = OpenAIImageClient(api_key=settings.openai_api_key, timeout=settings.image_timeout)
    return _image_client
