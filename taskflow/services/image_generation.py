"""Cascading image generation under a size ceiling."""

import base64
import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from taskflow.clients.images import (
    GenerationCandidate,
    ImageErrorKind,
    ImagePayload,
    ImageServiceError,
    get_image_client,
)
from taskflow.config import get_settings
from taskflow.models.task import Attachment
from taskflow.utils.logging import get_logger

logger = get_logger(__name__)

# Tried in order: JPEG is several times smaller than PNG at the same quality,
# dall-e-3 is the last resort when gpt-image-1 is unavailable.
DEFAULT_CANDIDATES: tuple[GenerationCandidate, ...] = (
    GenerationCandidate(model="gpt-image-1", quality="low", encoding="jpeg", style_hint="Make it visually appealing."),
    GenerationCandidate(model="gpt-image-1", quality="low", encoding="png", style_hint="Simple, clean style."),
    GenerationCandidate(model="dall-e-3", quality="standard", encoding="png", style_hint="Simple, clean style."),
)

FILE_EXTENSIONS = {"jpeg": "jpg", "png": "png", "webp": "webp"}


class GenerationFailure(StrEnum):
    """Why a candidate chain ended without an image."""

    DISABLED = "disabled"  # no image client configured
    REJECTED = "rejected"  # credentials, permissions or quota; retrying will not help
    EXHAUSTED = "exhausted"  # every candidate failed or was too large


@dataclass
class GenerationResult:
    image: Attachment | None = None
    failure: GenerationFailure | None = None

    @property
    def retryable(self) -> bool:
        return self.failure is GenerationFailure.EXHAUSTED


class ImageClient(Protocol):
    """Anything that can issue a single generation request for a candidate."""

    async def generate(self, prompt: str, candidate: GenerationCandidate) -> ImagePayload: ...


def attachment_name(prompt: str, candidate: GenerationCandidate) -> str:
    """File name for a generated image, derived from the prompt."""
    slug = re.sub(r"[^a-zA-Z0-9]", "-", prompt[:30])
    return f"generated-{slug}.{FILE_EXTENSIONS[candidate.encoding]}"


class ImageGenerationPipeline:
    """Tries generation candidates in order until one produces an image that fits.

    Candidates are attempted strictly one after another, since every request is
    billed. Unsupported or transient failures and oversized results move on to the
    next candidate; a fatal failure stops the chain.
    """

    def __init__(
        self,
        client: ImageClient | None,
        candidates: tuple[GenerationCandidate, ...] = DEFAULT_CANDIDATES,
        max_encoded_bytes: int = 1_400_000,
    ):
        """Initialize the pipeline.

        Args:
            client: Image service client; None disables generation
            candidates: Candidates in priority order
            max_encoded_bytes: Ceiling on the base64-encoded image size
        """
        self.client = client
        self.candidates = candidates
        self.max_encoded_bytes = max_encoded_bytes

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def generate(self, prompt: str) -> Attachment | None:
        """Generate an image for the prompt.

        Returns:
            The first candidate's image that fits under the ceiling, or None
        """
        return (await self.attempt(prompt)).image

    async def attempt(self, prompt: str) -> GenerationResult:
        """Run the candidate chain and report how it ended."""
        if not self.enabled:
            logger.warning("Image generation requested but no image client is configured")
            return GenerationResult(failure=GenerationFailure.DISABLED)

        for candidate in self.candidates:
            try:
                payload = await self.client.generate(prompt, candidate)
            except ImageServiceError as e:
                if e.kind is ImageErrorKind.FATAL:
                    logger.error(f"Image generation aborted on {candidate.label}: {e}")
                    return GenerationResult(failure=GenerationFailure.REJECTED)
                logger.warning(f"Image candidate {candidate.label} failed ({e.kind}): {e}")
                continue
            except TimeoutError:
                logger.warning(f"Image candidate {candidate.label} timed out")
                continue

            if payload.encoded_size > self.max_encoded_bytes:
                logger.warning(
                    f"Image from {candidate.label} too large: {payload.encoded_size} > {self.max_encoded_bytes} bytes"
                )
                continue

            try:
                data = base64.b64decode(payload.b64_data, validate=True)
            except ValueError as e:
                logger.warning(f"Image candidate {candidate.label} returned malformed base64: {e}")
                continue

            logger.info(f"Generated image with {candidate.label} ({payload.encoded_size} bytes encoded)")
            return GenerationResult(
                image=Attachment(name=attachment_name(prompt, candidate), media_type=payload.media_type, data=data)
            )

        logger.warning(f"All {len(self.candidates)} image candidates exhausted for prompt: {prompt[:50]}")
        return GenerationResult(failure=GenerationFailure.EXHAUSTED)


_pipeline: ImageGenerationPipeline | None = None


def get_image_pipeline() -> ImageGenerationPipeline:
    """Get or create the image generation pipeline."""
    global _pipeline
    if _pipeline is None:
        _pipeline = ImageGenerationPipeline(
            client=get_image_client(),
            max_encoded_bytes=get_settings().image_max_encoded_bytes,
        )
    return _pipeline
