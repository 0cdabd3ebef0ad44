"""Resolve which images should be attached to a task."""

from dataclasses import dataclass, field

from taskflow.models.messages import ConversationMessage, FilePart, FunctionResultPart
from taskflow.models.task import Attachment
from taskflow.models.turn import TurnContext
from taskflow.services.image_generation import ImageGenerationPipeline
from taskflow.utils.logging import get_logger

logger = get_logger(__name__)

GENERATE_IMAGE = "generate_image"

REGENERATED_NOTE = (
    "The image was regenerated from an earlier prompt and may differ from the one shown previously."
)


def extract_chat_images(messages: list[ConversationMessage]) -> list[Attachment]:
    """Collect every inline image file part in the conversation, in order."""
    images: list[Attachment] = []
    for message in messages:
        for part in message.parts:
            if not isinstance(part, FilePart) or not part.is_image:
                continue

            if not part.is_inline:
                logger.warning(f"Skipping remote image {part.url[:80]}; only inline images can be attached")
                continue

            name = part.filename or f"image.{part.media_type.split('/')[1] or 'png'}"
            try:
                images.append(Attachment.from_data_url(part.url, name=name))
            except ValueError as e:
                logger.warning(f"Skipping unreadable image {name}: {e}")
    return images


def extract_generated_image_prompts(messages: list[ConversationMessage]) -> list[str]:
    """Prompts of successful generate_image calls anywhere in the history, oldest first."""
    prompts: list[str] = []
    for message in messages:
        for part in message.parts:
            if (
                isinstance(part, FunctionResultPart)
                and part.name == GENERATE_IMAGE
                and not part.is_error
                and part.output.get("success") is True
                and isinstance(part.output.get("prompt"), str)
            ):
                prompts.append(part.output["prompt"])
    return prompts


@dataclass
class ResolvedAttachments:
    """Attachments to add to a task, with notes for the model."""

    attachments: list[Attachment] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def extend(self, other: "ResolvedAttachments") -> None:
        self.attachments.extend(other.attachments)
        self.notes.extend(other.notes)


class AttachmentResolver:
    """Finds uploaded and generated images for task-mutating calls.

    Resolution is best effort: a failed generation adds nothing and raises nothing.
    """

    def __init__(self, pipeline: ImageGenerationPipeline):
        self.pipeline = pipeline

    async def resolve(
        self, context: TurnContext, attach_from_chat: bool = False, attach_generated: bool = False
    ) -> ResolvedAttachments:
        """Resolve attachments for a call.

        Args:
            context: Current turn
            attach_from_chat: Attach every image uploaded in the conversation
            attach_generated: Attach the most recent AI-generated image

        Returns:
            Attachments in order: uploaded images first, then generated ones
        """
        resolved = ResolvedAttachments()

        if attach_from_chat:
            resolved.attachments.extend(extract_chat_images(context.messages))

        if attach_generated:
            resolved.extend(await self._resolve_generated(context))

        return resolved

    async def _resolve_generated(self, context: TurnContext) -> ResolvedAttachments:
        scratch = context.images

        # Serialized so two calls in one turn never pay for the same image twice
        async with scratch.lock:
            if scratch.generated:
                return ResolvedAttachments(attachments=list(scratch.generated))

            prompt = scratch.latest_prompt
            from_history = False
            if prompt is None:
                history_prompts = extract_generated_image_prompts(context.messages)
                if not history_prompts:
                    logger.info("No generated image or prompt found to attach")
                    return ResolvedAttachments()
                prompt = history_prompts[-1]
                from_history = True

            image = await self.pipeline.generate(prompt)
            if image is None:
                logger.warning(f"Could not generate image for attachment: {prompt[:50]}")
                return ResolvedAttachments()

            scratch.record_image(image)
            notes = [REGENERATED_NOTE] if from_history else []
            return ResolvedAttachments(attachments=[image], notes=notes)
