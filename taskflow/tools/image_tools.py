"""Image generation function."""

from pydantic import BaseModel, Field

from taskflow.models.turn import TurnContext
from taskflow.services.image_generation import GenerationFailure, ImageGenerationPipeline
from taskflow.tools.base import FunctionName, FunctionOutcome, ToolDefinition
from taskflow.utils.logging import get_logger

logger = get_logger(__name__)

FAILURE_MESSAGES = {
    GenerationFailure.EXHAUSTED: "Image generation failed. Please try again.",
    GenerationFailure.REJECTED: (
        "The image service rejected the request (credentials or quota). "
        "Do not retry; tell the user image generation is unavailable right now."
    ),
    GenerationFailure.DISABLED: "Image generation is not configured on this server. Do not retry.",
}


class GenerateImageInput(BaseModel):
    """Input schema for generate_image."""

    prompt: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        description=(
            "Detailed description of the image to generate. "
            "Be specific about style, colors, composition, and subject matter."
        ),
    )


def create_generate_image_tool(pipeline: ImageGenerationPipeline) -> ToolDefinition:
    async def generate_image_handler(params: GenerateImageInput, context: TurnContext) -> FunctionOutcome:
        scratch = context.images
        scratch.record_prompt(params.prompt)

        # The image shown to the user is the one later attached within this turn
        async with scratch.lock:
            result = await pipeline.attempt(params.prompt)
            image = result.image
            if image is not None:
                scratch.record_image(image)

        if image is None:
            logger.warning(f"No image produced for prompt ({result.failure}): {params.prompt[:80]}")
            return FunctionOutcome(
                output={
                    "success": False,
                    "prompt": params.prompt,
                    "error": FAILURE_MESSAGES[result.failure],
                    "retryable": result.retryable,
                },
                is_error=True,
            )

        return FunctionOutcome(
            output={
                "success": True,
                "prompt": params.prompt,
                "status": "ready",
                "message": (
                    f'Image generated for: "{params.prompt}". The image is displayed in the chat. '
                    "Use attach_generated_images on create_task/update_task to save it to a task."
                ),
            },
            images=[image],
        )

    return ToolDefinition(
        name=FunctionName.GENERATE_IMAGE,
        description=(
            "Generate an image with AI. Use when the user asks to create, draw, design, or generate any kind "
            "of image, illustration, logo, diagram, or visual content."
        ),
        input_schema_class=GenerateImageInput,
        handler=generate_image_handler,
    )
