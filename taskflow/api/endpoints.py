"""API endpoints for the TaskFlow AI service."""

from collections.abc import AsyncIterator
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from taskflow import __version__
from taskflow.errors import FatalError
from taskflow.models.conversation import (
    ChatRequest,
    ConversationEvent,
    HealthResponse,
    ImageGenerationRequest,
    ImageGenerationResponse,
    TaskUpdateRequest,
)
from taskflow.services.conversation import ConversationService, get_conversation_service
from taskflow.services.image_generation import ImageGenerationPipeline, get_image_pipeline
from taskflow.services.tasks import PayloadTooLargeError, TaskStore, get_task_store
from taskflow.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

NDJSON_MEDIA_TYPE = "application/x-ndjson"


async def _ndjson(events: AsyncIterator[ConversationEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield event.model_dump_json() + "\n"


@router.post("/chat", tags=["Conversation"])
async def chat(
    request: ChatRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> StreamingResponse:
    """Run one conversation turn and stream its events as newline-delimited JSON."""
    try:
        events = await service.stream_turn(request.messages, request.model)
    except ValueError as e:
        logger.warning(f"Chat request rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e
    except FatalError as e:
        logger.error(f"Chat request failed: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Service temporarily unavailable. Please try again.") from e

    return StreamingResponse(_ndjson(events), media_type=NDJSON_MEDIA_TYPE)


@router.get("/tasks", tags=["Tasks"])
async def list_tasks(store: TaskStore = Depends(get_task_store)) -> dict:
    """List all tasks, newest first, with attachments as data URLs."""
    tasks = await store.get_all_tasks()
    return {"tasks": [task.as_dict() for task in tasks]}


@router.patch("/tasks/{task_id}", tags=["Tasks"])
async def update_task(
    task_id: str,
    request: TaskUpdateRequest,
    store: TaskStore = Depends(get_task_store),
) -> dict:
    """Apply a partial update to a task."""
    changes = request.model_dump(exclude_unset=True)
    for required in ("title", "priority", "status"):
        if changes.get(required, ...) is None:
            changes.pop(required)

    try:
        task = await store.update_task(task_id, changes)
    except PayloadTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e)) from e

    if task is None:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")

    logger.info(f"Updated task {task_id} via API ({', '.join(changes) or 'no changes'})")
    return {"task": task.as_dict()}


@router.delete("/tasks/{task_id}", tags=["Tasks"])
async def delete_task(task_id: str, store: TaskStore = Depends(get_task_store)) -> dict:
    """Delete a task."""
    if not await store.delete_task(task_id):
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")

    logger.info(f"Deleted task {task_id} via API")
    return {"success": True}


@router.post("/generate-image", response_model=ImageGenerationResponse, tags=["Images"])
async def generate_image(
    request: ImageGenerationRequest,
    pipeline: ImageGenerationPipeline = Depends(get_image_pipeline),
) -> ImageGenerationResponse:
    """Generate an image for display, outside of any conversation."""
    prompt = request.prompt.strip()
    if not prompt:
        raise HTTPException(status_code=400, detail="Prompt is required")

    image = await pipeline.generate(prompt)
    if image is None:
        raise HTTPException(status_code=502, detail="Image generation failed. Please try again.")

    return ImageGenerationResponse(image_data_url=image.data_url, media_type=image.media_type, name=image.name)


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
