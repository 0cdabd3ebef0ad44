"""Tests for attachment resolution and the persistence guard."""

import pytest
from conftest import FakeImageClient, data_url, fake_payload, make_context

from taskflow.clients.images import ImageErrorKind, ImageServiceError
from taskflow.models.task import Attachment
from taskflow.services.attachments import (
    REGENERATED_NOTE,
    AttachmentResolver,
    extract_chat_images,
    extract_generated_image_prompts,
)
from taskflow.services.image_generation import ImageGenerationPipeline
from taskflow.services.persistence import PersistenceGuard
from taskflow.services.task_operations import TaskOperations
from taskflow.services.tasks import InMemoryTaskStore, PayloadTooLargeError, TaskStoreError


def image_message(*urls: str, text: str = "look") -> dict:
    parts = [{"type": "file", "media_type": "image/png", "url": url} for url in urls]
    return {"role": "user", "parts": [*parts, {"type": "text", "text": text}]}


def generated_result(prompt: str, success: bool = True) -> list[dict]:
    return [
        {
            "role": "assistant",
            "parts": [
                {"type": "function_call", "call_id": "c1", "name": "generate_image", "arguments": {"prompt": prompt}}
            ],
        },
        {
            "role": "assistant",
            "parts": [
                {
                    "type": "function_result",
                    "call_id": "c1",
                    "name": "generate_image",
                    "output": {"success": success, "prompt": prompt},
                }
            ],
        },
    ]


class TestExtraction:
    """Tests for scanning the history for images and prompts."""

    def test_chat_images_in_order(self):
        context = make_context(image_message(data_url(b"one")), image_message(data_url(b"two")))

        images = extract_chat_images(context.messages)

        assert [i.data for i in images] == [b"one", b"two"]
        assert images[0].name == "image.png"

    def test_no_images(self):
        context = make_context({"role": "user", "content": "hello"})
        assert extract_chat_images(context.messages) == []

    def test_remote_and_non_image_files_skipped(self):
        context = make_context(
            {
                "role": "user",
                "parts": [
                    {"type": "file", "media_type": "image/png", "url": "https://example.com/a.png"},
                    {"type": "file", "media_type": "application/pdf", "url": data_url(b"%PDF", "application/pdf")},
                ],
            }
        )
        assert extract_chat_images(context.messages) == []

    def test_generated_prompts_only_successful(self):
        context = make_context(*generated_result("a cat"), *generated_result("a dog", success=False))
        assert extract_generated_image_prompts(context.messages) == ["a cat"]


class TestAttachmentResolver:
    """Tests for choosing which images to attach."""

    @pytest.mark.asyncio
    async def test_nothing_requested(self, pipeline):
        resolved = await AttachmentResolver(pipeline).resolve(make_context(image_message(data_url())))
        assert resolved.attachments == []

    @pytest.mark.asyncio
    async def test_chat_images_empty_history(self, pipeline):
        """Test that asking for chat images with none uploaded yields nothing."""
        resolved = await AttachmentResolver(pipeline).resolve(make_context(), attach_from_chat=True)
        assert resolved.attachments == []
        assert resolved.notes == []

    @pytest.mark.asyncio
    async def test_uses_images_generated_this_turn(self):
        client = FakeImageClient()
        resolver = AttachmentResolver(ImageGenerationPipeline(client))
        context = make_context()
        cached = Attachment(name="generated-cat.jpg", media_type="image/jpeg", data=b"cat")
        context.images.record_prompt("a cat")
        context.images.record_image(cached)

        resolved = await resolver.resolve(context, attach_generated=True)

        assert resolved.attachments == [cached]
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_generates_from_pending_prompt_once(self):
        """Test that a pending prompt is generated once and cached for later calls."""
        client = FakeImageClient()
        resolver = AttachmentResolver(ImageGenerationPipeline(client))
        context = make_context()
        context.images.record_prompt("a dog")

        first = await resolver.resolve(context, attach_generated=True)
        second = await resolver.resolve(context, attach_generated=True)

        assert len(client.calls) == 1
        assert client.calls[0][0] == "a dog"
        assert first.attachments == second.attachments
        assert first.notes == []

    @pytest.mark.asyncio
    async def test_falls_back_to_history_prompt_with_note(self):
        client = FakeImageClient()
        resolver = AttachmentResolver(ImageGenerationPipeline(client))
        context = make_context(*generated_result("an old cat"), *generated_result("a newer cat"))

        resolved = await resolver.resolve(context, attach_generated=True)

        assert len(resolved.attachments) == 1
        assert client.calls[0][0] == "a newer cat"
        assert resolved.notes == [REGENERATED_NOTE]

    @pytest.mark.asyncio
    async def test_generation_failure_adds_nothing(self):
        client = FakeImageClient([ImageServiceError(ImageErrorKind.FATAL, "quota exceeded", status_code=429)])
        resolver = AttachmentResolver(ImageGenerationPipeline(client))
        context = make_context()
        context.images.record_prompt("a dog")

        resolved = await resolver.resolve(context, attach_generated=True)

        assert resolved.attachments == []
        assert context.images.generated == []

    @pytest.mark.asyncio
    async def test_chat_then_generated_order(self):
        client = FakeImageClient([fake_payload(64)])
        resolver = AttachmentResolver(ImageGenerationPipeline(client))
        context = make_context(image_message(data_url(b"upload")))
        context.images.record_prompt("a dog")

        resolved = await resolver.resolve(context, attach_from_chat=True, attach_generated=True)

        assert [a.name for a in resolved.attachments] == ["image.png", "generated-a-dog.jpg"]


class TestPersistenceGuard:
    """Tests for the no-attachment retry."""

    @pytest.mark.asyncio
    async def test_success_passes_through(self):
        calls = []

        async def write(include_attachments: bool) -> str:
            calls.append(include_attachments)
            return "task"

        outcome = await PersistenceGuard().write(write, attachment_count=2, action="created")

        assert calls == [True]
        assert outcome.value == "task"
        assert outcome.attached_images == 2
        assert outcome.note is None

    @pytest.mark.asyncio
    async def test_too_large_retries_once_without_attachments(self):
        calls = []

        async def write(include_attachments: bool) -> str:
            calls.append(include_attachments)
            if include_attachments:
                raise PayloadTooLargeError(3_000_000, 2_000_000)
            return "task"

        outcome = await PersistenceGuard().write(write, attachment_count=1, action="updated")

        assert calls == [True, False]
        assert outcome.attached_images == 0
        assert outcome.attachments_dropped
        assert outcome.note == "Image was too large to store. Task updated without attachment."

    @pytest.mark.asyncio
    async def test_too_large_without_attachments_propagates(self):
        calls = []

        async def write(include_attachments: bool) -> str:
            calls.append(include_attachments)
            raise PayloadTooLargeError(3_000_000, 2_000_000)

        with pytest.raises(PayloadTooLargeError):
            await PersistenceGuard().write(write, attachment_count=0)

        assert calls == [False]

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        calls = []

        async def write(include_attachments: bool) -> str:
            calls.append(include_attachments)
            raise TaskStoreError("backend rejected the write")

        with pytest.raises(TaskStoreError, match="backend rejected"):
            await PersistenceGuard().write(write, attachment_count=1)

        assert calls == [True]

    @pytest.mark.asyncio
    async def test_create_task_drops_oversized_image(self, pipeline):
        """Test a create whose image exceeds the store limit is saved without it."""
        store = InMemoryTaskStore(max_payload_bytes=2000)
        operations = TaskOperations(store=store, resolver=AttachmentResolver(pipeline))
        context = make_context(image_message(data_url(b"x" * 3000)))

        result = await operations.create_task(context, title="Fix logo", attach_chat_images=True)

        assert result["success"] is True
        assert result["attached_images"] == 0
        assert result["attachments_dropped"] is True
        assert result["note"] == "Image was too large to store. Task created without attachment."
        stored = await store.get_all_tasks()
        assert stored[0].attachments == []
