"""Conversation message and part models."""

from typing import Annotated, Any, Literal

from cuid2 import cuid_wrapper
from pydantic import BaseModel, Field, model_validator

cuid = cuid_wrapper()


class TextPart(BaseModel):
    """Plain text."""

    type: Literal["text"] = "text"
    text: str

    class Config:
        frozen = True


class FilePart(BaseModel):
    """An uploaded file, referenced by data URL or remote URL."""

    type: Literal["file"] = "file"
    media_type: str
    url: str
    filename: str | None = None

    class Config:
        frozen = True

    @property
    def is_image(self) -> bool:
        return self.media_type.startswith("image/")

    @property
    def is_inline(self) -> bool:
        return self.url.startswith("data:")


class FunctionCallPart(BaseModel):
    """A function invocation requested by the model."""

    type: Literal["function_call"] = "function_call"
    call_id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True


class FunctionResultPart(BaseModel):
    """The result of executing a function call."""

    type: Literal["function_result"] = "function_result"
    call_id: str
    name: str
    output: dict[str, Any] = Field(default_factory=dict)
    is_error: bool = False

    class Config:
        frozen = True


MessagePart = Annotated[TextPart | FilePart | FunctionCallPart | FunctionResultPart, Field(discriminator="type")]


class ConversationMessage(BaseModel):
    """A message in a conversation. Never modified once created."""

    id: str = Field(default_factory=cuid)
    role: Literal["user", "assistant"]
    parts: tuple[MessagePart, ...] = ()

    class Config:
        frozen = True

    @model_validator(mode="before")
    @classmethod
    def _accept_plain_content(cls, data: Any) -> Any:
        """Accept legacy `{role, content}` messages by turning content into a text part."""
        if isinstance(data, dict) and not data.get("parts") and isinstance(data.get("content"), str):
            content = data["content"]
            data = {k: v for k, v in data.items() if k != "content"}
            data["parts"] = [{"type": "text", "text": content}]
        return data

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    @property
    def function_calls(self) -> list[FunctionCallPart]:
        return [part for part in self.parts if isinstance(part, FunctionCallPart)]

    @property
    def function_results(self) -> list[FunctionResultPart]:
        return [part for part in self.parts if isinstance(part, FunctionResultPart)]
