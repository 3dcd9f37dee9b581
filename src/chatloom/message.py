import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer


def new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class TextPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ToolUsePart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["tool_use"] = "tool_use"
    name: str
    args: Any = None
    id: str


class ToolResultPart(BaseModel):
    """Answer to a tool call.

    ``for_id`` is a lookup key naming the ``ToolUsePart.id`` it answers.
    Nothing checks that the referenced call exists.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["tool_result"] = "tool_result"
    name: str
    result: Any = None
    for_id: str


class FilePart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["file"] = "file"
    mime: str
    name: str
    url: str | None = None
    data: bytes | None = None


ContentPart = Annotated[
    Union[TextPart, ToolUsePart, ToolResultPart, FilePart],
    Field(discriminator="type"),
]


class Message(BaseModel):
    """One entry of the conversation log.

    Messages are frozen. The assistant message being streamed is rebuilt
    from the session's draft on every update rather than edited in place.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id, min_length=1)
    role: MessageRole
    content: list[ContentPart]
    created_at: datetime = Field(default_factory=_now)
    meta: dict[str, Any] | None = None

    @field_serializer("role")
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    @classmethod
    def from_input(
        cls,
        content: "str | list[ContentPart]",
        role: MessageRole = MessageRole.USER,
        meta: dict[str, Any] | None = None,
    ) -> "Message":
        if isinstance(content, str):
            parts = [TextPart(text=content)]
        else:
            parts = list(content)
        return cls(role=role, content=parts, meta=meta)

    def text(self) -> str:
        """Concatenated text of every text part."""
        return "".join(
            p.text for p in self.content if isinstance(p, TextPart)
        )


class ToolCall(BaseModel):
    """A tool invocation requested by the model, with parsed arguments."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
