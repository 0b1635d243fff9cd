"""Canonical message content model.

Every backend's output ends up as an ordered list of typed ``ContentPart``
objects before it is stored or replayed to a model. The wire/storage shape
uses camelCase keys (``toolCallId``, ``mediaType``) so stored rows can be
rendered by chat clients without translation.
"""
import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _Part(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TextPart(_Part):
    type: Literal["text"] = "text"
    text: str


class ReasoningPart(_Part):
    type: Literal["reasoning"] = "reasoning"
    text: str


class ToolCallPart(_Part):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    input: Any = None


class ToolResultPart(_Part):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str
    output: Any = None


class FilePart(_Part):
    type: Literal["file"] = "file"
    media_type: str
    name: str | None = None
    url: str


class StepStartPart(_Part):
    type: Literal["step-start"] = "step-start"


class StepEndPart(_Part):
    type: Literal["step-end"] = "step-end"


ContentPart = Annotated[
    Union[
        TextPart,
        ReasoningPart,
        ToolCallPart,
        ToolResultPart,
        FilePart,
        StepStartPart,
        StepEndPart,
    ],
    Field(discriminator="type"),
]

# Anything a backend may hand us: typed parts or the raw JSON objects
RawPart = Union[ContentPart, Mapping[str, Any]]

content_parts_adapter = TypeAdapter(list[ContentPart])

STRUCTURAL_TYPES = frozenset({"step-start", "step-end"})


class Attachment(BaseModel):
    name: str
    url: str
    content_type: str = Field(alias="contentType")

    model_config = ConfigDict(populate_by_name=True)


class ConversationTurn(BaseModel):
    """One role-attributed message, as stored and as replayed to backends."""

    id: uuid.UUID
    role: Literal["user", "assistant"]
    parts: list[ContentPart]
    attachments: list[Attachment] = Field(default_factory=list)
    created_at: datetime

    @classmethod
    def from_row(cls, row: Any) -> "ConversationTurn":
        return cls(
            id=row.id,
            role=row.role,
            parts=content_parts_adapter.validate_python(row.parts or []),
            attachments=row.attachments or [],
            created_at=row.created_at,
        )


def _field(part: RawPart, name: str) -> Any:
    if isinstance(part, Mapping):
        return part.get(name)
    return getattr(part, name, None)


def part_type(part: RawPart) -> str | None:
    return _field(part, "type")


def normalize(raw_parts: Iterable[RawPart]) -> list[ContentPart]:
    """Collapse step-wrapped or single-chunk backend output into one text part.

    Non-text fragments are dropped and the remaining ``text`` payloads are
    joined in emission order with no separator. An empty join yields an empty
    list rather than an empty text part.
    """
    text = "".join(
        _field(part, "text") or ""
        for part in raw_parts
        if part_type(part) == "text"
    )
    return [TextPart(text=text)] if text else []


def strip_structural(raw_parts: Iterable[RawPart]) -> list[ContentPart]:
    kept = [part for part in raw_parts if part_type(part) not in STRUCTURAL_TYPES]
    return content_parts_adapter.validate_python(
        [dict(part) if isinstance(part, Mapping) else part for part in kept]
    )


def finalize_parts(raw_parts: Iterable[RawPart], *, requires_normalization: bool) -> list[ContentPart]:
    """Parts exactly as they should be stored for a turn."""
    if requires_normalization:
        return normalize(raw_parts)
    return strip_structural(raw_parts)


def dump_parts(parts: Iterable[ContentPart]) -> list[dict[str, Any]]:
    return [part.model_dump(mode="json", by_alias=True) for part in parts]


def visible_text(parts: Iterable[RawPart]) -> str:
    return "".join(
        _field(part, "text") or "" for part in parts if part_type(part) == "text"
    )
