import uuid
from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from chat_gateway.parts import ContentPart, FilePart, TextPart
from chat_gateway.providers.registry import is_selectable_model


# Inbound chat request

class TextPartIn(BaseModel):
    type: Literal["text"]
    text: str = Field(min_length=1, max_length=2000)


class FilePartIn(BaseModel):
    type: Literal["file"]
    media_type: Literal["image/jpeg", "image/png"] = Field(alias="mediaType")
    name: str = Field(min_length=1, max_length=100)
    url: HttpUrl

    model_config = ConfigDict(populate_by_name=True)


UserPartIn = Annotated[Union[TextPartIn, FilePartIn], Field(discriminator="type")]


class UserMessageIn(BaseModel):
    id: uuid.UUID
    role: Literal["user"]
    parts: List[UserPartIn] = Field(min_length=1)

    def content_parts(self) -> List[ContentPart]:
        parts: List[ContentPart] = []
        for part in self.parts:
            if isinstance(part, TextPartIn):
                parts.append(TextPart(text=part.text))
            else:
                parts.append(FilePart(media_type=part.media_type, name=part.name, url=str(part.url)))
        return parts

    def first_text(self) -> str:
        return next((part.text for part in self.parts if isinstance(part, TextPartIn)), "")


class PostRequestBody(BaseModel):
    id: uuid.UUID
    message: UserMessageIn
    selected_chat_model: str = Field(alias="selectedChatModel")
    selected_visibility_type: Literal["public", "private"] = Field(alias="selectedVisibilityType")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("selected_chat_model")
    @classmethod
    def _known_model(cls, v: str) -> str:
        if not is_selectable_model(v):
            raise ValueError(f"Unknown chat model: {v}")
        return v


# Catalog

class ChatModelPublic(BaseModel):
    id: str
    name: str
    description: str
