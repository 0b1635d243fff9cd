import uuid
from datetime import datetime, timezone
from typing import Any, List, Literal

from sqlalchemy import DateTime, Text
from sqlmodel import JSON, Column, Field, Relationship, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Identities

class User(SQLModel, table=True):
    """API-key identity; the key itself is never stored"""
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    api_key_hash: str = Field(max_length=64, unique=True, index=True)
    tier: str = Field(default="guest", max_length=20)  # "guest" | "regular"
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class UserPublic(SQLModel):
    id: uuid.UUID
    tier: str
    created_at: datetime


class GuestCredentials(SQLModel):
    """Returned once, when a guest identity is provisioned"""
    user: UserPublic
    api_key: str


# Chat History Models

class ChatBase(SQLModel):
    """Base model for chats/conversations"""
    title: str = Field(max_length=255)
    visibility: str = Field(default="private", max_length=20)  # "public" | "private"
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Chat(ChatBase, table=True):
    """Database model for storing chats"""
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    messages: List["Message"] = Relationship(back_populates="chat", cascade_delete=True)
    streams: List["Stream"] = Relationship(back_populates="chat", cascade_delete=True)


class ChatPublic(ChatBase):
    """Public model for chats"""
    id: uuid.UUID
    user_id: uuid.UUID
    message_count: int = 0


class ChatVisibilityUpdate(SQLModel):
    visibility: Literal["public", "private"]


class MessageBase(SQLModel):
    """Base model for stored turns; parts and attachments are JSON lists"""
    role: str = Field(max_length=20)  # "user" | "assistant"
    parts: List[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    attachments: List[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Message(MessageBase, table=True):
    """Database model for storing individual turns"""
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    chat_id: uuid.UUID = Field(foreign_key="chat.id", index=True)
    chat: Chat = Relationship(back_populates="messages")


class MessagePublic(MessageBase):
    id: uuid.UUID
    chat_id: uuid.UUID


class ChatHistoryPublic(SQLModel):
    """Response model for chat history with messages"""
    chat: ChatPublic
    messages: List[MessagePublic]


class Stream(SQLModel, table=True):
    """Resumability key for one generation request"""
    id: uuid.UUID = Field(primary_key=True)
    chat_id: uuid.UUID = Field(foreign_key="chat.id", index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    chat: Chat = Relationship(back_populates="streams")


# Artifacts written by document tools

class Document(SQLModel, table=True):
    """One version of a document; versions share ``id`` and differ by ``created_at``"""
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, primary_key=True, sa_type=DateTime(timezone=True))
    title: str = Field(max_length=255)
    kind: str = Field(default="text", max_length=20)  # "text" | "code"
    content: str | None = Field(default=None, sa_column=Column(Text))
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)


class Suggestion(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    document_id: uuid.UUID = Field(index=True)
    document_created_at: datetime = Field(sa_type=DateTime(timezone=True))
    original_text: str = Field(sa_column=Column(Text))
    suggested_text: str = Field(sa_column=Column(Text))
    description: str | None = Field(default=None, sa_column=Column(Text))
    is_resolved: bool = False
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
