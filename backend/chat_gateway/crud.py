import uuid
from datetime import timedelta
from typing import Any, Iterable, List, Optional

from sqlmodel import Session, col, func, select

from chat_gateway.models import (
    Chat,
    ChatPublic,
    Document,
    Message,
    Stream,
    Suggestion,
    User,
    utcnow,
)
from chat_gateway.parts import ConversationTurn, dump_parts


# Identities

def create_user(*, session: Session, api_key_hash: str, tier: str = "guest") -> User:
    db_user = User(api_key_hash=api_key_hash, tier=tier, created_at=utcnow())
    session.add(db_user)
    session.commit()
    session.refresh(db_user)
    return db_user


def get_user_by_api_key_hash(*, session: Session, api_key_hash: str) -> Optional[User]:
    query = select(User).where(User.api_key_hash == api_key_hash)
    return session.exec(query).first()


# Chats

def create_conversation(
    *,
    session: Session,
    chat_id: uuid.UUID,
    user_id: uuid.UUID,
    title: str,
    visibility: str = "private",
) -> Chat:
    """Create a new chat"""
    db_chat = Chat(
        id=chat_id,
        user_id=user_id,
        title=title,
        visibility=visibility,
        created_at=utcnow(),
    )
    session.add(db_chat)
    session.commit()
    session.refresh(db_chat)
    return db_chat


def get_conversation(*, session: Session, chat_id: uuid.UUID) -> Optional[Chat]:
    """Get a chat by ID"""
    return session.get(Chat, chat_id)


def list_conversations(
    *,
    session: Session,
    user_id: uuid.UUID,
    skip: int = 0,
    limit: int = 100,
) -> List[Chat]:
    """Chats owned by a user, newest first"""
    query = (
        select(Chat)
        .where(Chat.user_id == user_id)
        .order_by(col(Chat.created_at).desc())
        .offset(skip)
        .limit(limit)
    )
    return list(session.exec(query).all())


def update_conversation(
    *,
    session: Session,
    chat_id: uuid.UUID,
    title: Optional[str] = None,
    visibility: Optional[str] = None,
) -> Optional[Chat]:
    chat = session.get(Chat, chat_id)
    if not chat:
        return None
    if title is not None:
        chat.title = title
    if visibility is not None:
        chat.visibility = visibility
    session.add(chat)
    session.commit()
    session.refresh(chat)
    return chat


def delete_conversation(*, session: Session, chat_id: uuid.UUID) -> Optional[ChatPublic]:
    """Delete a chat with its messages and streams, returning the deleted record"""
    chat = session.get(Chat, chat_id)
    if not chat:
        return None
    deleted = to_chat_public(session=session, chat=chat)
    session.delete(chat)
    session.commit()
    return deleted


def to_chat_public(*, session: Session, chat: Chat) -> ChatPublic:
    return ChatPublic(
        id=chat.id,
        user_id=chat.user_id,
        title=chat.title,
        visibility=chat.visibility,
        created_at=chat.created_at,
        message_count=count_turns(session=session, chat_id=chat.id),
    )


# Turns

def get_turns(*, session: Session, chat_id: uuid.UUID) -> List[Message]:
    """All turns of a chat in creation order"""
    query = (
        select(Message)
        .where(Message.chat_id == chat_id)
        .order_by(col(Message.created_at).asc())
    )
    return list(session.exec(query).all())


def append_turns(
    *,
    session: Session,
    chat_id: uuid.UUID,
    turns: Iterable[ConversationTurn],
) -> List[Message]:
    """Persist turns in one commit; either all of them are written or none"""
    rows = [
        Message(
            id=turn.id,
            chat_id=chat_id,
            role=turn.role,
            parts=dump_parts(turn.parts),
            attachments=[a.model_dump(by_alias=True) for a in turn.attachments],
            created_at=turn.created_at,
        )
        for turn in turns
    ]
    try:
        session.add_all(rows)
        session.commit()
    except Exception:
        session.rollback()
        raise
    for row in rows:
        session.refresh(row)
    return rows


def count_turns(*, session: Session, chat_id: uuid.UUID) -> int:
    query = select(func.count(col(Message.id))).where(Message.chat_id == chat_id)
    return session.exec(query).one()


def count_recent_turns(
    *,
    session: Session,
    user_id: uuid.UUID,
    window_hours: int = 24,
) -> int:
    """User-authored turns across all of a user's chats in the trailing window"""
    since = utcnow() - timedelta(hours=window_hours)
    query = (
        select(func.count(col(Message.id)))
        .join(Chat, col(Message.chat_id) == col(Chat.id))
        .where(
            Chat.user_id == user_id,
            Message.role == "user",
            col(Message.created_at) >= since,
        )
    )
    return session.exec(query).one()


# Streams

def create_stream_session(*, session: Session, stream_id: uuid.UUID, chat_id: uuid.UUID) -> Stream:
    db_stream = Stream(id=stream_id, chat_id=chat_id, created_at=utcnow())
    session.add(db_stream)
    session.commit()
    session.refresh(db_stream)
    return db_stream


def get_stream_ids(*, session: Session, chat_id: uuid.UUID) -> List[uuid.UUID]:
    """Stream ids of a chat, oldest first"""
    query = (
        select(Stream.id)
        .where(Stream.chat_id == chat_id)
        .order_by(col(Stream.created_at).asc())
    )
    return list(session.exec(query).all())


# Documents

def save_document(
    *,
    session: Session,
    document_id: uuid.UUID,
    title: str,
    kind: str,
    content: str,
    user_id: uuid.UUID,
) -> Document:
    db_document = Document(
        id=document_id,
        title=title,
        kind=kind,
        content=content,
        user_id=user_id,
        created_at=utcnow(),
    )
    session.add(db_document)
    session.commit()
    session.refresh(db_document)
    return db_document


def get_document(*, session: Session, document_id: uuid.UUID) -> Optional[Document]:
    """Latest version of a document"""
    query = (
        select(Document)
        .where(Document.id == document_id)
        .order_by(col(Document.created_at).desc())
    )
    return session.exec(query).first()


def save_suggestions(*, session: Session, suggestions: List[dict[str, Any]]) -> List[Suggestion]:
    rows = [Suggestion(**suggestion) for suggestion in suggestions]
    session.add_all(rows)
    session.commit()
    for row in rows:
        session.refresh(row)
    return rows
