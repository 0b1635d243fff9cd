import uuid
from typing import List

from fastapi import APIRouter, Query

from chat_gateway import crud
from chat_gateway.api.deps import CurrentIdentity, OptionalIdentityDep, SessionDep
from chat_gateway.core.errors import ChatError
from chat_gateway.models import Chat, ChatHistoryPublic, ChatPublic, ChatVisibilityUpdate, MessagePublic
from chat_gateway.services.identity import Identity

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _parse_id(conversation_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(conversation_id)
    except ValueError:
        raise ChatError("bad_request:api", "Invalid conversation ID format") from None


def _owned_chat(session, conversation_id: str, identity: Identity) -> Chat:
    chat = crud.get_conversation(session=session, chat_id=_parse_id(conversation_id))
    if not chat:
        raise ChatError("not_found:chat")
    if chat.user_id != identity.user_id:
        raise ChatError("forbidden:chat")
    return chat


@router.get("/", response_model=List[ChatPublic])
def list_conversations(
    session: SessionDep,
    identity: CurrentIdentity,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
):
    """
    List the caller's chats, newest first.
    """
    chats = crud.list_conversations(session=session, user_id=identity.user_id, skip=skip, limit=limit)
    return [crud.to_chat_public(session=session, chat=chat) for chat in chats]


@router.get("/{conversation_id}", response_model=ChatHistoryPublic)
def get_conversation_history(
    conversation_id: str,
    session: SessionDep,
    identity: OptionalIdentityDep,
):
    """
    Get a chat with all of its turns. Public chats are readable by anyone.
    """
    chat = crud.get_conversation(session=session, chat_id=_parse_id(conversation_id))
    if not chat:
        raise ChatError("not_found:chat")
    if chat.visibility == "private":
        if identity is None:
            raise ChatError("unauthorized:chat")
        if chat.user_id != identity.user_id:
            raise ChatError("forbidden:chat")

    messages = crud.get_turns(session=session, chat_id=chat.id)
    return ChatHistoryPublic(
        chat=crud.to_chat_public(session=session, chat=chat),
        messages=[MessagePublic.model_validate(msg, from_attributes=True) for msg in messages],
    )


@router.patch("/{conversation_id}/visibility", response_model=ChatPublic)
def update_conversation_visibility(
    conversation_id: str,
    payload: ChatVisibilityUpdate,
    session: SessionDep,
    identity: CurrentIdentity,
):
    chat = _owned_chat(session, conversation_id, identity)
    updated = crud.update_conversation(session=session, chat_id=chat.id, visibility=payload.visibility)
    if not updated:
        raise ChatError("not_found:chat")
    return crud.to_chat_public(session=session, chat=updated)
