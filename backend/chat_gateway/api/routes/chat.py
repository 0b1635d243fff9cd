import uuid

from typing import Optional

import structlog
from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import StreamingResponse

from chat_gateway import crud
from chat_gateway.api.deps import OptionalIdentityDep, RegistryDep, SessionDep, StreamContextDep
from chat_gateway.core.errors import ChatError
from chat_gateway.core.logging import describe_exception
from chat_gateway.events import SSE_HEADERS, to_sse
from chat_gateway.models import ChatPublic, utcnow
from chat_gateway.parts import ConversationTurn, finalize_parts
from chat_gateway.services.gate import admit, parse_request_body
from chat_gateway.services.geo import hints_from_headers
from chat_gateway.services.orchestrator import StreamOrchestrator
from chat_gateway.services.resumable import open_stream

router = APIRouter(prefix="/chat", tags=["chat"])
logger = structlog.get_logger()


def _parse_chat_id(value: Optional[str]) -> uuid.UUID:
    if not value:
        raise ChatError("bad_request:api", "Parameter id is required.")
    try:
        return uuid.UUID(value)
    except ValueError:
        raise ChatError("bad_request:api", "Parameter id must be a UUID.") from None


@router.post("")
async def create_chat_stream(
    request: Request,
    session: SessionDep,
    identity: OptionalIdentityDep,
    registry: RegistryDep,
    stream_handle: StreamContextDep,
):
    """
    Append a user message to a chat and stream the assistant's reply.
    """
    body = parse_request_body(await request.body())
    admission = await admit(body, identity, session, registry)
    chat_id = admission.chat.id
    log = logger.bind(chat_id=str(chat_id), model=body.selected_chat_model)

    try:
        model = registry.model(body.selected_chat_model)
        history = [ConversationTurn.from_row(row) for row in crud.get_turns(session=session, chat_id=chat_id)]
        # The model sees the message as sent; only the stored copy is finalized
        user_turn = ConversationTurn(
            id=body.message.id,
            role="user",
            parts=body.message.content_parts(),
            attachments=[],
            created_at=utcnow(),
        )
        stored_turn = user_turn.model_copy(
            update={
                "parts": finalize_parts(
                    user_turn.parts,
                    requires_normalization=model.requires_normalization,
                )
            }
        )
        crud.append_turns(session=session, chat_id=chat_id, turns=[stored_turn])
        history.append(user_turn)

        stream_id = uuid.uuid4()
        crud.create_stream_session(session=session, stream_id=stream_id, chat_id=chat_id)

        orchestrator = StreamOrchestrator(registry=registry)
        hints = hints_from_headers(request.headers)

        def make_stream():
            return to_sse(
                orchestrator.generate(
                    chat_id=chat_id,
                    history=history,
                    model_id=model.id,
                    hints=hints,
                    identity=identity,
                )
            )

        stream = await open_stream(str(stream_id), make_stream, handle=stream_handle)
    except ChatError:
        raise
    except Exception as exc:
        log.error("chat_request_failed", **describe_exception(exc))
        raise ChatError("offline:chat") from exc

    log.info("chat_stream_opened", stream_id=str(stream_id), created=admission.created)
    return StreamingResponse(stream, media_type="text/event-stream", headers=SSE_HEADERS)


@router.delete("", response_model=ChatPublic)
def delete_chat(
    session: SessionDep,
    identity: OptionalIdentityDep,
    id: Optional[str] = Query(default=None),
):
    """
    Delete a chat with its messages and streams.
    """
    chat_id = _parse_chat_id(id)
    if identity is None:
        raise ChatError("unauthorized:chat")

    chat = crud.get_conversation(session=session, chat_id=chat_id)
    if not chat:
        raise ChatError("not_found:chat")
    if chat.user_id != identity.user_id:
        raise ChatError("forbidden:chat")

    deleted = crud.delete_conversation(session=session, chat_id=chat_id)
    if deleted is None:
        raise ChatError("not_found:chat")
    logger.info("chat_deleted", chat_id=str(chat_id))
    return deleted


@router.get("/{chat_id}/stream")
async def resume_chat_stream(
    chat_id: str,
    session: SessionDep,
    identity: OptionalIdentityDep,
    stream_handle: StreamContextDep,
):
    """
    Reattach to the most recent generation of a chat, replayed from its start.
    """
    chat_uuid = _parse_chat_id(chat_id)
    chat = crud.get_conversation(session=session, chat_id=chat_uuid)
    if not chat:
        raise ChatError("not_found:chat")
    if chat.visibility == "private":
        if identity is None:
            raise ChatError("unauthorized:chat")
        if chat.user_id != identity.user_id:
            raise ChatError("forbidden:chat")

    stream_ids = crud.get_stream_ids(session=session, chat_id=chat_uuid)
    if not stream_ids:
        raise ChatError("not_found:stream")

    context = await stream_handle.get()
    if context is None:
        return Response(status_code=204)
    stream = await context.resume_existing_stream(str(stream_ids[-1]))
    if stream is None:
        return Response(status_code=204)
    return StreamingResponse(stream, media_type="text/event-stream", headers=SSE_HEADERS)
