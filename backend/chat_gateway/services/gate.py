"""Admission checks run before any generation work starts.

Checks are ordered: schema, identity, daily quota, chat ownership. The first
failing check raises the matching ``ChatError``; nothing is written until
every check has passed.
"""
from dataclasses import dataclass
from typing import Optional

import structlog
from pydantic import ValidationError
from sqlmodel import Session

from chat_gateway import crud
from chat_gateway.core.config import settings
from chat_gateway.core.errors import ChatError
from chat_gateway.models import Chat
from chat_gateway.observability import REJECTIONS
from chat_gateway.providers.registry import ModelRegistry
from chat_gateway.schemas import PostRequestBody
from chat_gateway.services.identity import Identity
from chat_gateway.services.titles import provisional_title, schedule_title_generation
from chat_gateway.utils.rate_limit import get_limiter

logger = structlog.get_logger()

MAX_MESSAGES_PER_DAY = {
    "guest": settings.GUEST_MAX_MESSAGES_PER_DAY,
    "regular": settings.REGULAR_MAX_MESSAGES_PER_DAY,
}


@dataclass
class Admission:
    chat: Chat
    created: bool


def _reject(code: str, **log_fields) -> ChatError:
    REJECTIONS.labels(code).inc()
    logger.info("request_rejected", code=code, **log_fields)
    return ChatError(code)


def parse_request_body(raw: bytes) -> PostRequestBody:
    try:
        return PostRequestBody.model_validate_json(raw)
    except ValidationError as e:
        logger.info("request_invalid", errors=e.error_count())
        REJECTIONS.labels("bad_request:api").inc()
        raise ChatError("bad_request:api") from e


def max_messages_per_day(tier: str) -> int:
    return MAX_MESSAGES_PER_DAY.get(tier, settings.GUEST_MAX_MESSAGES_PER_DAY)


async def admit(
    body: PostRequestBody,
    identity: Optional[Identity],
    session: Session,
    registry: ModelRegistry,
) -> Admission:
    if identity is None:
        raise _reject("unauthorized:chat")

    async with get_limiter(str(identity.user_id)):
        count = crud.count_recent_turns(
            session=session,
            user_id=identity.user_id,
            window_hours=settings.MESSAGE_WINDOW_HOURS,
        )
        quota = max_messages_per_day(identity.tier)
        if count >= quota:
            raise _reject("rate_limit:chat", user_id=str(identity.user_id), count=count, quota=quota)

        chat = crud.get_conversation(session=session, chat_id=body.id)
        if chat is not None:
            if chat.user_id != identity.user_id:
                raise _reject("forbidden:chat", chat_id=str(body.id))
            return Admission(chat=chat, created=False)

        text = body.message.first_text()
        chat = crud.create_conversation(
            session=session,
            chat_id=body.id,
            user_id=identity.user_id,
            title=provisional_title(text),
            visibility=body.selected_visibility_type,
        )
        if text:
            schedule_title_generation(registry, chat.id, text)
        logger.info("chat_created", chat_id=str(chat.id))
        return Admission(chat=chat, created=True)
