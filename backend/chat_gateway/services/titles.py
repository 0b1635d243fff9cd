import asyncio
import uuid
from typing import Callable, Set

import structlog
from sqlmodel import Session

from chat_gateway import crud
from chat_gateway.core.db import new_session
from chat_gateway.providers.base import ChatMessage, ChatRequest
from chat_gateway.providers.registry import ModelRegistry
from chat_gateway.services.prompts import TITLE_PROMPT

logger = structlog.get_logger()

TITLE_MODEL = "title-model"
MAX_TITLE_LENGTH = 80
PROVISIONAL_TITLE_LENGTH = 100

# Strong references so scheduled tasks are not collected mid-flight
_background_tasks: Set[asyncio.Task] = set()


def provisional_title(text: str) -> str:
    """Title used until the generated one lands"""
    text = " ".join(text.split())
    if not text:
        return "New chat"
    return text[:PROVISIONAL_TITLE_LENGTH] + "..." if len(text) > PROVISIONAL_TITLE_LENGTH else text


async def generate_title(registry: ModelRegistry, text: str) -> str:
    provider = registry.resolve(TITLE_MODEL)
    res = await provider.generate(
        ChatRequest(
            model=TITLE_MODEL,
            system=TITLE_PROMPT,
            messages=[ChatMessage(role="user", content=text)],
        )
    )
    title = res.content.strip().strip('"').replace(":", "")
    return title[:MAX_TITLE_LENGTH]


async def _update_title(
    registry: ModelRegistry,
    chat_id: uuid.UUID,
    text: str,
    session_factory: Callable[[], Session],
) -> None:
    try:
        title = await generate_title(registry, text)
    except Exception as e:
        # The provisional title stays in place
        logger.warning("title_generation_failed", chat_id=str(chat_id), error=str(e))
        return
    if not title:
        return
    with session_factory() as session:
        crud.update_conversation(session=session, chat_id=chat_id, title=title)
    logger.info("title_generated", chat_id=str(chat_id))


def schedule_title_generation(
    registry: ModelRegistry,
    chat_id: uuid.UUID,
    text: str,
    session_factory: Callable[[], Session] = new_session,
) -> asyncio.Task:
    task = asyncio.create_task(_update_title(registry, chat_id, text, session_factory))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def wait_for_pending_titles() -> None:
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)
