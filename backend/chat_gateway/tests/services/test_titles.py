import asyncio

from sqlmodel import Session

from chat_gateway import crud
from chat_gateway.services.titles import provisional_title, schedule_title_generation, wait_for_pending_titles
from chat_gateway.tests.utils.utils import (
    ScriptedProvider,
    create_chat_with_user_turns,
    create_identity,
    make_registry,
)


def test_provisional_title() -> None:
    assert provisional_title("  hello   world ") == "hello world"
    assert provisional_title("") == "New chat"
    assert provisional_title("a" * 101) == "a" * 100 + "..."


def test_generated_title_replaces_provisional(db: Session) -> None:
    identity, _ = create_identity(db)
    chat_id = create_chat_with_user_turns(db, identity, 0)

    async def run():
        schedule_title_generation(make_registry(ScriptedProvider([])), chat_id, "Weather in Paris?")
        await wait_for_pending_titles()

    asyncio.run(run())
    db.expire_all()
    assert crud.get_conversation(session=db, chat_id=chat_id).title == "A generated title"


def test_failed_title_generation_keeps_provisional(db: Session) -> None:
    identity, _ = create_identity(db)
    chat_id = create_chat_with_user_turns(db, identity, 0)
    title = crud.get_conversation(session=db, chat_id=chat_id).title
    registry = make_registry(ScriptedProvider([]))
    registry.register("title-model", ScriptedProvider(["boom"], fail_after=0))

    async def run():
        schedule_title_generation(registry, chat_id, "Hello")
        await wait_for_pending_titles()

    asyncio.run(run())
    db.expire_all()
    assert crud.get_conversation(session=db, chat_id=chat_id).title == title
