import asyncio
import json
import uuid
from datetime import timedelta, timezone

import pytest
from sqlmodel import Session

from chat_gateway import crud
from chat_gateway.core.errors import ChatError
from chat_gateway.models import utcnow
from chat_gateway.parts import ConversationTurn, TextPart
from chat_gateway.services.gate import admit, max_messages_per_day, parse_request_body
from chat_gateway.tests.utils.utils import (
    ScriptedProvider,
    chat_payload,
    create_chat_with_user_turns,
    create_identity,
    make_registry,
)

registry = make_registry(ScriptedProvider(["ok"]))


def _body(chat_id: uuid.UUID, **overrides):
    payload = chat_payload(chat_id)
    payload.update(overrides)
    return parse_request_body(json.dumps(payload).encode())


def _admit_error(body, identity, db: Session) -> ChatError:
    with pytest.raises(ChatError) as exc_info:
        asyncio.run(admit(body, identity, db, registry))
    return exc_info.value


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        json.dumps({"id": "nope"}).encode(),
        json.dumps({**chat_payload(uuid.uuid4()), "selectedChatModel": "title-model"}).encode(),
        json.dumps({**chat_payload(uuid.uuid4()), "selectedVisibilityType": "team"}).encode(),
        json.dumps({**chat_payload(uuid.uuid4(), text="x" * 2001)}).encode(),
    ],
)
def test_invalid_bodies_are_bad_requests(payload: bytes) -> None:
    with pytest.raises(ChatError) as exc_info:
        parse_request_body(payload)
    assert exc_info.value.code == "bad_request:api"
    assert exc_info.value.status_code == 400


def test_empty_parts_are_rejected() -> None:
    payload = chat_payload(uuid.uuid4())
    payload["message"]["parts"] = []
    with pytest.raises(ChatError):
        parse_request_body(json.dumps(payload).encode())


def test_missing_identity_is_unauthorized(db: Session) -> None:
    err = _admit_error(_body(uuid.uuid4()), None, db)
    assert err.code == "unauthorized:chat"
    assert err.status_code == 401


def test_quota_boundary(db: Session) -> None:
    identity, _ = create_identity(db, tier="guest")
    quota = max_messages_per_day("guest")
    chat_id = create_chat_with_user_turns(db, identity, quota - 1)

    admission = asyncio.run(admit(_body(chat_id), identity, db, registry))
    assert admission.created is False

    create_chat_with_user_turns(db, identity, 1)
    err = _admit_error(_body(chat_id), identity, db)
    assert err.code == "rate_limit:chat"
    assert err.status_code == 429


def test_regular_tier_has_larger_quota(db: Session) -> None:
    identity, _ = create_identity(db, tier="regular")
    chat_id = create_chat_with_user_turns(db, identity, max_messages_per_day("guest"))
    admission = asyncio.run(admit(_body(chat_id), identity, db, registry))
    assert admission.chat.id == chat_id


def test_foreign_chat_is_forbidden(db: Session) -> None:
    owner, _ = create_identity(db)
    intruder, _ = create_identity(db)
    chat_id = create_chat_with_user_turns(db, owner, 0)

    err = _admit_error(_body(chat_id), intruder, db)
    assert err.code == "forbidden:chat"
    assert err.status_code == 403


def test_new_chat_gets_provisional_title(db: Session) -> None:
    identity, _ = create_identity(db)
    chat_id = uuid.uuid4()
    body = _body(chat_id)
    body.message.parts[0].text = "y" * 150

    admission = asyncio.run(admit(body, identity, db, registry))

    assert admission.created is True
    chat = crud.get_conversation(session=db, chat_id=chat_id)
    assert chat.user_id == identity.user_id
    assert chat.title == "y" * 100 + "..."
    assert chat.visibility == "private"


def test_quota_window_uses_aware_utc_timestamps(db: Session) -> None:
    identity, _ = create_identity(db)
    chat_id = create_chat_with_user_turns(db, identity, 0)
    now = utcnow()
    assert now.tzinfo is timezone.utc
    crud.append_turns(
        session=db,
        chat_id=chat_id,
        turns=[
            ConversationTurn(id=uuid.uuid4(), role="user", parts=[TextPart(text="old")], created_at=now - timedelta(hours=25)),
            ConversationTurn(id=uuid.uuid4(), role="user", parts=[TextPart(text="new")], created_at=now - timedelta(hours=1)),
        ],
    )

    assert crud.count_recent_turns(session=db, user_id=identity.user_id) == 1
