import uuid

from fastapi.testclient import TestClient
from sqlmodel import Session

from chat_gateway import crud
from chat_gateway.api.deps import get_stream_context
from chat_gateway.core.config import settings
from chat_gateway.events import GENERIC_ERROR_TEXT
from chat_gateway.main import app
from chat_gateway.providers.registry import ModelRegistry
from chat_gateway.services.resumable import ContextState, StreamContextHandle
from chat_gateway.tests.utils.utils import (
    FakeRedis,
    ScriptedProvider,
    chat_payload,
    create_chat_with_user_turns,
    create_identity,
    guest_headers,
    parse_sse,
)


def test_post_chat_streams_and_persists(client: TestClient, db: Session) -> None:
    headers = guest_headers(client)
    chat_id = uuid.uuid4()
    data = chat_payload(chat_id, text="Say hello")

    r = client.post(f"{settings.API_V1_STR}/chat", headers=headers, json=data)

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    events = parse_sse(r.text)
    assert events[0]["type"] == "start"
    assert events[-2] == {"type": "finish"}
    assert events[-1] == "[DONE]"
    assert "".join(e["delta"] for e in events[:-1] if e["type"] == "text-delta") == "Hello world"

    db.expire_all()
    turns = crud.get_turns(session=db, chat_id=chat_id)
    assert [t.role for t in turns] == ["user", "assistant"]
    assert str(turns[0].id) == data["message"]["id"]
    assert turns[0].parts == [{"type": "text", "text": "Say hello"}]
    assert crud.get_stream_ids(session=db, chat_id=chat_id)


def test_post_chat_without_identity(client: TestClient) -> None:
    r = client.post(f"{settings.API_V1_STR}/chat", json=chat_payload(uuid.uuid4()))
    assert r.status_code == 401
    assert r.json()["code"] == "unauthorized:chat"


def test_post_chat_with_invalid_body(client: TestClient) -> None:
    headers = guest_headers(client)
    r = client.post(
        f"{settings.API_V1_STR}/chat",
        headers=headers,
        json={**chat_payload(uuid.uuid4()), "selectedChatModel": "gpt-unknown"},
    )
    assert r.status_code == 400
    content = r.json()
    assert content["code"] == "bad_request:api"
    assert content["message"]


def test_post_chat_with_bearer_token(client: TestClient) -> None:
    api_key = guest_headers(client)["X-API-Key"]
    r = client.post(
        f"{settings.API_V1_STR}/chat",
        headers={"Authorization": f"Bearer {api_key}"},
        json=chat_payload(uuid.uuid4()),
    )
    assert r.status_code == 200


def test_post_chat_to_foreign_chat(client: TestClient, db: Session) -> None:
    owner, _ = create_identity(db)
    chat_id = create_chat_with_user_turns(db, owner, 1)
    r = client.post(f"{settings.API_V1_STR}/chat", headers=guest_headers(client), json=chat_payload(chat_id))
    assert r.status_code == 403
    assert r.json()["code"] == "forbidden:chat"
    assert crud.count_turns(session=db, chat_id=chat_id) == 1


def test_post_chat_over_quota(client: TestClient, db: Session) -> None:
    identity, api_key = create_identity(db)
    chat_id = create_chat_with_user_turns(db, identity, settings.GUEST_MAX_MESSAGES_PER_DAY)
    r = client.post(f"{settings.API_V1_STR}/chat", headers={"X-API-Key": api_key}, json=chat_payload(chat_id))
    assert r.status_code == 429
    assert r.json()["code"] == "rate_limit:chat"


def test_backend_failure_ends_stream_with_error(
    client: TestClient, registry: ModelRegistry, db: Session
) -> None:
    registry.register("chat-model", ScriptedProvider(["Hello ", "again ", "lost"], fail_after=2))
    headers = guest_headers(client)
    chat_id = uuid.uuid4()

    r = client.post(f"{settings.API_V1_STR}/chat", headers=headers, json=chat_payload(chat_id))

    assert r.status_code == 200
    events = parse_sse(r.text)
    assert events[-2] == {"type": "error", "errorText": GENERIC_ERROR_TEXT}
    assert "backend dropped" not in r.text
    db.expire_all()
    assert [t.role for t in crud.get_turns(session=db, chat_id=chat_id)] == ["user"]


def test_a2a_user_message_is_normalized(client: TestClient, db: Session) -> None:
    headers = guest_headers(client)
    chat_id = uuid.uuid4()
    data = chat_payload(chat_id, model="a2a-model")
    data["message"]["parts"] = [
        {"type": "text", "text": "Look "},
        {"type": "file", "mediaType": "image/png", "name": "a.png", "url": "https://example.com/a.png"},
        {"type": "text", "text": "here"},
    ]

    r = client.post(f"{settings.API_V1_STR}/chat", headers=headers, json=data)

    assert r.status_code == 200
    db.expire_all()
    user_turn = crud.get_turns(session=db, chat_id=chat_id)[0]
    assert user_turn.parts == [{"type": "text", "text": "Look here"}]


def test_delete_chat(client: TestClient, db: Session) -> None:
    identity, api_key = create_identity(db)
    chat_id = create_chat_with_user_turns(db, identity, 2)

    r = client.delete(f"{settings.API_V1_STR}/chat", params={"id": str(chat_id)}, headers={"X-API-Key": api_key})

    assert r.status_code == 200
    content = r.json()
    assert content["id"] == str(chat_id)
    assert content["message_count"] == 2
    db.expire_all()
    assert crud.get_conversation(session=db, chat_id=chat_id) is None
    assert crud.count_turns(session=db, chat_id=chat_id) == 0


def test_delete_chat_of_another_user(client: TestClient, db: Session) -> None:
    owner, _ = create_identity(db)
    chat_id = create_chat_with_user_turns(db, owner, 1)

    r = client.delete(f"{settings.API_V1_STR}/chat", params={"id": str(chat_id)}, headers=guest_headers(client))

    assert r.status_code == 403
    assert r.json()["code"] == "forbidden:chat"
    db.expire_all()
    assert crud.get_conversation(session=db, chat_id=chat_id) is not None


def test_delete_chat_errors(client: TestClient) -> None:
    headers = guest_headers(client)
    r = client.delete(f"{settings.API_V1_STR}/chat", headers=headers)
    assert r.status_code == 400
    r = client.delete(f"{settings.API_V1_STR}/chat", params={"id": str(uuid.uuid4())})
    assert r.status_code == 401
    r = client.delete(f"{settings.API_V1_STR}/chat", params={"id": str(uuid.uuid4())}, headers=headers)
    assert r.status_code == 404
    assert r.json()["code"] == "not_found:chat"


def test_resume_without_redis_is_no_content(client: TestClient) -> None:
    headers = guest_headers(client)
    chat_id = uuid.uuid4()
    client.post(f"{settings.API_V1_STR}/chat", headers=headers, json=chat_payload(chat_id))

    r = client.get(f"{settings.API_V1_STR}/chat/{chat_id}/stream", headers=headers)
    assert r.status_code == 204


def test_resume_private_chat_of_another_user(client: TestClient, db: Session) -> None:
    owner, _ = create_identity(db)
    chat_id = create_chat_with_user_turns(db, owner, 1)
    r = client.get(f"{settings.API_V1_STR}/chat/{chat_id}/stream", headers=guest_headers(client))
    assert r.status_code == 403


def test_resume_chat_without_streams(client: TestClient, db: Session) -> None:
    identity, api_key = create_identity(db)
    chat_id = create_chat_with_user_turns(db, identity, 1)
    r = client.get(f"{settings.API_V1_STR}/chat/{chat_id}/stream", headers={"X-API-Key": api_key})
    assert r.status_code == 404
    assert r.json()["code"] == "not_found:stream"


def test_a2a_file_only_message_reaches_the_model(
    client: TestClient, registry: ModelRegistry, db: Session
) -> None:
    a2a = ScriptedProvider(["I see a cat."])
    registry.register("a2a-model", a2a)
    identity, api_key = create_identity(db)
    chat_id = create_chat_with_user_turns(db, identity, 1)
    earlier = crud.get_turns(session=db, chat_id=chat_id)[0].parts[0]["text"]
    data = chat_payload(chat_id, model="a2a-model")
    data["message"]["parts"] = [
        {"type": "file", "mediaType": "image/png", "name": "cat.png", "url": "https://example.com/cat.png"},
    ]

    r = client.post(f"{settings.API_V1_STR}/chat", headers={"X-API-Key": api_key}, json=data)

    assert r.status_code == 200
    last = a2a.requests[0].messages[-1]
    assert last.role == "user"
    assert last.content == [{"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}}]
    assert earlier not in str(last.content)
    db.expire_all()
    turns = crud.get_turns(session=db, chat_id=chat_id)
    assert [t.role for t in turns] == ["user", "user", "assistant"]
    assert turns[1].parts == []


def test_resume_replays_stream_through_redis(client: TestClient) -> None:
    handle = StreamContextHandle("redis://localhost:6379", client_factory=lambda url, **kwargs: FakeRedis())
    app.dependency_overrides[get_stream_context] = lambda: handle
    headers = guest_headers(client)
    chat_id = uuid.uuid4()

    posted = client.post(f"{settings.API_V1_STR}/chat", headers=headers, json=chat_payload(chat_id))
    resumed = client.get(f"{settings.API_V1_STR}/chat/{chat_id}/stream", headers=headers)

    assert handle.state is ContextState.READY
    assert posted.status_code == 200
    assert resumed.status_code == 200
    assert resumed.headers["content-type"].startswith("text/event-stream")
    events = parse_sse(resumed.text)
    assert events[0]["type"] == "start"
    assert events[-2] == {"type": "finish"}
    assert events[-1] == "[DONE]"
    assert events == parse_sse(posted.text)
