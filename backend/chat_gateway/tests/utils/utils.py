import asyncio
import json
import random
import string
import uuid
from typing import Any, AsyncIterator, List, Optional

from fastapi.testclient import TestClient
from sqlmodel import Session

from chat_gateway import crud
from chat_gateway.core.config import settings
from chat_gateway.models import utcnow
from chat_gateway.parts import ConversationTurn, TextPart
from chat_gateway.providers.base import (
    ChatRequest,
    Finish,
    Provider,
    StepEnd,
    StepStart,
    StreamFragment,
    TextDelta,
)
from chat_gateway.providers.registry import ModelRegistry
from chat_gateway.services.identity import Identity, provision_user
from chat_gateway.tools.base import ToolSet


def random_lower_string() -> str:
    return "".join(random.choices(string.ascii_lowercase, k=32))


class ScriptedProvider(Provider):
    """Backend double that replays fixed text chunks inside one step."""

    def __init__(self, chunks: List[str], fail_after: Optional[int] = None):
        self.chunks = chunks
        self.fail_after = fail_after
        self.requests: List[ChatRequest] = []
        self.toolsets: List[Optional[ToolSet]] = []

    async def generate_stream(
        self, req: ChatRequest, tools: Optional[ToolSet] = None
    ) -> AsyncIterator[StreamFragment]:
        self.requests.append(req)
        self.toolsets.append(tools)
        yield StepStart()
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index == self.fail_after:
                raise RuntimeError("backend dropped the connection")
            yield TextDelta(id="txt-1", delta=chunk)
        yield StepEnd(finish_reason="stop")
        yield Finish(finish_reason="stop")


def make_registry(chat_provider: Provider, a2a_provider: Optional[Provider] = None) -> ModelRegistry:
    return ModelRegistry(
        {
            "chat-model": chat_provider,
            "chat-model-reasoning": chat_provider,
            "a2a-model": a2a_provider or chat_provider,
            "title-model": ScriptedProvider(["A generated title"]),
            "artifact-model": ScriptedProvider(["Document body"]),
        }
    )


def create_identity(db: Session, tier: str = "guest") -> tuple[Identity, str]:
    user, api_key = provision_user(db, tier=tier)
    return Identity(user_id=user.id, tier=user.tier), api_key


def guest_headers(client: TestClient) -> dict[str, str]:
    r = client.post(f"{settings.API_V1_STR}/auth/guest")
    api_key = r.json()["api_key"]
    return {"X-API-Key": api_key}


def create_chat_with_user_turns(
    db: Session, identity: Identity, count: int, visibility: str = "private"
) -> uuid.UUID:
    chat = crud.create_conversation(
        session=db,
        chat_id=uuid.uuid4(),
        user_id=identity.user_id,
        title=random_lower_string(),
        visibility=visibility,
    )
    crud.append_turns(
        session=db,
        chat_id=chat.id,
        turns=[
            ConversationTurn(
                id=uuid.uuid4(),
                role="user",
                parts=[TextPart(text=random_lower_string())],
                created_at=utcnow(),
            )
            for _ in range(count)
        ],
    )
    return chat.id


def chat_payload(chat_id: uuid.UUID, text: str = "Hi there", model: str = "chat-model") -> dict:
    return {
        "id": str(chat_id),
        "message": {
            "id": str(uuid.uuid4()),
            "role": "user",
            "parts": [{"type": "text", "text": text}],
        },
        "selectedChatModel": model,
        "selectedVisibilityType": "private",
    }


def parse_sse(body: str) -> list:
    """Decoded events of an SSE body, with the trailing ``[DONE]`` kept as a string."""
    events = []
    for frame in body.split("\n\n"):
        if not frame.startswith("data: "):
            continue
        data = frame[len("data: "):]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


class FakeRedis:
    """Just enough of the redis.asyncio client for the resumable context."""

    def __init__(self) -> None:
        self.values: dict[str, Any] = {}
        self.streams: dict[str, list] = {}
        self.closed = False

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def get(self, key):
        return self.values.get(key)

    async def expire(self, key, seconds):
        return True

    async def xadd(self, key, fields):
        entries = self.streams.setdefault(key, [])
        entry_id = f"{len(entries) + 1}-0"
        entries.append((entry_id, dict(fields)))
        return entry_id

    async def xread(self, streams, block=None, count=None):
        (key, last_id), = streams.items()
        after = int(last_id.split("-")[0])
        for _ in range(max(1, (block or 0) // 10)):
            entries = [e for e in self.streams.get(key, []) if int(e[0].split("-")[0]) > after]
            if entries:
                return [(key, entries[:count])]
            await asyncio.sleep(0.01)
        return []

    async def aclose(self):
        self.closed = True
