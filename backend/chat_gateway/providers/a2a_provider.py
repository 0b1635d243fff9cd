"""Agent-to-Agent (A2A) backend.

Talks JSON-RPC ``message/stream`` to an on-prem A2A server. The server keeps
its own conversation context keyed by ``contextId``, so only the latest user
message is sent. Output arrives as status and artifact updates; each one is
surfaced as a step wrapping its text parts, which is why this backend's
messages are normalized before storage.
"""
import json
import uuid
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional

import httpx
import structlog

from chat_gateway.core.config import settings
from chat_gateway.providers.base import (
    ChatRequest,
    Finish,
    Provider,
    StepEnd,
    StepStart,
    StreamFragment,
    TextDelta,
    new_block_id,
)
from chat_gateway.tools.base import ToolSet

logger = structlog.get_logger()


class A2AError(Exception):
    def __init__(self, code: Any, message: str):
        super().__init__(f"A2A error {code}: {message}")
        self.code = code


def _last_user_text(req: ChatRequest) -> str:
    for message in reversed(req.messages):
        if message.role != "user":
            continue
        if isinstance(message.content, str):
            return message.content
        return "".join(
            item.get("text", "") for item in message.content or [] if item.get("type") == "text"
        )
    return ""


def _text_parts(parts: Optional[List[Dict[str, Any]]]) -> List[str]:
    return [
        part.get("text", "")
        for part in parts or []
        if part.get("kind", part.get("type")) == "text"
    ]


def _result_texts(result: Dict[str, Any]) -> List[str]:
    kind = result.get("kind")
    if kind == "artifact-update":
        return _text_parts((result.get("artifact") or {}).get("parts"))
    if kind == "status-update":
        return _text_parts(((result.get("status") or {}).get("message") or {}).get("parts"))
    if kind == "message":
        return _text_parts(result.get("parts"))
    if kind == "task":
        texts: List[str] = []
        for artifact in result.get("artifacts") or []:
            texts.extend(_text_parts(artifact.get("parts")))
        return texts
    return []


class A2AProvider(Provider):
    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url
        self._client = client

    def _payload(self, req: ChatRequest) -> Dict[str, Any]:
        message: Dict[str, Any] = {
            "role": "user",
            "kind": "message",
            "messageId": str(uuid.uuid4()),
            "parts": [{"kind": "text", "text": _last_user_text(req)}],
        }
        if req.chat_id:
            message["contextId"] = req.chat_id
        return {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": "message/stream",
            "params": {"message": message},
        }

    async def _events(self, client: httpx.AsyncClient, req: ChatRequest) -> AsyncGenerator[Dict[str, Any], None]:
        async with client.stream(
            "POST",
            self.base_url,
            json=self._payload(req),
            headers={"Accept": "text/event-stream"},
        ) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if not data:
                    continue
                envelope = json.loads(data)
                if envelope.get("error"):
                    error = envelope["error"]
                    raise A2AError(error.get("code"), error.get("message", "unknown error"))
                if envelope.get("result"):
                    yield envelope["result"]

    async def generate_stream(
        self, req: ChatRequest, tools: Optional[ToolSet] = None
    ) -> AsyncIterator[StreamFragment]:
        if tools:
            logger.debug("a2a_tools_ignored", count=len(tools.tools))

        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(timeout=settings.A2A_TIMEOUT_SECONDS)
        finish_reason = "stop"
        events = self._events(client, req)
        try:
            async for result in events:
                texts = _result_texts(result)
                if texts:
                    text_id = new_block_id()
                    yield StepStart()
                    for text in texts:
                        yield TextDelta(id=text_id, delta=text)
                    yield StepEnd()
                if result.get("kind") == "status-update" and result.get("final"):
                    state = (result.get("status") or {}).get("state")
                    if state and state != "completed":
                        finish_reason = state
                    break
        finally:
            await events.aclose()
            if owns_client:
                await client.aclose()
        yield Finish(finish_reason=finish_reason)
