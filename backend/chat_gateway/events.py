"""Outgoing event stream.

Events follow the UI message stream protocol chat clients already speak
(``start``, ``start-step``, ``text-start``/``text-delta``/``text-end``,
``reasoning-*``, ``tool-input-available``, ``tool-output-available``,
``data-*``, ``finish-step``, ``finish``, ``error``) and are framed as SSE.
"""
import json
from typing import Any, AsyncIterator, Dict, List

from chat_gateway.providers.base import StreamFragment

GENERIC_ERROR_TEXT = "Oops, an error occurred!"

SSE_DONE = "data: [DONE]\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}

Event = Dict[str, Any]


def _sse_format(data: Event) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False, default=str)}\n\n"


async def to_sse(events: AsyncIterator[Event]) -> AsyncIterator[str]:
    async for event in events:
        yield _sse_format(event)
    yield SSE_DONE


def start_event(message_id: str) -> Event:
    return {"type": "start", "messageId": message_id}


def finish_event() -> Event:
    return {"type": "finish"}


def error_event() -> Event:
    return {"type": "error", "errorText": GENERIC_ERROR_TEXT}


class EventTranslator:
    """Turns backend fragments into client events.

    Tracks open text/reasoning blocks so every ``*-start`` gets a matching
    ``*-end`` before the step finishes or a tool event is emitted.
    """

    def __init__(self) -> None:
        self._open: Dict[str, str] = {}

    def _close_blocks(self) -> List[Event]:
        events = [{"type": f"{kind}-end", "id": block_id} for block_id, kind in self._open.items()]
        self._open.clear()
        return events

    def _delta(self, kind: str, block_id: str, delta: str) -> List[Event]:
        events: List[Event] = []
        if block_id not in self._open:
            events.append({"type": f"{kind}-start", "id": block_id})
            self._open[block_id] = kind
        events.append({"type": f"{kind}-delta", "id": block_id, "delta": delta})
        return events

    def translate(self, fragment: StreamFragment) -> List[Event]:
        if fragment.type == "text-delta":
            return self._delta("text", fragment.id, fragment.delta)
        if fragment.type == "reasoning-delta":
            return self._delta("reasoning", fragment.id, fragment.delta)
        if fragment.type == "step-start":
            return [{"type": "start-step"}]
        if fragment.type == "step-end":
            return self._close_blocks() + [{"type": "finish-step"}]
        if fragment.type == "tool-call":
            return self._close_blocks() + [
                {
                    "type": "tool-input-available",
                    "toolCallId": fragment.tool_call_id,
                    "toolName": fragment.tool_name,
                    "input": fragment.input,
                }
            ]
        if fragment.type == "tool-result":
            return [
                {
                    "type": "tool-output-available",
                    "toolCallId": fragment.tool_call_id,
                    "output": fragment.output,
                }
            ]
        if fragment.type == "data":
            return [{"type": f"data-{fragment.name}", "data": fragment.data, "transient": fragment.transient}]
        if fragment.type == "finish":
            return self._close_blocks()
        return []

    def close(self) -> List[Event]:
        return self._close_blocks()
