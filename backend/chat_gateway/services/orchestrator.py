import asyncio
import json
import uuid
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional

import structlog
from sqlmodel import Session

from chat_gateway import crud
from chat_gateway.core.config import settings
from chat_gateway.core.db import new_session
from chat_gateway.core.logging import describe_exception
from chat_gateway.events import (
    Event,
    EventTranslator,
    error_event,
    finish_event,
    start_event,
)
from chat_gateway.models import utcnow
from chat_gateway.observability import GENERATIONS
from chat_gateway.parts import (
    ContentPart,
    ConversationTurn,
    FilePart,
    ReasoningPart,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    StepEndPart,
    StepStartPart,
    finalize_parts,
)
from chat_gateway.providers.base import ChatMessage, ChatRequest, StreamFragment
from chat_gateway.providers.registry import ModelRegistry
from chat_gateway.services.broadcast import Broadcast
from chat_gateway.services.geo import RequestHints
from chat_gateway.services.identity import Identity
from chat_gateway.services.prompts import system_prompt
from chat_gateway.services.smoothing import smooth_words
from chat_gateway.tools import ToolContext, build_toolset

logger = structlog.get_logger()


class MessageAssembler:
    """Rebuilds the assistant message's parts from the fragment stream."""

    def __init__(self) -> None:
        self.parts: List[ContentPart] = []
        self._blocks: Dict[str, Any] = {}

    def _append_text(self, block_id: str, delta: str, factory: Callable[[], Any]) -> None:
        block = self._blocks.get(block_id)
        if block is None:
            block = factory()
            self._blocks[block_id] = block
            self.parts.append(block)
        block.text += delta

    def add(self, fragment: StreamFragment) -> None:
        if fragment.type == "text-delta":
            self._append_text(fragment.id, fragment.delta, lambda: TextPart(text=""))
        elif fragment.type == "reasoning-delta":
            self._append_text(fragment.id, fragment.delta, lambda: ReasoningPart(text=""))
        elif fragment.type == "step-start":
            self.parts.append(StepStartPart())
        elif fragment.type == "step-end":
            self.parts.append(StepEndPart())
        elif fragment.type == "tool-call":
            self.parts.append(
                ToolCallPart(
                    tool_call_id=fragment.tool_call_id,
                    tool_name=fragment.tool_name,
                    input=fragment.input,
                )
            )
        elif fragment.type == "tool-result":
            self.parts.append(
                ToolResultPart(
                    tool_call_id=fragment.tool_call_id,
                    tool_name=fragment.tool_name,
                    output=fragment.output,
                )
            )


async def assemble(fragments: AsyncIterator[StreamFragment]) -> MessageAssembler:
    assembler = MessageAssembler()
    async for fragment in fragments:
        assembler.add(fragment)
    return assembler


def _user_content(parts: Iterable[ContentPart]) -> Any:
    texts = [part.text for part in parts if isinstance(part, TextPart)]
    files = [part for part in parts if isinstance(part, FilePart)]
    if not files:
        return "".join(texts)
    content: List[Dict[str, Any]] = [{"type": "text", "text": text} for text in texts]
    content.extend({"type": "image_url", "image_url": {"url": part.url}} for part in files)
    return content


def convert_to_model_messages(turns: Iterable[ConversationTurn]) -> List[ChatMessage]:
    """Canonical turns to the chat-completions message shape.

    Reasoning and structural parts are not replayed. Tool calls become an
    assistant message with ``tool_calls`` followed by one ``tool`` message per
    result; text after a tool result starts a new assistant message.
    """
    messages: List[ChatMessage] = []
    for turn in turns:
        if not turn.parts:
            continue
        if turn.role == "user":
            messages.append(ChatMessage(role="user", content=_user_content(turn.parts)))
            continue

        text = ""
        calls: List[Dict[str, Any]] = []
        results: List[ChatMessage] = []

        def flush() -> None:
            if text or calls:
                messages.append(
                    ChatMessage(role="assistant", content=text or None, tool_calls=calls or None)
                )
            messages.extend(results)

        for part in turn.parts:
            if isinstance(part, TextPart):
                if results:
                    flush()
                    text, calls, results = "", [], []
                text += part.text
            elif isinstance(part, ToolCallPart):
                calls.append(
                    {
                        "id": part.tool_call_id,
                        "type": "function",
                        "function": {"name": part.tool_name, "arguments": _json(part.input)},
                    }
                )
            elif isinstance(part, ToolResultPart):
                results.append(
                    ChatMessage(role="tool", tool_call_id=part.tool_call_id, content=_json(part.output))
                )
        flush()
    return messages


def _json(value: Any) -> str:
    return json.dumps(value if value is not None else {}, default=str)


class StreamOrchestrator:
    """Runs one generation call end to end.

    The backend stream is fanned out to two subscribers: the forward side
    turns fragments into client events, the drain side assembles the message
    that gets persisted. Both see every fragment and end together, so the
    stored turn always matches what was streamed.
    """

    def __init__(
        self,
        *,
        registry: ModelRegistry,
        session_factory: Callable[[], Session] = new_session,
        max_steps: int = settings.MAX_STEPS,
        smoothing_delay_ms: int = settings.STREAM_SMOOTHING_DELAY_MS,
    ):
        self.registry = registry
        self.session_factory = session_factory
        self.max_steps = max_steps
        self.smoothing_delay = smoothing_delay_ms / 1000

    def _persist(self, chat_id: uuid.UUID, turns: List[ConversationTurn]) -> None:
        with self.session_factory() as session:
            crud.append_turns(session=session, chat_id=chat_id, turns=turns)

    async def generate(
        self,
        *,
        chat_id: uuid.UUID,
        history: List[ConversationTurn],
        model_id: str,
        hints: RequestHints,
        identity: Identity,
        message_id: Optional[uuid.UUID] = None,
    ) -> AsyncIterator[Event]:
        message_id = message_id or uuid.uuid4()
        log = logger.bind(chat_id=str(chat_id), model=model_id, message_id=str(message_id))
        broadcast: Optional[Broadcast[StreamFragment]] = None
        collector: Optional[asyncio.Task] = None

        try:
            yield start_event(str(message_id))

            model = self.registry.model(model_id)
            provider = self.registry.resolve(model_id)
            req = ChatRequest(
                model=model_id,
                system=system_prompt(model=model, hints=hints),
                messages=convert_to_model_messages(history),
                max_steps=self.max_steps,
                chat_id=str(chat_id),
            )
            toolset = None
            if model.tools_enabled:
                toolset = build_toolset(
                    ToolContext(identity=identity, registry=self.registry, session_factory=self.session_factory)
                )

            broadcast = Broadcast(smooth_words(provider.generate_stream(req, toolset), self.smoothing_delay))
            forward = broadcast.subscribe()
            drain = broadcast.subscribe()
            broadcast.start()
            collector = asyncio.create_task(assemble(drain))

            translator = EventTranslator()
            async for fragment in forward:
                for event in translator.translate(fragment):
                    yield event
            for event in translator.close():
                yield event

            assembler = await collector
            parts = finalize_parts(assembler.parts, requires_normalization=model.requires_normalization)
            self._persist(
                chat_id,
                [
                    ConversationTurn(
                        id=message_id,
                        role="assistant",
                        parts=parts,
                        attachments=[],
                        created_at=utcnow(),
                    )
                ],
            )
            GENERATIONS.labels(model_id, "completed").inc()
            log.info("generation_completed", parts=len(parts))
            yield finish_event()
        except Exception as exc:
            GENERATIONS.labels(model_id, "failed").inc()
            log.error("generation_failed", **describe_exception(exc))
            yield error_event()
        finally:
            if broadcast is not None:
                await broadcast.aclose()
            if collector is not None:
                if not collector.done():
                    collector.cancel()
                await asyncio.gather(collector, return_exceptions=True)
