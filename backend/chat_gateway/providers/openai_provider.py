import json
import os
import time
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from openai import AsyncOpenAI

from chat_gateway.core.config import settings
from chat_gateway.providers.base import (
    ChatRequest,
    ChatResponseFull,
    Finish,
    Provider,
    StepEnd,
    StepStart,
    StreamFragment,
    TextDelta,
    ToolCall,
    new_block_id,
)
from chat_gateway.tools.base import ToolSet, run_tool

logger = structlog.get_logger()


def _build_client() -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=settings.OPENAI_API_KEY or os.getenv("OPENAI_API_KEY"),
        organization=settings.OPENAI_ORG or None,
        project=settings.OPENAI_PROJECT or None,
        timeout=settings.OPENAI_TIMEOUT_SECONDS,
        # Failed calls surface to the caller as-is
        max_retries=0,
    )


class OpenAIProvider(Provider):
    """Chat Completions backend with a bounded tool-call loop."""

    def __init__(self, model_name: str, client: Optional[AsyncOpenAI] = None):
        self.model_name = model_name
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = _build_client()
        return self._client

    def _to_openai_messages(self, req: ChatRequest) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        if req.system:
            messages.append({"role": "system", "content": req.system})
        for m in req.messages:
            messages.append(m.model_dump(exclude_none=True))
        return messages

    async def _open_stream(self, messages: List[Dict[str, Any]], req: ChatRequest, tools: Optional[ToolSet]):
        kwargs: Dict[str, Any] = {}
        if tools and tools.tools:
            kwargs["tools"] = tools.to_openai()
        return await self.client.chat.completions.create(
            model=self.model_name,
            messages=messages,
            temperature=req.temperature,
            max_tokens=req.max_tokens,
            stream=True,
            **kwargs,
        )

    async def generate_stream(
        self, req: ChatRequest, tools: Optional[ToolSet] = None
    ) -> AsyncIterator[StreamFragment]:
        messages = self._to_openai_messages(req)
        finish_reason: Optional[str] = None

        for _ in range(max(1, req.max_steps)):
            yield StepStart()
            stream = await self._open_stream(messages, req, tools)

            text_id: Optional[str] = None
            content = ""
            pending: Dict[int, Dict[str, str]] = {}
            finish_reason = None
            async for event in stream:
                # event is a ChatCompletionChunk
                if not event.choices:
                    continue
                choice = event.choices[0]
                delta = choice.delta
                if delta.content:
                    if text_id is None:
                        text_id = new_block_id()
                    content += delta.content
                    yield TextDelta(id=text_id, delta=delta.content)
                for call in delta.tool_calls or []:
                    slot = pending.setdefault(call.index, {"id": "", "name": "", "arguments": ""})
                    if call.id:
                        slot["id"] = call.id
                    if call.function and call.function.name:
                        slot["name"] += call.function.name
                    if call.function and call.function.arguments:
                        slot["arguments"] += call.function.arguments
                if choice.finish_reason:
                    finish_reason = choice.finish_reason

            if not pending or not tools:
                yield StepEnd(finish_reason=finish_reason)
                break

            calls = [pending[index] for index in sorted(pending)]
            messages.append(
                {
                    "role": "assistant",
                    "content": content or None,
                    "tool_calls": [
                        {
                            "id": call["id"],
                            "type": "function",
                            "function": {"name": call["name"], "arguments": call["arguments"]},
                        }
                        for call in calls
                    ],
                }
            )
            for call in calls:
                try:
                    tool_input = json.loads(call["arguments"] or "{}")
                except json.JSONDecodeError:
                    tool_input = {}
                yield ToolCall(tool_call_id=call["id"], tool_name=call["name"], input=tool_input)
                async for fragment in run_tool(
                    tools,
                    tool_call_id=call["id"],
                    tool_name=call["name"],
                    tool_input=tool_input,
                ):
                    if fragment.type == "tool-result":
                        messages.append(
                            {
                                "role": "tool",
                                "tool_call_id": call["id"],
                                "content": json.dumps(fragment.output, default=str),
                            }
                        )
                    yield fragment
            yield StepEnd(finish_reason=finish_reason)
        else:
            logger.info("step_limit_reached", model=self.model_name, max_steps=req.max_steps)

        yield Finish(finish_reason=finish_reason)

    async def generate(self, req: ChatRequest) -> ChatResponseFull:
        created = int(time.time())
        resp = await self.client.chat.completions.create(
            model=self.model_name,
            messages=self._to_openai_messages(req),
            temperature=req.temperature,
            max_tokens=req.max_tokens,
            stream=False,
        )
        choice = resp.choices[0]
        content = choice.message.content or ""
        usage = {
            "prompt_tokens": getattr(resp.usage, "prompt_tokens", None),
            "completion_tokens": getattr(resp.usage, "completion_tokens", None),
            "total_tokens": getattr(resp.usage, "total_tokens", None),
        }
        return ChatResponseFull(
            id=resp.id,
            model=resp.model,
            created=created,
            content=content,
            finish_reason=choice.finish_reason,
            usage=usage,
        )
