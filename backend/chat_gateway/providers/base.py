import time
import uuid
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Literal, Optional, Union

from pydantic import BaseModel

if TYPE_CHECKING:
    from chat_gateway.tools.base import ToolSet


class ChatMessage(BaseModel):
    role: str  # "system" | "user" | "assistant" | "tool"
    content: Union[str, List[Dict[str, Any]], None] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_call_id: Optional[str] = None


class ChatRequest(BaseModel):
    model: str
    messages: List[ChatMessage]
    system: Optional[str] = None
    temperature: Optional[float] = 0.7
    max_tokens: Optional[int] = None
    max_steps: int = 1
    chat_id: Optional[str] = None  # conversation key for backends that keep their own context


# Stream fragments: what a backend emits while generating

class StepStart(BaseModel):
    type: Literal["step-start"] = "step-start"


class StepEnd(BaseModel):
    type: Literal["step-end"] = "step-end"
    finish_reason: Optional[str] = None


class TextDelta(BaseModel):
    type: Literal["text-delta"] = "text-delta"
    id: str
    delta: str


class ReasoningDelta(BaseModel):
    type: Literal["reasoning-delta"] = "reasoning-delta"
    id: str
    delta: str


class ToolCall(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    input: Dict[str, Any] = {}


class ToolResult(BaseModel):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str
    output: Any = None


class DataEvent(BaseModel):
    """Side-channel payload written by a tool while it runs"""
    type: Literal["data"] = "data"
    name: str
    data: Any = None
    transient: bool = True


class Finish(BaseModel):
    type: Literal["finish"] = "finish"
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None


StreamFragment = Union[
    StepStart, StepEnd, TextDelta, ReasoningDelta, ToolCall, ToolResult, DataEvent, Finish
]


class ChatResponseFull(BaseModel):
    id: str
    model: str
    created: int
    content: str
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None


def new_block_id(prefix: str = "txt") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class Provider:
    """Uniform generation capability regardless of the underlying vendor."""

    def generate_stream(
        self, req: ChatRequest, tools: Optional["ToolSet"] = None
    ) -> AsyncIterator[StreamFragment]:
        raise NotImplementedError

    async def generate(self, req: ChatRequest) -> ChatResponseFull:
        """Single-shot completion built from the stream; backends may override."""
        content = ""
        finish_reason = None
        usage = None
        async for fragment in self.generate_stream(req):
            if isinstance(fragment, TextDelta):
                content += fragment.delta
            elif isinstance(fragment, Finish):
                finish_reason = fragment.finish_reason
                usage = fragment.usage
        return ChatResponseFull(
            id=str(uuid.uuid4()),
            model=req.model,
            created=int(time.time()),
            content=content,
            finish_reason=finish_reason,
            usage=usage,
        )
