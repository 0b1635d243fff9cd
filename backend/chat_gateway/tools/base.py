import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Protocol, runtime_checkable

import structlog
from sqlmodel import Session

from chat_gateway.core.db import new_session
from chat_gateway.providers.base import DataEvent, StreamFragment, ToolResult

if TYPE_CHECKING:
    from chat_gateway.providers.registry import ModelRegistry
    from chat_gateway.services.identity import Identity

logger = structlog.get_logger()


class DataWriter:
    """Queue of side-channel events a tool emits while it runs."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[DataEvent] = asyncio.Queue()

    def write(self, name: str, data: Any, *, transient: bool = True) -> None:
        self._queue.put_nowait(DataEvent(name=name, data=data, transient=transient))

    async def get(self, timeout: float) -> DataEvent | None:
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def drain(self) -> list[DataEvent]:
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events


@dataclass
class ToolContext:
    identity: "Identity"
    registry: "ModelRegistry"
    writer: DataWriter = field(default_factory=DataWriter)
    session_factory: Callable[[], Session] = new_session


@runtime_checkable
class Tool(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def input_schema(self) -> dict[str, Any]: ...

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> Any: ...


@dataclass
class ToolSet:
    tools: dict[str, Tool]
    ctx: ToolContext

    def get(self, name: str) -> Tool | None:
        return self.tools.get(name)

    def to_openai(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
            }
            for tool in self.tools.values()
        ]


async def run_tool(
    toolset: ToolSet,
    *,
    tool_call_id: str,
    tool_name: str,
    tool_input: dict[str, Any],
    poll_seconds: float = 0.05,
) -> AsyncIterator[StreamFragment]:
    """Execute one tool call, forwarding its data events while it runs.

    Yields any number of ``DataEvent`` fragments followed by exactly one
    ``ToolResult``. A failing tool produces an error result for the model
    instead of aborting the generation.
    """
    tool = toolset.get(tool_name)
    if tool is None:
        yield ToolResult(
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            output={"error": f"Unknown tool: {tool_name}"},
        )
        return

    writer = toolset.ctx.writer
    task = asyncio.create_task(tool.execute(tool_input, toolset.ctx))
    try:
        while not task.done():
            event = await writer.get(timeout=poll_seconds)
            if event is not None:
                yield event
        for event in writer.drain():
            yield event
    finally:
        if not task.done():
            task.cancel()

    try:
        output = task.result()
    except Exception as exc:
        logger.warning("tool_execution_failed", tool=tool_name, error=str(exc))
        output = {"error": f"Tool {tool_name} failed"}
    yield ToolResult(tool_call_id=tool_call_id, tool_name=tool_name, output=output)
