from typing import AsyncIterator, List, Optional, Tuple

from chat_gateway.providers.base import (
    ChatRequest,
    ChatResponseFull,
    Provider,
    ReasoningDelta,
    StepEnd,
    StreamFragment,
    TextDelta,
    new_block_id,
)
from chat_gateway.tools.base import ToolSet


def _partial_suffix(text: str, tag: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``tag``."""
    for size in range(min(len(tag) - 1, len(text)), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0


class ThinkTagExtractor:
    """Splits streamed text into reasoning and answer segments by tag.

    Tags may be split across chunks; a trailing partial tag is held back
    until the next chunk decides it.
    """

    def __init__(self, tag: str = "think"):
        self._open = f"<{tag}>"
        self._close = f"</{tag}>"
        self._buffer = ""
        self.in_reasoning = False

    def _kind(self) -> str:
        return "reasoning" if self.in_reasoning else "text"

    def feed(self, chunk: str) -> List[Tuple[str, str]]:
        self._buffer += chunk
        out: List[Tuple[str, str]] = []
        while True:
            tag = self._close if self.in_reasoning else self._open
            index = self._buffer.find(tag)
            if index == -1:
                keep = _partial_suffix(self._buffer, tag)
                emit = self._buffer[: len(self._buffer) - keep]
                if emit:
                    out.append((self._kind(), emit))
                self._buffer = self._buffer[len(emit):]
                return out
            if index:
                out.append((self._kind(), self._buffer[:index]))
            self._buffer = self._buffer[index + len(tag):]
            self.in_reasoning = not self.in_reasoning

    def flush(self) -> List[Tuple[str, str]]:
        rest, self._buffer = self._buffer, ""
        return [(self._kind(), rest)] if rest else []


class ReasoningProvider(Provider):
    """Wraps a backend and re-emits ``<think>`` sections as reasoning deltas."""

    def __init__(self, inner: Provider, tag: str = "think"):
        self.inner = inner
        self.tag = tag

    async def generate_stream(
        self, req: ChatRequest, tools: Optional[ToolSet] = None
    ) -> AsyncIterator[StreamFragment]:
        extractor = ThinkTagExtractor(self.tag)
        ids = {"text": None, "reasoning": None}

        def fragments(segments: List[Tuple[str, str]]) -> List[StreamFragment]:
            out: List[StreamFragment] = []
            for kind, text in segments:
                if ids[kind] is None:
                    ids[kind] = new_block_id("rsn" if kind == "reasoning" else "txt")
                # Switching kinds closes the other block; it reopens under a new id
                ids["text" if kind == "reasoning" else "reasoning"] = None
                if kind == "reasoning":
                    out.append(ReasoningDelta(id=ids[kind], delta=text))
                else:
                    out.append(TextDelta(id=ids[kind], delta=text))
            return out

        async for fragment in self.inner.generate_stream(req, tools):
            if isinstance(fragment, TextDelta):
                for out in fragments(extractor.feed(fragment.delta)):
                    yield out
                continue
            if isinstance(fragment, StepEnd):
                for out in fragments(extractor.flush()):
                    yield out
                ids.update(text=None, reasoning=None)
            yield fragment

        for out in fragments(extractor.flush()):
            yield out

    async def generate(self, req: ChatRequest) -> ChatResponseFull:
        res = await self.inner.generate(req)
        extractor = ThinkTagExtractor(self.tag)
        segments = extractor.feed(res.content) + extractor.flush()
        res.content = "".join(text for kind, text in segments if kind == "text")
        return res
