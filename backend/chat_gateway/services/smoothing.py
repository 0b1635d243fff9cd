import asyncio
import re
from typing import AsyncIterator, Optional

from chat_gateway.providers.base import StreamFragment, TextDelta

_WORD = re.compile(r"\S+\s+")


async def smooth_words(
    fragments: AsyncIterator[StreamFragment], delay_seconds: float = 0.0
) -> AsyncIterator[StreamFragment]:
    """Re-chunk text deltas so each one ends on a word boundary.

    Text is buffered until a word followed by whitespace is available; the
    remainder is flushed before any non-text fragment, when the text block
    changes, and at the end. Concatenated text is unchanged.
    """
    buffer = ""
    buffer_id: Optional[str] = None

    async for fragment in fragments:
        if not isinstance(fragment, TextDelta):
            if buffer:
                yield TextDelta(id=buffer_id, delta=buffer)
                buffer = ""
            yield fragment
            continue

        if buffer and fragment.id != buffer_id:
            yield TextDelta(id=buffer_id, delta=buffer)
            buffer = ""
        buffer += fragment.delta
        buffer_id = fragment.id

        while (match := _WORD.search(buffer)) is not None:
            chunk = buffer[: match.end()]
            buffer = buffer[match.end():]
            yield TextDelta(id=buffer_id, delta=chunk)
            if delay_seconds:
                await asyncio.sleep(delay_seconds)

    if buffer:
        yield TextDelta(id=buffer_id, delta=buffer)
