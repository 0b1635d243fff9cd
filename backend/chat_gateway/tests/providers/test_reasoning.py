import asyncio

from chat_gateway.parts import ReasoningPart, StepEndPart, StepStartPart, TextPart
from chat_gateway.providers.base import ChatMessage, ChatRequest, ReasoningDelta, TextDelta
from chat_gateway.providers.reasoning import ReasoningProvider, ThinkTagExtractor
from chat_gateway.services.orchestrator import MessageAssembler
from chat_gateway.tests.utils.utils import ScriptedProvider


def _feed_all(chunks):
    extractor = ThinkTagExtractor("think")
    segments = []
    for chunk in chunks:
        segments.extend(extractor.feed(chunk))
    segments.extend(extractor.flush())
    return segments


def _joined(segments, kind):
    return "".join(text for k, text in segments if k == kind)


def test_extracts_reasoning_section() -> None:
    segments = _feed_all(["<think>plan it</think>The answer"])
    assert _joined(segments, "reasoning") == "plan it"
    assert _joined(segments, "text") == "The answer"


def test_tags_split_across_chunks() -> None:
    segments = _feed_all(["<thi", "nk>step one", " and two</th", "ink>Done", "."])
    assert _joined(segments, "reasoning") == "step one and two"
    assert _joined(segments, "text") == "Done."


def test_text_resembling_a_tag_prefix_is_kept() -> None:
    segments = _feed_all(["a <", "b"])
    assert segments == [("text", "a "), ("text", "<b")]


def test_provider_emits_reasoning_deltas() -> None:
    provider = ReasoningProvider(ScriptedProvider(["<think>hm", "m</think>", "Yes"]))
    req = ChatRequest(model="chat-model-reasoning", messages=[ChatMessage(role="user", content="?")])

    async def run():
        return [f async for f in provider.generate_stream(req)]

    fragments = asyncio.run(run())
    reasoning = "".join(f.delta for f in fragments if isinstance(f, ReasoningDelta))
    text = "".join(f.delta for f in fragments if isinstance(f, TextDelta))
    assert reasoning == "hmm"
    assert text == "Yes"


def test_generate_strips_reasoning() -> None:
    provider = ReasoningProvider(ScriptedProvider(["<think>private</think>", "Title"]))
    req = ChatRequest(model="chat-model-reasoning", messages=[ChatMessage(role="user", content="?")])
    assert asyncio.run(provider.generate(req)).content == "Title"


def test_text_after_reasoning_opens_a_new_block() -> None:
    provider = ReasoningProvider(ScriptedProvider(["A<think>r</think>B"]))
    req = ChatRequest(model="chat-model-reasoning", messages=[ChatMessage(role="user", content="?")])

    async def run():
        return [f async for f in provider.generate_stream(req)]

    fragments = asyncio.run(run())
    text_ids = [f.id for f in fragments if isinstance(f, TextDelta)]
    assert len(text_ids) == 2
    assert text_ids[0] != text_ids[1]

    assembler = MessageAssembler()
    for fragment in fragments:
        assembler.add(fragment)
    assert assembler.parts == [
        StepStartPart(),
        TextPart(text="A"),
        ReasoningPart(text="r"),
        TextPart(text="B"),
        StepEndPart(),
    ]
