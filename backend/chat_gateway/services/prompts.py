from typing import TYPE_CHECKING

from chat_gateway.services.geo import RequestHints

if TYPE_CHECKING:
    from chat_gateway.providers.registry import ChatModel

REGULAR_PROMPT = "You are a friendly assistant! Keep your responses concise and helpful."

ARTIFACTS_PROMPT = """\
Artifacts is a side panel next to the conversation where the user can read and edit documents.
Use createDocument for substantial content (more than 10 lines) or content the user is likely to save or reuse, and for code.
Use updateDocument only when the user asks for changes to an existing document, and wait for feedback before updating a document you just created.
Do not use createDocument for conversational answers or when the user asks to keep it in the chat.
Use requestSuggestions when the user asks for writing suggestions on an existing document."""

TITLE_PROMPT = """\
Generate a short title based on the first message a user begins a conversation with.
The title must be at most 80 characters long, summarise the message, and contain no quotes or colons."""

DOCUMENT_PROMPTS = {
    "text": "Write about the given topic. Markdown is supported. Use headings wherever appropriate.",
    "code": (
        "You are a code generator that creates self-contained, executable snippets. "
        "Return only the code, with short comments where helpful, and no surrounding prose."
    ),
}

SUGGESTIONS_PROMPT = """\
You are a helpful writing assistant. Given a piece of writing, offer up to five suggestions to improve it.
Reply with a JSON array only. Each item must have the keys "originalSentence", "suggestedSentence" and "description".
Every "originalSentence" must be copied verbatim from the writing."""


def request_prompt(hints: RequestHints) -> str:
    return (
        "About the origin of user's request:\n"
        f"- lat: {hints.latitude}\n"
        f"- lon: {hints.longitude}\n"
        f"- city: {hints.city}\n"
        f"- country: {hints.country}\n"
    )


def system_prompt(*, model: "ChatModel", hints: RequestHints) -> str:
    sections = [REGULAR_PROMPT]
    if hints.is_known():
        sections.append(request_prompt(hints))
    if model.tools_enabled:
        sections.append(ARTIFACTS_PROMPT)
    return "\n\n".join(sections)


def update_document_prompt(content: str | None, kind: str) -> str:
    noun = "code snippet" if kind == "code" else "document"
    return f"Improve the following contents of the {noun} based on the given prompt.\n\n{content or ''}"
