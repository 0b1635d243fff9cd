import json
import uuid
from typing import Any

import structlog

from chat_gateway import crud
from chat_gateway.providers.base import ChatMessage, ChatRequest
from chat_gateway.services.prompts import SUGGESTIONS_PROMPT
from chat_gateway.tools.base import ToolContext
from chat_gateway.tools.documents import ARTIFACT_MODEL

logger = structlog.get_logger()

MAX_SUGGESTIONS = 5


def parse_suggestions(raw: str) -> list[dict[str, str]]:
    """Pull well-formed suggestion objects out of a model reply."""
    start, end = raw.find("["), raw.rfind("]")
    if start == -1 or end <= start:
        return []
    try:
        items = json.loads(raw[start : end + 1])
    except json.JSONDecodeError:
        logger.warning("suggestions_unparseable", length=len(raw))
        return []

    suggestions = []
    for item in items:
        if not isinstance(item, dict):
            continue
        original = item.get("originalSentence")
        suggested = item.get("suggestedSentence")
        if isinstance(original, str) and isinstance(suggested, str):
            suggestions.append(
                {
                    "originalSentence": original,
                    "suggestedSentence": suggested,
                    "description": str(item.get("description") or ""),
                }
            )
    return suggestions[:MAX_SUGGESTIONS]


class RequestSuggestionsTool:
    @property
    def name(self) -> str:
        return "requestSuggestions"

    @property
    def description(self) -> str:
        return "Request suggestions for a document"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "documentId": {
                    "type": "string",
                    "description": "The ID of the document to request edits",
                },
            },
            "required": ["documentId"],
        }

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> Any:
        try:
            document_id = uuid.UUID(str(tool_input["documentId"]))
        except ValueError:
            return {"error": "Document not found"}

        with ctx.session_factory() as session:
            document = crud.get_document(session=session, document_id=document_id)
            if not document or not document.content or document.user_id != ctx.identity.user_id:
                return {"error": "Document not found"}
            title, kind, content, created_at = (
                document.title,
                document.kind,
                document.content,
                document.created_at,
            )

        provider = ctx.registry.resolve(ARTIFACT_MODEL)
        res = await provider.generate(
            ChatRequest(
                model=ARTIFACT_MODEL,
                system=SUGGESTIONS_PROMPT,
                messages=[ChatMessage(role="user", content=content)],
            )
        )

        rows = []
        for suggestion in parse_suggestions(res.content):
            suggestion_id = uuid.uuid4()
            ctx.writer.write(
                "suggestion",
                {"id": str(suggestion_id), "documentId": str(document_id), **suggestion},
            )
            rows.append(
                {
                    "id": suggestion_id,
                    "document_id": document_id,
                    "document_created_at": created_at,
                    "original_text": suggestion["originalSentence"],
                    "suggested_text": suggestion["suggestedSentence"],
                    "description": suggestion["description"],
                    "user_id": ctx.identity.user_id,
                }
            )

        if rows:
            with ctx.session_factory() as session:
                crud.save_suggestions(session=session, suggestions=rows)

        return {
            "id": str(document_id),
            "title": title,
            "kind": kind,
            "message": "Suggestions have been added to the document",
        }
