"""Document artifact tools.

Both tools stream the generated content to the client as transient data
events (``kind``/``id``/``title``/``clear``, then one delta event per chunk,
then ``finish``) and only persist the final version.
"""
import uuid
from typing import Any

from chat_gateway import crud
from chat_gateway.providers.base import ChatMessage, ChatRequest, TextDelta
from chat_gateway.services.prompts import DOCUMENT_PROMPTS, update_document_prompt
from chat_gateway.tools.base import ToolContext

DOCUMENT_KINDS = ("text", "code")
ARTIFACT_MODEL = "artifact-model"


def _delta_event(kind: str) -> str:
    return "codeDelta" if kind == "code" else "textDelta"


async def _stream_content(ctx: ToolContext, *, kind: str, system: str, prompt: str) -> str:
    provider = ctx.registry.resolve(ARTIFACT_MODEL)
    req = ChatRequest(
        model=ARTIFACT_MODEL,
        system=system,
        messages=[ChatMessage(role="user", content=prompt)],
    )
    content = ""
    async for fragment in provider.generate_stream(req):
        if isinstance(fragment, TextDelta) and fragment.delta:
            content += fragment.delta
            ctx.writer.write(_delta_event(kind), fragment.delta)
    return content


class CreateDocumentTool:
    @property
    def name(self) -> str:
        return "createDocument"

    @property
    def description(self) -> str:
        return (
            "Create a document for writing or content creation activities. "
            "This tool will call other functions that will generate the contents "
            "of the document based on the title and kind."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "kind": {"type": "string", "enum": list(DOCUMENT_KINDS)},
            },
            "required": ["title", "kind"],
        }

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> Any:
        title = str(tool_input["title"])
        kind = tool_input.get("kind", "text")
        if kind not in DOCUMENT_KINDS:
            kind = "text"
        document_id = uuid.uuid4()

        ctx.writer.write("kind", kind)
        ctx.writer.write("id", str(document_id))
        ctx.writer.write("title", title)
        ctx.writer.write("clear", None)

        content = await _stream_content(
            ctx, kind=kind, system=DOCUMENT_PROMPTS[kind], prompt=title
        )
        with ctx.session_factory() as session:
            crud.save_document(
                session=session,
                document_id=document_id,
                title=title,
                kind=kind,
                content=content,
                user_id=ctx.identity.user_id,
            )
        ctx.writer.write("finish", None)

        return {
            "id": str(document_id),
            "title": title,
            "kind": kind,
            "content": "A document was created and is now visible to the user.",
        }


class UpdateDocumentTool:
    @property
    def name(self) -> str:
        return "updateDocument"

    @property
    def description(self) -> str:
        return "Update a document with the given description."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "The ID of the document to update"},
                "description": {
                    "type": "string",
                    "description": "The description of changes that need to be made",
                },
            },
            "required": ["id", "description"],
        }

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> Any:
        try:
            document_id = uuid.UUID(str(tool_input["id"]))
        except ValueError:
            return {"error": "Document not found"}

        with ctx.session_factory() as session:
            document = crud.get_document(session=session, document_id=document_id)
            if not document or document.user_id != ctx.identity.user_id:
                return {"error": "Document not found"}
            title, kind, current = document.title, document.kind, document.content

        ctx.writer.write("clear", None)
        content = await _stream_content(
            ctx,
            kind=kind,
            system=update_document_prompt(current, kind),
            prompt=str(tool_input["description"]),
        )
        with ctx.session_factory() as session:
            crud.save_document(
                session=session,
                document_id=document_id,
                title=title,
                kind=kind,
                content=content,
                user_id=ctx.identity.user_id,
            )
        ctx.writer.write("finish", None)

        return {
            "id": str(document_id),
            "title": title,
            "kind": kind,
            "content": "The document has been updated successfully.",
        }
