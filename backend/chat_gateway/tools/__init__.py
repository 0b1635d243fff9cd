from chat_gateway.tools.base import Tool, ToolContext, ToolSet
from chat_gateway.tools.documents import CreateDocumentTool, UpdateDocumentTool
from chat_gateway.tools.suggestions import RequestSuggestionsTool
from chat_gateway.tools.weather import GetWeatherTool


def build_toolset(ctx: ToolContext) -> ToolSet:
    """The fixed tool set exposed to the tool-augmented chat model."""
    tools: list[Tool] = [
        GetWeatherTool(),
        CreateDocumentTool(),
        UpdateDocumentTool(),
        RequestSuggestionsTool(),
    ]
    return ToolSet(tools={tool.name: tool for tool in tools}, ctx=ctx)


__all__ = ["Tool", "ToolContext", "ToolSet", "build_toolset"]
