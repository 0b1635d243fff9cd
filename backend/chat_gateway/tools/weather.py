from typing import Any

import httpx

from chat_gateway.core.config import settings
from chat_gateway.tools.base import ToolContext

_TIMEOUT_SECONDS = 10


class GetWeatherTool:
    @property
    def name(self) -> str:
        return "getWeather"

    @property
    def description(self) -> str:
        return "Get the current weather at a location"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "latitude": {"type": "number"},
                "longitude": {"type": "number"},
            },
            "required": ["latitude", "longitude"],
        }

    async def execute(self, tool_input: dict[str, Any], ctx: ToolContext) -> Any:
        params = {
            "latitude": tool_input["latitude"],
            "longitude": tool_input["longitude"],
            "current": "temperature_2m",
            "hourly": "temperature_2m",
            "daily": "sunrise,sunset",
            "timezone": "auto",
        }
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            response = await client.get(settings.WEATHER_API_URL, params=params)
            response.raise_for_status()
        return response.json()
