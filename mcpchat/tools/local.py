from typing import Any, Dict, List

import httpx

from .codec import ToolDescriptor
from .registry import AgentTool

OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"

WEATHER_TOOL = ToolDescriptor(
    name="getWeather",
    description="Get the current weather at a location",
    parameters={
        "latitude": {"type": "number", "description": "Latitude of the location"},
        "longitude": {"type": "number", "description": "Longitude of the location"},
    },
    required=("latitude", "longitude"),
)


async def get_weather(arguments: Dict[str, Any]) -> Dict[str, Any]:
    params = {
        "latitude": float(arguments["latitude"]),
        "longitude": float(arguments["longitude"]),
        "current": "temperature_2m",
        "hourly": "temperature_2m",
        "daily": "sunrise,sunset",
        "timezone": "auto",
    }
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.get(OPEN_METEO_URL, params=params)
        response.raise_for_status()
        return response.json()


def local_tools() -> List[AgentTool]:
    return [AgentTool(descriptor=WEATHER_TOOL, handler=get_weather, source="local")]
