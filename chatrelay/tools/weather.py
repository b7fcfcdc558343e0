"""
Weather lookup tool.

Queries the OpenWeatherMap current-conditions endpoint with httpx and maps
the reply into a fixed payload (imperial units by default).
"""

from __future__ import annotations

from typing import Any

import httpx

from chatrelay.config.logging import get_logger
from chatrelay.errors import ToolExecutionError
from chatrelay.llm.models import ToolCallResult
from chatrelay.tools.base import Tool
from chatrelay.tools.registry import GET_WEATHER_DECLARATION

logger = get_logger(__name__)

_UNIT_LABELS = {
    "imperial": ("°F", "mph"),
    "metric": ("°C", "m/s"),
    "standard": ("K", "m/s"),
}


class WeatherTool(Tool):
    """
    get_weather(location) backed by the OpenWeatherMap REST API.

    Args:
        api_key: OpenWeatherMap API key
        base_url: Current weather endpoint
        units: "imperial", "metric" or "standard"
        http_timeout: Request timeout in seconds
    """

    declaration = GET_WEATHER_DECLARATION

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openweathermap.org/data/2.5/weather",
        units: str = "imperial",
        http_timeout: float = 10.0,
    ):
        self._api_key = api_key
        self._base_url = base_url
        self._units = units
        self._http_timeout = http_timeout

    def missing_argument_summary(self, missing: list[str]) -> str:
        return (
            "No location was provided, so the weather could not be looked up. "
            "Ask the user which city or place they want the weather for."
        )

    async def run(self, arguments: dict[str, Any]) -> ToolCallResult:
        location = str(arguments["location"]).strip()
        params = {"q": location, "appid": self._api_key, "units": self._units}

        try:
            async with httpx.AsyncClient(timeout=self._http_timeout) as client:
                response = await client.get(self._base_url, params=params)
        except httpx.HTTPError as e:
            raise ToolExecutionError(f"Weather service unreachable: {e}", cause=e)

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.warning(
                f"Weather lookup for {location!r} failed with {response.status_code}: {message}"
            )
            raise ToolExecutionError(
                f"Weather service error for '{location}': {message}",
                details={"upstream_status": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ToolExecutionError("Weather service returned an unreadable response", cause=e)

        payload = self._to_payload(data, location)
        return ToolCallResult(
            tool_name=self.name,
            succeeded=True,
            human_readable_summary=self._summarize(payload),
            structured_payload=payload,
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Best-effort message from an OpenWeatherMap error body ({"cod", "message"})."""
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"HTTP {response.status_code}"

    def _to_payload(self, data: dict[str, Any], requested: str) -> dict[str, Any]:
        main = data.get("main") or {}
        wind = data.get("wind") or {}
        conditions = (data.get("weather") or [{}])[0]
        country = (data.get("sys") or {}).get("country")
        name = data.get("name") or requested
        temp_unit, speed_unit = _UNIT_LABELS.get(self._units, _UNIT_LABELS["imperial"])

        if "temp" not in main:
            raise ToolExecutionError(f"Weather service returned no conditions for '{requested}'")

        return {
            "location": f"{name}, {country}" if country else name,
            "temperature": main.get("temp"),
            "feelsLike": main.get("feels_like"),
            "tempMin": main.get("temp_min"),
            "tempMax": main.get("temp_max"),
            "description": conditions.get("description", ""),
            "humidity": main.get("humidity"),
            "pressure": main.get("pressure"),
            "windSpeed": wind.get("speed"),
            "cloudiness": (data.get("clouds") or {}).get("all"),
            "units": {"temperature": temp_unit, "windSpeed": speed_unit},
        }

    @staticmethod
    def _summarize(payload: dict[str, Any]) -> str:
        temp_unit = payload["units"]["temperature"]
        speed_unit = payload["units"]["windSpeed"]
        return (
            f"Current weather in {payload['location']}: {payload['temperature']}{temp_unit} "
            f"(feels like {payload['feelsLike']}{temp_unit}), {payload['description']}, "
            f"humidity {payload['humidity']}%, wind {payload['windSpeed']} {speed_unit}."
        )
