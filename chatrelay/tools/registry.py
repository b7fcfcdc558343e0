"""
Tool Registry.

Declares the tools the relay can offer to a model and decides which of them
are available. Availability depends only on which backing-service credentials
are present: a tool whose service has no credential is left out silently.

The declaration descriptions are the only guidance the model gets on *when*
to call a tool. Invocation policy lives here, in the prompt-facing text, so
the orchestrator's dispatch logic stays provider-agnostic.
"""

from __future__ import annotations

from typing import Mapping

from chatrelay.llm.models import ToolDeclaration

GENERATE_IMAGE = "generate_image"
GET_WEATHER = "get_weather"

# Credential keys understood by available_tools()
IMAGE_SERVICE = "image"
WEATHER_SERVICE = "weather"

GENERATE_IMAGE_DECLARATION = ToolDeclaration(
    name=GENERATE_IMAGE,
    description=(
        "Generate an image from a text description. Call this whenever the user asks "
        "you to draw, paint, sketch, create, generate or show a picture, image, photo, "
        "illustration or artwork. Pass a detailed visual description of the requested "
        "image as the prompt. Do not describe the image in text instead of calling this tool."
    ),
    parameter_schema={
        "type": "object",
        "properties": {
            "prompt": {
                "type": "string",
                "description": "Detailed description of the image to generate, "
                               "e.g. 'a tabby cat wearing a red top hat, watercolor style'",
            },
        },
        "required": ["prompt"],
    },
)

GET_WEATHER_DECLARATION = ToolDeclaration(
    name=GET_WEATHER,
    description=(
        "Get the current weather conditions for a location. Call this whenever the user "
        "asks about the weather, temperature, humidity, wind or whether it is raining or "
        "sunny somewhere. Results use imperial units (Fahrenheit, mph)."
    ),
    parameter_schema={
        "type": "object",
        "properties": {
            "location": {
                "type": "string",
                "description": "City name, optionally with country, e.g. 'Tokyo, Japan' or 'Paris'",
            },
        },
        "required": ["location"],
    },
)

# Declaration order is the order tools are offered to the model
_DECLARATIONS: tuple[tuple[str, ToolDeclaration], ...] = (
    (IMAGE_SERVICE, GENERATE_IMAGE_DECLARATION),
    (WEATHER_SERVICE, GET_WEATHER_DECLARATION),
)


def available_tools(credentials: Mapping[str, str | None]) -> list[ToolDeclaration]:
    """
    Return the declarations whose backing service has a credential.

    Args:
        credentials: Service key (``"image"``, ``"weather"``) to credential.
                     Missing keys, None and empty strings all mean "absent".

    Returns:
        Ordered declarations with unique names. Never raises.
    """
    tools: list[ToolDeclaration] = []
    seen: set[str] = set()
    for service, declaration in _DECLARATIONS:
        if not credentials.get(service):
            continue
        if declaration.name in seen:
            continue
        seen.add(declaration.name)
        tools.append(declaration)
    return tools
