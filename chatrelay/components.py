"""
Component factory.

Centralises the construction of relay components from settings, so the API,
the CLI and tests wire things the same way.
"""

from __future__ import annotations

from chatrelay.config.logging import get_logger
from chatrelay.config.settings import Settings
from chatrelay.llm.intents import KeywordIntentDetector
from chatrelay.llm.models import GenerationOptions, ToolDeclaration
from chatrelay.llm.orchestrator import TurnOrchestrator
from chatrelay.llm.providers import GeminiAdapter, PerplexityAdapter, ProviderAdapter
from chatrelay.llm.titles import TitleGenerator
from chatrelay.security.anti_abuse import AntiAbuseVerifier
from chatrelay.service import ChatService
from chatrelay.tools.base import Tool
from chatrelay.tools.dispatcher import ToolDispatcher
from chatrelay.tools.image_generator import ImageGenerationTool
from chatrelay.tools.registry import (
    GENERATE_IMAGE,
    GET_WEATHER,
    IMAGE_SERVICE,
    WEATHER_SERVICE,
    available_tools,
)
from chatrelay.tools.weather import WeatherTool

logger = get_logger(__name__)


class ChatComponents:
    """
    Factory for building relay components from settings.

    Example::

        components = ChatComponents(settings)
        service = components.create_service()
        response = await service.handle(request)
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def tool_credentials(self) -> dict[str, str | None]:
        return {
            IMAGE_SERVICE: self.settings.gemini.api_key,
            WEATHER_SERVICE: self.settings.weather.api_key,
        }

    def create_tool_snapshot(self) -> list[ToolDeclaration]:
        """Tool Registry snapshot for this process."""
        return available_tools(self.tool_credentials())

    def create_providers(self) -> list[ProviderAdapter]:
        timeout = self.settings.orchestrator.provider_timeout
        return [
            GeminiAdapter(
                api_key=self.settings.gemini.api_key,
                default_model=self.settings.gemini.model,
                timeout=timeout,
            ),
            PerplexityAdapter(
                api_key=self.settings.perplexity.api_key,
                default_model=self.settings.perplexity.model,
                timeout=timeout,
            ),
        ]

    def create_tools(self, declarations: list[ToolDeclaration]) -> list[Tool]:
        """Tool implementations for the declared tools."""
        tools: list[Tool] = []
        for declaration in declarations:
            if declaration.name == GENERATE_IMAGE:
                tools.append(
                    ImageGenerationTool(
                        model=self.settings.gemini.image_model,
                        api_key=self.settings.gemini.api_key,
                    )
                )
            elif declaration.name == GET_WEATHER:
                tools.append(
                    WeatherTool(
                        api_key=self.settings.weather.api_key,
                        base_url=self.settings.weather.base_url,
                        units=self.settings.weather.units,
                        http_timeout=self.settings.orchestrator.tool_timeout,
                    )
                )
        return tools

    def create_orchestrator(self) -> TurnOrchestrator:
        declarations = self.create_tool_snapshot()
        logger.info(f"Tools available: {[d.name for d in declarations] or 'none'}")
        orchestrator_settings = self.settings.orchestrator
        return TurnOrchestrator(
            providers=self.create_providers(),
            dispatcher=ToolDispatcher(
                self.create_tools(declarations), timeout=orchestrator_settings.tool_timeout
            ),
            tools=declarations,
            system_instruction=orchestrator_settings.system_instruction,
            intent_detector=KeywordIntentDetector(),
            default_model=orchestrator_settings.default_model,
            max_tool_rounds=orchestrator_settings.max_tool_rounds,
            default_options=GenerationOptions(
                temperature=orchestrator_settings.temperature,
                max_output_tokens=orchestrator_settings.max_tokens,
            ),
        )

    def create_verifier(self) -> AntiAbuseVerifier | None:
        anti_abuse = self.settings.anti_abuse
        if not anti_abuse.secret_key:
            return None
        return AntiAbuseVerifier(
            secret_key=anti_abuse.secret_key,
            verify_url=anti_abuse.verify_url,
            score_threshold=anti_abuse.score_threshold,
            http_timeout=anti_abuse.timeout,
        )

    def create_title_generator(self) -> TitleGenerator | None:
        if not self.settings.gemini.api_key:
            return None
        return TitleGenerator(
            model=f"gemini/{self.settings.gemini.model}",
            api_key=self.settings.gemini.api_key,
        )

    def create_service(self) -> ChatService:
        return ChatService(
            orchestrator=self.create_orchestrator(),
            verifier=self.create_verifier(),
            title_generator=self.create_title_generator(),
            require_verification=self.settings.anti_abuse.required,
        )
