"""
Chat service: the request-level flow around one orchestration run.

    ChatRequest
        │ validate history          (ValidationError, no network)
        │ resolve provider          (ConfigurationError, no network)
        │ anti-abuse gate           (AntiAbuseRejected, before any provider call)
        ▼
    TurnOrchestrator.run()  ║  TitleGenerator.generate()   (task=chat_with_title only)
        ▼
    ChatResponse {turns, provider, model, title?}

The title task runs concurrently and is best-effort: its failure only omits
the title field.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chatrelay.config.logging import get_logger
from chatrelay.errors import ConfigurationError
from chatrelay.llm.models import GenerationOptions, Turn
from chatrelay.llm.orchestrator import TurnOrchestrator
from chatrelay.llm.titles import TitleGenerator
from chatrelay.security.anti_abuse import AntiAbuseVerifier

logger = get_logger(__name__)


class ChatTask(StrEnum):
    CHAT = "chat"
    CHAT_WITH_TITLE = "chat_with_title"


class ChatRequest(BaseModel):
    """Inbound chat request. JSON keys are camelCase."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    history: list[Turn] = Field(default_factory=list)
    model: str | None = None
    generation_options: GenerationOptions | None = None
    task: ChatTask = ChatTask.CHAT
    anti_abuse_token: str | None = None


class ChatResponse(BaseModel):
    """Response envelope: the turns appended by this run plus an optional title."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    turns: list[Turn]
    provider: str
    model: str | None = None
    title: str | None = None


class ChatService:
    """
    Args:
        orchestrator: Runs the turn
        verifier: Anti-abuse gate; None when not configured
        title_generator: Produces titles for chat_with_title; None disables titles
        require_verification: Reject gated requests when no verifier is configured
    """

    def __init__(
        self,
        orchestrator: TurnOrchestrator,
        verifier: AntiAbuseVerifier | None = None,
        title_generator: TitleGenerator | None = None,
        require_verification: bool = True,
    ):
        self._orchestrator = orchestrator
        self._verifier = verifier
        self._title_generator = title_generator
        self._require_verification = require_verification

    @property
    def orchestrator(self) -> TurnOrchestrator:
        return self._orchestrator

    async def handle(
        self,
        request: ChatRequest,
        remote_ip: str | None = None,
        verify: bool = True,
    ) -> ChatResponse:
        """
        Process one chat request.

        Args:
            request: Parsed request
            remote_ip: Client address, forwarded to the anti-abuse verifier
            verify: Apply the anti-abuse gate (the CLI turns this off)

        Raises:
            ChatRelayError subclasses; see chatrelay.errors
        """
        self._orchestrator.validate_history(request.history)

        # Fails fast on unknown / unconfigured providers, before any network call
        self._orchestrator.select_provider(request.model)

        if verify:
            await self._verify(request.anti_abuse_token, remote_ip)

        title_task: asyncio.Task | None = None
        if request.task is ChatTask.CHAT_WITH_TITLE and self._title_generator is not None:
            title_task = asyncio.create_task(self._title_generator.generate(request.history))

        try:
            result = await self._orchestrator.run(
                request.history,
                model=request.model,
                generation_options=request.generation_options,
            )
        except BaseException:
            if title_task is not None:
                title_task.cancel()
            raise

        title = await self._collect_title(title_task)
        logger.info(
            f"Turn complete via {result.provider}: {len(result.appended)} turn(s) appended, "
            f"{len(result.tool_results)} tool call(s){', delegated' if result.delegated else ''}"
        )
        return ChatResponse(
            turns=list(result.appended),
            provider=result.provider,
            model=result.model,
            title=title,
        )

    async def _verify(self, token: str | None, remote_ip: str | None) -> None:
        if self._verifier is not None:
            await self._verifier.verify(token, remote_ip)
        elif self._require_verification:
            raise ConfigurationError("Anti-abuse verification is required but not configured.")

    @staticmethod
    async def _collect_title(task: asyncio.Task | None) -> str | None:
        if task is None:
            return None
        try:
            return await task
        except Exception as e:
            logger.warning(f"Title task failed: {e}")
            return None
