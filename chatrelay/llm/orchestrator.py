"""
Turn Orchestrator: the state machine behind every chat turn.

    SELECT_PROVIDER -> CALL_PRIMARY -> [DELEGATE] -> DONE
                                                  \\
                                                   DISPATCH_TOOLS -> CALL_FOLLOWUP -> [RECONCILE_MEDIA] -> DONE
    any state -> FAILED (terminal ChatRelayError)

Data flow for one run:

    history ──> CompletionRequest ──> ProviderAdapter.complete() ──> CompletionResponse
                                                                       │ function calls?
                 ToolDispatcher.execute_all() <────────────────────────┘
                        │ ToolCallResult[]  (summary to the model, media held back)
    history + MODEL(calls) + TOOL(results) ──> same provider ──> final MODEL turn
                                                                  + held-back media parts

Design decisions:
- Each stage produces a fresh, frozen CompletionResponse that is threaded
  forward; nothing is reassigned in place.
- Tools are attached only when the selected adapter supports function
  calling. A text-only answer that looks like it wanted a tool (per the
  IntentDetector) gets one delegation call to a function-calling provider.
  Delegation never recurses, and a failed delegation keeps the original text.
- Exactly one follow-up round by default (max_tool_rounds=1). Function calls
  in the follow-up are surfaced undispatched. Raising max_tool_rounds loops
  back to dispatch, bounded by that number.
- Tool failures never abort the run; they are part of the tool results.
"""

from __future__ import annotations

from typing import Sequence

from chatrelay.config.logging import get_logger
from chatrelay.errors import ChatRelayError, ConfigurationError, ResponseShapeError, ValidationError
from chatrelay.llm.intents import IntentDetector, KeywordIntentDetector
from chatrelay.llm.models import (
    CompletionRequest,
    CompletionResponse,
    GenerationOptions,
    OrchestrationResult,
    OrchestrationState,
    Part,
    Role,
    ToolCallResult,
    ToolDeclaration,
    Turn,
)
from chatrelay.llm.providers.base import ProviderAdapter, ProviderError
from chatrelay.tools.dispatcher import ToolDispatcher

logger = get_logger(__name__)

DELEGATION_INSTRUCTION = (
    "Another assistant drafted the reply above to my last message. If that reply shows "
    "that I want an image generated or the current weather looked up, call the matching "
    "tool now with arguments taken from my request. Otherwise answer with the reply unchanged."
)


class TurnOrchestrator:
    """
    Coordinates provider calls, tool dispatch and media reconciliation for one turn.

    The orchestrator holds no per-request state; concurrent run() calls share
    only the read-only tool snapshot.

    Args:
        providers: Available adapters, checked in order when resolving a model id
        dispatcher: Executes function calls
        tools: Tool Registry snapshot offered to function-calling providers
        system_instruction: Fixed system instruction sent with every call
        intent_detector: Decides whether a text-only answer wanted a tool
        default_model: Model family or id used when a request names none
        max_tool_rounds: Dispatch / follow-up rounds per run (default: 1)
        default_options: Generation defaults merged under request options
    """

    def __init__(
        self,
        providers: Sequence[ProviderAdapter],
        dispatcher: ToolDispatcher,
        tools: Sequence[ToolDeclaration],
        system_instruction: str,
        intent_detector: IntentDetector | None = None,
        default_model: str = "gemini",
        max_tool_rounds: int = 1,
        default_options: GenerationOptions | None = None,
    ):
        if max_tool_rounds < 1:
            raise ValueError("max_tool_rounds must be at least 1")
        self._providers = list(providers)
        self._dispatcher = dispatcher
        self._tools = tuple(tools)
        self._system_instruction = system_instruction
        self._intent_detector = intent_detector or KeywordIntentDetector()
        self._default_model = default_model
        self._max_tool_rounds = max_tool_rounds
        self._default_options = default_options or GenerationOptions()

    @property
    def tools(self) -> tuple[ToolDeclaration, ...]:
        return self._tools

    def select_provider(self, model: str | None = None) -> tuple[ProviderAdapter, str]:
        """
        Resolve a model identifier to an adapter and concrete model name.

        Raises:
            ConfigurationError: Unknown model, or the provider has no credential
        """
        model_id = (model or "").strip() or self._default_model
        adapter = next((p for p in self._providers if p.handles(model_id)), None)
        if adapter is None:
            raise ConfigurationError(
                f"Unknown or unsupported model '{model_id}'.", details={"model": model_id}
            )
        if not adapter.is_configured:
            raise ConfigurationError(
                f"API key not configured for provider '{adapter.name}'.",
                details={"provider": adapter.name},
            )
        return adapter, adapter.resolve_model(model_id)

    async def run(
        self,
        history: Sequence[Turn],
        model: str | None = None,
        generation_options: GenerationOptions | None = None,
    ) -> OrchestrationResult:
        """
        Run one turn: primary call, optional delegation, tool dispatch and follow-up.

        Args:
            history: Ordered prior turns; must be non-empty
            model: Provider family ("gemini", "perplexity") or concrete model id
            generation_options: Sampling knobs for every call in this run

        Returns:
            OrchestrationResult with the extended history and the appended segment

        Raises:
            ValidationError: Empty history or a turn without parts
            ConfigurationError: Unknown / unconfigured provider
            UpstreamProviderError: Primary or follow-up completion failed
            ResponseShapeError: No usable completion turn at the end
        """
        states: list[OrchestrationState] = []
        try:
            return await self._run(states, history, model, generation_options)
        except ChatRelayError as e:
            failed_in = states[-1] if states else OrchestrationState.SELECT_PROVIDER
            self._enter(states, OrchestrationState.FAILED)
            logger.warning(f"Turn failed during {failed_in}: [{e.category}] {e.message}")
            raise

    async def _run(
        self,
        states: list[OrchestrationState],
        history: Sequence[Turn],
        model: str | None,
        generation_options: GenerationOptions | None,
    ) -> OrchestrationResult:
        self._enter(states, OrchestrationState.SELECT_PROVIDER)
        inbound = self.validate_history(history)
        provider, model_name = self.select_provider(model)
        options = (generation_options or GenerationOptions()).with_defaults(
            temperature=self._default_options.temperature,
            max_output_tokens=self._default_options.max_output_tokens,
        )

        # --- Primary call ---
        self._enter(states, OrchestrationState.CALL_PRIMARY)
        response = await provider.complete(
            self._build_request(inbound, provider, options), model=model_name
        )
        logger.info(
            f"Primary call to {provider.name}/{model_name} finished ({response.finish_reason}), "
            f"{len(response.turn.function_calls)} function call(s)"
        )

        # --- Cross-provider delegation ---
        delegated = False
        if self._should_delegate(provider, response):
            self._enter(states, OrchestrationState.DELEGATE)
            outcome = await self._delegate(inbound, response, options)
            if outcome is not None:
                provider, model_name, response = outcome
                delegated = True

        # --- Tool rounds ---
        current = inbound
        appended: list[Turn] = []
        tool_results: list[ToolCallResult] = []
        rounds_used = 0

        while response.turn.function_calls and rounds_used < self._max_tool_rounds:
            self._enter(states, OrchestrationState.DISPATCH_TOOLS)
            results = await self._dispatcher.execute_all(response.turn.function_calls)
            tool_turn = Turn(role=Role.TOOL, parts=tuple(result.to_part() for result in results))
            tool_results.extend(results)

            appended.extend([response.turn, tool_turn])
            current = current + (response.turn, tool_turn)
            rounds_used += 1

            self._enter(states, OrchestrationState.CALL_FOLLOWUP)
            response = await provider.complete(
                self._build_request(current, provider, options), model=model_name
            )

        if response.turn.function_calls:
            logger.info(
                f"Leaving {len(response.turn.function_calls)} function call(s) undispatched "
                f"after {rounds_used} tool round(s)"
            )

        # --- Media reconciliation ---
        final_turn = response.turn
        media = [result.binary_media for result in tool_results if result.binary_media is not None]
        if media:
            self._enter(states, OrchestrationState.RECONCILE_MEDIA)
            final_turn = final_turn.with_parts(Part.from_media(item) for item in media)

        self._check_shape(final_turn)
        appended.append(final_turn)
        self._enter(states, OrchestrationState.DONE)

        return OrchestrationResult(
            history=current + (final_turn,),
            appended=tuple(appended),
            provider=provider.name,
            model=model_name,
            tool_results=tuple(tool_results),
            delegated=delegated,
            states=tuple(states),
        )

    def _build_request(
        self,
        history: tuple[Turn, ...],
        provider: ProviderAdapter,
        options: GenerationOptions,
    ) -> CompletionRequest:
        return CompletionRequest(
            history=history,
            system_instruction=self._system_instruction,
            tools=self._tools if provider.supports_function_calling and self._tools else None,
            generation_options=options,
        )

    def _should_delegate(self, provider: ProviderAdapter, response: CompletionResponse) -> bool:
        if provider.supports_function_calling or response.turn.function_calls or not self._tools:
            return False
        available = {tool.name for tool in self._tools}
        intents = self._intent_detector.detect(response.turn.text) & available
        if intents:
            logger.info(f"{provider.name} answer suggests tool use: {sorted(intents)}")
        return bool(intents)

    def _delegation_provider(self) -> ProviderAdapter | None:
        return next(
            (p for p in self._providers if p.supports_function_calling and p.is_configured),
            None,
        )

    async def _delegate(
        self,
        history: tuple[Turn, ...],
        primary: CompletionResponse,
        options: GenerationOptions,
    ) -> tuple[ProviderAdapter, str, CompletionResponse] | None:
        """
        One extra call to a function-calling provider, seeded with the text answer.

        Returns the delegate, its model and its response if that response carries
        function calls; None keeps the original answer.
        """
        delegate = self._delegation_provider()
        if delegate is None:
            logger.info("No function-calling provider configured; keeping text-only answer")
            return None

        seeded = history + (primary.turn, Turn.user(DELEGATION_INSTRUCTION))
        try:
            response = await delegate.complete(self._build_request(seeded, delegate, options))
        except ProviderError as e:
            logger.warning(f"Delegation to {delegate.name} failed, keeping original answer: {e.message}")
            return None

        if not response.turn.function_calls:
            logger.info(f"Delegation to {delegate.name} produced no function call")
            return None
        return delegate, delegate.default_model, response

    @staticmethod
    def validate_history(history: Sequence[Turn]) -> tuple[Turn, ...]:
        """Reject an empty history or a turn without parts. Runs before any network call."""
        turns = tuple(history or ())
        if not turns:
            raise ValidationError("History must contain at least one turn.")
        for index, turn in enumerate(turns):
            if not turn.parts:
                raise ValidationError(
                    f"Turn {index} has no parts.", details={"turn_index": index}
                )
        return turns

    @staticmethod
    def _check_shape(turn: Turn) -> None:
        if turn.role is not Role.MODEL or not turn.parts:
            raise ResponseShapeError("The provider did not return a usable completion.")

    @staticmethod
    def _enter(states: list[OrchestrationState], state: OrchestrationState) -> None:
        states.append(state)
        logger.debug(f"-> {state}")
