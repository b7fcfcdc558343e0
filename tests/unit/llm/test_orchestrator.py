"""
Unit tests for TurnOrchestrator.

Provider adapters are real objects with their ``complete`` coroutine replaced
by an AsyncMock, so model resolution and capability flags behave as in
production while no network call is made.

Tests cover:
- Provider selection and configuration errors
- Plain text turns (no tools dispatched)
- Tool dispatch, single follow-up and media reconciliation
- Cross-provider delegation from the text-only provider
- Error propagation and the FAILED state
"""

import base64
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chatrelay.errors import (
    ConfigurationError,
    ResponseShapeError,
    ToolExecutionError,
    UpstreamProviderError,
    ValidationError,
)
from chatrelay.llm.models import (
    CompletionResponse,
    FinishReason,
    FunctionCall,
    GenerationOptions,
    InlineMedia,
    OrchestrationState,
    Part,
    Role,
    ToolCallResult,
    Turn,
)
from chatrelay.llm.orchestrator import DELEGATION_INSTRUCTION, TurnOrchestrator
from chatrelay.llm.providers import GeminiAdapter, PerplexityAdapter, ProviderError
from chatrelay.tools.dispatcher import ToolDispatcher
from chatrelay.tools.image_generator import ImageGenerationTool
from chatrelay.tools.registry import (
    GENERATE_IMAGE,
    GET_WEATHER,
)
from chatrelay.tools.weather import WeatherTool

PNG_B64 = base64.b64encode(b"\x89PNG\r\n\x1a\nfake-image").decode("ascii")
SYSTEM = "You are a helpful assistant."


def _text(text: str, finish: FinishReason = FinishReason.STOP) -> CompletionResponse:
    return CompletionResponse(turn=Turn.reply(text), finish_reason=finish)


def _calls(*calls: FunctionCall) -> CompletionResponse:
    return CompletionResponse(
        turn=Turn(role=Role.MODEL, parts=tuple(Part.from_call(c) for c in calls)),
        finish_reason=FinishReason.STOP,
    )


def _image_call(prompt: str = "a cat wearing a hat", call_id: str = "call_img") -> FunctionCall:
    return FunctionCall(name=GENERATE_IMAGE, arguments={"prompt": prompt}, id=call_id)


def _weather_call(location: str = "Tokyo, Japan", call_id: str = "call_wx") -> FunctionCall:
    return FunctionCall(name=GET_WEATHER, arguments={"location": location}, id=call_id)


def _nameless_tool_call_response() -> MagicMock:
    """A LiteLLM response whose tool call lacks a function name."""
    tool_call = MagicMock()
    tool_call.id = "call_1"
    tool_call.function.name = None
    tool_call.function.arguments = "{}"

    choice = MagicMock()
    choice.message.content = None
    choice.message.tool_calls = [tool_call]
    choice.finish_reason = "tool_calls"

    response = MagicMock()
    response.choices = [choice]
    response.model = "gemini/gemini-2.0-flash-lite"
    return response


@pytest.fixture
def gemini():
    adapter = GeminiAdapter(api_key="gemini-key", default_model="gemini-2.0-flash-lite")
    adapter.complete = AsyncMock()
    return adapter


@pytest.fixture
def perplexity():
    adapter = PerplexityAdapter(api_key="pplx-key", default_model="sonar")
    adapter.complete = AsyncMock()
    return adapter


@pytest.fixture
def image_tool():
    tool = ImageGenerationTool(model="gemini/imagen-3.0-generate-002", api_key="gemini-key")
    tool.run = AsyncMock(
        return_value=ToolCallResult(
            tool_name=GENERATE_IMAGE,
            succeeded=True,
            human_readable_summary="The image was generated successfully.",
            structured_payload={"prompt": "a cat wearing a hat", "mimeType": "image/png"},
            binary_media=InlineMedia(mime_type="image/png", data=PNG_B64),
        )
    )
    return tool


@pytest.fixture
def weather_tool():
    tool = WeatherTool(api_key="weather-key")
    tool.run = AsyncMock(
        return_value=ToolCallResult(
            tool_name=GET_WEATHER,
            succeeded=True,
            human_readable_summary="Current weather in Tokyo, JP: 68°F, clear sky.",
            structured_payload={"location": "Tokyo, JP", "temperature": 68},
        )
    )
    return tool


def _orchestrator(providers, tools, declarations=None, **kwargs) -> TurnOrchestrator:
    return TurnOrchestrator(
        providers=providers,
        dispatcher=ToolDispatcher(tools),
        tools=declarations if declarations is not None else [t.declaration for t in tools],
        system_instruction=SYSTEM,
        **kwargs,
    )


@pytest.fixture
def orchestrator(gemini, perplexity, image_tool, weather_tool):
    return _orchestrator([gemini, perplexity], [image_tool, weather_tool])


class TestProviderSelection:
    def test_default_model_selects_gemini(self, orchestrator, gemini):
        provider, model = orchestrator.select_provider(None)
        assert provider is gemini
        assert model == "gemini-2.0-flash-lite"

    def test_family_name_selects_perplexity(self, orchestrator, perplexity):
        provider, model = orchestrator.select_provider("perplexity")
        assert provider is perplexity
        assert model == "sonar"

    def test_concrete_model_ids(self, orchestrator, gemini, perplexity):
        assert orchestrator.select_provider("sonar-pro") == (perplexity, "sonar-pro")
        assert orchestrator.select_provider("gemini-1.5-pro") == (gemini, "gemini-1.5-pro")
        assert orchestrator.select_provider("gemini/gemini-1.5-pro") == (gemini, "gemini-1.5-pro")

    def test_unknown_model(self, orchestrator):
        with pytest.raises(ConfigurationError, match="gpt-4o"):
            orchestrator.select_provider("gpt-4o")

    def test_unconfigured_provider(self, perplexity, image_tool):
        unconfigured = GeminiAdapter(api_key="", default_model="gemini-2.0-flash-lite")
        orchestrator = _orchestrator([unconfigured, perplexity], [image_tool])

        with pytest.raises(ConfigurationError, match="API key"):
            orchestrator.select_provider("gemini")

    def test_max_tool_rounds_must_be_positive(self, gemini):
        with pytest.raises(ValueError):
            _orchestrator([gemini], [], max_tool_rounds=0)


class TestPlainTurn:
    @pytest.mark.asyncio
    async def test_single_model_turn_appended(self, orchestrator, gemini, image_tool, weather_tool):
        gemini.complete.return_value = _text("Hello! How can I help?")
        history = [Turn.user("hi there")]

        result = await orchestrator.run(history)

        assert len(result.appended) == 1
        assert result.final_turn.role is Role.MODEL
        assert result.final_turn.text == "Hello! How can I help?"
        assert result.history == (history[0], result.final_turn)
        assert result.provider == "gemini"
        assert result.model == "gemini-2.0-flash-lite"
        assert result.tool_results == ()
        image_tool.run.assert_not_called()
        weather_tool.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_states_without_tools(self, orchestrator, gemini):
        gemini.complete.return_value = _text("ok")

        result = await orchestrator.run([Turn.user("hi")])

        assert result.states == (
            OrchestrationState.SELECT_PROVIDER,
            OrchestrationState.CALL_PRIMARY,
            OrchestrationState.DONE,
        )

    @pytest.mark.asyncio
    async def test_primary_request_carries_tools_and_instruction(self, orchestrator, gemini):
        gemini.complete.return_value = _text("ok")

        await orchestrator.run([Turn.user("hi")])

        request = gemini.complete.call_args.args[0]
        assert request.system_instruction == SYSTEM
        assert [t.name for t in request.tools] == [GENERATE_IMAGE, GET_WEATHER]
        assert gemini.complete.call_args.kwargs["model"] == "gemini-2.0-flash-lite"

    @pytest.mark.asyncio
    async def test_no_tools_attached_when_registry_is_empty(self, gemini):
        gemini.complete.return_value = _text("ok")
        orchestrator = _orchestrator([gemini], [], declarations=[])

        await orchestrator.run([Turn.user("hi")])

        assert gemini.complete.call_args.args[0].tools is None

    @pytest.mark.asyncio
    async def test_generation_options_merge_defaults(self, gemini):
        gemini.complete.return_value = _text("ok")
        orchestrator = _orchestrator(
            [gemini], [], declarations=[],
            default_options=GenerationOptions(temperature=0.7, max_output_tokens=1024),
        )

        await orchestrator.run([Turn.user("hi")], generation_options=GenerationOptions(temperature=0.1))

        options = gemini.complete.call_args.args[0].generation_options
        assert options.temperature == 0.1
        assert options.max_output_tokens == 1024

    @pytest.mark.asyncio
    async def test_finalized_history_is_not_dispatched_again(self, orchestrator, gemini, image_tool):
        """A history that already ends in a finished exchange goes straight to DONE."""
        gemini.complete.return_value = _text("You're welcome!")
        history = [
            Turn.user("draw a cat"),
            Turn(role=Role.MODEL, parts=(Part.from_call(_image_call()),)),
            Turn(role=Role.TOOL, parts=(
                ToolCallResult(
                    tool_name=GENERATE_IMAGE, succeeded=True, human_readable_summary="done"
                ).to_part(),
            )),
            Turn.reply("Here is your cat."),
            Turn.user("thanks"),
        ]

        first = await orchestrator.run(history)
        second = await orchestrator.run(history)

        assert first.states == second.states == (
            OrchestrationState.SELECT_PROVIDER,
            OrchestrationState.CALL_PRIMARY,
            OrchestrationState.DONE,
        )
        image_tool.run.assert_not_called()


class TestToolDispatch:
    @pytest.mark.asyncio
    async def test_generate_image_scenario(self, orchestrator, gemini, image_tool):
        gemini.complete.side_effect = [
            _calls(_image_call()),
            _text("Here is a cat wearing a hat!"),
        ]

        result = await orchestrator.run([Turn.user("draw a cat wearing a hat")])

        image_tool.run.assert_awaited_once_with({"prompt": "a cat wearing a hat"})
        assert gemini.complete.await_count == 2

        followup = gemini.complete.call_args_list[1].args[0]
        assert [t.role for t in followup.history] == [Role.USER, Role.MODEL, Role.TOOL]
        tool_part = followup.history[-1].parts[0]
        assert tool_part.function_result.name == GENERATE_IMAGE
        assert tool_part.function_result.id == "call_img"
        assert tool_part.function_result.response["succeeded"] is True
        # Binary media never travels back to the model
        assert followup.history[-1].media == []

        assert [t.role for t in result.appended] == [Role.MODEL, Role.TOOL, Role.MODEL]
        final = result.final_turn
        assert final.text == "Here is a cat wearing a hat!"
        assert final.media == [InlineMedia(mime_type="image/png", data=PNG_B64)]
        assert final.parts[-1].inline_media is not None
        assert OrchestrationState.RECONCILE_MEDIA in result.states
        assert result.states[-1] is OrchestrationState.DONE

    @pytest.mark.asyncio
    async def test_weather_without_location_skips_network(self, gemini):
        gemini.complete.side_effect = [
            _calls(FunctionCall(name=GET_WEATHER, arguments={}, id="call_wx")),
            _text("Which city would you like the weather for?"),
        ]
        orchestrator = _orchestrator([gemini], [WeatherTool(api_key="weather-key")])

        with patch("chatrelay.tools.weather.httpx.AsyncClient") as mock_client:
            result = await orchestrator.run([Turn.user("what's the weather?")])

        mock_client.assert_not_called()
        (tool_result,) = result.tool_results
        assert tool_result.succeeded is False
        assert "location" in tool_result.human_readable_summary
        assert result.final_turn.text == "Which city would you like the weather for?"
        assert result.final_turn.media == []
        assert OrchestrationState.RECONCILE_MEDIA not in result.states

    @pytest.mark.asyncio
    async def test_multiple_calls_keep_order(self, orchestrator, gemini, image_tool, weather_tool):
        gemini.complete.side_effect = [
            _calls(_weather_call(), _image_call()),
            _text("Done both."),
        ]

        result = await orchestrator.run([Turn.user("weather in Tokyo and draw a cat")])

        tool_turn = result.appended[1]
        assert [p.function_result.name for p in tool_turn.parts] == [GET_WEATHER, GENERATE_IMAGE]
        assert [p.function_result.id for p in tool_turn.parts] == ["call_wx", "call_img"]
        weather_tool.run.assert_awaited_once()
        image_tool.run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_tool_failure_does_not_abort(self, orchestrator, gemini, image_tool):
        image_tool.run.side_effect = ToolExecutionError("quota exceeded")
        gemini.complete.side_effect = [
            _calls(_image_call()),
            _text("Sorry, I couldn't generate that image."),
        ]

        result = await orchestrator.run([Turn.user("draw a cat")])

        assert result.tool_results[0].succeeded is False
        summary = result.appended[1].parts[0].function_result.response["summary"]
        assert "quota exceeded" in summary
        assert result.final_turn.media == []

    @pytest.mark.asyncio
    async def test_single_followup_round(self, orchestrator, gemini, image_tool, weather_tool):
        """Function calls in the follow-up are surfaced, not dispatched."""
        gemini.complete.side_effect = [
            _calls(_image_call()),
            _calls(_weather_call()),
        ]

        result = await orchestrator.run([Turn.user("draw a cat then check the weather")])

        assert gemini.complete.await_count == 2
        image_tool.run.assert_awaited_once()
        weather_tool.run.assert_not_called()
        assert result.states.count(OrchestrationState.DISPATCH_TOOLS) == 1
        assert [c.name for c in result.final_turn.function_calls] == [GET_WEATHER]
        # The image from the first round is still reconciled onto the final turn
        assert len(result.final_turn.media) == 1

    @pytest.mark.asyncio
    async def test_additional_rounds_when_configured(self, gemini, image_tool, weather_tool):
        gemini.complete.side_effect = [
            _calls(_weather_call("Tokyo", "call_1")),
            _calls(_weather_call("Paris", "call_2")),
            _text("Tokyo is warmer than Paris."),
        ]
        orchestrator = _orchestrator([gemini], [image_tool, weather_tool], max_tool_rounds=2)

        result = await orchestrator.run([Turn.user("compare Tokyo and Paris weather")])

        assert gemini.complete.await_count == 3
        assert weather_tool.run.await_count == 2
        assert len(result.appended) == 5
        assert result.final_turn.text == "Tokyo is warmer than Paris."


class TestDelegation:
    @pytest.mark.asyncio
    async def test_weather_delegated_to_function_calling_provider(
        self, orchestrator, gemini, perplexity, weather_tool
    ):
        events = []

        async def perplexity_complete(request, model=None):
            events.append("perplexity")
            return _text("I can't check live weather, but Tokyo is mild in spring.")

        gemini_replies = iter([_calls(_weather_call()), _text("It is 68°F and clear in Tokyo.")])

        async def gemini_complete(request, model=None):
            events.append("gemini")
            return next(gemini_replies)

        async def weather_run(arguments):
            events.append("dispatch")
            return ToolCallResult(
                tool_name=GET_WEATHER, succeeded=True, human_readable_summary="68°F, clear sky"
            )

        perplexity.complete.side_effect = perplexity_complete
        gemini.complete.side_effect = gemini_complete
        weather_tool.run.side_effect = weather_run

        result = await orchestrator.run(
            [Turn.user("what's the weather in Tokyo, Japan")], model="perplexity"
        )

        # Exactly one delegation call precedes dispatch; the follow-up goes to the delegate
        assert events == ["perplexity", "gemini", "dispatch", "gemini"]

        primary_request = perplexity.complete.call_args.args[0]
        assert primary_request.tools is None

        delegation_request = gemini.complete.call_args_list[0].args[0]
        assert delegation_request.history[-1].role is Role.USER
        assert delegation_request.history[-1].text == DELEGATION_INSTRUCTION
        assert delegation_request.history[-2].text.startswith("I can't check live weather")
        assert [t.name for t in delegation_request.tools] == [GENERATE_IMAGE, GET_WEATHER]

        weather_tool.run.assert_awaited_once_with({"location": "Tokyo, Japan"})
        assert result.delegated is True
        assert result.provider == "gemini"
        assert result.final_turn.text == "It is 68°F and clear in Tokyo."
        assert result.states.index(OrchestrationState.DELEGATE) < result.states.index(
            OrchestrationState.DISPATCH_TOOLS
        )

    @pytest.mark.asyncio
    async def test_delegation_without_call_keeps_original(self, orchestrator, gemini, perplexity):
        original = "The weather in Tokyo is usually mild in spring."
        perplexity.complete.return_value = _text(original)
        gemini.complete.return_value = _text("Something else entirely.")

        result = await orchestrator.run([Turn.user("tokyo weather?")], model="perplexity")

        gemini.complete.assert_awaited_once()
        assert result.delegated is False
        assert result.provider == "perplexity"
        assert result.appended == (Turn.reply(original),)

    @pytest.mark.asyncio
    async def test_delegation_failure_keeps_original(self, orchestrator, gemini, perplexity):
        original = "I can't draw pictures, sorry."
        perplexity.complete.return_value = _text(original)
        gemini.complete.side_effect = ProviderError("gemini", "overloaded", upstream_status=503)

        result = await orchestrator.run([Turn.user("draw a dog")], model="perplexity")

        assert result.final_turn.text == original
        assert result.delegated is False

    @pytest.mark.asyncio
    async def test_malformed_delegation_body_keeps_original(self, orchestrator, gemini, perplexity):
        original = "I can't draw pictures, sorry."
        perplexity.complete.return_value = _text(original)
        del gemini.complete

        with patch("chatrelay.llm.providers.base.acompletion", new_callable=AsyncMock) as mock_completion:
            mock_completion.return_value = _nameless_tool_call_response()

            result = await orchestrator.run([Turn.user("draw a dog")], model="perplexity")

        mock_completion.assert_awaited_once()
        assert result.final_turn.text == original
        assert result.provider == "perplexity"
        assert result.delegated is False

    @pytest.mark.asyncio
    async def test_no_keywords_no_delegation(self, orchestrator, gemini, perplexity):
        perplexity.complete.return_value = _text("The capital of France is Paris.")

        result = await orchestrator.run([Turn.user("capital of France?")], model="perplexity")

        gemini.complete.assert_not_called()
        assert OrchestrationState.DELEGATE not in result.states

    @pytest.mark.asyncio
    async def test_keyword_for_unavailable_tool_no_delegation(self, gemini, perplexity, image_tool):
        perplexity.complete.return_value = _text("It looks like rain today.")
        orchestrator = _orchestrator([gemini, perplexity], [image_tool])

        await orchestrator.run([Turn.user("will it rain?")], model="perplexity")

        gemini.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_configured_delegate(self, perplexity, image_tool, weather_tool):
        unconfigured = GeminiAdapter(api_key="", default_model="gemini-2.0-flash-lite")
        unconfigured.complete = AsyncMock()
        perplexity.complete.return_value = _text("Here is a picture description of a cat.")
        orchestrator = _orchestrator([unconfigured, perplexity], [image_tool, weather_tool])

        result = await orchestrator.run([Turn.user("draw a cat")], model="perplexity")

        unconfigured.complete.assert_not_called()
        assert result.final_turn.text == "Here is a picture description of a cat."


class TestFailures:
    @pytest.mark.asyncio
    async def test_empty_history(self, orchestrator, gemini):
        with pytest.raises(ValidationError):
            await orchestrator.run([])
        gemini.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_turn_without_parts(self, orchestrator, gemini):
        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.run([Turn(role=Role.USER, parts=())])
        assert exc_info.value.details == {"turn_index": 0}
        gemini.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_model_raises_configuration_error(self, orchestrator):
        with pytest.raises(ConfigurationError):
            await orchestrator.run([Turn.user("hi")], model="claude-3")

    @pytest.mark.asyncio
    async def test_primary_failure_propagates(self, orchestrator, gemini):
        gemini.complete.side_effect = ProviderError("gemini", "quota exhausted", upstream_status=429)

        with pytest.raises(UpstreamProviderError) as exc_info:
            await orchestrator.run([Turn.user("hi")])

        assert exc_info.value.upstream_status == 429
        assert exc_info.value.details["provider"] == "gemini"

    @pytest.mark.asyncio
    async def test_followup_failure_propagates(self, orchestrator, gemini, image_tool):
        gemini.complete.side_effect = [
            _calls(_image_call()),
            ProviderError("gemini", "internal error", upstream_status=500),
        ]

        with pytest.raises(UpstreamProviderError):
            await orchestrator.run([Turn.user("draw a cat")])

        image_tool.run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_state_is_logged(self, orchestrator, gemini, caplog):
        gemini.complete.side_effect = ProviderError("gemini", "boom", upstream_status=500)

        with caplog.at_level("WARNING", logger="chatrelay"):
            with pytest.raises(UpstreamProviderError):
                await orchestrator.run([Turn.user("hi")])

        assert "call_primary" in caplog.text

    @pytest.mark.asyncio
    async def test_malformed_primary_body_is_provider_error(self, orchestrator, gemini, caplog):
        del gemini.complete

        with patch("chatrelay.llm.providers.base.acompletion", new_callable=AsyncMock) as mock_completion:
            mock_completion.return_value = _nameless_tool_call_response()

            with caplog.at_level("WARNING", logger="chatrelay"):
                with pytest.raises(ProviderError) as exc_info:
                    await orchestrator.run([Turn.user("draw a cat")])

        assert exc_info.value.provider == "gemini"
        assert "Malformed response" in exc_info.value.message
        assert "call_primary" in caplog.text

    @pytest.mark.asyncio
    async def test_empty_completion_is_response_shape_error(self, orchestrator, gemini):
        gemini.complete.return_value = CompletionResponse(
            turn=Turn(role=Role.MODEL, parts=()), finish_reason=FinishReason.ERROR
        )

        with pytest.raises(ResponseShapeError):
            await orchestrator.run([Turn.user("hi")])
