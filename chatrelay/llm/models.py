"""
Data structures for turn orchestration.

This module defines the provider-independent shapes the orchestrator works on:
- Turn / Part: the conversation history (text, inline media, function calls
  and function results)
- ToolDeclaration: a tool offered to the model
- GenerationOptions: recognized sampling knobs
- CompletionRequest / CompletionResponse: the generic request and the
  normalized response every ProviderAdapter produces
- ToolCallResult: the outcome of dispatching one function call
- OrchestrationResult: what one orchestration run hands back to the caller

All models are frozen. A turn is never mutated once it is part of a history;
stages build new turns (see Turn.with_parts) and append them.

JSON field names are camelCase (``inlineMedia``, ``functionCall``,
``mimeType``) to match the chat client; Python attributes are snake_case.
"""

from __future__ import annotations

import base64
from enum import StrEnum
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class _FrozenModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class Role(StrEnum):
    USER = "user"
    MODEL = "model"
    TOOL = "tool"


class FinishReason(StrEnum):
    STOP = "stop"
    ERROR = "error"
    OTHER = "other"


class InlineMedia(_FrozenModel):
    """Binary media carried inline, base64-encoded."""

    mime_type: str = Field(description='MIME type, e.g. "image/png"')
    data: str = Field(description="Base64-encoded bytes")

    @field_validator("data", mode="before")
    @classmethod
    def _encode_bytes(cls, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            return base64.b64encode(value).decode("ascii")
        return value

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.data)

    def to_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class FunctionCall(_FrozenModel):
    """A structured tool invocation emitted by the model."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    id: str | None = Field(
        default=None,
        description="Provider-assigned call id, used to pair the call with its result",
    )


class FunctionResult(_FrozenModel):
    """The tool-side answer to one FunctionCall."""

    name: str
    response: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None


class Part(_FrozenModel):
    """
    One piece of content within a turn.

    Exactly one of ``text``, ``inline_media``, ``function_call`` or
    ``function_result`` is set.
    """

    text: str | None = None
    inline_media: InlineMedia | None = None
    function_call: FunctionCall | None = None
    function_result: FunctionResult | None = None

    @model_validator(mode="after")
    def _exactly_one_kind(self) -> Part:
        populated = [
            value
            for value in (self.text, self.inline_media, self.function_call, self.function_result)
            if value is not None
        ]
        if len(populated) != 1:
            raise ValueError(
                "A part must carry exactly one of text, inlineMedia, functionCall, functionResult"
            )
        return self

    @classmethod
    def from_text(cls, text: str) -> Part:
        return cls(text=text)

    @classmethod
    def from_media(cls, media: InlineMedia) -> Part:
        return cls(inline_media=media)

    @classmethod
    def from_call(cls, call: FunctionCall) -> Part:
        return cls(function_call=call)

    @classmethod
    def from_result(cls, result: FunctionResult) -> Part:
        return cls(function_result=result)


class Turn(_FrozenModel):
    """One message-equivalent unit of the conversation."""

    role: Role
    parts: tuple[Part, ...] = ()

    @classmethod
    def user(cls, text: str) -> Turn:
        return cls(role=Role.USER, parts=(Part.from_text(text),))

    @classmethod
    def reply(cls, text: str) -> Turn:
        return cls(role=Role.MODEL, parts=(Part.from_text(text),))

    @property
    def text(self) -> str:
        """All text parts joined with newlines."""
        return "\n".join(part.text for part in self.parts if part.text is not None)

    @property
    def function_calls(self) -> list[FunctionCall]:
        return [part.function_call for part in self.parts if part.function_call is not None]

    @property
    def media(self) -> list[InlineMedia]:
        return [part.inline_media for part in self.parts if part.inline_media is not None]

    def with_parts(self, extra: Iterable[Part]) -> Turn:
        """Return a new turn with ``extra`` appended after the existing parts."""
        return self.model_copy(update={"parts": self.parts + tuple(extra)})


class ToolDeclaration(_FrozenModel):
    """
    A tool offered to the model.

    The description is the only guidance the model receives on when to call
    the tool, so it is written for the model, not for humans.
    """

    name: str = Field(min_length=1)
    description: str
    parameter_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON-Schema object describing the arguments",
    )

    @property
    def required_arguments(self) -> list[str]:
        return list(self.parameter_schema.get("required", []))


class GenerationOptions(_FrozenModel):
    """
    Sampling knobs recognized by every provider.

    Accepts Gemini ``generationConfig`` names (``maxOutputTokens``, ``topP``,
    ``topK``, ``stopSequences``). Unknown knobs are dropped.
    """

    model_config = ConfigDict(extra="ignore")

    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_output_tokens: int | None = Field(default=None, gt=0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    top_k: int | None = Field(default=None, gt=0)
    stop_sequences: tuple[str, ...] | None = None

    def with_defaults(
        self,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> GenerationOptions:
        """Fill unset temperature / max tokens from configured defaults."""
        update: dict[str, Any] = {}
        if self.temperature is None and temperature is not None:
            update["temperature"] = temperature
        if self.max_output_tokens is None and max_output_tokens is not None:
            update["max_output_tokens"] = max_output_tokens
        return self.model_copy(update=update) if update else self


class CompletionRequest(_FrozenModel):
    history: tuple[Turn, ...]
    system_instruction: str | None = None
    tools: tuple[ToolDeclaration, ...] | None = None
    generation_options: GenerationOptions = Field(default_factory=GenerationOptions)


class TokenUsage(_FrozenModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class CompletionResponse(_FrozenModel):
    """Normalized, provider-independent completion. ``turn.role`` is always MODEL."""

    turn: Turn
    finish_reason: FinishReason = FinishReason.OTHER
    model: str | None = None
    usage: TokenUsage | None = None

    @model_validator(mode="after")
    def _model_role(self) -> CompletionResponse:
        if self.turn.role is not Role.MODEL:
            raise ValueError("A completion turn must have role 'model'")
        return self


class ToolCallResult(_FrozenModel):
    """
    Outcome of dispatching one function call.

    ``binary_media`` is threaded around the provider call, not through it: the
    model only sees ``human_readable_summary`` (and ``structured_payload``),
    while the orchestrator splices the media into the final turn itself.
    """

    tool_name: str
    succeeded: bool
    human_readable_summary: str
    structured_payload: dict[str, Any] | None = None
    binary_media: InlineMedia | None = None
    call_id: str | None = None

    def to_part(self) -> Part:
        """Build the model-facing functionResult part (media excluded)."""
        response: dict[str, Any] = {
            "succeeded": self.succeeded,
            "summary": self.human_readable_summary,
        }
        if self.structured_payload:
            response["data"] = self.structured_payload
        return Part.from_result(
            FunctionResult(name=self.tool_name, response=response, id=self.call_id)
        )


class OrchestrationState(StrEnum):
    SELECT_PROVIDER = "select_provider"
    CALL_PRIMARY = "call_primary"
    DELEGATE = "delegate"
    DISPATCH_TOOLS = "dispatch_tools"
    CALL_FOLLOWUP = "call_followup"
    RECONCILE_MEDIA = "reconcile_media"
    DONE = "done"
    FAILED = "failed"


class OrchestrationResult(_FrozenModel):
    """
    Result of one orchestration run.

    ``history`` is the inbound history plus ``appended``: one MODEL turn, or,
    when tools were called, MODEL (calls), TOOL (results) and the closing
    MODEL turn.
    """

    history: tuple[Turn, ...]
    appended: tuple[Turn, ...]
    provider: str
    model: str | None = None
    tool_results: tuple[ToolCallResult, ...] = ()
    delegated: bool = False
    states: tuple[OrchestrationState, ...] = ()

    @property
    def final_turn(self) -> Turn:
        return self.appended[-1]
