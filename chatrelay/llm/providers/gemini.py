"""
Gemini adapter (function-calling capable).

Translates the turn history into OpenAI-style chat messages, which LiteLLM
converts to Gemini ``contents``:

    USER turn   -> {"role": "user", "content": text or [text / image_url parts]}
    MODEL turn  -> {"role": "assistant", "content": text, "tool_calls": [...]}
    TOOL turn   -> one {"role": "tool", "tool_call_id": ..., "content": json} per result

Function results are paired with their calls by id. Histories coming from the
client may lack ids; those get positional ids so every result still follows
its call.
"""

from __future__ import annotations

import json
from typing import Any

from chatrelay.config.logging import get_logger
from chatrelay.llm.models import (
    CompletionRequest,
    CompletionResponse,
    FinishReason,
    FunctionCall,
    Part,
    Role,
    ToolDeclaration,
    Turn,
)
from chatrelay.llm.providers.base import ProviderAdapter

logger = get_logger(__name__)


def _tool_definitions(tools: tuple[ToolDeclaration, ...]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameter_schema,
            },
        }
        for tool in tools
    ]


def _decode_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Discarding undecodable function-call arguments: {raw!r}")
        return {}
    return decoded if isinstance(decoded, dict) else {}


class GeminiAdapter(ProviderAdapter):
    """Gemini via LiteLLM (``gemini/<model>``)."""

    name = "gemini"
    litellm_prefix = "gemini/"
    model_prefixes = ("gemini-",)
    supports_function_calling = True

    def translate_request(
        self, request: CompletionRequest, model: str | None = None
    ) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})

        pending_ids: list[str] = []
        for index, turn in enumerate(request.history):
            if turn.role is Role.USER:
                messages.append(self._user_message(turn))
            elif turn.role is Role.MODEL:
                message, pending_ids = self._model_message(turn, index)
                if message is not None:
                    messages.append(message)
            else:
                messages.extend(self._tool_messages(turn, pending_ids))
                pending_ids = []

        payload = self._base_payload(model, request.generation_options)
        payload["messages"] = messages
        if request.tools:
            payload["tools"] = _tool_definitions(request.tools)
        return payload

    @staticmethod
    def _user_message(turn: Turn) -> dict[str, Any]:
        content: list[dict[str, Any]] = []
        for part in turn.parts:
            if part.text is not None:
                content.append({"type": "text", "text": part.text})
            elif part.inline_media is not None:
                content.append(
                    {"type": "image_url", "image_url": {"url": part.inline_media.to_data_uri()}}
                )
        if len(content) == 1 and content[0]["type"] == "text":
            return {"role": "user", "content": content[0]["text"]}
        return {"role": "user", "content": content}

    @staticmethod
    def _model_message(turn: Turn, index: int) -> tuple[dict[str, Any] | None, list[str]]:
        text = turn.text
        tool_calls = []
        call_ids = []
        for position, call in enumerate(turn.function_calls):
            call_id = call.id or f"call_{index}_{position}"
            call_ids.append(call_id)
            tool_calls.append(
                {
                    "id": call_id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
            )
        # Media the model produced earlier (generated images) is not replayed
        if not text and not tool_calls:
            return None, []
        message: dict[str, Any] = {"role": "assistant", "content": text or None}
        if tool_calls:
            message["tool_calls"] = tool_calls
        return message, call_ids

    @staticmethod
    def _tool_messages(turn: Turn, pending_ids: list[str]) -> list[dict[str, Any]]:
        messages = []
        remaining = list(pending_ids)
        for part in turn.parts:
            result = part.function_result
            if result is None:
                continue
            if result.id and result.id in remaining:
                call_id = result.id
                remaining.remove(call_id)
            elif remaining:
                call_id = remaining.pop(0)
            else:
                call_id = result.id or f"result_{result.name}"
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": call_id,
                    "name": result.name,
                    "content": json.dumps(result.response),
                }
            )
        return messages

    def normalize_response(self, raw: Any) -> CompletionResponse:
        message, finish_reason = self._first_message(raw)
        if message is None:
            logger.warning("Gemini response carried no candidates")
            return CompletionResponse(
                turn=Turn(role=Role.MODEL, parts=()),
                finish_reason=FinishReason.ERROR,
                model=self._model_name(raw),
            )

        parts: list[Part] = []
        content = getattr(message, "content", None)
        if isinstance(content, str) and content.strip():
            parts.append(Part.from_text(content))

        for tool_call in getattr(message, "tool_calls", None) or []:
            call_id = getattr(tool_call, "id", None)
            parts.append(
                Part.from_call(
                    FunctionCall(
                        name=tool_call.function.name,
                        arguments=_decode_arguments(tool_call.function.arguments),
                        id=call_id if isinstance(call_id, str) else None,
                    )
                )
            )

        return CompletionResponse(
            turn=Turn(role=Role.MODEL, parts=tuple(parts)),
            finish_reason=self._map_finish_reason(finish_reason),
            model=self._model_name(raw),
            usage=self._usage(raw),
        )
