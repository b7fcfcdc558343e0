"""
Perplexity adapter (text only).

Perplexity has no native tool-call syntax, so the history is flattened into
alternating user/assistant text messages: tool turns and function-call parts
are omitted and media is dropped. Perplexity rejects two consecutive
messages from the same role, so adjacent same-role messages are merged.

A missing or empty answer is not an error here. It becomes a MODEL turn with
a single apologetic text part, so tool-related behaviour stays with the
orchestrator's delegation step rather than being duplicated per provider.
"""

from __future__ import annotations

from typing import Any

from chatrelay.config.logging import get_logger
from chatrelay.llm.models import (
    CompletionRequest,
    CompletionResponse,
    FinishReason,
    Part,
    Role,
    Turn,
)
from chatrelay.llm.providers.base import ProviderAdapter

logger = get_logger(__name__)

NO_CONTENT_TEXT = "Sorry, I couldn't produce a response to that. Please try rephrasing your message."


class PerplexityAdapter(ProviderAdapter):
    """Perplexity via LiteLLM (``perplexity/<model>``)."""

    name = "perplexity"
    litellm_prefix = "perplexity/"
    model_prefixes = ("sonar", "r1-1776")
    supports_function_calling = False

    def translate_request(
        self, request: CompletionRequest, model: str | None = None
    ) -> dict[str, Any]:
        conversation: list[dict[str, str]] = []
        for turn in request.history:
            if turn.role is Role.TOOL:
                continue
            text = turn.text.strip()
            if not text:
                continue
            role = "user" if turn.role is Role.USER else "assistant"
            if conversation and conversation[-1]["role"] == role:
                conversation[-1] = {
                    "role": role,
                    "content": f"{conversation[-1]['content']}\n\n{text}",
                }
            else:
                conversation.append({"role": role, "content": text})

        # The first non-system message must come from the user
        while conversation and conversation[0]["role"] != "user":
            conversation.pop(0)

        messages: list[dict[str, str]] = []
        if request.system_instruction:
            messages.append({"role": "system", "content": request.system_instruction})
        messages.extend(conversation)

        payload = self._base_payload(model, request.generation_options)
        payload["messages"] = messages
        return payload

    def normalize_response(self, raw: Any) -> CompletionResponse:
        message, finish_reason = self._first_message(raw)
        content = getattr(message, "content", None) if message is not None else None

        if not isinstance(content, str) or not content.strip():
            logger.warning("Perplexity returned no usable content")
            reason = FinishReason.ERROR if message is None else self._map_finish_reason(finish_reason)
            return CompletionResponse(
                turn=Turn(role=Role.MODEL, parts=(Part.from_text(NO_CONTENT_TEXT),)),
                finish_reason=reason,
                model=self._model_name(raw),
                usage=self._usage(raw),
            )

        return CompletionResponse(
            turn=Turn(role=Role.MODEL, parts=(Part.from_text(content),)),
            finish_reason=self._map_finish_reason(finish_reason),
            model=self._model_name(raw),
            usage=self._usage(raw),
        )
