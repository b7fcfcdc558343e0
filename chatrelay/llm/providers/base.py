"""
Provider Adapter interface.

An adapter is the boundary between the generic orchestration core and one
upstream completion service:

    CompletionRequest --translate_request--> wire payload (LiteLLM kwargs)
                                                 |
                                               issue  (network, bounded by timeout)
                                                 |
    CompletionResponse <--normalize_response-- wire response (LiteLLM ModelResponse)

Adding a provider means adding one subclass; the orchestrator never branches
on provider identity, only on ``supports_function_calling``.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any

from litellm import acompletion

from chatrelay.config.logging import get_logger
from chatrelay.errors import ChatRelayError, UpstreamProviderError
from chatrelay.llm.models import (
    CompletionRequest,
    CompletionResponse,
    FinishReason,
    GenerationOptions,
    TokenUsage,
)

logger = get_logger(__name__)

# LiteLLM normalizes provider-native finish reasons to the OpenAI vocabulary
_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "tool_calls": FinishReason.STOP,
    "function_call": FinishReason.STOP,
    "error": FinishReason.ERROR,
}


class ProviderError(UpstreamProviderError):
    """
    A provider call failed: non-success status, transport failure, timeout
    or malformed body.

    Args:
        provider: Adapter name ("gemini", "perplexity")
        message: Best-effort human message extracted from the upstream error body
        upstream_status: Upstream HTTP status (504 for timeouts), if known
    """

    def __init__(
        self,
        provider: str,
        message: str,
        upstream_status: int | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(
            message,
            upstream_status=upstream_status,
            details={"provider": provider},
            cause=cause,
        )
        self.provider = provider


def extract_upstream_message(error: BaseException) -> str:
    """
    Pull the most useful message out of a LiteLLM exception.

    LiteLLM messages usually embed the upstream JSON error body, e.g.
    ``GeminiException - {"error": {"code": 400, "message": "..."}}``. When a
    body is found, its ``error.message`` is returned; otherwise the raw text.
    """
    raw = getattr(error, "message", None) or str(error) or type(error).__name__
    start = raw.find("{")
    if start != -1:
        try:
            body = json.loads(raw[start:])
        except ValueError:
            body = None
        if isinstance(body, dict):
            upstream = body.get("error", body)
            if isinstance(upstream, dict) and upstream.get("message"):
                return str(upstream["message"])
            if isinstance(upstream, str):
                return upstream
    return raw


class ProviderAdapter(ABC):
    """
    Abstract base class for completion providers reached through LiteLLM.

    Args:
        api_key: Provider credential; an adapter without one is unconfigured
        default_model: Model used when the request names only the provider family
        timeout: Seconds before a completion call is abandoned
    """

    name: str = ""
    litellm_prefix: str = ""
    model_prefixes: tuple[str, ...] = ()
    supports_function_calling: bool = False

    def __init__(self, api_key: str, default_model: str, timeout: float = 60.0):
        self._api_key = api_key
        self._default_model = default_model
        self._timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    @property
    def default_model(self) -> str:
        return self._default_model

    def handles(self, model_id: str) -> bool:
        """True if ``model_id`` is this provider's family name or one of its models."""
        model_id = model_id.strip().lower()
        if model_id == self.name or model_id.startswith(self.litellm_prefix):
            return True
        return any(model_id.startswith(prefix) for prefix in self.model_prefixes)

    def resolve_model(self, model_id: str | None = None) -> str:
        """Concrete model name (without LiteLLM prefix) for a requested id."""
        if not model_id or model_id.strip().lower() == self.name:
            return self._default_model
        model_id = model_id.strip()
        if model_id.lower().startswith(self.litellm_prefix):
            return model_id[len(self.litellm_prefix):]
        return model_id

    def _base_payload(self, model: str | None, options: GenerationOptions) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": f"{self.litellm_prefix}{self.resolve_model(model)}",
            "api_key": self._api_key,
            "timeout": self._timeout,
        }
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.max_output_tokens is not None:
            payload["max_tokens"] = options.max_output_tokens
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.top_k is not None:
            payload["top_k"] = options.top_k
        if options.stop_sequences:
            payload["stop"] = list(options.stop_sequences)
        return payload

    @abstractmethod
    def translate_request(
        self, request: CompletionRequest, model: str | None = None
    ) -> dict[str, Any]:
        """
        Map the generic request to LiteLLM ``acompletion`` kwargs.

        Must be pure: no I/O and no mutation of ``request``.
        """
        pass

    async def issue(self, payload: dict[str, Any]) -> Any:
        """
        Perform the network call.

        Raises:
            ProviderError: On timeout, transport failure or non-success status
        """
        try:
            return await asyncio.wait_for(acompletion(**payload), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(
                self.name,
                f"{self.name} did not respond within {self._timeout:g}s",
                upstream_status=504,
                cause=e,
            )
        except Exception as e:
            status = getattr(e, "status_code", None)
            raise ProviderError(
                self.name,
                extract_upstream_message(e),
                upstream_status=status if isinstance(status, int) else None,
                cause=e,
            )

    @abstractmethod
    def normalize_response(self, raw: Any) -> CompletionResponse:
        """Reshape a LiteLLM response into a CompletionResponse."""
        pass

    async def complete(
        self, request: CompletionRequest, model: str | None = None
    ) -> CompletionResponse:
        """translate_request -> issue -> normalize_response."""
        payload = self.translate_request(request, model)
        logger.debug(
            f"{self.name}: calling {payload['model']} with {len(payload['messages'])} messages"
            f"{' and ' + str(len(payload['tools'])) + ' tools' if 'tools' in payload else ''}"
        )
        raw = await self.issue(payload)
        try:
            return self.normalize_response(raw)
        except ChatRelayError:
            raise
        except Exception as e:
            logger.error(f"{self.name}: could not parse response: {e}")
            raise ProviderError(self.name, f"Malformed response from {self.name}: {e}", cause=e)

    # -- helpers shared by normalize_response implementations --

    @staticmethod
    def _map_finish_reason(value: Any) -> FinishReason:
        if isinstance(value, str):
            return _FINISH_REASONS.get(value.lower(), FinishReason.OTHER)
        return FinishReason.OTHER

    @staticmethod
    def _usage(raw: Any) -> TokenUsage | None:
        usage = getattr(raw, "usage", None)
        if usage is None:
            return None
        try:
            return TokenUsage(
                prompt_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
                completion_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
            )
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _model_name(raw: Any) -> str | None:
        model = getattr(raw, "model", None)
        return model if isinstance(model, str) else None

    @staticmethod
    def _first_message(raw: Any) -> tuple[Any, Any]:
        """(message, finish_reason) of the first choice, or (None, None)."""
        choices = getattr(raw, "choices", None) or []
        if not choices:
            return None, None
        choice = choices[0]
        return getattr(choice, "message", None), getattr(choice, "finish_reason", None)
