"""
Error taxonomy.

Every failure the relay can report derives from ChatRelayError. Each class
carries a machine-checkable ``category`` and the HTTP status the API layer
answers with, so the mapping from category to status is one-to-one.

    ValidationError        400  missing or malformed input
    AntiAbuseRejected      403  verification failed or score below threshold
    ConfigurationError     500  credential absent for the selected provider
    UpstreamProviderError  502  primary or follow-up completion failed
    ResponseShapeError     502  no usable completion turn after all processing
    ToolExecutionError     --   recovered inside the dispatcher, never surfaced
"""

from __future__ import annotations

from typing import Any


class ChatRelayError(Exception):
    """Base class for all relay errors."""

    category = "internal_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.cause = cause

    def to_body(self) -> dict[str, Any]:
        """Render the client-facing ``{error, details?}`` body."""
        body: dict[str, Any] = {"error": self.message, "category": self.category}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ChatRelayError):
    category = "validation_error"
    status_code = 400


class AntiAbuseRejected(ChatRelayError):
    category = "anti_abuse_rejected"
    status_code = 403


class ConfigurationError(ChatRelayError):
    category = "configuration_error"
    status_code = 500


class UpstreamProviderError(ChatRelayError):
    """A completion call to an LLM provider failed."""

    category = "upstream_provider_error"
    status_code = 502

    def __init__(
        self,
        message: str,
        upstream_status: int | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        details = dict(details or {})
        if upstream_status is not None:
            details.setdefault("upstream_status", upstream_status)
        super().__init__(message, details=details, cause=cause)
        self.upstream_status = upstream_status


class ToolExecutionError(ChatRelayError):
    """A tool's own upstream failed. Always converted into a failed tool result."""

    category = "tool_execution_error"
    status_code = 502


class ResponseShapeError(ChatRelayError):
    category = "response_shape_error"
    status_code = 502
