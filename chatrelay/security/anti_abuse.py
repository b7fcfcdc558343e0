"""
Anti-abuse gate.

Verifies a reCAPTCHA v3 token against Google's siteverify endpoint before a
request is allowed to reach any LLM provider. A token passes only when the
verification succeeds and its score meets the threshold (0.5 by default).
"""

from __future__ import annotations

import math

import httpx

from chatrelay.config.logging import get_logger
from chatrelay.errors import AntiAbuseRejected, ConfigurationError

logger = get_logger(__name__)


class AntiAbuseVerifier:
    """
    Args:
        secret_key: reCAPTCHA secret key
        verify_url: Verification endpoint
        score_threshold: Minimum accepted score
        http_timeout: Request timeout in seconds
    """

    def __init__(
        self,
        secret_key: str,
        verify_url: str = "https://www.google.com/recaptcha/api/siteverify",
        score_threshold: float = 0.5,
        http_timeout: float = 10.0,
    ):
        self._secret_key = secret_key
        self._verify_url = verify_url
        self._score_threshold = score_threshold
        self._http_timeout = http_timeout

    async def verify(self, token: str | None, remote_ip: str | None = None) -> float:
        """
        Verify a client token.

        Args:
            token: Token produced by the client-side widget
            remote_ip: Client address forwarded to the verifier, if known

        Returns:
            The verification score

        Raises:
            AntiAbuseRejected: Token missing, verification failed or score too low
            ConfigurationError: No secret key configured
        """
        if not token:
            raise AntiAbuseRejected("Verification token is missing.")
        if not self._secret_key:
            raise ConfigurationError("Anti-abuse secret key not configured.")

        data = {"secret": self._secret_key, "response": token}
        if remote_ip:
            data["remoteip"] = remote_ip

        try:
            async with httpx.AsyncClient(timeout=self._http_timeout) as client:
                response = await client.post(self._verify_url, data=data)
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Anti-abuse verification request failed: {e}")
            raise AntiAbuseRejected("Verification could not be completed.", cause=e)

        if response.status_code != 200 or not isinstance(body, dict):
            raise AntiAbuseRejected(
                "Verification could not be completed.",
                details={"upstream_status": response.status_code},
            )

        if not body.get("success"):
            logger.info(f"Anti-abuse verification failed: {body.get('error-codes')}")
            raise AntiAbuseRejected(
                "Verification failed.", details={"error_codes": body.get("error-codes", [])}
            )

        try:
            score = float(body.get("score", 0.0))
        except (TypeError, ValueError) as e:
            logger.info(f"Anti-abuse score is not a number: {body.get('score')!r}")
            raise AntiAbuseRejected("Verification score is missing or invalid.", cause=e)
        if not math.isfinite(score):
            raise AntiAbuseRejected("Verification score is missing or invalid.")
        if score < self._score_threshold:
            logger.info(f"Anti-abuse score {score:.2f} below threshold {self._score_threshold:.2f}")
            raise AntiAbuseRejected("Verification score too low.", details={"score": score})

        return score
