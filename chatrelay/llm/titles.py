"""
Conversation title generation.

An auxiliary, best-effort task: it reads the first user message and asks a
Gemini model for a short title. Any failure is logged and swallowed; the
caller simply gets no title.
"""

from __future__ import annotations

import asyncio
from typing import Sequence

from litellm import acompletion

from chatrelay.config.logging import get_logger
from chatrelay.llm.models import Role, Turn

logger = get_logger(__name__)

TITLE_PROMPT = (
    "Write a short title (at most six words) for a chat conversation that starts with "
    "the message below. Reply with the title only, without quotes or punctuation at the end.\n\n"
    "Message: {message}"
)

_MAX_TITLE_LENGTH = 80


class TitleGenerator:
    """
    Args:
        model: LiteLLM model string, e.g. "gemini/gemini-2.0-flash-lite"
        api_key: Credential for that model
        timeout: Seconds before the title is abandoned
    """

    def __init__(self, model: str, api_key: str, timeout: float = 15.0):
        self._model = model
        self._api_key = api_key
        self._timeout = timeout

    async def generate(self, history: Sequence[Turn]) -> str | None:
        """Return a cleaned title, or None if none could be produced. Never raises."""
        first_message = next(
            (turn.text.strip() for turn in history if turn.role is Role.USER and turn.text.strip()),
            "",
        )
        if not first_message or not self._api_key:
            return None

        try:
            response = await asyncio.wait_for(
                acompletion(
                    model=self._model,
                    messages=[
                        {"role": "user", "content": TITLE_PROMPT.format(message=first_message)}
                    ],
                    temperature=0.2,
                    max_tokens=24,
                    api_key=self._api_key,
                ),
                timeout=self._timeout,
            )
            raw = response.choices[0].message.content
        except Exception as e:
            logger.warning(f"Title generation failed: {e}")
            return None

        return self._clean(raw)

    @staticmethod
    def _clean(raw: object) -> str | None:
        if not isinstance(raw, str):
            return None
        title = raw.strip().splitlines()[0].strip() if raw.strip() else ""
        title = title.strip("\"'`*#").strip().rstrip(".")
        if not title:
            return None
        return title[:_MAX_TITLE_LENGTH]
