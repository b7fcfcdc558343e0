"""
Tool-intent detection for text-only providers.

When a provider cannot emit structured function calls, the orchestrator asks
an IntentDetector whether the provider's answer looks like it wanted a tool.
A non-empty result triggers one delegation call to a function-calling
provider. The detector is pluggable so the keyword heuristic can be swapped
for a classifier without touching orchestration control flow.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Mapping

from chatrelay.tools.registry import GENERATE_IMAGE, GET_WEATHER

DEFAULT_KEYWORDS: dict[str, tuple[str, ...]] = {
    GENERATE_IMAGE: (
        "image",
        "picture",
        "photo",
        "drawing",
        "draw",
        "illustration",
        "illustrate",
        "sketch",
        "paint",
        "painting",
        "artwork",
        "generate an image",
    ),
    GET_WEATHER: (
        "weather",
        "temperature",
        "forecast",
        "humidity",
        "rain",
        "raining",
        "snow",
        "sunny",
        "wind",
        "degrees",
    ),
}


class IntentDetector(ABC):
    """Maps a piece of model output to the tool names it appears to want."""

    @abstractmethod
    def detect(self, text: str) -> set[str]:
        pass


class KeywordIntentDetector(IntentDetector):
    """
    Whole-word, case-insensitive keyword matching.

    Args:
        keywords: Tool name to trigger words. Defaults to DEFAULT_KEYWORDS.
    """

    def __init__(self, keywords: Mapping[str, tuple[str, ...]] | None = None):
        keywords = DEFAULT_KEYWORDS if keywords is None else keywords
        self._patterns = {
            tool: re.compile(
                r"\b(?:" + "|".join(re.escape(word) for word in words) + r")\b",
                re.IGNORECASE,
            )
            for tool, words in keywords.items()
            if words
        }

    def detect(self, text: str) -> set[str]:
        if not text:
            return set()
        return {tool for tool, pattern in self._patterns.items() if pattern.search(text)}
