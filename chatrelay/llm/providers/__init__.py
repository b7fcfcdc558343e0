"""
Provider Adapters.

One adapter per upstream completion service, all behind ProviderAdapter:
- GeminiAdapter: supports structured function calling
- PerplexityAdapter: text only; tool intent is handled by delegation
"""

from chatrelay.llm.providers.base import ProviderAdapter, ProviderError
from chatrelay.llm.providers.gemini import GeminiAdapter
from chatrelay.llm.providers.perplexity import PerplexityAdapter

__all__ = [
    "ProviderAdapter",
    "ProviderError",
    "GeminiAdapter",
    "PerplexityAdapter",
]
