"""
chatrelay - turn orchestration between a chat client and hosted LLM providers.

This package relays a conversation to Gemini or Perplexity, resolves any tool
calls the model emits (image generation, weather lookup) and returns one
normalized response envelope to the client.
"""

__version__ = "0.1.0"
