"""
LLM Orchestration Layer.

Turns a conversation history into one normalized response:

    history  →  TurnOrchestrator.run(history, model)
                    ↓
             ProviderAdapter (Gemini / Perplexity via LiteLLM)  ←→  ToolDispatcher
                    ↓
             OrchestrationResult  →  ChatService / API / CLI

The orchestrator lives in chatrelay.llm.orchestrator; this package root only
re-exports the data model so the tools layer can import it without a cycle.

Key responsibilities:
- Select a provider from the requested model id
- Translate requests to each provider and normalize responses back
- Detect, dispatch and follow up on tool calls
- Splice generated media back into the final turn
"""

from chatrelay.llm.models import (
    CompletionRequest,
    CompletionResponse,
    FinishReason,
    FunctionCall,
    FunctionResult,
    GenerationOptions,
    InlineMedia,
    OrchestrationResult,
    OrchestrationState,
    Part,
    Role,
    ToolCallResult,
    ToolDeclaration,
    Turn,
)

__all__ = [
    "CompletionRequest",
    "CompletionResponse",
    "FinishReason",
    "FunctionCall",
    "FunctionResult",
    "GenerationOptions",
    "InlineMedia",
    "OrchestrationResult",
    "OrchestrationState",
    "Part",
    "Role",
    "ToolCallResult",
    "ToolDeclaration",
    "Turn",
]
