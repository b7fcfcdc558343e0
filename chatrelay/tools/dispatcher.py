"""
Tool Dispatcher.

Runs the operation behind each function call the model emits. Dispatch never
raises: unknown tools, missing arguments, timeouts and upstream failures all
come back as ``succeeded=False`` results whose summary is fed to the model as
the tool's own explanation. Crashing the turn on a tool failure would lose
the rest of the answer.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Sequence

from chatrelay.config.logging import get_logger
from chatrelay.errors import ToolExecutionError
from chatrelay.llm.models import FunctionCall, ToolCallResult
from chatrelay.tools.base import Tool

logger = get_logger(__name__)


class ToolDispatcher:
    """
    Maps function calls to Tool implementations.

    Args:
        tools: Tool implementations; their declaration names must be unique
        timeout: Per-call timeout in seconds
    """

    def __init__(self, tools: Iterable[Tool], timeout: float = 45.0):
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            self._tools[tool.name] = tool
        self._timeout = timeout

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    async def execute(self, call: FunctionCall) -> ToolCallResult:
        """Dispatch a single function call. Never raises."""
        tool = self._tools.get(call.name)
        if tool is None:
            logger.warning(f"Model requested unknown tool '{call.name}'")
            return self._failure(call, f"The tool '{call.name}' is not available.")

        missing = tool.missing_arguments(call.arguments)
        if missing:
            logger.info(f"Tool '{call.name}' called without required argument(s) {missing}")
            return self._failure(call, tool.missing_argument_summary(missing))

        try:
            result = await asyncio.wait_for(tool.run(call.arguments), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Tool '{call.name}' timed out after {self._timeout}s")
            return self._failure(
                call, f"Sorry, the {call.name} tool took too long to respond. Please try again later."
            )
        except ToolExecutionError as e:
            logger.warning(f"Tool '{call.name}' failed: {e.message}")
            return self._failure(call, f"Sorry, the {call.name} tool failed: {e.message}")
        except Exception as e:
            logger.error(f"Tool '{call.name}' raised unexpectedly: {e}", exc_info=True)
            return self._failure(
                call, f"Sorry, the {call.name} tool ran into an unexpected error."
            )

        return result.model_copy(update={"call_id": call.id})

    async def execute_all(self, calls: Sequence[FunctionCall]) -> list[ToolCallResult]:
        """
        Dispatch independent calls concurrently.

        Results are returned in the order the calls appeared, and only once
        every call has finished.
        """
        if not calls:
            return []
        return list(await asyncio.gather(*(self.execute(call) for call in calls)))

    @staticmethod
    def _failure(call: FunctionCall, summary: str) -> ToolCallResult:
        return ToolCallResult(
            tool_name=call.name,
            succeeded=False,
            human_readable_summary=summary,
            call_id=call.id,
        )
