"""
Base class for tools.

A tool pairs a ToolDeclaration (what the model sees) with the side-effecting
operation behind it (what the dispatcher runs).
"""

from abc import ABC, abstractmethod
from typing import Any

from chatrelay.llm.models import ToolCallResult, ToolDeclaration


class Tool(ABC):
    """
    Abstract base class for tools the model can call.

    Subclasses implement run(), which performs the upstream call and returns
    a ToolCallResult. Upstream failures are raised as ToolExecutionError; the
    dispatcher turns them into failed results for the model.
    """

    declaration: ToolDeclaration

    @property
    def name(self) -> str:
        return self.declaration.name

    def missing_arguments(self, arguments: dict[str, Any]) -> list[str]:
        """
        Required arguments that are absent or blank.

        Args:
            arguments: Arguments decoded from the function call

        Returns:
            Names of missing required arguments, in declaration order
        """
        missing = []
        for arg in self.declaration.required_arguments:
            value = arguments.get(arg)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(arg)
        return missing

    def missing_argument_summary(self, missing: list[str]) -> str:
        """Model-facing explanation of which arguments were missing."""
        names = ", ".join(f"'{name}'" for name in missing)
        return (
            f"The {self.name} tool was not run because the required argument(s) {names} "
            f"were missing. Ask the user to provide them."
        )

    @abstractmethod
    async def run(self, arguments: dict[str, Any]) -> ToolCallResult:
        """
        Execute the tool.

        Args:
            arguments: Validated arguments (every required argument present)

        Returns:
            ToolCallResult describing the outcome

        Raises:
            ToolExecutionError: If the tool's upstream service fails
        """
        pass
