"""Base class for agent tools."""

from abc import ABC, abstractmethod
from typing import Any

# {"content": [{"type": "text", "text": ...}], "details": {...}}
ToolResult = dict[str, Any]


def text_result(text: str, **details: Any) -> ToolResult:
    """Wrap text in the tool result shape."""
    return {
        "content": [{"type": "text", "text": text}],
        "details": details,
    }


class Tool(ABC):
    """
    Abstract base class for agent tools.

    Tools are invoked with the caller's call id and a dict of arguments and
    always resolve to a ToolResult, even on failure.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool name used in function calls."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Description of what the tool does."""

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for tool parameters."""

    @abstractmethod
    async def execute(self, call_id: str, args: dict[str, Any]) -> ToolResult:
        """
        Execute the tool.

        Args:
            call_id: Correlates the caller's request and response.
            args: Tool-specific parameters.

        Returns:
            ToolResult with at least one text content block.
        """
