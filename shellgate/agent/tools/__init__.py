"""Agent tools."""

from shellgate.agent.tools.base import Tool
from shellgate.agent.tools.shell import ExecTool

__all__ = ["Tool", "ExecTool"]
