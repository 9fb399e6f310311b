"""Agent-facing components: workspace bootstrap files and tools."""

from shellgate.agent.workspace import (
    WorkspaceFile,
    build_bootstrap_context,
    load_bootstrap_context,
    load_workspace_bootstrap_files,
)

__all__ = [
    "WorkspaceFile",
    "build_bootstrap_context",
    "load_bootstrap_context",
    "load_workspace_bootstrap_files",
]
