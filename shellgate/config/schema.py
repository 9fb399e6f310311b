"""Configuration schema using Pydantic."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shellgate.exec.types import SecurityConfig


class ExecToolConfig(BaseModel):
    """Command execution tool configuration."""
    security: Literal["off", "allowlist", "full"] = "allowlist"
    ask: Literal["off", "on", "risky"] = "on"
    allowlist: list[str] = Field(default_factory=list)  # Glob patterns
    host: Literal["sandbox", "gateway", "node"] = "sandbox"
    shell: str | None = None  # Defaults to $SHELL, then bash
    fallback_shell: str = "sh"
    timeout_seconds: int = Field(default=300, gt=0)  # 5 minutes default
    max_output_chars: int = Field(default=200_000, gt=0)  # 200KB
    approval_timeout_seconds: int = Field(default=120, gt=0)  # 2 minutes to approve
    approvals_path: str | None = None  # Defaults to ~/.shellgate/exec-approvals.json

    def security_config(self) -> SecurityConfig:
        """Build the immutable policy for one tool instance."""
        return SecurityConfig(level=self.security, ask=self.ask, allowlist=tuple(self.allowlist))


class AgentDefaults(BaseModel):
    """Default agent configuration."""
    workspace: str = "~/.shellgate/workspace"
    bootstrap_max_chars: int = Field(default=20_000, gt=0)


class AgentsConfig(BaseModel):
    """Agent configuration."""
    defaults: AgentDefaults = Field(default_factory=AgentDefaults)


class ToolsConfig(BaseModel):
    """Tools configuration."""
    exec: ExecToolConfig = Field(default_factory=ExecToolConfig)


class Config(BaseSettings):
    """Root configuration for shellgate."""
    agents: AgentsConfig = Field(default_factory=AgentsConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)

    model_config = SettingsConfigDict(env_prefix="SHELLGATE_", env_nested_delimiter="__")

    @property
    def workspace_path(self) -> Path:
        """Get expanded workspace path."""
        return Path(self.agents.defaults.workspace).expanduser()
