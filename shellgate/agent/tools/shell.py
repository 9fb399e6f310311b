"""Secure shell execution tool with approval system."""

from typing import Any, Callable, Mapping

from loguru import logger
from pydantic import ValidationError

from shellgate.agent.tools.base import Tool, ToolResult, text_result
from shellgate.config.schema import ExecToolConfig
from shellgate.exec import (
    ConfigError,
    ExecApprovalStore,
    ExecInvocation,
    ExecResult,
    execute_command,
    format_risk_warning,
)
from shellgate.exec.approvals import ApprovalCallback
from shellgate.exec.executor import GatewayCallable


class ExecTool(Tool):
    """
    Secure shell command execution tool.

    Features:
    - Security levels: off, allowlist, full
    - Ask modes: off, on, risky
    - Risk analysis with a warning block prepended to output
    - Allowlist with glob pattern matching, persisted approvals
    - Approval system via callback
    - Local execution, or delegation to a gateway for remote hosts
    """

    def __init__(
        self,
        config: ExecToolConfig | Mapping[str, Any] | None = None,
        *,
        store: ExecApprovalStore | None = None,
        approval_callback: ApprovalCallback | None = None,
        gateway: GatewayCallable | None = None,
        working_dir: str | None = None,
    ):
        if config is None:
            config = ExecToolConfig()
        elif not isinstance(config, ExecToolConfig):
            try:
                config = ExecToolConfig.model_validate(dict(config))
            except ValidationError as e:
                raise ConfigError(f"Invalid exec configuration: {e}") from e

        self.config = config
        self.security = config.security_config()
        self.working_dir = working_dir
        self.gateway = gateway
        self._store = store or ExecApprovalStore(config.approvals_path)
        self._store.load()

        if approval_callback:
            self._store.set_approval_callback(approval_callback)

    @property
    def name(self) -> str:
        return "exec"

    @property
    def description(self) -> str:
        security = self.security.level

        desc = "Execute a shell command and return its output.\n\n"
        desc += f"Security: {security}, Ask: {self.security.ask}, Host: {self.config.host}\n"

        if security == "off":
            desc += "WARNING: Command execution is currently disabled."
        elif security == "allowlist":
            desc += "Only allowlisted commands are permitted.\n"
            if self.security.ask == "off":
                desc += "Other commands are denied."
            else:
                desc += "Other commands may require user approval."
        elif security == "full":
            desc += "Full access mode - all commands allowed."

        return desc

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The shell command to execute"
                },
                "workdir": {
                    "type": "string",
                    "description": "Optional working directory for the command"
                },
                "env": {
                    "type": "object",
                    "additionalProperties": {"type": "string"},
                    "description": "Optional environment variable overrides"
                },
                "timeout": {
                    "type": "integer",
                    "description": f"Optional timeout in seconds (default: {self.config.timeout_seconds})"
                }
            },
            "required": ["command"]
        }

    def set_approval_callback(self, callback: ApprovalCallback | None) -> None:
        """Set the approval callback."""
        self._store.set_approval_callback(callback)

    @property
    def store(self) -> ExecApprovalStore:
        """Get the approval store for external management."""
        return self._store

    async def execute(
        self,
        call_id: str,
        args: dict[str, Any],
        on_update: Callable[[str], None] | None = None,
    ) -> ToolResult:
        """Execute a command with full security checks. Never raises."""
        command = args.get("command") if isinstance(args, dict) else None
        if not isinstance(command, str) or not command.strip():
            return text_result("Error: command is required", status="error", call_id=call_id)

        timeout = args.get("timeout")
        if not isinstance(timeout, int) or isinstance(timeout, bool) or timeout <= 0:
            timeout = None

        env = args.get("env")
        if not isinstance(env, dict):
            env = None
        else:
            env = {str(k): str(v) for k, v in env.items()}

        invocation = ExecInvocation(
            call_id=call_id,
            command=command.strip(),
            cwd=args.get("workdir") or self.working_dir,
            env=env,
            timeout=timeout,
            host=self.config.host,
        )

        logger.info(f"Exec request [{call_id}]: {command[:50]}")

        try:
            # Store patterns can change between calls
            security = self.security.with_allowlist(self._store.patterns())
            result = await execute_command(
                invocation,
                self.config,
                security,
                self._store,
                gateway=self.gateway,
                on_output=on_update,
            )
        except Exception as e:
            logger.error(f"Exec failed [{call_id}]: {e}")
            return text_result(f"❌ Error: {e}", status="error", call_id=call_id)

        return text_result(
            self._format_result(result, timeout or self.config.timeout_seconds),
            status=self._status(result),
            call_id=call_id,
            exit_code=result.exit_code,
            signal=result.signal,
            findings=[f.category for f in result.findings],
        )

    @staticmethod
    def _status(result: ExecResult) -> str:
        if result.denied:
            return "denied"
        if result.success:
            return "completed"
        return "failed"

    def _format_result(self, result: ExecResult, timeout: int) -> str:
        body = self._format_body(result, timeout)
        warning = format_risk_warning(result.findings)
        if warning:
            return f"{warning}\n\n{body}"
        return body

    def _format_body(self, result: ExecResult, timeout: int) -> str:
        if result.denied:
            return f"❌ Command denied: {result.error}"

        if result.timed_out:
            return f"⏰ Command timed out after {timeout} seconds"

        if result.error:
            return f"❌ Error: {result.error}"

        output_parts = []

        if result.stdout:
            output_parts.append(self._truncate(result.stdout))

        if result.stderr:
            output_parts.append(f"STDERR:\n{self._truncate(result.stderr)}")

        if result.signal:
            output_parts.append(f"\nTerminated by signal: {result.signal}")
        elif result.exit_code is not None and result.exit_code != 0:
            output_parts.append(f"\nExit code: {result.exit_code}")

        return "\n".join(output_parts) if output_parts else "(no output)"

    def _truncate(self, text: str) -> str:
        max_output = self.config.max_output_chars
        if len(text) > max_output:
            return text[:max_output] + f"\n... (truncated, {len(text)} total chars)"
        return text
