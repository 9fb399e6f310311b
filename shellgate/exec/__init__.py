"""Secure command execution system."""

from shellgate.exec.types import (
    ExecSecurity,
    ExecAsk,
    ExecHost,
    ExecInvocation,
    ExecResult,
    ExecApprovalDecision,
    ApprovalDecision,
    ConfigError,
    RiskFinding,
    SecurityConfig,
)
from shellgate.exec.safety import (
    analyze_command,
    format_risk_warning,
    RISK_RULES,
    WARNING_HEADER,
)
from shellgate.exec.approvals import (
    ExecApprovalStore,
    match_allowlist,
    resolve_approval,
)
from shellgate.exec.process import ProcessRunner
from shellgate.exec.executor import execute_command

__all__ = [
    "ExecSecurity",
    "ExecAsk",
    "ExecHost",
    "ExecInvocation",
    "ExecResult",
    "ExecApprovalDecision",
    "ApprovalDecision",
    "ConfigError",
    "RiskFinding",
    "SecurityConfig",
    "analyze_command",
    "format_risk_warning",
    "RISK_RULES",
    "WARNING_HEADER",
    "ExecApprovalStore",
    "match_allowlist",
    "resolve_approval",
    "ProcessRunner",
    "execute_command",
]
