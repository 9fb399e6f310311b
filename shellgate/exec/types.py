"""Type definitions for secure command execution."""

from dataclasses import dataclass, field, replace
from typing import Literal, get_args

# Security levels
ExecSecurity = Literal["off", "allowlist", "full"]

# Ask modes for approval
ExecAsk = Literal["off", "on", "risky"]

# Execution host
ExecHost = Literal["sandbox", "gateway", "node"]

# Verdicts returned by the approval collaborator
ExecApprovalDecision = Literal["allow-once", "allow-always", "deny"]

# Resolved policy outcomes
ApprovalOutcome = Literal["allow", "deny", "needs-ask"]

RiskCategory = Literal[
    "network-pipe-to-shell",
    "destructive-delete",
    "privilege-escalation",
    "permission-widening",
    "remote-code-fetch",
    "other",
]

RiskSeverity = Literal["warn", "block"]

ProcessState = Literal["created", "spawning", "running", "exited", "killed", "spawn-failed"]

TERMINAL_STATES = frozenset({"exited", "killed", "spawn-failed"})


class ConfigError(ValueError):
    """Raised when exec configuration is malformed."""


@dataclass(frozen=True)
class RiskFinding:
    """A single heuristic risk detection on a command string."""
    rule: str
    category: RiskCategory
    severity: RiskSeverity
    matched_text: str
    message: str


@dataclass(frozen=True)
class SecurityConfig:
    """Security policy for one exec tool instance."""
    level: ExecSecurity = "allowlist"
    ask: ExecAsk = "on"
    allowlist: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.level not in get_args(ExecSecurity):
            raise ConfigError(
                f"Invalid security level {self.level!r} (expected one of: off, allowlist, full)"
            )
        if self.ask not in get_args(ExecAsk):
            raise ConfigError(f"Invalid ask mode {self.ask!r} (expected one of: off, on, risky)")
        if isinstance(self.allowlist, str):
            raise ConfigError("allowlist must be a sequence of patterns, not a string")
        patterns = tuple(self.allowlist)
        for pattern in patterns:
            if not isinstance(pattern, str) or not pattern.strip():
                raise ConfigError(f"Invalid allowlist pattern: {pattern!r}")
        object.__setattr__(self, "allowlist", patterns)

    def with_allowlist(self, extra: list[str] | tuple[str, ...]) -> "SecurityConfig":
        """Return a copy with extra allowlist patterns appended (duplicates skipped)."""
        merged = list(self.allowlist)
        for pattern in extra:
            if pattern not in merged:
                merged.append(pattern)
        return replace(self, allowlist=tuple(merged))


@dataclass(frozen=True)
class ApprovalDecision:
    """Resolved allow/deny/ask verdict for one command."""
    outcome: ApprovalOutcome
    reason: str
    findings: tuple[RiskFinding, ...] = ()
    matched_pattern: str | None = None


@dataclass
class AllowlistEntry:
    """An entry in the persisted exec allowlist."""
    pattern: str
    last_used_at: int | None = None
    last_used_command: str | None = None
    last_resolved_path: str | None = None


@dataclass
class ExecInvocation:
    """A request to execute a command."""
    call_id: str
    command: str
    cwd: str | None = None
    env: dict[str, str] | None = None
    timeout: int | None = None
    host: ExecHost = "sandbox"


@dataclass(frozen=True)
class ProcessSnapshot:
    """Read-only view of a running or finished process."""
    pid: int | None
    state: ProcessState
    stdout: str
    stderr: str
    exit_code: int | None = None
    signal: str | None = None


@dataclass
class ProcessResult:
    """Terminal result of a single process run."""
    state: ProcessState
    exit_code: int | None = None
    signal: str | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    timed_out: bool = False
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.state == "exited" and self.exit_code == 0 and self.signal is None


@dataclass
class ExecResult:
    """Result of command execution."""
    success: bool
    exit_code: int | None = None
    signal: str | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    timed_out: bool = False
    denied: bool = False
    approval_required: bool = False
    findings: tuple[RiskFinding, ...] = ()
    decision: ApprovalDecision | None = None


@dataclass
class PendingApproval:
    """A pending approval request."""
    id: str
    invocation: ExecInvocation
    created_at: float
    expires_at: float
    findings: tuple[RiskFinding, ...] = field(default_factory=tuple)
    resolved_path: str | None = None

    @property
    def command(self) -> str:
        return self.invocation.command
