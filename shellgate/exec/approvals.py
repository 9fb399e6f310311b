"""Approval policy resolution and the persisted allowlist store."""

import asyncio
import fnmatch
import glob
import json
import secrets
import time
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from filelock import FileLock
from loguru import logger

from shellgate.exec.safety import parse_command, resolve_executable, split_pipeline
from shellgate.exec.types import (
    AllowlistEntry,
    ApprovalDecision,
    ExecApprovalDecision,
    ExecInvocation,
    PendingApproval,
    RiskFinding,
    SecurityConfig,
)

ApprovalCallback = Callable[[PendingApproval], Awaitable[ExecApprovalDecision | bool | None]]


def _expand_pattern(pattern: str) -> str:
    pattern = pattern.strip()
    if pattern.startswith("~"):
        return str(Path(pattern).expanduser())
    return pattern


def _plain_segments(command: str) -> list[tuple[str, str, str | None]] | None:
    """Return (segment, executable, resolved_path) per pipeline segment, or None if not a plain pipeline."""
    ok, _, segments = split_pipeline(command)
    if not ok:
        return None

    parsed = []
    for segment in segments:
        executable, _ = parse_command(segment)
        if not executable:
            return None
        parsed.append((segment, executable, resolve_executable(executable)))
    return parsed


def _covering_pattern(
    segment: str,
    executable: str,
    resolved: str | None,
    allowlist: Sequence[str],
    patterns: list[str],
) -> str | None:
    for original, pattern in zip(allowlist, patterns):
        if (
            fnmatch.fnmatchcase(segment, pattern)
            or fnmatch.fnmatchcase(executable, pattern)
            or (resolved and fnmatch.fnmatchcase(resolved, pattern))
        ):
            return original
    return None


def match_allowlist(command: str, allowlist: Sequence[str]) -> str | None:
    """
    Return the first allowlist pattern that covers ``command``.

    Only plain pipelines can match: chaining, substitution, subshells and
    redirection never do. Every segment must be covered by a pattern that
    glob-matches the segment, its executable name or its resolved path.
    """
    command = command.strip()
    if not command or not allowlist:
        return None

    segments = _plain_segments(command)
    if not segments:
        return None

    patterns = [_expand_pattern(p) for p in allowlist]

    first_match: str | None = None
    for segment, executable, resolved in segments:
        hit = _covering_pattern(segment, executable, resolved, allowlist, patterns)
        if hit is None:
            return None
        first_match = first_match or hit

    return first_match


def resolve_approval(
    config: SecurityConfig,
    command: str,
    findings: Sequence[RiskFinding],
) -> ApprovalDecision:
    """
    Resolve the approval outcome for one command.

    Precedence: security off denies, full allows, allowlist membership
    allows, then the ask mode decides. Pure; safe to call concurrently.
    """
    findings = tuple(findings)

    if config.level == "off":
        return ApprovalDecision("deny", "execution disabled", findings)

    if config.level == "full":
        return ApprovalDecision("allow", "full trust", findings)

    pattern = match_allowlist(command, config.allowlist)
    if pattern is not None:
        return ApprovalDecision("allow", f"allowlisted ({pattern})", findings, matched_pattern=pattern)

    if config.ask == "off":
        return ApprovalDecision("deny", "not in allowlist and asking disabled", findings)

    if config.ask == "on":
        return ApprovalDecision("needs-ask", "not in allowlist; approval required", findings)

    # ask == "risky"
    if findings:
        return ApprovalDecision(
            "needs-ask", "not in allowlist and flagged as risky; approval required", findings
        )
    return ApprovalDecision("allow", "not in allowlist but no risks detected", findings)


def _get_approvals_path() -> Path:
    """Get default path to the exec approvals file."""
    return Path.home() / ".shellgate" / "exec-approvals.json"


class ExecApprovalStore:
    """
    Manages the persisted allowlist and pending approvals.

    Handles:
    - Allowlist storage (JSON file guarded by a file lock)
    - Pending approval requests
    - The approval callback (human or bot driven)
    """

    VERSION = 1

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path).expanduser() if path else _get_approvals_path()
        self._entries: list[AllowlistEntry] | None = None
        self._stamp: tuple[int, int] | None = None
        self._pending: dict[str, PendingApproval] = {}
        self._approval_callback: ApprovalCallback | None = None

    def set_approval_callback(self, callback: ApprovalCallback | None) -> None:
        """Set callback used to ask for approvals."""
        self._approval_callback = callback

    @property
    def has_approval_callback(self) -> bool:
        return self._approval_callback is not None

    def _file_stamp(self) -> tuple[int, int] | None:
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return None
        return st.st_mtime_ns, st.st_size

    def load(self) -> list[AllowlistEntry]:
        """Load the allowlist from disk."""
        if not self.path.exists():
            self._entries = []
            self._stamp = None
            return self._entries

        try:
            with FileLock(self.path.with_suffix(".lock"), timeout=10):
                raw = self.path.read_text(encoding="utf-8")
                self._stamp = self._file_stamp()
            data = json.loads(raw)
            self._entries = [
                AllowlistEntry(
                    pattern=e["pattern"],
                    last_used_at=e.get("last_used_at"),
                    last_used_command=e.get("last_used_command"),
                    last_resolved_path=e.get("last_resolved_path"),
                )
                for e in data.get("allowlist", [])
                if isinstance(e, dict) and isinstance(e.get("pattern"), str) and e["pattern"].strip()
            ]
        except Exception as e:
            logger.warning(f"Error loading exec approvals from {self.path}: {e}")
            self._entries = []

        return self._entries

    def save(self) -> None:
        """Save the allowlist to disk."""
        if self._entries is None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": self.VERSION,
            "allowlist": [
                {
                    "pattern": e.pattern,
                    "last_used_at": e.last_used_at,
                    "last_used_command": e.last_used_command,
                    "last_resolved_path": e.last_resolved_path,
                }
                for e in self._entries
            ],
        }

        with FileLock(self.path.with_suffix(".lock"), timeout=10):
            self.path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
            self._stamp = self._file_stamp()

    @property
    def entries(self) -> list[AllowlistEntry]:
        """Get current entries, reloading when the file changed on disk."""
        if self._entries is None or self._file_stamp() != self._stamp:
            self.load()
        return self._entries

    def patterns(self) -> list[str]:
        """Snapshot of the current allowlist patterns."""
        return [e.pattern for e in self.entries]

    def add_to_allowlist(self, pattern: str, command: str | None = None, resolved_path: str | None = None) -> None:
        """Add a pattern to the allowlist."""
        now = int(time.time() * 1000)

        for entry in self.entries:
            if entry.pattern == pattern:
                entry.last_used_at = now
                if command:
                    entry.last_used_command = command
                if resolved_path:
                    entry.last_resolved_path = resolved_path
                self.save()
                return

        self.entries.append(AllowlistEntry(
            pattern=pattern,
            last_used_at=now,
            last_used_command=command,
            last_resolved_path=resolved_path,
        ))
        self.save()

    def remove_from_allowlist(self, pattern: str) -> bool:
        """Remove a pattern from the allowlist."""
        original_len = len(self.entries)
        self._entries = [e for e in self.entries if e.pattern != pattern]

        if len(self._entries) != original_len:
            self.save()
            return True
        return False

    def record_use(self, pattern: str, command: str) -> None:
        """Update usage metadata for the pattern that allowed a command."""
        for entry in self.entries:
            if entry.pattern == pattern:
                entry.last_used_at = int(time.time() * 1000)
                entry.last_used_command = command
                self.save()
                return

    def create_pending(
        self,
        invocation: ExecInvocation,
        findings: Sequence[RiskFinding] = (),
        timeout_seconds: float = 120,
    ) -> PendingApproval:
        """Create a pending approval request."""
        now = time.time()

        resolved_path = None
        segments = _plain_segments(invocation.command)
        if segments and len(segments) == 1:
            resolved_path = segments[0][2]

        pending = PendingApproval(
            id=secrets.token_hex(8),
            invocation=invocation,
            created_at=now,
            expires_at=now + timeout_seconds,
            findings=tuple(findings),
            resolved_path=resolved_path,
        )

        self._pending[pending.id] = pending
        return pending

    def get_pending(self, approval_id: str) -> PendingApproval | None:
        """Get a pending approval by ID."""
        pending = self._pending.get(approval_id)
        if pending and time.time() > pending.expires_at:
            del self._pending[approval_id]
            return None
        return pending

    def resolve_pending(self, approval_id: str, decision: ExecApprovalDecision) -> bool:
        """Resolve a pending approval."""
        pending = self._pending.pop(approval_id, None)
        if not pending:
            return False

        if decision == "allow-always":
            self.add_to_allowlist(
                pattern=glob.escape(pending.resolved_path or pending.command.strip()),
                command=pending.command,
                resolved_path=pending.resolved_path,
            )

        return True

    def prune_expired(self) -> int:
        """Remove expired pending approvals."""
        now = time.time()
        expired = [k for k, v in self._pending.items() if now > v.expires_at]
        for k in expired:
            del self._pending[k]
        return len(expired)

    async def request_approval(self, pending: PendingApproval) -> ExecApprovalDecision | None:
        """
        Ask the approval callback for a verdict.

        Returns None when no callback is set, the callback fails, or the
        request expires; callers treat None as a denial.
        """
        if not self._approval_callback:
            logger.warning("No approval callback set")
            return None

        timeout = max(0.0, pending.expires_at - time.time())
        try:
            verdict = await asyncio.wait_for(self._approval_callback(pending), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Approval {pending.id} timed out for: {pending.command[:80]}")
            self._pending.pop(pending.id, None)
            return None
        except Exception as e:
            logger.error(f"Approval callback failed: {e}")
            self._pending.pop(pending.id, None)
            return None

        if verdict is True:
            return "allow-once"
        if verdict is False:
            return "deny"
        if verdict is None or verdict in ("allow-once", "allow-always", "deny"):
            return verdict

        logger.warning(f"Unknown approval verdict {verdict!r}, treating as deny")
        return "deny"
