"""Command risk analysis and parsing helpers."""

import re
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Pattern

from shellgate.exec.types import RiskCategory, RiskFinding, RiskSeverity

WARNING_HEADER = "Warning: Potentially dangerous command detected"

# Interpreters that execute whatever arrives on stdin
_INTERPRETERS = r"(?:(?:ba|z|da|k|fi)?sh|python[0-9.]*|perl|ruby|node)"

# End of a command token
_TOKEN_END = r"(?=$|[\s;&|)\"'])"

# Interpreter is not given a module, inline code or a script file
_READS_STDIN = r"(?![ \t]+(?:-[cm](?=$|\s)|[^\s|;&)-]))"


@dataclass(frozen=True)
class RiskRule:
    """A declarative heuristic rule over raw command text."""
    name: str
    pattern: Pattern[str]
    category: RiskCategory
    severity: RiskSeverity
    message: str


# Ordered registry; findings are reported in this order.
RISK_RULES: tuple[RiskRule, ...] = (
    RiskRule(
        name="pipe-to-shell",
        pattern=re.compile(
            r"\b(?:curl|wget)\b(?:\"[^\"]*\"|'[^']*'|[^;&\n\"'])*?\|\s*"
            r"(?:sudo\s+(?:-\S+\s+)*)?"
            r"[\"']?(?:\S*/)?" + _INTERPRETERS + _TOKEN_END + _READS_STDIN
        ),
        category="network-pipe-to-shell",
        severity="warn",
        message="network fetch piped to shell",
    ),
    RiskRule(
        name="remote-script-substitution",
        pattern=re.compile(
            r"\b(?:(?:ba|z|da|k)?sh|source)\s+(?:-\S+\s+)*<\(\s*(?:curl|wget)\b"
            r"|\b(?:(?:ba|z|da|k)?sh\s+-c|eval)\s+[\"']?\$\(\s*(?:curl|wget)\b"
        ),
        category="remote-code-fetch",
        severity="warn",
        message="remote script executed via command substitution",
    ),
    RiskRule(
        name="recursive-delete",
        pattern=re.compile(
            r"\brm\s+"
            r"(?=(?:[^\s;&|]+\s+)*?(?:-[a-zA-Z]*[rR][a-zA-Z]*|--recursive)\s)"
            r"(?:[^\s;&|]+\s+)*?"
            r"[\"']?(?:/\*?|~/?\*?|\*|\.{1,2}/?|\$HOME/?\*?|\$\{HOME\}/?\*?)[\"']?"
            r"(?=$|[\s;&|)])"
        ),
        category="destructive-delete",
        severity="warn",
        message="recursive delete of a broad path",
    ),
    RiskRule(
        name="privilege-escalation",
        pattern=re.compile(
            r"(?<![\w.-])(?:sudo|doas|pkexec)(?=$|\s)"
            r"|(?<![\w./-])su(?=$|\s+-|\s+root\b|\s*[;&|])"
        ),
        category="privilege-escalation",
        severity="warn",
        message="privilege escalation",
    ),
    RiskRule(
        name="world-writable",
        pattern=re.compile(
            r"\bchmod\s+(?:-[a-zA-Z]+\s+)*"
            r"(?:[0-7]?[0-7]{2}[2367]|[ugoa]*[ao][ugoa]*[+=][rwxXst]*w[rwxXst]*)"
            r"(?=$|[\s,;&|])"
        ),
        category="permission-widening",
        severity="warn",
        message="permission widening to world-writable",
    ),
    RiskRule(
        name="fork-bomb",
        pattern=re.compile(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"),
        category="other",
        severity="block",
        message="fork bomb",
    ),
    RiskRule(
        name="filesystem-format",
        pattern=re.compile(r"\bmkfs(?:\.\w+)?\b"),
        category="other",
        severity="warn",
        message="filesystem format",
    ),
    RiskRule(
        name="raw-device-write",
        pattern=re.compile(
            r"\bdd\b[^;&|\n]*\bof=/dev/(?!null\b|zero\b)"
            r"|>\s*/dev/(?:sd|hd|nvme|xvd|vd|disk)\w*"
        ),
        category="other",
        severity="warn",
        message="raw write to a block device",
    ),
)

# Operators that make a command more than a plain pipeline
DISALLOWED_PIPELINE_OPS = ('||', '|&', '&', ';', '`', '$(', '\n', '\r', '(', ')')


def analyze_command(command: str) -> list[RiskFinding]:
    """
    Run every registered risk rule against the raw command text.

    Never raises; returns an empty list when nothing is found.
    """
    if not isinstance(command, str) or not command.strip():
        return []

    findings: list[RiskFinding] = []
    for rule in RISK_RULES:
        match = rule.pattern.search(command)
        if match:
            findings.append(RiskFinding(
                rule=rule.name,
                category=rule.category,
                severity=rule.severity,
                matched_text=match.group(0).strip(),
                message=rule.message,
            ))
    return findings


def format_risk_warning(findings: list[RiskFinding] | tuple[RiskFinding, ...]) -> str:
    """Render the warning block shown above tool output."""
    if not findings:
        return ""

    lines = [WARNING_HEADER]
    for finding in findings:
        marker = "[block] " if finding.severity == "block" else ""
        lines.append(f"- {marker}{finding.message}: {finding.matched_text}")
    return "\n".join(lines)


def resolve_executable(name: str) -> str | None:
    """Resolve an executable name to its full path."""
    # If it's already a path
    if '/' in name:
        path = Path(name).expanduser().resolve()
        if path.exists() and path.is_file():
            return str(path)
        return None

    return shutil.which(name)


def split_pipeline(command: str) -> tuple[bool, str | None, list[str]]:
    """
    Split a command into plain pipeline segments.

    Returns (ok, reason, segments).
    """
    for op in DISALLOWED_PIPELINE_OPS:
        if op in command:
            return False, f"Disallowed operator: {op!r}", []

    if re.search(r'[<>]', command):
        return False, "Redirection not allowed", []

    segments = [s.strip() for s in command.split('|')]

    for seg in segments:
        if not seg:
            return False, "Empty pipeline segment", []

    return True, None, segments


def parse_command(command: str) -> tuple[str | None, list[str]]:
    """Parse a command into executable and arguments."""
    try:
        parts = shlex.split(command)
        if not parts:
            return None, []
        return parts[0], parts[1:]
    except ValueError:
        return None, []
