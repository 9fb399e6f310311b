"""Secret detection and in-place redaction for text injected into agent context."""

import re
from dataclasses import dataclass
from typing import Literal, Pattern

REDACTED = "REDACTED"

SecretKind = Literal["api-key", "github-token", "generic-secret"]


@dataclass(frozen=True)
class SecretPattern:
    """A secret shape. ``group`` selects the span to replace (0 = whole match)."""
    name: str
    kind: SecretKind
    pattern: Pattern[str]
    group: int = 0


@dataclass(frozen=True)
class RedactionMatch:
    """A detected secret span in the original text."""
    kind: SecretKind
    start: int
    end: int
    name: str = ""


@dataclass(frozen=True)
class ScanResult:
    """Redacted text plus the matches that were replaced."""
    text: str
    matches: tuple[RedactionMatch, ...] = ()

    @property
    def found(self) -> bool:
        return bool(self.matches)


SECRET_PATTERNS: tuple[SecretPattern, ...] = (
    # OpenAI / Anthropic
    SecretPattern("OpenAI/Anthropic API Key", "api-key",
                  re.compile(r'(?<![A-Za-z0-9_-])sk-(?:ant-|proj-)?[A-Za-z0-9_-]{20,}')),
    # AWS
    SecretPattern("AWS Access Key ID", "api-key", re.compile(r'\bAKIA[0-9A-Z]{16}\b')),
    # Google
    SecretPattern("Google API Key", "api-key", re.compile(r'\bAIza[0-9A-Za-z_-]{35}')),
    # Stripe
    SecretPattern("Stripe Secret Key", "api-key",
                  re.compile(r'\b(?:sk|rk)_(?:live|test)_[0-9A-Za-z]{16,}')),
    # Slack
    SecretPattern("Slack Token", "api-key", re.compile(r'\bxox[baprs]-[0-9A-Za-z-]{10,}')),
    # GitHub
    SecretPattern("GitHub Token", "github-token", re.compile(r'\bgh[pousr]_[A-Za-z0-9]{20,}')),
    SecretPattern("GitHub Fine-grained Token", "github-token",
                  re.compile(r'\bgithub_pat_[A-Za-z0-9_]{22,}')),
    # Private keys
    SecretPattern("Private Key Block", "generic-secret", re.compile(
        r'-----BEGIN (?:[A-Z]+ )*PRIVATE KEY(?: BLOCK)?-----'
        r'[\s\S]*?'
        r'-----END (?:[A-Z]+ )*PRIVATE KEY(?: BLOCK)?-----'
    )),
    # Generic assignments; only the value is replaced
    SecretPattern("Generic Secret Assignment", "generic-secret", re.compile(
        r'(?i)\b(?:api[_-]?key|secret|password|passwd|token|auth[_-]?token)\b\s*[:=]\s*["\']?'
        r'(?!' + REDACTED + r'\b)([^\s"\']{8,})'
    ), group=1),
)


def _collect_matches(text: str) -> list[RedactionMatch]:
    candidates: list[RedactionMatch] = []
    for secret in SECRET_PATTERNS:
        for match in secret.pattern.finditer(text):
            start, end = match.span(secret.group)
            if start < end:
                candidates.append(RedactionMatch(secret.kind, start, end, secret.name))

    # Earliest start wins; longest span breaks ties.
    candidates.sort(key=lambda m: (m.start, -(m.end - m.start)))

    selected: list[RedactionMatch] = []
    cursor = 0
    for candidate in candidates:
        if candidate.start >= cursor:
            selected.append(candidate)
            cursor = candidate.end
    return selected


def scan_secrets(text: str) -> ScanResult:
    """
    Find secret-shaped tokens and replace each with ``REDACTED``.

    Text without matches is returned unchanged. Spans in the returned
    matches refer to offsets in the original text.
    """
    if not text:
        return ScanResult(text=text)

    matches = _collect_matches(text)
    if not matches:
        return ScanResult(text=text)

    parts: list[str] = []
    cursor = 0
    for match in matches:
        parts.append(text[cursor:match.start])
        parts.append(REDACTED)
        cursor = match.end
    parts.append(text[cursor:])

    return ScanResult(text="".join(parts), matches=tuple(matches))


def redact_secrets(text: str) -> str:
    """Return ``text`` with every detected secret replaced."""
    return scan_secrets(text).text
