"""Secret detection for agent context."""

from shellgate.security.secrets import (
    REDACTED,
    RedactionMatch,
    ScanResult,
    redact_secrets,
    scan_secrets,
)

__all__ = ["REDACTED", "RedactionMatch", "ScanResult", "redact_secrets", "scan_secrets"]
