"""Workspace bootstrap files loaded into agent context."""

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from shellgate.config.schema import Config
from shellgate.security.secrets import scan_secrets

DEFAULT_AGENTS_FILENAME = "AGENTS.md"
DEFAULT_SOUL_FILENAME = "SOUL.md"
DEFAULT_TOOLS_FILENAME = "TOOLS.md"
DEFAULT_IDENTITY_FILENAME = "IDENTITY.md"
DEFAULT_USER_FILENAME = "USER.md"

BOOTSTRAP_FILES = [
    DEFAULT_AGENTS_FILENAME,
    DEFAULT_SOUL_FILENAME,
    DEFAULT_TOOLS_FILENAME,
    DEFAULT_IDENTITY_FILENAME,
    DEFAULT_USER_FILENAME,
]

DEFAULT_BOOTSTRAP_MAX_CHARS = 20_000
_HEAD_RATIO = 0.7
_TAIL_RATIO = 0.2


@dataclass(frozen=True)
class WorkspaceFile:
    """A bootstrap file as injected into context. Content is already redacted."""
    name: str
    path: str
    missing: bool
    content: str | None = None
    raw_chars: int = 0
    truncated: bool = False


def truncate_content(content: str, name: str, max_chars: int) -> tuple[str, bool]:
    """Keep the head and tail of oversized content with a marker in between."""
    if len(content) <= max_chars:
        return content, False

    head_chars = int(max_chars * _HEAD_RATIO)
    tail_chars = int(max_chars * _TAIL_RATIO)
    head = content[:head_chars]
    tail = content[-tail_chars:] if tail_chars > 0 else ""
    marker = (
        f"\n\n[...truncated, read {name} for full content... "
        f"kept {head_chars}+{tail_chars} of {len(content)} chars]\n\n"
    )
    return head + marker + tail, True


def load_workspace_file(
    workspace: Path,
    name: str,
    max_chars: int = DEFAULT_BOOTSTRAP_MAX_CHARS,
) -> WorkspaceFile:
    """
    Load one bootstrap file.

    Secrets are redacted before the content is exposed; a single warning
    naming the file is logged when any were found.
    """
    path = workspace / name

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return WorkspaceFile(name=name, path=str(path), missing=True)
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read {name}: {e}")
        return WorkspaceFile(name=name, path=str(path), missing=True)

    scan = scan_secrets(raw)
    if scan.found:
        kinds = sorted({m.kind for m in scan.matches})
        logger.warning(
            f"Secrets detected in {name} ({len(scan.matches)} redacted: {', '.join(kinds)})"
        )

    content, truncated = truncate_content(scan.text, name, max_chars)
    if truncated:
        logger.debug(f"Truncated {name}: {len(scan.text)} > {max_chars} chars")

    return WorkspaceFile(
        name=name,
        path=str(path),
        missing=False,
        content=content,
        raw_chars=len(raw),
        truncated=truncated,
    )


def load_workspace_bootstrap_files(
    workspace: Path | str,
    max_chars: int = DEFAULT_BOOTSTRAP_MAX_CHARS,
) -> list[WorkspaceFile]:
    """Load all well-known bootstrap files from a workspace, in a fixed order."""
    root = Path(workspace).expanduser()
    return [load_workspace_file(root, name, max_chars) for name in BOOTSTRAP_FILES]


def build_bootstrap_context(files: list[WorkspaceFile]) -> str:
    """Render present bootstrap files as prompt sections."""
    parts = []
    for file in files:
        if file.missing or not file.content:
            continue
        parts.append(f"## {file.name}\n\n{file.content}")
    return "\n\n".join(parts)


def load_bootstrap_context(config: Config) -> str:
    """Load the configured workspace's bootstrap files as one context string."""
    files = load_workspace_bootstrap_files(
        config.workspace_path,
        max_chars=config.agents.defaults.bootstrap_max_chars,
    )
    return build_bootstrap_context(files)
