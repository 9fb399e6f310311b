"""Shared fixtures."""

from pathlib import Path

import pytest
from loguru import logger

from shellgate.exec.approvals import ExecApprovalStore


@pytest.fixture
def log_records():
    """Capture loguru records emitted during a test."""
    records: list[dict] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


@pytest.fixture
def store(tmp_path: Path) -> ExecApprovalStore:
    """Approval store backed by a temp file."""
    return ExecApprovalStore(tmp_path / "exec-approvals.json")
