"""Command executor with security checks."""

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable

from loguru import logger

from shellgate.exec.approvals import ExecApprovalStore, resolve_approval
from shellgate.exec.process import OutputCallback, ProcessRunner
from shellgate.exec.safety import analyze_command
from shellgate.exec.types import (
    ApprovalDecision,
    ExecInvocation,
    ExecResult,
    RiskFinding,
    SecurityConfig,
)

if TYPE_CHECKING:
    from shellgate.config.schema import ExecToolConfig

GatewayCallable = Callable[[ExecInvocation], Awaitable[ExecResult]]


async def execute_command(
    invocation: ExecInvocation,
    config: "ExecToolConfig",
    security: SecurityConfig,
    store: ExecApprovalStore,
    gateway: GatewayCallable | None = None,
    on_output: OutputCallback | None = None,
) -> ExecResult:
    """
    Execute a command with full security checks.

    Security flow:
    1. Analyze command for risky patterns
    2. Resolve the approval decision from the current policy
    3. Request approval if the policy asks for it
    4. Run locally, or delegate to the gateway for remote hosts
    """
    findings = tuple(analyze_command(invocation.command))
    if findings:
        logger.warning(
            f"Risky command [{invocation.call_id}]: "
            + ", ".join(f.message for f in findings)
        )

    decision = resolve_approval(security, invocation.command, findings)

    if decision.outcome == "deny":
        logger.warning(f"Exec denied [{invocation.call_id}]: {decision.reason}")
        return ExecResult(
            success=False,
            denied=True,
            error=decision.reason,
            findings=findings,
            decision=decision,
        )

    if decision.outcome == "needs-ask":
        denial = await _ask_for_approval(invocation, findings, decision, config, store)
        if denial:
            return denial

    if decision.matched_pattern:
        store.record_use(decision.matched_pattern, invocation.command)

    timeout = invocation.timeout or config.timeout_seconds

    if invocation.host == "sandbox":
        return await _run_local(invocation, config, timeout, findings, decision, on_output)

    return await _run_gateway(invocation, gateway, timeout, findings, decision)


async def _ask_for_approval(
    invocation: ExecInvocation,
    findings: tuple[RiskFinding, ...],
    decision: ApprovalDecision,
    config: "ExecToolConfig",
    store: ExecApprovalStore,
) -> ExecResult | None:
    """Block on the approval collaborator. Returns a denial result, or None if approved."""
    pending = store.create_pending(invocation, findings, config.approval_timeout_seconds)
    verdict = await store.request_approval(pending)

    if verdict is None:
        store.resolve_pending(pending.id, "deny")
        return ExecResult(
            success=False,
            denied=True,
            approval_required=True,
            error="approval timed out or not available",
            findings=findings,
            decision=decision,
        )

    store.resolve_pending(pending.id, verdict)

    if verdict == "deny":
        logger.info(f"Exec denied by user [{invocation.call_id}]")
        return ExecResult(
            success=False,
            denied=True,
            approval_required=True,
            error="denied by user",
            findings=findings,
            decision=decision,
        )

    logger.info(f"Exec approved ({verdict}) [{invocation.call_id}]")
    return None


async def _run_local(
    invocation: ExecInvocation,
    config: "ExecToolConfig",
    timeout: int,
    findings: tuple[RiskFinding, ...],
    decision: ApprovalDecision,
    on_output: OutputCallback | None,
) -> ExecResult:
    runner = ProcessRunner(
        invocation.command,
        cwd=invocation.cwd or str(Path.home()),
        env=invocation.env,
        shell=config.shell,
        fallback_shell=config.fallback_shell,
        on_stdout=on_output,
        on_stderr=on_output,
    )
    result = await runner.run(timeout)

    return ExecResult(
        success=result.success,
        exit_code=result.exit_code,
        signal=result.signal,
        stdout=result.stdout,
        stderr=result.stderr,
        error=result.error,
        timed_out=result.timed_out,
        findings=findings,
        decision=decision,
    )


async def _run_gateway(
    invocation: ExecInvocation,
    gateway: GatewayCallable | None,
    timeout: int,
    findings: tuple[RiskFinding, ...],
    decision: ApprovalDecision,
) -> ExecResult:
    if gateway is None:
        return ExecResult(
            success=False,
            error=f"No gateway available for host '{invocation.host}'",
            findings=findings,
            decision=decision,
        )

    try:
        result = await asyncio.wait_for(gateway(invocation), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Gateway exec timed out [{invocation.call_id}]")
        return ExecResult(
            success=False,
            timed_out=True,
            findings=findings,
            decision=decision,
        )
    except Exception as e:
        logger.error(f"Gateway exec error [{invocation.call_id}]: {e}")
        return ExecResult(
            success=False,
            error=f"Gateway error: {e}",
            findings=findings,
            decision=decision,
        )

    result.findings = findings
    result.decision = decision
    return result
