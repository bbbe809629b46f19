"""
Validation gate around every worker call.

One attempt, and on a contract failure exactly one retry carrying the
structured validation issues. A second failure is returned as a degraded
result; worker errors and timeouts are returned the same way without a
retry. Nothing but cancellation escapes ``run``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from dealflow.contracts.models import ContractName
from dealflow.contracts.validation import ValidationIssue, validate_output
from dealflow.events.models import FailureKind
from dealflow.workers import RetryFeedback, ToolActivity, WorkerInvoker, WorkerReply, WorkerRequest

logger = logging.getLogger(__name__)

Produce = Callable[[Optional[RetryFeedback]], Awaitable[WorkerReply]]


class GateResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    ok: bool
    contract: ContractName
    data: Optional[BaseModel] = None
    issues: List[ValidationIssue] = Field(default_factory=list)
    retry_count: int = 0
    latency_ms: float = 0.0
    failure_kind: Optional[FailureKind] = None
    error: Optional[str] = None
    tool_activity: List[ToolActivity] = Field(default_factory=list)

    def error_message(self) -> str:
        if self.error:
            return self.error
        rendered = "\n".join(issue.render() for issue in self.issues)
        return f"{self.contract.value} failed validation after retry:\n{rendered}"


async def _attempt(produce: Produce, feedback: Optional[RetryFeedback],
                   timeout: Optional[float]) -> WorkerReply:
    if timeout is None:
        return await produce(feedback)
    return await asyncio.wait_for(produce(feedback), timeout=timeout)


def _describe_failure(exc: BaseException, timeout: Optional[float]) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return f"worker timed out after {timeout}s"
    return f"worker failed: {type(exc).__name__}: {exc}"


async def validate_with_retry(contract: ContractName, produce: Produce,
                              known_evidence_ids: Optional[Iterable[str]] = None,
                              timeout: Optional[float] = None) -> GateResult:
    """Invoke, validate, and re-invoke once with feedback if the contract is not met."""
    known = list(known_evidence_ids) if known_evidence_ids is not None else None
    started = time.perf_counter()
    activity: List[ToolActivity] = []
    feedback: Optional[RetryFeedback] = None

    for attempt in range(2):
        try:
            reply = await _attempt(produce, feedback, timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return GateResult(
                ok=False,
                contract=contract,
                retry_count=attempt,
                latency_ms=(time.perf_counter() - started) * 1000,
                failure_kind=FailureKind.WORKER,
                error=_describe_failure(exc, timeout),
                tool_activity=activity,
            )

        activity.extend(reply.tool_activity)
        result = validate_output(reply.output, contract, known)
        if result.ok:
            return GateResult(
                ok=True,
                contract=contract,
                data=result.data,
                retry_count=attempt,
                latency_ms=(time.perf_counter() - started) * 1000,
                tool_activity=activity,
            )

        logger.debug(
            "Worker output failed validation",
            extra={"component": "ValidationGate", "data": {
                "contract": contract.value, "attempt": attempt + 1, "issue_count": len(result.issues),
            }},
        )
        feedback = RetryFeedback.from_issues(contract, result.issues, result.raw)

    # Still invalid after the retry
    return GateResult(
        ok=False,
        contract=contract,
        issues=result.issues,
        retry_count=1,
        latency_ms=(time.perf_counter() - started) * 1000,
        failure_kind=FailureKind.VALIDATION,
        tool_activity=activity,
    )


class ValidationGate:
    """Binds ``validate_with_retry`` to an injected worker invoker."""

    def __init__(self, invoker: WorkerInvoker, timeout_seconds: Optional[float] = None):
        self.invoker = invoker
        self.timeout_seconds = timeout_seconds

    async def run(self, request: WorkerRequest,
                  known_evidence_ids: Optional[Iterable[str]] = None,
                  timeout: Optional[float] = None) -> GateResult:
        async def produce(feedback: Optional[RetryFeedback]) -> WorkerReply:
            attempt_request = request if feedback is None else request.model_copy(update={"retry": feedback})
            return await self.invoker.invoke(attempt_request)

        return await validate_with_retry(
            request.contract,
            produce,
            known_evidence_ids=known_evidence_ids,
            timeout=timeout if timeout is not None else self.timeout_seconds,
        )
