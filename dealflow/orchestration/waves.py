"""
Wave scheduler: SEED -> ANALYSIS -> SYNTHESIS -> DECISION -> DONE.

Each wave forks its tasks concurrently, joins all of them before the next
wave starts, and records everything it learns as events. State for the
next wave is always re-derived from the event log.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from dealflow.collaborators.base import (
    Collaborator,
    CollaboratorQuery,
    CollaboratorResult,
    CollaboratorStage,
    seed_query_for,
)
from dealflow.contracts.gate import GateResult, ValidationGate
from dealflow.contracts.models import AnalystOutput, DecisionOutput, SynthesisOutput
from dealflow.deals.profiles import FundProfile, resolve_fund_profile
from dealflow.events.channel import EventChannel
from dealflow.events.event_log import EventStore
from dealflow.events.models import (
    ORCHESTRATOR_TASK_ID,
    DealEvent,
    EventType,
    FailureKind,
    error_event,
    task_done,
    task_started,
)
from dealflow.orchestration.instructions import (
    DEFAULT_EVIDENCE_LIMIT,
    analyst_request,
    decision_request,
    synthesis_request,
)
from dealflow.reconcile.evidence import (
    FATAL_ERROR_QUESTION,
    DecisionPolicy,
    default_decision_gate,
    merge_evidence,
    reconcile_decision,
)
from dealflow.state.models import DealInput, DecisionGate, Evidence, RunState, TaskStatus, WorkerRole
from dealflow.state.reducer import reduce_events
from dealflow.workers import WorkerInvoker, WorkerRequest
from logging_config import log_error, log_step_complete, log_step_start, log_warning

logger = logging.getLogger(__name__)

SEED_TASK_ID = "seed"
SYNTHESIS_TASK_ID = "synthesis"
GAP_TASK_ID = "gap_resolution"
DECISION_TASK_ID = "decision"
MAX_ANALYSTS = 6


class Stage(str, Enum):
    SEED = "SEED"
    ANALYSIS = "ANALYSIS"
    SYNTHESIS = "SYNTHESIS"
    DECISION = "DECISION"
    DONE = "DONE"
    FAILED_DEGRADED = "FAILED_DEGRADED"


class SchedulerTimeouts(BaseModel):
    seed_seconds: float = Field(default=45.0, gt=0)
    collaborator_seconds: float = Field(default=30.0, gt=0)
    worker_seconds: float = Field(default=180.0, gt=0)
    gap_resolution_seconds: float = Field(default=30.0, gt=0)
    background_grace_seconds: float = Field(default=60.0, ge=0)


class SchedulerSettings(BaseModel):
    analysts: List[str] = Field(default_factory=lambda: ["market", "competition", "traction"],
                                min_length=1, max_length=MAX_ANALYSTS)
    timeouts: SchedulerTimeouts = Field(default_factory=SchedulerTimeouts)
    decision_policy: DecisionPolicy = Field(default_factory=DecisionPolicy)
    evidence_snapshot_limit: int = Field(default=DEFAULT_EVIDENCE_LIMIT, ge=1)
    max_gap_questions: int = Field(default=5, ge=0)
    gap_results_per_question: int = Field(default=2, ge=1)


class WaveContext(BaseModel):
    deal_id: str
    run_id: str
    deal: DealInput
    profile: FundProfile

    @classmethod
    def for_deal(cls, deal_id: str, run_id: str, deal: DealInput) -> "WaveContext":
        return cls(deal_id=deal_id, run_id=run_id, deal=deal,
                   profile=resolve_fund_profile(deal.firm_type, deal.aum))


def analyst_task_id(index: int) -> str:
    return f"analyst_{index}"


class WaveScheduler:
    """Executes waves for one deal run against an injected worker invoker."""

    def __init__(self, store: EventStore, invoker: WorkerInvoker,
                 settings: Optional[SchedulerSettings] = None,
                 seed_collaborators: Sequence[Collaborator] = (),
                 gap_collaborators: Sequence[Collaborator] = (),
                 background_collaborators: Sequence[Collaborator] = (),
                 channel: Optional[EventChannel] = None):
        self.store = store
        self.settings = settings or SchedulerSettings()
        self.gate = ValidationGate(invoker, timeout_seconds=self.settings.timeouts.worker_seconds)
        self.seed_collaborators = list(seed_collaborators)
        self.gap_collaborators = list(gap_collaborators)
        self.background_collaborators = list(background_collaborators)
        self.channel = channel
        self._background: Dict[str, List[asyncio.Task]] = {}

    # ── bookkeeping ──────────────────────────────────────────────────

    def planned_tasks(self) -> List[Dict[str, Any]]:
        tasks: List[Dict[str, Any]] = [{"task_id": SEED_TASK_ID, "role": WorkerRole.COLLABORATOR.value}]
        for index, specialization in enumerate(self.settings.analysts, start=1):
            tasks.append({
                "task_id": analyst_task_id(index),
                "role": WorkerRole.ANALYST.value,
                "specialization": specialization,
            })
        tasks.append({"task_id": SYNTHESIS_TASK_ID, "role": WorkerRole.SYNTHESIS.value})
        if self.gap_collaborators:
            tasks.append({"task_id": GAP_TASK_ID, "role": WorkerRole.GAP_RESOLUTION.value})
        tasks.append({"task_id": DECISION_TASK_ID, "role": WorkerRole.DECISION.value})
        return tasks

    def _emit(self, event: DealEvent) -> DealEvent:
        return self.store.append(event)

    def current_state(self, ctx: WaveContext) -> RunState:
        return reduce_events(self.store.read(ctx.deal_id, run_id=ctx.run_id), deal_id=ctx.deal_id)

    def _record_evidence(self, ctx: WaveContext, items: Sequence[Evidence], origin: str) -> int:
        _, added = merge_evidence(self.current_state(ctx).evidence, items)
        if added:
            self._emit(DealEvent(
                deal_id=ctx.deal_id,
                run_id=ctx.run_id,
                type=EventType.EVIDENCE_ADDED,
                payload={"origin": origin, "evidence": [item.model_dump(mode="json") for item in added]},
            ))
        return len(added)

    def _publish_activity(self, ctx: WaveContext, task_id: str, result: GateResult) -> None:
        if self.channel is None:
            return
        for activity in result.tool_activity:
            self.channel.publish_tool_activity(ctx.deal_id, task_id, activity.tool, activity.detail)

    def _record_gate_result(self, ctx: WaveContext, task_id: str, result: GateResult,
                            extra_output: Optional[Dict[str, Any]] = None) -> None:
        """Emit ERROR (if degraded) and TASK_DONE for a gated worker call."""
        self._publish_activity(ctx, task_id, result)
        if result.ok:
            output = result.data.model_dump(mode="json")
            if extra_output:
                output.update(extra_output)
            self._emit(task_done(
                ctx.deal_id, ctx.run_id, task_id, TaskStatus.DONE.value,
                output=output, validation_ok=True,
                retry_count=result.retry_count, latency_ms=round(result.latency_ms, 2),
            ))
            return

        log_warning(logger, f"Task {task_id} degraded: {result.failure_kind.value}", "WaveScheduler",
                    {"task_id": task_id, "retry_count": result.retry_count}, deal_id=ctx.deal_id)
        self._emit(error_event(
            ctx.deal_id, ctx.run_id, result.failure_kind, result.error_message(), task_id=task_id,
            issues=[issue.model_dump() for issue in result.issues],
        ))
        self._emit(task_done(
            ctx.deal_id, ctx.run_id, task_id, TaskStatus.DEGRADED.value,
            validation_ok=False, retry_count=result.retry_count, latency_ms=round(result.latency_ms, 2),
        ))

    async def _gated(self, request: WorkerRequest, known_ids: Optional[Sequence[str]] = None) -> GateResult:
        return await self.gate.run(request, known_evidence_ids=known_ids)

    # ── entry points ─────────────────────────────────────────────────

    def begin(self, ctx: WaveContext) -> None:
        """Record the start of a run and its planned task graph."""
        self._emit(task_started(
            ctx.deal_id, ctx.run_id, ORCHESTRATOR_TASK_ID, WorkerRole.ORCHESTRATOR.value,
            planned_tasks=self.planned_tasks(),
        ))

    async def execute(self, stage: Stage, ctx: WaveContext,
                      analyst_ids: Optional[Sequence[str]] = None) -> Stage:
        """Run one wave. Returns the stage reached; never raises on wave failure."""
        started = time.perf_counter()
        log_step_start(logger, "WaveScheduler", stage.value, f"Starting {stage.value} wave",
                       deal_id=ctx.deal_id, run_id=ctx.run_id)
        try:
            next_stage = await self._run_stage(stage, ctx, analyst_ids)
        except Exception as exc:
            log_error(logger, f"{stage.value} wave failed, sealing degraded run", "WaveScheduler", exc,
                      deal_id=ctx.deal_id)
            await self.fail_degraded(ctx, exc, stage)
            return Stage.FAILED_DEGRADED

        log_step_complete(logger, "WaveScheduler", stage.value, f"{stage.value} wave complete",
                          {"next_stage": next_stage.value}, (time.perf_counter() - started) * 1000,
                          deal_id=ctx.deal_id, run_id=ctx.run_id)
        return next_stage

    async def run(self, ctx: WaveContext) -> RunState:
        """Begin a run and drive it through every wave."""
        self.begin(ctx)
        stage = Stage.SEED
        while stage not in (Stage.DONE, Stage.FAILED_DEGRADED):
            stage = await self.execute(stage, ctx)
        return self.current_state(ctx)

    async def _run_stage(self, stage: Stage, ctx: WaveContext,
                         analyst_ids: Optional[Sequence[str]]) -> Stage:
        if stage == Stage.SEED:
            await self.run_seed(ctx)
            return Stage.ANALYSIS
        if stage == Stage.ANALYSIS:
            await self.run_analysis(ctx, analyst_ids)
            return Stage.SYNTHESIS
        if stage == Stage.SYNTHESIS:
            await self.run_synthesis(ctx)
            return Stage.DECISION
        if stage == Stage.DECISION:
            await self.run_decision(ctx)
            await self.finalize(ctx)
            return Stage.DONE
        if stage == Stage.DONE:
            await self.finalize(ctx)
            return Stage.DONE
        raise ValueError(f"Cannot execute stage {stage.value}")

    # ── SEED ─────────────────────────────────────────────────────────

    async def _query_collaborator(self, collaborator: Collaborator, query: CollaboratorQuery,
                                  timeout: float) -> CollaboratorResult:
        return await asyncio.wait_for(collaborator.query(query), timeout=timeout)

    async def _settle(self, ctx: WaveContext, calls: Dict[str, "asyncio.Task[CollaboratorResult]"],
                      stage_timeout: float) -> Dict[str, CollaboratorResult]:
        """Wait up to ``stage_timeout`` and keep whatever settled successfully."""
        if not calls:
            return {}
        done, pending = await asyncio.wait(list(calls.values()), timeout=stage_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        results: Dict[str, CollaboratorResult] = {}
        for name, task in calls.items():
            if task in pending:
                log_warning(logger, f"Collaborator {name} did not settle in time", "WaveScheduler",
                            deal_id=ctx.deal_id)
                continue
            exc = task.exception()
            if exc is not None:
                log_warning(logger, f"Collaborator {name} failed: {exc}", "WaveScheduler",
                            {"error_type": type(exc).__name__}, deal_id=ctx.deal_id)
                continue
            results[name] = task.result()
        return results

    async def run_seed(self, ctx: WaveContext) -> None:
        timeouts = self.settings.timeouts
        self._emit(task_started(ctx.deal_id, ctx.run_id, SEED_TASK_ID, WorkerRole.COLLABORATOR.value))
        started = time.perf_counter()

        query = CollaboratorQuery(deal=ctx.deal, query=seed_query_for(ctx.deal), stage=CollaboratorStage.SEED)
        self._start_background(ctx, query.model_copy(update={"stage": CollaboratorStage.BACKGROUND}))

        calls = {
            collaborator.name: asyncio.ensure_future(
                self._query_collaborator(collaborator, query, timeouts.collaborator_seconds))
            for collaborator in self.seed_collaborators
        }
        results = await self._settle(ctx, calls, timeouts.seed_seconds)

        # Merge in configured order so ids resolve the same way every time
        collected: List[Evidence] = []
        for collaborator in self.seed_collaborators:
            if collaborator.name in results:
                collected.extend(results[collaborator.name].evidence)
        added = self._record_evidence(ctx, collected, SEED_TASK_ID)

        self._emit(task_done(
            ctx.deal_id, ctx.run_id, SEED_TASK_ID, TaskStatus.DONE.value,
            output={
                "collaborators": {name: len(result.evidence) for name, result in results.items()},
                "unavailable": sorted(set(calls) - set(results)),
                "evidence_added": added,
            },
            latency_ms=round((time.perf_counter() - started) * 1000, 2),
        ))

    # ── background enrichment ────────────────────────────────────────

    def _start_background(self, ctx: WaveContext, query: CollaboratorQuery) -> None:
        tasks = self._background.setdefault(ctx.run_id, [])
        for collaborator in self.background_collaborators:
            tasks.append(asyncio.ensure_future(self._background_query(ctx, collaborator, query)))

    async def _background_query(self, ctx: WaveContext, collaborator: Collaborator,
                                query: CollaboratorQuery) -> None:
        try:
            result = await collaborator.query(query)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log_warning(logger, f"Background collaborator {collaborator.name} failed: {exc}",
                        "WaveScheduler", deal_id=ctx.deal_id)
            return
        self._record_evidence(ctx, result.evidence, f"background:{collaborator.name}")

    async def drain_background(self, ctx: WaveContext, grace_seconds: Optional[float] = None) -> None:
        """Let background enrichment finish within the grace period, cancel the rest."""
        tasks = self._background.pop(ctx.run_id, [])
        if not tasks:
            return
        grace = self.settings.timeouts.background_grace_seconds if grace_seconds is None else grace_seconds
        done, pending = await asyncio.wait(tasks, timeout=grace) if grace > 0 else (set(), set(tasks))
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            log_warning(logger, f"Cancelled {len(pending)} background task(s) after grace period",
                        "WaveScheduler", deal_id=ctx.deal_id)

    # ── ANALYSIS ─────────────────────────────────────────────────────

    def analyst_ids(self) -> List[str]:
        return [analyst_task_id(index) for index in range(1, len(self.settings.analysts) + 1)]

    def _analyst_ids_in(self, state: RunState) -> List[str]:
        """Analyst tasks as planned when the run began, falling back to settings."""
        planned = [record.id for record in state.tasks_for_role(WorkerRole.ANALYST)]
        return planned or self.analyst_ids()

    async def run_analysis(self, ctx: WaveContext, analyst_ids: Optional[Sequence[str]] = None) -> None:
        state = self.current_state(ctx)
        evidence = list(state.evidence)
        known_ids = [item.id for item in evidence]

        selected = list(analyst_ids) if analyst_ids is not None else self.analyst_ids()
        specializations: Dict[str, str] = {}
        for task_id in selected:
            record = state.task(task_id)
            if record is not None and record.specialization:
                specializations[task_id] = record.specialization
            else:
                index = int(task_id.rsplit("_", 1)[1])
                specializations[task_id] = self.settings.analysts[index - 1]

        # Every task is marked started before any of them runs
        for task_id in selected:
            self._emit(task_started(ctx.deal_id, ctx.run_id, task_id, WorkerRole.ANALYST.value,
                                    specialization=specializations[task_id]))

        async def run_one(task_id: str) -> None:
            request = analyst_request(task_id, specializations[task_id], ctx.deal, ctx.profile,
                                      evidence, self.settings.evidence_snapshot_limit)
            result = await self._gated(request)
            self._record_gate_result(ctx, task_id, result)

        await asyncio.gather(*(run_one(task_id) for task_id in selected))

    # ── SYNTHESIS + gap resolution ───────────────────────────────────

    def _gap_questions(self, state: RunState) -> List[str]:
        questions: List[str] = []
        for task_id in self._analyst_ids_in(state):
            output = state.worker_outputs.get(task_id)
            if not output:
                continue
            for unknown in AnalystOutput.model_validate(output).unknowns:
                if unknown.question not in questions:
                    questions.append(unknown.question)
        return questions[:self.settings.max_gap_questions]

    async def _resolve_gaps(self, ctx: WaveContext, questions: List[str]) -> List[Evidence]:
        calls: Dict[str, asyncio.Task] = {}
        for q_index, question in enumerate(questions):
            query = CollaboratorQuery(
                deal=ctx.deal,
                query=f"{ctx.deal.name} {question}",
                stage=CollaboratorStage.GAP,
                max_results=self.settings.gap_results_per_question,
            )
            for collaborator in self.gap_collaborators:
                calls[f"{collaborator.name}#{q_index}"] = asyncio.ensure_future(self._query_collaborator(
                    collaborator, query, self.settings.timeouts.collaborator_seconds))
        results = await self._settle(ctx, calls, self.settings.timeouts.gap_resolution_seconds)
        evidence: List[Evidence] = []
        for key in calls:
            if key in results:
                evidence.extend(results[key].evidence)
        return evidence

    async def _run_gap_task(self, ctx: WaveContext, questions: List[str]) -> List[Evidence]:
        started = time.perf_counter()
        self._emit(task_started(ctx.deal_id, ctx.run_id, GAP_TASK_ID, WorkerRole.GAP_RESOLUTION.value,
                                questions=questions))
        try:
            evidence = await self._resolve_gaps(ctx, questions)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Best effort only; synthesis never waits on a failed gap search
            log_warning(logger, f"Gap resolution failed: {exc}", "WaveScheduler", deal_id=ctx.deal_id)
            self._emit(task_done(ctx.deal_id, ctx.run_id, GAP_TASK_ID, TaskStatus.DEGRADED.value,
                                 latency_ms=round((time.perf_counter() - started) * 1000, 2)))
            return []
        self._emit(task_done(ctx.deal_id, ctx.run_id, GAP_TASK_ID, TaskStatus.DONE.value,
                             output={"questions": questions, "evidence_found": len(evidence)},
                             latency_ms=round((time.perf_counter() - started) * 1000, 2)))
        return evidence

    async def _run_synthesis_task(self, ctx: WaveContext, state: RunState) -> None:
        self._emit(task_started(ctx.deal_id, ctx.run_id, SYNTHESIS_TASK_ID, WorkerRole.SYNTHESIS.value))
        analyst_outputs = {
            task_id: state.worker_outputs[task_id]
            for task_id in self._analyst_ids_in(state) if task_id in state.worker_outputs
        }
        request = synthesis_request(SYNTHESIS_TASK_ID, ctx.deal, ctx.profile, state.evidence,
                                    analyst_outputs, self.settings.evidence_snapshot_limit)
        result = await self._gated(request, known_ids=state.evidence_ids())
        self._record_gate_result(ctx, SYNTHESIS_TASK_ID, result)
        if not result.ok:
            return

        output: SynthesisOutput = result.data
        self._emit(DealEvent(
            deal_id=ctx.deal_id, run_id=ctx.run_id, type=EventType.STATE_PATCH,
            payload={"task_id": SYNTHESIS_TASK_ID,
                     "patch": {"hypotheses": [h.model_dump(mode="json") for h in output.hypotheses]}},
        ))
        for ask in output.requests_to_analysts:
            self._emit(DealEvent(
                deal_id=ctx.deal_id, run_id=ctx.run_id, type=EventType.MESSAGE_SENT,
                payload={"task_id": SYNTHESIS_TASK_ID, "to": ask.specialization, "text": ask.question},
            ))

    async def run_synthesis(self, ctx: WaveContext) -> None:
        state = self.current_state(ctx)
        jobs = []
        if not self._finished(state, SYNTHESIS_TASK_ID):
            jobs.append(self._run_synthesis_task(ctx, state))

        questions = self._gap_questions(state) if self.gap_collaborators else []
        gap_job = None
        if questions and not self._finished(state, GAP_TASK_ID):
            gap_job = asyncio.ensure_future(self._run_gap_task(ctx, questions))

        await asyncio.gather(*jobs)
        if gap_job is not None:
            gap_evidence = await gap_job
            self._record_evidence(ctx, gap_evidence, GAP_TASK_ID)

    @staticmethod
    def _finished(state: RunState, task_id: str) -> bool:
        record = state.task(task_id)
        return record is not None and record.status.finished

    # ── DECISION ─────────────────────────────────────────────────────

    def _seal_gate(self, ctx: WaveContext, gate: DecisionGate, **extra: Any) -> None:
        payload: Dict[str, Any] = {"task_id": DECISION_TASK_ID, "decision_gate": gate.model_dump(mode="json")}
        payload.update(extra)
        self._emit(DealEvent(deal_id=ctx.deal_id, run_id=ctx.run_id, type=EventType.DECISION_UPDATED,
                             payload=payload))

    def _close_sealed_decision(self, ctx: WaveContext, state: RunState) -> None:
        """Finish a decision task whose gate was sealed before the run stopped."""
        degraded = any(error.task_id == DECISION_TASK_ID for error in state.errors)
        log_warning(logger, "Decision gate already sealed, closing decision task", "WaveScheduler",
                    {"task_id": DECISION_TASK_ID}, deal_id=ctx.deal_id)
        self._emit(task_done(
            ctx.deal_id, ctx.run_id, DECISION_TASK_ID,
            (TaskStatus.DEGRADED if degraded else TaskStatus.DONE).value,
            validation_ok=not degraded, decision=state.decision_gate.decision.value,
        ))

    async def run_decision(self, ctx: WaveContext) -> None:
        state = self.current_state(ctx)
        if state.decision_gate is not None:
            # The gate is sealed once per run and never revised.
            self._close_sealed_decision(ctx, state)
            return
        self._emit(task_started(ctx.deal_id, ctx.run_id, DECISION_TASK_ID, WorkerRole.DECISION.value))

        analyst_outputs = {
            task_id: state.worker_outputs[task_id]
            for task_id in self._analyst_ids_in(state) if task_id in state.worker_outputs
        }
        request = decision_request(DECISION_TASK_ID, ctx.deal, ctx.profile, state.evidence,
                                   state.worker_outputs.get(SYNTHESIS_TASK_ID), analyst_outputs,
                                   self.settings.evidence_snapshot_limit)
        result = await self._gated(request)

        if not result.ok:
            self._record_gate_result(ctx, DECISION_TASK_ID, result)
            self._seal_gate(ctx, default_decision_gate(), reconciled=False)
            return

        output: DecisionOutput = result.data
        report = reconcile_decision(output.decision_gate, state.evidence_ids(), self.settings.decision_policy)
        self._emit(DealEvent(
            deal_id=ctx.deal_id, run_id=ctx.run_id, type=EventType.STATE_PATCH,
            payload={"task_id": DECISION_TASK_ID, "patch": {"rubric": output.rubric.model_dump(mode="json")}},
        ))
        self._seal_gate(
            ctx, report.gate,
            reconciled=True,
            downgraded_items=report.downgraded_items,
            dropped_evidence_ids=report.dropped_evidence_ids,
            decision_softened=report.decision_softened,
        )
        self._record_gate_result(ctx, DECISION_TASK_ID, result)

    # ── completion ───────────────────────────────────────────────────

    async def finalize(self, ctx: WaveContext) -> None:
        await self.drain_background(ctx)
        state = self.current_state(ctx)
        if state.decision_gate is None:
            self._seal_gate(ctx, default_decision_gate(), reconciled=False)
            state = self.current_state(ctx)
        status = TaskStatus.DEGRADED if state.is_degraded() else TaskStatus.DONE
        self._emit(task_done(ctx.deal_id, ctx.run_id, ORCHESTRATOR_TASK_ID, status.value,
                             output={"decision": state.decision_gate.decision.value}))

    async def fail_degraded(self, ctx: WaveContext, exc: BaseException, failed_stage: Stage) -> None:
        """Terminal path for unexpected failures.

        DECISION is still attempted with whatever state exists; if that is
        not possible the conservative default gate is sealed instead.
        """
        await self.drain_background(ctx, grace_seconds=0)
        self._emit(error_event(ctx.deal_id, ctx.run_id, FailureKind.FATAL,
                               f"{type(exc).__name__}: {exc}", stage=failed_stage.value))

        state = self.current_state(ctx)
        if (state.decision_gate is None and failed_stage not in (Stage.DECISION, Stage.DONE)
                and not self._finished(state, DECISION_TASK_ID)):
            try:
                await self.run_decision(ctx)
            except Exception as decision_exc:
                log_error(logger, "Decision attempt after fatal failure also failed", "WaveScheduler",
                          decision_exc, deal_id=ctx.deal_id)
            state = self.current_state(ctx)

        if state.decision_gate is None:
            self._seal_gate(ctx, default_decision_gate(FATAL_ERROR_QUESTION), reconciled=False)
        self._emit(task_done(ctx.deal_id, ctx.run_id, ORCHESTRATOR_TASK_ID, TaskStatus.DEGRADED.value,
                             output={"stage": Stage.FAILED_DEGRADED.value}))
