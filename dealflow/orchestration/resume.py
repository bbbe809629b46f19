"""
Resume a stalled run from its event history.

``plan`` is a pure function of the events; ``resume`` takes the deal's run
lock, executes exactly one wave and returns.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from dealflow.events.event_log import EventStore
from dealflow.events.models import ORCHESTRATOR_TASK_ID, DealEvent, EventType
from dealflow.orchestration.lock import RunLock
from dealflow.orchestration.waves import (
    DECISION_TASK_ID,
    SYNTHESIS_TASK_ID,
    Stage,
    WaveContext,
    WaveScheduler,
)
from dealflow.state.models import DealInput, RunState, WorkerRole
from dealflow.state.reducer import reduce_events

logger = logging.getLogger(__name__)


class ResumeStatus(str, Enum):
    COMPLETE = "complete"
    ADVANCED = "advanced"
    RUNNING = "running"
    NOOP = "noop"


class ResumePlan(BaseModel):
    status: ResumeStatus
    run_id: Optional[str] = None
    stage: Optional[Stage] = None
    analyst_ids: List[str] = Field(default_factory=list)


def latest_run_id(events: Sequence[DealEvent]) -> Optional[str]:
    for event in reversed(events):
        if event.type == EventType.TASK_STARTED and event.task_id == ORCHESTRATOR_TASK_ID:
            return event.run_id
    return None


def plan_from_state(state: RunState) -> ResumePlan:
    if ORCHESTRATOR_TASK_ID not in state.tasks:
        return ResumePlan(status=ResumeStatus.NOOP)
    if state.completed:
        return ResumePlan(status=ResumeStatus.COMPLETE, run_id=state.run_id)

    analysts = state.tasks_for_role(WorkerRole.ANALYST)
    missing = [record.id for record in analysts if not record.status.finished]
    if missing:
        # SEED is never repeated; a run that stopped during SEED goes straight to analysis.
        return ResumePlan(status=ResumeStatus.ADVANCED, run_id=state.run_id,
                          stage=Stage.ANALYSIS, analyst_ids=missing)

    for task_id, stage in ((SYNTHESIS_TASK_ID, Stage.SYNTHESIS), (DECISION_TASK_ID, Stage.DECISION)):
        record = state.task(task_id)
        if record is None or not record.status.finished:
            return ResumePlan(status=ResumeStatus.ADVANCED, run_id=state.run_id, stage=stage)

    return ResumePlan(status=ResumeStatus.ADVANCED, run_id=state.run_id, stage=Stage.DONE)


def plan(events: Sequence[DealEvent], deal_id: str, run_id: Optional[str] = None) -> ResumePlan:
    """Decide where a run (the deal's latest by default) should re-enter."""
    run_id = run_id or latest_run_id(events)
    if run_id is None:
        return ResumePlan(status=ResumeStatus.NOOP)
    state = reduce_events([event for event in events if event.run_id == run_id], deal_id=deal_id)
    return plan_from_state(state)


DealLoader = Callable[[str], DealInput]
LockFactory = Callable[[str], RunLock]


class ResumeController:
    """Re-enters a deal's run at the earliest incomplete wave."""

    def __init__(self, store: EventStore, scheduler: WaveScheduler,
                 load_deal: DealLoader, lock_for: LockFactory):
        self.store = store
        self.scheduler = scheduler
        self.load_deal = load_deal
        self.lock_for = lock_for

    def plan(self, deal_id: str, run_id: Optional[str] = None) -> ResumePlan:
        return plan(self.store.read(deal_id), deal_id, run_id)

    async def advance(self, deal_id: str, run_id: Optional[str] = None) -> Tuple[ResumeStatus, Optional[Stage]]:
        """Process one wave of ``run_id`` (default: the latest run). The caller must hold the deal's run lock."""
        next_plan = self.plan(deal_id, run_id)
        if next_plan.status != ResumeStatus.ADVANCED:
            return next_plan.status, None

        ctx = WaveContext.for_deal(deal_id, next_plan.run_id, self.load_deal(deal_id))
        analyst_ids = next_plan.analyst_ids if next_plan.stage == Stage.ANALYSIS else None
        reached = await self.scheduler.execute(next_plan.stage, ctx, analyst_ids)
        return ResumeStatus.ADVANCED, reached

    async def resume(self, deal_id: str) -> ResumeStatus:
        """Advance the deal by one wave unless another scheduler already holds it."""
        lock = self.lock_for(deal_id)
        with lock.guard() as acquired:
            if not acquired:
                logger.info("Run already active, backing off",
                            extra={"component": "ResumeController", "deal_id": deal_id})
                return ResumeStatus.RUNNING
            status, _ = await self.advance(deal_id)
            return status
