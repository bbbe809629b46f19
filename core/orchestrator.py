"""
Run control surface for deal screening.
Creates deals and runs, starts and resumes them, and serves derived state.
"""
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from config_system.config_loader import ConfigLoader
from config_system.worker_factory import WorkerFactory, create_collaborators
from core.run_manager import RunManager
from dealflow.collaborators.base import Collaborator, CollaboratorStage
from dealflow.deals.profiles import resolve_fund_profile
from dealflow.events.channel import EventChannel
from dealflow.events.models import ORCHESTRATOR_TASK_ID, FailureKind
from dealflow.events.narration import LoggingNarrator
from dealflow.orchestration.resume import ResumeController, ResumeStatus, latest_run_id
from dealflow.orchestration.waves import SchedulerSettings, Stage, WaveContext, WaveScheduler
from dealflow.state.models import DealInput, RunOutcome, RunRecord, RunState
from dealflow.state.reducer import reduce_events
from dealflow.workers import DryRunWorkerInvoker, WorkerInvoker
from exceptions import PipelineError
from logging_config import log_step_complete, log_step_start


class RunResult(BaseModel):
    """What a start or resume call left behind."""
    deal_id: str
    run_id: Optional[str] = None
    status: ResumeStatus
    state: Optional[RunState] = None
    record: Optional[RunRecord] = None


def _elapsed_ms(started_at: Optional[str], completed_at: Optional[str]) -> Optional[float]:
    if not started_at or not completed_at:
        return None
    delta = datetime.fromisoformat(completed_at) - datetime.fromisoformat(started_at)
    return round(delta.total_seconds() * 1000, 2)


def summarize_outcome(state: RunState, deal: DealInput) -> RunOutcome:
    """Outcome recorded when a run is sealed."""
    avg_score = weighted_score = None
    if state.rubric is not None:
        avg_score = state.rubric.average_score()
        weighted_score = state.rubric.weighted_score(
            resolve_fund_profile(deal.firm_type, deal.aum).scoring_weights
        )
    fatal = [error.message for error in state.errors if error.kind == FailureKind.FATAL.value]
    orchestrator = state.task(ORCHESTRATOR_TASK_ID)
    return RunOutcome(
        decision=state.decision_gate.decision if state.decision_gate else None,
        avg_score=avg_score,
        weighted_score=weighted_score,
        degraded=state.is_degraded(),
        duration_ms=_elapsed_ms(orchestrator.started_at, orchestrator.completed_at) if orchestrator else None,
        error=fatal[0] if fatal else None,
    )


class Orchestrator:
    """Wires storage, scheduler and resume controller behind one surface."""

    def __init__(self, run_manager: RunManager, invoker: WorkerInvoker,
                 settings: Optional[SchedulerSettings] = None,
                 collaborators: Optional[Dict[CollaboratorStage, Sequence[Collaborator]]] = None,
                 channel: Optional[EventChannel] = None):
        """Initialize orchestrator from already-built components."""
        self.run_manager = run_manager
        self.channel = channel
        self.logger = None
        collaborators = collaborators or {}

        if channel is not None:
            run_manager.events.subscribe(channel.publish_event)

        self.scheduler = WaveScheduler(
            run_manager.events,
            invoker,
            settings=settings,
            seed_collaborators=collaborators.get(CollaboratorStage.SEED, ()),
            gap_collaborators=collaborators.get(CollaboratorStage.GAP, ()),
            background_collaborators=collaborators.get(CollaboratorStage.BACKGROUND, ()),
            channel=channel,
        )
        self.resume_controller = ResumeController(
            run_manager.events,
            self.scheduler,
            load_deal=run_manager.load_deal,
            lock_for=run_manager.lock_for,
        )

    @classmethod
    def from_config(cls, config_root: str = "./config", dry_run: bool = False,
                    data_directory: Optional[str] = None) -> "Orchestrator":
        """Build an orchestrator from the YAML configuration tree."""
        loader = ConfigLoader(config_root)
        pipeline_config = loader.load_pipeline_config()

        if dry_run:
            invoker = DryRunWorkerInvoker()
            collaborators = create_collaborators(
                [c for c in pipeline_config.collaborators if c.kind == "deal_terms"]
            )
        else:
            invoker = WorkerFactory(loader).create_invoker()
            collaborators = create_collaborators(pipeline_config.collaborators)

        run_manager = RunManager(
            data_directory or pipeline_config.settings.data_directory,
            lock_ttl_seconds=pipeline_config.settings.lock_ttl_seconds,
        )
        channel = EventChannel()
        channel.subscribe(LoggingNarrator())
        return cls(run_manager, invoker, pipeline_config.scheduler_settings(), collaborators, channel)

    def set_logger(self, logger):
        """Set logger for this orchestrator instance."""
        self.logger = logger
        self.run_manager.set_logger(logger)
        set_invoker_logger = getattr(self.scheduler.gate.invoker, "set_logger", None)
        if set_invoker_logger is not None:
            set_invoker_logger(logger)

    # ── deals and runs ───────────────────────────────────────────────

    def create_deal(self, deal: DealInput) -> str:
        return self.run_manager.create_deal(deal)

    def create_run(self, deal_id: str) -> RunRecord:
        return self.run_manager.create_run(deal_id)

    def list_runs(self, deal_id: str) -> List[RunRecord]:
        return self.run_manager.list_runs(deal_id)

    def get_state(self, deal_id: str, run_id: Optional[str] = None) -> RunState:
        """Current state of a run (latest run when ``run_id`` is omitted)."""
        self.run_manager.load_deal(deal_id)
        events = self.run_manager.events.read(deal_id)
        run_id = run_id or latest_run_id(events)
        return reduce_events([event for event in events if event.run_id == run_id], deal_id=deal_id)

    def _seal_if_complete(self, deal_id: str, state: RunState) -> Optional[RunRecord]:
        if not state.completed or state.run_id is None:
            return None
        outcome = summarize_outcome(state, self.run_manager.load_deal(deal_id))
        return self.run_manager.seal_run(deal_id, state.run_id, outcome)

    # ── execution ────────────────────────────────────────────────────

    async def start_run(self, deal_id: str, run_id: Optional[str] = None) -> RunResult:
        """
        Drive a run to completion.

        Creates a run when none is given. A sealed run is left untouched and
        its state returned; a run held by another scheduler is reported as
        running.
        """
        deal = self.run_manager.load_deal(deal_id)
        record = self.run_manager.load_run(deal_id, run_id) if run_id else None
        if record is not None and record.sealed:
            return RunResult(deal_id=deal_id, run_id=record.run_id, status=ResumeStatus.COMPLETE,
                             state=self.get_state(deal_id, record.run_id), record=record)

        lock = self.run_manager.lock_for(deal_id)
        with lock.guard() as acquired:
            if not acquired:
                # Nothing is written for a busy deal, not even a run record
                return RunResult(deal_id=deal_id, run_id=run_id, status=ResumeStatus.RUNNING,
                                 state=self.get_state(deal_id, run_id), record=record)
            if record is None:
                record = self.run_manager.create_run(deal_id)

            if self.logger:
                log_step_start(self.logger, "Orchestrator", "start_run", f"Starting run {record.run_id}",
                               {"analysts": len(self.scheduler.settings.analysts)},
                               deal_id=deal_id, run_id=record.run_id)
            if self.channel is not None:
                self.channel.start()
            try:
                state = self.get_state(deal_id, record.run_id)
                if ORCHESTRATOR_TASK_ID not in state.tasks:
                    ctx = WaveContext.for_deal(deal_id, record.run_id, deal)
                    self.scheduler.begin(ctx)
                    await self.scheduler.execute(Stage.SEED, ctx)
                    lock.refresh()

                status = ResumeStatus.ADVANCED
                while status == ResumeStatus.ADVANCED:
                    status, _ = await self.resume_controller.advance(deal_id, record.run_id)
                    lock.refresh()
            finally:
                if self.channel is not None:
                    await self.channel.stop()

            state = self.get_state(deal_id, record.run_id)
            sealed = self._seal_if_complete(deal_id, state) or record

        if self.logger:
            log_step_complete(self.logger, "Orchestrator", "start_run", f"Run {record.run_id} finished", {
                "decision": state.decision_gate.decision.value if state.decision_gate else None,
                "degraded": state.is_degraded(),
            }, deal_id=deal_id, run_id=record.run_id)

        if not state.completed:
            raise PipelineError(f"Run {record.run_id} stopped before completion")
        return RunResult(deal_id=deal_id, run_id=record.run_id, status=ResumeStatus.COMPLETE,
                         state=state, record=sealed)

    async def resume_run(self, deal_id: str) -> RunResult:
        """Advance the deal's latest run by exactly one wave."""
        self.run_manager.load_deal(deal_id)
        if self.channel is not None:
            self.channel.start()
        try:
            status = await self.resume_controller.resume(deal_id)
        finally:
            if self.channel is not None:
                await self.channel.stop()

        state = self.get_state(deal_id)
        record = None
        if status != ResumeStatus.RUNNING:
            record = self._seal_if_complete(deal_id, state)
        return RunResult(deal_id=deal_id, run_id=state.run_id, status=status, state=state, record=record)
