"""Tests for wave scheduling: fork-join, degradation and the terminal decision."""

import asyncio
import shutil
import tempfile
import unittest
from pathlib import Path

from dealflow.collaborators.base import CollaboratorResult, CollaboratorStage
from dealflow.collaborators.deal_terms import DealTermsCollaborator
from dealflow.events.event_log import EventStore
from dealflow.events.models import ORCHESTRATOR_TASK_ID, EventType
from dealflow.orchestration.waves import (
    DECISION_TASK_ID,
    GAP_TASK_ID,
    SYNTHESIS_TASK_ID,
    SchedulerSettings,
    SchedulerTimeouts,
    Stage,
    WaveContext,
    WaveScheduler,
)
from dealflow.reconcile.evidence import FATAL_ERROR_QUESTION, VALIDATION_FAILED_QUESTION, default_decision_gate
from dealflow.state.models import ChecklistItemType, DealInput, Decision, Evidence, FirmType, TaskStatus
from dealflow.workers import DryRunWorkerInvoker, WorkerReply
from exceptions import CollaboratorError, WorkerError

TS = "2024-05-01T00:00:00+00:00"


def make_deal():
    return DealInput(name="Acme Robotics", domain="acme.ai", firm_type=FirmType.EARLY_VC,
                     description="Warehouse picking robots sold to mid-size 3PLs on a per-pick plan.")


def fast_settings(**timeouts):
    values = dict(seed_seconds=1.0, collaborator_seconds=1.0, worker_seconds=1.0,
                  gap_resolution_seconds=1.0, background_grace_seconds=0.5)
    values.update(timeouts)
    return SchedulerSettings(timeouts=SchedulerTimeouts(**values))


class ScriptedInvoker:
    """Dry-run output unless a task id is scripted to hang, fail or return something specific."""

    def __init__(self, behaviours=None, delay=0.0):
        self.behaviours = behaviours or {}
        self.delay = delay
        self.fallback = DryRunWorkerInvoker()
        self.requests = []

    def calls_for(self, task_id):
        return [request for request in self.requests if request.task_id == task_id]

    async def invoke(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        behaviour = self.behaviours.get(request.task_id, self.behaviours.get("*"))
        if behaviour == "hang":
            await asyncio.sleep(30)
        if behaviour == "invalid":
            return WorkerReply(output="I cannot produce JSON today")
        if behaviour == "raise":
            raise WorkerError(f"{request.task_id} crashed")
        if isinstance(behaviour, dict):
            return WorkerReply(output=behaviour)
        return await self.fallback.invoke(request)


class StaticCollaborator:
    def __init__(self, name, evidence=(), fail=False, delay=0.0):
        self.name = name
        self.evidence = list(evidence)
        self.fail = fail
        self.delay = delay
        self.queries = []

    async def query(self, query):
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise CollaboratorError(f"{self.name} unavailable")
        return CollaboratorResult(collaborator=self.name, evidence=self.evidence)


def web_evidence(evidence_id, snippet="Acme grew ARR 3x in 2023"):
    return Evidence(id=evidence_id, snippet=snippet, source="web", retrieved_at=TS)


class SchedulerTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = EventStore(Path(self.temp_dir), fsync=False)
        self.ctx = WaveContext.for_deal("acme-1", "run-1", make_deal())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def scheduler(self, invoker, settings=None, **collaborators):
        return WaveScheduler(self.store, invoker, settings=settings or fast_settings(), **collaborators)

    def events(self, event_type=None):
        events = self.store.read(self.ctx.deal_id)
        return [e for e in events if event_type is None or e.type == event_type]


class TestHappyPath(SchedulerTestCase):

    async def test_full_run_seals_reconciled_gate(self):
        scheduler = self.scheduler(ScriptedInvoker(), seed_collaborators=[DealTermsCollaborator()])
        state = await scheduler.run(self.ctx)

        self.assertTrue(state.completed)
        self.assertFalse(state.is_degraded())
        for task_id in ("seed", "analyst_1", "analyst_2", "analyst_3", SYNTHESIS_TASK_ID, DECISION_TASK_ID):
            self.assertEqual(state.task(task_id).status, TaskStatus.DONE, task_id)
        self.assertEqual(state.task(ORCHESTRATOR_TASK_ID).status, TaskStatus.DONE)

        checklist = state.decision_gate.evidence_checklist
        self.assertEqual(checklist[0].type, ChecklistItemType.EVIDENCE)
        self.assertEqual(checklist[0].evidence_ids, ["founder_description"])
        self.assertEqual(state.rubric.average_score(), 50.0)
        self.assertEqual([h.id for h in state.hypotheses], ["h1"])

    async def test_analysts_all_start_before_any_finishes(self):
        scheduler = self.scheduler(ScriptedInvoker(delay=0.01))
        await scheduler.run(self.ctx)

        analyst_events = [e for e in self.events() if (e.task_id or "").startswith("analyst_")]
        kinds = [e.type for e in analyst_events]
        first_done = kinds.index(EventType.TASK_DONE)
        self.assertEqual(kinds[:first_done], [EventType.TASK_STARTED] * 3)

    async def test_waves_run_in_order(self):
        scheduler = self.scheduler(ScriptedInvoker())
        await scheduler.run(self.ctx)

        done_order = [e.task_id for e in self.events(EventType.TASK_DONE)]
        self.assertLess(done_order.index("seed"), done_order.index("analyst_1"))
        for analyst in ("analyst_1", "analyst_2", "analyst_3"):
            self.assertLess(done_order.index(analyst), done_order.index(SYNTHESIS_TASK_ID))
        self.assertLess(done_order.index(SYNTHESIS_TASK_ID), done_order.index(DECISION_TASK_ID))
        self.assertEqual(done_order[-1], ORCHESTRATOR_TASK_ID)

    async def test_analysts_see_seed_evidence(self):
        invoker = ScriptedInvoker()
        scheduler = self.scheduler(invoker, seed_collaborators=[StaticCollaborator("web", [web_evidence("ev_a")])])
        await scheduler.run(self.ctx)

        for request in invoker.calls_for("analyst_1") + invoker.calls_for(DECISION_TASK_ID):
            self.assertIn("ev_a", request.context["evidence"])
            self.assertIn("INVESTOR LENS", request.context["investor_lens"])


class TestDegradation(SchedulerTestCase):

    async def test_analyst_timeout_degrades_only_that_task(self):
        invoker = ScriptedInvoker({"analyst_2": "hang"})
        scheduler = self.scheduler(invoker, settings=fast_settings(worker_seconds=0.1))
        state = await scheduler.run(self.ctx)

        self.assertTrue(state.completed)
        self.assertEqual(state.task("analyst_1").status, TaskStatus.DONE)
        self.assertEqual(state.task("analyst_2").status, TaskStatus.DEGRADED)
        self.assertEqual(state.task("analyst_3").status, TaskStatus.DONE)
        self.assertEqual(state.task(ORCHESTRATOR_TASK_ID).status, TaskStatus.DEGRADED)

        errors = self.events(EventType.ERROR)
        self.assertEqual([(e.task_id, e.payload["kind"]) for e in errors], [("analyst_2", "worker")])
        self.assertIsNotNone(state.decision_gate)
        self.assertNotIn("analyst_2", invoker.calls_for(SYNTHESIS_TASK_ID)[0].context["analyst_outputs"])

    async def test_every_worker_failing_still_seals_default_gate(self):
        invoker = ScriptedInvoker({"*": "invalid"})
        scheduler = self.scheduler(invoker)
        state = await scheduler.run(self.ctx)

        self.assertTrue(state.completed)
        self.assertEqual(state.decision_gate, default_decision_gate())
        self.assertEqual(state.decision_gate.gating_questions[0], VALIDATION_FAILED_QUESTION)
        self.assertIsNone(state.rubric)
        for task_id in ("analyst_1", SYNTHESIS_TASK_ID, DECISION_TASK_ID):
            self.assertEqual(len(invoker.calls_for(task_id)), 2, task_id)
            self.assertEqual(state.task(task_id).status, TaskStatus.DEGRADED)
            self.assertEqual(state.task(task_id).retry_count, 1)
        self.assertEqual({e.payload["kind"] for e in self.events(EventType.ERROR)}, {"validation"})

    async def test_decision_raising_still_seals_default_gate(self):
        scheduler = self.scheduler(ScriptedInvoker({DECISION_TASK_ID: "raise"}))
        state = await scheduler.run(self.ctx)

        self.assertEqual(state.decision_gate.decision, Decision.PROCEED_IF)
        self.assertEqual(state.task(DECISION_TASK_ID).status, TaskStatus.DEGRADED)
        self.assertEqual(len(self.events(EventType.DECISION_UPDATED)), 1)

    async def test_dangling_decision_evidence_is_downgraded(self):
        decision = {
            "rubric": {name: {"score": 80, "reasons": ["strong"]}
                       for name in ("market", "moat", "why_now", "execution", "deal_fit")},
            "decision_gate": {
                "decision": "PROCEED",
                "gating_questions": ["Is ARR audited?", "Is churn below 5%?", "Will the lead commit?"],
                "evidence_checklist": [
                    {"q": 1, "item": "Audited ARR", "type": "EVIDENCE", "evidence_ids": ["ev_invented"]},
                    {"q": 2, "item": "Churn data", "type": "EVIDENCE", "evidence_ids": ["founder_description"]},
                    {"q": 3, "item": "Lead interest", "type": "EVIDENCE", "evidence_ids": []},
                ],
            },
        }
        scheduler = self.scheduler(ScriptedInvoker({DECISION_TASK_ID: decision}),
                                   seed_collaborators=[DealTermsCollaborator()])
        state = await scheduler.run(self.ctx)

        types = [item.type for item in state.decision_gate.evidence_checklist]
        self.assertEqual(types, [ChecklistItemType.ASSUMPTION, ChecklistItemType.EVIDENCE, ChecklistItemType.ASSUMPTION])
        self.assertEqual(state.decision_gate.decision, Decision.PROCEED_IF)

        sealed = self.events(EventType.DECISION_UPDATED)[-1]
        self.assertEqual(sealed.payload["dropped_evidence_ids"], ["ev_invented"])
        self.assertTrue(sealed.payload["decision_softened"])

    async def test_collaborator_failure_is_not_fatal(self):
        failing = StaticCollaborator("web", fail=True)
        scheduler = self.scheduler(ScriptedInvoker(), seed_collaborators=[failing, DealTermsCollaborator()])
        state = await scheduler.run(self.ctx)

        self.assertTrue(state.completed)
        self.assertFalse(state.is_degraded())
        self.assertEqual(state.worker_outputs["seed"]["unavailable"], ["web"])
        self.assertEqual(state.evidence_ids(), ["founder_description"])

    async def test_slow_collaborator_is_cut_off(self):
        slow = StaticCollaborator("slow", [web_evidence("ev_late")], delay=5.0)
        scheduler = self.scheduler(ScriptedInvoker(), settings=fast_settings(seed_seconds=0.1),
                                   seed_collaborators=[slow])
        state = await scheduler.run(self.ctx)
        self.assertNotIn("ev_late", state.evidence_ids())
        self.assertEqual(state.worker_outputs["seed"]["unavailable"], ["slow"])

    async def test_stage_crash_seals_failed_degraded_run(self):
        scheduler = self.scheduler(ScriptedInvoker())

        async def broken_analysis(ctx, analyst_ids=None):
            raise RuntimeError("disk on fire")

        scheduler.run_analysis = broken_analysis
        scheduler.begin(self.ctx)
        self.assertEqual(await scheduler.execute(Stage.SEED, self.ctx), Stage.ANALYSIS)
        self.assertEqual(await scheduler.execute(Stage.ANALYSIS, self.ctx), Stage.FAILED_DEGRADED)

        state = scheduler.current_state(self.ctx)
        self.assertTrue(state.completed)
        self.assertEqual(state.task(ORCHESTRATOR_TASK_ID).status, TaskStatus.DEGRADED)
        fatal = [e for e in self.events(EventType.ERROR) if e.payload["kind"] == "fatal"]
        self.assertEqual(fatal[0].payload["stage"], "ANALYSIS")
        # Decision is still attempted after the crash
        self.assertEqual(state.task(DECISION_TASK_ID).status, TaskStatus.DONE)
        self.assertIsNotNone(state.rubric)

    async def test_crash_during_decision_seals_fatal_gate(self):
        scheduler = self.scheduler(ScriptedInvoker())

        async def broken_decision(ctx):
            raise RuntimeError("decision exploded")

        scheduler.run_decision = broken_decision
        state = await scheduler.run(self.ctx)

        self.assertTrue(state.completed)
        self.assertEqual(state.decision_gate.gating_questions[0], FATAL_ERROR_QUESTION)
        self.assertEqual(state.decision_gate.decision, Decision.PROCEED_IF)


class TestGapAndBackground(SchedulerTestCase):

    async def test_gap_resolution_feeds_evidence_from_analyst_unknowns(self):
        gap = StaticCollaborator("web", [web_evidence("ev_gap", "Competitor pricing is $0.10 per pick")])
        scheduler = self.scheduler(ScriptedInvoker(), gap_collaborators=[gap])
        state = await scheduler.run(self.ctx)

        self.assertEqual(state.task(GAP_TASK_ID).status, TaskStatus.DONE)
        self.assertIn("ev_gap", state.evidence_ids())
        self.assertTrue(all(q.stage == CollaboratorStage.GAP for q in gap.queries))
        self.assertEqual(len(gap.queries), 3)
        origins = [e.payload["origin"] for e in self.events(EventType.EVIDENCE_ADDED)]
        self.assertIn(GAP_TASK_ID, origins)

    async def test_gap_task_is_not_planned_without_gap_collaborators(self):
        scheduler = self.scheduler(ScriptedInvoker())
        state = await scheduler.run(self.ctx)
        self.assertIsNone(state.task(GAP_TASK_ID))

    async def test_failing_gap_search_does_not_block_synthesis(self):
        scheduler = self.scheduler(ScriptedInvoker(), gap_collaborators=[StaticCollaborator("web", fail=True)])
        state = await scheduler.run(self.ctx)
        self.assertEqual(state.task(SYNTHESIS_TASK_ID).status, TaskStatus.DONE)
        self.assertFalse(state.is_degraded())

    async def test_background_enrichment_lands_before_completion(self):
        background = StaticCollaborator("deep", [web_evidence("ev_bg")], delay=0.05)
        scheduler = self.scheduler(ScriptedInvoker(), background_collaborators=[background])
        state = await scheduler.run(self.ctx)

        self.assertIn("ev_bg", state.evidence_ids())
        self.assertEqual(background.queries[0].stage, CollaboratorStage.BACKGROUND)

    async def test_background_past_grace_is_cancelled(self):
        background = StaticCollaborator("deep", [web_evidence("ev_bg")], delay=5.0)
        scheduler = self.scheduler(ScriptedInvoker(), settings=fast_settings(background_grace_seconds=0.05),
                                   background_collaborators=[background])
        state = await scheduler.run(self.ctx)
        self.assertTrue(state.completed)
        self.assertNotIn("ev_bg", state.evidence_ids())


if __name__ == "__main__":
    unittest.main()
