"""
Pure fold from a deal's ordered events to its RunState.

Replaying the same events always produces an equal state, and replaying a
prefix of a history gives a state the full history only extends.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from dealflow.events.models import ORCHESTRATOR_TASK_ID, DealEvent, EventType
from dealflow.state.models import (
    DecisionGate,
    Evidence,
    Hypothesis,
    RecordedError,
    Rubric,
    RunState,
    TaskRecord,
    TaskStatus,
    WorkerRole,
)

PATCHABLE_FIELDS = ("hypotheses", "rubric")


def reduce_events(events: Iterable[DealEvent], deal_id: Optional[str] = None) -> RunState:
    """Fold events, in order, into a fresh RunState."""
    state: Optional[RunState] = RunState(deal_id=deal_id) if deal_id else None
    for event in events:
        if state is None:
            state = RunState(deal_id=event.deal_id)
        _apply(state, event)
    if state is None:
        raise ValueError("reduce_events needs a deal_id when there are no events")
    return state


def apply_event(state: RunState, event: DealEvent) -> RunState:
    """Return a new state with one more event applied. ``state`` is left untouched."""
    next_state = state.model_copy(deep=True)
    _apply(next_state, event)
    return next_state


def _apply(state: RunState, event: DealEvent) -> None:
    handler = _HANDLERS.get(event.type)
    if handler is not None:
        handler(state, event)


def _ensure_task(state: RunState, payload: Dict[str, Any]) -> TaskRecord:
    task_id = str(payload["task_id"])
    record = state.tasks.get(task_id)
    if record is None:
        record = TaskRecord(
            id=task_id,
            role=WorkerRole(payload.get("role", WorkerRole.ORCHESTRATOR.value)),
            specialization=payload.get("specialization"),
        )
        state.tasks[task_id] = record
    return record


def _on_task_started(state: RunState, event: DealEvent) -> None:
    payload = event.payload
    record = _ensure_task(state, payload)
    record.status = TaskStatus.RUNNING
    record.started_at = event.ts
    record.completed_at = None

    if payload["task_id"] == ORCHESTRATOR_TASK_ID:
        state.run_id = event.run_id
        state.completed = False
        for planned in payload.get("planned_tasks", []):
            if planned["task_id"] not in state.tasks:
                state.tasks[planned["task_id"]] = TaskRecord(
                    id=planned["task_id"],
                    role=WorkerRole(planned["role"]),
                    specialization=planned.get("specialization"),
                )


def _on_task_done(state: RunState, event: DealEvent) -> None:
    payload = event.payload
    record = _ensure_task(state, payload)
    record.status = TaskStatus(payload.get("status", TaskStatus.DONE.value))
    record.completed_at = event.ts
    if "validation_ok" in payload:
        record.validation_ok = payload["validation_ok"]
    if "retry_count" in payload:
        record.retry_count = int(payload["retry_count"])
    if "latency_ms" in payload:
        record.latency_ms = payload["latency_ms"]

    output = payload.get("output")
    if isinstance(output, dict):
        state.worker_outputs[record.id] = output

    if record.id == ORCHESTRATOR_TASK_ID:
        state.completed = True


def _on_evidence_added(state: RunState, event: DealEvent) -> None:
    known = set(state.evidence_ids())
    for raw in event.payload.get("evidence", []):
        item = Evidence.model_validate(raw)
        # First writer wins; evidence is never edited.
        if item.id in known:
            continue
        known.add(item.id)
        state.evidence.append(item)


def _on_state_patch(state: RunState, event: DealEvent) -> None:
    patch = event.payload.get("patch", {})
    if "hypotheses" in patch:
        state.hypotheses = [Hypothesis.model_validate(raw) for raw in patch["hypotheses"]]
    if "rubric" in patch:
        state.rubric = Rubric.model_validate(patch["rubric"]) if patch["rubric"] is not None else None


def _on_decision_updated(state: RunState, event: DealEvent) -> None:
    state.decision_gate = DecisionGate.model_validate(event.payload["decision_gate"])


def _on_error(state: RunState, event: DealEvent) -> None:
    payload = event.payload
    state.errors.append(RecordedError(
        kind=str(payload.get("kind", "fatal")),
        message=str(payload.get("message", "")),
        task_id=payload.get("task_id"),
        ts=event.ts,
    ))


_HANDLERS = {
    EventType.TASK_STARTED: _on_task_started,
    EventType.TASK_DONE: _on_task_done,
    EventType.EVIDENCE_ADDED: _on_evidence_added,
    EventType.STATE_PATCH: _on_state_patch,
    EventType.DECISION_UPDATED: _on_decision_updated,
    EventType.ERROR: _on_error,
}
