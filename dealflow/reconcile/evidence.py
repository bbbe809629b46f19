"""
Evidence merging and the evidence/assumption rule for decision checklists.

Everything here is a pure function of its inputs: the same evidence and the
same gate always reconcile to the same result.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from dealflow.state.models import (
    GATING_QUESTION_COUNT,
    MAX_CHECKLIST_ITEMS,
    ChecklistItem,
    ChecklistItemType,
    Decision,
    DecisionGate,
    Evidence,
    compute_content_hash,
)
from dealflow.contracts.coercion import GATING_QUESTION_FILLER

VALIDATION_FAILED_QUESTION = "Validation failed: manual review needed"
FATAL_ERROR_QUESTION = "Error during analysis: manual review needed"
DEFAULT_FOLLOWUP_QUESTIONS = ("Verify all data sources", "Reassess after fix")


class DecisionPolicy(BaseModel):
    """When too much of a checklist rests on assumptions, PROCEED is softened."""

    max_assumption_ratio: Optional[float] = Field(default=0.5, ge=0.0, le=1.0)
    max_assumption_count: Optional[int] = Field(default=None, ge=0)

    def exceeded(self, assumptions: int, total: int) -> bool:
        if self.max_assumption_ratio is not None and total > 0:
            if assumptions / total > self.max_assumption_ratio:
                return True
        if self.max_assumption_count is not None and assumptions > self.max_assumption_count:
            return True
        return False


class ReconcileReport(BaseModel):
    gate: DecisionGate
    downgraded_items: int = 0
    dropped_evidence_ids: List[str] = Field(default_factory=list)
    decision_softened: bool = False


def derive_evidence_id(raw: Dict[str, Any]) -> str:
    """Stable id for evidence that arrived without one."""
    basis = {key: raw.get(key) for key in ("source", "url", "title", "snippet")}
    return "ev_" + compute_content_hash(basis).split(":", 1)[1][:12]


def normalize_evidence(raw: Dict[str, Any], retrieved_at: str) -> Evidence:
    data = dict(raw)
    if not data.get("id") and not data.get("evidence_id"):
        data["id"] = derive_evidence_id(data)
    data.setdefault("retrieved_at", retrieved_at)
    return Evidence.model_validate(data)


def merge_evidence(existing: Iterable[Evidence], incoming: Iterable[Evidence]) -> Tuple[List[Evidence], List[Evidence]]:
    """Merge by id, first occurrence wins.

    Returns the merged list and the items from ``incoming`` that were new.
    """
    merged = list(existing)
    seen = {item.id for item in merged}
    added: List[Evidence] = []
    for item in incoming:
        if item.id in seen:
            continue
        seen.add(item.id)
        merged.append(item)
        added.append(item)
    return merged, added


def reconcile_decision(gate: DecisionGate, known_evidence_ids: Iterable[str],
                       policy: Optional[DecisionPolicy] = None) -> ReconcileReport:
    policy = policy or DecisionPolicy()
    known = set(known_evidence_ids)
    dropped: List[str] = []
    downgraded = 0
    checklist: List[ChecklistItem] = []

    for item in gate.evidence_checklist[:MAX_CHECKLIST_ITEMS]:
        resolvable = [evidence_id for evidence_id in item.evidence_ids if evidence_id in known]
        dropped.extend(evidence_id for evidence_id in item.evidence_ids if evidence_id not in known)

        if item.type == ChecklistItemType.EVIDENCE and not resolvable:
            downgraded += 1
            checklist.append(item.model_copy(update={"type": ChecklistItemType.ASSUMPTION, "evidence_ids": []}))
        elif item.type == ChecklistItemType.ASSUMPTION:
            checklist.append(item.model_copy(update={"evidence_ids": []}))
        else:
            checklist.append(item.model_copy(update={"evidence_ids": resolvable}))

    questions = [question for question in gate.gating_questions if question and question.strip()]
    questions = questions[:GATING_QUESTION_COUNT]
    while len(questions) < GATING_QUESTION_COUNT:
        questions.append(GATING_QUESTION_FILLER)

    assumptions = sum(1 for item in checklist if item.type == ChecklistItemType.ASSUMPTION)
    decision = gate.decision
    softened = False
    if decision == Decision.PROCEED and policy.exceeded(assumptions, len(checklist)):
        decision = Decision.PROCEED_IF
        softened = True

    reconciled = DecisionGate(decision=decision, gating_questions=questions, evidence_checklist=checklist)
    return ReconcileReport(
        gate=reconciled,
        downgraded_items=downgraded,
        dropped_evidence_ids=dropped,
        decision_softened=softened,
    )


def default_decision_gate(lead_question: str = VALIDATION_FAILED_QUESTION) -> DecisionGate:
    """Conservative gate sealed when no validated decision is available."""
    return DecisionGate(
        decision=Decision.PROCEED_IF,
        gating_questions=[lead_question, *DEFAULT_FOLLOWUP_QUESTIONS],
        evidence_checklist=[
            ChecklistItem(
                question_ref=1,
                item="Decision could not be validated; every conclusion is an assumption",
                type=ChecklistItemType.ASSUMPTION,
                evidence_ids=[],
            )
        ],
    )
