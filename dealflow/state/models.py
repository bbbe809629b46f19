"""Deal, run and derived run-state models."""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


RUBRIC_DIMENSIONS = ("market", "moat", "why_now", "execution", "deal_fit")
GATING_QUESTION_COUNT = 3
MAX_CHECKLIST_ITEMS = 15


def compute_content_hash(content: Any) -> str:
    """Return canonical SHA256 hash for JSON-serializable content."""
    canonical = json.dumps(content, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return f"sha256:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"


class FirmType(str, Enum):
    ANGEL = "angel"
    EARLY_VC = "early_vc"
    GROWTH_VC = "growth_vc"
    LATE_VC = "late_vc"
    PE = "pe"
    IB = "ib"


class DealTerms(BaseModel):
    """Founder-provided deal terms, all optional."""

    ticket_size: Optional[str] = None
    valuation: Optional[str] = None
    round_type: Optional[str] = None
    raise_amount: Optional[str] = None
    pre_money_valuation: Optional[str] = None
    post_money_valuation: Optional[str] = None
    equity_offered: Optional[str] = None
    use_of_proceeds: Optional[str] = None
    current_arr: Optional[str] = None
    mrr: Optional[str] = None
    burn_rate: Optional[str] = None
    runway_months: Optional[int] = None
    revenue_growth: Optional[str] = None
    gross_margin: Optional[str] = None
    team_size: Optional[int] = None
    key_hires_planned: Optional[str] = None
    previous_rounds: Optional[str] = None
    cap_table_notes: Optional[str] = None
    existing_investors: Optional[str] = None
    board_seats: Optional[str] = None
    timeline: Optional[str] = None
    founder_notes: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class DealInput(BaseModel):
    """What a deal screening is about."""

    name: str = Field(min_length=1)
    domain: Optional[str] = None
    description: Optional[str] = None
    firm_type: FirmType = FirmType.EARLY_VC
    aum: Optional[str] = None
    thesis: Optional[str] = None
    deal_terms: Optional[DealTerms] = None


class Evidence(BaseModel):
    """Citable fact retrieved from a collaborator. Immutable once recorded."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(validation_alias=AliasChoices("id", "evidence_id"))
    title: Optional[str] = None
    snippet: str
    source: str
    url: Optional[str] = None
    retrieved_at: str


class Hypothesis(BaseModel):
    id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    support_evidence_ids: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)


class RubricDimension(BaseModel):
    score: int = Field(ge=0, le=100)
    reasons: List[str] = Field(default_factory=list, max_length=4)


class Rubric(BaseModel):
    market: RubricDimension
    moat: RubricDimension
    why_now: RubricDimension
    execution: RubricDimension
    deal_fit: RubricDimension

    def scores(self) -> Dict[str, int]:
        return {name: getattr(self, name).score for name in RUBRIC_DIMENSIONS}

    def average_score(self) -> float:
        values = list(self.scores().values())
        return round(sum(values) / len(values), 2)

    def weighted_score(self, weights: Dict[str, float]) -> float:
        total_weight = sum(weights.get(name, 1.0) for name in RUBRIC_DIMENSIONS)
        weighted = sum(score * weights.get(name, 1.0) for name, score in self.scores().items())
        return round(weighted / total_weight, 2) if total_weight else 0.0


class Decision(str, Enum):
    KILL = "KILL"
    PROCEED = "PROCEED"
    PROCEED_IF = "PROCEED_IF"


class ChecklistItemType(str, Enum):
    EVIDENCE = "EVIDENCE"
    ASSUMPTION = "ASSUMPTION"


class ChecklistItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_ref: int = Field(ge=1, le=GATING_QUESTION_COUNT, validation_alias=AliasChoices("question_ref", "q"))
    item: str = Field(min_length=1)
    type: ChecklistItemType
    evidence_ids: List[str] = Field(default_factory=list)


class DecisionGate(BaseModel):
    decision: Decision
    gating_questions: List[str] = Field(min_length=GATING_QUESTION_COUNT, max_length=GATING_QUESTION_COUNT)
    evidence_checklist: List[ChecklistItem] = Field(default_factory=list, max_length=MAX_CHECKLIST_ITEMS)

    @field_validator("gating_questions")
    @classmethod
    def _questions_not_blank(cls, value: List[str]) -> List[str]:
        for question in value:
            if not question or not question.strip():
                raise ValueError("gating questions must be non-empty")
        return value

    def assumption_count(self) -> int:
        return sum(1 for item in self.evidence_checklist if item.type == ChecklistItemType.ASSUMPTION)


class WorkerRole(str, Enum):
    ORCHESTRATOR = "orchestrator"
    COLLABORATOR = "collaborator"
    ANALYST = "analyst"
    SYNTHESIS = "synthesis"
    GAP_RESOLUTION = "gap_resolution"
    DECISION = "decision"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    DEGRADED = "degraded"

    @property
    def finished(self) -> bool:
        return self in (TaskStatus.DONE, TaskStatus.DEGRADED)


class TaskRecord(BaseModel):
    id: str
    role: WorkerRole
    specialization: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    validation_ok: Optional[bool] = None
    retry_count: int = 0
    latency_ms: Optional[float] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class RecordedError(BaseModel):
    kind: str
    message: str
    task_id: Optional[str] = None
    ts: str


class RunState(BaseModel):
    """State derived from a deal's event history. Never mutated in place by callers."""

    deal_id: str
    run_id: Optional[str] = None
    evidence: List[Evidence] = Field(default_factory=list)
    tasks: Dict[str, TaskRecord] = Field(default_factory=dict)
    worker_outputs: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    hypotheses: List[Hypothesis] = Field(default_factory=list)
    rubric: Optional[Rubric] = None
    decision_gate: Optional[DecisionGate] = None
    errors: List[RecordedError] = Field(default_factory=list)
    completed: bool = False

    def evidence_ids(self) -> List[str]:
        return [item.id for item in self.evidence]

    def task(self, task_id: str) -> Optional[TaskRecord]:
        return self.tasks.get(task_id)

    def tasks_for_role(self, role: WorkerRole) -> List[TaskRecord]:
        return [record for record in self.tasks.values() if record.role == role]

    def is_degraded(self) -> bool:
        return bool(self.errors) or any(
            record.status == TaskStatus.DEGRADED for record in self.tasks.values()
        )

    def fingerprint(self) -> str:
        """Canonical hash used to compare replayed states."""
        return compute_content_hash(self.model_dump(mode="json"))


class RunOutcome(BaseModel):
    decision: Optional[Decision] = None
    avg_score: Optional[float] = None
    weighted_score: Optional[float] = None
    degraded: bool = False
    duration_ms: Optional[float] = None
    error: Optional[str] = None


class RunRecord(BaseModel):
    """Run bookkeeping. Immutable once ``sealed`` is set."""

    run_id: str
    deal_id: str
    started_at: str
    completed_at: Optional[str] = None
    sealed: bool = False
    outcome: Optional[RunOutcome] = None
