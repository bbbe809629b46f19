"""Worker invocation boundary: request/reply models and invoker strategies."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from dealflow.contracts.models import ContractName
from dealflow.contracts.validation import ValidationIssue
from dealflow.state.models import WorkerRole

RETRY_INSTRUCTION = (
    "Your previous {contract} output failed validation. "
    "Fix these errors and return ONLY valid JSON."
)
RAW_EXCERPT_CHARS = 500


class RetryFeedback(BaseModel):
    """Structured validation errors handed back to a worker on its one retry."""

    contract: ContractName
    issues: List[ValidationIssue]
    previous_output_excerpt: str = ""

    @classmethod
    def from_issues(cls, contract: ContractName, issues: List[ValidationIssue], raw: Any) -> "RetryFeedback":
        try:
            excerpt = json.dumps(raw, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            excerpt = str(raw)
        return cls(contract=contract, issues=issues, previous_output_excerpt=excerpt[:RAW_EXCERPT_CHARS])

    def render(self) -> str:
        lines = [RETRY_INSTRUCTION.format(contract=self.contract.value), ""]
        lines.extend(issue.render() for issue in self.issues)
        lines.extend([
            "",
            f"Schema: {self.contract.value}",
            f"Raw output that failed: {self.previous_output_excerpt}",
        ])
        return "\n".join(lines)


class WorkerRequest(BaseModel):
    role: WorkerRole
    task_id: str
    contract: ContractName
    specialization: Optional[str] = None
    context: Dict[str, str] = Field(default_factory=dict)
    instruction: str
    retry: Optional[RetryFeedback] = None


class ToolActivity(BaseModel):
    """Telemetry notice from a worker; never part of run state."""

    tool: str
    detail: str = ""


class WorkerReply(BaseModel):
    output: Any = None
    tool_activity: List[ToolActivity] = Field(default_factory=list)


class WorkerInvoker(Protocol):
    async def invoke(self, request: WorkerRequest) -> WorkerReply:
        ...


def _context_evidence_ids(request: WorkerRequest) -> List[str]:
    raw = request.context.get("evidence")
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return [str(item.get("id")) for item in items if isinstance(item, dict) and item.get("id")]


class DryRunWorkerInvoker:
    """Returns canned, contract-valid output without calling any model."""

    async def invoke(self, request: WorkerRequest) -> WorkerReply:
        evidence_ids = _context_evidence_ids(request)
        cite = evidence_ids[:1]

        if request.contract == ContractName.ANALYST:
            output = {
                "facts": [{"text": f"DRY RUN {request.specialization or 'analyst'} fact", "evidence_ids": cite}],
                "contradictions": [],
                "unknowns": [{"question": f"What is the {request.specialization or 'key'} risk?", "why": "dry run"}],
                "evidence_requests": [],
            }
        elif request.contract == ContractName.SYNTHESIS:
            output = {
                "hypotheses": [{"id": "h1", "text": "DRY RUN hypothesis", "support_evidence_ids": cite, "risks": []}],
                "top_unknowns": [],
                "requests_to_analysts": [],
            }
        else:
            dimension = {"score": 50, "reasons": ["dry run"]}
            output = {
                "rubric": {name: dict(dimension) for name in ("market", "moat", "why_now", "execution", "deal_fit")},
                "decision_gate": {
                    "decision": "PROCEED_IF",
                    "gating_questions": ["Dry run question 1", "Dry run question 2", "Dry run question 3"],
                    "evidence_checklist": [
                        {"q": 1, "item": "Cited item", "type": "EVIDENCE" if cite else "ASSUMPTION", "evidence_ids": cite},
                    ],
                },
            }
        return WorkerReply(output=output, tool_activity=[ToolActivity(tool="dry_run", detail=request.task_id)])
