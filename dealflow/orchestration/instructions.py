"""Worker request builders for each wave."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Mapping, Optional

from dealflow.contracts.models import ContractName
from dealflow.deals.economics import deal_economics_block
from dealflow.deals.profiles import FundProfile, deal_terms_block, investor_lens_block
from dealflow.state.models import DealInput, Evidence, WorkerRole
from dealflow.workers import WorkerRequest

DEFAULT_EVIDENCE_LIMIT = 25
SNIPPET_CHARS = 400

SPECIALIZATION_FOCUS = {
    "market": "market size (TAM/SAM/SOM), growth rate, segments and timing",
    "competition": "direct and indirect competitors, differentiation, switching costs and moat",
    "traction": "revenue, users, growth, retention, partnerships and other proof of demand",
    "team": "founder backgrounds, completeness of the team and key hires",
    "financials": "unit economics, burn, runway and capital efficiency",
    "regulatory": "licensing, compliance exposure and policy risk",
}


def compact_evidence(evidence: Iterable[Evidence], limit: int = DEFAULT_EVIDENCE_LIMIT) -> List[Dict[str, Any]]:
    """Bounded, truncated view of evidence for worker context."""
    compacted = []
    for item in list(evidence)[:limit]:
        entry: Dict[str, Any] = {"id": item.id, "source": item.source, "snippet": item.snippet[:SNIPPET_CHARS]}
        if item.title:
            entry["title"] = item.title
        if item.url:
            entry["url"] = item.url
        compacted.append(entry)
    return compacted


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _deal_context(deal: DealInput, profile: FundProfile, evidence: Iterable[Evidence],
                  evidence_limit: int) -> Dict[str, str]:
    return {
        "deal": _dumps(deal.model_dump(mode="json", exclude={"deal_terms"}, exclude_none=True)),
        "investor_lens": investor_lens_block(profile, deal.thesis),
        "deal_terms": deal_terms_block(deal),
        "deal_economics": deal_economics_block(deal.deal_terms, profile),
        "evidence": _dumps(compact_evidence(evidence, evidence_limit)),
    }


CITATION_RULE = (
    "Cite evidence only by the ids listed in the evidence context. Never invent an id; "
    "if nothing supports a claim, state it without evidence ids."
)


def analyst_request(task_id: str, specialization: str, deal: DealInput, profile: FundProfile,
                    evidence: Iterable[Evidence], evidence_limit: int = DEFAULT_EVIDENCE_LIMIT) -> WorkerRequest:
    focus = SPECIALIZATION_FOCUS.get(specialization, specialization)
    instruction = (
        f"You are the {specialization} analyst screening {deal.name} for a {profile.label} investor.\n"
        f"Focus on {focus}.\n"
        "Return JSON with: facts (max 12, each with text and evidence_ids), contradictions (max 8), "
        "unknowns (max 8, each with question and why) and evidence_requests (query and reason).\n"
        f"{CITATION_RULE}"
    )
    return WorkerRequest(
        role=WorkerRole.ANALYST,
        task_id=task_id,
        contract=ContractName.ANALYST,
        specialization=specialization,
        context=_deal_context(deal, profile, evidence, evidence_limit),
        instruction=instruction,
    )


def synthesis_request(task_id: str, deal: DealInput, profile: FundProfile, evidence: Iterable[Evidence],
                      analyst_outputs: Mapping[str, Dict[str, Any]],
                      evidence_limit: int = DEFAULT_EVIDENCE_LIMIT) -> WorkerRequest:
    context = _deal_context(deal, profile, evidence, evidence_limit)
    context["analyst_outputs"] = _dumps(dict(analyst_outputs))
    instruction = (
        f"You are the deal associate synthesizing analyst research on {deal.name}.\n"
        "Return JSON with: hypotheses (max 6, each with id, text, support_evidence_ids and risks), "
        "top_unknowns (question and why_it_matters) and requests_to_analysts (specialization and question).\n"
        "Every sentence must carry a specific fact, number or evidence id.\n"
        f"{CITATION_RULE}"
    )
    return WorkerRequest(
        role=WorkerRole.SYNTHESIS,
        task_id=task_id,
        contract=ContractName.SYNTHESIS,
        context=context,
        instruction=instruction,
    )


def decision_request(task_id: str, deal: DealInput, profile: FundProfile, evidence: Iterable[Evidence],
                     synthesis_output: Optional[Dict[str, Any]],
                     analyst_outputs: Mapping[str, Dict[str, Any]],
                     evidence_limit: int = DEFAULT_EVIDENCE_LIMIT) -> WorkerRequest:
    context = _deal_context(deal, profile, evidence, evidence_limit)
    context["synthesis"] = _dumps(synthesis_output or {})
    context["analyst_unknowns"] = _dumps({
        task: output.get("unknowns", []) for task, output in analyst_outputs.items()
    })
    weights = ", ".join(f"{name} {weight}x" for name, weight in profile.scoring_weights.items())
    instruction = (
        f"You are the partner deciding on {deal.name} for a {profile.label} fund "
        f"({profile.risk_appetite} risk appetite, target {profile.return_target} over {profile.return_horizon}).\n"
        f"Score market, moat, why_now, execution and deal_fit from 0 to 100 (weights: {weights}), "
        "with at most 4 reasons each.\n"
        "Return JSON with rubric and decision_gate: decision (KILL, PROCEED or PROCEED_IF), exactly 3 "
        "specific gating_questions, and an evidence_checklist of at most 15 items "
        "(q 1-3, item, type EVIDENCE or ASSUMPTION, evidence_ids).\n"
        "An EVIDENCE item must cite at least one evidence id; anything else is an ASSUMPTION.\n"
        f"{CITATION_RULE}"
    )
    return WorkerRequest(
        role=WorkerRole.DECISION,
        task_id=task_id,
        contract=ContractName.DECISION,
        context=context,
        instruction=instruction,
    )
