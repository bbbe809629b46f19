"""
Normalization of almost-valid worker output before contract validation.

Language models routinely return output that is one step away from the
contract: a synonym for the decision, four gating questions, a checklist
reference of 0. These are repaired here; anything structurally wrong is
left for the validator to report.
"""

from __future__ import annotations

import copy
import re
from typing import Any, Dict

from dealflow.contracts.models import MAX_CONTRADICTIONS, MAX_FACTS, MAX_HYPOTHESES, MAX_UNKNOWNS
from dealflow.state.models import GATING_QUESTION_COUNT, MAX_CHECKLIST_ITEMS, RUBRIC_DIMENSIONS

GATING_QUESTION_FILLER = "Additional due diligence required"
MAX_RUBRIC_REASONS = 4

DECISION_ALIASES: Dict[str, str] = {
    "KILL": "KILL",
    "PASS": "KILL",
    "NO": "KILL",
    "REJECT": "KILL",
    "PROCEED": "PROCEED",
    "YES": "PROCEED",
    "STRONG_YES": "PROCEED",
    "APPROVE": "PROCEED",
    "PROCEED_IF": "PROCEED_IF",
    "CONDITIONAL": "PROCEED_IF",
    "MAYBE": "PROCEED_IF",
}


def normalize_decision(value: str) -> str:
    """Map a free-form decision label onto KILL / PROCEED / PROCEED_IF."""
    key = re.sub(r"[^A-Z_]", "", value.upper().replace(" ", "_").replace("-", "_"))
    return DECISION_ALIASES.get(key, "PROCEED_IF")


def _clamp_question_ref(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 1
    return max(1, min(GATING_QUESTION_COUNT, int(value)))


def coerce_decision_output(raw: Any) -> Any:
    if not isinstance(raw, dict):
        return raw
    out = copy.deepcopy(raw)

    gate = out.get("decision_gate")
    if isinstance(gate, dict):
        if isinstance(gate.get("decision"), str):
            gate["decision"] = normalize_decision(gate["decision"])

        questions = gate.get("gating_questions")
        if isinstance(questions, list):
            questions = questions[:GATING_QUESTION_COUNT]
            while len(questions) < GATING_QUESTION_COUNT:
                questions.append(GATING_QUESTION_FILLER)
            gate["gating_questions"] = questions

        checklist = gate.get("evidence_checklist")
        if isinstance(checklist, list):
            coerced = []
            for item in checklist[:MAX_CHECKLIST_ITEMS]:
                if not isinstance(item, dict):
                    coerced.append(item)
                    continue
                item = dict(item)
                ref = item.pop("q", item.get("question_ref"))
                item["question_ref"] = _clamp_question_ref(ref)
                if isinstance(item.get("type"), str):
                    item["type"] = item["type"].upper()
                if not isinstance(item.get("evidence_ids"), list):
                    item["evidence_ids"] = []
                coerced.append(item)
            gate["evidence_checklist"] = coerced

    rubric = out.get("rubric")
    if isinstance(rubric, dict):
        for dimension in RUBRIC_DIMENSIONS:
            entry = rubric.get(dimension)
            if isinstance(entry, dict):
                if isinstance(entry.get("reasons"), list):
                    entry["reasons"] = entry["reasons"][:MAX_RUBRIC_REASONS]
                if isinstance(entry.get("score"), float):
                    entry["score"] = int(round(entry["score"]))

    return out


def coerce_analyst_output(raw: Any) -> Any:
    if not isinstance(raw, dict):
        return raw
    out = copy.deepcopy(raw)
    for key, limit in (("facts", MAX_FACTS), ("contradictions", MAX_CONTRADICTIONS), ("unknowns", MAX_UNKNOWNS)):
        if isinstance(out.get(key), list):
            out[key] = out[key][:limit]
        elif key not in out:
            out[key] = []
    if not isinstance(out.get("evidence_requests"), list):
        out["evidence_requests"] = []
    return out


def coerce_synthesis_output(raw: Any) -> Any:
    if not isinstance(raw, dict):
        return raw
    out = copy.deepcopy(raw)
    if isinstance(out.get("hypotheses"), list):
        out["hypotheses"] = out["hypotheses"][:MAX_HYPOTHESES]
    for key in ("top_unknowns", "requests_to_analysts"):
        if not isinstance(out.get(key), list):
            out[key] = []
    return out
