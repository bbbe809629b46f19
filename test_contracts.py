"""Tests for worker output contracts: coercion and validation."""

import json
import unittest

from dealflow.contracts.coercion import (
    GATING_QUESTION_FILLER,
    coerce_analyst_output,
    coerce_decision_output,
    normalize_decision,
)
from dealflow.contracts.models import AnalystOutput, ContractName, DecisionOutput
from dealflow.contracts.validation import ROOT_PATH, validate_contract, validate_output
from dealflow.state.models import ChecklistItemType, Decision


def rubric(score=60):
    return {name: {"score": score, "reasons": ["r"]} for name in ("market", "moat", "why_now", "execution", "deal_fit")}


def decision_output(**gate_overrides):
    gate = {
        "decision": "PROCEED",
        "gating_questions": ["Is ARR real?", "Is churn low?", "Is the round priced well?"],
        "evidence_checklist": [{"q": 1, "item": "ARR statement", "type": "EVIDENCE", "evidence_ids": ["ev_1"]}],
    }
    gate.update(gate_overrides)
    return {"rubric": rubric(), "decision_gate": gate}


class TestDecisionCoercion(unittest.TestCase):

    def test_decision_synonyms(self):
        self.assertEqual(normalize_decision("pass"), "KILL")
        self.assertEqual(normalize_decision("Strong Yes"), "PROCEED")
        self.assertEqual(normalize_decision("proceed-if"), "PROCEED_IF")
        self.assertEqual(normalize_decision("no idea"), "PROCEED_IF")

    def test_questions_are_padded_and_truncated(self):
        short = coerce_decision_output(decision_output(gating_questions=["Only one?"]))
        self.assertEqual(short["decision_gate"]["gating_questions"],
                         ["Only one?", GATING_QUESTION_FILLER, GATING_QUESTION_FILLER])

        long = coerce_decision_output(decision_output(gating_questions=["a", "b", "c", "d", "e"]))
        self.assertEqual(long["decision_gate"]["gating_questions"], ["a", "b", "c"])

    def test_checklist_references_are_clamped(self):
        coerced = coerce_decision_output(decision_output(evidence_checklist=[
            {"q": 0, "item": "low", "type": "evidence"},
            {"q": 7, "item": "high", "type": "assumption", "evidence_ids": None},
        ]))
        items = coerced["decision_gate"]["evidence_checklist"]
        self.assertEqual([item["question_ref"] for item in items], [1, 3])
        self.assertEqual([item["type"] for item in items], ["EVIDENCE", "ASSUMPTION"])
        self.assertEqual(items[1]["evidence_ids"], [])

    def test_checklist_is_capped(self):
        checklist = [{"q": 1, "item": f"item {i}", "type": "ASSUMPTION"} for i in range(20)]
        coerced = coerce_decision_output(decision_output(evidence_checklist=checklist))
        self.assertEqual(len(coerced["decision_gate"]["evidence_checklist"]), 15)

    def test_rubric_reasons_and_float_scores(self):
        raw = decision_output()
        raw["rubric"]["market"] = {"score": 71.6, "reasons": ["a", "b", "c", "d", "e"]}
        coerced = coerce_decision_output(raw)
        self.assertEqual(coerced["rubric"]["market"], {"score": 72, "reasons": ["a", "b", "c", "d"]})

    def test_input_is_not_mutated(self):
        raw = decision_output(gating_questions=["one"])
        coerce_decision_output(raw)
        self.assertEqual(raw["decision_gate"]["gating_questions"], ["one"])

    def test_non_dict_passes_through(self):
        self.assertEqual(coerce_decision_output("nope"), "nope")


class TestAnalystCoercion(unittest.TestCase):

    def test_missing_lists_default_empty(self):
        coerced = coerce_analyst_output({"facts": [{"text": "Revenue $2M", "evidence_ids": ["ev_1"]}]})
        self.assertEqual(coerced["contradictions"], [])
        self.assertEqual(coerced["unknowns"], [])
        self.assertEqual(coerced["evidence_requests"], [])

    def test_lists_are_capped(self):
        coerced = coerce_analyst_output({"facts": [{"text": f"f{i}"} for i in range(30)], "unknowns": []})
        self.assertEqual(len(coerced["facts"]), 12)


class TestValidateOutput(unittest.TestCase):

    def test_valid_decision_output(self):
        result = validate_output(decision_output(), ContractName.DECISION)
        self.assertTrue(result.ok)
        self.assertIsInstance(result.data, DecisionOutput)
        item = result.data.decision_gate.evidence_checklist[0]
        self.assertEqual(item.question_ref, 1)
        self.assertEqual(item.type, ChecklistItemType.EVIDENCE)
        self.assertEqual(result.data.decision_gate.decision, Decision.PROCEED)

    def test_json_string_is_parsed(self):
        result = validate_output(json.dumps({"facts": [], "contradictions": [], "unknowns": []}),
                                 ContractName.ANALYST)
        self.assertTrue(result.ok)
        self.assertIsInstance(result.data, AnalystOutput)

    def test_invalid_json_reports_root_issue(self):
        result = validate_output("Here is my analysis: it looks great", ContractName.ANALYST)
        self.assertFalse(result.ok)
        self.assertEqual(result.issues[0].path, ROOT_PATH)
        self.assertIn("not valid JSON", result.issues[0].message)

    def test_missing_field_reports_path(self):
        raw = decision_output()
        del raw["rubric"]
        result = validate_output(raw, ContractName.DECISION)
        self.assertFalse(result.ok)
        self.assertIn("rubric", [issue.path for issue in result.issues])

    def test_out_of_range_score(self):
        raw = decision_output()
        raw["rubric"]["moat"]["score"] = 140
        result = validate_output(raw, ContractName.DECISION)
        self.assertFalse(result.ok)
        self.assertIn("rubric.moat.score", [issue.path for issue in result.issues])

    def test_synthesis_unknown_evidence_ids(self):
        raw = {"hypotheses": [{"id": "h1", "text": "Demand", "support_evidence_ids": ["ev_1", "ev_ghost"]}]}
        self.assertTrue(validate_output(raw, ContractName.SYNTHESIS).ok)

        result = validate_output(raw, ContractName.SYNTHESIS, known_evidence_ids=["ev_1"])
        self.assertFalse(result.ok)
        self.assertEqual(result.issues[0].path, "hypotheses.0.support_evidence_ids")
        self.assertIn("ev_ghost", result.issues[0].message)

    def test_validate_contract_renders_issue_lines(self):
        errors = validate_contract(ContractName.DECISION, {"rubric": rubric()})
        self.assertTrue(errors)
        self.assertTrue(all(line.startswith("- ") for line in errors))
        self.assertEqual(validate_contract(ContractName.DECISION, decision_output()), [])


if __name__ == "__main__":
    unittest.main()
