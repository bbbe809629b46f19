"""Structured output contracts workers must satisfy."""

from __future__ import annotations

from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from dealflow.state.models import DecisionGate, Hypothesis, Rubric

MAX_FACTS = 12
MAX_CONTRADICTIONS = 8
MAX_UNKNOWNS = 8
MAX_HYPOTHESES = 6


class ContractName(str, Enum):
    ANALYST = "AnalystOutput"
    SYNTHESIS = "SynthesisOutput"
    DECISION = "DecisionOutput"


class FactItem(BaseModel):
    text: str = Field(min_length=1)
    evidence_ids: List[str] = Field(default_factory=list)


class ContradictionItem(BaseModel):
    text: str = Field(min_length=1)
    evidence_ids: List[str] = Field(default_factory=list)


class UnknownItem(BaseModel):
    question: str = Field(min_length=1)
    why: str = Field(min_length=1)


class EvidenceRequest(BaseModel):
    query: str = Field(min_length=1)
    reason: str = Field(min_length=1)


class AnalystOutput(BaseModel):
    facts: List[FactItem] = Field(max_length=MAX_FACTS)
    contradictions: List[ContradictionItem] = Field(max_length=MAX_CONTRADICTIONS)
    unknowns: List[UnknownItem] = Field(max_length=MAX_UNKNOWNS)
    evidence_requests: List[EvidenceRequest] = Field(default_factory=list)


class TopUnknown(BaseModel):
    question: str = Field(min_length=1)
    why_it_matters: str = Field(min_length=1)


class AnalystRequest(BaseModel):
    specialization: str = Field(min_length=1)
    question: str = Field(min_length=1)


class SynthesisOutput(BaseModel):
    hypotheses: List[Hypothesis] = Field(max_length=MAX_HYPOTHESES)
    top_unknowns: List[TopUnknown] = Field(default_factory=list)
    requests_to_analysts: List[AnalystRequest] = Field(default_factory=list)


class DecisionOutput(BaseModel):
    rubric: Rubric
    decision_gate: DecisionGate
