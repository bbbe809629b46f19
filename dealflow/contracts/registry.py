"""Contract model and coercion registry."""

from __future__ import annotations

from typing import Any, Callable, Dict, Type

from pydantic import BaseModel

from dealflow.contracts.coercion import (
    coerce_analyst_output,
    coerce_decision_output,
    coerce_synthesis_output,
)
from dealflow.contracts.models import AnalystOutput, ContractName, DecisionOutput, SynthesisOutput


CONTRACT_MODELS: Dict[ContractName, Type[BaseModel]] = {
    ContractName.ANALYST: AnalystOutput,
    ContractName.SYNTHESIS: SynthesisOutput,
    ContractName.DECISION: DecisionOutput,
}

CONTRACT_COERCERS: Dict[ContractName, Callable[[Any], Any]] = {
    ContractName.ANALYST: coerce_analyst_output,
    ContractName.SYNTHESIS: coerce_synthesis_output,
    ContractName.DECISION: coerce_decision_output,
}


def get_contract_model(contract: ContractName) -> Type[BaseModel]:
    """Resolve output model class for a contract."""
    return CONTRACT_MODELS[contract]


def get_coercer(contract: ContractName) -> Callable[[Any], Any]:
    return CONTRACT_COERCERS[contract]
