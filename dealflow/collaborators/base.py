"""Collaborator boundary: external evidence sources queried uniformly."""

from __future__ import annotations

from enum import Enum
from typing import List, Protocol

from pydantic import BaseModel, Field

from dealflow.state.models import DealInput, Evidence


class CollaboratorStage(str, Enum):
    SEED = "seed"
    GAP = "gap"
    BACKGROUND = "background"


class CollaboratorQuery(BaseModel):
    deal: DealInput
    query: str
    stage: CollaboratorStage = CollaboratorStage.SEED
    max_results: int = Field(default=5, ge=1)


class CollaboratorResult(BaseModel):
    collaborator: str
    evidence: List[Evidence] = Field(default_factory=list)


class Collaborator(Protocol):
    name: str

    async def query(self, query: CollaboratorQuery) -> CollaboratorResult:
        ...


def seed_query_for(deal: DealInput) -> str:
    parts = [deal.name]
    if deal.domain:
        parts.append(deal.domain)
    parts.append("company market competitors funding traction")
    return " ".join(parts)
