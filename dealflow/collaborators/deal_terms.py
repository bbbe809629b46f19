"""Turns founder-provided deal terms into citable evidence."""

from __future__ import annotations

from dealflow.collaborators.base import CollaboratorQuery, CollaboratorResult
from dealflow.deals.profiles import deal_terms_block
from dealflow.events.models import utc_now_iso
from dealflow.state.models import Evidence


class DealTermsCollaborator:
    name = "deal_terms"

    async def query(self, query: CollaboratorQuery) -> CollaboratorResult:
        deal = query.deal
        evidence = []
        retrieved_at = utc_now_iso()
        if deal.description:
            evidence.append(Evidence(
                id="founder_description",
                title=f"{deal.name} description",
                snippet=deal.description,
                source="founder",
                url=f"https://{deal.domain}" if deal.domain else None,
                retrieved_at=retrieved_at,
            ))
        if deal.deal_terms is not None and not deal.deal_terms.is_empty():
            evidence.append(Evidence(
                id="founder_deal_terms",
                title=f"{deal.name} deal terms",
                snippet=deal_terms_block(deal),
                source="founder",
                retrieved_at=retrieved_at,
            ))
        return CollaboratorResult(collaborator=self.name, evidence=evidence)
