"""Tavily web search collaborator."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from dealflow.collaborators.base import CollaboratorQuery, CollaboratorResult
from dealflow.events.models import utc_now_iso
from dealflow.reconcile.evidence import normalize_evidence
from dealflow.runtime.rate_limit import RateLimitSettings, ainvoke_with_rate_limit_retry
from dealflow.state.models import Evidence
from exceptions import CollaboratorError

logger = logging.getLogger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
MAX_SNIPPET_CHARS = 1200


class TavilySearchCollaborator:
    """Searches the web and returns each hit as a citable evidence item."""

    def __init__(self, api_key: str, name: str = "tavily", max_results: int = 5,
                 search_depth: str = "basic", request_timeout: float = 30.0,
                 base_url: str = TAVILY_SEARCH_URL,
                 rate_limit: Optional[RateLimitSettings] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.name = name
        self.api_key = api_key
        self.max_results = max_results
        self.search_depth = search_depth
        self.request_timeout = request_timeout
        self.base_url = base_url
        self.rate_limit = rate_limit or RateLimitSettings(max_retries=3)
        self.transport = transport

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.request_timeout, transport=self.transport) as client:
            response = await client.post(self.base_url, json=payload)
            response.raise_for_status()
            return response.json()

    async def query(self, query: CollaboratorQuery) -> CollaboratorResult:
        payload = {
            "api_key": self.api_key,
            "query": query.query,
            "max_results": min(query.max_results, self.max_results),
            "search_depth": self.search_depth,
        }
        try:
            data = await ainvoke_with_rate_limit_retry(lambda: self._post(payload), self.rate_limit)
        except httpx.HTTPStatusError as exc:
            raise CollaboratorError(
                f"Tavily search failed with status {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise CollaboratorError(f"Tavily search failed: {exc}") from exc

        retrieved_at = utc_now_iso()
        evidence: List[Evidence] = []
        for hit in data.get("results", []):
            content = (hit.get("content") or "").strip()
            if not content:
                continue
            evidence.append(normalize_evidence({
                "title": hit.get("title"),
                "snippet": content[:MAX_SNIPPET_CHARS],
                "source": self.name,
                "url": hit.get("url"),
            }, retrieved_at))

        logger.debug(
            "Tavily search returned results",
            extra={"component": "TavilySearchCollaborator", "data": {
                "stage": query.stage.value, "results": len(evidence),
            }},
        )
        return CollaboratorResult(collaborator=self.name, evidence=evidence)
