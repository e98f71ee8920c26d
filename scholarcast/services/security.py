"""Optional remote security scorer for search queries."""

import logging
from datetime import datetime
from typing import Optional

import httpx

from scholarcast.config import SECURITY_TIMEOUT
from scholarcast.models import QueryVerdict, SecurityLevel

logger = logging.getLogger(__name__)


def _parse_level(value) -> SecurityLevel:
    try:
        return SecurityLevel(str(value).lower())
    except ValueError:
        return SecurityLevel.MEDIUM


class HttpSecurityScorer:
    """POSTs the query to a scoring service with a bearer key.

    Expected reply: {"safe"|"valid": bool, "risk_level": "low|medium|high",
    "message": str}. Errors propagate; QueryValidator decides what they mean.
    """

    def __init__(self, url: str, api_key: str, timeout: float = SECURITY_TIMEOUT,
                 client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.api_key = api_key
        self._http = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        await self._http.aclose()

    async def score(self, query: str) -> QueryVerdict:
        resp = await self._http.post(
            self.url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "query": query,
                "context": "research_search",
                "timestamp": datetime.now().isoformat(),
            },
        )
        resp.raise_for_status()
        result = resp.json()
        safe = bool(result.get("valid") or result.get("safe"))
        level = _parse_level(result.get("risk_level", "medium"))
        message = result.get("message") or "Validated by security scorer"
        if safe:
            return QueryVerdict.accepted(level, note=message)
        return QueryVerdict.rejected(message, level)
