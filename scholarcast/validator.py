"""
Query validation.

validate_query() is a pure shape-and-pattern check. QueryValidator adds the
optional remote scorer on top; the scorer being down never blocks a search,
the query is accepted with medium confidence instead.
"""

import logging
import re
from typing import Optional

from scholarcast.config import MAX_QUERY_LENGTH
from scholarcast.models import QueryVerdict, SecurityLevel
from scholarcast.services.base import SecurityScorer

logger = logging.getLogger(__name__)

DENY_PATTERNS = [
    re.compile(r"<script", re.I),
    re.compile(r"javascript:", re.I),
    re.compile(r"on\w+\s*=", re.I),
    re.compile(r"union\s+select", re.I),
    re.compile(r"drop\s+table", re.I),
    re.compile(r"exec\s*\(", re.I),
    re.compile(r"eval\s*\(", re.I),
]


def validate_query(query) -> QueryVerdict:
    if not isinstance(query, str) or not query.strip():
        return QueryVerdict.rejected("Invalid query format")
    if len(query) > MAX_QUERY_LENGTH:
        return QueryVerdict.rejected(f"Query too long (max {MAX_QUERY_LENGTH} characters)")
    for pattern in DENY_PATTERNS:
        if pattern.search(query):
            return QueryVerdict.rejected("Query contains potentially malicious content")
    return QueryVerdict.accepted(SecurityLevel.MEDIUM, note="Basic validation")


class QueryValidator:
    def __init__(self, scorer: Optional[SecurityScorer] = None):
        self.scorer = scorer

    async def validate(self, query) -> QueryVerdict:
        verdict = validate_query(query)
        if not verdict.ok or self.scorer is None:
            return verdict
        try:
            return await self.scorer.score(query)
        except Exception as e:
            logger.warning(f"Security scorer unavailable ({type(e).__name__}: {e}), using basic validation")
            return QueryVerdict.accepted(
                SecurityLevel.MEDIUM, note="Security scorer unavailable, using basic validation"
            )
