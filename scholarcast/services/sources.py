"""
Paper sources.

- OpenAlexSource: works search against https://api.openalex.org (free, polite
  pool via OPENALEX_EMAIL)
- sample_papers(): built-in placeholder records used when the source is down
"""

import logging
import time
from typing import List, Optional

import httpx

from scholarcast.config import FETCH_TIMEOUT, USER_AGENT
from scholarcast.models import FALLBACK, RawPaperRecord
from scholarcast.utils import generate_paper_id, safe_int

logger = logging.getLogger(__name__)


class OpenAlexSource:
    """Search OpenAlex works and map them onto RawPaperRecord."""

    BASE_URL = "https://api.openalex.org"
    name = "openalex"

    def __init__(self, email: str = "", timeout: float = FETCH_TIMEOUT,
                 client: Optional[httpx.AsyncClient] = None):
        self.email = email
        self._http = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def close(self):
        await self._http.aclose()

    def _headers(self) -> dict:
        h = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if self.email:
            h["User-Agent"] = f"scholarcast/1.0 (mailto:{self.email})"
        return h

    @staticmethod
    def _reconstruct_abstract(inverted_index: Optional[dict]) -> str:
        """Rebuild abstract text from OpenAlex's inverted-index format."""
        if not inverted_index:
            return ""
        word_positions = []
        for word, positions in inverted_index.items():
            for pos in positions:
                word_positions.append((pos, word))
        word_positions.sort(key=lambda x: x[0])
        return " ".join(w for _, w in word_positions)

    def _normalize_work(self, raw: dict, timestamp_ms: int) -> RawPaperRecord:
        title = raw.get("display_name") or raw.get("title") or "Untitled"
        authors = tuple(
            a.get("author", {}).get("display_name", "")
            for a in raw.get("authorships", [])
            if a.get("author", {}).get("display_name")
        )
        primary = raw.get("primary_location") or {}
        best_oa = raw.get("best_oa_location") or {}
        venue = ((primary.get("source") or {}).get("display_name")) or ""
        pdf_url = best_oa.get("pdf_url") or primary.get("pdf_url") or None
        url = raw.get("doi") or primary.get("landing_page_url") or raw.get("id", "")

        return RawPaperRecord(
            id=generate_paper_id(title, authors[0] if authors else "", timestamp_ms),
            title=title,
            authors=authors,
            abstract=self._reconstruct_abstract(raw.get("abstract_inverted_index")),
            url=url,
            pdf_url=pdf_url,
            published_date=raw.get("publication_date") or str(raw.get("publication_year") or ""),
            citations=safe_int(raw.get("cited_by_count")),
            venue=venue,
            source=self.name,
        )

    async def fetch_papers(self, query: str, max_results: int) -> List[RawPaperRecord]:
        params = {"search": query, "per_page": max(1, min(max_results, 200))}
        if self.email:
            params["mailto"] = self.email
        resp = await self._http.get(f"{self.BASE_URL}/works", headers=self._headers(), params=params)
        resp.raise_for_status()
        works = resp.json().get("results", [])
        timestamp_ms = int(time.time() * 1000)
        # one ms per work keeps ids distinct when title and author prefixes collide
        records = [self._normalize_work(w, timestamp_ms + i) for i, w in enumerate(works[:max_results])]
        logger.info(f"OpenAlex returned {len(records)} papers for '{query}'")
        return records


# ──────────────────────────────────────────────────────────────
# Offline fallback
# ──────────────────────────────────────────────────────────────

_SAMPLE_TEMPLATES = [
    {
        "title": "Deep Learning Approaches for {query}: A Systematic Review",
        "authors": ("Sarah Johnson", "Michael Chen", "Priya Raman"),
        "abstract": ("This systematic review surveys recent deep learning methods applied to {query}. "
                     "We compare convolutional, recurrent and transformer architectures across 48 studies "
                     "and identify open problems in evaluation and reproducibility."),
        "venue": "Nature Machine Intelligence",
        "published_date": "2024-03-15",
        "citations": 156,
    },
    {
        "title": "Benchmarking Data-Efficient Methods in {query}",
        "authors": ("Luis Alvarez", "Hannah Weber"),
        "abstract": ("We introduce a benchmark suite for data-efficient learning in {query}. "
                     "Results show that self-supervised pretraining closes most of the gap to fully "
                     "supervised baselines with a tenth of the labels."),
        "venue": "NeurIPS",
        "published_date": "2023-12-10",
        "citations": 89,
    },
    {
        "title": "Interpretable Models for {query}",
        "authors": ("Amara Okafor", "Tom Lindqvist", "Yuki Tanaka"),
        "abstract": ("Interpretability remains a barrier to adoption in {query}. "
                     "We propose attention-based attribution maps validated with domain experts and "
                     "report improved trust without loss of accuracy."),
        "venue": "ICML",
        "published_date": "2024-07-21",
        "citations": 42,
    },
    {
        "title": "Federated Learning for Privacy-Preserving {query}",
        "authors": ("Elena Rossi", "David Kim"),
        "abstract": ("Sharing data across institutions is often impossible in {query}. "
                     "We evaluate federated training across 12 sites and show performance within 2% of "
                     "centralized training while keeping raw data local."),
        "venue": "Journal of Machine Learning Research",
        "published_date": "2023-05-02",
        "citations": 67,
    },
    {
        "title": "Robustness and Distribution Shift in {query}",
        "authors": ("Omar Haddad", "Grace Liu"),
        "abstract": ("Models for {query} often degrade under distribution shift. "
                     "We characterise common shift types and show that simple test-time adaptation "
                     "recovers a large fraction of lost accuracy."),
        "venue": "ICLR",
        "published_date": "2024-01-30",
        "citations": 31,
    },
]


def sample_papers(query: str, max_results: int) -> List[RawPaperRecord]:
    """Placeholder records so the rest of the pipeline has something to process.

    None of them carries a pdf_url, so extraction never touches the network.
    """
    timestamp_ms = int(time.time() * 1000)
    topic = (query or "research").strip()
    records = []
    for i, tpl in enumerate(_SAMPLE_TEMPLATES[:max(0, max_results)]):
        title = tpl["title"].format(query=topic)
        records.append(RawPaperRecord(
            id=generate_paper_id(title, tpl["authors"][0], timestamp_ms + i),
            title=title,
            authors=tpl["authors"],
            abstract=tpl["abstract"].format(query=topic),
            url=f"https://openalex.org/sample/{i + 1}",
            pdf_url=None,
            published_date=tpl["published_date"],
            citations=tpl["citations"],
            venue=tpl["venue"],
            source=FALLBACK,
        ))
    logger.info(f"Using {len(records)} sample papers for '{topic}'")
    return records
