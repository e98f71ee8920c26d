"""
Pipeline orchestrator.

run_search() validates the query, fetches candidates, fans them out to the
PaperProcessor under a semaphore, drops the papers that failed and optionally
assembles a report over the rest. Results keep fetch order.
"""

import asyncio
import logging
from typing import List, Optional, Tuple

from scholarcast.adapter import FallbackAdapter
from scholarcast.config import FETCH_TIMEOUT, HISTORY_LIMIT, MAX_RESULTS_LIMIT, STORE_TIMEOUT
from scholarcast.documents import DocumentConversion
from scholarcast.errors import BatchFailure, PaperFailure, QueryValidationError
from scholarcast.models import PaperFailureNote, ProcessedPaper, RawPaperRecord, ReportArtifact, SearchResult
from scholarcast.services.sources import sample_papers
from scholarcast.services.tts import cleanup_expired_audio

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    def __init__(self, context):
        self.ctx = context

    # --- search ---

    async def run_search(self, query: str, max_results: Optional[int] = None,
                         generate_report: bool = False, use_fallbacks: bool = True) -> SearchResult:
        verdict = await self.ctx.validator.validate(query)
        if not verdict.ok:
            logger.warning(f"Query rejected: {verdict.reason}")
            raise QueryValidationError(verdict)

        if max_results is None:
            max_results = self.ctx.settings.max_papers_per_query
        max_results = max(1, min(int(max_results), MAX_RESULTS_LIMIT))
        adapter = FallbackAdapter(use_fallbacks=use_fallbacks)
        logger.info(
            f"Search '{query}' (max_results={max_results}, report={generate_report}, "
            f"fallbacks={'on' if use_fallbacks else 'off'})"
        )

        candidates = await self._fetch(query, max_results, adapter)
        papers, failures = await self._process_all(candidates, query, adapter)

        notes = [PaperFailureNote(f.paper_id, f.title, str(f.cause)) for f in failures]
        if not papers:
            raise BatchFailure(f"None of the {len(candidates)} papers could be processed", failures)

        result = SearchResult(
            query=query,
            verdict=verdict,
            papers=papers,
            attempted=len(candidates),
            failures=notes,
        )
        if generate_report:
            try:
                result.report = await self.ctx.reports.assemble(papers, query, adapter)
            except Exception as e:
                logger.error(f"Report assembly failed for '{query}': {e}")
                result.report_error = str(e)

        await self._record_search(result)
        logger.info(f"Search '{query}' finished: {result.succeeded}/{result.attempted} papers")
        return result

    async def _fetch(self, query: str, max_results: int, adapter: FallbackAdapter) -> List[RawPaperRecord]:
        try:
            candidates = await adapter.invoke(
                "fetch", self.ctx.source.fetch_papers, sample_papers, query, max_results,
                timeout=FETCH_TIMEOUT, context=query[:40],
            )
        except Exception as e:
            raise BatchFailure(f"Fetching papers failed: {e}") from e
        if not candidates:
            raise BatchFailure(f"No papers found for '{query}'")
        return list(candidates)[:max_results]

    async def _process_all(self, candidates: List[RawPaperRecord], query: str,
                           adapter: FallbackAdapter) -> Tuple[List[ProcessedPaper], List[PaperFailure]]:
        semaphore = asyncio.Semaphore(max(1, self.ctx.settings.max_concurrent_papers))

        async def run_one(position: int, record: RawPaperRecord):
            async with semaphore:
                logger.info(f"Processing paper {position}/{len(candidates)}: {record.title[:80]}")
                try:
                    return await self.ctx.processor.process(record, query, adapter)
                except PaperFailure as e:
                    logger.error(f"Skipping paper {e.paper_id}: {e.cause}")
                    return e
                except Exception as e:
                    logger.error(f"Skipping paper {record.id}: unexpected {type(e).__name__}: {e}")
                    return PaperFailure(record.id, record.title, e)

        # gather keeps argument order, so results follow fetch order
        outcomes = await asyncio.gather(
            *(run_one(i, r) for i, r in enumerate(candidates, 1))
        )
        papers = [o for o in outcomes if isinstance(o, ProcessedPaper)]
        failures = [o for o in outcomes if isinstance(o, PaperFailure)]
        return papers, failures

    async def _record_search(self, result: SearchResult) -> None:
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.ctx.store.record_search, result), timeout=STORE_TIMEOUT
            )
        except Exception as e:
            logger.warning(f"Search history not updated for '{result.query}': {e}")

    # --- uploaded documents ---

    async def convert_document(self, content: bytes, filename: str,
                               use_fallbacks: bool = True) -> DocumentConversion:
        """Narrate an uploaded PDF. Strict runs raise StageFailure."""
        adapter = FallbackAdapter(use_fallbacks=use_fallbacks)
        return await self.ctx.documents.convert(content, filename, adapter)

    # --- lookups ---

    def get_report(self, report_id: str) -> Optional[ReportArtifact]:
        return self.ctx.reports.get(report_id)

    def query_similar(self, paper_id: str, k: int = 5,
                      include_placeholders: bool = True) -> Optional[List[Tuple[str, float]]]:
        """Nearest papers to paper_id, or None when the paper has no vector."""
        vector = self.ctx.index.get(paper_id)
        if vector is None:
            return None
        return self.ctx.index.query(
            vector.values, k, include_placeholders=include_placeholders, exclude=[paper_id]
        )

    def get_paper(self, paper_id: str) -> Optional[ProcessedPaper]:
        return self.ctx.store.load(paper_id)

    def list_papers(self, limit: Optional[int] = None) -> List[ProcessedPaper]:
        return self.ctx.store.load_all(limit)

    def search_papers(self, text: str, limit: int = 10) -> List[ProcessedPaper]:
        return self.ctx.store.search(text, limit)

    def paper_stats(self) -> dict:
        stats = self.ctx.store.stats()
        stats["indexed_vectors"] = len(self.ctx.index)
        stats["reports_in_memory"] = len(self.ctx.registry)
        return stats

    def delete_paper(self, paper_id: str) -> bool:
        removed_from_index = self.ctx.index.remove(paper_id)
        removed_from_store = self.ctx.store.delete(paper_id)
        return removed_from_index or removed_from_store

    def search_history(self, limit: int = HISTORY_LIMIT) -> List[dict]:
        return self.ctx.store.recent_searches(limit)

    def cleanup_audio(self, max_age_hours: Optional[float] = None) -> dict:
        hours = self.ctx.settings.audio_max_age_hours if max_age_hours is None else max_age_hours
        return cleanup_expired_audio(self.ctx.settings.storage_path, hours)
