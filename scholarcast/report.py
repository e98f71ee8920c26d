"""
Report assembly: one narrated artifact over all processed papers.

The narrative comes from the summarization model when it answers, and from
the template (intro, top papers by importance, outro) otherwise. A single
audio file is synthesized for the whole narrative.
"""

import asyncio
import logging
import threading
import uuid
from typing import Dict, List, Optional, Sequence, Tuple

from scholarcast.adapter import FallbackAdapter
from scholarcast.config import LLM_TIMEOUT, STORE_TIMEOUT, TTS_TIMEOUT
from scholarcast.models import ProcessedPaper, ReportArtifact
from scholarcast.services.base import PaperRepository, SpeechSynthesizer, Summarizer

logger = logging.getLogger(__name__)

TEMPLATE = "template"


class ReportRegistry:
    """Reports assembled by this process, keyed by id. Nothing expires."""

    def __init__(self):
        self._reports: Dict[str, ReportArtifact] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._reports)

    def put(self, report: ReportArtifact) -> None:
        with self._lock:
            self._reports[report.id] = report

    def get(self, report_id: str) -> Optional[ReportArtifact]:
        return self._reports.get(report_id)

    def list(self) -> List[ReportArtifact]:
        with self._lock:
            return sorted(self._reports.values(), key=lambda r: r.created_at, reverse=True)


class ReportAssembler:
    def __init__(self, summarizer: Summarizer, fallback_summarizer, synthesizer: SpeechSynthesizer,
                 fallback_synthesizer, registry: ReportRegistry, store: Optional[PaperRepository] = None):
        self.summarizer = summarizer
        self.fallback_summarizer = fallback_summarizer
        self.synthesizer = synthesizer
        self.fallback_synthesizer = fallback_synthesizer
        self.registry = registry
        self.store = store

    async def _narrative(self, query: str, papers: Sequence[ProcessedPaper],
                         adapter: FallbackAdapter) -> Tuple[str, str]:
        async def primary(q, ps):
            text = await self.summarizer.compose_narrative(q, ps)
            return text, f"llm:{getattr(self.summarizer, 'provenance', 'model')}"

        def fallback(q, ps):
            return self.fallback_summarizer.compose_narrative(q, ps), TEMPLATE

        return await adapter.invoke(
            "compose_report", primary, fallback, query, list(papers),
            timeout=LLM_TIMEOUT, context=query[:40],
        )

    async def assemble(self, papers: Sequence[ProcessedPaper], query: str,
                       adapter: Optional[FallbackAdapter] = None) -> ReportArtifact:
        if not papers:
            raise ValueError("Cannot assemble a report without papers")
        adapter = adapter or FallbackAdapter()
        report_id = str(uuid.uuid4())

        narrative, provenance = await self._narrative(query, papers, adapter)
        audio = await adapter.invoke(
            "synthesize_report", self.synthesizer.synthesize, self.fallback_synthesizer.synthesize,
            narrative, f"research_report_{report_id}",
            timeout=TTS_TIMEOUT, context=report_id,
        )
        report = ReportArtifact(
            id=report_id,
            query=query,
            title=f"Research Report: {query}",
            narrative=narrative,
            audio=audio,
            paper_ids=[p.id for p in papers],
            provenance=provenance,
        )
        self.registry.put(report)
        await self._persist(report)
        logger.info(
            f"Report {report_id} assembled from {report.paper_count} papers "
            f"({provenance}, audio={audio.provenance})"
        )
        return report

    async def _persist(self, report: ReportArtifact) -> None:
        if self.store is None:
            return
        try:
            await asyncio.wait_for(asyncio.to_thread(self.store.save_report, report), timeout=STORE_TIMEOUT)
        except Exception as e:
            logger.warning(f"Report {report.id} kept in memory only: {e}")

    def get(self, report_id: str) -> Optional[ReportArtifact]:
        report = self.registry.get(report_id)
        if report is None and self.store is not None:
            report = self.store.load_report(report_id)
            if report is not None:
                self.registry.put(report)
        return report
