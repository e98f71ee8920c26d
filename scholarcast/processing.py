"""
Per-paper pipeline: extract → summarize → embed → synthesize → persist.

Each stage goes through the FallbackAdapter. A failure in stages 1-4 that
survives the adapter (strict mode, or a broken fallback) aborts this paper
only, as a PaperFailure. Persistence never fails the paper.
"""

import asyncio
import logging
from typing import Optional

from scholarcast.adapter import FallbackAdapter
from scholarcast.config import (
    EMBED_TIMEOUT,
    EMBEDDING_DIMENSIONS,
    LLM_TIMEOUT,
    PDF_TIMEOUT,
    STORE_TIMEOUT,
    TTS_TIMEOUT,
)
from scholarcast.errors import PaperFailure, PersistenceFailure
from scholarcast.models import (
    PLACEHOLDER,
    EmbeddingVector,
    ExtractedText,
    ProcessedPaper,
    RawPaperRecord,
)
from scholarcast.services.base import Embedder, PaperRepository, SpeechSynthesizer, Summarizer, TextExtractor
from scholarcast.services.embeddings import placeholder_embedding
from scholarcast.services.extraction import abstract_stub
from scholarcast.similarity import SimilarityIndex

logger = logging.getLogger(__name__)


class PaperProcessor:
    """Runs one RawPaperRecord through every stage.

    Collaborators are injected by the ServiceContext; `fallback_*` objects
    must work offline.
    """

    def __init__(self, extractor: TextExtractor, summarizer: Summarizer, fallback_summarizer,
                 embedder: Embedder, synthesizer: SpeechSynthesizer, fallback_synthesizer,
                 index: SimilarityIndex, store: Optional[PaperRepository] = None,
                 embedding_dimensions: int = EMBEDDING_DIMENSIONS, embedding_model: str = ""):
        self.extractor = extractor
        self.summarizer = summarizer
        self.fallback_summarizer = fallback_summarizer
        self.embedder = embedder
        self.synthesizer = synthesizer
        self.fallback_synthesizer = fallback_synthesizer
        self.index = index
        self.store = store
        self.embedding_dimensions = embedding_dimensions
        self.embedding_model = embedding_model or getattr(embedder, "model", "embedder")
        self.timeouts = {
            "extract": PDF_TIMEOUT,
            "summarize": LLM_TIMEOUT,
            "embed": EMBED_TIMEOUT,
            "synthesize": TTS_TIMEOUT,
            "persist": STORE_TIMEOUT,
        }

    async def process(self, record: RawPaperRecord, query: str,
                      adapter: Optional[FallbackAdapter] = None) -> ProcessedPaper:
        adapter = adapter or FallbackAdapter()
        label = f"{record.id}"
        try:
            extracted = await self._extract(record, adapter, label)
            summary = await adapter.invoke(
                "summarize", self.summarizer.summarize, self.fallback_summarizer.summarize,
                record.title, record.abstract, extracted.text,
                timeout=self.timeouts["summarize"], context=label,
            )
            vector = await self._embed(record, summary.embedding_text(), adapter, label)
            audio = await adapter.invoke(
                "synthesize", self.synthesizer.synthesize, self.fallback_synthesizer.synthesize,
                summary.summary, record.id,
                timeout=self.timeouts["synthesize"], context=label,
            )
        except Exception as e:
            raise PaperFailure(record.id, record.title, e) from e

        # only papers that made it through every stage are searchable
        self.index.upsert(record.id, vector)

        paper = ProcessedPaper(
            record=record,
            summary=summary,
            embedding_provenance=vector.provenance,
            audio=audio,
            extraction_source=extracted.source,
        )
        paper.persisted = await self._persist(paper, vector)
        logger.info(
            f"Processed '{record.title[:60]}' (summary={summary.provenance}, "
            f"embedding={vector.provenance}, audio={audio.provenance})"
        )
        return paper

    async def _extract(self, record: RawPaperRecord, adapter: FallbackAdapter, label: str) -> ExtractedText:
        if not record.pdf_url:
            return ExtractedText.from_record(record, reason="no pdf_url")
        extracted = await adapter.invoke(
            "extract", self.extractor.extract, abstract_stub(record), record.pdf_url,
            timeout=self.timeouts["extract"], context=label,
        )
        if not extracted.text.strip():
            return ExtractedText.from_record(record, reason="empty extraction")
        return extracted

    async def _embed(self, record: RawPaperRecord, text: str, adapter: FallbackAdapter,
                     label: str) -> EmbeddingVector:
        async def primary(t: str) -> EmbeddingVector:
            values = await self.embedder.embed(t)
            return EmbeddingVector(paper_id=record.id, values=values, provenance=self.embedding_model)

        def fallback(t: str) -> EmbeddingVector:
            values = placeholder_embedding(t, self.embedding_dimensions)
            return EmbeddingVector(paper_id=record.id, values=values, provenance=PLACEHOLDER)

        return await adapter.invoke(
            "embed", primary, fallback, text, timeout=self.timeouts["embed"], context=label,
        )

    async def _persist(self, paper: ProcessedPaper, vector: EmbeddingVector) -> bool:
        if self.store is None:
            return False
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.store.persist, paper, vector),
                timeout=self.timeouts["persist"],
            )
            return True
        except Exception as e:
            failure = e if isinstance(e, PersistenceFailure) else PersistenceFailure(paper.id, e)
            logger.warning(f"{failure}; result returned without persistence")
            return False
