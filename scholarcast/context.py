"""
ServiceContext: every client, store and in-memory index the pipeline needs,
built once at process start and handed to the orchestrator.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from openai import AsyncOpenAI

from scholarcast.config import Settings
from scholarcast.documents import DocumentConverter
from scholarcast.processing import PaperProcessor
from scholarcast.report import ReportAssembler, ReportRegistry
from scholarcast.services.base import PaperSource
from scholarcast.services.embeddings import OpenAIEmbedder
from scholarcast.services.extraction import PdfTextExtractor
from scholarcast.services.security import HttpSecurityScorer
from scholarcast.services.sources import OpenAlexSource
from scholarcast.services.store import PaperStore
from scholarcast.services.summarizer import LLMSummarizer, TemplateSummarizer
from scholarcast.services.tts import OpenAISpeechSynthesizer, SilentAudioWriter
from scholarcast.similarity import SimilarityIndex
from scholarcast.validator import QueryValidator

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    settings: Settings
    source: PaperSource
    validator: QueryValidator
    processor: PaperProcessor
    reports: ReportAssembler
    documents: DocumentConverter
    registry: ReportRegistry
    index: SimilarityIndex
    store: PaperStore
    _closeables: List[object] = field(default_factory=list)

    async def aclose(self) -> None:
        for obj in self._closeables:
            close = getattr(obj, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"Error closing {type(obj).__name__}: {e}")
        self.store.close()


def build_context(settings: Optional[Settings] = None, *, source=None, extractor=None,
                  summarizer=None, embedder=None, synthesizer=None, scorer=None,
                  store: Optional[PaperStore] = None) -> ServiceContext:
    """Wire the default backends; any of them can be swapped via keyword."""
    settings = settings or Settings.from_env()
    settings.storage_path.mkdir(parents=True, exist_ok=True)
    closeables = []

    llm = None
    if summarizer is None or embedder is None:
        llm = AsyncOpenAI(base_url=settings.llm_base_url, api_key=settings.llm_api_key or "NA", max_retries=0)
        closeables.append(llm)
    if source is None:
        source = OpenAlexSource(email=settings.openalex_email)
        closeables.append(source)
    if extractor is None:
        extractor = PdfTextExtractor()
        closeables.append(extractor)
    if summarizer is None:
        summarizer = LLMSummarizer(llm, settings.smart_model)
    if embedder is None:
        embedder = OpenAIEmbedder(llm, settings.embedding_model, settings.embedding_dimensions)
    if synthesizer is None:
        synthesizer = OpenAISpeechSynthesizer(
            settings.llm_base_url, settings.llm_api_key, settings.storage_path,
            model=settings.tts_model, voice=settings.tts_voice,
        )
        closeables.append(synthesizer)
    if scorer is None and settings.security_scorer_url:
        scorer = HttpSecurityScorer(settings.security_scorer_url, settings.security_scorer_api_key)
        closeables.append(scorer)
    if store is None:
        store = PaperStore(str(settings.db_path))

    fallback_summarizer = TemplateSummarizer(
        (settings.fallback_importance_min, settings.fallback_importance_max)
    )
    fallback_synthesizer = SilentAudioWriter(settings.storage_path)

    index = SimilarityIndex()
    loaded = index.load(store.load_vectors())
    if loaded:
        logger.info(f"Similarity index hydrated with {loaded} stored vectors")

    registry = ReportRegistry()
    processor = PaperProcessor(
        extractor, summarizer, fallback_summarizer, embedder,
        synthesizer, fallback_synthesizer, index, store=store,
        embedding_dimensions=settings.embedding_dimensions,
        embedding_model=getattr(embedder, "model", settings.embedding_model),
    )
    reports = ReportAssembler(
        summarizer, fallback_summarizer, synthesizer, fallback_synthesizer, registry, store=store,
    )
    return ServiceContext(
        settings=settings,
        source=source,
        validator=QueryValidator(scorer),
        processor=processor,
        reports=reports,
        documents=DocumentConverter(summarizer, fallback_summarizer, synthesizer, fallback_synthesizer),
        registry=registry,
        index=index,
        store=store,
        _closeables=closeables,
    )
