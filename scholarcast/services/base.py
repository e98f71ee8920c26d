"""Contracts the pipeline core expects from its external collaborators."""

from typing import List, Optional, Protocol, Sequence

from scholarcast.models import (
    AudioArtifact,
    EmbeddingVector,
    ExtractedText,
    ProcessedPaper,
    QueryVerdict,
    RawPaperRecord,
    ReportArtifact,
    SearchResult,
    SummaryResult,
)


class PaperSource(Protocol):
    name: str

    async def fetch_papers(self, query: str, max_results: int) -> List[RawPaperRecord]: ...


class TextExtractor(Protocol):
    async def extract(self, pdf_url: str) -> ExtractedText: ...


class Summarizer(Protocol):
    async def summarize(self, title: str, abstract: str, text: str) -> SummaryResult: ...

    async def compose_narrative(self, query: str, papers: Sequence[ProcessedPaper]) -> str: ...


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]: ...


class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str, stem: str) -> AudioArtifact: ...


class SecurityScorer(Protocol):
    async def score(self, query: str) -> QueryVerdict: ...


class PaperRepository(Protocol):
    def persist(self, paper: ProcessedPaper, vector: Optional[EmbeddingVector]) -> None: ...

    def load(self, paper_id: str) -> Optional[ProcessedPaper]: ...

    def load_all(self, limit: Optional[int] = None) -> List[ProcessedPaper]: ...

    def delete(self, paper_id: str) -> bool: ...

    def save_report(self, report: ReportArtifact) -> None: ...

    def load_report(self, report_id: str) -> Optional[ReportArtifact]: ...

    def record_search(self, result: SearchResult) -> None: ...

    def recent_searches(self, limit: int = 20) -> List[dict]: ...
