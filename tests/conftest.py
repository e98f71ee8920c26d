"""Shared pytest fixtures for the scholarcast test suite."""

import io
import os
import time
from pathlib import Path

import pytest
from pypdf import PdfWriter

from scholarcast.config import Settings
from scholarcast.context import build_context
from scholarcast.models import AudioArtifact, ExtractedText, RawPaperRecord, SummaryResult
from scholarcast.services.store import PaperStore
from scholarcast.services.tts import audio_url, make_audio_filename

TEST_DIMENSIONS = 8


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch):
    """Keep tests away from real services and the user's cache directory."""
    monkeypatch.setenv("MODEL_NAME", "test-model")
    monkeypatch.setenv("LLM_BASE_URL", "http://localhost:9999/v1")
    monkeypatch.setenv("LLM_API_KEY", "NA")
    monkeypatch.delenv("SECURITY_SCORER_URL", raising=False)
    monkeypatch.delenv("SECURITY_SCORER_API_KEY", raising=False)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        llm_base_url="http://localhost:9999/v1",
        llm_api_key="NA",
        smart_model="test-model",
        embedding_model="test-embed",
        embedding_dimensions=TEST_DIMENSIONS,
        security_scorer_url="",
        security_scorer_api_key="",
        storage_path=tmp_path / "audio",
        db_path=tmp_path / "papers.db",
        max_papers_per_query=5,
        max_concurrent_papers=3,
        fallback_importance_min=6,
        fallback_importance_max=9,
        audio_max_age_hours=24,
        cleanup_interval_minutes=0,
    )


def make_record(i: int, pdf: bool = True, **overrides) -> RawPaperRecord:
    fields = dict(
        id=f"paper{i}_author{i}_{1700000000000 + i}",
        title=f"Paper {i} on Machine Learning",
        authors=(f"Author {i}", "Coauthor"),
        abstract=f"Abstract of paper {i}. It studies models. Results are good.",
        url=f"https://example.org/paper/{i}",
        pdf_url=f"https://example.org/paper/{i}.pdf" if pdf else None,
        published_date="2024-01-01",
        citations=10 * i,
        venue="NeurIPS" if i % 2 else "ICML",
        source="fake",
    )
    fields.update(overrides)
    return RawPaperRecord(**fields)


@pytest.fixture
def records():
    return [make_record(i) for i in range(1, 6)]


# ---------------------------------------------------------------------------
# Fake backends
# ---------------------------------------------------------------------------

class FakeSource:
    name = "fake"

    def __init__(self, records=None, fail=False):
        self.records = list(records or [])
        self.fail = fail
        self.calls = []

    async def fetch_papers(self, query, max_results):
        self.calls.append((query, max_results))
        if self.fail:
            raise ConnectionError("scholar backend down")
        return self.records[:max_results]


class FakeExtractor:
    def __init__(self, fail_for=(), fail=False):
        self.fail_for = set(fail_for)
        self.fail = fail
        self.calls = []

    async def extract(self, pdf_url):
        self.calls.append(pdf_url)
        if self.fail or any(key in pdf_url for key in self.fail_for):
            raise ValueError(f"cannot parse {pdf_url}")
        return ExtractedText(text=f"Full text from {pdf_url}", pages=3, source="pdf")


class FakeSummarizer:
    provenance = "fake-llm"

    def __init__(self, fail_for=(), fail=False, importance=7, narrative_fail=False):
        self.fail_for = set(fail_for)
        self.fail = fail
        self.importance = importance
        self.narrative_fail = narrative_fail
        self.calls = []

    async def summarize(self, title, abstract, text):
        self.calls.append((title, abstract, text))
        if self.fail or any(key in title for key in self.fail_for):
            raise ConnectionError("LLM unreachable")
        return SummaryResult(
            summary=f"Summary of {title}.",
            bullets=["Method: m", "Novelty: n", "Key Result: r"],
            importance=self.importance,
            provenance=self.provenance,
        )

    async def compose_narrative(self, query, papers):
        if self.fail or self.narrative_fail:
            raise ConnectionError("LLM unreachable")
        return f"A narrative about {query} covering {len(papers)} papers."


class FakeEmbedder:
    model = "test-embed"

    def __init__(self, dimensions=TEST_DIMENSIONS, fail=False):
        self.dimensions = dimensions
        self.fail = fail

    async def embed(self, text):
        if self.fail:
            raise ConnectionError("embedding service down")
        base = float(len(text) % 7 + 1)
        return [base] + [1.0] * (self.dimensions - 1)


class FakeSynthesizer:
    provenance = "fake-tts"

    def __init__(self, storage_path: Path, fail=False, fail_for=()):
        self.storage_path = Path(storage_path)
        self.fail = fail
        self.fail_for = set(fail_for)
        self.stems = []

    async def synthesize(self, text, stem):
        self.stems.append(stem)
        if self.fail or any(key in stem for key in self.fail_for):
            raise ConnectionError("TTS service down")
        filename = make_audio_filename(stem, "mp3")
        path = self.storage_path / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"ID3fake")
        return AudioArtifact(
            path=str(path), url=audio_url(filename), filename=filename,
            estimated_duration_seconds=5, text=text, provenance=self.provenance,
        )


class BrokenStore(PaperStore):
    def persist(self, paper, vector=None):
        raise RuntimeError("disk full")

    def save_report(self, report):
        raise RuntimeError("disk full")

    def record_search(self, result):
        raise RuntimeError("disk full")


@pytest.fixture
def make_context(settings):
    """Factory: build a ServiceContext on fakes, overriding any backend."""
    built = []

    def _make(source=None, extractor=None, summarizer=None, embedder=None,
              synthesizer=None, scorer=None, store=None, **setting_overrides):
        s = settings.with_overrides(**setting_overrides) if setting_overrides else settings
        ctx = build_context(
            s,
            source=source or FakeSource([make_record(i) for i in range(1, 6)]),
            extractor=extractor or FakeExtractor(),
            summarizer=summarizer or FakeSummarizer(),
            embedder=embedder or FakeEmbedder(s.embedding_dimensions),
            synthesizer=synthesizer or FakeSynthesizer(s.storage_path),
            scorer=scorer,
            store=store or PaperStore(str(s.db_path)),
        )
        built.append(ctx)
        return ctx

    yield _make
    for ctx in built:
        ctx.store.close()


@pytest.fixture
def failing_context(make_context, settings):
    """Every external backend raises."""
    return make_context(
        source=FakeSource(fail=True),
        extractor=FakeExtractor(fail=True),
        summarizer=FakeSummarizer(fail=True),
        embedder=FakeEmbedder(fail=True),
        synthesizer=FakeSynthesizer(settings.storage_path, fail=True),
    )


def old_mtime(path: Path, hours: float) -> None:
    t = time.time() - hours * 3600
    os.utime(path, (t, t))


def blank_pdf_bytes(pages=2) -> bytes:
    """A valid PDF with no text layer."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=200, height=200)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()
