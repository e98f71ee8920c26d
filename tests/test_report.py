"""Tests for scholarcast/report.py -- narrative provenance and report lookup."""

import asyncio

import pytest

from conftest import BrokenStore, FakeSummarizer, FakeSynthesizer, make_record

from scholarcast.models import ProcessedPaper, SummaryResult
from scholarcast.report import ReportRegistry


def processed(i, importance):
    return ProcessedPaper(
        record=make_record(i),
        summary=SummaryResult(f"Summary {i}.", ["a", "b", "c"], importance, "fake-llm"),
        embedding_provenance="test-embed",
        audio=None,
        extraction_source="pdf",
    )


@pytest.fixture
def papers():
    return [processed(1, 3), processed(2, 9), processed(3, 6)]


class TestAssemble:

    def test_llm_narrative(self, make_context, papers):
        ctx = make_context()
        report = asyncio.run(ctx.reports.assemble(papers, "graphs"))

        assert report.provenance == "llm:fake-llm"
        assert report.narrative == "A narrative about graphs covering 3 papers."
        assert report.paper_count == 3
        assert report.audio.provenance == "fake-tts"
        assert "research_report_" in report.audio.filename

    def test_template_narrative_orders_by_importance(self, make_context, papers):
        ctx = make_context(summarizer=FakeSummarizer(narrative_fail=True))
        report = asyncio.run(ctx.reports.assemble(papers, "graphs"))

        assert report.provenance == "template"
        text = report.narrative
        assert text.startswith("Welcome")
        assert text.index("Paper 2 on") < text.index("Paper 3 on") < text.index("Paper 1 on")
        assert "Thank you for listening" in text

    def test_placeholder_audio_when_tts_down(self, make_context, settings, papers):
        ctx = make_context(synthesizer=FakeSynthesizer(settings.storage_path, fail=True))
        report = asyncio.run(ctx.reports.assemble(papers, "graphs"))
        assert report.audio.provenance == "placeholder"
        assert report.audio.url.startswith("/audio/research_report_")

    def test_no_papers_rejected(self, make_context):
        with pytest.raises(ValueError):
            asyncio.run(make_context().reports.assemble([], "graphs"))


class TestLookup:

    def test_registry_then_store(self, make_context, settings, papers):
        ctx = make_context()
        report = asyncio.run(ctx.reports.assemble(papers, "graphs"))
        assert ctx.reports.get(report.id) is report

        fresh = make_context()
        assert len(fresh.registry) == 0
        loaded = fresh.reports.get(report.id)
        assert loaded.narrative == report.narrative
        assert loaded.paper_ids == report.paper_ids
        assert len(fresh.registry) == 1

    def test_store_failure_keeps_report_in_memory(self, make_context, tmp_path, papers):
        ctx = make_context(store=BrokenStore(str(tmp_path / "broken.db")))
        report = asyncio.run(ctx.reports.assemble(papers, "graphs"))
        assert ctx.reports.get(report.id) is report
        assert ctx.store.load_report(report.id) is None

    def test_unknown_id(self, make_context):
        assert make_context().reports.get("missing") is None


class TestRegistry:

    def test_list_newest_first(self, make_context, papers):
        ctx = make_context()
        first = asyncio.run(ctx.reports.assemble(papers, "a"))
        second = asyncio.run(ctx.reports.assemble(papers, "b"))
        second.created_at = "9999-01-01T00:00:00"
        assert [r.id for r in ctx.registry.list()] == [second.id, first.id]

    def test_empty(self):
        registry = ReportRegistry()
        assert len(registry) == 0
        assert registry.get("x") is None
