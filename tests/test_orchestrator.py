"""Tests for scholarcast/orchestrator.py -- batch semantics, reports, lookups."""

import asyncio
from pathlib import Path

import pytest

from conftest import (
    BrokenStore,
    FakeExtractor,
    FakeSource,
    FakeSummarizer,
    FakeSynthesizer,
    make_record,
    old_mtime,
)

from scholarcast.errors import BatchFailure, QueryValidationError
from scholarcast.models import ExtractedText
from scholarcast.orchestrator import PipelineOrchestrator


def run(ctx, query="machine learning", **kwargs):
    return asyncio.run(PipelineOrchestrator(ctx).run_search(query, **kwargs))


class StaggeredExtractor:
    """Later papers finish first. Tracks how many extractions overlap."""

    def __init__(self):
        self.in_flight = 0
        self.peak = 0
        self.finished = []

    async def extract(self, pdf_url):
        index = int(pdf_url.rsplit("/", 1)[1].split(".")[0])
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep((10 - index) * 0.01)
        finally:
            self.in_flight -= 1
        self.finished.append(index)
        return ExtractedText(text=f"Full text from {pdf_url}", pages=1, source="pdf")


# ---------------------------------------------------------------------------
# Batch semantics
# ---------------------------------------------------------------------------

class TestBatch:

    def test_all_papers_processed_in_fetch_order(self, make_context, records):
        result = run(make_context(), max_results=5)
        assert [p.id for p in result.papers] == [r.id for r in records]
        assert result.attempted == 5
        assert result.failures == []
        assert result.verdict.ok

    def test_strict_run_drops_only_the_failing_paper(self, make_context, records):
        ctx = make_context(
            extractor=FakeExtractor(fail_for={"/3.pdf"}),
            summarizer=FakeSummarizer(fail_for={"Paper 3 "}),
        )
        result = run(ctx, max_results=5, use_fallbacks=False)

        expected = [r.id for i, r in enumerate(records, 1) if i != 3]
        assert [p.id for p in result.papers] == expected
        assert result.succeeded == 4
        assert result.attempted == 5
        assert [f.paper_id for f in result.failures] == [records[2].id]

    def test_strict_tts_failure_keeps_paper_out_of_index(self, make_context, settings, records):
        ctx = make_context(synthesizer=FakeSynthesizer(settings.storage_path, fail_for={"paper3_"}))
        result = run(ctx, max_results=5, use_fallbacks=False)

        dropped = records[2].id
        assert dropped not in [p.id for p in result.papers]
        assert dropped not in ctx.index
        assert len(ctx.index) == 4
        similar = PipelineOrchestrator(ctx).query_similar(result.papers[0].id, k=10)
        assert dropped not in [pid for pid, _ in similar]

    def test_fetch_order_kept_when_papers_finish_out_of_order(self, make_context, records):
        extractor = StaggeredExtractor()
        ctx = make_context(extractor=extractor, max_concurrent_papers=5)
        result = run(ctx, max_results=5)

        assert extractor.finished == [5, 4, 3, 2, 1]
        assert [p.id for p in result.papers] == [r.id for r in records]

    def test_concurrency_bounded_by_setting(self, make_context):
        extractor = StaggeredExtractor()
        source = FakeSource([make_record(i) for i in range(1, 7)])
        ctx = make_context(source=source, extractor=extractor, max_concurrent_papers=2)
        result = run(ctx, max_results=6)

        assert extractor.peak == 2
        assert [p.record.title for p in result.papers] == [
            f"Paper {i} on Machine Learning" for i in range(1, 7)
        ]

    def test_lenient_run_keeps_the_failing_paper(self, make_context, records):
        ctx = make_context(
            extractor=FakeExtractor(fail_for={"/3.pdf"}),
            summarizer=FakeSummarizer(fail_for={"Paper 3 "}),
        )
        result = run(ctx, max_results=5)

        assert [p.id for p in result.papers] == [r.id for r in records]
        third = result.papers[2]
        assert third.provenance["extraction"] == "abstract-fallback"
        assert third.provenance["summary"] == "fallback"
        assert result.papers[0].provenance["summary"] == "fake-llm"

    def test_everything_down_still_produces_results(self, failing_context):
        result = run(failing_context, "machine learning healthcare", max_results=3)

        assert len(result.papers) == 3
        for paper in result.papers:
            assert paper.record.source == "fallback"
            assert paper.summary.provenance == "fallback"
            assert 6 <= paper.summary.importance <= 9
            assert paper.embedding_provenance == "placeholder"
            assert paper.audio.url.startswith("/audio/")
            assert Path(paper.audio.path).exists()

    def test_zero_survivors_is_batch_failure(self, make_context):
        ctx = make_context(extractor=FakeExtractor(fail=True))
        with pytest.raises(BatchFailure) as exc_info:
            run(ctx, max_results=5, use_fallbacks=False)
        assert len(exc_info.value.failures) == 5

    def test_strict_fetch_failure_is_batch_failure(self, make_context):
        ctx = make_context(source=FakeSource(fail=True))
        with pytest.raises(BatchFailure):
            run(ctx, use_fallbacks=False)

    def test_empty_fetch_is_batch_failure(self, make_context):
        with pytest.raises(BatchFailure, match="No papers"):
            run(make_context(source=FakeSource([])))

    @pytest.mark.parametrize("requested,expected", [(0, 1), (3, 3), (50, 20)])
    def test_max_results_clamped(self, make_context, requested, expected):
        source = FakeSource([make_record(i) for i in range(1, 26)])
        result = run(make_context(source=source), max_results=requested)
        assert source.calls == [("machine learning", expected)]
        assert len(result.papers) == expected

    def test_default_max_results_from_settings(self, make_context):
        source = FakeSource([make_record(i) for i in range(1, 10)])
        result = run(make_context(source=source, max_papers_per_query=2))
        assert len(result.papers) == 2


class TestValidation:

    @pytest.mark.parametrize("query", ["", "<script>alert(1)</script>", "x" * 501])
    def test_rejected_query_never_fetches(self, make_context, query):
        source = FakeSource([make_record(1)])
        with pytest.raises(QueryValidationError) as exc_info:
            run(make_context(source=source), query)
        assert not exc_info.value.verdict.ok
        assert source.calls == []


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

class TestReports:

    def test_report_over_all_papers(self, make_context):
        ctx = make_context()
        result = run(ctx, max_results=5, generate_report=True)

        report = result.report
        assert report.provenance == "llm:fake-llm"
        assert report.paper_ids == [p.id for p in result.papers]
        assert report.title == "Research Report: machine learning"
        assert report.audio.url.startswith("/audio/")
        assert PipelineOrchestrator(ctx).get_report(report.id) is report

    def test_template_narrative_when_llm_down(self, make_context):
        ctx = make_context(summarizer=FakeSummarizer(narrative_fail=True))
        result = run(ctx, generate_report=True)
        assert result.report.provenance == "template"
        assert result.report.narrative.startswith("Welcome")

    def test_strict_report_failure_keeps_papers(self, make_context):
        ctx = make_context(summarizer=FakeSummarizer(narrative_fail=True))
        result = run(ctx, max_results=5, generate_report=True, use_fallbacks=False)
        assert result.report is None
        assert "compose_report" in result.report_error
        assert result.succeeded == 5

    def test_no_report_unless_asked(self, make_context):
        result = run(make_context())
        assert result.report is None
        assert result.report_error is None

    def test_unknown_report(self, make_context):
        assert PipelineOrchestrator(make_context()).get_report("missing") is None


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class TestLookups:

    def test_query_similar_excludes_self(self, make_context):
        ctx = make_context()
        result = run(ctx, max_results=5)
        orchestrator = PipelineOrchestrator(ctx)
        target = result.papers[0].id

        matches = orchestrator.query_similar(target, k=3)
        assert len(matches) == 3
        assert target not in [pid for pid, _ in matches]
        scores = [s for _, s in matches]
        assert scores == sorted(scores, reverse=True)

    def test_query_similar_unknown_paper(self, make_context):
        assert PipelineOrchestrator(make_context()).query_similar("nope") is None

    def test_query_similar_can_skip_placeholders(self, failing_context):
        result = run(failing_context, max_results=3)
        orchestrator = PipelineOrchestrator(failing_context)
        assert orchestrator.query_similar(result.papers[0].id, include_placeholders=False) == []

    def test_get_list_search_delete(self, make_context):
        ctx = make_context()
        result = run(ctx, max_results=3)
        orchestrator = PipelineOrchestrator(ctx)
        pid = result.papers[1].id

        assert orchestrator.get_paper(pid).record.title == "Paper 2 on Machine Learning"
        assert len(orchestrator.list_papers()) == 3
        assert [p.id for p in orchestrator.search_papers("Paper 2 ")] == [pid]

        assert orchestrator.delete_paper(pid)
        assert orchestrator.get_paper(pid) is None
        assert orchestrator.query_similar(pid) is None
        assert not orchestrator.delete_paper(pid)

    def test_paper_stats(self, make_context):
        ctx = make_context()
        run(ctx, max_results=4, generate_report=True)
        stats = PipelineOrchestrator(ctx).paper_stats()
        assert stats["total_papers"] == 4
        assert stats["indexed_vectors"] == 4
        assert stats["reports_in_memory"] == 1
        assert stats["total_reports"] == 1

    def test_index_rehydrated_from_store(self, make_context, settings):
        first = make_context()
        result = run(first, max_results=2)
        first.store.close()

        second = make_context()
        assert len(second.index) == 2
        assert PipelineOrchestrator(second).query_similar(result.papers[0].id, k=1) is not None

    def test_cleanup_audio(self, make_context):
        ctx = make_context()
        result = run(ctx, max_results=2)
        old = Path(result.papers[0].audio.path)
        old_mtime(old, 48)

        summary = PipelineOrchestrator(ctx).cleanup_audio()
        assert summary["removed_files"] == 1
        assert not old.exists()
        assert Path(result.papers[1].audio.path).exists()


# ---------------------------------------------------------------------------
# Search history
# ---------------------------------------------------------------------------

class TestHistory:

    def test_completed_searches_listed_newest_first(self, make_context):
        ctx = make_context()
        run(ctx, "graph neural networks", max_results=2)
        run(ctx, "protein folding", max_results=3, generate_report=True)

        history = PipelineOrchestrator(ctx).search_history()
        assert [h["query"] for h in history] == ["protein folding", "graph neural networks"]
        assert history[0]["paper_count"] == 3
        assert history[0]["report_id"] is not None
        assert history[1]["report_id"] is None
        assert PipelineOrchestrator(ctx).paper_stats()["total_searches"] == 2

    def test_failed_search_not_recorded(self, make_context):
        ctx = make_context(source=FakeSource([]))
        with pytest.raises(BatchFailure):
            run(ctx)
        assert PipelineOrchestrator(ctx).search_history() == []

    def test_history_write_failure_does_not_fail_search(self, make_context, tmp_path):
        ctx = make_context(store=BrokenStore(str(tmp_path / "broken.db")))
        result = run(ctx, max_results=2)
        assert result.succeeded == 2
        assert PipelineOrchestrator(ctx).search_history() == []

    def test_limit(self, make_context):
        ctx = make_context()
        for q in ("a b", "c d", "e f"):
            run(ctx, q, max_results=1)
        assert len(PipelineOrchestrator(ctx).search_history(limit=2)) == 2
