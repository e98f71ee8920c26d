"""Tests for scholarcast/models.py -- summary invariants and record round-trips."""

from conftest import make_record

from scholarcast.models import (
    BULLET_PLACEHOLDER,
    AudioArtifact,
    ExtractedText,
    ProcessedPaper,
    RawPaperRecord,
    SummaryResult,
)


# ---------------------------------------------------------------------------
# SummaryResult invariants
# ---------------------------------------------------------------------------

class TestSummaryResult:

    def test_pads_missing_bullets(self):
        s = SummaryResult(summary="x", bullets=["Method: a"], importance=5, provenance="m")
        assert s.bullets == ["Method: a", BULLET_PLACEHOLDER, BULLET_PLACEHOLDER]

    def test_truncates_extra_bullets(self):
        s = SummaryResult(summary="x", bullets=["a", "b", "c", "d", "e"], importance=5, provenance="m")
        assert s.bullets == ["a", "b", "c"]

    def test_blank_bullets_dropped_before_padding(self):
        s = SummaryResult(summary="x", bullets=["", "  ", "a"], importance=5, provenance="m")
        assert s.bullets == ["a", BULLET_PLACEHOLDER, BULLET_PLACEHOLDER]

    def test_importance_clamped(self):
        assert SummaryResult("x", [], 42, "m").importance == 10
        assert SummaryResult("x", [], -3, "m").importance == 0
        assert SummaryResult("x", [], "7.9", "m").importance == 7

    def test_unparseable_importance_defaults_to_five(self):
        assert SummaryResult("x", [], "very", "m").importance == 5
        assert SummaryResult("x", [], None, "m").importance == 5

    def test_embedding_text_joins_summary_and_bullets(self):
        s = SummaryResult("Sum.", ["a", "b", "c"], 5, "m")
        assert s.embedding_text() == "Sum. a b c"


# ---------------------------------------------------------------------------
# RawPaperRecord / ExtractedText
# ---------------------------------------------------------------------------

class TestRawPaperRecord:

    def test_negative_citations_clamped(self):
        r = make_record(1, citations=-5)
        assert r.citations == 0

    def test_authors_become_tuple(self):
        r = make_record(1, authors=["A", "B"])
        assert r.authors == ("A", "B")

    def test_dict_round_trip(self):
        r = make_record(2)
        assert RawPaperRecord.from_dict(r.to_dict()) == r


class TestExtractedText:

    def test_from_record_uses_abstract(self):
        t = ExtractedText.from_record(make_record(1))
        assert t.source == "abstract-fallback"
        assert t.text.startswith("Abstract of paper 1")

    def test_from_record_never_empty(self):
        t = ExtractedText.from_record(make_record(1, abstract="  "))
        assert t.text == "Paper 1 on Machine Learning"

    def test_from_record_without_title_or_abstract(self):
        t = ExtractedText.from_record(make_record(1, title="", abstract=""))
        assert t.text == "Untitled"


# ---------------------------------------------------------------------------
# ProcessedPaper
# ---------------------------------------------------------------------------

class TestProcessedPaper:

    def _paper(self):
        audio = AudioArtifact("/tmp/a.wav", "/audio/a.wav", "a.wav", 3, "text", "placeholder")
        return ProcessedPaper(
            record=make_record(3),
            summary=SummaryResult("Sum.", ["a", "b", "c"], 8, "fallback"),
            embedding_provenance="placeholder",
            audio=audio,
            extraction_source="abstract-fallback",
        )

    def test_to_dict_exposes_flat_fields(self):
        d = self._paper().to_dict()
        assert d["id"] == make_record(3).id
        assert d["audio_url"] == "/audio/a.wav"
        assert d["bullets"] == ["a", "b", "c"]
        assert d["provenance"] == {
            "extraction": "abstract-fallback",
            "summary": "fallback",
            "embedding": "placeholder",
            "audio": "placeholder",
        }

    def test_from_dict_restores_provenance(self):
        paper = self._paper()
        restored = ProcessedPaper.from_dict(paper.to_dict())
        assert restored.summary.provenance == "fallback"
        assert restored.audio.url == "/audio/a.wav"
        assert restored.record == paper.record
