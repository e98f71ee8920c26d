"""
scholarcast/models.py: dataclasses for pipeline records, plus the pydantic
schema used to validate LLM summary output.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

BULLET_LABELS = ("Method", "Novelty", "Key Result")
BULLET_PLACEHOLDER = "Not specified"
BULLET_COUNT = 3
IMPORTANCE_MIN = 0
IMPORTANCE_MAX = 10
DEFAULT_IMPORTANCE = 5

FALLBACK = "fallback"
PLACEHOLDER = "placeholder"


def now_iso() -> str:
    return datetime.now().isoformat()


# ---------------------------------------------------------------------------
# Query validation
# ---------------------------------------------------------------------------
class SecurityLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class QueryVerdict:
    ok: bool
    reason: Optional[str] = None
    security_level: Optional[SecurityLevel] = None
    note: Optional[str] = None
    validated_at: str = field(default_factory=now_iso)

    @classmethod
    def accepted(cls, level: SecurityLevel = SecurityLevel.HIGH, note: Optional[str] = None) -> "QueryVerdict":
        return cls(ok=True, security_level=level, note=note)

    @classmethod
    def rejected(cls, reason: str, level: SecurityLevel = SecurityLevel.LOW) -> "QueryVerdict":
        return cls(ok=False, reason=reason, security_level=level)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "reason": self.reason,
            "security_level": self.security_level.value if self.security_level else None,
            "note": self.note,
            "validated_at": self.validated_at,
        }


# ---------------------------------------------------------------------------
# Fetch stage
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RawPaperRecord:
    """One paper as returned by a source; never modified after fetch."""
    id: str
    title: str
    authors: Tuple[str, ...] = ()
    abstract: str = ""
    url: str = ""
    pdf_url: Optional[str] = None
    published_date: str = ""
    citations: int = 0
    venue: str = ""
    source: str = ""

    def __post_init__(self):
        object.__setattr__(self, "authors", tuple(self.authors))
        try:
            citations = int(self.citations or 0)
        except (TypeError, ValueError):
            citations = 0
        object.__setattr__(self, "citations", max(0, citations))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "authors": list(self.authors),
            "abstract": self.abstract,
            "url": self.url,
            "pdf_url": self.pdf_url,
            "published_date": self.published_date,
            "citations": self.citations,
            "venue": self.venue,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "RawPaperRecord":
        return cls(
            id=d["id"],
            title=d.get("title", ""),
            authors=tuple(d.get("authors") or ()),
            abstract=d.get("abstract", ""),
            url=d.get("url", ""),
            pdf_url=d.get("pdf_url"),
            published_date=d.get("published_date", ""),
            citations=d.get("citations", 0),
            venue=d.get("venue", ""),
            source=d.get("source", ""),
        )


# ---------------------------------------------------------------------------
# Extraction stage
# ---------------------------------------------------------------------------
@dataclass
class ExtractedText:
    text: str
    pages: int = 0
    source: str = "pdf"          # "pdf" | "abstract-fallback"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: RawPaperRecord, reason: str = "") -> "ExtractedText":
        """Abstract-only text; falls back to the title so the text is never empty."""
        text = (record.abstract or "").strip() or (record.title or "").strip() or "Untitled"
        meta = {"reason": reason} if reason else {}
        return cls(text=text, pages=0, source="abstract-fallback", metadata=meta)


# ---------------------------------------------------------------------------
# Summarize stage
# ---------------------------------------------------------------------------
class SummaryPayload(BaseModel):
    """Shape the summarizer must return. Anything else is a parse failure."""
    model_config = ConfigDict(extra="ignore")

    summary: str = Field(min_length=1)
    bullets: List[str] = Field(min_length=1)
    importance: float = DEFAULT_IMPORTANCE


def clamp_importance(value: Any) -> int:
    try:
        score = int(float(value))
    except (TypeError, ValueError):
        score = DEFAULT_IMPORTANCE
    return max(IMPORTANCE_MIN, min(IMPORTANCE_MAX, score))


def normalize_bullets(bullets: Optional[List[str]]) -> List[str]:
    cleaned = [str(b).strip() for b in (bullets or []) if str(b).strip()]
    cleaned = cleaned[:BULLET_COUNT]
    while len(cleaned) < BULLET_COUNT:
        cleaned.append(BULLET_PLACEHOLDER)
    return cleaned


@dataclass
class SummaryResult:
    """Summary with exactly three bullets and importance in [0, 10].

    Both invariants are applied on construction, whatever the backend sent.
    """
    summary: str
    bullets: List[str]
    importance: int
    provenance: str

    def __post_init__(self):
        self.summary = (self.summary or "").strip()
        self.bullets = normalize_bullets(self.bullets)
        self.importance = clamp_importance(self.importance)

    @classmethod
    def from_payload(cls, payload: SummaryPayload, provenance: str) -> "SummaryResult":
        return cls(
            summary=payload.summary,
            bullets=list(payload.bullets),
            importance=payload.importance,
            provenance=provenance,
        )

    @property
    def is_fallback(self) -> bool:
        return self.provenance == FALLBACK

    def embedding_text(self) -> str:
        return f"{self.summary} {' '.join(self.bullets)}".strip()


# ---------------------------------------------------------------------------
# Embed stage
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class EmbeddingVector:
    paper_id: str
    values: Tuple[float, ...]
    provenance: str

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(float(v) for v in self.values))

    @property
    def dimension(self) -> int:
        return len(self.values)

    @property
    def is_placeholder(self) -> bool:
        return self.provenance == PLACEHOLDER


# ---------------------------------------------------------------------------
# Synthesize stage
# ---------------------------------------------------------------------------
@dataclass
class AudioArtifact:
    path: str
    url: str
    filename: str
    estimated_duration_seconds: int
    text: str
    provenance: str

    @property
    def is_placeholder(self) -> bool:
        return self.provenance == PLACEHOLDER

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "url": self.url,
            "filename": self.filename,
            "estimated_duration_seconds": self.estimated_duration_seconds,
            "text": self.text,
            "provenance": self.provenance,
        }

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> Optional["AudioArtifact"]:
        if not d:
            return None
        return cls(
            path=d.get("path", ""),
            url=d.get("url", ""),
            filename=d.get("filename", ""),
            estimated_duration_seconds=int(d.get("estimated_duration_seconds", 0)),
            text=d.get("text", ""),
            provenance=d.get("provenance", ""),
        )


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------
@dataclass
class ProcessedPaper:
    """A paper that made it through every stage. Unit of persistence."""
    record: RawPaperRecord
    summary: SummaryResult
    embedding_provenance: str
    audio: Optional[AudioArtifact]
    extraction_source: str
    processed_at: str = field(default_factory=now_iso)
    persisted: bool = False

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def provenance(self) -> Dict[str, str]:
        return {
            "extraction": self.extraction_source,
            "summary": self.summary.provenance,
            "embedding": self.embedding_provenance,
            "audio": self.audio.provenance if self.audio else "",
        }

    def to_dict(self) -> dict:
        d = self.record.to_dict()
        d.update({
            "summary": self.summary.summary,
            "bullets": list(self.summary.bullets),
            "importance": self.summary.importance,
            "audio_url": self.audio.url if self.audio else None,
            "audio_path": self.audio.path if self.audio else None,
            "audio_duration": self.audio.estimated_duration_seconds if self.audio else 0,
            "audio": self.audio.to_dict() if self.audio else None,
            "extraction_source": self.extraction_source,
            "embedding_provenance": self.embedding_provenance,
            "provenance": self.provenance,
            "processed_at": self.processed_at,
            "persisted": self.persisted,
        })
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "ProcessedPaper":
        summary = SummaryResult(
            summary=d.get("summary", ""),
            bullets=d.get("bullets") or [],
            importance=d.get("importance", DEFAULT_IMPORTANCE),
            provenance=(d.get("provenance") or {}).get("summary", ""),
        )
        return cls(
            record=RawPaperRecord.from_dict(d),
            summary=summary,
            embedding_provenance=d.get("embedding_provenance", ""),
            audio=AudioArtifact.from_dict(d.get("audio")),
            extraction_source=d.get("extraction_source", ""),
            processed_at=d.get("processed_at") or now_iso(),
            persisted=bool(d.get("persisted", False)),
        )


@dataclass
class PaperFailureNote:
    paper_id: str
    title: str
    reason: str

    def to_dict(self) -> dict:
        return {"paper_id": self.paper_id, "title": self.title, "reason": self.reason}


@dataclass
class ReportArtifact:
    id: str
    query: str
    title: str
    narrative: str
    audio: Optional[AudioArtifact]
    paper_ids: List[str]
    provenance: str              # "llm:<model>" or "template"
    created_at: str = field(default_factory=now_iso)

    @property
    def paper_count(self) -> int:
        return len(self.paper_ids)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "query": self.query,
            "title": self.title,
            "narrative": self.narrative,
            "audio": self.audio.to_dict() if self.audio else None,
            "audio_url": self.audio.url if self.audio else None,
            "paper_count": self.paper_count,
            "paper_ids": list(self.paper_ids),
            "provenance": self.provenance,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ReportArtifact":
        return cls(
            id=d["id"],
            query=d.get("query", ""),
            title=d.get("title", ""),
            narrative=d.get("narrative", ""),
            audio=AudioArtifact.from_dict(d.get("audio")),
            paper_ids=list(d.get("paper_ids") or []),
            provenance=d.get("provenance", ""),
            created_at=d.get("created_at") or now_iso(),
        )


@dataclass
class SearchResult:
    query: str
    verdict: QueryVerdict
    papers: List[ProcessedPaper]
    attempted: int
    failures: List[PaperFailureNote] = field(default_factory=list)
    report: Optional[ReportArtifact] = None
    report_error: Optional[str] = None
    search_time: str = field(default_factory=now_iso)

    @property
    def succeeded(self) -> int:
        return len(self.papers)

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "verdict": self.verdict.to_dict(),
            "papers": [p.to_dict() for p in self.papers],
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failures": [f.to_dict() for f in self.failures],
            "report": self.report.to_dict() if self.report else None,
            "report_error": self.report_error,
            "search_time": self.search_time,
        }
