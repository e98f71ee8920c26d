"""
Uploaded-document conversion.

A PDF sent by the user runs through the same extract → summarize → synthesize
stages as a fetched paper and comes back as a narrated script. Uploads are
not embedded or stored; only the audio file lands in the storage root.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Optional

from scholarcast.adapter import FallbackAdapter
from scholarcast.config import (
    DOCUMENT_ABSTRACT_CHARS,
    DOCUMENT_SECTION_CHARS,
    LLM_TIMEOUT,
    PDF_TIMEOUT,
    TTS_TIMEOUT,
)
from scholarcast.models import FALLBACK, AudioArtifact, ExtractedText, SummaryResult, now_iso
from scholarcast.services.base import SpeechSynthesizer, Summarizer
from scholarcast.services.extraction import parse_pdf_bytes
from scholarcast.utils import extract_relevant_sections

logger = logging.getLogger(__name__)


def document_title(filename: str) -> str:
    """Upload name without directories or extension."""
    stem = PurePath((filename or "").replace("\\", "/")).stem.strip()
    return stem or "Untitled document"


def read_pdf_text(content: bytes) -> ExtractedText:
    extracted = parse_pdf_bytes(content)
    if not extracted.text.strip():
        raise ValueError("No text could be extracted from the uploaded document")
    return extracted


def sample_document(title: str) -> ExtractedText:
    """Stand-in text when the upload cannot be parsed."""
    text = (
        f"This is a sample document titled \"{title}\". The document contains information "
        "about its topic and provides analysis and insights.\n\n"
        "The main findings include several key points that are worth noting. The methodology "
        "follows standard academic practice.\n\n"
        "The conclusions suggest implications for future research and practical applications."
    )
    return ExtractedText(text=text, pages=0, source=FALLBACK, metadata={"title": title})


def compose_document_script(title: str, summary: SummaryResult) -> str:
    points = "\n".join(f"{i}. {bullet}" for i, bullet in enumerate(summary.bullets, 1))
    return (
        f"Welcome to scholarcast. Today we're exploring the document \"{title}\".\n\n"
        f"{summary.summary}\n\n"
        f"Let me break down the key points for you:\n\n{points}\n\n"
        "Thank you for listening to this scholarcast episode."
    )


@dataclass
class DocumentConversion:
    id: str
    title: str
    original_name: str
    summary: SummaryResult
    audio: AudioArtifact
    content: str
    extraction_source: str
    pages: int = 0
    created_at: str = field(default_factory=now_iso)

    @property
    def provenance(self) -> dict:
        return {
            "extraction": self.extraction_source,
            "summary": self.summary.provenance,
            "audio": self.audio.provenance,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "original_name": self.original_name,
            "summary": self.summary.summary,
            "bullets": list(self.summary.bullets),
            "importance": self.summary.importance,
            "audio_url": self.audio.url,
            "audio": self.audio.to_dict(),
            "duration": self.audio.estimated_duration_seconds,
            "pages": self.pages,
            "content": self.content,
            "provenance": self.provenance,
            "created_at": self.created_at,
        }


class DocumentConverter:
    def __init__(self, summarizer: Summarizer, fallback_summarizer, synthesizer: SpeechSynthesizer,
                 fallback_synthesizer, max_chars: int = DOCUMENT_SECTION_CHARS):
        self.summarizer = summarizer
        self.fallback_summarizer = fallback_summarizer
        self.synthesizer = synthesizer
        self.fallback_synthesizer = fallback_synthesizer
        self.max_chars = max_chars

    async def convert(self, content: bytes, filename: str,
                      adapter: Optional[FallbackAdapter] = None) -> DocumentConversion:
        adapter = adapter or FallbackAdapter()
        title = document_title(filename)
        document_id = str(uuid.uuid4())

        async def parse(data: bytes) -> ExtractedText:
            return await asyncio.to_thread(read_pdf_text, data)

        extracted = await adapter.invoke(
            "extract_document", parse, lambda data: sample_document(title), content,
            timeout=PDF_TIMEOUT, context=filename,
        )
        relevant = extract_relevant_sections(extracted.text, self.max_chars)
        summary = await adapter.invoke(
            "summarize", self.summarizer.summarize, self.fallback_summarizer.summarize,
            title, relevant[:DOCUMENT_ABSTRACT_CHARS], relevant,
            timeout=LLM_TIMEOUT, context=filename,
        )
        script = compose_document_script(title, summary)
        audio = await adapter.invoke(
            "synthesize", self.synthesizer.synthesize, self.fallback_synthesizer.synthesize,
            script, f"document_{document_id}",
            timeout=TTS_TIMEOUT, context=document_id,
        )
        logger.info(
            f"Converted '{filename}' ({extracted.pages} pages, extraction={extracted.source}, "
            f"summary={summary.provenance}, audio={audio.provenance})"
        )
        return DocumentConversion(
            id=document_id,
            title=title,
            original_name=filename,
            summary=summary,
            audio=audio,
            content=script,
            extraction_source=extracted.source,
            pages=extracted.pages,
        )
