"""
PDF text extraction.

Downloads the paper with httpx and parses it with pypdf. Publisher landing
pages (HTML served at a "pdf" link) are parsed with BeautifulSoup instead.
Long texts are cut down to their relevant sections.
"""

import asyncio
import io
import logging
from typing import Callable, Optional

import httpx
from bs4 import BeautifulSoup
from pypdf import PdfReader

from scholarcast.config import PDF_TIMEOUT, RELEVANT_SECTIONS_CHARS, USER_AGENT
from scholarcast.models import ExtractedText, RawPaperRecord
from scholarcast.utils import extract_content_from_html, extract_relevant_sections, is_safe_url

logger = logging.getLogger(__name__)

MAX_PDF_BYTES = 25 * 1024 * 1024


def parse_pdf_bytes(content: bytes) -> ExtractedText:
    reader = PdfReader(io.BytesIO(content))
    pages = []
    for page in reader.pages:
        pages.append(page.extract_text() or "")
    info = {}
    if reader.metadata:
        info = {k.lstrip("/"): str(v) for k, v in reader.metadata.items()}
    return ExtractedText(
        text="\n".join(pages).strip(),
        pages=len(reader.pages),
        source="pdf",
        metadata=info,
    )


class PdfTextExtractor:
    """Fetch a PDF and return its text."""

    def __init__(self, timeout: float = PDF_TIMEOUT, max_chars: int = RELEVANT_SECTIONS_CHARS,
                 client: Optional[httpx.AsyncClient] = None,
                 url_guard: Callable[[str], bool] = is_safe_url):
        self.max_chars = max_chars
        self.url_guard = url_guard
        self._http = client or httpx.AsyncClient(
            timeout=timeout, follow_redirects=True, headers={"User-Agent": USER_AGENT}
        )

    async def close(self):
        await self._http.aclose()

    async def extract(self, pdf_url: str) -> ExtractedText:
        if not await asyncio.to_thread(self.url_guard, pdf_url):
            raise ValueError(f"Refusing to fetch unsafe URL: {pdf_url}")

        resp = await self._http.get(pdf_url)
        resp.raise_for_status()
        if len(resp.content) > MAX_PDF_BYTES:
            raise ValueError(f"PDF too large ({len(resp.content)} bytes): {pdf_url}")

        content_type = resp.headers.get("content-type", "").lower()
        if "pdf" in content_type or resp.content[:5] == b"%PDF-":
            extracted = await asyncio.to_thread(parse_pdf_bytes, resp.content)
        elif "html" in content_type:
            soup = BeautifulSoup(resp.text, "lxml")
            extracted = ExtractedText(
                text=extract_content_from_html(soup), pages=0, source="pdf",
                metadata={"content_type": "html"},
            )
        else:
            raise ValueError(f"Unsupported content type '{content_type}' at {pdf_url}")

        if not extracted.text.strip():
            raise ValueError(f"No text could be extracted from {pdf_url}")

        if len(extracted.text) > self.max_chars:
            extracted.metadata["full_length"] = len(extracted.text)
            extracted.text = extract_relevant_sections(extracted.text, self.max_chars)
        extracted.metadata["url"] = pdf_url
        logger.info(f"Extracted {len(extracted.text)} chars ({extracted.pages} pages) from {pdf_url}")
        return extracted


def abstract_stub(record: RawPaperRecord):
    """Fallback extractor: the abstract stands in for the full text."""
    def _extract(pdf_url: str) -> ExtractedText:
        return ExtractedText.from_record(record, reason=f"could not extract {pdf_url}")
    return _extract
