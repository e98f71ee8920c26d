"""Shared utility functions for the scholarcast pipeline."""
import asyncio
import ipaddress
import json
import logging
import random
import re
import socket
import time
from typing import Optional
from urllib.parse import urlparse

import openai
from bs4 import BeautifulSoup

from scholarcast.config import RELEVANT_SECTIONS_CHARS, WORDS_PER_MINUTE

logger = logging.getLogger(__name__)


def strip_think_blocks(text: str) -> str:
    """Remove <think>...</think> blocks from LLM output (reasoning-model safety net)."""
    return re.sub(r"<think>.*?</think>", "", text, flags=re.DOTALL).strip()


def extract_json_object(text: str) -> Optional[dict]:
    """Pull the first {...} object out of an LLM reply, tolerating prose around it."""
    if not text:
        return None
    text = strip_think_blocks(text)
    text = re.sub(r"^```(?:json)?\s*|\s*```$", "", text.strip())
    match = re.search(r'\{.*\}', text, re.DOTALL)
    if not match:
        return None
    try:
        data = json.loads(match.group())
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def extract_content_from_html(soup: BeautifulSoup, max_chars: int = 8000) -> str:
    """Extract meaningful text content from a parsed landing page.

    Priority: <main>, <article>, content-classed <div>, then <body>.
    Script, style and navigation chrome are removed first.
    """
    for tag in soup.find_all(["script", "style", "nav", "footer", "header", "aside", "iframe"]):
        tag.decompose()

    content_element = (
        soup.find("main")
        or soup.find("article")
        or soup.find("div", class_=re.compile(r"abstract|content|article-body|fulltext", re.I))
        or soup.find("body")
    )

    if content_element:
        text = content_element.get_text(separator=" ", strip=True)
    else:
        text = soup.get_text(separator=" ", strip=True)

    text = re.sub(r"\s+", " ", text).strip()
    return text[:max_chars] if text else ""


def is_safe_url(url: str) -> bool:
    """Check that a URL does not target private/link-local IP ranges (SSRF guard).

    Returns True if the URL resolves to a public IP or cannot be resolved.
    Only HTTP/HTTPS schemes are allowed.
    """
    try:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            return False
        hostname = parsed.hostname
        if not hostname:
            return False
        for info in socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM):
            addr = info[4][0]
            ip = ipaddress.ip_address(addr)
            if ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved:
                return False
    except (socket.gaierror, ValueError, OSError):
        # DNS failure: allow, the fetch will fail on its own
        return True
    return True


def safe_int(value, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(float(value))
    except (ValueError, TypeError):
        return default


def truncate_text(text: str, max_chars: int) -> str:
    if not text or len(text) <= max_chars:
        return text or ""
    return text[:max_chars]


def sanitize_filename(name: str) -> str:
    """Lowercase, alphanumerics and single underscores only."""
    name = re.sub(r"[^a-z0-9]", "_", name, flags=re.I)
    name = re.sub(r"_+", "_", name).strip("_")
    return name.lower() or "untitled"


def generate_paper_id(title: str, first_author: str, timestamp_ms: Optional[int] = None) -> str:
    """Build `<title[:20]>_<author[:10]>_<ms timestamp>`.

    Deterministic for a given timestamp, so the same paper fetched twice
    gets two different ids.
    """
    clean_title = re.sub(r"[^a-z0-9]", "", (title or "untitled").lower())[:20]
    clean_author = re.sub(r"[^a-z0-9]", "", (first_author or "unknown").lower())[:10]
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{clean_title or 'untitled'}_{clean_author or 'unknown'}_{timestamp_ms}"


def estimate_duration_seconds(text: str, words_per_minute: int = WORDS_PER_MINUTE) -> int:
    """Speaking-time estimate from word count. Never below one second."""
    words = len((text or "").split())
    return max(1, round(words / words_per_minute * 60))


def format_duration(seconds: int) -> str:
    hours, rem = divmod(int(seconds), 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


# --- Relevant-section extraction for long PDFs ---

_SECTION_KEYWORDS = {
    "abstract": ("abstract", "summary"),
    "introduction": ("introduction", "background"),
    "methodology": ("method", "approach", "methodology"),
    "results": ("results", "findings", "experiments"),
    "conclusion": ("conclusion", "discussion", "future work"),
}
_SECTION_BOUNDARIES = ("introduction", "method", "results", "conclusion", "references", "bibliography")
_HEADING_MAX_LEN = 100


def _extract_section(lines, keywords) -> str:
    collected = []
    in_section = False
    for raw in lines:
        line = raw.strip().lower()
        is_heading = len(line) < _HEADING_MAX_LEN
        if not in_section:
            if is_heading and any(k in line for k in keywords):
                in_section = True
            continue
        if is_heading and any(k in line for k in _SECTION_BOUNDARIES):
            break
        collected.append(raw)
    return "\n".join(collected).strip()


def extract_relevant_sections(text: str, max_chars: int = RELEVANT_SECTIONS_CHARS) -> str:
    """Keep the abstract/intro/method/results/conclusion sections of a paper.

    Falls back to the head of the text when no section heading is found.
    """
    if not text:
        return ""
    lines = text.split("\n")
    combined = ""
    for name, keywords in _SECTION_KEYWORDS.items():
        content = _extract_section(lines, keywords)
        if content and len(combined) < max_chars:
            combined += f"\n\n{name.upper()}:\n{content}\n"
    if not combined.strip():
        combined = text[:max_chars]
    return combined.strip()[:max_chars]


# --- Retry with exponential backoff ---

async def retry_async(fn, *args, max_retries: int = 2, base_delay: float = 5.0, **kwargs):
    """Await fn(*args, **kwargs), retrying transient failures.

    Backoff is base_delay * 2**attempt with +/-30% jitter.
    Fast-fails on non-transient errors (BadRequestError, AuthenticationError).
    """
    name = getattr(fn, "__qualname__", repr(fn))
    for attempt in range(max_retries + 1):
        try:
            return await fn(*args, **kwargs)
        except (openai.BadRequestError, openai.AuthenticationError):
            raise
        except (ConnectionError, TimeoutError, OSError,
                openai.APIConnectionError, openai.APITimeoutError,
                openai.InternalServerError) as e:
            if attempt < max_retries:
                base_wait = base_delay * (2 ** attempt)
                jitter = random.uniform(-base_wait * 0.3, base_wait * 0.3)
                wait = base_wait + jitter
                logger.warning(
                    f"{name}() attempt {attempt+1}/{max_retries+1} "
                    f"failed ({type(e).__name__}), retrying in {wait:.1f}s..."
                )
                await asyncio.sleep(wait)
            else:
                logger.error(f"{name}() failed after {max_retries+1} attempts: {e}")
                raise
