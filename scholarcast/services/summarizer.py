"""
Summarization backends.

LLMSummarizer talks to any OpenAI-compatible chat endpoint and validates the
reply against SummaryPayload. TemplateSummarizer is the local degradation:
no network, deterministic text, importance drawn from a configurable range.
"""

import hashlib
import logging
import random
from typing import Sequence, Tuple

from openai import AsyncOpenAI
from pydantic import ValidationError

from scholarcast.config import REPORT_MAX_SEGMENTS, SUMMARY_INPUT_CHARS
from scholarcast.errors import SummaryParseError
from scholarcast.models import FALLBACK, ProcessedPaper, SummaryPayload, SummaryResult
from scholarcast.utils import extract_json_object, retry_async, strip_think_blocks, truncate_text

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = "You are a concise research summarizer. Always return valid JSON."

SUMMARY_PROMPT = """You are a concise research summarizer for researchers and students.

Title: {title}
Abstract: {abstract}
{extra}
Task:
1) Give a 2-sentence plain-language summary of the paper's key contribution.
2) List 3 concise bullets covering: Method / Novelty / Key Result
3) Rate importance to the queried topic as a number 0-10.

Return JSON only in this exact format:
{{
  "summary": "Brief 2-sentence summary in plain English",
  "bullets": [
    "Method: Description of the approach used",
    "Novelty: What's new or innovative about this work",
    "Key Result: Main finding or achievement"
  ],
  "importance": 8
}}"""

NARRATIVE_SYSTEM_PROMPT = (
    "You are a research podcast host creating engaging summaries of academic research. "
    "Always write in a conversational, engaging style suitable for audio presentation."
)

NARRATIVE_PROMPT = """You are a research podcast host creating an engaging summary of recent research on "{query}".

Here are {count} recent papers on this topic:

{papers}

Create a compelling podcast-style summary that:
1. Opens with an engaging introduction about the topic
2. Discusses the key findings from the most important papers
3. Highlights trends and patterns across the research
4. Mentions specific studies and their contributions
5. Concludes with implications and future directions
6. Uses conversational language suitable for audio
7. Is approximately 3-5 minutes when read aloud (aim for 500-800 words)

Return only the spoken text, no headings or stage directions."""


def build_summary_prompt(title: str, abstract: str, text: str) -> str:
    extra = ""
    if text:
        extra = f"\nAdditional Content: {truncate_text(text, SUMMARY_INPUT_CHARS)}...\n"
    return SUMMARY_PROMPT.format(title=title, abstract=abstract or "(none)", extra=extra)


def parse_summary(raw: str, provenance: str) -> SummaryResult:
    """Validate an LLM reply. Raises SummaryParseError on anything off-schema."""
    data = extract_json_object(raw)
    if data is None:
        raise SummaryParseError(f"No JSON object in summarizer output: {raw[:200]!r}")
    try:
        payload = SummaryPayload.model_validate(data)
    except ValidationError as e:
        raise SummaryParseError(f"Summary JSON failed validation: {e.error_count()} error(s)") from e
    return SummaryResult.from_payload(payload, provenance)


def _paper_block(index: int, paper: ProcessedPaper) -> str:
    authors = ", ".join(paper.record.authors) or "Unknown Authors"
    return (
        f"Paper {index}: \"{paper.record.title}\" by {authors}\n"
        f"Summary: {paper.summary.summary}\n"
        f"Key Points: {'. '.join(paper.summary.bullets)}\n"
        f"Importance: {paper.summary.importance}/10\n"
        f"Venue: {paper.record.venue or 'Unknown'}"
    )


class LLMSummarizer:
    """Summaries and report narratives from an OpenAI-compatible chat model."""

    def __init__(self, client: AsyncOpenAI, model: str, max_retries: int = 1,
                 retry_delay: float = 5.0):
        self.client = client
        self.model = model
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    @property
    def provenance(self) -> str:
        return self.model

    async def _complete(self, system: str, user: str, max_tokens: int, temperature: float) -> str:
        resp = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        content = resp.choices[0].message.content or ""
        return strip_think_blocks(content.strip())

    async def summarize(self, title: str, abstract: str, text: str) -> SummaryResult:
        raw = await retry_async(
            self._complete, SUMMARY_SYSTEM_PROMPT, build_summary_prompt(title, abstract, text),
            500, 0.3, max_retries=self.max_retries, base_delay=self.retry_delay,
        )
        return parse_summary(raw, self.provenance)

    async def compose_narrative(self, query: str, papers: Sequence[ProcessedPaper]) -> str:
        blocks = "\n\n".join(_paper_block(i, p) for i, p in enumerate(papers, 1))
        prompt = NARRATIVE_PROMPT.format(query=query, count=len(papers), papers=blocks)
        narrative = await retry_async(
            self._complete, NARRATIVE_SYSTEM_PROMPT, prompt, 2000, 0.3,
            max_retries=self.max_retries, base_delay=self.retry_delay,
        )
        if not narrative.strip():
            raise ValueError("Narrative model returned empty text")
        return narrative


class TemplateSummarizer:
    """Offline stand-in for LLMSummarizer.

    Importance is pseudo-random within importance_range but seeded from the
    title, so the same paper always gets the same score.
    """

    def __init__(self, importance_range: Tuple[int, int] = (6, 9),
                 max_segments: int = REPORT_MAX_SEGMENTS):
        low, high = importance_range
        if low > high:
            low, high = high, low
        self.importance_range = (low, high)
        self.max_segments = max_segments

    def _importance(self, title: str) -> int:
        seed = int(hashlib.sha256((title or "").encode("utf-8")).hexdigest()[:16], 16)
        return random.Random(seed).randint(*self.importance_range)

    def summarize(self, title: str, abstract: str, text: str = "") -> SummaryResult:
        lead = (abstract or "").strip()
        if lead:
            sentences = [s.strip() for s in lead.replace("\n", " ").split(". ") if s.strip()]
            lead = ". ".join(sentences[:2]).rstrip(".") + "."
        else:
            lead = "No abstract was available for this paper."
        return SummaryResult(
            summary=f"This paper, \"{title}\", presents new research findings. {lead}",
            bullets=[
                f"Method: Computational approach described in {title}",
                "Novelty: New technique or framework presented",
                "Key Result: Improvements reported over existing methods",
            ],
            importance=self._importance(title),
            provenance=FALLBACK,
        )

    def compose_narrative(self, query: str, papers: Sequence[ProcessedPaper]) -> str:
        top = sorted(papers, key=lambda p: p.summary.importance, reverse=True)[:self.max_segments]
        parts = [
            f"Welcome to the scholarcast research report. Today we're exploring the latest research on {query}.",
            f"We've analyzed {len(papers)} recent papers, and here are the key findings.",
        ]
        for i, paper in enumerate(top):
            opener = "First, let's look at" if i == 0 else "Next, we have"
            authors = ", ".join(paper.record.authors) or "researchers"
            parts.append(
                f"{opener} \"{paper.record.title}\" by {authors}. "
                f"{paper.summary.summary} "
                f"The key points are: {'. '.join(paper.summary.bullets)}. "
                f"This work was published in {paper.record.venue or 'a leading venue'} "
                f"and has an importance score of {paper.summary.importance} out of 10."
            )
        parts.append(
            f"In conclusion, the research on {query} shows steady progress across several approaches. "
            "Thank you for listening to this scholarcast research report."
        )
        return "\n\n".join(parts)
