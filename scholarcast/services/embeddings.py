"""Embedding backends: OpenAI-compatible embeddings plus a hashed placeholder."""

import hashlib
import logging
from typing import List

import numpy as np
from openai import AsyncOpenAI

from scholarcast.config import EMBEDDING_DIMENSIONS, EMBEDDING_INPUT_CHARS
from scholarcast.utils import retry_async, truncate_text

logger = logging.getLogger(__name__)


class OpenAIEmbedder:
    def __init__(self, client: AsyncOpenAI, model: str,
                 dimensions: int = EMBEDDING_DIMENSIONS, max_retries: int = 1,
                 retry_delay: float = 5.0):
        self.client = client
        self.model = model
        self.dimensions = dimensions
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def _create(self, text: str) -> List[float]:
        resp = await self.client.embeddings.create(model=self.model, input=text)
        return list(resp.data[0].embedding)

    async def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        values = await retry_async(
            self._create, truncate_text(text, EMBEDDING_INPUT_CHARS),
            max_retries=self.max_retries, base_delay=self.retry_delay,
        )
        if len(values) != self.dimensions:
            raise ValueError(
                f"Embedding model {self.model} returned {len(values)} dims, expected {self.dimensions}"
            )
        return values


def placeholder_embedding(text: str, dimensions: int = EMBEDDING_DIMENSIONS) -> List[float]:
    """Deterministic unit vector seeded from a hash of the text.

    Structural stand-in only: similar texts do not get similar vectors.
    """
    seed = int.from_bytes(hashlib.sha256((text or "").encode("utf-8")).digest()[:8], "big")
    vec = np.random.default_rng(seed).standard_normal(dimensions)
    norm = np.linalg.norm(vec)
    if norm > 0:
        vec = vec / norm
    return vec.tolist()
