"""
Speech synthesis and audio-file bookkeeping.

- OpenAISpeechSynthesizer: POST /audio/speech on an OpenAI-compatible server,
  long texts are split into chunks and the MP3 bytes concatenated
- write_silent_placeholder(): offline fallback, a silent WAV whose length
  matches the estimated speaking time
- cleanup_expired_audio(): age-based sweep of the audio directory
"""

import asyncio
import logging
import os
import re
import time
import uuid
from pathlib import Path
from typing import List, Optional

import httpx
import numpy as np
import soundfile as sf

from scholarcast.config import PLACEHOLDER_SAMPLE_RATE, TTS_TIMEOUT
from scholarcast.models import PLACEHOLDER, AudioArtifact
from scholarcast.utils import estimate_duration_seconds, sanitize_filename

logger = logging.getLogger(__name__)

AUDIO_URL_PREFIX = "/audio"
TTS_CHUNK_CHARS = 4000


def make_audio_filename(stem: str, ext: str) -> str:
    """Unique per call, so concurrent writers never share a file."""
    return f"{sanitize_filename(stem)[:60]}_{uuid.uuid4().hex[:12]}.{ext}"


def audio_url(filename: str) -> str:
    return f"{AUDIO_URL_PREFIX}/{filename}"


def chunk_text(text: str, max_chars: int = TTS_CHUNK_CHARS) -> List[str]:
    """Split on sentence boundaries into chunks no longer than max_chars."""
    sentences = re.split(r"(?<=[.!?])\s+", text.strip())
    chunks, current = [], ""
    for sentence in sentences:
        while len(sentence) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(sentence[:max_chars])
            sentence = sentence[max_chars:]
        if current and len(current) + 1 + len(sentence) > max_chars:
            chunks.append(current)
            current = sentence
        else:
            current = f"{current} {sentence}".strip()
    if current:
        chunks.append(current)
    return chunks


class OpenAISpeechSynthesizer:
    def __init__(self, base_url: str, api_key: str, storage_path: Path,
                 model: str = "tts-1", voice: str = "alloy", timeout: float = TTS_TIMEOUT,
                 client: Optional[httpx.AsyncClient] = None):
        self.endpoint = f"{base_url.rstrip('/')}/audio/speech"
        self.api_key = api_key
        self.storage_path = Path(storage_path)
        self.model = model
        self.voice = voice
        self._http = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        await self._http.aclose()

    @property
    def provenance(self) -> str:
        return self.model

    async def _speak(self, text: str) -> bytes:
        resp = await self._http.post(
            self.endpoint,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={"model": self.model, "voice": self.voice, "input": text, "response_format": "mp3"},
        )
        resp.raise_for_status()
        if not resp.content:
            raise ValueError("TTS endpoint returned no audio")
        return resp.content

    async def synthesize(self, text: str, stem: str) -> AudioArtifact:
        if not text or not text.strip():
            raise ValueError("Cannot synthesize empty text")
        if not self.api_key:
            raise RuntimeError("No TTS API key configured")
        audio = b"".join([await self._speak(chunk) for chunk in chunk_text(text)])

        filename = make_audio_filename(stem, "mp3")
        path = self.storage_path / filename
        await asyncio.to_thread(_write_bytes, path, audio)
        logger.info(f"TTS wrote {len(audio)} bytes to {path}")
        return AudioArtifact(
            path=str(path),
            url=audio_url(filename),
            filename=filename,
            estimated_duration_seconds=estimate_duration_seconds(text),
            text=text,
            provenance=self.provenance,
        )


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def write_silent_placeholder(text: str, stem: str, storage_path: Path,
                             sample_rate: int = PLACEHOLDER_SAMPLE_RATE) -> AudioArtifact:
    """Write a silent 16-bit mono WAV as long as the text would take to read."""
    duration = estimate_duration_seconds(text)
    filename = make_audio_filename(stem, "wav")
    path = Path(storage_path) / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    silence = np.zeros(duration * sample_rate, dtype=np.int16)
    sf.write(str(path), silence, sample_rate, subtype="PCM_16")
    logger.info(f"Wrote {duration}s silent placeholder to {path}")
    return AudioArtifact(
        path=str(path),
        url=audio_url(filename),
        filename=filename,
        estimated_duration_seconds=duration,
        text=text,
        provenance=PLACEHOLDER,
    )


class SilentAudioWriter:
    """Fallback synthesizer with the same call shape as OpenAISpeechSynthesizer."""

    def __init__(self, storage_path: Path, sample_rate: int = PLACEHOLDER_SAMPLE_RATE):
        self.storage_path = Path(storage_path)
        self.sample_rate = sample_rate

    async def synthesize(self, text: str, stem: str) -> AudioArtifact:
        return await asyncio.to_thread(
            write_silent_placeholder, text, stem, self.storage_path, self.sample_rate
        )


def cleanup_expired_audio(root: Path, max_age_hours: float = 24,
                          now: Optional[float] = None) -> dict:
    """Delete files older than max_age_hours under root, then prune empty dirs.

    Walks bottom-up so a directory emptied by this sweep is removed in the
    same pass. The root itself is kept.
    """
    root = Path(root)
    stats = {"removed_files": 0, "removed_dirs": 0, "errors": 0}
    if not root.is_dir():
        return stats
    cutoff = (now if now is not None else time.time()) - max_age_hours * 3600

    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        for name in filenames:
            fpath = Path(dirpath) / name
            try:
                if fpath.stat().st_mtime < cutoff:
                    fpath.unlink()
                    stats["removed_files"] += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                stats["errors"] += 1
                logger.warning(f"Could not remove {fpath}: {e}")
        current = Path(dirpath)
        if current == root:
            continue
        try:
            if not any(current.iterdir()):
                current.rmdir()
                stats["removed_dirs"] += 1
        except OSError as e:
            stats["errors"] += 1
            logger.warning(f"Could not remove directory {current}: {e}")

    if stats["removed_files"] or stats["removed_dirs"]:
        logger.info(
            f"Audio cleanup: removed {stats['removed_files']} files and "
            f"{stats['removed_dirs']} directories from {root}"
        )
    return stats
