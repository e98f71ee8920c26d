"""Centralized configuration for the scholarcast pipeline."""
import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# --- Model Configuration ---
LLM_BASE_URL = os.environ.get("LLM_BASE_URL", "https://api.openai.com/v1")
LLM_API_KEY = os.environ.get("LLM_API_KEY", os.environ.get("OPENAI_API_KEY", ""))
SMART_MODEL = os.environ.get("MODEL_NAME", "gpt-4o-mini")
EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSIONS = int(os.environ.get("EMBEDDING_DIMENSIONS", "1536"))
TTS_MODEL = os.environ.get("TTS_MODEL", "tts-1")
TTS_VOICE = os.environ.get("TTS_VOICE", "alloy")

# --- Service URLs ---
OPENALEX_EMAIL = os.environ.get("OPENALEX_EMAIL", "")
SECURITY_SCORER_URL = os.environ.get("SECURITY_SCORER_URL", "")
SECURITY_SCORER_API_KEY = os.environ.get("SECURITY_SCORER_API_KEY", "")

# --- Storage ---
STORAGE_PATH = os.environ.get("STORAGE_PATH", "./tmp/audio")
DB_PATH = os.environ.get("DB_PATH", os.path.expanduser("~/.cache/scholarcast/papers.db"))

# --- Timeouts (seconds) ---
FETCH_TIMEOUT = 30.0
PDF_TIMEOUT = 30.0
LLM_TIMEOUT = 120.0
EMBED_TIMEOUT = 30.0
TTS_TIMEOUT = 120.0
STORE_TIMEOUT = 10.0
SECURITY_TIMEOUT = 5.0

# --- Pipeline ---
MAX_PAPERS_PER_QUERY = int(os.environ.get("MAX_PAPERS_PER_QUERY", "5"))
MAX_RESULTS_LIMIT = 20
MAX_CONCURRENT_PAPERS = int(os.environ.get("MAX_CONCURRENT_PAPERS", "3"))
MAX_QUERY_LENGTH = 500
SUMMARY_INPUT_CHARS = 2000
EMBEDDING_INPUT_CHARS = 8000
RELEVANT_SECTIONS_CHARS = 5000
FALLBACK_IMPORTANCE_MIN = int(os.environ.get("FALLBACK_IMPORTANCE_MIN", "6"))
FALLBACK_IMPORTANCE_MAX = int(os.environ.get("FALLBACK_IMPORTANCE_MAX", "9"))
REPORT_MAX_SEGMENTS = 5
REPORT_PAPER_COUNT = 10
HISTORY_LIMIT = 20

# --- Uploaded documents ---
DOCUMENT_SECTION_CHARS = 3000
DOCUMENT_ABSTRACT_CHARS = 500
MAX_UPLOAD_BYTES = 10 * 1024 * 1024

# --- Audio ---
WORDS_PER_MINUTE = 155
PLACEHOLDER_SAMPLE_RATE = 8000
AUDIO_MAX_AGE_HOURS = float(os.environ.get("AUDIO_MAX_AGE_HOURS", "24"))
CLEANUP_INTERVAL_MINUTES = float(os.environ.get("CLEANUP_INTERVAL_MINUTES", "60"))

# --- HTTP ---
USER_AGENT = "scholarcast/1.0 (+https://openalex.org)"


@dataclass(frozen=True)
class Settings:
    """Snapshot of the module-level configuration.

    The service context is built from one of these so tests can swap
    paths and keys without touching the environment.
    """

    llm_base_url: str = LLM_BASE_URL
    llm_api_key: str = LLM_API_KEY
    smart_model: str = SMART_MODEL
    embedding_model: str = EMBEDDING_MODEL
    embedding_dimensions: int = EMBEDDING_DIMENSIONS
    tts_model: str = TTS_MODEL
    tts_voice: str = TTS_VOICE
    openalex_email: str = OPENALEX_EMAIL
    security_scorer_url: str = SECURITY_SCORER_URL
    security_scorer_api_key: str = SECURITY_SCORER_API_KEY
    storage_path: Path = field(default_factory=lambda: Path(STORAGE_PATH))
    db_path: Path = field(default_factory=lambda: Path(DB_PATH))
    max_papers_per_query: int = MAX_PAPERS_PER_QUERY
    max_concurrent_papers: int = MAX_CONCURRENT_PAPERS
    fallback_importance_min: int = FALLBACK_IMPORTANCE_MIN
    fallback_importance_max: int = FALLBACK_IMPORTANCE_MAX
    audio_max_age_hours: float = AUDIO_MAX_AGE_HOURS
    cleanup_interval_minutes: float = CLEANUP_INTERVAL_MINUTES

    @classmethod
    def from_env(cls) -> "Settings":
        """Re-read the environment (after load_dotenv) into a new Settings."""
        return cls(
            llm_base_url=os.environ.get("LLM_BASE_URL", LLM_BASE_URL),
            llm_api_key=os.environ.get("LLM_API_KEY", os.environ.get("OPENAI_API_KEY", "")),
            smart_model=os.environ.get("MODEL_NAME", SMART_MODEL),
            embedding_model=os.environ.get("EMBEDDING_MODEL", EMBEDDING_MODEL),
            embedding_dimensions=int(os.environ.get("EMBEDDING_DIMENSIONS", EMBEDDING_DIMENSIONS)),
            tts_model=os.environ.get("TTS_MODEL", TTS_MODEL),
            tts_voice=os.environ.get("TTS_VOICE", TTS_VOICE),
            openalex_email=os.environ.get("OPENALEX_EMAIL", OPENALEX_EMAIL),
            security_scorer_url=os.environ.get("SECURITY_SCORER_URL", SECURITY_SCORER_URL),
            security_scorer_api_key=os.environ.get("SECURITY_SCORER_API_KEY", SECURITY_SCORER_API_KEY),
            storage_path=Path(os.environ.get("STORAGE_PATH", STORAGE_PATH)),
            db_path=Path(os.environ.get("DB_PATH", DB_PATH)),
            max_papers_per_query=int(os.environ.get("MAX_PAPERS_PER_QUERY", MAX_PAPERS_PER_QUERY)),
            max_concurrent_papers=int(os.environ.get("MAX_CONCURRENT_PAPERS", MAX_CONCURRENT_PAPERS)),
            fallback_importance_min=int(os.environ.get("FALLBACK_IMPORTANCE_MIN", FALLBACK_IMPORTANCE_MIN)),
            fallback_importance_max=int(os.environ.get("FALLBACK_IMPORTANCE_MAX", FALLBACK_IMPORTANCE_MAX)),
            audio_max_age_hours=float(os.environ.get("AUDIO_MAX_AGE_HOURS", AUDIO_MAX_AGE_HOURS)),
            cleanup_interval_minutes=float(os.environ.get("CLEANUP_INTERVAL_MINUTES", CLEANUP_INTERVAL_MINUTES)),
        )

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)
