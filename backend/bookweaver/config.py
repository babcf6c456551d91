"""
BookWeaver — Shared Configuration
=================================
Centralised path constants and settings used across all modules.
Every value can be overridden from the environment (or a ``.env`` file).
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from dotenv import load_dotenv

from bookweaver.errors import InvalidBookIdError

load_dotenv()

# ──────────────────────────────────────────────
# PATHS
# ──────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent
OUTPUT_DIR = Path(os.getenv("BOOKWEAVER_OUTPUT_DIR", str(BASE_DIR / "data" / "output")))
BOOKS_DIR = OUTPUT_DIR / "books"
JOBS_FILE = OUTPUT_DIR / "jobs.json"
STATE_FILENAME = "book_state.json"

# ──────────────────────────────────────────────
# GENERATION SETTINGS
# ──────────────────────────────────────────────
DEFAULT_FALLBACK_MODEL = "gpt-4-turbo"
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "dall-e-3")
COVER_IMAGE_SIZE = os.getenv("COVER_IMAGE_SIZE", "1024x1024")
BATCH_PROVIDER = os.getenv("BATCH_PROVIDER", "openai")
LLM_TIMEOUT = int(os.getenv("LLM_TIMEOUT", "600"))
PAGE_MAX_TOKENS = int(os.getenv("PAGE_MAX_TOKENS", "2000"))
CHAPTER_MAX_TOKENS = int(os.getenv("CHAPTER_MAX_TOKENS", "4000"))
TEMPERATURE = float(os.getenv("BOOK_TEMPERATURE", "0.7"))
DOWNLOAD_COVER = os.getenv("DOWNLOAD_COVER", "true").lower() == "true"

# ──────────────────────────────────────────────
# BATCH POLLING
# ──────────────────────────────────────────────
BATCH_POLL_SECONDS = float(os.getenv("BATCH_POLL_SECONDS", "60"))
BATCH_POLL_BACKOFF = float(os.getenv("BATCH_POLL_BACKOFF", "1.0"))
BATCH_POLL_MAX_INTERVAL = float(os.getenv("BATCH_POLL_MAX_INTERVAL", "600"))
_max_wait = os.getenv("BATCH_MAX_WAIT_SECONDS", "")
BATCH_MAX_WAIT_SECONDS = float(_max_wait) if _max_wait else None  # None = no limit

# ──────────────────────────────────────────────
# BOOK DEFAULTS
# ──────────────────────────────────────────────
SUPPORTED_LANGUAGES = ("en", "es", "fr", "de", "it", "ja", "zh")
DEFAULT_LANGUAGE = "en"
DEFAULT_AUTHOR = os.getenv("BOOK_AUTHOR", "AI Writer")
DEFAULT_CHAPTERS = 12
DEFAULT_PAGES_PER_CHAPTER = 5
BOOK_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,64}")


def get_api_key() -> str | None:
    """Return the best available API key for the generation provider."""
    return (
        os.getenv("OPENAI_API_KEY")
        or os.getenv("GOOGLE_API_KEY")
        or os.getenv("GEMINI_API_KEY")
    )


def get_model() -> str:
    """Return the model identifier from the environment."""
    model = os.getenv("DEFAULT_MODEL", DEFAULT_FALLBACK_MODEL)
    if not model:
        print("[Config] ⚠️ WARNING: DEFAULT_MODEL not set, using fallback")
        return DEFAULT_FALLBACK_MODEL
    return model


def validate_book_id(book_id: str) -> str:
    if not isinstance(book_id, str) or not BOOK_ID_PATTERN.fullmatch(book_id):
        raise InvalidBookIdError(book_id)
    return book_id


def book_dir(book_id: str, root: Path | None = None) -> Path:
    """Return the directory holding everything generated for one book."""
    validate_book_id(book_id)
    return (root or BOOKS_DIR) / book_id
