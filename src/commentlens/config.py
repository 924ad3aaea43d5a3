"""Centralised configuration loaded from environment variables and dotenv."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ── Paths ──────────────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# ── YouTube Data API ───────────────────────────────────────────────────────
YOUTUBE_API_BASE: str = os.getenv(
    "YOUTUBE_API_BASE", "https://www.googleapis.com/youtube/v3"
)
YOUTUBE_TIMEOUT: float = float(os.getenv("YOUTUBE_TIMEOUT", "30"))

# ── LLM ────────────────────────────────────────────────────────────────────
LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai")
LLM_API_KEY: str = os.getenv("LLM_API_KEY", "")
LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
# Any OpenAI-compatible endpoint, e.g. Gemini's compatibility layer.
LLM_BASE_URL: str = os.getenv("LLM_BASE_URL", "")
LLM_TIMEOUT: float = float(os.getenv("LLM_TIMEOUT", "120"))
LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.3"))

# ── Quota ──────────────────────────────────────────────────────────────────
DB_PATH: Path = Path(
    os.getenv("COMMENTLENS_DB_PATH", str(PROJECT_ROOT / "var" / "quota.sqlite3"))
)
FREE_QUOTA_LIMIT: int = int(os.getenv("FREE_QUOTA_LIMIT", "5"))

# ── Analysis defaults (overridden per request) ─────────────────────────────
DEFAULT_COUNT: int = int(os.getenv("COMMENTLENS_DEFAULT_COUNT", "100"))
DEFAULT_LANGUAGE: str = os.getenv("COMMENTLENS_LANGUAGE", "Traditional Chinese")
