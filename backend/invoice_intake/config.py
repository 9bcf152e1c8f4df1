"""Application settings and configuration helpers."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import List
from dotenv import load_dotenv, find_dotenv


class Settings:
    """Runtime configuration loaded from environment variables.

    Defaults are suitable for local development. Production should set
    explicit values via environment variables and Secret Manager.
    """

    APP_NAME: str = "Invoice Intake API"
    API_PREFIX: str = "/api"

    # CORS / logging
    CORS_ORIGINS: List[str]
    LOG_LEVEL: str

    # Limits
    MAX_SIZE_MB: int
    MAX_PAGES: int
    ACCEPTED_MIME: List[str]

    # Text layer gate
    OCR_TEXT_MIN_CHARS: int

    # Rasterization + image preprocessing
    PDF_RASTER_DPI: int
    PREPROCESS_TARGET_DPI: int
    PREPROCESS_MIN_DIMENSION: int
    PREPROCESS_WORKERS: int

    # OCR
    OCR_LANG_HINTS: List[str]

    # LLM
    GEMINI_API_KEY: str
    GEMINI_MODEL: str
    OPENROUTER_API_KEY: str
    OPENROUTER_MODEL: str
    LLM_TIMEOUT_SECONDS: float
    LLM_MAX_ATTEMPTS: int
    LLM_MAX_OUTPUT_TOKENS: int
    LLM_MAX_INPUT_CHARS: int

    # Sanitizer
    PREPROCESS_MAX_CHARS: int
    ZONE_STRIP_TOP: int
    ZONE_STRIP_BOTTOM: int

    # Review
    REVIEW_MIN_CONFIDENCE: float

    # Vendors
    VENDOR_FUZZY_MAX_DISTANCE: int
    VENDOR_STORE: str
    GCP_PROJECT: str
    FIRESTORE_DATABASE_ID: str

    def __init__(self) -> None:
        # Load .env once (supports parent directories)
        load_dotenv(find_dotenv(), override=False)
        self.CORS_ORIGINS = self._get_list("CORS_ORIGINS", default="*")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

        self.MAX_SIZE_MB = int(os.getenv("MAX_SIZE_MB", "10"))
        self.MAX_PAGES = int(os.getenv("MAX_PAGES", "20"))
        self.ACCEPTED_MIME = [
            "application/pdf",
            "image/png",
            "image/jpeg",
            "image/tiff",
            "image/webp",
        ]

        # Text is accepted only when strictly longer than this after trimming
        self.OCR_TEXT_MIN_CHARS = int(os.getenv("OCR_TEXT_MIN_CHARS", "50"))

        self.PDF_RASTER_DPI = int(os.getenv("PDF_RASTER_DPI", "300"))
        self.PREPROCESS_TARGET_DPI = int(os.getenv("PREPROCESS_TARGET_DPI", "350"))
        # 5 inches at the target DPI
        self.PREPROCESS_MIN_DIMENSION = int(os.getenv("PREPROCESS_MIN_DIMENSION", "1750"))
        self.PREPROCESS_WORKERS = max(1, int(os.getenv("PREPROCESS_WORKERS", str(os.cpu_count() or 2))))

        self.OCR_LANG_HINTS = self._get_list("OCR_LANG_HINTS", default="en,he")

        # LLM
        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
        self.GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
        self.OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "meta-llama/llama-3.3-70b-instruct:free")
        self.LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
        self.LLM_MAX_ATTEMPTS = max(1, int(os.getenv("LLM_MAX_ATTEMPTS", "3")))
        try:
            mot = int(os.getenv("LLM_MAX_OUTPUT_TOKENS", "4096"))
        except ValueError:
            mot = 4096
        # Clamp to a reasonable range to avoid provider errors
        self.LLM_MAX_OUTPUT_TOKENS = max(256, min(8192, mot))
        self.LLM_MAX_INPUT_CHARS = int(os.getenv("LLM_MAX_INPUT_CHARS", "15000"))

        # Sanitizer
        self.PREPROCESS_MAX_CHARS = int(os.getenv("PREPROCESS_MAX_CHARS", "20000"))
        self.ZONE_STRIP_TOP = int(os.getenv("ZONE_STRIP_TOP", "0"))
        self.ZONE_STRIP_BOTTOM = int(os.getenv("ZONE_STRIP_BOTTOM", "0"))

        self.REVIEW_MIN_CONFIDENCE = float(os.getenv("REVIEW_MIN_CONFIDENCE", "0.7"))

        # Vendors
        self.VENDOR_FUZZY_MAX_DISTANCE = int(os.getenv("VENDOR_FUZZY_MAX_DISTANCE", "2"))
        self.VENDOR_STORE = os.getenv("VENDOR_STORE", "memory").strip().lower()
        self.GCP_PROJECT = os.getenv("GCP_PROJECT", os.getenv("GOOGLE_CLOUD_PROJECT", ""))
        self.FIRESTORE_DATABASE_ID = os.getenv("FIRESTORE_DATABASE_ID", "(default)")

    @property
    def max_size_bytes(self) -> int:
        return self.MAX_SIZE_MB * 1024 * 1024

    @staticmethod
    def _get_list(name: str, default: str = "") -> List[str]:
        raw = os.getenv(name, default)
        return [item.strip() for item in raw.split(",") if item.strip()] or ["*"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
