"""Environment driven configuration for the ask service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

LOGGER = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_LLM_MODEL = "meta-llama/Llama-3.1-8B-Instruct"


def _str_from_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default


def _flag_from_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class Settings:
    """Tunables for segmentation, retrieval and the external providers."""

    upload_dir: Path = Path("uploads")
    log_dir: Path = Path("logs")
    chunk_size_words: int = 300
    max_pages: int = 400
    top_k: int = 5
    excerpt_chars: int = 1500
    embedding_batch_size: int = 8
    embedding_provider: str = "sentence-transformers"
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_inference_provider: Optional[str] = None
    embedding_device: Optional[str] = None
    llm_provider: Optional[str] = None
    llm_model: str = DEFAULT_LLM_MODEL
    llm_model_path: Optional[str] = None
    llm_max_tokens: int = 300
    llm_temperature: float = 0.0
    hf_token: Optional[str] = None
    request_timeout_seconds: float = 600.0
    pdf_ocr: bool = False
    ocr_language: str = "eng"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            upload_dir=Path(_str_from_env("UPLOAD_DIR", str(defaults.upload_dir))),
            log_dir=Path(_str_from_env("LOG_DIR", str(defaults.log_dir))),
            chunk_size_words=_int_from_env("CHUNK_SIZE_WORDS", defaults.chunk_size_words),
            max_pages=_int_from_env("MAX_PAGES", defaults.max_pages),
            top_k=_int_from_env("TOP_K", defaults.top_k),
            excerpt_chars=_int_from_env("EXCERPT_CHARS", defaults.excerpt_chars),
            embedding_batch_size=_int_from_env("EMBEDDING_BATCH_SIZE", defaults.embedding_batch_size),
            embedding_provider=(
                _str_from_env("EMBEDDING_PROVIDER", defaults.embedding_provider) or ""
            ).lower(),
            embedding_model=_str_from_env("EMBEDDING_MODEL", defaults.embedding_model),
            embedding_inference_provider=_str_from_env("EMBEDDING_INFERENCE_PROVIDER"),
            embedding_device=_str_from_env("EMBEDDING_DEVICE"),
            llm_provider=(_str_from_env("LLM_PROVIDER") or "").lower() or None,
            llm_model=_str_from_env("LLM_MODEL", defaults.llm_model),
            llm_model_path=_str_from_env("LLM_MODEL_PATH"),
            llm_max_tokens=_int_from_env("LLM_MAX_TOKENS", defaults.llm_max_tokens),
            llm_temperature=_float_from_env("LLM_TEMPERATURE", defaults.llm_temperature),
            hf_token=_str_from_env("HF_TOKEN"),
            request_timeout_seconds=_float_from_env(
                "REQUEST_TIMEOUT_SECONDS", defaults.request_timeout_seconds
            ),
            pdf_ocr=_flag_from_env("PDF_OCR"),
            ocr_language=_str_from_env("OCR_LANG", defaults.ocr_language),
        )


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings, reading ``.env`` on first use."""

    load_dotenv()
    return Settings.from_env()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for testing)."""

    get_settings.cache_clear()  # type: ignore[attr-defined]


__all__ = ["Settings", "get_settings", "reset_settings_cache"]
