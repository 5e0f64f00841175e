from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _load_dotenv() -> None:
    if os.getenv("PAPERQC_SKIP_DOTENV") == "1":
        return

    env_path = Path(__file__).resolve().parents[2] / ".env"
    if not env_path.exists():
        return

    from dotenv import load_dotenv

    load_dotenv(env_path, override=True)


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_non_negative_int(value: str | None, default: int = 0) -> int:
    if value is None:
        return default
    raw = value.strip()
    if not raw:
        return default
    try:
        return max(0, int(raw))
    except ValueError:
        return default


def _parse_positive_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    raw = value.strip()
    if not raw:
        return default
    try:
        parsed = float(raw)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


@dataclass(frozen=True)
class Settings:
    env: str
    app_name: str
    cors_origins: list[str]
    database_url: str | None
    store_backend: str
    store_latency_ms: int
    llm_backend: str
    gemini_api_key: str | None
    gemini_model: str
    llm_timeout_seconds: int
    llm_max_retries: int
    audit_timeout_seconds: float
    extraction_timeout_seconds: float
    ocr_backend: str
    ocr_lang: str
    history_retention: int
    default_author: str
    default_subject: str


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    _load_dotenv()

    env = os.getenv("PAPERQC_ENV", "development")
    cors = os.getenv("PAPERQC_CORS_ORIGINS", "http://localhost:3000")
    store_backend = os.getenv("PAPERQC_STORE_BACKEND", "db").strip().lower() or "db"
    store_latency_ms = _parse_non_negative_int(os.getenv("PAPERQC_STORE_LATENCY_MS"), default=0)
    llm_backend = os.getenv("PAPERQC_LLM_BACKEND", "mock").strip().lower() or "mock"
    llm_timeout_seconds = _parse_non_negative_int(os.getenv("PAPERQC_LLM_TIMEOUT_SECONDS"), default=90) or 90
    llm_max_retries = _parse_non_negative_int(os.getenv("PAPERQC_LLM_MAX_RETRIES"), default=1)
    audit_timeout_seconds = _parse_positive_float(os.getenv("PAPERQC_AUDIT_TIMEOUT_SECONDS"), default=120.0)
    extraction_timeout_seconds = _parse_positive_float(
        os.getenv("PAPERQC_EXTRACTION_TIMEOUT_SECONDS"), default=60.0
    )
    ocr_backend = os.getenv("PAPERQC_OCR_BACKEND", "mock").strip().lower() or "mock"
    ocr_lang = os.getenv("PAPERQC_OCR_LANG", "eng").strip() or "eng"
    history_retention = _parse_non_negative_int(os.getenv("PAPERQC_HISTORY_RETENTION"), default=5) or 5

    return Settings(
        env=env,
        app_name="PaperQC API v2",
        cors_origins=_split_csv(cors),
        database_url=os.getenv("DATABASE_URL") or None,
        store_backend=store_backend,
        store_latency_ms=store_latency_ms,
        llm_backend=llm_backend,
        gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-pro"),
        llm_timeout_seconds=llm_timeout_seconds,
        llm_max_retries=llm_max_retries,
        audit_timeout_seconds=audit_timeout_seconds,
        extraction_timeout_seconds=extraction_timeout_seconds,
        ocr_backend=ocr_backend,
        ocr_lang=ocr_lang,
        history_retention=history_retention,
        default_author=os.getenv("PAPERQC_DEFAULT_AUTHOR", "Faculty Teacher").strip() or "Faculty Teacher",
        default_subject=os.getenv("PAPERQC_DEFAULT_SUBJECT", "General").strip() or "General",
    )
