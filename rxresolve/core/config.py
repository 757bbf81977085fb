import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from rxresolve.core.exceptions import ConfigurationError

load_dotenv()


def _optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer (got {raw!r})") from exc


def _parse_env(name: str, default: str, cast):
    raw = os.getenv(name, default).strip() or default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be numeric (got {raw!r})") from exc


class Settings(BaseModel):
    # ---------------------------------------------------------------------
    # Terminology service (RxNav REST)
    # ---------------------------------------------------------------------
    rxnav_base_url: str = "https://rxnav.nlm.nih.gov/REST"
    rxnav_max_entries: int = 20
    rxnav_timeout_seconds: float = 30.0

    # ---------------------------------------------------------------------
    # Embedding / LLM judge (Google Generative AI)
    # ---------------------------------------------------------------------
    google_api_key: Optional[str] = None
    embedding_model: str = "models/text-embedding-004"
    llm_model: str = "gemini-1.5-flash"
    llm_rerank_top_n: int = 5
    llm_override_threshold: float = 0.9
    embedding_cache_max_entries: Optional[int] = None

    # ---------------------------------------------------------------------
    # Batch jobs
    # ---------------------------------------------------------------------
    report_dir: Path = Path("/app/output")
    upload_dir: Path = Path("/app/uploads")
    celery_broker_url: str = "redis://redis:6379/0"
    celery_result_backend: str = "redis://redis:6379/1"

    log_level: str = "INFO"

    model_config = {"frozen": True}

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            rxnav_base_url=os.getenv("RXNAV_BASE_URL", "https://rxnav.nlm.nih.gov/REST").rstrip("/"),
            rxnav_max_entries=_parse_env("RXNAV_MAX_ENTRIES", "20", int),
            rxnav_timeout_seconds=_parse_env("RXNAV_TIMEOUT_SECONDS", "30", float),
            google_api_key=os.getenv("GOOGLE_API_KEY") or None,
            embedding_model=os.getenv("EMBEDDING_MODEL", "models/text-embedding-004"),
            llm_model=os.getenv("LLM_MODEL", "gemini-1.5-flash"),
            llm_rerank_top_n=_parse_env("LLM_RERANK_TOP_N", "5", int),
            llm_override_threshold=_parse_env("LLM_OVERRIDE_THRESHOLD", "0.9", float),
            embedding_cache_max_entries=_optional_int("EMBEDDING_CACHE_MAX_ENTRIES"),
            report_dir=Path(os.getenv("REPORT_DIR", "/app/output")),
            upload_dir=Path(os.getenv("UPLOAD_DIR", "/app/uploads")),
            celery_broker_url=os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0"),
            celery_result_backend=os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/1"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def require_google_api_key(self) -> str:
        """Return the Google API key or fail fast; the key is never optional for AI calls."""
        if not self.google_api_key:
            raise ConfigurationError("GOOGLE_API_KEY is not configured")
        return self.google_api_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
