from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Knowledge Agent"
    environment: str = "development"
    log_config_path: Path = Path(__file__).resolve().parent.parent / "logging.yaml"
    log_level: str = "INFO"
    log_dir: Path = Path("backend/logs")
    enable_file_logging: bool = True
    enable_json_logs: bool = True

    # OpenAI / Gemini
    openai_api_key: Optional[str] = None
    google_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    )
    llm_provider: str = "openai"  # "openai" | "gemini"
    openai_model_mini: str = "gpt-4o-mini"
    gemini_model_flash: str = "gemini-2.5-flash"
    gemini_embedding_model: str = "text-embedding-004"
    embedding_provider: str = "openai"
    embedding_model_openai: str = "text-embedding-3-small"
    embedding_batch_size: int = 100

    # Vector store
    vector_store_path: Optional[Path] = Path("backend/storage/vectors.json")
    manifest_path: Path = Path("backend/storage/manifest.json")
    default_namespace: str = "pdf"
    tokenizer_mode: str = "ascii"  # "ascii" | "multilingual"
    bm25_scope: str = "global"  # "global" | "namespace"

    # Retrieval defaults
    retrieval_top_k: int = 5
    hybrid_alpha: float = 0.7  # Weight for the semantic component
    multi_query: bool = True
    query_variants: int = 3
    max_context_chars: int = 4000
    expansion_temperature: float = 0.2
    expansion_max_tokens: int = 120

    # Answering
    answer_temperature: float = 0.2
    answer_max_tokens: int = 800
    fallback_top_k: int = 8
    fallback_alpha: float = 0.6
    fallback_query_variants: int = 5

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
