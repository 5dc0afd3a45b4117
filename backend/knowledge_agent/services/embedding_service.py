from __future__ import annotations

import logging
import time
from typing import List, Optional

from openai import APIConnectionError, APITimeoutError, InternalServerError, OpenAI, RateLimitError
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

try:
    from google import genai  # type: ignore
except ImportError:  # pragma: no cover
    genai = None

from ..core.config import Settings, get_settings


logger = logging.getLogger("app.services.embedding")

TRANSIENT_ERRORS = (APIConnectionError, APITimeoutError, InternalServerError, RateLimitError)


class EmbeddingService:
    """
    Embedding provider backed by OpenAI or Gemini.

    Texts are sent in batches of ``embedding_batch_size``; each batch is
    retried on transient provider errors and the last error is re-raised.
    """

    def __init__(self, settings: Optional[Settings] = None, openai_client: Optional[OpenAI] = None):
        self.settings = settings or get_settings()
        self.logger = logger
        self.provider = (self.settings.embedding_provider or "openai").lower()
        self.batch_size = max(1, self.settings.embedding_batch_size)
        self._openai_client: Optional[OpenAI] = openai_client
        self._gemini_client: Optional["genai.Client"] = None  # type: ignore
        if self.provider == "gemini":
            self._init_gemini()

    @property
    def model_name(self) -> str:
        if self.provider == "gemini":
            return self.settings.gemini_embedding_model or "text-embedding-004"
        return self.settings.embedding_model_openai or "text-embedding-3-small"

    def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        embeddings: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            batch_start = time.perf_counter()
            embeddings.extend(self._create_embeddings(batch))
            self.logger.info(
                "Embedded text batch",
                extra={
                    "provider": self.provider,
                    "model": self.model_name,
                    "batch_size": len(batch),
                    "duration_ms": round((time.perf_counter() - batch_start) * 1000, 2),
                },
            )
        return embeddings

    def _client(self) -> OpenAI:
        if self._openai_client is None:
            api_key = self.settings.openai_api_key
            self._openai_client = OpenAI(api_key=api_key) if api_key else OpenAI()
        return self._openai_client

    def _init_gemini(self) -> None:
        if genai is None:  # pragma: no cover
            raise RuntimeError("google-genai is not installed. Run `pip install google-genai`.")
        if not self.settings.google_api_key:
            raise RuntimeError("Missing Google API key for Gemini embeddings.")
        self._gemini_client = genai.Client(api_key=self.settings.google_api_key)

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _create_embeddings(self, texts: List[str]) -> List[List[float]]:
        if self.provider == "gemini":
            if self._gemini_client is None:  # pragma: no cover
                self._init_gemini()
            response = self._gemini_client.models.embed_content(
                model=self.model_name,
                contents=texts,
            )
            return [list(embedding.values) for embedding in response.embeddings]
        response = self._client().embeddings.create(model=self.model_name, input=texts)
        return [list(item.embedding) for item in response.data]
