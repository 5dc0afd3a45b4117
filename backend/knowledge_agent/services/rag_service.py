from __future__ import annotations

import logging
import time
from typing import List, Optional

from ..core.config import Settings, get_settings
from ..logging_utils import log_context
from ..models.document import AnswerResult, AnswerSource
from ..prompts import ANSWER_SYSTEM_PROMPT, ANSWER_USER_TEMPLATE, FALLBACK_ANSWER
from ..retrieval.pipeline import RetrievalFilters, RetrievalPipeline, RetrievalResponse
from ..retrieval.protocols import TextGenerator


class RAGService:
    """
    Answer questions from retrieved context.

    When the first retrieval comes back empty the search is repeated once with
    broader parameters; if that is still empty a fixed fallback answer is
    returned without calling the generator.
    """

    FALLBACK_ANSWER = FALLBACK_ANSWER

    def __init__(
        self,
        pipeline: RetrievalPipeline,
        generator: TextGenerator,
        settings: Optional[Settings] = None,
    ):
        self.pipeline = pipeline
        self.generator = generator
        self.settings = settings or get_settings()
        self.logger = logging.getLogger("app.services.rag")

    # --- Public API -----------------------------------------------------

    def answer(
        self,
        question: str,
        doc_ids: Optional[List[str]] = None,
        namespace: Optional[str] = None,
        top_k: Optional[int] = None,
        alpha: Optional[float] = None,
        multi_query: Optional[bool] = None,
        query_variants: Optional[int] = None,
        max_context_chars: Optional[int] = None,
    ) -> AnswerResult:
        s = self.settings
        top_k = top_k if top_k is not None else s.retrieval_top_k
        alpha = alpha if alpha is not None else s.hybrid_alpha
        multi_query = multi_query if multi_query is not None else s.multi_query
        query_variants = query_variants if query_variants is not None else s.query_variants
        max_context_chars = max_context_chars if max_context_chars is not None else s.max_context_chars
        namespace = namespace if namespace is not None else s.default_namespace

        with log_context(namespace=namespace):
            return self._answer(
                question,
                RetrievalFilters(doc_ids=doc_ids, namespace=namespace),
                top_k=top_k,
                alpha=alpha,
                multi_query=multi_query,
                query_variants=query_variants,
                max_context_chars=max_context_chars,
            )

    def _answer(
        self,
        question: str,
        filters: RetrievalFilters,
        top_k: int,
        alpha: float,
        multi_query: bool,
        query_variants: int,
        max_context_chars: int,
    ) -> AnswerResult:
        s = self.settings
        doc_ids = filters.doc_ids
        retrieved = self.pipeline.retrieve(
            question,
            filters=filters,
            top_k=top_k,
            alpha=alpha,
            use_expansion=multi_query,
            variant_count=query_variants,
            max_context_chars=max_context_chars,
        )

        broadened = False
        if self._is_empty(retrieved):
            self.logger.info(
                "Retrieval empty, retrying with broadened parameters",
                extra={"doc_ids": doc_ids, "top_k": top_k, "alpha": alpha},
            )
            broadened = True
            retrieved = self.pipeline.retrieve(
                question,
                filters=filters,
                top_k=max(top_k, s.fallback_top_k),
                alpha=s.fallback_alpha,
                use_expansion=True,
                variant_count=max(query_variants, s.fallback_query_variants),
                max_context_chars=max_context_chars,
            )

        if self._is_empty(retrieved):
            self.logger.info("No context found, returning fallback answer", extra={"doc_ids": doc_ids})
            return AnswerResult(answer=self.FALLBACK_ANSWER, broadened=broadened)

        prompt = (
            f"{ANSWER_SYSTEM_PROMPT}\n\n"
            f"{ANSWER_USER_TEMPLATE.format(context=retrieved.context, question=question)}"
        )
        start = time.perf_counter()
        text = self.generator.generate(
            prompt,
            temperature=s.answer_temperature,
            max_tokens=s.answer_max_tokens,
        )
        model_used = getattr(self.generator, "model_name", None)
        self.logger.info(
            "Generated answer",
            extra={
                "model": model_used,
                "sources": len(retrieved.sources),
                "broadened": broadened,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return AnswerResult(
            answer=text,
            sources=[
                AnswerSource(id=src.id, doc_id=src.doc_id, page=src.page, score=src.score)
                for src in retrieved.sources
            ],
            context=retrieved.context,
            model_used=model_used,
            broadened=broadened,
        )

    # --- Internal utilities --------------------------------------------

    @staticmethod
    def _is_empty(retrieved: RetrievalResponse) -> bool:
        return not retrieved.sources or not retrieved.context.strip()
