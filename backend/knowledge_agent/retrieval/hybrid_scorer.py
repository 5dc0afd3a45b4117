"""
Hybrid scorer fusing semantic and lexical relevance.

For every candidate that passes the namespace / doc-id filters:

    semantic = cos(q, v)                       (epsilon-guarded)
    lexical  = BM25(query, v)                  (0 when no query text)
    fused    = alpha * semantic + (1 - alpha) * sigmoid(lexical)

The logistic squash keeps the unbounded BM25 score commensurate with the
bounded cosine range. Results are stable-sorted by the fused score.
"""

import math
from typing import Collection, List, Optional, Sequence

import numpy as np

from .bm25_index import BM25Index
from .records import ScoredRecord, VectorRecord
from .tokenizer import Tokenizer, tokenize


COSINE_EPSILON = 1e-8
DEFAULT_ALPHA = 0.7


class EmbeddingDimensionError(ValueError):
    """Raised when a query embedding and a stored embedding differ in length."""

    def __init__(self, query_dimension: int, record_dimension: int, record_id: str) -> None:
        self.query_dimension = query_dimension
        self.record_dimension = record_dimension
        self.record_id = record_id
        super().__init__(
            f"Embedding dimension mismatch: query has {query_dimension} dimensions "
            f"but record {record_id!r} has {record_dimension}"
        )


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity with an epsilon in the denominator for zero vectors."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors differ in dimension: {va.shape[0]} != {vb.shape[0]}")
    return float(np.dot(va, vb) / (np.linalg.norm(va) * np.linalg.norm(vb) + COSINE_EPSILON))


def normalize_bm25(score: float) -> float:
    """Logistic squash of a raw BM25 score into (0, 1)."""
    if score >= 0:
        return 1.0 / (1.0 + math.exp(-score))
    exp_score = math.exp(score)
    return exp_score / (1.0 + exp_score)


def validate_alpha(alpha: float) -> float:
    if not 0.0 <= alpha <= 1.0:
        raise ValueError("alpha must be between 0.0 and 1.0")
    return alpha


class HybridScorer:
    """
    Rank candidate records by fused semantic + lexical score.

    The scorer shares its ``BM25Index`` with the owning store, which
    invalidates it on every mutation.

    Example:
        >>> scorer = HybridScorer()
        >>> ranked = scorer.score(query_embedding, "fox over dog", records, alpha=0.6)
        >>> ranked[0].id
        'd1:c1'
    """

    def __init__(
        self,
        bm25: Optional[BM25Index] = None,
        tokenizer: Tokenizer = tokenize,
    ) -> None:
        self._bm25 = bm25 or BM25Index()
        self._tokenizer = tokenizer

    @property
    def bm25(self) -> BM25Index:
        return self._bm25

    def score(
        self,
        query_embedding: Sequence[float],
        query_text: str,
        candidates: Sequence[VectorRecord],
        alpha: float = DEFAULT_ALPHA,
        top_k: Optional[int] = None,
        namespace: Optional[str] = None,
        doc_ids: Optional[Collection[str]] = None,
    ) -> List[ScoredRecord]:
        """
        Score and rank candidates.

        Args:
            query_embedding: Embedding of the query text
            query_text: Raw query for lexical scoring; empty disables BM25
            candidates: Records to rank; also the corpus for BM25 statistics
            alpha: Weight of the semantic component in [0, 1]
            top_k: Maximum number of results (None keeps all)
            namespace: Exact namespace to restrict to, if given
            doc_ids: Allow-list of document ids; None or empty means no filter

        Returns:
            ScoredRecord list sorted by fused score (descending, stable)

        Raises:
            ValueError: If alpha is outside [0, 1] or top_k < 1
            EmbeddingDimensionError: If a candidate's embedding length differs
                from the query embedding's
        """
        validate_alpha(alpha)
        if top_k is not None and top_k < 1:
            raise ValueError("top_k must be at least 1")

        allowed = set(doc_ids) if doc_ids else None
        filtered = [
            record for record in candidates
            if (namespace is None or record.namespace == namespace)
            and (allowed is None or record.doc_id in allowed)
        ]
        if not filtered:
            return []

        query_vector = np.asarray(query_embedding, dtype=float)
        query_norm = float(np.linalg.norm(query_vector))
        query_tokens = self._tokenizer(query_text) if query_text else []

        scored: List[ScoredRecord] = []
        for record in filtered:
            semantic = self._semantic(query_vector, query_norm, record)
            lexical = (
                self._bm25.score(query_tokens, record, candidates) if query_text else 0.0
            )
            fused = alpha * semantic + (1 - alpha) * normalize_bm25(lexical)
            scored.append(ScoredRecord(
                record=record,
                score=fused,
                semantic_component=semantic,
                lexical_component=lexical,
            ))

        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[:top_k] if top_k is not None else scored

    @staticmethod
    def _semantic(query_vector: np.ndarray, query_norm: float, record: VectorRecord) -> float:
        if len(record.embedding) != query_vector.shape[0]:
            raise EmbeddingDimensionError(
                query_dimension=query_vector.shape[0],
                record_dimension=len(record.embedding),
                record_id=record.id,
            )
        vector = np.asarray(record.embedding, dtype=float)
        denominator = query_norm * float(np.linalg.norm(vector)) + COSINE_EPSILON
        return float(np.dot(query_vector, vector) / denominator)
