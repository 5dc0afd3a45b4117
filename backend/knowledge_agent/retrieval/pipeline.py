"""
Retrieval pipeline: expansion -> per-variant hybrid search -> merge -> context.

Each query variant is embedded and searched in turn. Hits from all variants
are pooled and deduplicated by record id, keeping the best-scoring instance;
a record hit by several variants counts once, at its best score. The final
ranking is stitched into a character-bounded context string.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from prometheus_client import Counter, Histogram

from ..logging_utils import log_context
from .hybrid_scorer import DEFAULT_ALPHA, validate_alpha
from .protocols import EmbeddingProvider
from .query_expander import QueryExpander
from .records import ScoredRecord, SourceRef
from .vector_store import VectorStore


RETRIEVAL_LATENCY = Histogram(
    "retrieval_duration_seconds",
    "End-to-end retrieval latency",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, float("inf")),
)

VARIANTS_SEARCHED = Counter(
    "retrieval_variants_searched_total",
    "Query variants embedded and searched",
)


@dataclass
class RetrievalFilters:
    """Restrictions applied to every variant's search."""
    doc_ids: Optional[List[str]] = None
    namespace: Optional[str] = None


@dataclass
class RetrievalDebug:
    """Diagnostics attached to a response when ``debug=True``."""
    queries: List[str]
    params: Dict[str, Any]
    result_count: int
    took_ms: float
    raw: List[Dict[str, Any]]
    store: Dict[str, Any]


@dataclass
class RetrievalResponse:
    """Stitched context plus the full ranked source list."""
    context: str
    sources: List[SourceRef] = field(default_factory=list)
    debug: Optional[RetrievalDebug] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "context": self.context,
            "sources": [source.to_dict() for source in self.sources],
        }
        if self.debug is not None:
            payload["debug"] = asdict(self.debug)
        return payload


def merge_variant_hits(hits: Sequence[ScoredRecord], top_k: int) -> List[ScoredRecord]:
    """
    Deduplicate pooled hits by id, keeping the maximum fused score.

    Returns the ``top_k`` best, sorted descending. Ties keep first-seen order.
    """
    best: Dict[str, ScoredRecord] = {}
    for hit in hits:
        previous = best.get(hit.id)
        if previous is None or hit.score > previous.score:
            best[hit.id] = hit
    ranked = sorted(best.values(), key=lambda h: h.score, reverse=True)
    return ranked[:top_k]


def format_context_line(hit: ScoredRecord) -> str:
    """``[docId chunkSuffix p<page>] text``; the page token is omitted when unknown."""
    header = f"{hit.doc_id} {hit.record.chunk_suffix}"
    if hit.page is not None:
        header += f" p{hit.page}"
    return f"[{header}] {hit.text}"


def stitch_context(hits: Sequence[ScoredRecord], max_chars: int) -> str:
    """
    Join formatted lines with newlines while they fit in ``max_chars``.

    Each accepted line costs its length plus one separator. The first line
    that does not fit ends the walk; later, shorter lines are not tried.
    """
    if max_chars < 0:
        raise ValueError("max_context_chars must be non-negative")
    used = 0
    lines: List[str] = []
    for hit in hits:
        line = format_context_line(hit)
        if used + len(line) > max_chars:
            break
        lines.append(line)
        used += len(line) + 1
    return "\n".join(lines)


class RetrievalPipeline:
    """
    Orchestrates multi-query hybrid retrieval over one injected store.

    Example:
        >>> pipeline = RetrievalPipeline(store, embedder, QueryExpander(generator))
        >>> response = pipeline.retrieve(
        ...     "What is the consensus mechanism?",
        ...     filters=RetrievalFilters(doc_ids=["d1"], namespace="pdf"),
        ... )
        >>> print(response.context)
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingProvider,
        expander: Optional[QueryExpander] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._expander = expander or QueryExpander(generator=None)
        self._logger = logger or logging.getLogger("app.retrieval.pipeline")

    @property
    def store(self) -> VectorStore:
        return self._store

    def retrieve(
        self,
        query: str,
        filters: Optional[RetrievalFilters] = None,
        top_k: int = 5,
        alpha: float = DEFAULT_ALPHA,
        use_expansion: bool = True,
        variant_count: int = 3,
        max_context_chars: int = 4000,
        debug: bool = False,
    ) -> RetrievalResponse:
        """
        Retrieve context for a query.

        Args:
            query: The user's question
            filters: Optional doc-id allow-list and namespace
            top_k: Hits kept per variant and in the final ranking
            alpha: Semantic weight of the fused score
            use_expansion: Whether to generate query variants
            variant_count: Number of variants when expansion is on
            max_context_chars: Character budget for the stitched context
            debug: Attach a RetrievalDebug payload

        Returns:
            RetrievalResponse with the context and every ranked source

        Raises:
            ValueError: On invalid parameters or embedding dimension mismatch
            Exception: Whatever the embedding provider raises is propagated
        """
        validate_alpha(alpha)
        if top_k < 1:
            raise ValueError("top_k must be at least 1")
        if max_context_chars < 0:
            raise ValueError("max_context_chars must be non-negative")

        filters = filters or RetrievalFilters()
        with log_context(namespace=filters.namespace):
            return self._retrieve(
                query,
                filters,
                top_k=top_k,
                alpha=alpha,
                use_expansion=use_expansion,
                variant_count=variant_count,
                max_context_chars=max_context_chars,
                debug=debug,
            )

    def _retrieve(
        self,
        query: str,
        filters: RetrievalFilters,
        top_k: int,
        alpha: float,
        use_expansion: bool,
        variant_count: int,
        max_context_chars: int,
        debug: bool,
    ) -> RetrievalResponse:
        start = time.perf_counter()

        queries = self._expander.expand(query, variant_count if use_expansion else 1)

        pooled: List[ScoredRecord] = []
        for variant in queries:
            embedding = self._embed(variant)
            hits = self._store.search_hybrid(
                embedding,
                query=variant,
                top_k=top_k,
                namespace=filters.namespace,
                doc_ids=filters.doc_ids,
                alpha=alpha,
            )
            VARIANTS_SEARCHED.inc()
            pooled.extend(hits)

        ranked = merge_variant_hits(pooled, top_k)
        context = stitch_context(ranked, max_context_chars)
        sources = [hit.to_source() for hit in ranked]

        duration = time.perf_counter() - start
        RETRIEVAL_LATENCY.observe(duration)
        took_ms = round(duration * 1000, 2)
        self._logger.info(
            "Retrieval completed",
            extra={
                "variants": len(queries),
                "pooled": len(pooled),
                "results": len(ranked),
                "context_chars": len(context),
                "duration_ms": took_ms,
            },
        )

        response = RetrievalResponse(context=context, sources=sources)
        if debug:
            response.debug = RetrievalDebug(
                queries=queries,
                params={
                    "doc_ids": filters.doc_ids,
                    "namespace": filters.namespace,
                    "top_k": top_k,
                    "alpha": alpha,
                    "use_expansion": use_expansion,
                    "variant_count": variant_count,
                    "max_context_chars": max_context_chars,
                },
                result_count=len(ranked),
                took_ms=took_ms,
                raw=[
                    {
                        "id": hit.id,
                        "doc_id": hit.doc_id,
                        "page": hit.page,
                        "score": hit.score,
                        "semantic": hit.semantic_component,
                        "lexical": hit.lexical_component,
                    }
                    for hit in ranked
                ],
                store=self._store.info(),
            )
        return response

    def _embed(self, text: str) -> List[float]:
        embeddings = self._embedder.embed([text])
        if not embeddings:
            raise RuntimeError("Embedding provider returned no vector for the query")
        return list(embeddings[0])
