"""
Hybrid retrieval engine.

Contains:
- Tokenizer and term-frequency cache
- BM25 index with explicit dirty/clean statistics
- VectorStore with JSON snapshot persistence
- HybridScorer fusing cosine similarity and BM25
- QueryExpander and the multi-query RetrievalPipeline
"""

from .bm25_index import BM25Index, BM25Scope, IndexState
from .hybrid_scorer import EmbeddingDimensionError, HybridScorer
from .pipeline import (
    RetrievalDebug,
    RetrievalFilters,
    RetrievalPipeline,
    RetrievalResponse,
    stitch_context,
)
from .protocols import EmbeddingProvider, TextGenerator
from .query_expander import QueryExpander
from .records import ScoredRecord, SourceRef, VectorRecord
from .snapshot_store import SnapshotStore
from .tokenizer import get_tokenizer, tokenize, tokenize_multilingual
from .vector_store import VectorStore, build_vector_store

__all__ = [
    "BM25Index",
    "BM25Scope",
    "IndexState",
    "EmbeddingDimensionError",
    "HybridScorer",
    "RetrievalDebug",
    "RetrievalFilters",
    "RetrievalPipeline",
    "RetrievalResponse",
    "stitch_context",
    "EmbeddingProvider",
    "TextGenerator",
    "QueryExpander",
    "ScoredRecord",
    "SourceRef",
    "VectorRecord",
    "SnapshotStore",
    "get_tokenizer",
    "tokenize",
    "tokenize_multilingual",
    "VectorStore",
    "build_vector_store",
]
