"""
In-memory vector record store with hybrid search.

Records are kept in insertion order and keyed by id. The store owns its BM25
index and (optionally) a JSON snapshot used for write-through persistence and
for picking up writes made by other processes.

The store is not thread-safe; callers sharing one instance between threads
must serialise access themselves.
"""

import logging
from pathlib import Path
from typing import Any, Collection, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ..core.config import Settings
from .bm25_index import BM25Index, BM25Scope, IndexState
from .hybrid_scorer import DEFAULT_ALPHA, HybridScorer
from .records import ScoredRecord, VectorRecord
from .snapshot_store import SnapshotStore
from .tokenizer import Tokenizer, get_tokenizer, term_frequencies, tokenize


RecordInput = Union[VectorRecord, Mapping[str, Any]]


class VectorStore:
    """
    Ordered, id-keyed collection of embedded chunks.

    Upserting an existing id replaces the record in place; a new id appends.
    Every mutation marks the BM25 statistics dirty and, when a snapshot path
    is configured, rewrites the whole snapshot.

    Example:
        >>> store = VectorStore(snapshot_path=Path("storage/vectors.json"))
        >>> store.upsert([
        ...     {"id": "d1:c1", "docId": "d1", "namespace": "pdf",
        ...      "text": "The quick brown fox", "embedding": [0.1, 0.9]},
        ... ])
        >>> hits = store.search_hybrid([0.1, 0.9], query="fox", namespace="pdf")
        >>> hits[0].id
        'd1:c1'
    """

    def __init__(
        self,
        snapshot_path: Optional[Path] = None,
        tokenizer: Tokenizer = tokenize,
        bm25_scope: BM25Scope = BM25Scope.GLOBAL,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._records: List[VectorRecord] = []
        self._positions: Dict[str, int] = {}
        self._tokenizer = tokenizer
        self._bm25 = BM25Index(scope=bm25_scope)
        self._scorer = HybridScorer(bm25=self._bm25, tokenizer=tokenizer)
        self._snapshot = SnapshotStore(snapshot_path)
        self._logger = logger or logging.getLogger("app.retrieval.vector_store")

        if self._snapshot.exists():
            self._reload()

    # --- Introspection ---------------------------------------------------

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> List[VectorRecord]:
        return list(self._records)

    @property
    def snapshot_path(self) -> Optional[Path]:
        return self._snapshot.path

    @property
    def bm25_state(self) -> IndexState:
        return self._bm25.state

    @property
    def bm25(self) -> BM25Index:
        return self._bm25

    def get(self, record_id: str) -> Optional[VectorRecord]:
        position = self._positions.get(record_id)
        return self._records[position] if position is not None else None

    def list_documents(self, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        """Distinct documents with their chunk counts, in first-seen order."""
        documents: Dict[str, Dict[str, Any]] = {}
        for record in self._records:
            if namespace and record.namespace != namespace:
                continue
            entry = documents.setdefault(
                record.doc_id,
                {"doc_id": record.doc_id, "namespace": record.namespace, "chunks": 0},
            )
            entry["chunks"] += 1
        return list(documents.values())

    def info(self) -> Dict[str, Any]:
        return {
            "path": str(self._snapshot.path) if self._snapshot.path else None,
            "records": len(self._records),
            "documents": [
                {"doc_id": d["doc_id"], "chunks": d["chunks"]} for d in self.list_documents()
            ],
        }

    # --- Mutations -------------------------------------------------------

    def upsert(self, records: Iterable[RecordInput]) -> None:
        """
        Insert or fully replace records by id.

        The term-frequency cache is recomputed from each record's text. The
        whole batch is validated first; if any item is malformed the error
        propagates and the store is left untouched.
        """
        prepared = [self._prepare(item) for item in records]
        for record in prepared:
            position = self._positions.get(record.id)
            if position is not None:
                self._records[position] = record
            else:
                self._positions[record.id] = len(self._records)
                self._records.append(record)

        self._mark_mutated()
        self._logger.info("Upserted records", extra={"records": len(prepared), "total": len(self._records)})

    def delete_by_doc_ids(self, doc_ids: Collection[str]) -> int:
        """Remove every record belonging to the given documents."""
        targets = set(doc_ids)
        removed = self._retain(lambda record: record.doc_id not in targets)
        self._logger.info(
            "Deleted document records",
            extra={"doc_ids": sorted(targets), "removed": removed},
        )
        return removed

    def clear_namespace(self, namespace: Optional[str] = None) -> int:
        """Remove every record in ``namespace``; with no namespace, remove all."""
        if namespace is None:
            removed = self._retain(lambda record: False)
        else:
            removed = self._retain(lambda record: record.namespace != namespace)
        self._logger.info(
            "Cleared namespace",
            extra={"namespace": namespace or "*", "removed": removed},
        )
        return removed

    # --- Search ----------------------------------------------------------

    def search_hybrid(
        self,
        query_embedding: Sequence[float],
        query: str = "",
        top_k: int = 5,
        namespace: Optional[str] = None,
        doc_ids: Optional[Collection[str]] = None,
        alpha: float = DEFAULT_ALPHA,
    ) -> List[ScoredRecord]:
        """
        Rank records by fused cosine + BM25 score.

        Reloads from the snapshot first if another process has rewritten it.

        Args:
            query_embedding: Embedding of ``query``
            query: Raw query text for lexical scoring (empty disables BM25)
            top_k: Maximum number of results
            namespace: Restrict to this exact namespace
            doc_ids: Restrict to these documents (None or empty: no restriction)
            alpha: Semantic weight in [0, 1]

        Returns:
            ScoredRecord list sorted by fused score (descending)
        """
        self.reload_if_stale()
        return self._scorer.score(
            query_embedding,
            query,
            self._records,
            alpha=alpha,
            top_k=top_k,
            namespace=namespace,
            doc_ids=doc_ids,
        )

    def reload_if_stale(self) -> bool:
        """Fully reload from the snapshot when the file is newer than our copy."""
        if not self._snapshot.is_stale():
            return False
        self._logger.info(
            "Snapshot changed on disk, reloading",
            extra={"path": str(self._snapshot.path)},
        )
        return self._reload()

    # --- Internal utilities --------------------------------------------

    def _prepare(self, item: RecordInput) -> VectorRecord:
        if isinstance(item, VectorRecord):
            record = VectorRecord(
                id=item.id,
                doc_id=item.doc_id,
                text=item.text,
                embedding=list(item.embedding),
                namespace=item.namespace,
                meta=dict(item.meta),
            )
        else:
            record = VectorRecord.from_mapping(item)
        record.term_frequency = term_frequencies(self._tokenizer(record.text))
        return record

    def _retain(self, keep) -> int:
        before = len(self._records)
        self._records = [record for record in self._records if keep(record)]
        self._reindex()
        self._mark_mutated()
        return before - len(self._records)

    def _reindex(self) -> None:
        self._positions = {record.id: i for i, record in enumerate(self._records)}

    def _mark_mutated(self) -> None:
        self._bm25.invalidate()
        self._snapshot.save(self._records)

    def _reload(self) -> bool:
        records = self._snapshot.load()
        if records is None:
            return False

        for record in records:
            if not record.term_frequency:
                record.term_frequency = term_frequencies(self._tokenizer(record.text))

        # later duplicates of an id replace earlier ones in place
        self._records = []
        self._positions = {}
        for record in records:
            position = self._positions.get(record.id)
            if position is not None:
                self._records[position] = record
            else:
                self._positions[record.id] = len(self._records)
                self._records.append(record)

        self._bm25.invalidate()
        return True


def build_vector_store(settings: Settings) -> VectorStore:
    """Construct a store from settings. Callers own and inject the instance."""
    return VectorStore(
        snapshot_path=settings.vector_store_path,
        tokenizer=get_tokenizer(settings.tokenizer_mode),
        bm25_scope=BM25Scope.from_name(settings.bm25_scope),
    )
