from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from ..logging_utils import log_context
from ..models.document import ChunkInput, DocumentEntry, IngestResult, utc_now_iso
from ..repositories.document_repository import LocalDocumentRepository
from ..retrieval.protocols import EmbeddingProvider
from ..retrieval.records import VectorRecord
from ..retrieval.vector_store import VectorStore


class IngestionService:
    """
    Embed pre-chunked document text and write it into a vector store.

    Parsing and chunking happen upstream; this service only turns chunks into
    records, keeps the document manifest in step, and removes documents.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingProvider,
        repository: Optional[LocalDocumentRepository] = None,
        batch_size: int = 100,
    ):
        self.store = store
        self.embedder = embedder
        self.repository = repository
        self.batch_size = max(1, batch_size)
        self.logger = logging.getLogger("app.services.ingestion")

    def index_document(
        self,
        doc_id: str,
        chunks: Sequence[ChunkInput],
        namespace: Optional[str] = "pdf",
        meta: Optional[Dict[str, Any]] = None,
        original_name: Optional[str] = None,
        replace_existing: bool = True,
    ) -> IngestResult:
        if not chunks:
            raise ValueError(f"No chunks to index for document {doc_id}")
        with log_context(document_id=doc_id, namespace=namespace):
            return self._index(doc_id, chunks, namespace, meta, original_name, replace_existing)

    def delete_document(self, doc_id: str) -> int:
        with log_context(document_id=doc_id):
            removed = self.store.delete_by_doc_ids([doc_id])
            if self.repository is not None:
                self.repository.delete(doc_id)
            self.logger.info("Deleted document", extra={"doc_id": doc_id, "removed": removed})
        return removed

    def _index(
        self,
        doc_id: str,
        chunks: Sequence[ChunkInput],
        namespace: Optional[str],
        meta: Optional[Dict[str, Any]],
        original_name: Optional[str],
        replace_existing: bool,
    ) -> IngestResult:
        start = time.perf_counter()

        texts = [chunk.text for chunk in chunks]
        embeddings = self._embed_batches(texts)
        if len(embeddings) != len(chunks):
            raise ValueError(
                f"Embedding provider returned {len(embeddings)} vectors for {len(chunks)} chunks"
            )

        ingested_at = utc_now_iso()
        records: List[VectorRecord] = []
        for chunk, embedding in zip(chunks, embeddings):
            record_meta: Dict[str, Any] = dict(meta or {})
            record_meta.update({"ingested_at": ingested_at})
            if chunk.page is not None:
                record_meta["page"] = chunk.page
            if original_name:
                record_meta["file_original_name"] = original_name
            records.append(
                VectorRecord(
                    id=f"{doc_id}:{chunk.id}",
                    doc_id=doc_id,
                    namespace=namespace,
                    text=chunk.text,
                    embedding=list(embedding),
                    meta=record_meta,
                )
            )

        replaced = self.store.delete_by_doc_ids([doc_id]) if replace_existing else 0
        self.store.upsert(records)

        pages = len({chunk.page for chunk in chunks if chunk.page is not None})
        if self.repository is not None:
            self.repository.upsert(
                DocumentEntry(
                    doc_id=doc_id,
                    filename=original_name or doc_id,
                    original_name=original_name or doc_id,
                    pages=pages,
                    chunks=len(records),
                    namespace=namespace,
                    meta=dict(meta or {}),
                )
            )

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        self.logger.info(
            "Indexed document",
            extra={
                "doc_id": doc_id,
                "chunks": len(records),
                "pages": pages,
                "replaced": replaced,
                "duration_ms": duration_ms,
            },
        )
        return IngestResult(
            doc_id=doc_id,
            namespace=namespace,
            chunks=len(records),
            pages=pages,
            replaced=replaced,
            duration_ms=duration_ms,
        )

    def _embed_batches(self, texts: List[str]) -> List[List[float]]:
        embeddings: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            embeddings.extend(self.embedder.embed(texts[start:start + self.batch_size]))
        return embeddings
