from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..core.config import Settings, get_settings
from ..repositories.document_repository import LocalDocumentRepository
from ..retrieval.pipeline import RetrievalPipeline
from ..retrieval.protocols import EmbeddingProvider, TextGenerator
from ..retrieval.query_expander import QueryExpander
from ..retrieval.vector_store import VectorStore, build_vector_store
from .embedding_service import EmbeddingService
from .generation_service import GenerationService
from .ingestion_service import IngestionService
from .rag_service import RAGService


@dataclass
class Services:
    """Everything that shares one vector store instance."""
    settings: Settings
    store: VectorStore
    repository: LocalDocumentRepository
    pipeline: RetrievalPipeline
    ingestion: IngestionService
    rag: RAGService


def build_services(
    settings: Optional[Settings] = None,
    embedder: Optional[EmbeddingProvider] = None,
    generator: Optional[TextGenerator] = None,
    store: Optional[VectorStore] = None,
) -> Services:
    """
    Wire the store, pipeline, ingestion and answering services from settings.

    Nothing is cached: each call builds a fresh store (or uses the one given),
    so callers decide how long it lives and who shares it.
    """
    settings = settings or get_settings()
    store = store if store is not None else build_vector_store(settings)
    embedder = embedder or EmbeddingService(settings)
    generator = generator or GenerationService(settings)
    repository = LocalDocumentRepository(settings.manifest_path)

    expander = QueryExpander(
        generator,
        temperature=settings.expansion_temperature,
        max_tokens=settings.expansion_max_tokens,
    )
    pipeline = RetrievalPipeline(store, embedder, expander)
    return Services(
        settings=settings,
        store=store,
        repository=repository,
        pipeline=pipeline,
        ingestion=IngestionService(
            store,
            embedder,
            repository=repository,
            batch_size=settings.embedding_batch_size,
        ),
        rag=RAGService(pipeline, generator, settings),
    )
