import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import hashlib
from typing import Dict, List, Optional

import pytest

from knowledge_agent.core.config import get_settings
from knowledge_agent.logging_utils import clear_context
from knowledge_agent.retrieval.records import VectorRecord


def fake_embedding(text: str, dim: int = 8) -> List[float]:
    """Deterministic pseudo-embedding derived from a hash of the text."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [(byte - 127.5) / 127.5 for byte in digest[:dim]]


def make_record(
    record_id: str,
    text: str = "",
    embedding: Optional[List[float]] = None,
    namespace: Optional[str] = "pdf",
    page: Optional[int] = None,
) -> VectorRecord:
    doc_id = record_id.split(":", 1)[0]
    meta = {"page": page} if page is not None else {}
    return VectorRecord(
        id=record_id,
        doc_id=doc_id,
        text=text or f"text of {record_id}",
        embedding=embedding if embedding is not None else fake_embedding(record_id),
        namespace=namespace,
        meta=meta,
    )


class FakeEmbedder:
    """Embeds via ``fake_embedding`` unless a fixed vector is registered for a text."""

    def __init__(self, dim: int = 8, fixed: Optional[Dict[str, List[float]]] = None):
        self.dim = dim
        self.fixed = dict(fixed or {})
        self.calls: List[List[str]] = []

    def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [self.fixed.get(text) or fake_embedding(text, self.dim) for text in texts]


class FailingEmbedder:
    def __init__(self, error: Exception):
        self.error = error

    def embed(self, texts: List[str]) -> List[List[float]]:
        raise self.error


class FakeGenerator:
    """Returns canned text and records every prompt it receives."""

    model_name = "fake-model"

    def __init__(self, response: str = "", error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.prompts: List[str] = []

    def generate(self, prompt: str, temperature: float, max_tokens: int) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def snapshot_path(tmp_path: Path) -> Path:
    return tmp_path / "storage" / "vectors.json"


@pytest.fixture(autouse=True)
def reset_state():
    get_settings.cache_clear()
    clear_context()
    yield
    get_settings.cache_clear()
    clear_context()
