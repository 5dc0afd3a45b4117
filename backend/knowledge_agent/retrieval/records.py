"""
Record types shared by the vector store, scorer and retrieval pipeline.

``VectorRecord`` is what the store owns and persists. ``ScoredRecord`` and
``SourceRef`` are query-time views and are never written to a snapshot.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional


def _page_from_meta(meta: Mapping[str, Any]) -> Optional[int]:
    page = meta.get("page")
    if page is None:
        return None
    try:
        return int(page)
    except (TypeError, ValueError):
        return None


@dataclass
class VectorRecord:
    """A single embedded chunk held by the store."""
    id: str
    doc_id: str
    text: str
    embedding: List[float]
    namespace: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    term_frequency: Dict[str, int] = field(default_factory=dict)

    @property
    def page(self) -> Optional[int]:
        return _page_from_meta(self.meta)

    @property
    def chunk_suffix(self) -> str:
        """Portion of the id after its last ``:`` separator."""
        return self.id.rsplit(":", 1)[-1]

    def to_snapshot(self) -> Dict[str, Any]:
        """Serialise using the snapshot file's field names."""
        payload: Dict[str, Any] = {
            "id": self.id,
            "docId": self.doc_id,
            "text": self.text,
            "embedding": list(self.embedding),
            "termFrequency": dict(self.term_frequency),
        }
        if self.namespace is not None:
            payload["namespace"] = self.namespace
        if self.meta:
            payload["meta"] = dict(self.meta)
        return payload

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "VectorRecord":
        """
        Build a record from a snapshot entry or a caller-supplied mapping.

        Accepts both snapshot field names (``docId``, ``termFrequency``, and
        the legacy ``_tokenFreq``) and Python-style names (``doc_id``).
        """
        term_frequency = (
            data.get("termFrequency")
            or data.get("_tokenFreq")
            or data.get("term_frequency")
            or {}
        )
        doc_id = data.get("docId", data.get("doc_id"))
        if doc_id is None:
            raise KeyError("docId")
        return cls(
            id=str(data["id"]),
            doc_id=str(doc_id),
            text=str(data.get("text", "")),
            embedding=[float(x) for x in data.get("embedding", [])],
            namespace=data.get("namespace"),
            meta=dict(data.get("meta") or {}),
            term_frequency={str(k): int(v) for k, v in term_frequency.items()},
        )


@dataclass
class ScoredRecord:
    """
    A record together with its query-time scores.

    ``lexical_component`` holds the raw BM25 score; the fused ``score`` uses
    its logistic-normalised value.
    """
    record: VectorRecord
    score: float
    semantic_component: float
    lexical_component: float

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def doc_id(self) -> str:
        return self.record.doc_id

    @property
    def text(self) -> str:
        return self.record.text

    @property
    def page(self) -> Optional[int]:
        return self.record.page

    def to_source(self) -> "SourceRef":
        return SourceRef(id=self.id, doc_id=self.doc_id, page=self.page, score=self.score)


@dataclass
class SourceRef:
    """Provenance entry returned alongside a stitched context."""
    id: str
    doc_id: str
    page: Optional[int]
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "docId": self.doc_id, "page": self.page, "score": self.score}
