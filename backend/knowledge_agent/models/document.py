from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChunkInput(BaseModel):
    """A pre-split chunk handed to ingestion. ``id`` is unique within its document."""
    id: str
    text: str
    page: Optional[int] = None


class DocumentEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    doc_id: str = Field(alias="docId")
    filename: str = ""
    original_name: str = Field(default="", alias="originalName")
    pages: int = 0
    chunks: int = 0
    namespace: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso, alias="createdAt")
    updated_at: str = Field(default_factory=utc_now_iso, alias="updatedAt")
    meta: Dict[str, Any] = Field(default_factory=dict)


class IngestResult(BaseModel):
    doc_id: str
    namespace: Optional[str]
    chunks: int
    pages: int
    replaced: int = 0
    duration_ms: float = 0.0


class AnswerSource(BaseModel):
    id: str
    doc_id: str = Field(serialization_alias="docId")
    page: Optional[int] = None
    score: float


class AnswerResult(BaseModel):
    answer: str
    sources: List[AnswerSource] = Field(default_factory=list)
    context: str = ""
    model_used: Optional[str] = None
    broadened: bool = False
