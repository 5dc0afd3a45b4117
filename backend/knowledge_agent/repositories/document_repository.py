from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from ..models.document import DocumentEntry, utc_now_iso


class LocalDocumentRepository:
    """JSON-file manifest of indexed documents, one entry per doc id."""

    def __init__(self, store_path: Path):
        self.store_path = Path(store_path)
        self.logger = logging.getLogger("app.repositories.document")

    def list(self) -> List[DocumentEntry]:
        """All entries in insertion order. A corrupt manifest reads as empty."""
        if not self.store_path.exists():
            return []
        try:
            data = json.loads(self.store_path.read_text(encoding="utf-8"))
            return [DocumentEntry.model_validate(item) for item in data]
        except (OSError, ValueError, TypeError, ValidationError) as e:
            self.logger.warning(
                "Failed to read document manifest",
                extra={"path": str(self.store_path), "error": str(e)},
            )
            return []

    def get(self, doc_id: str) -> Optional[DocumentEntry]:
        for entry in self.list():
            if entry.doc_id == doc_id:
                return entry
        return None

    def upsert(self, entry: DocumentEntry) -> DocumentEntry:
        """Insert, or merge into the existing entry and refresh ``updated_at``."""
        entries = self.list()
        for idx, existing in enumerate(entries):
            if existing.doc_id == entry.doc_id:
                merged = existing.model_copy(
                    update={
                        **entry.model_dump(exclude={"created_at"}, exclude_unset=True),
                        "updated_at": utc_now_iso(),
                    }
                )
                entries[idx] = merged
                self._save(entries)
                return merged
        entries.append(entry)
        self._save(entries)
        return entry

    def delete(self, doc_id: str) -> bool:
        entries = self.list()
        remaining = [entry for entry in entries if entry.doc_id != doc_id]
        if len(remaining) == len(entries):
            return False
        self._save(remaining)
        return True

    def _save(self, entries: List[DocumentEntry]) -> None:
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        payload = [entry.model_dump(by_alias=True) for entry in entries]
        self.store_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
