"""
JSON snapshot persistence for the vector store.

The snapshot is the only state shared between processes. Writers overwrite
the whole file; readers detect changes by polling the file's identity
(modification time, size and inode). Any difference from what an instance
last loaded or wrote counts as a change, even an older mtime: an atomic
rename keeps the temp file's write time, so the file that wins a race can
carry an mtime older than the loser's. There is no merge or locking, and
the last rename wins.

File layout:

    {"schema_version": 1, "records": [{"id": ..., "docId": ..., ...}, ...]}

Bare JSON arrays of records (the pre-versioned layout) are still accepted on
load.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, List, NamedTuple, Optional, Sequence

from .records import VectorRecord


SCHEMA_VERSION = 1


class Fingerprint(NamedTuple):
    """Identity of the snapshot file as of one stat() call."""
    mtime_ns: int
    size: int
    inode: int


class SnapshotStore:
    """
    Whole-collection JSON snapshot with modification-time tracking.

    With no path configured every operation is a no-op.

    Example:
        >>> snapshot = SnapshotStore(Path("storage/vectors.json"))
        >>> snapshot.save(records)
        >>> snapshot.is_stale()
        False
        >>> snapshot.load()  # -> list of VectorRecord, or None
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._logger = logger or logging.getLogger("app.retrieval.snapshot_store")
        self._last_seen: Optional[Fingerprint] = None

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def enabled(self) -> bool:
        return self._path is not None

    @property
    def last_loaded_mtime(self) -> Optional[int]:
        """Modification time (ns) of the file as last loaded or written."""
        return self._last_seen.mtime_ns if self._last_seen is not None else None

    def exists(self) -> bool:
        return self._path is not None and self._path.exists()

    def current_mtime(self) -> Optional[int]:
        """Current modification time of the snapshot file, or None if absent."""
        fingerprint = self._fingerprint()
        return fingerprint.mtime_ns if fingerprint is not None else None

    def is_stale(self) -> bool:
        """True when the file on disk differs from what this instance last saw."""
        fingerprint = self._fingerprint()
        if fingerprint is None:
            return False
        return fingerprint != self._last_seen

    def _fingerprint(self) -> Optional[Fingerprint]:
        if self._path is None:
            return None
        try:
            stat = self._path.stat()
        except FileNotFoundError:
            return None
        return Fingerprint(stat.st_mtime_ns, stat.st_size, stat.st_ino)

    def load(self) -> Optional[List[VectorRecord]]:
        """
        Read every record from the snapshot.

        Returns:
            The records, or None when the file is missing, unreadable or
            corrupt. Corruption is logged as a warning and never raised.
        """
        if self._path is None or not self._path.exists():
            return None

        fingerprint = self._fingerprint()
        try:
            raw = self._path.read_text(encoding="utf-8")
            records = self._parse(json.loads(raw))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            self._logger.warning(
                "Failed to load vector store snapshot",
                extra={"path": str(self._path), "error": str(e)},
            )
            # do not retry the same broken file on every search
            self._last_seen = fingerprint
            return None

        self._last_seen = fingerprint
        self._logger.info(
            "Loaded vector store snapshot",
            extra={"path": str(self._path), "records": len(records)},
        )
        return records

    def save(self, records: Sequence[VectorRecord]) -> None:
        """
        Overwrite the snapshot with the full collection.

        The file is written to a temporary sibling and moved into place, so a
        concurrent reader never observes a half-written snapshot.

        Raises:
            OSError: If the file cannot be written
        """
        if self._path is None:
            return

        payload = {
            "schema_version": SCHEMA_VERSION,
            "records": [record.to_snapshot() for record in records],
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self._path.parent), prefix=f".{self._path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fp:
                    json.dump(payload, fp, ensure_ascii=False)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            self._logger.error(
                "Failed to persist vector store snapshot",
                extra={"path": str(self._path), "error": str(e)},
            )
            raise

        self._last_seen = self._fingerprint()
        self._logger.debug(
            "Persisted vector store snapshot",
            extra={"path": str(self._path), "records": len(records)},
        )

    @staticmethod
    def _parse(data: Any) -> List[VectorRecord]:
        if isinstance(data, list):
            entries = data
        elif isinstance(data, dict):
            version = data.get("schema_version")
            if version != SCHEMA_VERSION:
                raise ValueError(f"Unsupported snapshot schema_version: {version!r}")
            entries = data.get("records", [])
        else:
            raise ValueError(f"Unexpected snapshot root type: {type(data).__name__}")
        return [VectorRecord.from_mapping(entry) for entry in entries]
