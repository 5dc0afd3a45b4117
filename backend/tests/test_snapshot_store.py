import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

"""
Tests for JSON snapshot persistence and cross-instance reload coherence.
"""

import json
import os

import pytest

from knowledge_agent.retrieval.bm25_index import IndexState
from knowledge_agent.retrieval.snapshot_store import SCHEMA_VERSION, SnapshotStore
from knowledge_agent.retrieval.vector_store import VectorStore

from conftest import fake_embedding, make_record


def bump_mtime(path: Path, store: VectorStore) -> None:
    """Make the file strictly newer than what ``store`` last saw, even on coarse filesystems."""
    seen = store._snapshot.last_loaded_mtime or 0
    newer = max(path.stat().st_mtime_ns, seen) + 1_000_000_000
    os.utime(path, ns=(newer, newer))


class TestSnapshotStore:

    def test_disabled_without_path(self):
        snapshot = SnapshotStore(None)
        assert snapshot.enabled is False
        assert snapshot.load() is None
        snapshot.save([make_record("d:1")])  # no-op
        assert snapshot.is_stale() is False

    def test_missing_file_loads_none(self, snapshot_path):
        snapshot = SnapshotStore(snapshot_path)
        assert snapshot.load() is None
        assert snapshot.is_stale() is False

    def test_save_writes_versioned_layout(self, snapshot_path):
        snapshot = SnapshotStore(snapshot_path)
        record = make_record("d1:c1", "hello world", page=4)
        record.term_frequency = {"hello": 1, "world": 1}
        snapshot.save([record])

        data = json.loads(snapshot_path.read_text(encoding="utf-8"))
        assert data["schema_version"] == SCHEMA_VERSION
        entry = data["records"][0]
        assert entry["id"] == "d1:c1"
        assert entry["docId"] == "d1"
        assert entry["namespace"] == "pdf"
        assert entry["meta"] == {"page": 4}
        assert entry["termFrequency"] == {"hello": 1, "world": 1}

    def test_save_creates_parent_dirs_and_leaves_no_temp_files(self, snapshot_path):
        SnapshotStore(snapshot_path).save([make_record("d:1")])
        assert snapshot_path.exists()
        assert [p.name for p in snapshot_path.parent.iterdir()] == ["vectors.json"]

    def test_save_records_mtime(self, snapshot_path):
        snapshot = SnapshotStore(snapshot_path)
        snapshot.save([make_record("d:1")])
        assert snapshot.last_loaded_mtime == snapshot_path.stat().st_mtime_ns
        assert snapshot.is_stale() is False

    def test_save_failure_propagates(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x", encoding="utf-8")
        snapshot = SnapshotStore(blocker / "vectors.json")
        with pytest.raises(OSError):
            snapshot.save([make_record("d:1")])

    def test_legacy_bare_array_with_token_freq(self, snapshot_path):
        snapshot_path.parent.mkdir(parents=True)
        snapshot_path.write_text(json.dumps([
            {"id": "d:1", "docId": "d", "text": "fox", "embedding": [1.0, 0.0],
             "namespace": "pdf", "_tokenFreq": {"fox": 1}},
        ]), encoding="utf-8")
        records = SnapshotStore(snapshot_path).load()
        assert len(records) == 1
        assert records[0].term_frequency == {"fox": 1}

    @pytest.mark.parametrize("content", [
        "{not json",
        json.dumps({"schema_version": 99, "records": []}),
        json.dumps("just a string"),
        json.dumps([{"text": "missing id"}]),
    ])
    def test_corrupt_content_loads_none(self, snapshot_path, content):
        snapshot_path.parent.mkdir(parents=True)
        snapshot_path.write_text(content, encoding="utf-8")
        snapshot = SnapshotStore(snapshot_path)
        assert snapshot.load() is None
        # the broken file is not retried until it changes
        assert snapshot.is_stale() is False


class TestVectorStorePersistence:

    def test_round_trip_through_new_instance(self, snapshot_path):
        writer = VectorStore(snapshot_path=snapshot_path)
        writer.upsert([make_record("d1:c1", "proof of work", page=1), make_record("d2:c1", "merkle")])

        reader = VectorStore(snapshot_path=snapshot_path)
        assert [r.id for r in reader.records] == ["d1:c1", "d2:c1"]
        assert reader.get("d1:c1").page == 1
        assert reader.get("d1:c1").term_frequency == {"proof": 1, "of": 1, "work": 1}
        assert reader.bm25_state is IndexState.DIRTY

    def test_missing_term_frequency_is_recomputed_on_load(self, snapshot_path):
        snapshot_path.parent.mkdir(parents=True)
        snapshot_path.write_text(json.dumps([
            {"id": "d:1", "docId": "d", "text": "Quick Fox", "embedding": [1.0]},
        ]), encoding="utf-8")
        store = VectorStore(snapshot_path=snapshot_path)
        assert store.get("d:1").term_frequency == {"quick": 1, "fox": 1}

    def test_duplicate_ids_in_snapshot_collapse(self, snapshot_path):
        snapshot_path.parent.mkdir(parents=True)
        snapshot_path.write_text(json.dumps([
            {"id": "d:1", "docId": "d", "text": "old", "embedding": [1.0]},
            {"id": "d:2", "docId": "d", "text": "other", "embedding": [1.0]},
            {"id": "d:1", "docId": "d", "text": "new", "embedding": [1.0]},
        ]), encoding="utf-8")
        store = VectorStore(snapshot_path=snapshot_path)
        assert [r.id for r in store.records] == ["d:1", "d:2"]
        assert store.get("d:1").text == "new"

    def test_corrupt_snapshot_starts_empty(self, snapshot_path):
        snapshot_path.parent.mkdir(parents=True)
        snapshot_path.write_text("[{]", encoding="utf-8")
        store = VectorStore(snapshot_path=snapshot_path)
        assert len(store) == 0
        assert store.search_hybrid([1.0], query="anything") == []

    def test_in_memory_store_writes_nothing(self, tmp_path):
        store = VectorStore()
        store.upsert([make_record("d:1")])
        assert list(tmp_path.iterdir()) == []

    def test_reload_coherence_across_instances(self, snapshot_path):
        """A search on B reflects A's write once the snapshot differs from B's copy."""
        store_a = VectorStore(snapshot_path=snapshot_path)
        store_b = VectorStore(snapshot_path=snapshot_path)

        store_a.upsert([make_record("d1:c1", "first write")])
        hits = store_b.search_hybrid(fake_embedding("q"), query="first", top_k=5)
        assert [h.id for h in hits] == ["d1:c1"]

        store_a.upsert([make_record("d2:c1", "second write")])
        bump_mtime(snapshot_path, store_b)
        hits = store_b.search_hybrid(fake_embedding("q"), query="second", top_k=5)
        assert {h.id for h in hits} == {"d1:c1", "d2:c1"}
        assert len(store_b) == 2

    def test_reload_is_full_replace(self, snapshot_path):
        store_a = VectorStore(snapshot_path=snapshot_path)
        store_a.upsert([make_record("d1:c1"), make_record("d2:c1")])
        store_b = VectorStore(snapshot_path=snapshot_path)

        store_a.delete_by_doc_ids(["d1"])
        bump_mtime(snapshot_path, store_b)
        assert store_b.reload_if_stale() is True
        assert [r.id for r in store_b.records] == ["d2:c1"]

    def test_up_to_date_store_does_not_reload(self, snapshot_path):
        store = VectorStore(snapshot_path=snapshot_path)
        store.upsert([make_record("d1:c1")])
        assert store.reload_if_stale() is False

    def test_failed_reload_keeps_current_records(self, snapshot_path):
        store_a = VectorStore(snapshot_path=snapshot_path)
        store_a.upsert([make_record("d1:c1")])
        store_b = VectorStore(snapshot_path=snapshot_path)

        snapshot_path.write_text("garbage", encoding="utf-8")
        bump_mtime(snapshot_path, store_b)
        assert store_b.reload_if_stale() is False
        assert [r.id for r in store_b.records] == ["d1:c1"]

    def test_interleaved_writers_reader_sees_last_rename(self, snapshot_path, monkeypatch):
        """B's rename lands after A's save, carrying an older mtime; A still picks it up."""
        store_a = VectorStore(snapshot_path=snapshot_path)
        store_b = VectorStore(snapshot_path=snapshot_path)
        real_replace = os.replace

        def replace_after_other_writer(src, dst):
            monkeypatch.setattr(os, "replace", real_replace)
            store_a.upsert([make_record("a:c1", "alpha write")])
            # B's temp file was written before A's save
            older = snapshot_path.stat().st_mtime_ns - 1_000_000_000
            os.utime(src, ns=(older, older))
            real_replace(src, dst)

        monkeypatch.setattr(os, "replace", replace_after_other_writer)
        store_b.upsert([make_record("b:c1", "bravo write")])

        assert [r.id for r in SnapshotStore(snapshot_path).load()] == ["b:c1"]
        assert snapshot_path.stat().st_mtime_ns < store_a._snapshot.last_loaded_mtime
        hits = store_a.search_hybrid(fake_embedding("q"), query="bravo", top_k=5)
        assert [h.id for h in hits] == ["b:c1"]

    def test_rewrite_with_older_mtime_is_picked_up(self, snapshot_path):
        store = VectorStore(snapshot_path=snapshot_path)
        store.upsert([make_record("d1:c1")])
        seen = store._snapshot.last_loaded_mtime

        SnapshotStore(snapshot_path).save([make_record("d1:c1"), make_record("d2:c1")])
        os.utime(snapshot_path, ns=(seen - 1_000_000_000, seen - 1_000_000_000))

        assert store.reload_if_stale() is True
        assert [r.id for r in store.records] == ["d1:c1", "d2:c1"]
