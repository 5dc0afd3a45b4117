#!/usr/bin/env python3
"""
Vector Store Inspection Script.

Loads the JSON snapshot of a vector store and reports what it holds:
record count and chunks per document. Can also remove documents or clear a
namespace, writing the result back to the same snapshot.

Usage:
    python -m scripts.inspect_store [--path P] [--namespace NS] [--verbose]
    python -m scripts.inspect_store --delete-doc d1 d2
    python -m scripts.inspect_store --clear-namespace pdf

Options:
    --path              Snapshot file (defaults to VECTOR_STORE_PATH)
    --namespace         Only report documents in this namespace
    --delete-doc        Remove every record of the given documents
    --clear-namespace   Remove every record in the given namespace
    --verbose           Show debug logging
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from knowledge_agent.core.config import get_settings
from knowledge_agent.retrieval.bm25_index import BM25Scope
from knowledge_agent.retrieval.tokenizer import get_tokenizer
from knowledge_agent.retrieval.vector_store import VectorStore


@dataclass
class StoreReport:
    """Report of a vector store's contents."""

    path: Optional[str] = None
    namespace: Optional[str] = None
    records: int = 0
    documents: List[Dict[str, object]] = field(default_factory=list)

    # Mutations applied before reporting
    deleted_records: int = 0
    cleared_records: int = 0

    @property
    def total_chunks(self) -> int:
        """Chunks across the reported documents."""
        return sum(int(doc["chunks"]) for doc in self.documents)

    @property
    def is_empty(self) -> bool:
        return self.records == 0

    def summary(self) -> str:
        """Generate a human-readable summary."""
        lines = [
            "=" * 60,
            "VECTOR STORE REPORT",
            "=" * 60,
            f"Snapshot:               {self.path or '(in-memory)'}",
            f"Records:                {self.records}",
            f"Documents:              {len(self.documents)}",
        ]
        if self.namespace:
            lines.append(f"Namespace filter:       {self.namespace}")
        lines.append("-" * 60)

        if not self.documents:
            lines.append("No documents indexed.")
        else:
            for doc in self.documents:
                namespace = doc.get("namespace") or "-"
                lines.append(f"  {doc['doc_id']:<30} {namespace:<10} {doc['chunks']:>6} chunks")

        if self.deleted_records or self.cleared_records:
            lines.append("-" * 60)
            lines.append("CHANGES APPLIED:")
            if self.deleted_records:
                lines.append(f"  Deleted records: {self.deleted_records}")
            if self.cleared_records:
                lines.append(f"  Cleared records: {self.cleared_records}")

        lines.append("=" * 60)
        return "\n".join(lines)


def inspect_store(
    store: VectorStore,
    namespace: Optional[str] = None,
    delete_doc_ids: Sequence[str] = (),
    clear_namespace: Optional[str] = None,
) -> StoreReport:
    """Apply the requested mutations, then report the store's contents."""
    report = StoreReport(
        path=str(store.snapshot_path) if store.snapshot_path else None,
        namespace=namespace,
    )
    if delete_doc_ids:
        report.deleted_records = store.delete_by_doc_ids(delete_doc_ids)
    if clear_namespace:
        report.cleared_records = store.clear_namespace(clear_namespace)

    report.records = len(store)
    report.documents = store.list_documents(namespace)
    return report


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the script."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point for the inspection script.

    Returns:
        Exit code: 0 on success, 2 on error
    """
    parser = argparse.ArgumentParser(
        description="Inspect a vector store snapshot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--path", type=Path, default=None, help="Snapshot file to inspect")
    parser.add_argument("--namespace", default=None, help="Only report this namespace")
    parser.add_argument(
        "--delete-doc",
        nargs="+",
        default=[],
        metavar="DOC_ID",
        help="Remove every record of these documents",
    )
    parser.add_argument("--clear-namespace", default=None, help="Remove every record in this namespace")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show detailed information")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    logger = logging.getLogger("inspect_store")

    try:
        settings = get_settings()
        path = args.path or settings.vector_store_path
        if path is None:
            raise ValueError("No snapshot path given and VECTOR_STORE_PATH is not set")
        if not Path(path).exists():
            raise FileNotFoundError(f"Snapshot not found: {path}")

        store = VectorStore(
            snapshot_path=Path(path),
            tokenizer=get_tokenizer(settings.tokenizer_mode),
            bm25_scope=BM25Scope.from_name(settings.bm25_scope),
        )
        report = inspect_store(
            store,
            namespace=args.namespace,
            delete_doc_ids=args.delete_doc,
            clear_namespace=args.clear_namespace,
        )
        print(report.summary())
        return 0

    except Exception as e:
        logger.error(f"Inspection failed: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
