"""
BM25 index over the records of a vector store.

Statistics (document frequency, IDF, average document length) are derived from
the per-record term-frequency caches and recomputed lazily. The cache is an
explicit two-state machine:

    CLEAN --invalidate()--> DIRTY --ensure_fresh(corpus)--> CLEAN

Any store mutation calls ``invalidate()``; any scoring call runs
``ensure_fresh()`` first, so a score is never computed from stale statistics.
"""

import math
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Hashable, Iterable, List, Optional, Sequence

from .records import VectorRecord
from .tokenizer import document_length


class IndexState(Enum):
    """Validity of the cached BM25 statistics."""
    CLEAN = "clean"
    DIRTY = "dirty"


class BM25Scope(Enum):
    """Which records the BM25 statistics are computed over."""
    GLOBAL = "global"          # every record in the store
    NAMESPACE = "namespace"    # only records sharing the scored record's namespace

    @classmethod
    def from_name(cls, name: str) -> "BM25Scope":
        try:
            return cls(name.lower())
        except ValueError:
            raise ValueError(
                f"Unknown BM25 scope {name!r}; expected 'global' or 'namespace'"
            ) from None


@dataclass
class BM25Statistics:
    """Corpus statistics for one scope."""
    record_count: int = 0
    document_frequency: Dict[str, int] = field(default_factory=dict)
    idf: Dict[str, float] = field(default_factory=dict)
    avgdl: float = 0.0


def compute_statistics(records: Iterable[VectorRecord]) -> BM25Statistics:
    """
    Compute Okapi BM25 statistics for a set of records.

    IDF uses the smoothed form ``ln(1 + (N - df + 0.5) / (df + 0.5))`` with no
    clamping; tokens present in every record still get a small positive
    weight.
    """
    document_frequency: Counter = Counter()
    total_length = 0
    record_count = 0
    for record in records:
        record_count += 1
        document_frequency.update(record.term_frequency.keys())
        total_length += document_length(record.term_frequency)

    n = record_count or 1
    idf = {
        token: math.log(1 + (n - df + 0.5) / (df + 0.5))
        for token, df in document_frequency.items()
    }
    return BM25Statistics(
        record_count=record_count,
        document_frequency=dict(document_frequency),
        idf=idf,
        avgdl=total_length / n,
    )


class BM25Index:
    """
    Lazily recomputed BM25 statistics and scoring.

    Example:
        >>> index = BM25Index()
        >>> index.state
        <IndexState.DIRTY: 'dirty'>
        >>> index.ensure_fresh(records)
        >>> index.state
        <IndexState.CLEAN: 'clean'>
    """

    K1 = 1.2
    B = 0.75

    def __init__(self, scope: BM25Scope = BM25Scope.GLOBAL) -> None:
        self._scope = scope
        self._state = IndexState.DIRTY
        self._statistics: Dict[Optional[Hashable], BM25Statistics] = {}
        self._recompute_count = 0

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def scope(self) -> BM25Scope:
        return self._scope

    @property
    def recompute_count(self) -> int:
        """Number of DIRTY -> CLEAN transitions so far."""
        return self._recompute_count

    def invalidate(self) -> None:
        """Mark the statistics stale after any corpus mutation."""
        self._state = IndexState.DIRTY
        self._statistics = {}

    def ensure_fresh(self, corpus: Sequence[VectorRecord]) -> None:
        """Recompute statistics from ``corpus`` if, and only if, they are DIRTY."""
        if self._state is IndexState.CLEAN:
            return

        if self._scope is BM25Scope.GLOBAL:
            self._statistics = {None: compute_statistics(corpus)}
        else:
            groups: Dict[Optional[str], List[VectorRecord]] = {}
            for record in corpus:
                groups.setdefault(record.namespace, []).append(record)
            self._statistics = {
                namespace: compute_statistics(members)
                for namespace, members in groups.items()
            }

        self._state = IndexState.CLEAN
        self._recompute_count += 1

    def statistics(self, namespace: Optional[str] = None) -> BM25Statistics:
        """
        Statistics for the given namespace (ignored for GLOBAL scope).

        Raises:
            RuntimeError: If called while the index is DIRTY
        """
        if self._state is IndexState.DIRTY:
            raise RuntimeError("BM25 statistics are stale; call ensure_fresh() first")
        key = None if self._scope is BM25Scope.GLOBAL else namespace
        return self._statistics.get(key) or BM25Statistics()

    def idf(self, token: str, namespace: Optional[str] = None) -> float:
        return self.statistics(namespace).idf.get(token, 0.0)

    def score(
        self,
        query_tokens: Sequence[str],
        record: VectorRecord,
        corpus: Sequence[VectorRecord],
    ) -> float:
        """
        Raw BM25 score of ``record`` for ``query_tokens``.

        Tokens absent from the record contribute nothing. Repeated query tokens
        are counted once per occurrence.
        """
        self.ensure_fresh(corpus)
        stats = self.statistics(record.namespace)
        if stats.avgdl <= 0:
            # record is not part of the corpus the statistics were built from
            return 0.0
        frequencies = record.term_frequency
        dl = document_length(frequencies)

        score = 0.0
        for token in query_tokens:
            f = frequencies.get(token, 0)
            if not f:
                continue
            idf = stats.idf.get(token, 0.0)
            norm = 1 - self.B + self.B * (dl / stats.avgdl)
            score += idf * (f * (self.K1 + 1)) / (f + self.K1 * norm)
        return score
