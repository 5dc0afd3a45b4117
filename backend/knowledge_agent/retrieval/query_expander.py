"""
Multi-query expansion.

Asks a text generator for alternative phrasings of a query so that each can
be searched separately. Expansion is strictly best-effort: any generator
failure degrades to the original query alone.
"""

import logging
import time
from typing import List, Optional

from prometheus_client import Counter

from ..prompts import QUERY_EXPANSION_TEMPLATE
from .protocols import TextGenerator


EXPANSION_FAILURES = Counter(
    "query_expansion_failures_total",
    "Query expansions that fell back to the original query",
)


class QueryExpander:
    """
    Generate alternative phrasings for a search query.

    Example:
        >>> expander = QueryExpander(generator)
        >>> expander.expand("how does consensus work", 3)
        ['how does consensus work', 'consensus mechanism', 'block validation rules']
    """

    def __init__(
        self,
        generator: Optional[TextGenerator],
        temperature: float = 0.2,
        max_tokens: int = 120,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._generator = generator
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._logger = logger or logging.getLogger("app.retrieval.query_expander")

    def expand(self, query: str, n: int) -> List[str]:
        """
        Return up to ``max(n, 1)`` queries, the original first.

        Args:
            query: The user's query
            n: Number of variants requested; ``n <= 1`` skips the generator

        Returns:
            Non-empty list of distinct queries starting with ``query``
        """
        if n <= 1 or self._generator is None:
            return [query]

        start = time.perf_counter()
        try:
            text = self._generator.generate(
                QUERY_EXPANSION_TEMPLATE.format(n=n, query=query),
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
            variants = self.parse_variants(text, n)
        except Exception as e:
            EXPANSION_FAILURES.inc()
            self._logger.warning(
                "Query expansion failed, using original query only",
                extra={"error": str(e)},
            )
            return [query]

        queries = _dedupe([query, *variants])[:max(n, 1)]
        self._logger.debug(
            "Expanded query",
            extra={
                "variants": len(queries),
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return queries

    @staticmethod
    def parse_variants(text: str, n: int) -> List[str]:
        """Split generator output into at most ``n`` non-empty trimmed lines."""
        if not isinstance(text, str):
            raise TypeError(f"Expected generated text, got {type(text).__name__}")
        lines = [line.strip() for line in text.splitlines()]
        return [line for line in lines if line][:n]


def _dedupe(queries: List[str]) -> List[str]:
    seen = set()
    unique: List[str] = []
    for q in queries:
        if q not in seen:
            seen.add(q)
            unique.append(q)
    return unique
