import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

"""
Property-based tests for the hybrid scorer.

Covers score fusion, alpha weighting, filter correctness and ordering.
"""

import math
from typing import List

import pytest
from hypothesis import assume, given, settings, strategies as st

from knowledge_agent.retrieval.hybrid_scorer import (
    EmbeddingDimensionError,
    HybridScorer,
    cosine_similarity,
    normalize_bm25,
)
from knowledge_agent.retrieval.records import VectorRecord
from knowledge_agent.retrieval.tokenizer import term_frequencies, tokenize


# =============================================================================
# Custom Strategies
# =============================================================================

DIM = 4

valid_component = st.floats(min_value=-1.0, max_value=1.0, allow_nan=False, allow_infinity=False)

valid_embedding = st.lists(valid_component, min_size=DIM, max_size=DIM).filter(
    lambda v: math.sqrt(sum(x * x for x in v)) > 1e-3
)

valid_text = st.text(
    alphabet=st.sampled_from(list("abcdefgh ")),
    min_size=1,
    max_size=40,
)

valid_weight = st.floats(min_value=0.0, max_value=1.0, allow_nan=False, allow_infinity=False)

doc_id_strategy = st.sampled_from(["d1", "d2", "d3"])


def build_record(record_id: str, doc_id: str, text: str, embedding: List[float], namespace="pdf") -> VectorRecord:
    return VectorRecord(
        id=record_id,
        doc_id=doc_id,
        text=text,
        embedding=embedding,
        namespace=namespace,
        term_frequency=term_frequencies(tokenize(text)),
    )


@st.composite
def corpus_strategy(draw, min_size: int = 1, max_size: int = 8):
    """Generate records with unique ids spread over a few documents."""
    size = draw(st.integers(min_value=min_size, max_value=max_size))
    records = []
    for i in range(size):
        doc_id = draw(doc_id_strategy)
        records.append(build_record(f"{doc_id}:c{i}", doc_id, draw(valid_text), draw(valid_embedding)))
    return records


# =============================================================================
# Fusion
# =============================================================================


class TestFusion:

    @settings(max_examples=100)
    @given(corpus=corpus_strategy(), query=valid_embedding, text=valid_text, alpha=valid_weight)
    def test_fused_score_is_weighted_sum(self, corpus, query, text, alpha):
        for hit in HybridScorer().score(query, text, corpus, alpha=alpha):
            expected = alpha * hit.semantic_component + (1 - alpha) * normalize_bm25(hit.lexical_component)
            assert hit.score == pytest.approx(expected)

    @settings(max_examples=100)
    @given(corpus=corpus_strategy(), query=valid_embedding, text=valid_text)
    def test_results_sorted_descending(self, corpus, query, text):
        scores = [hit.score for hit in HybridScorer().score(query, text, corpus)]
        assert scores == sorted(scores, reverse=True)

    @settings(max_examples=100)
    @given(corpus=corpus_strategy(), query=valid_embedding)
    def test_empty_query_text_disables_bm25(self, corpus, query):
        for hit in HybridScorer().score(query, "", corpus, alpha=0.7):
            assert hit.lexical_component == 0.0
            assert hit.score == pytest.approx(0.7 * hit.semantic_component + 0.3 * 0.5)

    @settings(max_examples=100)
    @given(a=valid_embedding, b=valid_embedding)
    def test_cosine_is_bounded(self, a, b):
        assert -1.0 - 1e-6 <= cosine_similarity(a, b) <= 1.0 + 1e-6

    def test_zero_vector_does_not_divide_by_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    @settings(max_examples=100)
    @given(st.floats(min_value=-800, max_value=800, allow_nan=False))
    def test_normalize_bm25_is_logistic(self, raw):
        value = normalize_bm25(raw)
        assert 0.0 <= value <= 1.0
        assert normalize_bm25(0.0) == 0.5


# =============================================================================
# Alpha weighting
# =============================================================================


class TestAlpha:

    @settings(max_examples=100)
    @given(
        text=valid_text,
        a=valid_embedding,
        b=valid_embedding,
        query=valid_embedding,
        alpha_low=valid_weight,
        alpha_high=valid_weight,
    )
    def test_alpha_monotonicity(self, text, a, b, query, alpha_low, alpha_high):
        """With equal BM25, raising alpha never flips the order toward the less similar record."""
        assume(alpha_low < alpha_high)
        corpus = [build_record("d1:a", "d1", text, a), build_record("d1:b", "d1", text, b)]
        assume(abs(cosine_similarity(query, a) - cosine_similarity(query, b)) > 1e-6)
        closer = "d1:a" if cosine_similarity(query, a) > cosine_similarity(query, b) else "d1:b"

        scorer = HybridScorer()
        low = {h.id: h.score for h in scorer.score(query, text, corpus, alpha=alpha_low)}
        high = {h.id: h.score for h in scorer.score(query, text, corpus, alpha=alpha_high)}
        farther = "d1:b" if closer == "d1:a" else "d1:a"
        assert high[closer] - high[farther] >= low[closer] - low[farther] - 1e-9

    def test_alpha_one_is_pure_semantic(self):
        corpus = [
            build_record("d1:a", "d1", "exact keyword match", [0.0, 1.0]),
            build_record("d1:b", "d1", "nothing relevant", [1.0, 0.0]),
        ]
        hits = HybridScorer().score([1.0, 0.0], "keyword", corpus, alpha=1.0)
        assert hits[0].id == "d1:b"

    def test_alpha_zero_is_pure_lexical(self):
        corpus = [
            build_record("d1:a", "d1", "exact keyword match", [0.0, 1.0]),
            build_record("d1:b", "d1", "nothing relevant", [1.0, 0.0]),
        ]
        hits = HybridScorer().score([1.0, 0.0], "keyword", corpus, alpha=0.0)
        assert hits[0].id == "d1:a"

    @pytest.mark.parametrize("alpha", [-0.1, 1.01, 2])
    def test_alpha_out_of_range(self, alpha):
        with pytest.raises(ValueError):
            HybridScorer().score([1.0], "", [], alpha=alpha)


# =============================================================================
# Filters and bounds
# =============================================================================


class TestFilters:

    @settings(max_examples=100)
    @given(
        corpus=corpus_strategy(),
        query=valid_embedding,
        allowed=st.sets(doc_id_strategy, min_size=1),
        top_k=st.integers(min_value=1, max_value=10),
    )
    def test_doc_id_filter_correctness(self, corpus, query, allowed, top_k):
        hits = HybridScorer().score(query, "abc", corpus, top_k=top_k, doc_ids=allowed)
        assert all(hit.doc_id in allowed for hit in hits)
        assert len(hits) <= top_k
        assert len(hits) == min(top_k, sum(1 for r in corpus if r.doc_id in allowed))

    def test_namespace_filter(self):
        corpus = [
            build_record("d1:a", "d1", "x", [1.0, 0.0], namespace="pdf"),
            build_record("d1:b", "d1", "x", [1.0, 0.0], namespace="web"),
        ]
        hits = HybridScorer().score([1.0, 0.0], "x", corpus, namespace="web")
        assert [h.id for h in hits] == ["d1:b"]

    def test_stable_order_for_ties(self):
        corpus = [build_record(f"d1:{i}", "d1", "same", [1.0, 0.0]) for i in range(5)]
        hits = HybridScorer().score([1.0, 0.0], "same", corpus)
        assert [h.id for h in hits] == [f"d1:{i}" for i in range(5)]

    def test_top_k_must_be_positive(self):
        with pytest.raises(ValueError, match="top_k"):
            HybridScorer().score([1.0], "", [], top_k=0)

    def test_dimension_mismatch_names_both_sides(self):
        corpus = [build_record("d1:a", "d1", "x", [1.0, 0.0, 0.0])]
        with pytest.raises(EmbeddingDimensionError, match="3") as excinfo:
            HybridScorer().score([1.0, 0.0], "x", corpus)
        assert excinfo.value.record_id == "d1:a"
        assert isinstance(excinfo.value, ValueError)
