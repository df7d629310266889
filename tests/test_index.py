"""Tests for the in-memory embedding index and cosine similarity."""

import threading

import pytest

from screentrail.errors import EmbeddingFailure
from screentrail.index import EmbeddingIndex, cosine_similarity

from conftest import FailingEmbeddingProvider, FixedEmbeddingProvider


# ---------------------------------------------------------------------------
# cosine_similarity
# ---------------------------------------------------------------------------


class TestCosineSimilarity:
    def test_symmetric(self):
        a, b = [1.0, 2.0, 3.0], [-2.0, 0.5, 4.0]
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_self_similarity_is_one(self):
        a = [0.3, -1.2, 5.0]
        assert cosine_similarity(a, a) == pytest.approx(1.0)

    def test_scale_invariant(self):
        assert cosine_similarity([1.0, 1.0], [3.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
        assert cosine_similarity([1.0, 1.0], [0.0, 0.0]) == 0.0

    def test_missing_or_empty(self):
        assert cosine_similarity(None, [1.0]) == 0.0
        assert cosine_similarity([1.0], None) == 0.0
        assert cosine_similarity([], []) == 0.0

    def test_length_mismatch(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0


# ---------------------------------------------------------------------------
# EmbeddingIndex
# ---------------------------------------------------------------------------


VECTORS = {
    "alpha": [1.0, 0.0],
    "beta": [0.8, 0.6],
    "gamma": [0.0, 1.0],
    "delta": [-1.0, 0.0],
    "query": [1.0, 0.0],
}


@pytest.fixture
def fixed_index():
    idx = EmbeddingIndex(FixedEmbeddingProvider(VECTORS))
    for name in ("gamma", "delta", "beta", "alpha"):
        idx.insert(name, name, {"name": name, "group": "greek"})
    return idx


class TestInsert:
    def test_insert_appends(self, fixed_index):
        assert len(fixed_index) == 4
        assert [e.id for e in fixed_index.entries()] == ["gamma", "delta", "beta", "alpha"]

    def test_entry_carries_embedding_and_attributes(self, fixed_index):
        entry = fixed_index.entries()[-1]
        assert entry.embedding == (1.0, 0.0)
        assert entry.document == "alpha"
        assert entry.attributes == {"name": "alpha", "group": "greek"}

    def test_attributes_are_copied(self):
        idx = EmbeddingIndex(FixedEmbeddingProvider(VECTORS))
        attrs = {"name": "alpha"}
        idx.insert("alpha", "alpha", attrs)
        attrs["name"] = "changed"
        assert idx.entries()[0].attributes["name"] == "alpha"

    def test_provider_error_appends_nothing(self):
        idx = EmbeddingIndex(FailingEmbeddingProvider())
        with pytest.raises(EmbeddingFailure):
            idx.insert("x", "some text", {})
        assert len(idx) == 0

    def test_empty_vector_appends_nothing(self):
        class EmptyProvider:
            dimension = 0

            def embed(self, text):
                return []

            def embed_batch(self, texts):
                return [[] for _ in texts]

        idx = EmbeddingIndex(EmptyProvider())
        with pytest.raises(EmbeddingFailure):
            idx.insert("x", "some text", {})
        assert len(idx) == 0

    def test_concurrent_inserts_all_land(self):
        idx = EmbeddingIndex(FixedEmbeddingProvider(VECTORS))

        def worker(n):
            for i in range(50):
                idx.insert(f"{n}-{i}", "alpha", {})

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(idx) == 200


class TestQuery:
    def test_ranked_by_similarity(self, fixed_index):
        hits = fixed_index.query("query", 4)
        assert [h.document for h in hits] == ["alpha", "beta", "gamma", "delta"]
        assert hits[0].score == pytest.approx(1.0)
        assert hits[1].score == pytest.approx(0.8)

    def test_scores_non_increasing(self, fixed_index):
        scores = [h.score for h in fixed_index.query("query", 10)]
        assert scores == sorted(scores, reverse=True)

    def test_respects_result_count(self, fixed_index):
        assert len(fixed_index.query("query", 2)) == 2
        assert len(fixed_index.query("query", 100)) == 4

    def test_zero_result_count(self, fixed_index):
        assert fixed_index.query("query", 0) == []

    def test_empty_index(self):
        idx = EmbeddingIndex(FixedEmbeddingProvider(VECTORS))
        assert idx.query("query", 5) == []

    def test_predicate_applied_to_every_hit(self, fixed_index):
        hits = fixed_index.query(
            "query", 10, predicate=lambda attrs: attrs["name"] in ("beta", "delta"),
        )
        assert [h.document for h in hits] == ["beta", "delta"]

    def test_filter_before_truncate(self, fixed_index):
        """The best entry is filtered out; the budget is filled from the next ones."""
        hits = fixed_index.query("query", 1, predicate=lambda attrs: attrs["name"] != "alpha")
        assert [h.document for h in hits] == ["beta"]

    def test_predicate_matching_nothing(self, fixed_index):
        assert fixed_index.query("query", 10, predicate=lambda attrs: False) == []

    def test_hit_exposes_attributes(self, fixed_index):
        hit = fixed_index.query("query", 1)[0]
        assert hit.attributes["group"] == "greek"

    def test_incomparable_entries_excluded(self):
        vectors = dict(VECTORS, wide=[1.0, 0.0, 0.0], zero=[0.0, 0.0])
        idx = EmbeddingIndex(FixedEmbeddingProvider(vectors))
        for name in ("wide", "zero", "alpha"):
            idx.insert(name, name, {})
        assert [h.document for h in idx.query("query", 10)] == ["alpha"]

    def test_duplicates_are_both_retrievable(self):
        idx = EmbeddingIndex(FixedEmbeddingProvider(VECTORS))
        idx.insert("same-id", "alpha", {"copy": 1})
        idx.insert("same-id", "alpha", {"copy": 2})
        hits = idx.query("query", 5)
        assert [h.attributes["copy"] for h in hits] == [1, 2]

    def test_query_embedding_failure(self):
        idx = EmbeddingIndex(FailingEmbeddingProvider())
        with pytest.raises(EmbeddingFailure):
            idx.query("anything", 5)

    def test_zero_query_vector_matches_nothing(self, fixed_index):
        assert fixed_index.query("unknown text", 5) == []


# ---------------------------------------------------------------------------
# Array-valued embeddings
# ---------------------------------------------------------------------------


class Ambiguous(list):
    """A vector whose truth value is ambiguous, as with numpy arrays."""

    def __bool__(self):
        raise ValueError("The truth value of an array with more than one element is ambiguous")


class ArrayEmbeddingProvider:
    """Returns array-like vectors, the way sentence-transformers encoders can."""

    def __init__(self, vectors: dict[str, list[float]], wrap=Ambiguous):
        self.vectors = vectors
        self.wrap = wrap
        self.dimension = 2

    def embed(self, text):
        return self.wrap(self.vectors.get(text, []))

    def embed_batch(self, texts):
        return self.wrap([self.embed(t) for t in texts])


class TestArrayEmbeddings:
    def test_insert_and_query(self):
        idx = EmbeddingIndex(ArrayEmbeddingProvider(VECTORS))
        for name in ("gamma", "alpha", "beta"):
            idx.insert(name, name, {"name": name})
        assert idx.entries()[1].embedding == (1.0, 0.0)
        hits = idx.query("query", 2)
        assert [h.document for h in hits] == ["alpha", "beta"]

    def test_empty_array_is_embedding_failure(self):
        idx = EmbeddingIndex(ArrayEmbeddingProvider({}))
        with pytest.raises(EmbeddingFailure):
            idx.insert("x", "unknown", {})
        assert len(idx) == 0

    def test_empty_query_array_is_embedding_failure(self):
        idx = EmbeddingIndex(ArrayEmbeddingProvider({"alpha": [1.0, 0.0]}))
        idx.insert("alpha", "alpha", {})
        with pytest.raises(EmbeddingFailure):
            idx.query("unknown", 5)

    def test_cosine_similarity_of_arrays(self):
        assert cosine_similarity(Ambiguous([1.0, 1.0]), Ambiguous([3.0, 3.0])) == pytest.approx(1.0)
        assert cosine_similarity(Ambiguous([]), Ambiguous([])) == 0.0

    def test_numpy_vectors(self):
        np = pytest.importorskip("numpy")
        idx = EmbeddingIndex(ArrayEmbeddingProvider(VECTORS, wrap=np.array))
        idx.insert("alpha", "alpha", {})
        idx.insert("gamma", "gamma", {})
        [hit] = idx.query("query", 1)
        assert hit.document == "alpha"
        assert hit.score == pytest.approx(1.0)
