import math

import pytest

from magic_kb.common.schemas import Chunk
from magic_kb.retrieval.document_store_factory import build_document_store
from magic_kb.retrieval.lexical_index import BM25LexicalIndex, extract_search_terms
from magic_kb.retrieval.vector_store import ChunkVectorIndex, cosine_similarity


def _make_store(project_id="p1", rows=()):
    """Build a store holding ``(chunk_id, text, embedding)`` rows."""
    store = build_document_store()
    store.insert_chunks([
        Chunk(
            project_id=project_id,
            asset_id="a1",
            chunk_id=chunk_id,
            text=text,
            tokens=len(text.split()),
            heading_path=["Doc", chunk_id],
            embedding=embedding,
        )
        for chunk_id, text, embedding in rows
    ])
    return store


def test_cosine_similarity_of_identical_unit_vectors_is_one():
    """Identical unit vectors score 1.0."""
    v = [1 / math.sqrt(2), 1 / math.sqrt(2)]
    assert cosine_similarity(v, v) == pytest.approx(1.0)


def test_cosine_similarity_of_orthogonal_vectors_is_zero():
    """Orthogonal vectors score 0.0."""
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


def test_cosine_similarity_zero_norm_and_length_mismatch():
    """Zero vectors score 0.0; differing lengths are an error."""
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    with pytest.raises(ValueError):
        cosine_similarity([1.0], [1.0, 0.0])


def test_vector_search_ranks_by_similarity_and_truncates():
    """Hits are ordered by descending cosine similarity and cut to k."""
    store = _make_store(rows=[
        ("far", "far text", [0.0, 1.0]),
        ("near", "near text", [1.0, 0.1]),
        ("exact", "exact text", [1.0, 0.0]),
        ("none", "no vector", None),
    ])
    hits = ChunkVectorIndex(store).search("p1", [1.0, 0.0], k=2)

    assert [h.chunk_id for h in hits] == ["exact", "near"]
    assert hits[0].score == pytest.approx(1.0)
    assert hits[0].heading_path == ["Doc", "exact"]


def test_vector_search_skips_dimension_mismatch():
    """Chunks with a different embedding size are skipped, not errors."""
    store = _make_store(rows=[
        ("three_d", "text", [1.0, 0.0, 0.0]),
        ("two_d", "text", [1.0, 0.0]),
    ])
    hits = ChunkVectorIndex(store).search("p1", [1.0, 0.0], k=5)
    assert [h.chunk_id for h in hits] == ["two_d"]


def test_vector_search_is_project_scoped():
    """Chunks of other projects never appear."""
    store = _make_store(project_id="other", rows=[("x", "text", [1.0, 0.0])])
    assert ChunkVectorIndex(store).search("p1", [1.0, 0.0], k=5) == []


def test_vector_search_validates_arguments():
    """Empty project, empty vector and non-positive k are rejected."""
    index = ChunkVectorIndex(build_document_store())
    with pytest.raises(ValueError):
        index.search("", [1.0], 1)
    with pytest.raises(ValueError):
        index.search("p1", [], 1)
    with pytest.raises(ValueError):
        index.search("p1", [1.0], 0)


def test_embedding_stats_report_coverage():
    """Stats count embedded chunks and report the vector size."""
    store = _make_store(rows=[("a", "abcd", [1.0, 0.0]), ("b", "ab", None)])
    stats = ChunkVectorIndex(store).embedding_stats("p1")

    assert stats == {
        "total_chunks": 2,
        "chunks_with_embeddings": 1,
        "embedding_dimensions": 2,
        "average_text_length": 3,
    }


def test_extract_search_terms_drops_short_terms_and_caps_count():
    """Terms shorter than three characters are ignored and at most ten are kept."""
    assert extract_search_terms("How do I Install it") == ["how", "install"]
    assert len(extract_search_terms(" ".join(f"term{i}" for i in range(20)))) == 10


LEXICAL_ROWS = [
    ("install", "Install the python package with pip before use.", None),
    ("logging", "Configure logging output for the python service.", None),
    ("weather", "Sunny weather expected over the weekend.", None),
]


def test_lexical_search_returns_positive_matches_only():
    """Only chunks containing query terms are returned, with positive scores."""
    index = BM25LexicalIndex(_make_store(rows=LEXICAL_ROWS))
    hits = index.search("p1", "python logging", k=5)

    assert [h.chunk_id for h in hits][0] == "logging"
    assert {h.chunk_id for h in hits} == {"logging", "install"}
    assert all(h.score > 0 for h in hits)
    assert hits[0].heading_path == ["Doc", "logging"]


def test_lexical_ties_keep_storage_order_beyond_k():
    """Equally scored chunks are cut to k in the order they were stored."""
    rows = [(f"c{i}", "alpha beta gamma delta", None) for i in range(5)]
    index = BM25LexicalIndex(_make_store(rows=rows))

    hits = index.search("p1", "alpha", k=3)

    assert [h.chunk_id for h in hits] == ["c0", "c1", "c2"]
    assert len({h.score for h in hits}) == 1


def test_lexical_search_without_usable_terms_is_empty():
    """Queries made only of short terms return nothing."""
    index = BM25LexicalIndex(_make_store(rows=LEXICAL_ROWS))
    assert index.search("p1", "a an to", k=5) == []


def test_lexical_index_tracks_new_chunks():
    """Chunks added after the first search are searchable."""
    store = _make_store(rows=LEXICAL_ROWS)
    index = BM25LexicalIndex(store)
    assert "k8s" not in [h.chunk_id for h in index.search("p1", "python", k=3)]

    store.insert_chunks([Chunk(project_id="p1", asset_id=None, chunk_id="k8s", text="Deploy on kubernetes clusters.", tokens=4)])

    assert [h.chunk_id for h in index.search("p1", "kubernetes", k=3)] == ["k8s"]


def test_lexical_stats_report_corpus_size():
    """Lexical stats count chunks and their mean text length."""
    stats = BM25LexicalIndex(_make_store(rows=[("a", "abcd", None), ("b", "ab", None)])).lexical_stats("p1")
    assert stats == {"total_chunks": 2, "average_text_length": 3}
