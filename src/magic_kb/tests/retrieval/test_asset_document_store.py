import pytest
from llama_index.core.storage.kvstore.simple_kvstore import SimpleKVStore

from magic_kb.common.errors import DuplicateAssetError, StorageError
from magic_kb.common.schemas import Asset, Chunk, MarkdownChunk
from magic_kb.retrieval.asset_store import AssetStore, compute_content_hash
from magic_kb.retrieval.document_store_factory import (
    CHUNKS_COLLECTION,
    KVDocumentStore,
    build_document_store,
    create_kvstore,
)


class FailingChunkKVStore(SimpleKVStore):
    """SimpleKVStore that fails on the n-th chunk write."""

    def __init__(self, fail_after: int):
        super().__init__()
        self.fail_after = fail_after
        self.chunk_puts = 0

    def put(self, key, val, collection=CHUNKS_COLLECTION):
        if collection == CHUNKS_COLLECTION:
            self.chunk_puts += 1
            if self.chunk_puts > self.fail_after:
                raise OSError("disk full")
        super().put(key, val, collection=collection)


def _make_chunks(n: int, prefix: str = "c") -> list:
    return [
        MarkdownChunk(chunk_id=f"{prefix}_{i}", text=f"text {i}", tokens=2, section="S", heading_path=["S"])
        for i in range(n)
    ]


def _make_asset(project_id="p1", markdown="# Doc\n\nbody") -> Asset:
    return Asset(project_id=project_id, type="md", title="Doc", markdown=markdown, hash=compute_content_hash(markdown))


def test_get_or_create_creates_then_returns_existing():
    """Identical markdown in one project maps to one asset and one set of chunks."""
    store = build_document_store()
    assets = AssetStore(store)

    first, created = assets.get_or_create_asset("p1", "# A\n\nx", "A", "md", chunks=_make_chunks(3))
    second, created_again = assets.get_or_create_asset("p1", "# A\n\nx", "Other", "md", chunks=_make_chunks(5))

    assert created is True
    assert created_again is False
    assert second.id == first.id
    assert second.title == "A"
    assert assets.count_chunks("p1", first.id) == 3


def test_same_content_in_other_project_is_a_new_asset():
    """The dedup key is scoped to the project."""
    assets = AssetStore(build_document_store())
    a, _ = assets.get_or_create_asset("p1", "same", "T", "md")
    b, created = assets.get_or_create_asset("p2", "same", "T", "md")

    assert created is True
    assert a.id != b.id


def test_chunks_store_embeddings_and_flags():
    """Chunks persist with their vectors, or flagged as missing when none are given."""
    store = build_document_store()
    assets = AssetStore(store)
    assets.get_or_create_asset("p1", "one", "T", "md", chunks=_make_chunks(2), embeddings=[[1.0, 0.0], [0.0, 1.0]])
    assets.get_or_create_asset("p1", "two", "T", "md", chunks=_make_chunks(1, prefix="d"))

    embedded = store.list_chunks("p1", has_embedding=True)
    missing = store.list_chunks("p1", has_embedding=False)

    assert [c.chunk_id for c in embedded] == ["c_0", "c_1"]
    assert embedded[0].embedding == [1.0, 0.0]
    assert [c.chunk_id for c in missing] == ["d_0"]
    assert missing[0].embedding is None


def test_misaligned_embeddings_are_rejected():
    """Embeddings must pair one-to-one with chunks."""
    assets = AssetStore(build_document_store())
    with pytest.raises(ValueError):
        assets.get_or_create_asset("p1", "x", "T", "md", chunks=_make_chunks(2), embeddings=[[1.0]])


def test_duplicate_insert_raises_unique_key_conflict():
    """The store refuses a second asset with the same project and hash."""
    store = build_document_store()
    store.insert_asset_with_chunks(_make_asset(), [])
    with pytest.raises(DuplicateAssetError):
        store.insert_asset_with_chunks(_make_asset(), [])
    assert len(store.list_assets("p1")) == 1


def test_concurrent_creation_conflict_rereads_winner(monkeypatch):
    """A lost race on the unique key returns the winning asset instead of a second one."""
    store = build_document_store()
    assets = AssetStore(store)
    winner = _make_asset(markdown="race")
    real_find = store.find_asset_by_hash
    calls = {"n": 0}

    def racing_find(project_id, content_hash):
        calls["n"] += 1
        if calls["n"] == 1:
            store.insert_asset_with_chunks(winner, [])
            return None
        return real_find(project_id, content_hash)

    monkeypatch.setattr(store, "find_asset_by_hash", racing_find)

    asset, created = assets.get_or_create_asset("p1", "race", "Loser", "md", chunks=_make_chunks(2))

    assert created is False
    assert asset.id == winner.id
    assert len(store.list_assets("p1")) == 1
    assert store.count_chunks("p1") == 0


def test_chunk_write_failure_rolls_back_asset():
    """A failed chunk write leaves neither the asset nor partial chunks behind."""
    store = KVDocumentStore(FailingChunkKVStore(fail_after=1))
    assets = AssetStore(store)

    with pytest.raises(StorageError):
        assets.get_or_create_asset("p1", "doc", "T", "md", chunks=_make_chunks(3))

    assert store.list_assets("p1") == []
    assert store.count_chunks("p1") == 0
    assert assets.find_existing("p1", "doc") is None


def test_update_embeddings_flips_flags():
    """Backfilled vectors are attached and the chunk is flagged as embedded."""
    store = build_document_store()
    chunk = Chunk(project_id="p1", asset_id=None, chunk_id="custom_1", text="custom", tokens=1)
    store.insert_chunks([chunk])

    updated = store.update_embeddings([(chunk.id, [0.5, 0.5]), ("missing", [1.0])])
    stored = store.list_chunks("p1")[0]

    assert updated == 1
    assert stored.has_embedding
    assert stored.embedding == [0.5, 0.5]
    assert stored.updated_at is not None
    assert stored.asset_id is None


def test_store_persists_and_reloads(tmp_path):
    """A persisted store reloads its assets and chunks from disk."""
    path = str(tmp_path / "store" / "docstore.json")
    store = build_document_store({"kind": "simple"}, persist_path=path)
    AssetStore(store).get_or_create_asset("p1", "persisted", "T", "md", chunks=_make_chunks(2))

    reloaded = build_document_store({"kind": "simple", "persist_path": path})

    assert [a.title for a in reloaded.list_assets("p1")] == ["T"]
    assert reloaded.count_chunks("p1") == 2


def test_unknown_store_kind_is_rejected():
    """Only the simple key-value backend is supported."""
    with pytest.raises(ValueError):
        create_kvstore("postgres")
