"""magic_kb.retrieval.document_store_factory

Document store backend and factory utilities.

This module provides the persistence layer for assets and chunks. Records are
kept in a LlamaIndex key-value store (``SimpleKVStore`` by default, optionally
persisted to a JSON file) under three collections:

``assets``
    Asset records keyed by storage id.
``asset_hashes``
    Unique index ``"<project_id>:<hash>" -> asset id``.
``chunks``
    Chunk records keyed by storage id.

:class:`KVDocumentStore` serialises its own writes and reads so that an asset
and its full chunk set become visible together.

Classes
-------
KVDocumentStore
    Asset/chunk persistence over a LlamaIndex key-value store.

Functions
---------
create_kvstore
    Create a LlamaIndex key-value store by backend kind.
build_document_store
    Build a :class:`KVDocumentStore` from the ``doc_store`` config section.
"""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from llama_index.core.storage.kvstore.simple_kvstore import SimpleKVStore
from llama_index.core.storage.kvstore.types import BaseKVStore

from magic_kb.common.errors import DuplicateAssetError, KnowledgeBaseError, StorageError
from magic_kb.common.schemas import Asset, Chunk

logger = logging.getLogger(__name__)

ASSETS_COLLECTION = "assets"
ASSET_HASHES_COLLECTION = "asset_hashes"
CHUNKS_COLLECTION = "chunks"


def create_kvstore(
        kind: str = "simple",
        *,
        persist_path: Optional[str] = None,
    ) -> BaseKVStore:
    """Create a LlamaIndex key-value store by backend kind.

    Parameters
    ----------
    kind : {"simple"}, optional
        Backend to use. ``"simple"`` keeps data in memory via
        :class:`llama_index.core.storage.kvstore.simple_kvstore.SimpleKVStore`.
    persist_path : str or None, optional
        JSON file to load from when it exists.

    Returns
    -------
    BaseKVStore
        Instantiated key-value store.

    Raises
    ------
    ValueError
        If ``kind`` does not correspond to a supported backend.
    """
    k = (kind or "").lower()
    if k != "simple":
        raise ValueError(f"Unknown doc_store kind: {kind!r}. Use 'simple'.")

    if persist_path and os.path.exists(persist_path):
        logger.info("Loading document store from %s", persist_path)
        return SimpleKVStore.from_persist_path(persist_path)
    return SimpleKVStore()


def _hash_key(project_id: str, content_hash: str) -> str:
    return f"{project_id}:{content_hash}"


class KVDocumentStore:
    """Asset and chunk persistence over a LlamaIndex key-value store.

    Parameters
    ----------
    kvstore : BaseKVStore
        Backing store.
    persist_path : str or None, optional
        When set, the store is flushed to this JSON file after every write.
        Only supported for ``SimpleKVStore`` backends.

    Notes
    -----
    Backend exceptions are re-raised as
    :class:`~magic_kb.common.errors.StorageError`. Records returned by the
    backend's ``get_all`` are shared with the backend and are never mutated.
    """

    def __init__(self, kvstore: BaseKVStore, *, persist_path: Optional[str] = None):
        self._kv = kvstore
        self._lock = threading.RLock()
        self.persist_path = persist_path

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except KnowledgeBaseError:
                raise
            except Exception as exc:
                logger.exception("Document store %s failed", operation)
                raise StorageError(
                    f"Document store {operation} failed: {exc}",
                    user_message="Storage is unavailable. Please try again later.",
                ) from exc

    def _flush(self) -> None:
        if self.persist_path and isinstance(self._kv, SimpleKVStore):
            directory = os.path.dirname(self.persist_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            self._kv.persist(self.persist_path)

    # ----------------- assets -----------------

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        with self._guard("asset lookup"):
            record = self._kv.get(asset_id, collection=ASSETS_COLLECTION)
            return Asset.from_record(record) if record else None

    def find_asset_by_hash(self, project_id: str, content_hash: str) -> Optional[Asset]:
        """Return the asset with ``content_hash`` in ``project_id``, if any."""
        with self._guard("asset lookup"):
            entry = self._kv.get(_hash_key(project_id, content_hash), collection=ASSET_HASHES_COLLECTION)
            if not entry:
                return None
            record = self._kv.get(entry["asset_id"], collection=ASSETS_COLLECTION)
            return Asset.from_record(record) if record else None

    def list_assets(self, project_id: str) -> List[Asset]:
        with self._guard("asset listing"):
            records = self._kv.get_all(collection=ASSETS_COLLECTION)
            return [Asset.from_record(r) for r in records.values() if r.get("project_id") == project_id]

    def insert_asset_with_chunks(self, asset: Asset, chunks: Sequence[Chunk]) -> None:
        """Persist ``asset`` and all of ``chunks`` as one visible unit.

        Raises
        ------
        DuplicateAssetError
            If ``(asset.project_id, asset.hash)`` already exists. Nothing is
            written.
        StorageError
            If the asset or chunk write fails. Written records are removed
            before raising.
        """
        key = _hash_key(asset.project_id, asset.hash)

        with self._guard("asset insert"):
            if self._kv.get(key, collection=ASSET_HASHES_COLLECTION):
                raise DuplicateAssetError(asset.project_id, asset.hash)

            self._kv.put(asset.id, asset.to_record(), collection=ASSETS_COLLECTION)
            self._kv.put(key, {"asset_id": asset.id}, collection=ASSET_HASHES_COLLECTION)

            written: List[str] = []
            try:
                for chunk in chunks:
                    self._kv.put(chunk.id, chunk.to_record(), collection=CHUNKS_COLLECTION)
                    written.append(chunk.id)
            except Exception as exc:
                logger.exception(
                    "Asset %s written but chunk write failed after %d of %d chunks; rolling back",
                    asset.id, len(written), len(chunks),
                )
                for chunk_id in written:
                    self._kv.delete(chunk_id, collection=CHUNKS_COLLECTION)
                self._kv.delete(key, collection=ASSET_HASHES_COLLECTION)
                self._kv.delete(asset.id, collection=ASSETS_COLLECTION)
                raise StorageError(
                    f"Chunk write failed for asset {asset.id}: {exc}",
                    user_message="Failed to store document chunks. Please try again.",
                ) from exc

            self._flush()

    # ----------------- chunks -----------------

    def _chunk_records(self, project_id: str) -> List[Dict[str, Any]]:
        records = self._kv.get_all(collection=CHUNKS_COLLECTION)
        return [r for r in records.values() if r.get("project_id") == project_id]

    def insert_chunks(self, chunks: Sequence[Chunk]) -> None:
        """Persist standalone chunks (e.g. custom passages without an asset)."""
        with self._guard("chunk insert"):
            self._kv.put_all(
                [(chunk.id, chunk.to_record()) for chunk in chunks],
                collection=CHUNKS_COLLECTION,
            )
            self._flush()

    def count_chunks(self, project_id: str, asset_id: Optional[str] = None) -> int:
        with self._guard("chunk count"):
            records = self._chunk_records(project_id)
            if asset_id is not None:
                records = [r for r in records if r.get("asset_id") == asset_id]
            return len(records)

    def list_chunks(
            self,
            project_id: str,
            *,
            has_embedding: Optional[bool] = None,
        ) -> List[Chunk]:
        """Return a project's chunks in insertion order.

        Parameters
        ----------
        project_id : str
            Owning project.
        has_embedding : bool or None, optional
            Filter on the embedding flag. ``None`` returns all chunks.
        """
        with self._guard("chunk listing"):
            records = self._chunk_records(project_id)
            if has_embedding is not None:
                records = [r for r in records if bool(r.get("has_embedding")) == has_embedding]
            return [Chunk.from_record(r) for r in records]

    def update_embeddings(self, updates: Sequence[Tuple[str, List[float]]]) -> int:
        """Attach embeddings to stored chunks and flip their flag.

        Parameters
        ----------
        updates : Sequence[tuple[str, list[float]]]
            ``(chunk storage id, vector)`` pairs.

        Returns
        -------
        int
            Number of chunks updated. Unknown ids are skipped.
        """
        now = datetime.now(timezone.utc).isoformat()
        updated = 0

        with self._guard("embedding update"):
            for chunk_id, vector in updates:
                record = self._kv.get(chunk_id, collection=CHUNKS_COLLECTION)
                if not record:
                    logger.warning("Chunk %s disappeared before its embedding was stored", chunk_id)
                    continue
                record = {
                    **record,
                    "embedding": list(vector),
                    "has_embedding": True,
                    "updated_at": now,
                }
                self._kv.put(chunk_id, record, collection=CHUNKS_COLLECTION)
                updated += 1
            self._flush()

        return updated


def build_document_store(cfg: Mapping[str, Any] | None = None, *, persist_path: Optional[str] = None) -> KVDocumentStore:
    """Build a :class:`KVDocumentStore` from a ``doc_store`` config mapping.

    Parameters
    ----------
    cfg : Mapping[str, Any] or None, optional
        Section with ``kind`` (default ``"simple"``).
    persist_path : str or None, optional
        Resolved persistence file. Overrides ``cfg["persist_path"]``.
    """
    cfg = cfg or {}
    path = persist_path or cfg.get("persist_path")
    kvstore = create_kvstore(cfg.get("kind", "simple"), persist_path=path)
    return KVDocumentStore(kvstore, persist_path=path)


__all__ = [
    "KVDocumentStore",
    "create_kvstore",
    "build_document_store",
]
