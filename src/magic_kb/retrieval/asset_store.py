"""magic_kb.retrieval.asset_store

Hash-deduplicated asset persistence.

Classes
-------
AssetStore
    Gateway implementing get-or-create of assets by content hash.

Functions
---------
compute_content_hash
    SHA-256 hex digest of canonical markdown.
"""

from __future__ import annotations

import hashlib
import logging
from typing import List, Optional, Sequence, Tuple

from magic_kb.common.errors import DuplicateAssetError, StorageError
from magic_kb.common.schemas import Asset, Chunk, MarkdownChunk
from magic_kb.retrieval.document_store_factory import KVDocumentStore

logger = logging.getLogger(__name__)


def compute_content_hash(markdown: str) -> str:
    return hashlib.sha256(markdown.encode("utf-8")).hexdigest()


class AssetStore:
    """Gateway for storing assets and their chunks.

    Parameters
    ----------
    store : KVDocumentStore
        Backing document store, passed in by the composition root.
    """

    def __init__(self, store: KVDocumentStore):
        self.store = store

    def find_existing(self, project_id: str, markdown: str) -> Optional[Asset]:
        """Return the asset whose content hash matches ``markdown``, if any."""
        return self.store.find_asset_by_hash(project_id, compute_content_hash(markdown))

    def get_or_create_asset(
            self,
            project_id: str,
            markdown: str,
            title: str,
            asset_type: str,
            *,
            chunks: Sequence[MarkdownChunk] = (),
            embeddings: Optional[Sequence[List[float]]] = None,
            source_url: Optional[str] = None,
        ) -> Tuple[Asset, bool]:
        """Return the asset for ``markdown``, creating it with its chunks if new.

        Parameters
        ----------
        project_id : str
            Owning project.
        markdown : str
            Canonical markdown; its SHA-256 digest is the dedup key.
        title : str
            Asset title.
        asset_type : str
            One of ``"md"``, ``"html"``, ``"pdf"``, ``"docx"``.
        chunks : Sequence[MarkdownChunk], optional
            Chunks to persist with a new asset. Ignored when the asset exists.
        embeddings : Sequence[list[float]] or None, optional
            One vector per chunk, or ``None`` to store chunks without
            embeddings.
        source_url : str or None, optional
            Origin URL for fetched sources.

        Returns
        -------
        tuple[Asset, bool]
            The asset and whether it was created by this call.

        Raises
        ------
        StorageError
            If the store fails, or a concurrent insert wins the unique key and
            the winning asset cannot be read back.
        """
        content_hash = compute_content_hash(markdown)

        existing = self.store.find_asset_by_hash(project_id, content_hash)
        if existing is not None:
            return existing, False

        if embeddings is not None and len(embeddings) != len(chunks):
            raise ValueError("embeddings must align one-to-one with chunks")

        asset = Asset(
            project_id=project_id,
            type=asset_type,
            title=title,
            markdown=markdown,
            hash=content_hash,
            source_url=source_url,
        )
        records = [
            Chunk.from_markdown_chunk(
                chunk,
                project_id=project_id,
                asset_id=asset.id,
                embedding=embeddings[i] if embeddings is not None else None,
            )
            for i, chunk in enumerate(chunks)
        ]

        try:
            self.store.insert_asset_with_chunks(asset, records)
        except DuplicateAssetError:
            logger.info("Concurrent ingestion created asset for hash %s; re-reading", content_hash)
            winner = self.store.find_asset_by_hash(project_id, content_hash)
            if winner is None:
                raise StorageError(
                    f"Asset for hash {content_hash} vanished after unique-key conflict",
                    user_message="Failed to store document. Please try again.",
                )
            return winner, False

        logger.info("Created asset %s with %d chunks in project %s", asset.id, len(records), project_id)
        return asset, True

    def count_chunks(self, project_id: str, asset_id: str) -> int:
        return self.store.count_chunks(project_id, asset_id)


__all__ = ["AssetStore", "compute_content_hash"]
