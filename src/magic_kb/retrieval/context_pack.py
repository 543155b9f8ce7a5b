"""magic_kb.retrieval.context_pack

Rendering of merged hits into one text block for a generation step.

Each hit becomes a block::

    ## [<chunk_id>] (<heading> > <heading>)

    <trimmed text>

The parenthesised breadcrumb is omitted when the heading path is empty.
Blocks are separated by a blank line and an empty hit list renders as ``""``.
"""

from __future__ import annotations

from typing import Sequence

from magic_kb.retrieval.types import HybridChunk


def build_context_pack(chunks: Sequence[HybridChunk]) -> str:
    if not chunks:
        return ""

    blocks = []
    for chunk in chunks:
        path = f" ({' > '.join(chunk.heading_path)})" if chunk.heading_path else ""
        blocks.append(f"## [{chunk.chunk_id}]{path}\n\n{chunk.text.strip()}\n")
    return "\n".join(blocks)


__all__ = ["build_context_pack"]
