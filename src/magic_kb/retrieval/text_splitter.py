"""magic_kb.retrieval.text_splitter

Heading-aware chunking of canonical markdown.

This module converts the canonical markdown produced by the format normalizer
into :class:`~magic_kb.common.schemas.MarkdownChunk` objects suitable for
embedding and retrieval. Chunks are aligned to heading boundaries and sized by
a :class:`~magic_kb.common.tokenisation.TokenCounter`.

The document is parsed into a heading tree (levels 1 to ``max_heading_depth``,
default 3). Content before the first heading becomes a synthetic
``Introduction`` node. Each node is emitted with its own heading line and its
direct content only; descendant sections are emitted separately, in document
order. A node whose text exceeds ``max_tokens`` is split greedily on line
boundaries, re-prefixing every piece with the heading line, and a piece is only
closed once it holds at least ``min_tokens``.

Classes
-------
HeadingNode
    One node of the parsed heading tree.
HeadingChunker
    Token-bounded, heading-aligned markdown splitter.

Functions
---------
chunk_markdown
    Chunk a markdown string with default settings.
get_chunking_stats
    Summarise a list of chunks.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

from magic_kb.common.schemas import MarkdownChunk
from magic_kb.common.tokenisation import TokenCounter, WordRatioTokenCounter

DEFAULT_MIN_TOKENS = 400
DEFAULT_MAX_TOKENS = 800
DEFAULT_MAX_HEADING_DEPTH = 3
INTRODUCTION_TITLE = "Introduction"

_FENCE_PATTERN = re.compile(r"^\s*(```|~~~)")


@dataclass
class HeadingNode:
    """A heading and the lines directly beneath it.

    Attributes
    ----------
    level : int
        Heading level; ``0`` for the synthetic Introduction node.
    title : str
        Heading text.
    lines : list[str]
        Direct content lines (descendant sections excluded).
    parent : HeadingNode or None
        Enclosing heading, if any.
    children : list[HeadingNode]
        Nested headings, in document order.
    """
    level: int
    title: str
    lines: List[str] = field(default_factory=list)
    parent: Optional["HeadingNode"] = None
    children: List["HeadingNode"] = field(default_factory=list, repr=False)

    @property
    def heading_line(self) -> str:
        if self.level == 0:
            return ""
        return "#" * self.level + " " + self.title

    @property
    def content(self) -> str:
        return _trim_blank_edges("\n".join(self.lines))

    @property
    def heading_path(self) -> List[str]:
        path: List[str] = []
        node: Optional[HeadingNode] = self
        while node is not None:
            if node.level > 0:
                path.insert(0, node.title)
            node = node.parent
        return path


def _trim_blank_edges(text: str) -> str:
    """Drop whitespace-only lines at both ends and trailing whitespace.

    Leading indentation of the first content line is kept so indented code
    survives chunking.
    """
    lines = text.split("\n")
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    return "\n".join(lines).rstrip()


class HeadingChunker:
    """Split markdown into heading-aligned, token-bounded chunks.

    Parameters
    ----------
    min_tokens : int, optional
        Minimum size a split piece must reach before it may be closed.
        Defaults to ``400``.
    max_tokens : int, optional
        Size above which a section is split. Defaults to ``800``.
    token_counter : TokenCounter or None, optional
        Counter used for sizing. Defaults to
        :class:`~magic_kb.common.tokenisation.WordRatioTokenCounter`.
    max_heading_depth : int, optional
        Deepest heading level treated as a section boundary. Deeper headings
        stay inside their parent's content. Defaults to ``3``.
    """

    def __init__(
            self,
            *,
            min_tokens: int = DEFAULT_MIN_TOKENS,
            max_tokens: int = DEFAULT_MAX_TOKENS,
            token_counter: TokenCounter | None = None,
            max_heading_depth: int = DEFAULT_MAX_HEADING_DEPTH,
        ):
        if min_tokens <= 0 or max_tokens <= 0:
            raise ValueError("min_tokens and max_tokens must be positive")
        if min_tokens > max_tokens:
            raise ValueError("min_tokens must not exceed max_tokens")
        if not 1 <= max_heading_depth <= 6:
            raise ValueError("max_heading_depth must be between 1 and 6")

        self.min_tokens = min_tokens
        self.max_tokens = max_tokens
        self.token_counter = token_counter or WordRatioTokenCounter()
        self.max_heading_depth = max_heading_depth
        self._heading_pattern = re.compile(rf"^(#{{1,{max_heading_depth}}})\s+(.+)$")

    @classmethod
    def from_config_dict(
            cls,
            config: dict,
            token_counter: TokenCounter | None = None,
        ) -> "HeadingChunker":
        """Create a chunker from the ``chunking`` configuration section."""
        return cls(
            min_tokens=int(config.get("min_tokens", DEFAULT_MIN_TOKENS)),
            max_tokens=int(config.get("max_tokens", DEFAULT_MAX_TOKENS)),
            max_heading_depth=int(config.get("max_heading_depth", DEFAULT_MAX_HEADING_DEPTH)),
            token_counter=token_counter,
        )

    def parse_headings(self, markdown: str) -> List[HeadingNode]:
        """Parse ``markdown`` into heading nodes in document order.

        Lines inside fenced code blocks are never treated as headings.

        Parameters
        ----------
        markdown : str
            Canonical markdown.

        Returns
        -------
        list[HeadingNode]
            Flat, document-ordered list of nodes. Parent/child links describe
            the tree. A synthetic Introduction node is first when non-blank
            content precedes the first heading.
        """
        intro = HeadingNode(level=0, title=INTRODUCTION_TITLE)
        nodes: List[HeadingNode] = []
        stack: List[HeadingNode] = []
        current = intro
        in_fence = False

        for line in markdown.split("\n"):
            if _FENCE_PATTERN.match(line):
                in_fence = not in_fence
                current.lines.append(line)
                continue

            match = None if in_fence else self._heading_pattern.match(line)
            if match is None or not match.group(2).strip():
                current.lines.append(line)
                continue

            level = len(match.group(1))
            node = HeadingNode(level=level, title=match.group(2).strip())

            while stack and stack[-1].level >= level:
                stack.pop()
            if stack:
                node.parent = stack[-1]
                stack[-1].children.append(node)

            stack.append(node)
            nodes.append(node)
            current = node

        if intro.content.strip():
            nodes.insert(0, intro)

        return nodes

    def split(self, markdown: str) -> List[MarkdownChunk]:
        """Chunk ``markdown`` by headings.

        Parameters
        ----------
        markdown : str
            Canonical markdown.

        Returns
        -------
        list[MarkdownChunk]
            Ordered chunks covering every heading and content line. Empty or
            whitespace-only input yields an empty list.
        """
        if not markdown or not markdown.strip():
            return []

        digest = hashlib.sha256(markdown.encode("utf-8")).hexdigest()[:16]
        chunks: List[MarkdownChunk] = []

        for node in self.parse_headings(markdown):
            for text, tokens in self._split_node(node):
                chunks.append(
                    MarkdownChunk(
                        chunk_id=f"chunk_{digest}_{len(chunks)}",
                        text=text,
                        tokens=tokens,
                        section=node.title if node.level > 0 else None,
                        heading_path=node.heading_path,
                    )
                )

        return chunks

    def _split_node(self, node: HeadingNode) -> List[tuple[str, int]]:
        count = self.token_counter.count
        prefix = node.heading_line + "\n\n" if node.level > 0 else ""
        content = node.content

        section_markdown = prefix + content
        total = count(section_markdown)
        if total <= self.max_tokens:
            return [(_trim_blank_edges(section_markdown), total)]

        pieces: List[tuple[str, int]] = []
        prefix_tokens = count(prefix)
        current = prefix
        current_tokens = prefix_tokens

        for line in content.split("\n"):
            line_tokens = count(line)
            if current_tokens + line_tokens > self.max_tokens and current_tokens >= self.min_tokens:
                pieces.append((_trim_blank_edges(current), current_tokens))
                current = prefix + line + "\n"
                current_tokens = prefix_tokens + line_tokens
            else:
                current += line + "\n"
                current_tokens += line_tokens

        if current.strip() != prefix.strip():
            pieces.append((_trim_blank_edges(current), current_tokens))

        return pieces


def chunk_markdown(
        markdown: str,
        min_tokens: int = DEFAULT_MIN_TOKENS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        *,
        token_counter: TokenCounter | None = None,
    ) -> List[MarkdownChunk]:
    """Chunk ``markdown`` by headings using a throwaway :class:`HeadingChunker`."""
    chunker = HeadingChunker(
        min_tokens=min_tokens,
        max_tokens=max_tokens,
        token_counter=token_counter,
    )
    return chunker.split(markdown)


def get_chunking_stats(chunks: List[MarkdownChunk]) -> dict[str, Any]:
    """Summarise token usage across ``chunks``.

    Returns
    -------
    dict[str, Any]
        ``total_chunks``, ``total_tokens``, ``average_tokens``, ``min_tokens``,
        ``max_tokens`` and the distinct, first-seen-ordered ``sections``.
    """
    if not chunks:
        return {
            "total_chunks": 0,
            "total_tokens": 0,
            "average_tokens": 0,
            "min_tokens": 0,
            "max_tokens": 0,
            "sections": [],
        }

    tokens = [c.tokens for c in chunks]
    sections = list(dict.fromkeys(c.section for c in chunks if c.section))

    return {
        "total_chunks": len(chunks),
        "total_tokens": sum(tokens),
        "average_tokens": round(sum(tokens) / len(chunks)),
        "min_tokens": min(tokens),
        "max_tokens": max(tokens),
        "sections": sections,
    }


__all__ = [
    "HeadingNode",
    "HeadingChunker",
    "chunk_markdown",
    "get_chunking_stats",
    "INTRODUCTION_TITLE",
]
