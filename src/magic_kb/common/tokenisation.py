"""magic_kb.common.tokenisation

Token counters used to size chunks.

The heading chunker measures passages through the :class:`TokenCounter`
protocol, so the estimator can be swapped for a real tokenizer from
configuration.

The default counter is the word-ratio estimate ``ceil(words * 1.33)``. Chunk
boundaries depend on it and it has no external state. An exact
``tiktoken`` counter is available as an opt-in alternative.

Classes
-------
TokenCounter
    Anything with ``count(text) -> int``.
WordRatioTokenCounter
    Dependency-free word-count based estimate.
TiktokenTokenCounter
    BPE counts from a ``tiktoken`` encoding.

Functions
---------
create_token_counter
    Build a counter from the ``tokenization`` configuration section.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

DEFAULT_WORD_RATIO = 1.33


class TokenCounter(Protocol):
    """Counts tokens in a passage."""

    def count(self, text: str) -> int:
        """Token count of ``text`` (0 for empty text)."""


@dataclass(frozen=True)
class WordRatioTokenCounter:
    """Approximate token counter based on whitespace-delimited words.

    Attributes
    ----------
    ratio : float
        Tokens per word. Defaults to ``1.33``.
    """

    ratio: float = DEFAULT_WORD_RATIO

    def count(self, text: str) -> int:
        if not text:
            return 0
        words = len(text.split())
        return math.ceil(words * self.ratio)


@dataclass(frozen=True)
class TiktokenTokenCounter:
    """Exact BPE counts for OpenAI-style models.

    Attributes
    ----------
    encoding_name : str
        Encoding name, e.g. ``cl100k_base``.
    _enc : Any
        Loaded encoding.
    """

    encoding_name: str
    _enc: Any

    @classmethod
    def from_encoding_name(cls, encoding_name: str) -> "TiktokenTokenCounter":
        """Load ``encoding_name`` with tiktoken (imported on first use)."""
        import tiktoken # type: ignore

        enc = tiktoken.get_encoding(encoding_name)
        return cls(encoding_name=encoding_name, _enc=enc)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._enc.encode(text))


def create_token_counter(cfg: Mapping[str, Any] | None = None) -> TokenCounter:
    """Create a token counter from a ``tokenization`` config mapping.

    Parameters
    ----------
    cfg : Mapping[str, Any] or None, optional
        Section with a ``type`` key (``"word_ratio"`` or ``"tiktoken"``) and
        type-specific options (``ratio``, ``encoding``). ``None`` selects the
        word-ratio default.

    Returns
    -------
    TokenCounter
        Configured counter.

    Raises
    ------
    ValueError
        If the configured type is unknown.
    """
    cfg = cfg or {}
    kind = str(cfg.get("type") or "word_ratio").lower().replace("-", "_")

    if kind in {"word_ratio", "words", "heuristic"}:
        return WordRatioTokenCounter(ratio=float(cfg.get("ratio", DEFAULT_WORD_RATIO)))

    if kind in {"tiktoken", "openai"}:
        enc = cfg.get("encoding") or "cl100k_base"
        return TiktokenTokenCounter.from_encoding_name(str(enc))

    raise ValueError(f"Unknown tokenization type: {kind!r}")


__all__ = [
    "TokenCounter",
    "WordRatioTokenCounter",
    "TiktokenTokenCounter",
    "create_token_counter",
]
