import re

import pytest

from magic_kb.retrieval.text_splitter import (
    INTRODUCTION_TITLE,
    HeadingChunker,
    chunk_markdown,
    get_chunking_stats,
)


class WordCounter:
    """One token per whitespace-delimited word."""

    def count(self, text: str) -> int:
        return len((text or "").split())


def _make_chunker(min_tokens: int = 5, max_tokens: int = 10, **kwargs) -> HeadingChunker:
    return HeadingChunker(
        min_tokens=min_tokens,
        max_tokens=max_tokens,
        token_counter=WordCounter(),
        **kwargs,
    )


def _make_long_section(title: str, lines: int, words_per_line: int = 3) -> str:
    body = "\n".join(" ".join(f"w{i}x{j}" for j in range(words_per_line)) for i in range(lines))
    return f"# {title}\n\n{body}\n"


NESTED_DOC = """# Guide
Guide intro.
## Install
Run the installer.
### Linux
Use the package manager.
## Usage
Call the binary.
"""


def test_empty_document_yields_no_chunks():
    """Empty or whitespace-only markdown produces an empty chunk list."""
    chunker = _make_chunker()
    assert chunker.split("") == []
    assert chunker.split("   \n\n\t") == []


def test_heading_paths_follow_document_hierarchy():
    """Each chunk carries the titles from the root heading down to its own heading."""
    chunks = _make_chunker(max_tokens=100).split(NESTED_DOC)

    assert [c.heading_path for c in chunks] == [
        ["Guide"],
        ["Guide", "Install"],
        ["Guide", "Install", "Linux"],
        ["Guide", "Usage"],
    ]
    assert [c.section for c in chunks] == ["Guide", "Install", "Linux", "Usage"]


def test_chunk_text_contains_its_heading_and_only_direct_content():
    """A chunk starts with its own heading line and excludes descendant sections."""
    chunks = _make_chunker(max_tokens=100).split(NESTED_DOC)

    assert chunks[0].text == "# Guide\n\nGuide intro."
    assert chunks[1].text == "## Install\n\nRun the installer."
    assert "Use the package manager." not in chunks[1].text


def test_content_before_first_heading_becomes_introduction():
    """Preamble text is emitted first, without a section label or heading path."""
    chunks = _make_chunker(max_tokens=100).split("Some preamble.\n\n# Body\nBody text.")

    assert chunks[0].text == "Some preamble."
    assert chunks[0].section is None
    assert chunks[0].heading_path == []
    assert INTRODUCTION_TITLE not in chunks[0].text
    assert chunks[1].heading_path == ["Body"]


def test_blank_preamble_does_not_create_introduction():
    """Whitespace before the first heading is not a chunk."""
    chunks = _make_chunker(max_tokens=100).split("\n\n# Only\ntext")
    assert len(chunks) == 1
    assert chunks[0].section == "Only"


def test_every_line_is_emitted_once_in_document_order():
    """Content lines appear exactly once and in order; headings keep their order."""
    markdown = "Lead paragraph.\n\n" + NESTED_DOC + _make_long_section("Big", lines=12)
    chunks = _make_chunker().split(markdown)

    source = [line.strip() for line in markdown.split("\n") if line.strip()]
    emitted = [line.strip() for c in chunks for line in c.text.split("\n") if line.strip()]

    assert [l for l in emitted if not l.startswith("#")] == [l for l in source if not l.startswith("#")]

    # oversized sections repeat their heading on every piece
    first_seen = list(dict.fromkeys(l for l in emitted if l.startswith("#")))
    assert first_seen == [l for l in source if l.startswith("#")]


def test_oversized_section_is_split_with_repeated_heading():
    """Pieces of a long section are re-prefixed with the heading and respect the window."""
    chunks = _make_chunker(min_tokens=5, max_tokens=10).split(_make_long_section("Big", lines=10))

    assert len(chunks) > 1
    for chunk in chunks:
        assert chunk.text.startswith("# Big\n\n")
        assert chunk.tokens <= 10
        assert chunk.heading_path == ["Big"]
    for chunk in chunks[:-1]:
        assert chunk.tokens >= 5


def test_piece_is_not_closed_below_min_tokens():
    """A line that would overflow is still appended while the piece is under min_tokens."""
    markdown = "# T\n\none two\nthree four five six seven eight nine ten eleven\n"
    chunks = _make_chunker(min_tokens=8, max_tokens=10).split(markdown)

    assert len(chunks) == 1
    assert chunks[0].tokens > 10


def test_headings_inside_code_fences_are_ignored():
    """Hash lines inside fenced code blocks stay in the surrounding section."""
    markdown = "# Script\n\n```bash\n# not a heading\necho hi\n```\n"
    chunks = _make_chunker(max_tokens=100).split(markdown)

    assert len(chunks) == 1
    assert "# not a heading" in chunks[0].text


def test_headings_deeper_than_max_depth_stay_in_content():
    """Headings below the configured depth are treated as content."""
    markdown = "# Top\n\n#### Deep\ndeep text\n"
    chunks = _make_chunker(max_tokens=100, max_heading_depth=3).split(markdown)

    assert len(chunks) == 1
    assert "#### Deep" in chunks[0].text


def test_chunk_ids_are_deterministic_for_identical_markdown():
    """Re-chunking the same markdown yields the same ids in order."""
    chunker = _make_chunker(max_tokens=100)
    first = [c.chunk_id for c in chunker.split(NESTED_DOC)]
    second = [c.chunk_id for c in chunker.split(NESTED_DOC)]

    assert first == second
    assert len(set(first)) == len(first)
    assert all(re.fullmatch(r"chunk_[0-9a-f]{16}_\d+", cid) for cid in first)


def test_invalid_bounds_are_rejected():
    """min_tokens above max_tokens or non-positive bounds raise ValueError."""
    with pytest.raises(ValueError):
        HeadingChunker(min_tokens=10, max_tokens=5)
    with pytest.raises(ValueError):
        HeadingChunker(min_tokens=0, max_tokens=5)
    with pytest.raises(ValueError):
        HeadingChunker(max_heading_depth=7)


def test_from_config_dict_reads_chunking_section():
    """The chunker picks up sizing from a config mapping."""
    chunker = HeadingChunker.from_config_dict({"min_tokens": 10, "max_tokens": 20, "max_heading_depth": 2})
    assert (chunker.min_tokens, chunker.max_tokens, chunker.max_heading_depth) == (10, 20, 2)


def test_chunk_markdown_uses_default_word_ratio_counter():
    """The module-level helper estimates tokens at 1.33 per word."""
    chunks = chunk_markdown("# A\n\none two three")
    assert len(chunks) == 1
    assert chunks[0].tokens == 7


def test_chunking_stats_summarise_tokens_and_sections():
    """Stats report totals, extremes and distinct section labels."""
    chunks = _make_chunker(max_tokens=100).split("Intro words here.\n" + NESTED_DOC)
    stats = get_chunking_stats(chunks)

    assert stats["total_chunks"] == 5
    assert stats["total_tokens"] == sum(c.tokens for c in chunks)
    assert stats["min_tokens"] == min(c.tokens for c in chunks)
    assert stats["max_tokens"] == max(c.tokens for c in chunks)
    assert stats["sections"] == ["Guide", "Install", "Linux", "Usage"]
    assert get_chunking_stats([])["total_chunks"] == 0
