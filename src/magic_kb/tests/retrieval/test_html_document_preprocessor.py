import pytest

from magic_kb.common.errors import FormatError, ValidationError
from magic_kb.retrieval.document_preprocessor import (
    html_to_markdown,
    normalize_document,
    normalize_markdown,
)


def _make_page(body: str, head: str = "<title>Page Title</title>") -> str:
    return f"<!DOCTYPE html><html><head>{head}</head><body>{body}</body></html>"


def test_normalize_markdown_strips_bom_and_line_endings():
    """A leading BOM is dropped, CRLF/CR become LF and edges are trimmed."""
    doc = normalize_markdown("﻿  # Title\r\nLine one\rLine two\n\n  ")
    assert doc.markdown == "# Title\nLine one\nLine two"
    assert doc.title is None


def test_headings_paragraphs_and_inline_markup_are_converted():
    """Block and inline elements map onto their markdown equivalents."""
    html = _make_page(
        "<main>"
        "<h1>Guide</h1>"
        "<p>Use <strong>bold</strong>, <em>italics</em> and <code>code</code>.</p>"
        "<h2>Links</h2>"
        '<p>See <a href="https://example.com">the site</a> or <a href="#">here</a>.</p>'
        "<hr>"
        "</main>"
    )
    doc = html_to_markdown(html)

    assert doc.markdown.startswith("# Guide\n\nUse **bold**, *italics* and `code`.")
    assert "## Links" in doc.markdown
    assert "[the site](https://example.com)" in doc.markdown
    assert "or here." in doc.markdown
    assert "---" in doc.markdown
    assert doc.headings == ["Guide", "Links"]


def test_navigation_and_scripts_are_removed():
    """Denylisted containers never reach the markdown."""
    html = _make_page(
        "<nav>Home | About</nav>"
        "<header>Site header</header>"
        "<div class='sidebar'>Sidebar links</div>"
        "<script>var x = 1;</script>"
        "<main><p>Real content.</p></main>"
        "<footer>Copyright</footer>"
    )
    doc = html_to_markdown(html)

    assert doc.markdown == "Real content."


def test_main_content_region_is_preferred_over_body():
    """The first main-content candidate is converted instead of the whole body."""
    html = _make_page("<div>Outside</div><article><h2>Inside</h2><p>Body.</p></article>")
    doc = html_to_markdown(html)

    assert "Outside" not in doc.markdown
    assert doc.markdown == "## Inside\n\nBody."


def test_body_is_used_when_no_content_region_exists():
    """Without a content candidate the body is converted, including bare text."""
    doc = html_to_markdown(_make_page("<div>Loose text<p>Para.</p></div>"))
    assert "Loose text" in doc.markdown
    assert "Para." in doc.markdown


def test_loose_text_and_inline_tags_form_one_paragraph():
    """Text mixed with inline tags in a container stays a single paragraph with its spacing."""
    html = _make_page(
        "<main><div>Read the <a href='/x'>docs</a> before you <b>start</b> now."
        "<p>Next block.</p>Trailing <em>note</em>.</div></main>"
    )
    md = html_to_markdown(html).markdown

    assert md == "Read the [docs](/x) before you **start** now.\n\nNext block.\n\nTrailing *note*."


def test_lists_tables_blockquotes_and_pre_blocks():
    """Structured elements keep their shape in markdown."""
    html = _make_page(
        "<main>"
        "<ul><li>One</li><li>Two</li></ul>"
        "<ol><li>First</li><li>Second</li></ol>"
        "<table><tr><th>Name</th><th>Value</th></tr><tr><td>a</td><td>1</td></tr></table>"
        "<blockquote>Quoted</blockquote>"
        "<pre><code>print('hi')</code></pre>"
        "</main>"
    )
    md = html_to_markdown(html).markdown

    assert "- One\n- Two" in md
    assert "1. First\n2. Second" in md
    assert "| Name | Value |\n| --- | --- |\n| a | 1 |" in md
    assert "> Quoted" in md
    assert "```\nprint('hi')\n```" in md


def test_title_prefers_h1_then_title_tag_then_meta():
    """Title extraction falls back from h1 to <title> to meta tags."""
    assert html_to_markdown(_make_page("<h1>Heading</h1><p>x</p>")).title == "Heading"
    assert html_to_markdown(_make_page("<p>x</p>")).title == "Page Title"

    meta = '<meta property="og:title" content="Meta Title">'
    assert html_to_markdown(_make_page("<p>x</p>", head=meta)).title == "Meta Title"
    assert html_to_markdown(_make_page("<p>x</p>", head="")).title is None


def test_html_bytes_are_decoded():
    """Byte payloads are decoded before parsing."""
    doc = html_to_markdown(_make_page("<main><p>Café</p></main>").encode("utf-8"))
    assert doc.markdown == "Café"


def test_excess_blank_lines_collapse():
    """Runs of three or more newlines collapse to a paragraph break."""
    doc = html_to_markdown(_make_page("<main><p>A</p><br><br><br><p>B</p></main>"))
    assert "\n\n\n" not in doc.markdown


def test_normalize_document_dispatches_by_type():
    """Text types route to the markdown or HTML converter."""
    assert normalize_document("# A\r\nb", "md").markdown == "# A\nb"
    assert normalize_document(b"# A", "md").markdown == "# A"
    assert normalize_document("<main><p>x</p></main>", "html").markdown == "x"


def test_normalize_document_rejects_unknown_type_and_text_for_binary_types():
    """Unknown types and text payloads for pdf/docx are validation errors."""
    with pytest.raises(ValidationError):
        normalize_document("x", "xlsx")
    with pytest.raises(ValidationError):
        normalize_document("not bytes", "pdf")


def test_normalize_document_rejects_invalid_utf8_text():
    """Undecodable markdown bytes raise FormatError."""
    with pytest.raises(FormatError):
        normalize_document(b"\xff\xfe\xfa", "md")
