"""magic_kb.retrieval.document_preprocessor

Conversion of raw sources into canonical markdown.

This module contains helpers for:
- normalising plain text and markdown input
- sanitising HTML pages and converting their main content region to markdown
- dispatching a payload to the converter for its declared asset type

PDF and DOCX conversion live in :mod:`magic_kb.retrieval.layout_inference`
because they share a heuristic structure-inference pass over linear text.

Functions
---------
normalize_markdown
    Strip a BOM, normalise line endings and trim surrounding whitespace.
html_to_markdown
    Convert an HTML page to markdown, extracting a title and heading list.
normalize_document
    Convert a payload of a given asset type into a
    :class:`~magic_kb.common.schemas.NormalizedDocument`.
"""

from __future__ import annotations

import logging
import re

from bs4 import BeautifulSoup, Comment, NavigableString, Tag, UnicodeDammit

from magic_kb.common.errors import FormatError, ValidationError
from magic_kb.common.schemas import ASSET_TYPES, NormalizedDocument
from magic_kb.retrieval.layout_inference import docx_to_markdown, pdf_to_markdown

logger = logging.getLogger(__name__)

UNWANTED_SELECTORS = [
    "nav", "header", "footer", "aside",
    ".nav", ".navigation", ".navbar", ".menu",
    ".sidebar", ".side-bar", ".aside",
    ".ad", ".ads", ".advertisement", ".banner",
    ".social", ".share", ".sharing",
    ".comments", ".comment-section",
    ".related", ".recommended", ".suggestions",
    ".popup", ".modal", ".overlay",
    ".cookie", ".gdpr",
    "script", "style", "noscript",
    '[role="banner"]', '[role="navigation"]', '[role="complementary"]',
]

CONTENT_SELECTORS = [
    "main",
    '[role="main"]',
    ".main",
    ".content",
    ".post-content",
    ".article-content",
    ".entry-content",
    "article",
    ".article",
]

INLINE_TAGS = {
    "a", "abbr", "acronym", "b", "bdi", "bdo", "big", "br", "button", "cite", "code",
    "dfn", "em", "i", "img", "input", "kbd", "label", "map", "mark", "meter", "noscript",
    "object", "output", "progress", "q", "ruby", "s", "samp", "script", "select", "small",
    "span", "strong", "sub", "sup", "textarea", "time", "tt", "u", "var", "wbr",
}

HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]

_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


def normalize_markdown(text: str) -> NormalizedDocument:
    """Normalise plain text or markdown.

    Parameters
    ----------
    text : str
        Raw text.

    Returns
    -------
    NormalizedDocument
        Text with a leading BOM removed, ``\\r\\n``/``\\r`` converted to
        ``\\n`` and surrounding whitespace trimmed. No title is extracted.
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return NormalizedDocument(markdown=text.strip())


def _inline(element: Tag) -> str:
    parts = []
    for node in element.children:
        if isinstance(node, Comment):
            continue
        if isinstance(node, NavigableString):
            parts.append(str(node))
        elif isinstance(node, Tag):
            parts.append(_convert(node))
    return "".join(parts)


def _children(element: Tag) -> str:
    parts = []
    # loose text and inline tags between blocks form one paragraph
    run: list[str] = []

    def flush() -> None:
        text = "".join(run).strip()
        if text:
            parts.append(f"{text}\n\n")
        run.clear()

    for node in element.children:
        if isinstance(node, Comment):
            continue
        if isinstance(node, NavigableString):
            run.append(str(node))
        elif isinstance(node, Tag):
            if (node.name or "").lower() in INLINE_TAGS:
                run.append(_convert(node))
            else:
                flush()
                parts.append(_convert(node))
    flush()
    return "".join(parts)


def _convert_list(element: Tag, ordered: bool) -> str:
    result = ""
    for index, item in enumerate(element.find_all("li", recursive=False)):
        marker = f"{index + 1}. " if ordered else "- "
        lines = [line for line in _inline(item).split("\n") if line.strip()]
        if not lines:
            continue
        result += f"{marker}{lines[0]}\n"
        for line in lines[1:]:
            result += f"  {line}\n"
    return result


def _convert_table(element: Tag) -> str:
    result = ""
    first_row = True
    for row in element.find_all("tr"):
        cells = row.find_all(["td", "th"])
        if not cells:
            continue
        contents = [_inline(cell).replace("\n", " ").strip() for cell in cells]
        result += "| " + " | ".join(contents) + " |\n"
        if first_row:
            result += "| " + " | ".join("---" for _ in cells) + " |\n"
            first_row = False
    return result


def _convert(element: Tag) -> str:
    name = (element.name or "").lower()
    text = element.get_text().strip()

    if not text and name not in ("br", "hr", "img"):
        return ""

    if name in HEADING_TAGS:
        return "#" * int(name[1]) + f" {text}\n\n"
    if name == "p":
        return f"{_inline(element)}\n\n"
    if name == "br":
        return "\n"
    if name == "hr":
        return "---\n\n"
    if name in ("strong", "b"):
        return f"**{text}**"
    if name in ("em", "i"):
        return f"*{text}*"
    if name == "code":
        return f"`{text}`"
    if name == "pre":
        code = element.find("code")
        code_text = code.get_text() if code is not None else text
        return f"```\n{code_text}\n```\n\n"
    if name == "a":
        href = element.get("href")
        if href and href != "#":
            return f"[{text}]({href})"
        return text
    if name == "img":
        src = element.get("src")
        if src:
            return f"![{element.get('alt') or ''}]({src})"
        return ""
    if name == "ul":
        return _convert_list(element, ordered=False) + "\n"
    if name == "ol":
        return _convert_list(element, ordered=True) + "\n"
    if name == "li":
        return _inline(element)
    if name == "blockquote":
        lines = _inline(element).split("\n")
        return "\n".join(f"> {line}" if line.strip() else ">" for line in lines) + "\n\n"
    if name == "table":
        return _convert_table(element) + "\n"
    if name in INLINE_TAGS:
        return _inline(element)
    return _children(element)


def _extract_title(soup: BeautifulSoup) -> str | None:
    h1 = soup.find("h1")
    if h1 is not None and h1.get_text().strip():
        return h1.get_text().strip()

    title_tag = soup.find("title")
    if title_tag is not None and title_tag.get_text().strip():
        return title_tag.get_text().strip()

    meta = soup.select_one('meta[property="og:title"], meta[name="title"]')
    if meta is not None and (meta.get("content") or "").strip():
        return meta["content"].strip()

    return None


def html_to_markdown(html: str | bytes) -> NormalizedDocument:
    """Convert an HTML page to markdown.

    Non-content regions matching :data:`UNWANTED_SELECTORS` are removed first.
    The first element matching :data:`CONTENT_SELECTORS` is converted; when
    none matches the whole body is used.

    Parameters
    ----------
    html : str or bytes
        HTML document. Bytes are decoded with :class:`bs4.UnicodeDammit`.

    Returns
    -------
    NormalizedDocument
        Markdown of the content region, the title (first ``h1``, then
        ``<title>``, then ``og:title``/``name=title`` meta) and the heading
        texts found in the content region.
    """
    if isinstance(html, bytes):
        html = UnicodeDammit(html, smart_quotes_to="unicode").unicode_markup or ""

    soup = BeautifulSoup(html, "html.parser")

    for selector in UNWANTED_SELECTORS:
        for element in soup.select(selector):
            element.decompose()

    title = _extract_title(soup)

    content = None
    for selector in CONTENT_SELECTORS:
        content = soup.select_one(selector)
        if content is not None:
            break
    if content is None:
        content = soup.body or soup

    headings = [
        h.get_text().strip()
        for h in content.find_all(HEADING_TAGS)
        if h.get_text().strip()
    ]

    markdown = _children(content) if content is soup else _convert(content)
    markdown = _EXCESS_BLANK_LINES.sub("\n\n", markdown).strip()
    logger.debug("Converted HTML content region <%s>: %d headings, %d characters",
                 content.name, len(headings), len(markdown))

    return NormalizedDocument(markdown=markdown, title=title, headings=headings)


def normalize_document(payload: str | bytes, asset_type: str) -> NormalizedDocument:
    """Convert ``payload`` into canonical markdown according to ``asset_type``.

    Parameters
    ----------
    payload : str or bytes
        Raw source. PDF and DOCX require bytes; text types accept either.
    asset_type : str
        One of ``"md"``, ``"html"``, ``"pdf"`` or ``"docx"``.

    Returns
    -------
    NormalizedDocument
        Canonical markdown with any extracted title.

    Raises
    ------
    ValidationError
        If ``asset_type`` is unknown or a binary type receives text.
    FormatError
        If the payload does not match its declared format or cannot be read.
    """
    if asset_type not in ASSET_TYPES:
        raise ValidationError(
            f"Unknown asset type {asset_type!r}",
            user_message=f"Asset type must be one of: {', '.join(ASSET_TYPES)}.",
        )

    if asset_type in ("pdf", "docx"):
        if not isinstance(payload, (bytes, bytearray)):
            raise ValidationError(f"{asset_type} payload must be bytes")
        if asset_type == "pdf":
            return pdf_to_markdown(bytes(payload))
        return docx_to_markdown(bytes(payload))

    if isinstance(payload, (bytes, bytearray)):
        if asset_type == "html":
            return html_to_markdown(bytes(payload))
        try:
            payload = bytes(payload).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FormatError(
                "Text payload is not valid UTF-8",
                user_message="Failed to process text file: content is not valid UTF-8 text.",
            ) from exc

    if asset_type == "html":
        return html_to_markdown(payload)
    return normalize_markdown(payload)


__all__ = [
    "normalize_markdown",
    "html_to_markdown",
    "normalize_document",
]
