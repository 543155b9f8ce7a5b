"""magic_kb.retrieval.layout_inference

PDF and DOCX conversion with heuristic structure inference.

PDF and DOCX sources are read into a linear stream of lines and markdown
structure is re-inferred from layout cues. The inference is best effort and
approximate:

- bullet glyphs (``•·▪▫‣⁃-*``) become ``- `` list items
- numeric prefixes (``1.`` or ``1)``) become ``1. `` list items
- short lines (under 60 characters) containing letters become headings when
  they are majority uppercase, or isolated between blank lines. The level is
  ``##`` by default and ``#`` for lines under 30 characters, or uppercase
  lines under 40 characters
- runs of tabs or wide spacing inside a line collapse to one space
- three or more consecutive newlines collapse to one blank line

List detection runs before heading detection so short list items are never
promoted to headings. DOCX paragraphs carrying ``Title``, ``Heading N`` or list
styles bypass the heuristic.

Functions
---------
infer_markdown_structure
    Re-infer markdown structure from plain text.
is_pdf
    Check for the ``%PDF-`` signature.
pdf_to_markdown
    Convert PDF bytes to a :class:`~magic_kb.common.schemas.NormalizedDocument`.
is_docx
    Check for a ZIP container signature.
docx_to_markdown
    Convert DOCX bytes to a :class:`~magic_kb.common.schemas.NormalizedDocument`.
"""

from __future__ import annotations

import io
import logging
import re
from typing import List, Tuple

import docx
from docx.table import Table
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from magic_kb.common.errors import FormatError
from magic_kb.common.schemas import NormalizedDocument

logger = logging.getLogger(__name__)

PDF_SIGNATURE = b"%PDF-"
ZIP_SIGNATURES = (b"PK\x03\x04", b"PK\x05\x06")
OLE_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

_BULLET = re.compile(r"^\s*[•·▪▫‣⁃\-*]\s+")
_NUMBERED = re.compile(r"^\s*(\d+)[.)]\s+")
_WIDE_SPACE = re.compile(r"\t|\s{4,}")
_HEADING_STYLE = re.compile(r"^Heading\s+(\d+)$", re.IGNORECASE)
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")
_TRAILING_SPACE = re.compile(r"[ \t]+$", re.MULTILINE)


def _is_mostly_upper(line: str) -> bool:
    letters = [c for c in line if c.isalpha()]
    if not letters:
        return False
    return sum(1 for c in letters if c.isupper()) * 2 > len(letters)


def _heading_level(line: str, upper: bool) -> int:
    if len(line) < 30:
        return 1
    if upper and len(line) < 40:
        return 1
    return 2


def _infer_lines(entries: List[Tuple[str, bool]]) -> str:
    """Apply the structure heuristic to ``(line, already_structured)`` pairs."""
    out: List[str] = []
    blank = [not line.strip() for line, _ in entries]

    for i, (raw, structured) in enumerate(entries):
        line = raw.strip()

        if not line:
            out.append("")
            continue
        if structured:
            out.append(line)
            continue

        if _BULLET.match(line):
            line = _BULLET.sub("- ", line, count=1)
        elif _NUMBERED.match(line):
            line = _NUMBERED.sub(r"\1. ", line, count=1)
        else:
            upper = _is_mostly_upper(line)
            isolated = (i == 0 or blank[i - 1]) and (i + 1 == len(entries) or blank[i + 1])
            has_letters = any(c.isalpha() for c in line)

            if len(line) < 60 and has_letters and (upper or isolated):
                line = "#" * _heading_level(line, upper) + " " + line
            elif _WIDE_SPACE.search(line):
                line = re.sub(r"\s+", " ", line)

        out.append(line)

    markdown = "\n".join(out)
    markdown = _EXCESS_BLANK_LINES.sub("\n\n", markdown)
    markdown = _TRAILING_SPACE.sub("", markdown)
    return markdown.strip()


def infer_markdown_structure(text: str) -> str:
    """Re-infer markdown structure from linear plain text.

    Parameters
    ----------
    text : str
        Text extracted from a paginated or word-processor source.

    Returns
    -------
    str
        Markdown with inferred headings and lists.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _EXCESS_BLANK_LINES.sub("\n\n", text).strip()
    if not text:
        return ""
    return _infer_lines([(line, False) for line in text.split("\n")])


def is_pdf(data: bytes) -> bool:
    """Return ``True`` if ``data`` carries the PDF signature in its first 8 bytes."""
    return len(data) >= 8 and data[:8].startswith(PDF_SIGNATURE)


def pdf_to_markdown(data: bytes) -> NormalizedDocument:
    """Convert PDF bytes to markdown.

    Parameters
    ----------
    data : bytes
        Raw PDF file.

    Returns
    -------
    NormalizedDocument
        Inferred markdown, the metadata title (if any) and the page count.

    Raises
    ------
    FormatError
        If the signature is missing, the file is encrypted with a non-empty
        password, the file cannot be parsed, or no text can be extracted.
    """
    if not is_pdf(data):
        raise FormatError(
            "Invalid PDF file: missing %PDF- signature",
            user_message="The uploaded file is not a valid PDF document.",
        )

    try:
        reader = PdfReader(io.BytesIO(data))
        if reader.is_encrypted and not reader.decrypt(""):
            raise FormatError(
                "PDF is encrypted with a user password",
                user_message="PDF is password protected or encrypted and cannot be processed.",
            )
        page_texts = [page.extract_text() or "" for page in reader.pages]
        metadata = reader.metadata
        title = (metadata.title or "").strip() if metadata is not None else ""
    except FormatError:
        raise
    except (PyPdfError, ValueError, KeyError, TypeError) as exc:
        logger.warning("PDF parsing failed: %s", exc)
        raise FormatError(
            f"Failed to parse PDF: {exc}",
            user_message="PDF file appears to be corrupted and cannot be processed.",
        ) from exc

    text = "\n\n".join(page_texts)
    if not text.strip():
        raise FormatError(
            "No readable text content found in PDF",
            user_message="No readable text content found in PDF. Scanned documents are not supported.",
        )

    markdown = infer_markdown_structure(text)
    logger.debug("Extracted %d characters from %d PDF pages", len(markdown), len(page_texts))

    return NormalizedDocument(markdown=markdown, title=title or None, pages=len(page_texts))


def is_docx(data: bytes) -> bool:
    """Return ``True`` if ``data`` starts with a ZIP container signature."""
    return data[:4] in ZIP_SIGNATURES


def _table_lines(table: Table) -> List[str]:
    lines = []
    for index, row in enumerate(table.rows):
        cells = [cell.text.replace("\n", " ").strip() for cell in row.cells]
        lines.append("| " + " | ".join(cells) + " |")
        if index == 0:
            lines.append("| " + " | ".join("---" for _ in cells) + " |")
    return lines


def docx_to_markdown(data: bytes) -> NormalizedDocument:
    """Convert DOCX bytes to markdown.

    Parameters
    ----------
    data : bytes
        Raw DOCX file.

    Returns
    -------
    NormalizedDocument
        Markdown and a title taken from the core properties, else the first
        ``Title`` paragraph, else the first level-1 heading.

    Raises
    ------
    FormatError
        If the file is an OLE compound document (encrypted DOCX or legacy
        ``.doc``), lacks the ZIP signature, or cannot be opened.
    """
    if data[:8] == OLE_SIGNATURE:
        raise FormatError(
            "Document is an OLE compound file",
            user_message=(
                "Document is password protected, encrypted, or in the legacy .doc format "
                "and cannot be processed."
            ),
        )
    if not is_docx(data):
        raise FormatError(
            "File does not appear to be a valid DOCX document (missing ZIP signature)",
            user_message="The uploaded file is not a valid DOCX document.",
        )

    try:
        document = docx.Document(io.BytesIO(data))
    except Exception as exc:
        logger.warning("DOCX parsing failed: %s", exc)
        raise FormatError(
            f"DOCX processing failed: {exc}",
            user_message="DOCX file appears to be corrupted and cannot be processed.",
        ) from exc

    entries: List[Tuple[str, bool]] = []
    title = (document.core_properties.title or "").strip() or None
    first_heading = None
    number = 0

    def structured(line: str, padded: bool = False) -> None:
        if padded:
            entries.append(("", False))
        entries.append((line, True))
        if padded:
            entries.append(("", False))

    for block in document.iter_inner_content():
        if isinstance(block, Table):
            entries.append(("", False))
            for line in _table_lines(block):
                structured(line)
            entries.append(("", False))
            number = 0
            continue

        text = block.text.strip()
        style = block.style.name if block.style is not None else ""

        if not text:
            entries.append(("", False))
            number = 0
            continue

        heading = _HEADING_STYLE.match(style)
        if style == "Title":
            title = title or text
            structured(f"# {text}", padded=True)
            number = 0
        elif heading:
            level = min(int(heading.group(1)), 6)
            if level == 1 and first_heading is None:
                first_heading = text
            structured("#" * level + f" {text}", padded=True)
            number = 0
        elif style.startswith("List Number"):
            number += 1
            structured(f"{number}. {text}")
        elif style.startswith("List"):
            structured(f"- {text}")
        else:
            for line in text.split("\n"):
                entries.append((line, False))
            entries.append(("", False))
            number = 0

    markdown = _infer_lines(entries)
    if not markdown:
        raise FormatError(
            "No readable text content found in DOCX",
            user_message="No readable text content found in DOCX document.",
        )

    return NormalizedDocument(markdown=markdown, title=title or first_heading)


__all__ = [
    "infer_markdown_structure",
    "is_pdf",
    "pdf_to_markdown",
    "is_docx",
    "docx_to_markdown",
]
