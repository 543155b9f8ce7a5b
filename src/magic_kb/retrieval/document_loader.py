"""magic_kb.retrieval.document_loader

Acquisition of raw source payloads.

This module provides helpers for acquiring raw documents from:
- Websites (HTML pages fetched over HTTP)
- Uploaded files (bytes plus an optional filename)

Payloads returned here are raw; conversion to canonical markdown happens in
:mod:`magic_kb.retrieval.document_preprocessor`.

Functions
---------
fetch_url
    Fetch an HTML page with a bounded timeout and a declared user agent.
sniff_asset_type
    Infer the asset type of an upload from its filename or byte signature.
check_payload_size
    Enforce the configured upload size ceiling.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

import requests

from magic_kb.common.errors import FetchError, FileTooLargeError, FormatError, ValidationError
from magic_kb.retrieval.layout_inference import OLE_SIGNATURE, is_docx, is_pdf

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "MagicKB/1.0 (Content Ingestion Bot)"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024

EXTENSION_TYPES = {
    ".pdf": "pdf",
    ".docx": "docx",
    ".doc": "docx",
    ".txt": "md",
    ".md": "md",
    ".markdown": "md",
    ".html": "html",
    ".htm": "html",
}


@dataclass
class FetchedPage:
    """An HTML page fetched from a URL.

    Attributes
    ----------
    url : str
        Final URL after redirects.
    html : str
        Decoded response body.
    status_code : int
        HTTP status code.
    """
    url: str
    html: str
    status_code: int


def fetch_url(
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        session: requests.Session | None = None,
    ) -> FetchedPage:
    """Fetch an HTML page.

    Parameters
    ----------
    url : str
        Absolute ``http`` or ``https`` URL.
    timeout : float, optional
        Request timeout in seconds. Defaults to ``30``.
    user_agent : str, optional
        ``User-Agent`` header value.
    session : requests.Session or None, optional
        Session to issue the request with. Defaults to module-level
        :func:`requests.get`.

    Returns
    -------
    FetchedPage
        The fetched page.

    Raises
    ------
    ValidationError
        If ``url`` is not an absolute HTTP(S) URL.
    FetchError
        On timeout, connection failure, a non-2xx status or a non-HTML
        content type.
    """
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid URL: {url!r}", user_message="Valid URL is required.")

    getter = session.get if session is not None else requests.get

    try:
        response = getter(url, headers={"User-Agent": user_agent}, timeout=timeout)
    except requests.exceptions.Timeout as exc:
        raise FetchError(
            f"Timed out fetching {url}",
            user_message=f"Request timed out after {timeout:g} seconds. Please try a different URL.",
        ) from exc
    except requests.exceptions.ConnectionError as exc:
        raise FetchError(
            f"Could not connect to {url}: {exc}",
            user_message="Could not connect to the URL. Please check the URL and try again.",
        ) from exc
    except requests.exceptions.RequestException as exc:
        raise FetchError(f"Failed to fetch URL: {exc}") from exc

    if not 200 <= response.status_code < 300:
        raise FetchError(f"Failed to fetch URL: {response.status_code} {response.reason or ''}".strip())

    content_type = response.headers.get("content-type", "")
    if "text/html" not in content_type:
        raise FetchError(
            f"Unexpected content type {content_type!r} from {url}",
            user_message="URL must return HTML content.",
        )

    logger.info("Fetched %s (%d bytes)", url, len(response.content or b""))
    return FetchedPage(url=response.url or url, html=response.text, status_code=response.status_code)


def sniff_asset_type(data: bytes, filename: str | None = None) -> str:
    """Infer the asset type of an uploaded payload.

    The filename extension wins when present. Without a filename the byte
    signature is inspected; anything that is neither PDF nor a ZIP container
    is treated as text.

    Parameters
    ----------
    data : bytes
        Uploaded bytes.
    filename : str or None, optional
        Original filename.

    Returns
    -------
    str
        One of ``"md"``, ``"html"``, ``"pdf"`` or ``"docx"``.

    Raises
    ------
    FormatError
        If the filename has an unsupported extension.
    """
    if filename:
        ext = os.path.splitext(filename.lower())[1]
        kind = EXTENSION_TYPES.get(ext)
        if kind is None:
            raise FormatError(
                f"Unsupported file extension {ext!r}",
                user_message="Unsupported file type. Please use PDF, DOCX, TXT, MD or HTML files.",
            )
        return kind

    if is_pdf(data):
        return "pdf"
    if is_docx(data) or data[:8] == OLE_SIGNATURE:
        return "docx"

    head = data[:512].lstrip().lower()
    if head.startswith((b"<!doctype html", b"<html")):
        return "html"
    return "md"


def check_payload_size(size: int, limit: int = DEFAULT_MAX_BYTES) -> None:
    """Raise :class:`FileTooLargeError` when ``size`` exceeds ``limit`` bytes."""
    if size > limit:
        raise FileTooLargeError(size=size, limit=limit)


__all__ = [
    "FetchedPage",
    "fetch_url",
    "sniff_asset_type",
    "check_payload_size",
    "EXTENSION_TYPES",
]
