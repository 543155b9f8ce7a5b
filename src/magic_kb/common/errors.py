"""magic_kb.common.errors

Error taxonomy shared by ingestion and retrieval.

Every error raised deliberately by this package derives from
:class:`KnowledgeBaseError` and carries a ``user_message`` that is safe to show
to an end user. Mapping of error classes to transport-level status codes is
done once, at the HTTP boundary (see :mod:`magic_kb.app.api`).

Classes
-------
KnowledgeBaseError
    Base class for all package errors.
ValidationError
    Malformed request parameters. Raised before any side effect.
FileTooLargeError
    Upload exceeds the configured size ceiling.
FormatError
    Source bytes are malformed, unsupported, encrypted or unreadable.
FetchError
    A URL source could not be fetched (network, timeout, status, content type).
EmbeddingError
    The embedding provider failed or timed out.
StorageError
    The document store is unavailable or a write failed.
DuplicateAssetError
    The ``(project_id, hash)`` unique key already exists in the store.
"""

from __future__ import annotations


class KnowledgeBaseError(Exception):
    """Base class for errors raised by the knowledge base core.

    Parameters
    ----------
    message : str
        Diagnostic message (logged, not necessarily user facing).
    user_message : str or None, optional
        Actionable message for the caller. Defaults to ``message``.
    """

    def __init__(self, message: str, *, user_message: str | None = None):
        super().__init__(message)
        self.user_message = user_message or message


class ValidationError(KnowledgeBaseError):
    """Request parameters are malformed."""


class FileTooLargeError(ValidationError):
    """Uploaded payload exceeds the configured ceiling."""

    def __init__(self, size: int, limit: int):
        mb = 1024 * 1024
        super().__init__(
            f"Payload of {size} bytes exceeds limit of {limit} bytes",
            user_message=(
                f"File size too large. Maximum allowed size is {limit / mb:g}MB. "
                f"Your file is {size / mb:.2f}MB."
            ),
        )
        self.size = size
        self.limit = limit


class FormatError(KnowledgeBaseError):
    """Source content does not match its declared format or cannot be read."""


class FetchError(KnowledgeBaseError):
    """A URL source could not be retrieved."""


class EmbeddingError(KnowledgeBaseError):
    """Embedding generation failed."""


class StorageError(KnowledgeBaseError):
    """The underlying document store failed."""


class DuplicateAssetError(StorageError):
    """An asset with the same ``(project_id, hash)`` already exists."""

    def __init__(self, project_id: str, content_hash: str):
        super().__init__(f"Asset with hash {content_hash} already exists in project {project_id}")
        self.project_id = project_id
        self.content_hash = content_hash


__all__ = [
    "KnowledgeBaseError",
    "ValidationError",
    "FileTooLargeError",
    "FormatError",
    "FetchError",
    "EmbeddingError",
    "StorageError",
    "DuplicateAssetError",
]
