"""magic_kb.retrieval.embedder

Embedding providers and the batching embedding client.

Providers are thin wrappers over LlamaIndex embedding models, selected by
:func:`create_embedder` from the ``embedder`` config section.
:class:`EmbeddingClient` sits on top of any provider and adds fixed-size
batches, a per-call timeout and translation of provider failures into
:class:`~magic_kb.common.errors.EmbeddingError`.

Documents and queries go through the same document-embedding call so that a
passage embedded inline, embedded later by a backfill, or issued as a query
lands in the same vector space.

Classes
-------
BaseEmbedder
    Provider interface used by the embedding client.
HuggingFaceEmbedder
    Local sentence-transformer model (``huggingface`` extra).
OpenAILikeEmbedder
    Any OpenAI-compatible ``/embeddings`` endpoint.
EmbeddingClient
    Batched, time-bounded wrapper returning embeddings in input order.

Functions
---------
create_embedder
    Build the configured provider.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict, List, Mapping, Optional, Sequence

from llama_index.core.base.embeddings.base import BaseEmbedding as LlamaIndexBaseEmbedding
from llama_index.core.callbacks import CallbackManager

from magic_kb.common.errors import EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "text-embedding-3-small"
DEFAULT_API_BASE = "https://api.openai.com/v1"
DEFAULT_BATCH_SIZE = 100
DEFAULT_TIMEOUT = 60.0

_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off"}


def _flag(value: Any, default: bool) -> bool:
    """Read a boolean config value that may arrive as a string from ``${VAR}``."""
    if value is None:
        return default
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return bool(value)


class BaseEmbedder(ABC):
    """Interface every embedding provider implements."""

    @abstractmethod
    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        """Return the wrapped LlamaIndex model."""

    @classmethod
    @abstractmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: Optional[CallbackManager] = None
        ) -> "BaseEmbedder":
        """Build the provider from the ``embedder`` config section.

        Raises
        ------
        KeyError
            If a key the provider cannot default is missing.
        """

    def embed_documents(self, documents: List[str]) -> List[List[float]]:
        """Embed ``documents`` in one provider call, preserving order."""
        return self.get_embedder().get_text_embedding_batch(documents)

    def embed_query(self, query: str) -> List[float]:
        """Embed a query through the document path."""
        return self.embed_documents([query])[0]


class HuggingFaceEmbedder(BaseEmbedder):
    """Local embedding model loaded through ``HuggingFaceEmbedding``.

    Requires the ``huggingface`` extra; the import happens on construction.

    Parameters
    ----------
    model_name : str
        Hub id or local path of the model.
    device : str or None
        Torch device, ``None`` lets the library choose.
    trust_remote_code : bool, optional
        Passed through to the model loader.
    callback_manager : CallbackManager, optional
        LlamaIndex tracing hooks.
    model_kwargs : dict or None, optional
        Extra loader arguments.
    """

    def __init__(
            self,
            model_name: str,
            *,
            device: Optional[str] = None,
            trust_remote_code: bool = False,
            callback_manager: Optional[CallbackManager] = None,
            model_kwargs: Optional[Dict[str, Any]] = None,
        ):
        from llama_index.embeddings.huggingface import HuggingFaceEmbedding

        self._model = HuggingFaceEmbedding(
            model_name=model_name,
            device=device,
            trust_remote_code=trust_remote_code,
            callback_manager=callback_manager,
            model_kwargs=dict(model_kwargs or {}),
        )

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self._model

    @classmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: Optional[CallbackManager] = None
        ) -> "HuggingFaceEmbedder":
        return cls(
            config["model_name"],
            device=config.get("device"),
            trust_remote_code=_flag(config.get("trust_remote_code"), False),
            callback_manager=callback_manager,
            model_kwargs=config.get("model_kwargs"),
        )


class OpenAILikeEmbedder(BaseEmbedder):
    """Remote embeddings from an OpenAI-compatible endpoint.

    Parameters
    ----------
    model_name : str
        Model requested from the endpoint.
    api_base : str
        Endpoint root, e.g. ``https://api.openai.com/v1``.
    api_key : str or None, optional
        Bearer token.
    callback_manager : CallbackManager, optional
        LlamaIndex tracing hooks.
    model_kwargs : dict or None, optional
        Extra request fields (``dimensions`` and the like).
    timeout : float, optional
        HTTP timeout of the underlying client, in seconds.
    max_retries : int, optional
        Retries performed by the underlying client.
    embed_batch_size : int, optional
        Texts per HTTP request inside one provider call.
    """

    def __init__(
            self,
            model_name: str,
            *,
            api_base: str,
            api_key: Optional[str] = None,
            callback_manager: Optional[CallbackManager] = None,
            model_kwargs: Optional[Dict[str, Any]] = None,
            timeout: float = DEFAULT_TIMEOUT,
            max_retries: int = 3,
            embed_batch_size: int = DEFAULT_BATCH_SIZE,
        ):
        from llama_index.embeddings.openai_like import OpenAILikeEmbedding

        self._model = OpenAILikeEmbedding(
            model_name=model_name,
            api_base=api_base,
            api_key=api_key,
            additional_kwargs=dict(model_kwargs or {}),
            callback_manager=callback_manager,
            timeout=timeout,
            max_retries=max_retries,
            embed_batch_size=embed_batch_size,
        )

    def get_embedder(self) -> LlamaIndexBaseEmbedding:
        return self._model

    @classmethod
    def from_config_dict(
            cls,
            config: Dict[str, Any],
            callback_manager: Optional[CallbackManager] = None
        ) -> "OpenAILikeEmbedder":
        """Build from config; ``model_name`` and ``api_base`` default to OpenAI's."""
        return cls(
            config.get("model_name") or DEFAULT_MODEL_NAME,
            api_base=config.get("api_base") or DEFAULT_API_BASE,
            api_key=config.get("api_key"),
            callback_manager=callback_manager,
            model_kwargs=config.get("model_kwargs"),
            timeout=float(config.get("timeout", DEFAULT_TIMEOUT)),
            max_retries=int(config.get("max_retries", 3)),
            embed_batch_size=int(config.get("embed_batch_size", DEFAULT_BATCH_SIZE)),
        )


class EmbeddingClient:
    """Batch texts through a :class:`BaseEmbedder` with a bounded timeout.

    Parameters
    ----------
    embedder : BaseEmbedder
        Provider wrapper. Anything with an ``embed_documents`` method works.
    batch_size : int, optional
        Texts per provider call. Defaults to ``100``.
    timeout : float or None, optional
        Seconds allowed per provider call. ``None`` disables the bound.
    """

    def __init__(
            self,
            embedder: BaseEmbedder,
            *,
            batch_size: int = DEFAULT_BATCH_SIZE,
            timeout: float | None = DEFAULT_TIMEOUT,
        ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.embedder = embedder
        self.batch_size = batch_size
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="magic-kb-embed")

    def _call(self, batch: List[str]) -> List[List[float]]:
        if self.timeout is None:
            return self.embedder.embed_documents(batch)
        future = self._executor.submit(self.embedder.embed_documents, batch)
        return future.result(timeout=self.timeout)

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed ``texts`` and return vectors in the same order.

        Parameters
        ----------
        texts : Sequence[str]
            Texts to embed.

        Returns
        -------
        list[list[float]]
            One vector per input text. Empty input returns an empty list
            without calling the provider.

        Raises
        ------
        EmbeddingError
            If any batch fails, times out, or returns the wrong number of
            vectors. No partial result is returned.
        """
        texts = list(texts)
        if not texts:
            return []

        vectors: List[List[float]] = []
        n_batches = (len(texts) + self.batch_size - 1) // self.batch_size

        for index in range(n_batches):
            batch = texts[index * self.batch_size:(index + 1) * self.batch_size]
            label = f"batch {index + 1}/{n_batches}"
            try:
                result = self._call(batch)
            except FutureTimeoutError as exc:
                raise EmbeddingError(
                    f"Embedding {label} timed out after {self.timeout:g}s",
                    user_message="Embedding service timed out.",
                ) from exc
            except Exception as exc:
                raise EmbeddingError(
                    f"Embedding {label} failed: {exc}",
                    user_message="Embedding service failed.",
                ) from exc

            if len(result) != len(batch):
                raise EmbeddingError(
                    f"Embedding {label} returned {len(result)} vectors for {len(batch)} texts"
                )
            vectors.extend([float(x) for x in vector] for vector in result)
            logger.debug("Embedded %s (%d texts)", label, len(batch))

        return vectors

    def embed_query(self, query: str) -> List[float]:
        """Embed a single query string through :meth:`embed`."""
        return self.embed([query])[0]

    def close(self) -> None:
        self._executor.shutdown(wait=False)


_PROVIDERS = {
    "openailike": OpenAILikeEmbedder,
    "openai": OpenAILikeEmbedder,
    "huggingface": HuggingFaceEmbedder,
    "hf": HuggingFaceEmbedder,
}


def create_embedder(
    config: Mapping[str, Any],
    callback_manager: Optional[CallbackManager] = None,
) -> BaseEmbedder:
    """Build the provider named by ``config["kind"]``.

    Case, hyphens, underscores and spaces in the kind are ignored, so
    ``OpenAILike``, ``openai-like`` and ``openai_like`` are the same
    provider. A missing kind selects :class:`OpenAILikeEmbedder`.

    Raises
    ------
    TypeError
        If ``config`` is not a mapping.
    ValueError
        If the kind names no known provider.
    """
    if not isinstance(config, Mapping):
        raise TypeError(f"Embedder config must be a mapping, got {type(config).__name__}")

    kind = str(config.get("kind") or "")
    key = re.sub(r"[\s_\-]+", "", kind).lower()
    cls = _PROVIDERS.get(key) if key else OpenAILikeEmbedder
    if cls is None:
        raise ValueError(f"Unknown embedder kind {kind!r}. Supported kinds: {sorted(_PROVIDERS)}.")

    return cls.from_config_dict(dict(config), callback_manager=callback_manager)


__all__ = [
    "BaseEmbedder",
    "HuggingFaceEmbedder",
    "OpenAILikeEmbedder",
    "EmbeddingClient",
    "create_embedder",
]
