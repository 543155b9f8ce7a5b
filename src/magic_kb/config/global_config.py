"""magic_kb.config.global_config

YAML configuration for the knowledge base.

:class:`GlobalConfig` wraps the parsed YAML mapping. Each section is a cached
property that fills in defaults and coerces numeric values, so components
receive plain dicts. ``${VAR}`` references in any string value are replaced
from the environment when the file is loaded, which is how API keys reach the
``embedder`` section.

Classes
-------
GlobalConfig
    Parsed configuration with one accessor per section.
"""

import os
import yaml
from pathlib import Path
from functools import cached_property

DEFAULT_CHUNKING = {
    "min_tokens": 400,
    "max_tokens": 800,
    "max_heading_depth": 3,
}

DEFAULT_INGESTION = {
    "max_file_bytes": 10 * 1024 * 1024,
    "fetch_timeout": 30.0,
    "user_agent": "MagicKB/1.0 (Content Ingestion Bot)",
    "embedding_timeout": 60.0,
}

DEFAULT_RETRIEVAL = {
    "default_k": 5,
    "candidate_multiplier": 1.5,
    "vector_weight": 0.6,
    "lexical_weight": 0.4,
    "search_timeout": 15.0,
}


def _expand_env(obj):
    """Apply ``os.path.expandvars`` to every string inside ``obj``."""
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    if isinstance(obj, str):
        return os.path.expandvars(obj)
    return obj


def _section_with_defaults(raw: dict, name: str, defaults: dict) -> dict:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise TypeError(f"'{name}' must be a mapping, got {type(section)}.")
    return {**defaults, **section}


class GlobalConfig:
    """Sections of a loaded ``config.yaml``.

    Parameters
    ----------
    raw : dict
        Parsed YAML mapping, after environment expansion.
    config_path : Path or None, optional
        Absolute path to the loaded config file, used to resolve relative
        paths (e.g. ``doc_store.persist_path``).
    """

    def __init__(
            self,
            raw: dict,
            config_path: Path | None = None,
        ):
        self.raw = raw or {}
        self.config_path = config_path

    @classmethod
    def load(
            cls,
            path: str | Path,
        ) -> "GlobalConfig":
        """Parse ``path`` and expand environment references.

        Raises
        ------
        FileNotFoundError
            If ``path`` does not exist.
        """
        cfg_path = Path(path).expanduser().resolve()
        with cfg_path.open("r") as f:
            data = yaml.safe_load(f) or {}
        data = _expand_env(data)
        return cls(data, config_path=cfg_path)

    def resolve_path(self, value: str | None) -> str | None:
        """Resolve ``value`` relative to the config file directory."""
        if not value:
            return None
        p = Path(str(value)).expanduser()
        if p.is_absolute() or self.config_path is None:
            return str(p)
        return str((self.config_path.parent / p).resolve())

    @cached_property
    def embedder(self) -> dict:
        """Embedding provider settings (``kind``, ``model_name``, ``api_key`` ...).

        Raises
        ------
        KeyError
            If the section is missing.
        """
        section = self.raw.get("embedder")
        if section is None:
            raise KeyError("Missing 'embedder' section in configuration.")
        if not isinstance(section, dict):
            raise TypeError("'embedder' must be a mapping.")
        return section

    @cached_property
    def doc_store(self) -> dict:
        """Document store settings, ``{"kind": "simple"}`` when absent."""
        return self.raw.get("doc_store") or {"kind": "simple"}

    @cached_property
    def tokenization(self) -> dict:
        """Return the ``tokenization`` section (empty selects the word-ratio default)."""
        return self.raw.get("tokenization") or {}

    @cached_property
    def chunking(self) -> dict:
        """Return chunk sizing bounds.

        Returns
        -------
        dict
            ``min_tokens``, ``max_tokens`` and ``max_heading_depth``.

        Raises
        ------
        ValueError
            If the bounds are not positive or ``min_tokens > max_tokens``.
        """
        section = _section_with_defaults(self.raw, "chunking", DEFAULT_CHUNKING)
        min_tokens = int(section["min_tokens"])
        max_tokens = int(section["max_tokens"])
        if min_tokens <= 0 or max_tokens <= 0:
            raise ValueError("'chunking.min_tokens' and 'chunking.max_tokens' must be positive.")
        if min_tokens > max_tokens:
            raise ValueError("'chunking.min_tokens' must not exceed 'chunking.max_tokens'.")
        section["min_tokens"] = min_tokens
        section["max_tokens"] = max_tokens
        section["max_heading_depth"] = int(section["max_heading_depth"])
        return section

    @cached_property
    def ingestion(self) -> dict:
        """Return ingestion limits and fetch settings."""
        section = _section_with_defaults(self.raw, "ingestion", DEFAULT_INGESTION)
        section["max_file_bytes"] = int(section["max_file_bytes"])
        section["fetch_timeout"] = float(section["fetch_timeout"])
        section["embedding_timeout"] = float(section["embedding_timeout"])
        return section

    @cached_property
    def retrieval(self) -> dict:
        """Return retrieval settings.

        Returns
        -------
        dict
            ``default_k``, ``candidate_multiplier``, ``vector_weight``,
            ``lexical_weight`` and ``search_timeout``.
        """
        section = _section_with_defaults(self.raw, "retrieval", DEFAULT_RETRIEVAL)
        for key in ("candidate_multiplier", "vector_weight", "lexical_weight", "search_timeout"):
            section[key] = float(section[key])
        section["default_k"] = int(section["default_k"])
        return section
