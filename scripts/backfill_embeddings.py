"""Embedding backfill entrypoint.

Embeds every chunk of a project that was stored without a vector (for
example because the embedding provider was unavailable during ingestion).
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from magic_kb.app.container import build_container
from magic_kb.config import GlobalConfig


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill missing chunk embeddings")

    parser.add_argument(
        "--project-id",
        "-p",
        required=True,
        type=str,
        help="Project whose chunks should be embedded.",
    )

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )

    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = GlobalConfig.load(args.config_file)
    container = build_container(cfg)
    try:
        before = container.vector_index.embedding_stats(args.project_id)
        missing = before["total_chunks"] - before["chunks_with_embeddings"]
        print(f"Project {args.project_id}: {missing} of {before['total_chunks']} chunks lack embeddings")

        result = container.backfill.run(args.project_id)
        print(f"Indexed {result.indexed_count} chunks.")
    finally:
        container.close()
    print("Backfill complete!")


if __name__ == "__main__":
    main()
