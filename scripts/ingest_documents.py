"""Document ingestion entrypoint.

This script ingests local files (markdown, HTML, PDF, DOCX) and/or URLs into
one project of the knowledge base, printing the asset id and chunk count for
each source.
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
from magic_kb.common.errors import KnowledgeBaseError
from magic_kb.config import GlobalConfig


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest documents into the knowledge base")

    parser.add_argument(
        "--project-id",
        "-p",
        required=True,
        type=str,
        help="Project to ingest into.",
    )

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )

    parser.add_argument(
        "--file",
        "-f",
        dest="files",
        action="append",
        default=[],
        help="Local file to ingest (repeatable).",
    )

    parser.add_argument(
        "--url",
        "-u",
        dest="urls",
        action="append",
        default=[],
        help="HTML page URL to ingest (repeatable).",
    )

    parser.add_argument(
        "--title",
        "-t",
        required=False,
        type=str,
        default=None,
        help="Title override (only sensible with a single source).",
    )

    parser.add_argument(
        "--log-level",
        required=False,
        type=str,
        default="INFO",
        help="Logging level (default: INFO).",
    )

    args = parser.parse_args()
    if not args.files and not args.urls:
        parser.error("at least one --file or --url is required")
    return args


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = GlobalConfig.load(args.config_file)
    container = build_container(cfg)
    try:
        return _ingest_sources(args, container.ingestion_pipeline)
    finally:
        container.close()


def _ingest_sources(args, pipeline) -> int:
    sources = [("file", f) for f in args.files] + [("url", u) for u in args.urls]
    print(f"Ingesting {len(sources)} source(s) into project {args.project_id}")

    failures = 0
    for kind, source in sources:
        try:
            if kind == "file":
                path = Path(source).expanduser()
                result = pipeline.ingest(
                    args.project_id,
                    "file",
                    path.read_bytes(),
                    title=args.title,
                    filename=path.name,
                )
            else:
                result = pipeline.ingest(args.project_id, "url", source, title=args.title)
        except KnowledgeBaseError as exc:
            failures += 1
            print(f"  FAILED {source}: {exc.user_message}")
            continue

        status = "new" if result.is_new else "existing"
        embedded = "" if result.embedded or not result.is_new else " (no embeddings, run backfill)"
        print(f"  {source}: asset {result.asset_id} [{status}] {result.chunk_count} chunks{embedded}")

    print("Ingestion complete!" if not failures else f"Ingestion finished with {failures} failure(s).")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
