"""
Command line entry point.

Usage:
    zim-lexicon --config config/wiktionary.toml --max-entries 5000
    zim-lexicon --archive wiktionary_en_all_nopic.zim --overwrite
    zim-lexicon --config config/wiktionary.toml --reindex-only
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .config import IngestConfig
from .ingestion import (
    ArchiveError,
    IncrementalReindexer,
    SqlAlchemyLexiconRepository,
    WorkerPoolError,
    build_indexer,
    run_conversion,
)
from .logging_setup import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zim-lexicon",
        description="Convert a Wiktionary ZIM archive into a queryable SQL store",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to a TOML config file")
    parser.add_argument("--archive", type=Path, default=None, help="Path to the input ZIM archive")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy database URL")
    parser.add_argument("--max-entries", type=int, default=None, help="Scan at most this many entries")
    parser.add_argument("--start-index", type=int, default=None, help="First directory entry index to scan")
    parser.add_argument("--overwrite", action="store_true", help="Remove the previous database and index first")
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, ...)")
    parser.add_argument("--verify-checksum", action="store_true", help="Verify the archive checksum before scanning")
    parser.add_argument(
        "--reindex-only",
        action="store_true",
        help="Skip ingestion and only run the incremental full-text reindex",
    )
    return parser


def load_config(args: argparse.Namespace) -> IngestConfig:
    config = IngestConfig.from_toml(args.config) if args.config else IngestConfig()
    config = config.apply_env_overrides()

    input_cfg = config.input
    if args.archive is not None:
        input_cfg = replace(input_cfg, archive_path=args.archive)
    if args.database_url:
        input_cfg = replace(input_cfg, database_url=args.database_url)

    selection = config.selection
    if args.max_entries is not None:
        selection = replace(selection, max_entries=args.max_entries)
    if args.start_index is not None:
        selection = replace(selection, start_index=args.start_index)

    store = replace(config.store, overwrite=True) if args.overwrite else config.store
    logging_cfg = replace(config.logging, level=args.log_level) if args.log_level else config.logging
    return replace(config, input=input_cfg, selection=selection, store=store, logging=logging_cfg)


def run_reindex(config: IngestConfig) -> int:
    repo = SqlAlchemyLexiconRepository(config.input.database_url, config.store)
    try:
        repo.prepare_schema()
        reindexer = IncrementalReindexer(
            repo,
            build_indexer(config),
            watermark_name=config.reindex.watermark_name,
            chunk_size=config.reindex.chunk_size,
        )
        metrics = reindexer.run()
    finally:
        repo.dispose()
    return metrics.updated_pages


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args)
        configure_logging(config.logging.level, config.logging.log_file)
    except (FileNotFoundError, ValueError) as exc:
        logging.basicConfig(level=logging.INFO)
        logger.error("Invalid configuration: %s", exc)
        return 1

    try:
        if args.reindex_only:
            run_reindex(config)
            return 0

        logger.info("Starting conversion of %s", config.input.archive_path)
        metrics = run_conversion(config, verify_checksum=args.verify_checksum)
    except (FileNotFoundError, ArchiveError, SQLAlchemyError, WorkerPoolError, RuntimeError) as exc:
        logger.error("Conversion failed: %s", exc)
        return 1

    logger.info(
        "Run summary: elapsed=%sms scanned=%s filtered=%s ingested=%s definitions=%s errors=%s",
        metrics.elapsed_ms,
        metrics.scanned_entries,
        metrics.filtered_entries,
        metrics.ingested_pages,
        metrics.extracted_definitions,
        metrics.extraction_errors,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
