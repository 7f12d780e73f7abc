from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from zim_lexicon.ingestion import (
    LexiconRepository,
    NoopIndexer,
    PageIndexer,
    SchemaVersionError,
    SqlAlchemyLexiconRepository,
    WhooshIndexer,
)

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///./out/wiktionary.sqlite"
DEFAULT_WHOOSH_DIR = "./out/whoosh"


@lru_cache(maxsize=1)
def get_repo() -> LexiconRepository:
    db_url = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
    repo = SqlAlchemyLexiconRepository(db_url)
    # readers never migrate; a conversion run owns the schema
    try:
        repo.check_schema()
    except SchemaVersionError:
        repo.dispose()
        raise
    return repo


@lru_cache(maxsize=1)
def get_indexer() -> PageIndexer:
    if os.getenv("ENABLE_FTS", "1").lower() in ("0", "false", "no"):
        return NoopIndexer()
    whoosh_dir = Path(os.getenv("WHOOSH_DIR", DEFAULT_WHOOSH_DIR))
    return WhooshIndexer(whoosh_dir)


def reset_dependencies() -> None:
    """
    Drop cached repository/indexer so the next request re-reads the environment.
    """
    get_repo.cache_clear()
    get_indexer.cache_clear()
