from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import make_url

from ..config import IngestConfig

logger = logging.getLogger(__name__)

_SQLITE_SIDECARS = ("-wal", "-shm", "-journal")


@dataclass
class OutputPaths:
    """
    On-disk layout of one conversion: the SQLite file (when the store is
    SQLite), the Whoosh index directory and the optional log file.
    """

    database_url: str
    index_dir: Path
    log_file: Optional[Path] = None

    @classmethod
    def from_config(cls, config: IngestConfig) -> "OutputPaths":
        return cls(
            database_url=config.input.database_url,
            index_dir=config.input.index_dir,
            log_file=config.logging.log_file,
        )

    def sqlite_path(self) -> Optional[Path]:
        url = make_url(self.database_url)
        if url.get_backend_name() != "sqlite":
            return None
        if not url.database or url.database == ":memory:":
            return None
        return Path(url.database)

    def ensure_dirs(self) -> None:
        db_path = self.sqlite_path()
        if db_path is not None:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self.index_dir.mkdir(parents=True, exist_ok=True)
        if self.log_file is not None:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)

    def reset(self) -> None:
        """
        Remove a previous SQLite database (with its WAL/SHM sidecars) and the
        full-text index. Non-SQLite stores are left untouched.
        """
        db_path = self.sqlite_path()
        if db_path is not None:
            for candidate in [db_path] + [db_path.with_name(db_path.name + s) for s in _SQLITE_SIDECARS]:
                if candidate.exists():
                    candidate.unlink()
                    logger.info("Removed %s", candidate)
        elif not self.database_url.startswith("sqlite"):
            logger.warning(
                "Overwrite requested but %s is not a SQLite file; leaving it in place",
                make_url(self.database_url).render_as_string(hide_password=True),
            )
        if self.index_dir.exists():
            shutil.rmtree(self.index_dir)
            logger.info("Removed full-text index %s", self.index_dir)
