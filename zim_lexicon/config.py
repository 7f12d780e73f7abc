from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields, is_dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional


def _default_extraction_threads() -> int:
    return min(max(os.cpu_count() or 1, 1), 8)


@dataclass(frozen=True)
class InputConfig:
    archive_path: Path = Path("tmp/wiktionary_en_all_nopic.zim")
    database_url: str = "sqlite+pysqlite:///./out/wiktionary.sqlite"
    index_dir: Path = Path("out/whoosh")


@dataclass(frozen=True)
class SelectionConfig:
    start_index: int = 0
    max_entries: Optional[int] = None
    include_namespaces: List[str] = field(default_factory=lambda: ["A", "C"])
    include_mime_prefixes: List[str] = field(default_factory=lambda: ["text/html"])
    exclude_url_prefixes: List[str] = field(default_factory=lambda: ["Special:", "Wiktionary:"])
    exclude_title_prefixes: List[str] = field(default_factory=lambda: ["Appendix:", "Reconstruction:"])
    skip_redirects: bool = True
    require_title: bool = True


@dataclass(frozen=True)
class ExtractionConfig:
    store_raw_html: bool = False
    store_plain_text: bool = True
    parse_language_sections: bool = True
    parse_relations: bool = True
    language_allowlist: List[str] = field(default_factory=list)
    min_definition_chars: int = 20
    max_definitions_per_language: int = 32
    relation_types: List[str] = field(default_factory=lambda: ["synonyms", "antonyms", "translations"])
    max_relations_per_type: int = 48
    default_normalizer: str = "identity"
    language_normalizers: Dict[str, str] = field(default_factory=dict)
    nested_list_depth_limit: int = 4
    confidence_threshold: float = 0.15
    include_title_as_alias: bool = True
    alias_min_length: int = 2


@dataclass(frozen=True)
class StoreConfig:
    batch_size: int = 250
    overwrite: bool = False
    enable_fts: bool = True
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"
    busy_timeout_ms: int = 5_000


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    progress_interval: int = 1_000
    log_file: Optional[Path] = None


@dataclass(frozen=True)
class CheckpointConfig:
    enabled: bool = True
    resume: bool = True
    name: str = "default"
    every_n_entries: int = 10_000


@dataclass(frozen=True)
class WorkerConfig:
    enabled: bool = True
    extraction_threads: int = field(default_factory=_default_extraction_threads)
    queue_capacity: int = 2_048


@dataclass(frozen=True)
class ReindexConfig:
    auto_incremental: bool = True
    watermark_name: str = "default"
    chunk_size: int = 5_000


@dataclass(frozen=True)
class IngestConfig:
    """
    Full converter configuration. Sections mirror the TOML file layout:
    [input], [selection], [extraction], [store], [logging], [checkpoint],
    [workers], [reindex]. Every field has a default so an empty file is valid.
    """

    input: InputConfig = field(default_factory=InputConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checkpoint: CheckpointConfig = field(default_factory=CheckpointConfig)
    workers: WorkerConfig = field(default_factory=WorkerConfig)
    reindex: ReindexConfig = field(default_factory=ReindexConfig)

    @classmethod
    def from_toml(cls, path: Path) -> "IngestConfig":
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with path.open("rb") as f:
            try:
                raw = tomllib.load(f)
            except tomllib.TOMLDecodeError as exc:
                raise ValueError(f"Invalid TOML in {path}: {exc}") from exc
        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "IngestConfig":
        return _build_section(cls, raw, "config")

    def apply_env_overrides(self, environ: Optional[Dict[str, str]] = None) -> "IngestConfig":
        """
        Return a copy with deployment overrides taken from the environment.
        """
        env = os.environ if environ is None else environ
        input_cfg = self.input
        if env.get("ZIM_ARCHIVE"):
            input_cfg = replace(input_cfg, archive_path=Path(env["ZIM_ARCHIVE"]))
        if env.get("DATABASE_URL"):
            input_cfg = replace(input_cfg, database_url=env["DATABASE_URL"])
        if env.get("WHOOSH_DIR"):
            input_cfg = replace(input_cfg, index_dir=Path(env["WHOOSH_DIR"]))
        logging_cfg = self.logging
        if env.get("LOG_LEVEL"):
            logging_cfg = replace(logging_cfg, level=env["LOG_LEVEL"])
        return replace(self, input=input_cfg, logging=logging_cfg)


def _build_section(section_cls, raw: Dict[str, Any], label: str):
    if not isinstance(raw, dict):
        raise ValueError(f"[{label}] must be a table")
    known = {f.name: f for f in fields(section_cls)}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ValueError(f"Unknown key(s) in [{label}]: {', '.join(unknown)}")

    kwargs: Dict[str, Any] = {}
    for name, value in raw.items():
        factory = known[name].default_factory
        nested = factory() if callable(factory) else None
        if nested is not None and is_dataclass(nested):
            kwargs[name] = _build_section(type(nested), value, name)
        elif name.endswith(("_path", "_dir", "_file")) and value is not None:
            kwargs[name] = Path(value)
        else:
            kwargs[name] = value
    return section_cls(**kwargs)
