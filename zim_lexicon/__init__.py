"""
ZIM lexicon converter.

This package turns an offline-encyclopedia archive (typically a Wiktionary
ZIM dump) into a queryable SQL store. It exposes the extraction subsystem
(structural HTML scanning, scoring, normalization) and the ingestion
subsystem that drives extraction through a worker pool, batched persistence,
checkpoints, and incremental full-text re-indexing.
"""

__version__ = "0.3.0"
