from __future__ import annotations

import logging

from ..config import SelectionConfig
from .archive import DirectoryEntry

logger = logging.getLogger(__name__)


def should_select_entry(entry: DirectoryEntry, selection: SelectionConfig) -> bool:
    """
    Apply the selection rules in order: namespace allowlist, non-empty title,
    url prefix exclusions, title prefix exclusions, mime prefix allowlist.
    """
    if selection.include_namespaces and entry.namespace not in selection.include_namespaces:
        logger.debug("Filtered by namespace %s: %s", entry.namespace, entry.title)
        return False

    if selection.require_title and not entry.title.strip():
        logger.debug("Filtered due to empty title: %s", entry.url)
        return False

    if any(entry.url.startswith(prefix) for prefix in selection.exclude_url_prefixes):
        logger.debug("Filtered by url prefix: %s", entry.url)
        return False

    if any(entry.title.startswith(prefix) for prefix in selection.exclude_title_prefixes):
        logger.debug("Filtered by title prefix: %s", entry.title)
        return False

    if selection.include_mime_prefixes and not any(
        entry.mime_type.startswith(prefix) for prefix in selection.include_mime_prefixes
    ):
        logger.debug("Filtered by mime type %s: %s", entry.mime_type, entry.url)
        return False

    return True
