from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Set, Tuple, Union

logger = logging.getLogger(__name__)

REDIRECT_MIME = "redirect"
LINK_TARGET_MIME = "link-target"
DELETED_MIME = "deleted"
# namespace of non-user entries (metadata, listings) in new-scheme archives
NON_USER_NAMESPACE = "-"


class ArchiveError(Exception):
    """
    Raised when a single directory entry or blob cannot be decoded. The
    pipeline counts these as per-entry errors and keeps scanning.
    """


@dataclass(frozen=True)
class RedirectTarget:
    index: int


@dataclass(frozen=True)
class BlobTarget:
    cluster_index: Optional[int]
    blob_index: int


EntryTarget = Union[RedirectTarget, BlobTarget]


@dataclass(frozen=True)
class DirectoryEntry:
    index: int
    url: str
    title: str
    namespace: str
    mime_type: str
    target: Optional[EntryTarget] = None


class ArchiveReader(Protocol):
    @property
    def entry_count(self) -> int:
        ...

    @property
    def cluster_count(self) -> Optional[int]:
        ...

    def get_entry(self, index: int) -> DirectoryEntry:
        ...

    def read_blob(self, index: int, target: BlobTarget) -> bytes:
        ...

    def verify_checksum(self) -> bool:
        ...

    def close(self) -> None:
        ...


class InMemoryArchive:
    """
    Dict-backed archive for local runs and tests. Entries are addressed by
    their insertion index, exactly like directory entries in a real archive.
    """

    def __init__(self, checksum_ok: bool = True):
        self._entries: List[Optional[DirectoryEntry]] = []
        self._blobs: Dict[int, bytes] = {}
        self._broken: Set[int] = set()
        self._checksum_ok = checksum_ok

    # region builders
    def add_html(
        self,
        url: str,
        title: str,
        html: Union[str, bytes],
        namespace: str = "A",
        mime_type: str = "text/html",
    ) -> int:
        index = len(self._entries)
        target = BlobTarget(cluster_index=0, blob_index=index)
        self._entries.append(DirectoryEntry(index, url, title, namespace, mime_type, target))
        self._blobs[index] = html.encode("utf-8") if isinstance(html, str) else html
        return index

    def add_redirect(self, url: str, title: str, target_index: int, namespace: str = "A") -> int:
        index = len(self._entries)
        self._entries.append(
            DirectoryEntry(index, url, title, namespace, REDIRECT_MIME, RedirectTarget(target_index))
        )
        return index

    def add_entry(
        self,
        url: str,
        title: str,
        namespace: str = "A",
        mime_type: str = DELETED_MIME,
        target: Optional[EntryTarget] = None,
    ) -> int:
        index = len(self._entries)
        self._entries.append(DirectoryEntry(index, url, title, namespace, mime_type, target))
        return index

    def add_broken(self) -> int:
        index = len(self._entries)
        self._entries.append(None)
        self._broken.add(index)
        return index

    # endregion

    @property
    def entry_count(self) -> int:
        return len(self._entries)

    @property
    def cluster_count(self) -> Optional[int]:
        return 1 if self._blobs else 0

    def get_entry(self, index: int) -> DirectoryEntry:
        if index < 0 or index >= len(self._entries) or index in self._broken:
            raise ArchiveError(f"Cannot decode directory entry {index}")
        entry = self._entries[index]
        assert entry is not None
        return entry

    def read_blob(self, index: int, target: BlobTarget) -> bytes:
        try:
            return self._blobs[target.blob_index]
        except KeyError as exc:
            raise ArchiveError(f"Missing blob {target.blob_index} for entry {index}") from exc

    def verify_checksum(self) -> bool:
        return self._checksum_ok

    def close(self) -> None:
        return None


class LibzimArchiveReader:
    """
    Adapter over `libzim.reader.Archive`. libzim resolves clusters internally,
    so blob targets carry the entry index and no cluster index.

    With the new namespace scheme only user entries (namespace C) are scanned.
    They sort first in the directory, so they are exactly the indices below
    `entry_count`. Metadata and listing entries past that point report
    NON_USER_NAMESPACE. Old-scheme archives expose the namespace in the path.
    """

    def __init__(self, path: Path):
        try:
            from libzim.reader import Archive
        except ImportError as exc:  # pragma: no cover - dependency guard
            raise RuntimeError("libzim is required to read ZIM archives. Please install 'libzim'.") from exc

        self.path = path
        self._archive = Archive(str(path))
        self._new_scheme = bool(self._archive.has_new_namespace_scheme)
        self._user_entries = self._archive.entry_count

    @property
    def entry_count(self) -> int:
        return self._user_entries

    @property
    def all_entry_count(self) -> int:
        return self._archive.all_entry_count

    @property
    def cluster_count(self) -> Optional[int]:
        return None

    def _locate(self, index: int, path: str) -> Tuple[str, str]:
        if not self._new_scheme:
            namespace, _, url = path.partition("/")
            return namespace, url
        return ("C" if index < self._user_entries else NON_USER_NAMESPACE), path

    def get_entry(self, index: int) -> DirectoryEntry:
        try:
            entry = self._archive._get_entry_by_id(index)
            namespace, url = self._locate(index, entry.path)
            if entry.is_redirect:
                target_index = entry.get_redirect_entry()._index
                return DirectoryEntry(
                    index=index,
                    url=url,
                    title=entry.title,
                    namespace=namespace,
                    mime_type=REDIRECT_MIME,
                    target=RedirectTarget(target_index),
                )
            item = entry.get_item()
            return DirectoryEntry(
                index=index,
                url=url,
                title=entry.title,
                namespace=namespace,
                mime_type=item.mimetype,
                target=BlobTarget(cluster_index=None, blob_index=index),
            )
        except (RuntimeError, KeyError, IndexError) as exc:
            raise ArchiveError(f"Cannot decode directory entry {index}: {exc}") from exc

    def read_blob(self, index: int, target: BlobTarget) -> bytes:
        try:
            item = self._archive._get_entry_by_id(target.blob_index).get_item()
            return bytes(item.content)
        except (RuntimeError, KeyError, IndexError) as exc:
            raise ArchiveError(f"Cannot read blob for entry {index}: {exc}") from exc

    def verify_checksum(self) -> bool:
        return bool(self._archive.check())

    def close(self) -> None:
        # libzim releases the file when the Archive is garbage collected
        self._archive = None


def open_archive(path: Path) -> LibzimArchiveReader:
    if not path.exists():
        raise FileNotFoundError(f"ZIM archive not found: {path}")
    reader = LibzimArchiveReader(path)
    logger.info("Opened archive %s (%s user entries of %s)", path, reader.entry_count, reader.all_entry_count)
    return reader
