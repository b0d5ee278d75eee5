"""Folder/file projection of a flat object listing.

The store has no directories. A key ending in ``/`` is a folder marker and
everything else is a file; folders that have descendants but no marker are
synthesized from the first path segment below the listed prefix.
"""

from __future__ import annotations

import enum
import posixpath
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from bucketbird.errors import InvalidArgument
from bucketbird.storage.models import StoreObject

# Display name used for a folder whose name is the empty string (``a//b``).
EMPTY_SEGMENT_NAME = "(empty)"

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


class EntryKind(enum.Enum):
    """Kind of a projected entry, decided purely by the key's trailing ``/``."""

    FILE = "file"
    FOLDER = "folder"

    @classmethod
    def from_key(cls, key: str) -> EntryKind:
        return cls.FOLDER if key.endswith("/") else cls.FILE


def normalize_prefix(prefix: str | None) -> str:
    """Return ``prefix`` with a trailing ``/``; ``None`` and ``""`` mean the root."""
    if not prefix:
        return ""
    return prefix if prefix.endswith("/") else prefix + "/"


def format_byte_size(size: int) -> str:
    """Render a byte count with one decimal place and a B..TB suffix.

    >>> format_byte_size(0)
    '0 B'
    >>> format_byte_size(1536)
    '1.5 KB'
    """
    if size <= 0:
        return "0 B"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{value:.1f} {_SIZE_UNITS[unit]}"


@dataclass(frozen=True)
class ObjectEntry:
    """One immediate child of a listed prefix.

    Attributes:
        key: Full object key (folders end in ``/``).
        name: Display name relative to the listed prefix.
        kind: File or folder.
        size: Size in bytes; ``None`` for folders.
        last_modified: Modification time; ``None`` for synthesized folders.
    """

    key: str
    name: str
    kind: EntryKind
    size: int | None = None
    last_modified: datetime | None = None

    @property
    def is_folder(self) -> bool:
        return self.kind is EntryKind.FOLDER

    @property
    def size_display(self) -> str:
        if self.size is None:
            return ""
        return format_byte_size(self.size)

    @property
    def extension(self) -> str:
        if self.is_folder:
            return ""
        return posixpath.splitext(self.name)[1].lstrip(".").lower()

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "kind": self.kind.value,
            "size": self.size_display,
            "sizeBytes": self.size,
            "lastModified": self.last_modified.isoformat() if self.last_modified else None,
        }


def project(objects: Iterable[StoreObject], prefix: str) -> list[ObjectEntry]:
    """Turn raw entries under ``prefix`` into its immediate children.

    Each key has ``prefix`` stripped. An empty remainder is the marker for
    ``prefix`` itself and is skipped. A remainder containing ``/`` yields a
    folder for its first segment, de-duplicated across descendants; any
    other remainder is a direct file. Deeper keys never appear at this
    level. Keys outside ``prefix`` are ignored.

    Returns:
        Folders then files, each ordered case-insensitively by name.
    """
    folders: dict[str, ObjectEntry] = {}
    files: list[ObjectEntry] = []

    for obj in objects:
        if not obj.key.startswith(prefix):
            continue
        remainder = obj.key[len(prefix) :]
        if not remainder:
            continue

        segment, sep, _ = remainder.partition("/")
        if sep:
            folder_key = prefix + segment + "/"
            if folder_key not in folders:
                folders[folder_key] = ObjectEntry(
                    key=folder_key,
                    name=segment or EMPTY_SEGMENT_NAME,
                    kind=EntryKind.FOLDER,
                )
            continue

        files.append(
            ObjectEntry(
                key=obj.key,
                name=remainder,
                kind=EntryKind.FILE,
                size=obj.size,
                last_modified=obj.last_modified,
            )
        )

    return sort_entries([*folders.values(), *files])


def _modified_key(entry: ObjectEntry) -> float:
    return entry.last_modified.timestamp() if entry.last_modified else 0.0


_SORT_KEYS: dict[str, Callable[[ObjectEntry], Any]] = {
    "name": lambda e: e.name.lower(),
    "modified": _modified_key,
    "size": lambda e: e.size or 0,
    "extension": lambda e: (e.extension, e.name.lower()),
}

SORT_FIELDS = tuple(_SORT_KEYS)


def sort_entries(
    entries: Iterable[ObjectEntry], sort_by: str = "name", descending: bool = False
) -> list[ObjectEntry]:
    """Stable re-ordering of projected entries; folders always come first.

    Raises:
        InvalidArgument: If ``sort_by`` is not one of ``SORT_FIELDS``.
    """
    try:
        keyfunc = _SORT_KEYS[sort_by]
    except KeyError:
        raise InvalidArgument(
            f"sort must be one of {', '.join(SORT_FIELDS)}, got {sort_by!r}"
        ) from None

    entries = list(entries)
    folders = [e for e in entries if e.is_folder]
    files = [e for e in entries if not e.is_folder]
    return sorted(folders, key=keyfunc, reverse=descending) + sorted(
        files, key=keyfunc, reverse=descending
    )


def search_entries(objects: Iterable[StoreObject], query: str) -> list[ObjectEntry]:
    """Return an entry for every key containing ``query``, case-insensitively.

    Unlike ``project`` this is not limited to one level: matches anywhere in
    the enumeration are returned with their full key and base name.
    """
    needle = query.lower()
    matches: list[ObjectEntry] = []
    for obj in objects:
        if needle not in obj.key.lower():
            continue
        kind = EntryKind.from_key(obj.key)
        name = posixpath.basename(obj.key.rstrip("/")) or EMPTY_SEGMENT_NAME
        matches.append(
            ObjectEntry(
                key=obj.key,
                name=name,
                kind=kind,
                size=None if kind is EntryKind.FOLDER else obj.size,
                last_modified=obj.last_modified,
            )
        )
    return sort_entries(matches)
