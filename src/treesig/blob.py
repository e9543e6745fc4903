"""Canonical to-sign blob construction.

Layout (fixed, versionless)::

    [type tag: 1 byte] [relative path bytes] [0x00] [content bytes]

Type tag is 0 for regular files and 1 for symlinks. Any future change of
layout must use a new type tag or a new envelope magic so that old and new
blobs can never collide.
"""

from __future__ import annotations

import os
from enum import Enum

from treesig.errors import UnsupportedEntryType


class EntryType(Enum):
    """Filesystem entry classification from an unresolved stat."""

    REGULAR_FILE = "regular_file"
    SYMLINK = "symlink"
    DIRECTORY = "directory"
    OTHER = "other"

    @property
    def is_leaf(self) -> bool:
        return self in LEAF_TAGS


LEAF_TAGS = {
    EntryType.REGULAR_FILE: 0x00,
    EntryType.SYMLINK: 0x01,
}


def encode_path(relative_path: str | bytes) -> bytes:
    """Encode a relative path the way the filesystem stores it."""
    if isinstance(relative_path, bytes):
        return relative_path
    return os.fsencode(relative_path)


def build_blob(entry_type: EntryType, relative_path: str | bytes, content: bytes) -> bytes:
    """Build the exact byte sequence that gets signed.

    Args:
        entry_type: Leaf type, REGULAR_FILE or SYMLINK
        relative_path: Path relative to the declared root
        content: Digest (regular files) or raw link target (symlinks)

    Returns:
        Blob bytes

    Raises:
        UnsupportedEntryType: If entry_type is not a leaf type
    """
    tag = LEAF_TAGS.get(entry_type)
    if tag is None:
        raise UnsupportedEntryType(f"Unsupported file type: {entry_type.value}")

    return bytes([tag]) + encode_path(relative_path) + b"\x00" + bytes(content)
