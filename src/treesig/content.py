"""Content representation of leaves.

Regular files are represented by their SHA-512 digest, streamed in bounded
chunks. Symlinks are represented by their raw link target; the target is
signed as-is, not hashed.
"""

from __future__ import annotations

import hashlib
import logging
import os
import stat
from dataclasses import dataclass
from typing import BinaryIO, Union

from treesig.blob import EntryType
from treesig.errors import AccessFailure, UnsupportedEntryType

logger = logging.getLogger(__name__)

DIGEST_ALGORITHM = "sha512"
CHUNK_SIZE = 16 * 1024


@dataclass(frozen=True)
class Digest:
    """Content digest of a regular file."""

    value: bytes
    algorithm: str = DIGEST_ALGORITHM

    def to_bytes(self) -> bytes:
        return self.value


@dataclass(frozen=True)
class LinkTarget:
    """Raw target of a symlink."""

    target: bytes

    def to_bytes(self) -> bytes:
        return self.target


ContentRepresentation = Union[Digest, LinkTarget]


@dataclass(frozen=True)
class FilesystemEntry:
    """A path together with its unresolved type."""

    path: str
    entry_type: EntryType

    @classmethod
    def from_path(cls, path: str) -> FilesystemEntry:
        """Classify path without following symlinks.

        Raises:
            AccessFailure: If path cannot be stat'ed (including missing)
        """
        try:
            st = os.lstat(path)
        except OSError as e:
            raise AccessFailure.from_os_error("access", path, e) from e
        return cls(path=path, entry_type=entry_type_from_mode(st.st_mode))


def entry_type_from_mode(mode: int) -> EntryType:
    if stat.S_ISREG(mode):
        return EntryType.REGULAR_FILE
    if stat.S_ISLNK(mode):
        return EntryType.SYMLINK
    if stat.S_ISDIR(mode):
        return EntryType.DIRECTORY
    return EntryType.OTHER


def _digest_stream(path: str, f: BinaryIO) -> bytes:
    hasher = hashlib.new(DIGEST_ALGORITHM)
    while True:
        try:
            chunk = f.read(CHUNK_SIZE)
        except InterruptedError:
            continue
        except OSError as e:
            raise AccessFailure.from_os_error("read", path, e) from e
        if not chunk:
            break
        hasher.update(chunk)
    return hasher.digest()


def _open(path: str) -> BinaryIO:
    try:
        return open(path, "rb")
    except OSError as e:
        raise AccessFailure.from_os_error("open", path, e) from e


def digest_file(path: str) -> Digest:
    """Compute the streamed SHA-512 digest of a regular file."""
    with _open(path) as f:
        return Digest(_digest_stream(path, f))


def digest_file_keep_open(path: str) -> tuple[Digest, BinaryIO]:
    """Digest a regular file and hand back its handle rewound to the start.

    The caller owns the returned handle and must close it.
    """
    f = _open(path)
    try:
        digest = Digest(_digest_stream(path, f))
        f.seek(0)
    except BaseException:
        f.close()
        raise
    return digest, f


def read_link_target(path: str) -> LinkTarget:
    try:
        return LinkTarget(os.readlink(os.fsencode(path)))
    except OSError as e:
        raise AccessFailure.from_os_error("read link", path, e) from e


def resolve_content(path: str, entry_type: EntryType) -> ContentRepresentation:
    """Compute the canonical content representation of a leaf.

    Args:
        path: Leaf path
        entry_type: REGULAR_FILE or SYMLINK

    Returns:
        Digest for regular files, LinkTarget for symlinks

    Raises:
        AccessFailure: If the leaf cannot be opened or read
        UnsupportedEntryType: If entry_type is not a leaf type
    """
    if entry_type is EntryType.REGULAR_FILE:
        return digest_file(path)
    if entry_type is EntryType.SYMLINK:
        return read_link_target(path)
    raise UnsupportedEntryType(f"Unsupported file type {path}")
