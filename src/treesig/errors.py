"""Exception types for tree signing and verification."""

from __future__ import annotations

import errno as errno_codes


class TreeSigError(Exception):
    """Base class for all treesig errors."""
    pass


class AccessFailure(TreeSigError):
    """A path could not be stat'ed, opened, read or written."""

    def __init__(self, message: str, path: str | None = None, errno: int | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.errno = errno

    @classmethod
    def from_os_error(cls, action: str, path: str, error: OSError) -> AccessFailure:
        """Wrap an OSError raised while acting on path."""
        return cls(f"Can't {action} {path}: {error.strerror or error}", path=path, errno=error.errno)

    @property
    def is_not_found(self) -> bool:
        return self.errno == errno_codes.ENOENT

    @property
    def is_directory(self) -> bool:
        return self.errno == errno_codes.EISDIR


class ParseFailure(TreeSigError):
    """Key material or a signature envelope is malformed."""
    pass


class CryptoEngineFailure(TreeSigError):
    """The signature primitive failed for a reason other than a mismatch."""
    pass


class PathScopeFailure(TreeSigError):
    """A path is not under the required root or prefix."""
    pass


class UnsupportedEntryType(TreeSigError):
    """Entry is neither a regular file nor a symlink."""
    pass


class ConfigurationError(TreeSigError):
    """Invalid configuration or option combination."""
    pass
