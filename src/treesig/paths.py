"""Root-relative path computation with segment-wise prefix checks."""

from __future__ import annotations

import os

from treesig.errors import PathScopeFailure


def canonicalize(path: str) -> str:
    """Make path absolute and lexically normalized, without resolving symlinks."""
    return os.path.normpath(os.path.abspath(os.fspath(path)))


def _segments(path: str) -> list[str]:
    return [s for s in path.split("/") if s]


def has_path_prefix(path: str, prefix: str) -> bool:
    """Return True if prefix names path or one of its ancestors.

    Comparison is by path segment, so '/a/bcd' is not under '/a/bc'.
    Repeated and leading slashes are ignored.
    """
    path_parts = _segments(path)
    prefix_parts = _segments(prefix)
    if len(prefix_parts) > len(path_parts):
        return False
    return path_parts[: len(prefix_parts)] == prefix_parts


def relativize(path: str, root: str, required_prefix: str | None = None) -> str:
    """Compute path relative to root.

    Args:
        path: Leaf path
        root: Declared relative root
        required_prefix: Optional prefix the leaf must lie under. An absolute
            prefix is matched against the canonical leaf path, a relative one
            against the root-relative path.

    Returns:
        Non-absolute path, segments joined by '/'

    Raises:
        PathScopeFailure: If path is not under root or the required prefix
    """
    abs_path = canonicalize(path)
    abs_root = canonicalize(root)

    if not has_path_prefix(abs_path, abs_root):
        raise PathScopeFailure(f"File '{path}' not inside relative dir '{root}'")

    relative = "/".join(_segments(abs_path)[len(_segments(abs_root)):])

    if required_prefix is not None:
        required_prefix = os.path.normpath(required_prefix)
        candidate = abs_path if os.path.isabs(required_prefix) else relative
        if required_prefix != "." and not has_path_prefix(candidate, required_prefix):
            raise PathScopeFailure(f"File '{path}' not under required prefix '{required_prefix}'")

    return relative
