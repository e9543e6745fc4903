"""Detached per-file signatures for relocatable file trees.

Each regular file or symlink gets a ``.sig`` sidecar binding its type, its
path relative to a declared root and its content, so a signed tree can be
copied anywhere and still verify.
"""

from __future__ import annotations

__version__ = "0.1.0"

from treesig.blob import EntryType, build_blob
from treesig.config import TreeSigConfig, TreeSigSettings, load_settings
from treesig.content import Digest, FilesystemEntry, LinkTarget, resolve_content
from treesig.errors import (
    AccessFailure,
    ConfigurationError,
    CryptoEngineFailure,
    ParseFailure,
    PathScopeFailure,
    TreeSigError,
    UnsupportedEntryType,
)
from treesig.keys import load_private_key, load_public_key, load_public_keys_from_dir
from treesig.paths import relativize
from treesig.signing import SIGNATURE_MAGIC, SignatureEnvelope, Signer
from treesig.verifier import VerificationResult, Verifier
from treesig.walker import (
    TreeWalker,
    WalkMode,
    WalkReport,
    install_tree,
    sign_paths,
    sign_tree,
    verify_paths,
    verify_tree,
)

__all__ = [
    "__version__",
    "AccessFailure",
    "ConfigurationError",
    "CryptoEngineFailure",
    "Digest",
    "EntryType",
    "FilesystemEntry",
    "LinkTarget",
    "ParseFailure",
    "PathScopeFailure",
    "SIGNATURE_MAGIC",
    "SignatureEnvelope",
    "Signer",
    "TreeSigConfig",
    "TreeSigError",
    "TreeSigSettings",
    "TreeWalker",
    "UnsupportedEntryType",
    "VerificationResult",
    "Verifier",
    "WalkMode",
    "WalkReport",
    "build_blob",
    "install_tree",
    "load_private_key",
    "load_public_key",
    "load_public_keys_from_dir",
    "load_settings",
    "relativize",
    "resolve_content",
    "sign_paths",
    "sign_tree",
    "verify_paths",
    "verify_tree",
]
