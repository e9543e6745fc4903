"""Recursive signing, verification and installation of file trees.

Every leaf (regular file or symlink) is handled independently. A failing
leaf is recorded and the walk moves on, so a single pass reports every bad
file; the overall result is the logical AND of all leaf results.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from treesig.blob import EntryType
from treesig.config import TreeSigConfig
from treesig.content import FilesystemEntry, digest_file_keep_open, resolve_content
from treesig.errors import AccessFailure, ConfigurationError, TreeSigError
from treesig.paths import canonicalize, relativize
from treesig.signing import (
    Signer,
    discard_staged,
    envelope_path,
    is_envelope_name,
    read_envelope,
    stage_file,
    staging_name,
    write_envelope,
)
from treesig.verifier import Verifier

logger = logging.getLogger(__name__)


class WalkMode(Enum):
    SIGN = "sign"
    VERIFY = "verify"
    INSTALL = "install"


@dataclass
class WalkReport:
    """Per-run tally of leaf outcomes."""

    signed: int = 0
    skipped: int = 0
    verified: int = 0
    installed: int = 0
    failures: list[dict[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def record_failure(self, path: str, message: str) -> None:
        self.failures.append({"path": path, "message": message})

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "ok": self.ok,
            "signed": self.signed,
            "skipped": self.skipped,
            "verified": self.verified,
            "installed": self.installed,
            "failures": list(self.failures),
        }

    def write_json(self, path: Path) -> None:
        """Write report to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)


class TreeWalker:
    """Depth-first walker dispatching leaves to signing or verification."""

    def __init__(
        self,
        config: TreeSigConfig,
        mode: WalkMode,
        report: WalkReport | None = None,
        destination: str | None = None,
    ) -> None:
        self.config = config
        self.mode = mode
        self.report = report if report is not None else WalkReport()
        self.destination = canonicalize(destination) if destination else None

        self._signer = None
        self._verifier = None
        if mode is WalkMode.SIGN:
            if config.private_key is None:
                raise ConfigurationError("No private key specified")
            self._signer = Signer(config.private_key)
        else:
            self._verifier = Verifier(config.trusted_public_keys)
            if mode is WalkMode.INSTALL and self.destination is None:
                raise ConfigurationError("No install destination specified")

    def walk(self, root: str, relative_root: str) -> bool:
        """Process root and everything below it.

        Returns:
            True if every visited leaf succeeded
        """
        return self._visit(canonicalize(root), canonicalize(relative_root), is_root=True)

    def _fail(self, path: str, message: str) -> bool:
        logger.error("%s", message)
        self.report.record_failure(path, message)
        return False

    def _visit(self, path: str, relative_root: str, is_root: bool = False) -> bool:
        logger.debug("Visiting %s", path)
        try:
            entry = FilesystemEntry.from_path(path)
        except AccessFailure as e:
            return self._fail(path, str(e))

        if entry.entry_type.is_leaf:
            return self._visit_leaf(entry, relative_root)
        if entry.entry_type is EntryType.DIRECTORY:
            return self._visit_directory(path, relative_root, is_root)

        if self.mode is WalkMode.SIGN:
            return self._fail(path, f"Unsupported file type for '{path}'")
        return self._fail(path, f"Can't validate '{path}' due to unsupported file type")

    def _visit_directory(self, path: str, relative_root: str, is_root: bool) -> bool:
        try:
            names = os.listdir(path)
        except FileNotFoundError as e:
            if is_root:
                return True
            return self._fail(path, f"Failed to open dir '{path}': {e.strerror}")
        except OSError as e:
            return self._fail(path, f"Failed to open dir '{path}': {e.strerror}")

        success = True
        for name in names:
            if is_envelope_name(name):
                continue
            if not self._visit(os.path.join(path, name), relative_root):
                success = False
        return success

    def _visit_leaf(self, entry: FilesystemEntry, relative_root: str) -> bool:
        try:
            if self.mode is WalkMode.SIGN:
                return self._sign_leaf(entry, relative_root)
            if self.mode is WalkMode.VERIFY:
                return self._verify_leaf(entry, relative_root)
            return self._install_leaf(entry, relative_root)
        except (TreeSigError, OSError) as e:
            return self._fail(entry.path, f"Failed to process '{entry.path}': {e}")

    def _sign_leaf(self, entry: FilesystemEntry, relative_root: str) -> bool:
        path = entry.path
        sig_path = envelope_path(path)
        logger.debug("Signing %s", path)

        if not self.config.force_overwrite and os.path.lexists(sig_path):
            logger.info("File '%s' already signed, ignoring", path)
            self.report.skipped += 1
            return True

        try:
            content = resolve_content(path, entry.entry_type)
        except TreeSigError as e:
            return self._fail(path, f"Failed to read file '{path}': {e}")

        try:
            rel_path = relativize(path, relative_root, self.config.path_prefix)
        except TreeSigError as e:
            return self._fail(path, str(e))

        try:
            envelope = self._signer.sign(entry.entry_type, rel_path, content.to_bytes())
        except TreeSigError as e:
            return self._fail(path, f"Failed to sign file '{path}': {e}")

        try:
            write_envelope(sig_path, envelope)
        except TreeSigError as e:
            return self._fail(path, f"Failed to write file '{sig_path}': {e}")

        logger.info("Wrote signature '%s' (for path %s)", sig_path, rel_path)
        self.report.signed += 1
        return True

    def _load_envelope(self, path: str) -> bytes | None:
        sig_path = envelope_path(path)
        try:
            return read_envelope(sig_path)
        except AccessFailure as e:
            if e.is_not_found:
                self._fail(path, f"No signature for '{path}'")
            else:
                self._fail(path, f"Failed to load '{sig_path}': {e}")
            return None

    def _check(self, entry: FilesystemEntry, rel_path: str, content: bytes, envelope: bytes) -> bool:
        result = self._verifier.verify(rel_path, entry.entry_type, content, envelope)
        if not result:
            if result.error:
                return self._fail(entry.path, f"Signature of '{entry.path}' is invalid (as {rel_path}): {result.error}")
            return self._fail(entry.path, f"Signature of '{entry.path}' is invalid (as {rel_path})")
        return True

    def _verify_leaf(self, entry: FilesystemEntry, relative_root: str) -> bool:
        path = entry.path
        logger.debug("Validating %s", path)

        envelope = self._load_envelope(path)
        if envelope is None:
            return False

        try:
            content = resolve_content(path, entry.entry_type)
        except TreeSigError as e:
            return self._fail(path, f"Failed to load '{path}': {e}")

        try:
            rel_path = relativize(path, relative_root, self.config.path_prefix)
        except TreeSigError as e:
            return self._fail(path, str(e))

        if not self._check(entry, rel_path, content.to_bytes(), envelope):
            return False

        logger.info("%s is valid (as %s)", path, rel_path)
        self.report.verified += 1
        return True

    def _install_leaf(self, entry: FilesystemEntry, relative_root: str) -> bool:
        path = entry.path
        logger.debug("Installing %s", path)

        envelope = self._load_envelope(path)
        if envelope is None:
            return False

        try:
            rel_path = relativize(path, relative_root, self.config.path_prefix)
        except TreeSigError as e:
            return self._fail(path, str(e))

        target = os.path.join(self.destination, rel_path)

        if entry.entry_type is EntryType.SYMLINK:
            try:
                link = resolve_content(path, entry.entry_type)
            except TreeSigError as e:
                return self._fail(path, f"Failed to load '{path}': {e}")
            if not self._check(entry, rel_path, link.to_bytes(), envelope):
                return False
            if not self._prepare_target(target):
                return True
            self._commit(target, envelope, lambda: self._stage_symlink(target, link.to_bytes()))
        else:
            try:
                digest, handle = digest_file_keep_open(path)
            except TreeSigError as e:
                return self._fail(path, f"Failed to load '{path}': {e}")
            with handle:
                if not self._check(entry, rel_path, digest.to_bytes(), envelope):
                    return False
                if not self._prepare_target(target):
                    return True
                mode = os.fstat(handle.fileno()).st_mode & 0o7777
                self._commit(
                    target,
                    envelope,
                    lambda: stage_file(target, lambda out: shutil.copyfileobj(handle, out), mode),
                )

        logger.info("Installed '%s' as '%s'", path, target)
        self.report.verified += 1
        self.report.installed += 1
        return True

    def _prepare_target(self, target: str) -> bool:
        """Check whether target may be written; False means leave it alone."""
        if os.path.lexists(target) and not self.config.force_overwrite:
            logger.info("'%s' already exists, ignoring", target)
            self.report.verified += 1
            self.report.skipped += 1
            return False
        os.makedirs(os.path.dirname(target), exist_ok=True)
        return True

    @staticmethod
    def _stage_symlink(target: str, link_target: bytes) -> str:
        tmp_path = staging_name(target)
        os.symlink(link_target, os.fsencode(tmp_path))
        return tmp_path

    @staticmethod
    def _commit(target: str, envelope: bytes, stage_leaf: Callable[[], str]) -> None:
        """Stage the leaf and its envelope, then move both into place.

        An existing target is only replaced once both copies are complete,
        so a failed copy leaves the destination as it was.
        """
        staged: list[tuple[str, str]] = []
        try:
            sig_path = envelope_path(target)
            staged.append((stage_file(sig_path, lambda f: f.write(envelope)), sig_path))
            staged.append((stage_leaf(), target))
            for tmp_path, final_path in reversed(staged):
                os.replace(tmp_path, final_path)
        except BaseException:
            for tmp_path, _ in staged:
                if os.path.lexists(tmp_path):
                    discard_staged(tmp_path)
            raise


def sign_tree(root: str, relative_root: str, config: TreeSigConfig, report: WalkReport | None = None) -> bool:
    """Sign every leaf under root, paths relative to relative_root."""
    return TreeWalker(config, WalkMode.SIGN, report).walk(root, relative_root)


def verify_tree(root: str, relative_root: str, config: TreeSigConfig, report: WalkReport | None = None) -> bool:
    """Verify every leaf under root, paths relative to relative_root."""
    return TreeWalker(config, WalkMode.VERIFY, report).walk(root, relative_root)


def install_tree(
    root: str,
    destination: str,
    relative_root: str,
    config: TreeSigConfig,
    report: WalkReport | None = None,
) -> bool:
    """Verify every leaf under root and copy the valid ones to destination."""
    return TreeWalker(config, WalkMode.INSTALL, report, destination=destination).walk(root, relative_root)


def default_relative_root(path: str, config: TreeSigConfig) -> str:
    """Relative root for a root argument: the override, the directory itself, or the parent."""
    if config.relative_root_override:
        return config.relative_root_override
    if _is_real_dir(path):
        return path
    return os.path.dirname(path)


def _is_real_dir(path: str) -> bool:
    return os.path.isdir(path) and not os.path.islink(path)


def _check_roots(paths: Iterable[str], config: TreeSigConfig) -> list[str]:
    roots = [canonicalize(p) for p in paths]
    if not roots:
        raise ConfigurationError("No input files given")
    for root in roots:
        if _is_real_dir(root) and not config.recursive:
            raise ConfigurationError(f"'{root}' is a directory and not in recursive mode")
    return roots


def _run(walker: TreeWalker, paths: Iterable[str]) -> bool:
    success = True
    for root in _check_roots(paths, walker.config):
        logger.debug("Checking %s", root)
        if not walker.walk(root, default_relative_root(root, walker.config)):
            success = False
    return success


def sign_paths(paths: Iterable[str], config: TreeSigConfig, report: WalkReport | None = None) -> bool:
    """Sign each root argument, choosing its relative root."""
    return _run(TreeWalker(config, WalkMode.SIGN, report), paths)


def verify_paths(paths: Iterable[str], config: TreeSigConfig, report: WalkReport | None = None) -> bool:
    """Verify each root argument, choosing its relative root."""
    return _run(TreeWalker(config, WalkMode.VERIFY, report), paths)


def install_paths(
    paths: Iterable[str],
    destination: str,
    config: TreeSigConfig,
    report: WalkReport | None = None,
) -> bool:
    """Verify and install each root argument into destination."""
    return _run(TreeWalker(config, WalkMode.INSTALL, report, destination=destination), paths)
