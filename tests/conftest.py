"""Shared fixtures for treesig tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from treesig.config import TreeSigConfig
from treesig.keys import generate_private_key, save_keypair


@pytest.fixture
def private_key():
    return generate_private_key("ed25519")


@pytest.fixture
def public_key(private_key):
    return private_key.public_key()


@pytest.fixture
def key_files(tmp_path: Path, private_key) -> tuple[Path, Path]:
    """Write the fixture key pair as PEM and return (private, public) paths."""
    keys_dir = tmp_path / "keys"
    private_path = keys_dir / "signing.pem"
    public_path = keys_dir / "signing.pub"
    save_keypair(private_key, str(private_path), str(public_path))
    return private_path, public_path


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    """A small tree with nested files and a symlink."""
    root = tmp_path / "tree"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("alpha")
    (root / "sub" / "b.txt").write_text("beta")
    (root / "link").symlink_to("a.txt")
    return root


@pytest.fixture
def make_config(private_key, public_key):
    def _make(**kwargs) -> TreeSigConfig:
        kwargs.setdefault("private_key", private_key)
        kwargs.setdefault("trusted_public_keys", [public_key])
        kwargs.setdefault("recursive", True)
        return TreeSigConfig(**kwargs)

    return _make
