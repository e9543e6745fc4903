"""Signature envelopes and signing of leaf blobs.

Envelope wire format: SIGNATURE_MAGIC immediately followed by the raw output
of the signature primitive. Envelopes live next to the signed path as
``<path>.sig``.
"""

from __future__ import annotations

import logging
import os
import tempfile
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import BinaryIO

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, padding, rsa

from treesig.blob import EntryType, build_blob
from treesig.errors import AccessFailure, CryptoEngineFailure, ParseFailure
from treesig.keys import PrivateKey

logger = logging.getLogger(__name__)

SIGNATURE_MAGIC = b"TREESIG\x01"
SIGNATURE_SUFFIX = ".sig"


def envelope_path(path: str) -> str:
    """Return the sidecar envelope path for a signed path."""
    return path + SIGNATURE_SUFFIX


def is_envelope_name(name: str) -> bool:
    return name.endswith(SIGNATURE_SUFFIX)


@dataclass(frozen=True)
class SignatureEnvelope:
    """Persisted signature: magic marker plus raw signature bytes."""

    signature: bytes

    def to_bytes(self) -> bytes:
        return SIGNATURE_MAGIC + self.signature

    @staticmethod
    def has_magic(data: bytes) -> bool:
        return len(data) >= len(SIGNATURE_MAGIC) and data[: len(SIGNATURE_MAGIC)] == SIGNATURE_MAGIC

    @classmethod
    def from_bytes(cls, data: bytes) -> SignatureEnvelope:
        """Parse envelope bytes.

        Raises:
            ParseFailure: If data is shorter than the magic or does not start with it
        """
        if not cls.has_magic(data):
            raise ParseFailure("Invalid signature")
        return cls(signature=bytes(data[len(SIGNATURE_MAGIC):]))


def _ecdsa_der_size(curve: ec.EllipticCurve) -> int:
    # SEQUENCE of two INTEGERs, each possibly padded with a leading zero.
    n = (curve.key_size + 7) // 8
    return 2 * (n + 3) + 3


def signature_size(private_key: PrivateKey) -> int:
    """Upper bound of the signature length produced by private_key."""
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        return 64
    if isinstance(private_key, ed448.Ed448PrivateKey):
        return 114
    if isinstance(private_key, rsa.RSAPrivateKey):
        return (private_key.key_size + 7) // 8
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return _ecdsa_der_size(private_key.curve)
    raise CryptoEngineFailure(f"Error getting signature size: unsupported key {type(private_key).__name__}")


def _sign_raw(private_key: PrivateKey, data: bytes) -> bytes:
    if isinstance(private_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return private_key.sign(data)
    if isinstance(private_key, rsa.RSAPrivateKey):
        return private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return private_key.sign(data, ec.ECDSA(hashes.SHA256()))
    raise CryptoEngineFailure(f"Can't initialize signature operation: unsupported key {type(private_key).__name__}")


class Signer:
    """Signs leaf blobs with a single private key."""

    def __init__(self, private_key: PrivateKey) -> None:
        self._private_key = private_key

    def sign(self, entry_type: EntryType, relative_path: str | bytes, content: bytes) -> SignatureEnvelope:
        """Sign a leaf.

        The signature length is queried first and the produced signature
        must fit in it.

        Raises:
            UnsupportedEntryType: If entry_type is not a leaf type
            CryptoEngineFailure: If the signature primitive fails
        """
        blob = build_blob(entry_type, relative_path, content)

        size = signature_size(self._private_key)
        try:
            signature = _sign_raw(self._private_key, blob)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise CryptoEngineFailure(f"Error signing data: {e}") from e

        if len(signature) > size:
            raise CryptoEngineFailure(
                f"Error signing data: signature of {len(signature)} bytes exceeds negotiated {size}"
            )
        return SignatureEnvelope(signature=signature)


def staging_name(path: str) -> str:
    """Unique temporary sibling name for path.

    Staged names carry the envelope suffix, so tree walks never pick them up
    as leaves.
    """
    directory = os.path.dirname(path) or "."
    return os.path.join(directory, f".{os.path.basename(path)}.{uuid.uuid4().hex}.tmp{SIGNATURE_SUFFIX}")


def discard_staged(tmp_path: str) -> None:
    """Remove a staged file if it is still there."""
    try:
        os.unlink(tmp_path)
    except FileNotFoundError:
        pass


def stage_file(path: str, write: Callable[[BinaryIO], None], mode: int = 0o644) -> str:
    """Write a complete, synced temporary sibling of path.

    Nothing at path is touched; the caller moves the result into place with
    ``os.replace`` once everything it depends on is staged.

    Args:
        path: Final destination
        write: Called with the open temporary file
        mode: Permission bits for the staged file

    Returns:
        Name of the staged file
    """
    directory = os.path.dirname(path) or "."
    fd, tmp_path = tempfile.mkstemp(
        dir=directory,
        prefix=f".{os.path.basename(path)}.",
        suffix=f".tmp{SIGNATURE_SUFFIX}",
    )
    try:
        with os.fdopen(fd, "wb") as f:
            write(f)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
    except BaseException:
        discard_staged(tmp_path)
        raise
    return tmp_path


def write_envelope(path: str, envelope: SignatureEnvelope) -> None:
    """Atomically write envelope to path."""
    tmp_path = None
    try:
        tmp_path = stage_file(path, lambda f: f.write(envelope.to_bytes()))
        os.replace(tmp_path, path)
    except OSError as e:
        if tmp_path is not None:
            discard_staged(tmp_path)
        raise AccessFailure.from_os_error("write", path, e) from e


def read_envelope(path: str) -> bytes:
    """Read raw envelope bytes.

    Raises:
        AccessFailure: If the envelope cannot be read (errno preserved)
    """
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise AccessFailure.from_os_error("load", path, e) from e
