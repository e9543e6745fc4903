"""Key material loading and generation.

Keys are unencrypted PEM files: PKCS#8 for private keys and
SubjectPublicKeyInfo for public keys. Supported algorithms are Ed25519,
Ed448, RSA and ECDSA.
"""

from __future__ import annotations

import logging
import os
from typing import Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa

from treesig.errors import AccessFailure, ConfigurationError, ParseFailure

logger = logging.getLogger(__name__)

PrivateKey = Union[
    ed25519.Ed25519PrivateKey,
    ed448.Ed448PrivateKey,
    rsa.RSAPrivateKey,
    ec.EllipticCurvePrivateKey,
]
PublicKey = Union[
    ed25519.Ed25519PublicKey,
    ed448.Ed448PublicKey,
    rsa.RSAPublicKey,
    ec.EllipticCurvePublicKey,
]

PRIVATE_KEY_TYPES = (
    ed25519.Ed25519PrivateKey,
    ed448.Ed448PrivateKey,
    rsa.RSAPrivateKey,
    ec.EllipticCurvePrivateKey,
)
PUBLIC_KEY_TYPES = (
    ed25519.Ed25519PublicKey,
    ed448.Ed448PublicKey,
    rsa.RSAPublicKey,
    ec.EllipticCurvePublicKey,
)

KEY_ALGORITHMS = ("ed25519", "ed448", "rsa", "ecdsa")


def _read_key_file(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise AccessFailure.from_os_error("load key", path, e) from e


def load_private_key(path: str) -> PrivateKey:
    """Load a private key from a PEM file.

    Raises:
        AccessFailure: If the file cannot be opened or read
        ParseFailure: If the file is not a supported private key
    """
    data = _read_key_file(path)
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ParseFailure(f"Can't parse private key {path}: {e}") from e

    if not isinstance(key, PRIVATE_KEY_TYPES):
        raise ParseFailure(f"Can't parse private key {path}: unsupported key type")

    logger.info("Loaded private key '%s'", path)
    return key


def load_public_key(path: str) -> PublicKey:
    """Load a public key from a PEM file.

    Raises:
        AccessFailure: If the file cannot be opened or read
        ParseFailure: If the file is not a supported public key
    """
    data = _read_key_file(path)
    try:
        key = serialization.load_pem_public_key(data)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ParseFailure(f"Can't parse public key {path}: {e}") from e

    if not isinstance(key, PUBLIC_KEY_TYPES):
        raise ParseFailure(f"Can't parse public key {path}: unsupported key type")

    logger.info("Loaded public key '%s'", path)
    return key


def load_public_keys_from_dir(key_dir: str) -> list[PublicKey]:
    """Load every public key in a directory.

    A missing directory yields no keys. Entries that vanish during
    enumeration or are directories are skipped; any other failure is raised.

    Returns:
        Keys in directory enumeration order
    """
    try:
        names = os.listdir(key_dir)
    except FileNotFoundError:
        return []
    except OSError as e:
        raise AccessFailure.from_os_error("enumerate key dir", key_dir, e) from e

    keys = []
    for name in names:
        try:
            keys.append(load_public_key(os.path.join(key_dir, name)))
        except AccessFailure as e:
            if e.is_not_found or e.is_directory:
                logger.debug("Skipping '%s' in key dir: %s", name, e)
                continue
            raise
    return keys


def public_key_of(private_key: PrivateKey) -> PublicKey:
    return private_key.public_key()


def generate_private_key(algorithm: str = "ed25519") -> PrivateKey:
    """Generate a new private key for one of KEY_ALGORITHMS."""
    if algorithm == "ed25519":
        return ed25519.Ed25519PrivateKey.generate()
    if algorithm == "ed448":
        return ed448.Ed448PrivateKey.generate()
    if algorithm == "rsa":
        return rsa.generate_private_key(public_exponent=65537, key_size=3072)
    if algorithm == "ecdsa":
        return ec.generate_private_key(ec.SECP256R1())
    raise ValueError(f"Unknown key algorithm: {algorithm}")


def private_key_to_pem(private_key: PrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def public_key_to_pem(public_key: PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def save_keypair(private_key: PrivateKey, private_path: str, public_path: str | None = None) -> None:
    """Write a private key, and optionally its public half, as PEM.

    The private key file is created with mode 0600.

    Raises:
        ConfigurationError: If public_path names the private key file
    """
    if public_path:
        _check_distinct(private_path, public_path)
    os.makedirs(os.path.dirname(private_path) or ".", exist_ok=True)
    fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(private_key_to_pem(private_key))

    if public_path:
        os.makedirs(os.path.dirname(public_path) or ".", exist_ok=True)
        with open(public_path, "wb") as f:
            f.write(public_key_to_pem(private_key.public_key()))


def default_public_path(private_path: str) -> str:
    """Public key path next to private_path, with a .pub extension."""
    return os.path.splitext(private_path)[0] + ".pub"


def generate_keypair(
    private_path: str,
    public_path: str | None = None,
    algorithm: str = "ed25519",
) -> PrivateKey:
    """Generate a key pair and write both halves as PEM.

    Args:
        private_path: Where to write the private key (mode 0600)
        public_path: Where to write the public key; defaults to
            private_path with a .pub extension
        algorithm: One of KEY_ALGORITHMS

    Returns:
        The generated private key

    Raises:
        ConfigurationError: If both halves would land on the same file
        ValueError: If algorithm is unknown
    """
    if public_path is None:
        public_path = default_public_path(private_path)
    _check_distinct(private_path, public_path)

    private_key = generate_private_key(algorithm)
    save_keypair(private_key, private_path, public_path)
    logger.info("Generated %s key pair '%s' / '%s'", algorithm, private_path, public_path)
    return private_key


def _check_distinct(private_path: str, public_path: str) -> None:
    if os.path.realpath(private_path) == os.path.realpath(public_path):
        raise ConfigurationError(f"Private and public key paths are the same: '{private_path}'")
