"""Verification of signature envelopes against a trusted key set."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, padding, rsa

from treesig.blob import EntryType, build_blob
from treesig.errors import CryptoEngineFailure, ParseFailure
from treesig.keys import PublicKey
from treesig.signing import SignatureEnvelope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying one envelope.

    Truthy iff valid. ``error`` is only set for structurally invalid
    envelopes; a signature that no trusted key accepts carries no error.
    """

    valid: bool
    error: str | None = None
    key_index: int | None = None

    def __bool__(self) -> bool:
        return self.valid


def _verify_raw(public_key: PublicKey, signature: bytes, data: bytes) -> None:
    if isinstance(public_key, (ed25519.Ed25519PublicKey, ed448.Ed448PublicKey)):
        public_key.verify(signature, data)
    elif isinstance(public_key, rsa.RSAPublicKey):
        public_key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
    elif isinstance(public_key, ec.EllipticCurvePublicKey):
        public_key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
    else:
        raise CryptoEngineFailure(
            f"Can't initialize digest verify operation: unsupported key {type(public_key).__name__}"
        )


class Verifier:
    """Checks envelopes against an ordered set of trusted public keys."""

    def __init__(self, trusted_keys: Sequence[PublicKey]) -> None:
        self.trusted_keys = list(trusted_keys)

    def verify(
        self,
        relative_path: str | bytes,
        entry_type: EntryType,
        content: bytes,
        envelope: bytes,
    ) -> VerificationResult:
        """Verify envelope against the freshly computed blob.

        Keys are tried in order; the first key that validates wins.

        Raises:
            UnsupportedEntryType: If entry_type is not a leaf type
            CryptoEngineFailure: If a key trial fails for a reason other
                than a signature mismatch
        """
        logger.debug("Validating signature of: %s", relative_path)
        try:
            parsed = SignatureEnvelope.from_bytes(envelope)
        except ParseFailure as e:
            logger.debug("   Invalid signature size or value")
            return VerificationResult(valid=False, error=str(e))

        blob = build_blob(entry_type, relative_path, content)

        for index, key in enumerate(self.trusted_keys):
            try:
                _verify_raw(key, parsed.signature, blob)
            except InvalidSignature:
                logger.debug("   Key %d did not validate", index)
                continue
            except (ValueError, TypeError, UnsupportedAlgorithm) as e:
                raise CryptoEngineFailure(f"Error validating digest: {e}") from e
            logger.debug("   Key %d validated", index)
            return VerificationResult(valid=True, key_index=index)

        return VerificationResult(valid=False)
