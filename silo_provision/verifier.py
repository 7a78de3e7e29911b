"""P-256 signature verification for digests signed by the tag.

The tag signs the 32-byte digest directly (no further hashing), with the
signature laid out as raw R || S and public keys as raw X || Y, optionally
carrying the uncompressed-point ``04`` marker.
"""

import logging
import re
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, encode_dss_signature

from .types import CommandCode

logger = logging.getLogger(__name__)

_HEX = re.compile(r"[0-9a-fA-F]+")

DIGEST_HEX_LENGTHS = (64, 66)
SIGNATURE_HEX_LENGTH = 128
PUBLIC_KEY_HEX_LENGTHS = (128, 130)


def p256_verify(digest: bytes, x: int, y: int, r: int, s: int) -> bool:
    """Verify an ECDSA P-256 signature over a precomputed SHA-256 digest."""
    try:
        public_key = ec.EllipticCurvePublicNumbers(x, y, ec.SECP256R1()).public_key()
    except ValueError:
        # point not on curve
        return False
    try:
        public_key.verify(
            encode_dss_signature(r, s),
            digest,
            ec.ECDSA(Prehashed(hashes.SHA256())),
        )
        return True
    except InvalidSignature:
        return False


def verify_signature(digest_hex: str, public_key_hex: str, signature_hex: str) -> bool:
    """Verify a tag signature given hex-encoded inputs.

    Malformed input is a failed verification, never an exception.

    Args:
        digest_hex: 32-byte digest, optionally ``0x`` prefixed.
        public_key_hex: 64-byte X || Y key, optionally ``04`` prefixed.
        signature_hex: 64-byte R || S signature.

    Returns:
        True only if the signature is valid for the digest and key.
    """
    if not all(isinstance(v, str) for v in (digest_hex, public_key_hex, signature_hex)):
        return False
    if len(digest_hex) not in DIGEST_HEX_LENGTHS:
        return False
    if len(signature_hex) != SIGNATURE_HEX_LENGTH:
        return False
    if len(public_key_hex) not in PUBLIC_KEY_HEX_LENGTHS:
        return False

    if len(digest_hex) == 66:
        if digest_hex[:2].lower() != "0x":
            return False
        digest_hex = digest_hex[2:]

    if len(public_key_hex) == 130:
        if public_key_hex[:2] != "04":
            return False
        public_key_hex = public_key_hex[2:]

    if not all(_HEX.fullmatch(v) for v in (digest_hex, public_key_hex, signature_hex)):
        logger.debug("Signature input is not valid hex")
        return False

    half_key = len(public_key_hex) // 2
    half_sig = len(signature_hex) // 2
    digest = bytes.fromhex(digest_hex)
    x = int(public_key_hex[:half_key], 16)
    y = int(public_key_hex[half_key:], 16)
    r = int(signature_hex[:half_sig], 16)
    s = int(signature_hex[half_sig:], 16)

    if r == 0 or s == 0:
        return False

    return p256_verify(digest, x, y, r, s)


class SignatureVerifier:
    """Verifies tag signatures, picking the key the command dictates."""

    @staticmethod
    def select_key(
        command: str,
        primary_public_key: str,
        internal_signature: str,
        override_key: Optional[str] = None,
    ) -> str:
        """Pick the verification key for a command.

        0x55 and 0x56 place the provisioning public key in the
        internal-signature slot, so that slot is the key for those
        commands. An explicit override wins over both.

        The result is always raw X || Y; a leading ``04`` marker on a
        130-character key is dropped so persisted records carry 64-byte keys.
        """
        if override_key:
            key = override_key
        elif CommandCode.exposes_provisioning_key(command):
            key = internal_signature
        else:
            key = primary_public_key
        if len(key) == 130 and key[:2] == "04":
            key = key[2:]
        return key

    def verify(self, digest_hex: str, public_key_hex: str, signature_hex: str) -> bool:
        return verify_signature(digest_hex, public_key_hex, signature_hex)
