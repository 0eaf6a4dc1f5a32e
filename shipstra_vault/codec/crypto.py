"""
Codec Crypto Core — Key derivation, AES-GCM sealing and blob layout.

Implements the primitives behind the Secret Codec:
- Key derivation: PBKDF2-HMAC-SHA512(shared_secret, salt, iterations) → 32 bytes
- Sealing: AES-256-GCM with a 16-byte IV → ciphertext + 16-byte tag
- Layout: [salt (salt_length)][iv 16B][tag 16B][ciphertext], hex-encoded

Security Note:
    Never log plaintext, ciphertext, derived keys or the shared secret.
    Salt and IV are drawn from os.urandom on every call.
"""
import os
import struct
import binascii
from typing import NamedTuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..exceptions import AuthenticationError, DecodingError

IV_LENGTH = 16  # 128-bit IV, byte compatible with stored values
TAG_LENGTH = 16  # GCM tag
KEY_LENGTH = 32  # AES-256

DEFAULT_SALT_LENGTH = 64
DEFAULT_ITERATIONS = 100_000


class SealedParts(NamedTuple):
    salt: bytes
    iv: bytes
    tag: bytes
    ciphertext: bytes


class SecretLayout:
    """Fixed-offset binary layout of an encoded secret.

    The header is a ``struct`` of three fixed-width byte fields followed
    by a variable-width ciphertext trailer.
    """

    def __init__(self, salt_length: int):
        self.salt_length = salt_length
        self._header = struct.Struct(f"!{salt_length}s{IV_LENGTH}s{TAG_LENGTH}s")

    @property
    def header_size(self) -> int:
        return self._header.size

    def pack(self, parts: SealedParts) -> bytes:
        return self._header.pack(parts.salt, parts.iv, parts.tag) + parts.ciphertext

    def unpack(self, blob: bytes) -> SealedParts:
        """Split a decoded blob into its fields.

        Raises:
            DecodingError: If the blob is shorter than the fixed header.
        """
        if len(blob) < self.header_size:
            raise DecodingError(
                f"encoded secret too short: {len(blob)} bytes "
                f"(minimum {self.header_size})"
            )
        salt, iv, tag = self._header.unpack_from(blob)
        return SealedParts(salt, iv, tag, blob[self.header_size:])

    def __repr__(self) -> str:
        return f"<SecretLayout salt={self.salt_length} header={self.header_size}>"


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(secret: str, salt: bytes, iterations: int) -> bytes:
    """Derive a 32-byte AES key using PBKDF2-HMAC-SHA512.

    Args:
        secret: Process-wide shared secret.
        salt: Per-call random salt.
        iterations: PBKDF2 iteration count.

    Returns:
        32-byte derived key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret.encode("utf-8"))


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def seal(plaintext: bytes, secret: str, salt_length: int, iterations: int) -> SealedParts:
    """Encrypt plaintext under a freshly salted key.

    Returns:
        SealedParts with fresh salt and IV, the GCM tag and the ciphertext.
    """
    salt = os.urandom(salt_length)
    iv = os.urandom(IV_LENGTH)
    key = derive_key(secret, salt, iterations)
    ct_full = AESGCM(key).encrypt(iv, plaintext, None)
    return SealedParts(salt, iv, ct_full[-TAG_LENGTH:], ct_full[:-TAG_LENGTH])


def open_sealed(parts: SealedParts, secret: str, iterations: int) -> bytes:
    """Decrypt and authenticate sealed parts.

    Raises:
        AuthenticationError: If the GCM tag does not verify.
    """
    key = derive_key(secret, parts.salt, iterations)
    try:
        return AESGCM(key).decrypt(parts.iv, parts.ciphertext + parts.tag, None)
    except InvalidTag:
        raise AuthenticationError(
            "authentication tag mismatch: value was tampered with "
            "or encrypted under a different secret"
        ) from None


# ---------------------------------------------------------------------------
# Text encoding
# ---------------------------------------------------------------------------

def to_hex(blob: bytes) -> str:
    return blob.hex()


def from_hex(value: str) -> bytes:
    """Strictly decode a hex string (no whitespace, even length).

    Raises:
        DecodingError: If ``value`` is not valid hex.
    """
    try:
        return binascii.unhexlify(value.encode("ascii"))
    except (UnicodeEncodeError, binascii.Error) as err:
        raise DecodingError(f"encoded secret is not valid hex: {err}") from None
