"""
SecretCodec — Authenticated encryption of short secret strings.

Provides the public API used wherever a credential is persisted:
- ``encrypt(plaintext)`` — salt, derive, seal and hex-encode
- ``decrypt(encoded)`` — hex-decode, split, re-derive and authenticate
- ``from_env(name)`` — factory that reads the shared secret from the environment

Security Note:
    The derived key only lives for the duration of one call. The shared
    secret is read-only after construction, so an instance may be shared
    freely between threads and tasks.
"""
import logging
from typing import Optional

from ..exceptions import ConfigurationError, DecodingError, InvalidInputError
from .config import CodecConfig, load_shared_secret
from .crypto import from_hex, open_sealed, seal, to_hex

logger = logging.getLogger("shipstra.vault")


class SecretCodec:
    """Encrypts strings into self-contained hex blobs.

    Encoded form: ``hex(salt || iv || tag || ciphertext)``. Identical
    plaintexts encrypt to different blobs because salt and IV are fresh
    on every call.
    """

    def __init__(self, secret: str, config: Optional[CodecConfig] = None):
        if not isinstance(secret, str) or not secret:
            raise ConfigurationError("secret must be a non-empty string")
        if config is None:
            config = CodecConfig()
        elif not isinstance(config, CodecConfig):
            raise ConfigurationError(
                f"config must be a CodecConfig, got {type(config).__name__}"
            )
        self._secret = secret
        self._config = config
        self._layout = config.layout

    @classmethod
    def from_env(cls, name: str, config: Optional[CodecConfig] = None) -> "SecretCodec":
        """Build a codec whose shared secret comes from env var ``name``."""
        return cls(load_shared_secret(name), config or CodecConfig.from_env())

    @property
    def config(self) -> CodecConfig:
        return self._config

    def __repr__(self) -> str:
        return (
            f"<SecretCodec salt_length={self._config.salt_length} "
            f"iterations={self._config.key_derivation_iterations}>"
        )

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string.

        Args:
            plaintext: Any string, including the empty string.

        Returns:
            Lowercase hex encoded secret.

        Raises:
            InvalidInputError: If plaintext is None, not a string, or
                cannot be encoded as UTF-8.
        """
        if plaintext is None:
            raise InvalidInputError("value must not be None")
        if not isinstance(plaintext, str):
            raise InvalidInputError(
                f"value must be a string, got {type(plaintext).__name__}"
            )
        try:
            data = plaintext.encode("utf-8")
        except UnicodeEncodeError as err:
            raise InvalidInputError(f"value is not UTF-8 encodable: {err.reason}") from None
        parts = seal(
            data,
            self._secret,
            self._config.salt_length,
            self._config.key_derivation_iterations,
        )
        return to_hex(self._layout.pack(parts))

    def decrypt(self, encoded: str) -> str:
        """Decrypt a value produced by :meth:`encrypt`.

        The codec must share the secret and ``salt_length`` used to encrypt.

        Raises:
            InvalidInputError: If encoded is None or not a string.
            DecodingError: If encoded is not hex, is too short, or does not
                hold UTF-8 text.
            AuthenticationError: If the authentication tag does not verify.
        """
        if encoded is None:
            raise InvalidInputError("value must not be None")
        if not isinstance(encoded, str):
            raise InvalidInputError(
                f"value must be a string, got {type(encoded).__name__}"
            )
        parts = self._layout.unpack(from_hex(encoded))
        data = open_sealed(parts, self._secret, self._config.key_derivation_iterations)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            raise DecodingError("decrypted value is not valid UTF-8") from None
