"""Shipstra Vault.

Authenticated encryption for credentials the deployment dashboard stores
as text, and the GitHub App glue that reads them back.
"""
from .version import __version__
from .codec import SecretCodec, CodecConfig
from .exceptions import (
    SecretCodecError,
    ConfigurationError,
    InvalidInputError,
    DecodingError,
    AuthenticationError,
)

__all__ = [
    "__version__",
    "SecretCodec",
    "CodecConfig",
    "SecretCodecError",
    "ConfigurationError",
    "InvalidInputError",
    "DecodingError",
    "AuthenticationError",
]
