"""
Typed failures raised by the secret codec and the GitHub glue.

``AuthenticationError`` is deliberately not a ``DecodingError``: a failed
tag check means tampering or a wrong secret, while a decoding failure
means corrupted storage or a format mismatch.
"""
from typing import Optional


class SecretCodecError(Exception):
    """Base class for every codec failure."""


class ConfigurationError(SecretCodecError, ValueError):
    """Missing or invalid shared secret or codec settings."""


class InvalidInputError(SecretCodecError, TypeError):
    """A ``None`` or non-string argument was passed to the codec."""


class DecodingError(SecretCodecError, ValueError):
    """Encoded secret is not valid hex or is too short for its fields."""


class AuthenticationError(SecretCodecError):
    """Authentication tag did not match the ciphertext and derived key."""


class GitHubAPIError(Exception):
    """Error response (or missing credentials) talking to GitHub."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status

    def __repr__(self) -> str:
        return f"GitHubAPIError({self.message!r}, status={self.status})"


class WebhookSignatureError(Exception):
    """Inbound webhook is unsigned (400) or carries a bad signature (401)."""

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.message = message
        self.status = status
