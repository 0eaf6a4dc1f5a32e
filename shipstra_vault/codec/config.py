"""
Codec Configuration — Shared secret loading and validated settings.

Reads the shared secret for each codec from an environment variable, and
optional tuning from:
    SECRET_CODEC_SALT_LENGTH = <bytes, default 64>
    SECRET_CODEC_ITERATIONS = <PBKDF2 rounds, default 100000>

Security Note:
    Never log secret values. Only log variable names and settings.
"""
import os
import secrets
import logging
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from ..exceptions import ConfigurationError
from .crypto import (
    DEFAULT_ITERATIONS,
    DEFAULT_SALT_LENGTH,
    SecretLayout,
)

logger = logging.getLogger("shipstra.vault")


def load_shared_secret(name: str) -> str:
    """Load a shared secret from the named environment variable.

    Args:
        name: Environment variable holding the secret.

    Returns:
        The secret string.

    Raises:
        ConfigurationError: If the variable is missing or empty.
    """
    value = os.environ.get(name)
    if not value:
        raise ConfigurationError(
            f"{name} environment variable is not set or empty"
        )
    logger.debug("Loaded shared secret from %s", name)
    return value


def generate_shared_secret(nbytes: int = 48) -> str:
    """Generate a random URL-safe shared secret.

    This is a utility for operators to provision new secrets.
    """
    return secrets.token_urlsafe(nbytes)


def _env_int(name: str) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


class CodecConfig(BaseModel):
    """Validated, immutable codec configuration."""

    salt_length: int = Field(default=DEFAULT_SALT_LENGTH, ge=1)
    key_derivation_iterations: int = Field(default=DEFAULT_ITERATIONS, ge=1)

    model_config = {"frozen": True}

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as err:
            raise ConfigurationError(f"Invalid codec configuration: {err}") from err

    @property
    def layout(self) -> SecretLayout:
        return SecretLayout(self.salt_length)

    @property
    def min_length(self) -> int:
        """Smallest decoded blob (in bytes) the codec accepts."""
        return self.layout.header_size

    @classmethod
    def build(cls, **kwargs) -> "CodecConfig":
        """Create a CodecConfig, reporting bad values as ConfigurationError."""
        return cls(**kwargs)

    @classmethod
    def from_env(cls) -> "CodecConfig":
        """Create CodecConfig from optional environment overrides.

        Returns:
            Populated CodecConfig instance.
        """
        kwargs = {}
        salt_length = _env_int("SECRET_CODEC_SALT_LENGTH")
        if salt_length is not None:
            kwargs["salt_length"] = salt_length
        iterations = _env_int("SECRET_CODEC_ITERATIONS")
        if iterations is not None:
            kwargs["key_derivation_iterations"] = iterations
        return cls.build(**kwargs)
