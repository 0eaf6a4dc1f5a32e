"""
GitHub App Configuration — App credentials and per-purpose codec secrets.

Reads settings from environment variables:
    GITHUB_APP_ID, GITHUB_APP_NAME, GITHUB_APP_PRIVATE_KEY
    GITHUB_INSTALLATION_SECRET  (encrypts stored installation ids)
    GITHUB_STATE_SECRET         (encrypts the install ``state`` parameter)
    GITHUB_TOKEN_SECRET         (encrypts stored personal access tokens)
    GITHUB_WEBHOOK_SECRET       (verifies inbound webhook signatures)

Security Note:
    Never log key material or secrets. Only log variable names.
"""
import os
import base64
import binascii
import logging
from typing import Optional
from urllib.parse import quote

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..codec import CodecConfig, SecretCodec
from ..exceptions import ConfigurationError

logger = logging.getLogger("shipstra.github")

GITHUB_API_URL = "https://api.github.com"


def normalize_private_key(raw: str) -> str:
    """Return a PEM private key from the forms operators tend to store.

    Accepts a PEM string, a PEM with literal ``\\n`` escapes, or either of
    those base64-encoded.

    Raises:
        ConfigurationError: If the result is not PEM-framed.
    """
    key = raw
    if "-----BEGIN" not in key:
        try:
            # base64 tools wrap their output at 76 columns
            compact = "".join(key.split())
            key = base64.b64decode(compact, validate=True).decode("utf-8")
            logger.debug("Decoded base64-encoded GitHub App private key")
        except (binascii.Error, UnicodeDecodeError):
            logger.debug("GitHub App private key is not base64, using as-is")
    key = key.replace("\\n", "\n")
    if "-----BEGIN" not in key or "-----END" not in key:
        raise ConfigurationError("Invalid private key format")
    return key


class GitHubAppConfig(BaseModel):
    """Validated GitHub App configuration."""

    app_id: str
    app_name: str = Field(default="shipstra")
    private_key: str
    installation_secret: str = Field(min_length=1)
    state_secret: str = Field(min_length=1)
    token_secret: str = Field(min_length=1)
    webhook_secret: str = Field(min_length=1)
    api_url: str = Field(default=GITHUB_API_URL)
    codec: CodecConfig = Field(default_factory=CodecConfig)

    model_config = {"frozen": True, "hide_input_in_errors": True}

    @field_validator("app_id")
    @classmethod
    def validate_app_id(cls, v: str) -> str:
        """App ids are numeric."""
        if not v.strip().isdigit():
            raise ValueError(f"GitHub App id must be numeric, got {v!r}")
        return v.strip()

    @field_validator("private_key")
    @classmethod
    def validate_private_key(cls, v: str) -> str:
        """Normalize the private key into PEM."""
        try:
            return normalize_private_key(v)
        except ConfigurationError as err:
            raise ValueError(str(err)) from None

    @classmethod
    def from_env(cls) -> "GitHubAppConfig":
        """Create GitHubAppConfig by loading values from environment.

        Raises:
            ConfigurationError: If a required variable is missing or invalid.
        """
        required = {
            "app_id": "GITHUB_APP_ID",
            "private_key": "GITHUB_APP_PRIVATE_KEY",
            "installation_secret": "GITHUB_INSTALLATION_SECRET",
            "state_secret": "GITHUB_STATE_SECRET",
            "token_secret": "GITHUB_TOKEN_SECRET",
            "webhook_secret": "GITHUB_WEBHOOK_SECRET",
        }
        missing = [env for env in required.values() if not os.environ.get(env)]
        if missing:
            raise ConfigurationError(
                f"GitHub App credentials not configured: missing {', '.join(missing)}"
            )
        values = {field: os.environ[env] for field, env in required.items()}
        app_name: Optional[str] = os.environ.get("GITHUB_APP_NAME")
        if app_name:
            values["app_name"] = app_name
        values["codec"] = CodecConfig.from_env()
        try:
            return cls(**values)
        except ValidationError as err:
            raise ConfigurationError(f"Invalid GitHub App configuration: {err}") from err

    def installation_codec(self) -> SecretCodec:
        return SecretCodec(self.installation_secret, self.codec)

    def state_codec(self) -> SecretCodec:
        return SecretCodec(self.state_secret, self.codec)

    def token_codec(self) -> SecretCodec:
        return SecretCodec(self.token_secret, self.codec)

    def install_url(self, state: str) -> str:
        """URL that starts a GitHub App installation carrying ``state``."""
        return (
            f"https://github.com/apps/{quote(self.app_name)}"
            f"/installations/new?state={quote(state)}"
        )
