"""
SecuritySettingsStore — Encrypted credentials on the user security settings row.

Provides the persistence API used by the GitHub routes:
- ``save_github_token()`` / ``load_github_token()`` / ``clear_github_token()``
- ``save_installation_id()`` / ``load_installation_id()``
- ``get_settings()`` — raw row lookup

Security Note:
    Never log plaintext or ciphertext values. Only log user IDs and
    operations. Codec failures are propagated to the caller, which decides
    how to report a possible integrity incident.
"""
import logging
from typing import Any, Optional

from pydantic import BaseModel

from .codec import SecretCodec
from .exceptions import DecodingError

logger = logging.getLogger("shipstra.vault")

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_SELECT_SETTINGS = """
SELECT *
FROM user_security_settings
WHERE user_id = $1
"""

_UPSERT_TOKEN = """
INSERT INTO user_security_settings
    (user_id, github_encrypted_token, github_username,
     github_token_updated_at, updated_at)
VALUES ($1, $2, $3, NOW(), NOW())
ON CONFLICT (user_id)
DO UPDATE SET github_encrypted_token = EXCLUDED.github_encrypted_token,
              github_username = EXCLUDED.github_username,
              github_token_updated_at = NOW(),
              updated_at = NOW()
"""

_CLEAR_TOKEN = """
UPDATE user_security_settings
SET github_encrypted_token = NULL,
    github_username = NULL,
    github_token_updated_at = NULL,
    updated_at = NOW()
WHERE user_id = $1
"""

_UPSERT_INSTALLATION = """
INSERT INTO user_security_settings
    (user_id, github_app_installation_id,
     github_app_installation_id_updated_at, updated_at)
VALUES ($1, $2, NOW(), NOW())
ON CONFLICT (user_id)
DO UPDATE SET github_app_installation_id = EXCLUDED.github_app_installation_id,
              github_app_installation_id_updated_at = NOW(),
              updated_at = NOW()
"""


class StoredToken(BaseModel):
    """Decrypted GitHub token and the login it belongs to."""

    access_token: Optional[str] = None
    github_username: Optional[str] = None


class SecuritySettingsStore:
    """Reads and writes encrypted GitHub credentials for a user.

    Two codecs are used so that a leaked installation secret does not
    expose personal access tokens and vice versa.
    """

    def __init__(
        self,
        db_pool: Any,
        token_codec: SecretCodec,
        installation_codec: SecretCodec,
    ):
        self._db = db_pool
        self._token_codec = token_codec
        self._installation_codec = installation_codec

    async def get_settings(self, user_id: str) -> Optional[dict]:
        """Return the raw settings row for a user, or None."""
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(_SELECT_SETTINGS, user_id)
        return dict(row) if row is not None else None

    # ------------------------------------------------------------------
    # Personal access token
    # ------------------------------------------------------------------

    async def save_github_token(
        self, user_id: str, access_token: str, github_username: Optional[str]
    ) -> None:
        """Encrypt and persist a GitHub token for a user.

        Args:
            user_id: Owning user.
            access_token: Plaintext token, already validated against GitHub.
            github_username: Login the token belongs to.
        """
        encrypted = self._token_codec.encrypt(access_token)
        async with self._db.acquire() as conn:
            await conn.execute(_UPSERT_TOKEN, user_id, encrypted, github_username)
        logger.info("Stored GitHub token for user=%s", user_id)

    async def load_github_token(self, user_id: str) -> StoredToken:
        """Decrypt the stored GitHub token for a user.

        Returns:
            StoredToken, empty if nothing is stored.

        Raises:
            DecodingError, AuthenticationError: If the stored value is
                corrupted or was encrypted under another secret.
        """
        settings = await self.get_settings(user_id)
        if not settings or not settings.get("github_encrypted_token"):
            return StoredToken()
        return StoredToken(
            access_token=self._token_codec.decrypt(settings["github_encrypted_token"]),
            github_username=settings.get("github_username"),
        )

    async def clear_github_token(self, user_id: str) -> None:
        """Remove the stored GitHub token for a user."""
        async with self._db.acquire() as conn:
            await conn.execute(_CLEAR_TOKEN, user_id)
        logger.info("Cleared GitHub token for user=%s", user_id)

    # ------------------------------------------------------------------
    # GitHub App installation
    # ------------------------------------------------------------------

    async def save_installation_id(self, user_id: str, installation_id: int) -> None:
        """Encrypt and persist the GitHub App installation id for a user."""
        encrypted = self._installation_codec.encrypt(str(int(installation_id)))
        async with self._db.acquire() as conn:
            await conn.execute(_UPSERT_INSTALLATION, user_id, encrypted)
        logger.info("Stored GitHub App installation for user=%s", user_id)

    async def load_installation_id(self, user_id: str) -> Optional[int]:
        """Decrypt the stored installation id, or None if not installed.

        Raises:
            DecodingError: If the decrypted value is not an integer.
        """
        settings = await self.get_settings(user_id)
        if not settings or not settings.get("github_app_installation_id"):
            return None
        plaintext = self._installation_codec.decrypt(
            settings["github_app_installation_id"]
        )
        try:
            return int(plaintext)
        except ValueError:
            raise DecodingError("stored installation id is not an integer") from None
