"""
GitHub App authentication: app JWTs and installation access tokens.

Installation tokens are short-lived credentials issued per installation.
They are cached in memory until shortly before they expire and are never
persisted.
"""
import time
import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Optional

import aiohttp
import jwt
from pydantic import BaseModel

from ..exceptions import GitHubAPIError
from .api import github_headers, raise_for_github_status
from .config import GITHUB_API_URL, GitHubAppConfig

logger = logging.getLogger("shipstra.github")

JWT_ALGORITHM = "RS256"
JWT_BACKDATE = 60  # tolerate clock drift with GitHub
JWT_LIFETIME = 540  # GitHub rejects app JWTs valid for more than 10 minutes
REFRESH_MARGIN = timedelta(minutes=5)


class InstallationToken(BaseModel):
    token: str
    expires_at: datetime

    def is_fresh(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now < self.expires_at - REFRESH_MARGIN


class GitHubAppAuth:
    """Signs app JWTs and exchanges them for installation tokens."""

    def __init__(
        self,
        app_id: str,
        private_key: str,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = GITHUB_API_URL,
    ):
        self._app_id = app_id
        self._private_key = private_key
        self._session = session
        self._owns_session = session is None
        self._base_url = base_url.rstrip("/")
        self._tokens: dict[int, InstallationToken] = {}
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    @classmethod
    def from_config(
        cls, config: GitHubAppConfig, session: Optional[aiohttp.ClientSession] = None
    ) -> "GitHubAppAuth":
        return cls(config.app_id, config.private_key, session=session, base_url=config.api_url)

    def app_jwt(self, now: Optional[int] = None) -> str:
        """Return a JWT identifying the app itself."""
        now = int(now if now is not None else time.time())
        payload = {
            "iat": now - JWT_BACKDATE,
            "exp": now + JWT_LIFETIME,
            "iss": self._app_id,
        }
        return jwt.encode(payload, self._private_key, algorithm=JWT_ALGORITHM)

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def installation_token(self, installation_id: int) -> str:
        """Return a valid access token for an installation.

        Raises:
            GitHubAPIError: If GitHub refuses the exchange.
        """
        cached = self._tokens.get(installation_id)
        if cached is not None and cached.is_fresh():
            return cached.token
        # one exchange in flight per installation
        async with self._locks[installation_id]:
            cached = self._tokens.get(installation_id)
            if cached is not None and cached.is_fresh():
                return cached.token
            issued = await self._exchange(installation_id)
            self._tokens[installation_id] = issued
            return issued.token

    def forget(self, installation_id: int) -> None:
        """Drop a cached token (e.g. after the installation was removed)."""
        self._tokens.pop(installation_id, None)

    async def _exchange(self, installation_id: int) -> InstallationToken:
        session = await self._ensure_session()
        url = f"{self._base_url}/app/installations/{int(installation_id)}/access_tokens"
        async with session.post(url, headers=github_headers(self.app_jwt())) as response:
            if response.status in (401, 404):
                raise GitHubAPIError("Invalid GitHub App installation", response.status)
            await raise_for_github_status(response)
            data = await response.json()
        try:
            issued = InstallationToken(token=data["token"], expires_at=data["expires_at"])
        except (KeyError, TypeError, ValueError) as err:
            raise GitHubAPIError(f"Malformed installation token response: {err}") from err
        logger.debug(
            "Issued installation token for installation=%s (expires %s)",
            installation_id, issued.expires_at.isoformat(),
        )
        return issued
