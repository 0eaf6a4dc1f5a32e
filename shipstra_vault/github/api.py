"""
GitHub REST client used by the dashboard routes.

Covers only the calls the dashboard needs: validating a personal access
token, listing and searching repositories, and listing branches. Results
are trimmed to the fields the dashboard renders.
"""
import logging
from typing import Any, Optional
from urllib.parse import quote, urlencode

import aiohttp

from ..exceptions import GitHubAPIError
from .config import GITHUB_API_URL

logger = logging.getLogger("shipstra.github")

USER_AGENT = "Shipstra-App"
ACCEPT = "application/vnd.github.v3+json"

_STATUS_MESSAGES = {
    401: "Invalid GitHub access token",
    403: "GitHub API rate limit exceeded",
    404: "GitHub resource not found",
}


def github_headers(token: str) -> dict:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": ACCEPT,
        "User-Agent": USER_AGENT,
    }


async def raise_for_github_status(response: aiohttp.ClientResponse) -> None:
    """Translate a non-2xx GitHub response into GitHubAPIError."""
    if response.status < 400:
        return
    message = _STATUS_MESSAGES.get(
        response.status, f"GitHub API error: {response.reason}"
    )
    logger.warning(
        "GitHub %s %s returned %d", response.method, response.url.path, response.status
    )
    raise GitHubAPIError(message, response.status)


def trim_repository(repo: dict) -> dict:
    owner = repo.get("owner") or {}
    return {
        "id": repo["id"],
        "name": repo["name"],
        "full_name": repo["full_name"],
        "description": repo.get("description"),
        "private": repo.get("private", False),
        "html_url": repo.get("html_url"),
        "clone_url": repo.get("clone_url"),
        "ssh_url": repo.get("ssh_url"),
        "git_url": repo.get("git_url"),
        "owner": {
            "login": owner.get("login"),
            "avatar_url": owner.get("avatar_url"),
        },
        "default_branch": repo.get("default_branch"),
        "language": repo.get("language"),
        "stargazers_count": repo.get("stargazers_count", 0),
        "updated_at": repo.get("updated_at"),
    }


def trim_branch(branch: dict) -> dict:
    commit = branch.get("commit") or {}
    return {
        "name": branch["name"],
        "commit": {"sha": commit.get("sha"), "url": commit.get("url")},
        "protected": branch.get("protected", False),
    }


class GitHubAPI:
    """Thin async client bound to one access token.

    Pass an existing ``aiohttp.ClientSession`` to share connections; if
    none is given, one is created lazily and closed by :meth:`close`.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = GITHUB_API_URL,
    ):
        self._token = token
        self._session = session
        self._owns_session = session is None
        self._base_url = base_url.rstrip("/")

    def set_token(self, token: str) -> None:
        self._token = token

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "GitHubAPI":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _request(self, endpoint: str) -> Any:
        if not self._token:
            raise GitHubAPIError("GitHub access token is required")
        session = await self._ensure_session()
        async with session.get(
            f"{self._base_url}{endpoint}", headers=github_headers(self._token)
        ) as response:
            await raise_for_github_status(response)
            return await response.json()

    async def get_current_user(self) -> dict:
        return await self._request("/user")

    async def get_user_repositories(
        self,
        visibility: Optional[str] = None,
        sort: Optional[str] = None,
        direction: Optional[str] = None,
        per_page: Optional[int] = None,
        page: Optional[int] = None,
    ) -> list[dict]:
        params = {
            key: value
            for key, value in (
                ("visibility", visibility),
                ("sort", sort),
                ("direction", direction),
                ("per_page", per_page),
                ("page", page),
            )
            if value
        }
        query = f"?{urlencode(params)}" if params else ""
        repos = await self._request(f"/user/repos{query}")
        return [trim_repository(repo) for repo in repos]

    async def get_all_user_repositories(self) -> list[dict]:
        """Page through every repository visible to the token."""
        per_page = 100
        page = 1
        everything: list[dict] = []
        while True:
            repos = await self.get_user_repositories(
                visibility="all",
                sort="updated",
                direction="desc",
                per_page=per_page,
                page=page,
            )
            everything.extend(repos)
            if len(repos) < per_page:
                break
            page += 1
        return everything

    async def search_user_repositories(self, query: str) -> list[dict]:
        """Search the token owner's repositories.

        A blank query returns the 50 most recently updated repositories.
        """
        if not query.strip():
            return await self.get_user_repositories(
                sort="updated", direction="desc", per_page=50
            )
        user = await self.get_current_user()
        params = urlencode({"q": f"{query} user:{user['login']}", "sort": "updated"})
        result = await self._request(f"/search/repositories?{params}")
        return [trim_repository(repo) for repo in result.get("items", [])]

    async def list_installation_repositories(self, per_page: int = 100) -> list[dict]:
        """Repositories an installation token can access."""
        result = await self._request(f"/installation/repositories?per_page={per_page}")
        return [trim_repository(repo) for repo in result.get("repositories", [])]

    async def list_branches(self, owner: str, repo: str, per_page: int = 100) -> list[dict]:
        branches = await self._request(
            f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}/branches?per_page={per_page}"
        )
        return [trim_branch(branch) for branch in branches]
