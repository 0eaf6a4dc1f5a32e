"""
aiohttp routes for the dashboard's GitHub integration.

Routes:
- ``GET|POST|DELETE /api/github/token`` — personal access token
- ``GET /api/github/install`` — install URL with an encrypted ``state``
- ``GET /api/github/callback`` — GitHub App installation callback
- ``POST /api/github/webhook`` — signed webhook deliveries
- ``GET /api/github/repos`` — repositories visible to the installation
- ``GET /api/github/branches`` — branches of one repository

Users are identified by an external ``authenticator``: an async callable
taking the bearer token and returning a user id, or None.
"""
import logging
from functools import wraps
from collections.abc import Awaitable, Callable
from typing import Any, Optional
from urllib.parse import urlencode

import aiohttp
import orjson
from aiohttp import web

from .exceptions import (
    AuthenticationError,
    DecodingError,
    GitHubAPIError,
    SecretCodecError,
    WebhookSignatureError,
)
from .github import GitHubAPI, GitHubAppAuth, GitHubAppConfig, WebhookVerifier
from .codec import SecretCodec
from .store import SecuritySettingsStore

logger = logging.getLogger("shipstra.github")

Authenticator = Callable[[str], Awaitable[Optional[str]]]

CONFIG = web.AppKey("config", GitHubAppConfig)
STORE = web.AppKey("store", SecuritySettingsStore)
AUTHENTICATOR = web.AppKey("authenticator", Callable)
STATE_CODEC = web.AppKey("state_codec", SecretCodec)
VERIFIER = web.AppKey("verifier", WebhookVerifier)
APP_AUTH = web.AppKey("app_auth", GitHubAppAuth)
HTTP_SESSION = web.AppKey("http_session", aiohttp.ClientSession)
USER_ID = web.RequestKey("user_id", str)

CREATE_PROJECT = "/create-project"

_REPOS_ERRORS = {
    401: "Invalid GitHub App installation",
    403: "GitHub API rate limit exceeded",
    404: "GitHub installation not found",
}
_BRANCHES_ERRORS = {
    401: "Invalid GitHub App installation",
    403: "Access denied to repository",
    404: "Repository not found or not accessible",
}

routes = web.RouteTableDef()


def _json(data: Any, status: int = 200) -> web.Response:
    return web.json_response(
        data, status=status, dumps=lambda obj: orjson.dumps(obj).decode("utf-8")
    )


def _error(message: str, status: int) -> web.Response:
    return _json({"error": message}, status=status)


def _github_error(err: GitHubAPIError, messages: dict, fallback: str) -> web.Response:
    if err.status in messages:
        return _error(messages[err.status], err.status)
    logger.error("GitHub request failed: %r", err)
    return _error(fallback, 500)


def _redirect(path: str, **params: str) -> web.HTTPFound:
    query = f"?{urlencode(params)}" if params else ""
    return web.HTTPFound(f"{path}{query}")


def authenticated(handler):
    """Resolve the bearer token to ``request[USER_ID]`` or answer 401."""
    @wraps(handler)
    async def wrapper(request: web.Request) -> web.StreamResponse:
        header = request.headers.get("Authorization")
        if not header:
            return _error("Unauthorized", 401)
        token = header.removeprefix("Bearer ").strip()
        user_id = await request.app[AUTHENTICATOR](token)
        if not user_id:
            logger.warning("Rejected bearer token on %s", request.path)
            return _error("Unauthorized", 401)
        request[USER_ID] = user_id
        return await handler(request)
    return wrapper


def _github_api(request: web.Request, token: str) -> GitHubAPI:
    return GitHubAPI(
        token,
        session=request.app[HTTP_SESSION],
        base_url=request.app[CONFIG].api_url,
    )


@web.middleware
async def stored_secret_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Turn failures to decrypt a stored credential into 500 responses."""
    try:
        return await handler(request)
    except AuthenticationError:
        logger.error(
            "Integrity check failed on stored credential for user=%s (%s)",
            request.get(USER_ID), request.path,
        )
        return _error("Stored credential could not be verified", 500)
    except DecodingError:
        logger.error(
            "Stored credential is corrupted for user=%s (%s)",
            request.get(USER_ID), request.path,
        )
        return _error("Stored credential is corrupted", 500)


# ---------------------------------------------------------------------------
# Personal access token
# ---------------------------------------------------------------------------

@routes.get("/api/github/token")
@authenticated
async def get_token(request: web.Request) -> web.Response:
    stored = await request.app[STORE].load_github_token(request[USER_ID])
    return _json(stored.model_dump())


@routes.post("/api/github/token")
@authenticated
async def save_token(request: web.Request) -> web.Response:
    try:
        body = await request.json(loads=orjson.loads)
    except orjson.JSONDecodeError:
        return _error("Invalid JSON body", 400)
    access_token = body.get("access_token") if isinstance(body, dict) else None
    if not access_token or not isinstance(access_token, str):
        return _error("Access token is required", 400)

    async with _github_api(request, access_token) as api:
        try:
            github_user = await api.get_current_user()
        except GitHubAPIError:
            return _error("Invalid GitHub access token", 400)

    await request.app[STORE].save_github_token(
        request[USER_ID], access_token, github_user.get("login")
    )
    return _json({"success": True})


@routes.delete("/api/github/token")
@authenticated
async def delete_token(request: web.Request) -> web.Response:
    await request.app[STORE].clear_github_token(request[USER_ID])
    return _json({"success": True})


# ---------------------------------------------------------------------------
# GitHub App installation
# ---------------------------------------------------------------------------

@routes.get("/api/github/install")
@authenticated
async def install_url(request: web.Request) -> web.Response:
    state = request.app[STATE_CODEC].encrypt(request[USER_ID])
    return _json({"url": request.app[CONFIG].install_url(state)})


@routes.get("/api/github/callback")
async def installation_callback(request: web.Request) -> web.StreamResponse:
    installation_id = request.query.get("installation_id")
    setup_action = request.query.get("setup_action")
    state = request.query.get("state")

    if not installation_id:
        raise _redirect(CREATE_PROJECT, error="missing_installation")

    if setup_action != "install":
        raise _redirect(CREATE_PROJECT)

    if not state:
        return _error("Unauthorized", 401)

    try:
        user_id = request.app[STATE_CODEC].decrypt(state)
        await request.app[STORE].save_installation_id(user_id, int(installation_id))
    except (SecretCodecError, ValueError) as err:
        logger.warning(
            "Rejected GitHub App installation callback: %s", type(err).__name__
        )
        raise _redirect(CREATE_PROJECT, error="installation_failed") from None

    raise _redirect(
        CREATE_PROJECT, github_installation=installation_id, status="connected"
    )


@routes.post("/api/github/webhook")
async def webhook(request: web.Request) -> web.Response:
    body = await request.read()
    try:
        event = request.app[VERIFIER].parse(body, request.headers)
    except WebhookSignatureError as err:
        return _error(err.message, err.status)
    except DecodingError:
        return _error("Invalid webhook payload", 400)

    logger.info(
        "GitHub webhook %s action=%s installation=%s",
        event.event, event.action, event.installation_id,
    )
    if (
        event.event == "installation"
        and event.action == "deleted"
        and event.installation_id is not None
    ):
        request.app[APP_AUTH].forget(event.installation_id)
    return _json({"data": "GITHUB_WEBHOOK"})


# ---------------------------------------------------------------------------
# Installation-scoped GitHub reads
# ---------------------------------------------------------------------------

@routes.get("/api/github/repos")
@authenticated
async def list_repositories(request: web.Request) -> web.Response:
    installation_id = await request.app[STORE].load_installation_id(request[USER_ID])
    if installation_id is None:
        return _error("Installation ID is required", 400)

    try:
        token = await request.app[APP_AUTH].installation_token(installation_id)
    except GitHubAPIError as err:
        logger.error("Failed to get installation token: %r", err)
        return _error("Failed to authenticate with GitHub App installation", 500)

    async with _github_api(request, token) as api:
        try:
            repositories = await api.list_installation_repositories()
        except GitHubAPIError as err:
            return _github_error(err, _REPOS_ERRORS, "Failed to fetch repositories")
    return _json({"repositories": repositories})


@routes.get("/api/github/branches")
@authenticated
async def list_branches(request: web.Request) -> web.Response:
    owner = request.query.get("owner")
    repo = request.query.get("repo")
    installation_id = await request.app[STORE].load_installation_id(request[USER_ID])
    if installation_id is None or not owner or not repo:
        return _error("Installation ID, owner, and repo are required", 400)

    try:
        token = await request.app[APP_AUTH].installation_token(installation_id)
        async with _github_api(request, token) as api:
            branches = await api.list_branches(owner, repo)
    except GitHubAPIError as err:
        return _github_error(err, _BRANCHES_ERRORS, "Failed to fetch branches")
    return _json({"branches": branches})


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

async def _github_client(app: web.Application):
    session = aiohttp.ClientSession()
    app[HTTP_SESSION] = session
    app[APP_AUTH] = GitHubAppAuth.from_config(app[CONFIG], session=session)
    yield
    await session.close()


def create_app(
    config: GitHubAppConfig,
    db_pool: Any,
    authenticator: Authenticator,
) -> web.Application:
    """Build the aiohttp application serving the GitHub routes.

    Args:
        config: GitHub App settings and codec secrets.
        db_pool: asyncpg-compatible pool holding ``user_security_settings``.
        authenticator: Resolves a bearer token to a user id.
    """
    app = web.Application(middlewares=[stored_secret_middleware])
    app[CONFIG] = config
    app[AUTHENTICATOR] = authenticator
    app[STATE_CODEC] = config.state_codec()
    app[VERIFIER] = WebhookVerifier(config.webhook_secret)
    app[STORE] = SecuritySettingsStore(
        db_pool,
        token_codec=config.token_codec(),
        installation_codec=config.installation_codec(),
    )
    app.cleanup_ctx.append(_github_client)
    app.add_routes(routes)
    return app
