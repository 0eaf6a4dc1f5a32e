"""
Shared fixtures: fast codec settings, an in-memory asyncpg-style pool,
a GitHub App key pair and a fake GitHub REST API served by aiohttp.
"""
import re
import asyncio
from datetime import datetime, timedelta, timezone

import jwt
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from shipstra_vault.codec import CodecConfig, SecretCodec
from shipstra_vault.github import GitHubAppConfig

FAST_ITERATIONS = 1000


@pytest.fixture
def fast_config():
    """Codec settings with a cheap key derivation for tests."""
    return CodecConfig(key_derivation_iterations=FAST_ITERATIONS)


@pytest.fixture
def codec(fast_config):
    return SecretCodec("unit-test-secret", fast_config)


# --- asyncpg-compatible fake pool ---

class FakeTransaction:
    def __init__(self, conn):
        self._conn = conn

    async def start(self):
        self._conn.transactions.append("start")

    async def commit(self):
        self._conn.transactions.append("commit")

    async def rollback(self):
        self._conn.transactions.append("rollback")


class FakeConnection:
    """Understands exactly the statements the package issues."""

    _BATCH = re.compile(r"SELECT id, user_id, (\w+) AS value")
    _UPDATE = re.compile(r"SET (\w+) = \$1, updated_at = NOW\(\)\s+WHERE id = \$2")

    def __init__(self, pool):
        self._pool = pool
        self.transactions = pool.transactions

    def transaction(self):
        return FakeTransaction(self)

    async def fetchrow(self, sql, user_id):
        self._pool.statements.append((sql, (user_id,)))
        row = self._pool.rows.get(user_id)
        return dict(row) if row is not None else None

    async def fetch(self, sql, limit, offset):
        self._pool.statements.append((sql, (limit, offset)))
        column = self._BATCH.search(sql).group(1)
        rows = sorted(
            (row for row in self._pool.rows.values() if row.get(column) is not None),
            key=lambda row: row["id"],
        )
        return [
            {"id": row["id"], "user_id": row["user_id"], "value": row[column]}
            for row in rows[offset:offset + limit]
        ]

    async def execute(self, sql, *args):
        self._pool.statements.append((sql, args))
        if self._pool.fail_on_execute:
            raise RuntimeError("database unavailable")
        if sql.lstrip().startswith("INSERT") and "github_username" in sql:
            user_id, token, username = args
            row = self._pool.ensure(user_id)
            row.update(
                github_encrypted_token=token,
                github_username=username,
                github_token_updated_at="now",
            )
        elif sql.lstrip().startswith("INSERT") and "github_app_installation_id" in sql:
            user_id, installation = args
            row = self._pool.ensure(user_id)
            row.update(
                github_app_installation_id=installation,
                github_app_installation_id_updated_at="now",
            )
        elif "github_encrypted_token = NULL" in sql:
            row = self._pool.rows.get(args[0])
            if row is not None:
                row.update(
                    github_encrypted_token=None,
                    github_username=None,
                    github_token_updated_at=None,
                )
        else:
            match = self._UPDATE.search(sql)
            assert match, f"unexpected SQL: {sql}"
            value, row_id = args
            for row in self._pool.rows.values():
                if row["id"] == row_id:
                    row[match.group(1)] = value
        return "OK"


class _Acquire:
    def __init__(self, pool):
        self._pool = pool

    async def __aenter__(self):
        return FakeConnection(self._pool)

    async def __aexit__(self, *exc):
        return False


class FakePool:
    """In-memory ``user_security_settings`` keyed by user id."""

    def __init__(self):
        self.rows: dict[str, dict] = {}
        self.statements: list[tuple] = []
        self.transactions: list[str] = []
        self.fail_on_execute = False

    def acquire(self):
        return _Acquire(self)

    def ensure(self, user_id):
        if user_id not in self.rows:
            self.rows[user_id] = {
                "id": len(self.rows) + 1,
                "user_id": user_id,
                "github_encrypted_token": None,
                "github_username": None,
                "github_token_updated_at": None,
                "github_app_installation_id": None,
                "github_app_installation_id_updated_at": None,
            }
        return self.rows[user_id]

    def logged_args(self):
        return [arg for _, args in self.statements for arg in args]


@pytest.fixture
def db_pool():
    return FakePool()


# --- GitHub App ---

@pytest.fixture(scope="session")
def app_key_pair():
    """RSA key pair as PEM strings (private, public)."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return private_pem, public_pem


@pytest.fixture
def github_config(app_key_pair, fast_config):
    return GitHubAppConfig(
        app_id="12345",
        app_name="shipstra-test",
        private_key=app_key_pair[0],
        installation_secret="installation-secret",
        state_secret="state-secret",
        token_secret="token-secret",
        webhook_secret="webhook-secret",
        codec=fast_config,
    )


def make_repo(number: int, owner: str = "octocat") -> dict:
    return {
        "id": number,
        "name": f"repo-{number}",
        "full_name": f"{owner}/repo-{number}",
        "description": None,
        "private": number % 2 == 0,
        "html_url": f"https://github.com/{owner}/repo-{number}",
        "clone_url": f"https://github.com/{owner}/repo-{number}.git",
        "ssh_url": f"git@github.com:{owner}/repo-{number}.git",
        "git_url": f"git://github.com/{owner}/repo-{number}.git",
        "owner": {"login": owner, "avatar_url": "https://avatars/1", "id": 1},
        "default_branch": "main",
        "language": "Python",
        "stargazers_count": number,
        "updated_at": "2026-01-01T00:00:00Z",
        "forks": 3,
    }


class FakeGitHub:
    """Minimal GitHub REST API.

    Personal tokens: ``ghp_valid`` (ok), ``ghp_limited`` (403), anything
    else 401. Installation ``404`` does not exist; other installations get
    ``ghs_inst_<id>`` tokens. Exchanges for ids in ``hold`` wait on the event.
    """

    def __init__(self, public_key: str):
        self.public_key = public_key
        self.token_requests: list[int] = []
        self.requests: list[str] = []
        self.total_user_repos = 103
        self.hold: dict[int, asyncio.Event] = {}
        self.app = web.Application()
        self.app.add_routes([
            web.post("/app/installations/{id}/access_tokens", self.access_tokens),
            web.get("/user", self.user),
            web.get("/user/repos", self.user_repos),
            web.get("/search/repositories", self.search),
            web.get("/installation/repositories", self.installation_repos),
            web.get("/repos/{owner}/{repo}/branches", self.branches),
        ])

    def _token(self, request):
        return request.headers.get("Authorization", "").removeprefix("Bearer ")

    def _check_personal(self, request):
        self.requests.append(str(request.rel_url))
        token = self._token(request)
        if token == "ghp_limited":
            raise web.HTTPForbidden()
        if token != "ghp_valid":
            raise web.HTTPUnauthorized()

    async def access_tokens(self, request):
        claims = jwt.decode(self._token(request), self.public_key, algorithms=["RS256"])
        assert claims["iss"] == "12345"
        installation = int(request.match_info["id"])
        self.token_requests.append(installation)
        if installation in self.hold:
            await self.hold[installation].wait()
        if installation == 404:
            raise web.HTTPNotFound()
        expires = datetime.now(timezone.utc) + timedelta(hours=1)
        return web.json_response({
            "token": f"ghs_inst_{installation}",
            "expires_at": expires.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }, status=201)

    async def user(self, request):
        self._check_personal(request)
        return web.json_response({"login": "octocat", "id": 1, "name": None})

    async def user_repos(self, request):
        self._check_personal(request)
        per_page = int(request.query.get("per_page", 30))
        page = int(request.query.get("page", 1))
        numbers = range(1, self.total_user_repos + 1)
        chunk = list(numbers)[(page - 1) * per_page:page * per_page]
        return web.json_response([make_repo(n) for n in chunk])

    async def search(self, request):
        self._check_personal(request)
        return web.json_response({"total_count": 1, "items": [make_repo(7)]})

    async def installation_repos(self, request):
        self.requests.append(str(request.rel_url))
        if not self._token(request).startswith("ghs_inst_"):
            raise web.HTTPUnauthorized()
        return web.json_response({"total_count": 2, "repositories": [make_repo(1), make_repo(2)]})

    async def branches(self, request):
        self.requests.append(str(request.rel_url))
        if request.match_info["repo"] == "missing":
            raise web.HTTPNotFound()
        return web.json_response([
            {"name": "main", "commit": {"sha": "abc123", "url": "https://api/c/abc123"}, "protected": True},
            {"name": "dev", "commit": {"sha": "def456", "url": "https://api/c/def456"}, "protected": False},
        ])


@pytest_asyncio.fixture
async def fake_github(app_key_pair):
    github = FakeGitHub(app_key_pair[1])
    server = TestServer(github.app)
    await server.start_server()
    github.url = str(server.make_url("/")).rstrip("/")
    yield github
    await server.close()
