"""
In-process fake of the remote services, served by aiohttp's test server.

Covers just enough of GitHub's device flow, the Supabase edge functions
and PostgREST (``eq.`` filters, unique constraints, ``23505`` conflicts)
to exercise the HTTP clients end to end.
"""

from __future__ import annotations

import itertools
from typing import Any

from aiohttp import test_utils, web

UNIQUE_KEYS = {
    "repos": ("owner_name", "repo_name"),
    "tasks": ("repo_id", "name"),
    "sessions": ("client_id",),
    "users": ("id",),
}

VALID_IDENTITY_TOKEN = "gho_validtoken"
SESSION_EXPIRES_AT = 2_000_000_000


class FakeBackend:
    """Mutable state behind the fake app; tests poke at it directly."""

    def __init__(self):
        self.tables: dict[str, list[dict[str, Any]]] = {name: [] for name in UNIQUE_KEYS}
        self.requests: list[tuple[str, str]] = []
        self.inserted: list[tuple[str, dict[str, Any]]] = []
        self.poll_responses: list[dict[str, Any]] = []
        self.revoked_identity_tokens: set[str] = set()
        self.revoked_session_tokens: list[str] = []
        self.rejected_session_tokens: set[str] = set()
        self.rest_failure: int | None = None
        self.refresh_failure: int | None = None
        self._ids = itertools.count(1)
        self.server: test_utils.TestServer | None = None

    @property
    def url(self) -> str:
        return str(self.server.make_url("")).rstrip("/")

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/login/device/code", self.device_code)
        app.router.add_post("/login/oauth/access_token", self.access_token)
        app.router.add_get("/user", self.github_user)
        app.router.add_post("/functions/v1/github-login", self.github_login)
        app.router.add_post("/functions/v1/token-refresh", self.token_refresh)
        app.router.add_post("/functions/v1/logout", self.logout)
        app.router.add_get("/rest/v1/{table}", self.select)
        app.router.add_post("/rest/v1/{table}", self.insert)
        return app

    async def start(self) -> FakeBackend:
        self.server = test_utils.TestServer(self.app())
        await self.server.start_server()
        return self

    async def close(self) -> None:
        if self.server is not None:
            await self.server.close()

    @staticmethod
    def _bearer(request: web.Request) -> str:
        return request.headers.get("Authorization", "").removeprefix("Bearer ")

    def _grant(self, user_id: str = "u-1") -> dict[str, Any]:
        return {"access_token": f"jwt-{next(self._ids)}", "expires_at": SESSION_EXPIRES_AT, "user": {"id": user_id}}

    # -- GitHub --------------------------------------------------------

    async def device_code(self, request: web.Request) -> web.Response:
        form = await request.post()
        if not form.get("client_id"):
            return web.json_response({"error": "unauthorized_client"}, status=400)
        return web.json_response(
            {
                "device_code": "dc-123",
                "user_code": "WDJB-MJHT",
                "verification_uri": "https://github.com/login/device",
                "interval": 5,
                "expires_in": 900,
            }
        )

    async def access_token(self, request: web.Request) -> web.Response:
        if self.poll_responses:
            return web.json_response(self.poll_responses.pop(0))
        return web.json_response({"error": "authorization_pending"})

    async def github_user(self, request: web.Request) -> web.Response:
        if self._bearer(request) != VALID_IDENTITY_TOKEN:
            return web.json_response({"message": "Bad credentials"}, status=401)
        return web.json_response({"id": 583231, "login": "octocat", "name": "The Octocat", "avatar_url": "a.png"})

    # -- edge functions ------------------------------------------------

    async def github_login(self, request: web.Request) -> web.Response:
        body = await request.json()
        if body.get("github_token") != VALID_IDENTITY_TOKEN:
            return web.json_response({"error": "Invalid GitHub token"}, status=401)
        return web.json_response(self._grant())

    async def token_refresh(self, request: web.Request) -> web.Response:
        body = await request.json()
        if self.refresh_failure == 429:
            return web.json_response({"error": "slow down"}, status=429, headers={"Retry-After": "30"})
        if self.refresh_failure is not None:
            return web.json_response({"error": "unavailable"}, status=self.refresh_failure)
        if body.get("github_token") in self.revoked_identity_tokens:
            return web.json_response(
                {"error": "GitHub token revoked", "code": "GITHUB_TOKEN_INVALID", "requiresReauth": True},
                status=401,
            )
        return web.json_response(self._grant())

    async def logout(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.revoked_session_tokens.append(body.get("access_token"))
        return web.json_response({"success": True})

    # -- PostgREST -----------------------------------------------------

    def _rest_guard(self, request: web.Request) -> web.Response | None:
        self.requests.append((request.method, request.match_info["table"]))
        if self.rest_failure is not None:
            return web.json_response({"message": "injected failure"}, status=self.rest_failure)
        if self._bearer(request) in self.rejected_session_tokens:
            return web.json_response({"message": "JWT expired"}, status=401)
        return None

    async def select(self, request: web.Request) -> web.Response:
        failure = self._rest_guard(request)
        if failure is not None:
            return failure

        rows = self.tables[request.match_info["table"]]
        filters = {k: v.removeprefix("eq.") for k, v in request.query.items() if k not in ("select", "limit")}
        matches = [row for row in rows if all(str(row.get(k)) == v for k, v in filters.items())]
        if "limit" in request.query:
            matches = matches[: int(request.query["limit"])]
        return web.json_response(matches)

    async def insert(self, request: web.Request) -> web.Response:
        failure = self._rest_guard(request)
        if failure is not None:
            return failure

        table = request.match_info["table"]
        row = dict(await request.json())
        self.inserted.append((table, dict(row)))
        keys = UNIQUE_KEYS[table]
        for existing in self.tables[table]:
            if all(existing.get(k) == row.get(k) for k in keys):
                if "merge-duplicates" in request.headers.get("Prefer", ""):
                    existing.update(row)
                    return web.Response(status=201)
                return web.json_response(
                    {"code": "23505", "message": "duplicate key value violates unique constraint"},
                    status=409,
                )

        row.setdefault("id", f"{table}-{next(self._ids)}")
        if table == "sessions":
            row["duration_ms"] = row["end_time"] - row["start_time"]
        self.tables[table].append(row)
        if "return=representation" in request.headers.get("Prefer", ""):
            return web.json_response([row], status=201)
        return web.Response(status=201)
