"""
Shared test fixtures for the Upwind MCP server test suite.

Key fixtures:
- make_token: A factory that mints JWT access tokens with any claims
- clock: A controllable clock for token expiry tests
- upwind: An in-memory stand-in for the Upwind token endpoint and REST API,
  served through httpx.MockTransport (no network needed)
- settings: Settings pointing at the fake endpoints

Testing approach:
- test_auth.py: TokenManager and token decoding in isolation
- test_client.py: UpwindClient request building and error normalization
- test_tools.py: The full MCP server through an in-memory fastmcp.Client
- test_config.py: Environment variable handling and startup checks
"""

import asyncio
import datetime

import httpx
import jwt
import pytest

from upwind_mcp.auth import Credentials, TokenManager
from upwind_mcp.config import Settings

# Upwind signs its tokens with its own key; we never verify them, so any key works.
UPSTREAM_SIGNING_KEY = "upstream-signing-key-used-only-in-tests"

API_HOST = "api.upwind.test"
AUTH_HOST = "auth.upwind.test"


# ---------------------------------------------------------------------------
# Token factory fixture
# ---------------------------------------------------------------------------
@pytest.fixture
def make_token():
    """
    Factory fixture to mint access tokens shaped like Upwind's.

    Usage in tests:
        def test_something(make_token):
            token = make_token({"org_id": "org-123"})
    """

    def _make_token(claims: dict | None = None, exp_hours: float = 1.0) -> str:
        now = datetime.datetime.now(datetime.timezone.utc)
        payload = {
            "sub": "client-credentials@upwind",
            "iat": now,
            "exp": now + datetime.timedelta(hours=exp_hours),
        }
        payload.update(claims or {})
        return jwt.encode(payload, UPSTREAM_SIGNING_KEY, algorithm="HS256")

    return _make_token


# ---------------------------------------------------------------------------
# Clock fixture
# ---------------------------------------------------------------------------
class FakeClock:
    """Callable returning a Unix time that only moves when told to."""

    def __init__(self, now: float = 1_750_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# Fake Upwind
# ---------------------------------------------------------------------------
class FakeUpwind:
    """
    In-memory Upwind: a token endpoint plus canned API responses.

    Attributes:
        token: access_token returned by the token endpoint
        expires_in: Lifetime reported with the token, in seconds
        token_status: Status code of the token endpoint (200 = success)
        token_body: Overrides the token endpoint body (e.g. to make it malformed)
        token_error: Exception raised instead of answering the token request
        api_error: Exception raised instead of answering API requests
        token_requests / api_requests: Every request received, in order
    """

    def __init__(self, token: str):
        self.token = token
        self.expires_in = 3600
        self.token_status = 200
        self.token_body = None
        self.token_error = None
        self.api_error = None
        self.token_delay = 0.0
        self.token_requests: list[httpx.Request] = []
        self.api_requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], tuple[int, object]] = {}

    def respond(self, method: str, path: str, json=None, status_code: int = 200) -> None:
        """Register the response for METHOD path (path without query string)."""
        self._routes[(method, path)] = (status_code, json)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == AUTH_HOST and request.url.path == "/oauth/token":
            return await self._token_response(request)

        self.api_requests.append(request)
        if self.api_error is not None:
            raise self.api_error

        status_code, body = self._routes.get(
            (request.method, request.url.path),
            (404, {"error": "not_found", "message": "No such resource"}),
        )
        return httpx.Response(status_code, json=body)

    async def _token_response(self, request: httpx.Request) -> httpx.Response:
        self.token_requests.append(request)
        if self.token_delay:
            # Lets concurrent callers pile up behind an in-flight refresh.
            await asyncio.sleep(self.token_delay)
        if self.token_error is not None:
            raise self.token_error
        if self.token_status != 200:
            return httpx.Response(self.token_status, json={"error": "invalid_client"})
        if self.token_body is not None:
            return httpx.Response(200, content=self.token_body)
        return httpx.Response(
            200,
            json={
                "access_token": self.token,
                "token_type": "Bearer",
                "expires_in": self.expires_in,
            },
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def upwind(make_token):
    """A fake Upwind whose token names organization org-from-token."""
    return FakeUpwind(make_token({"organizationId": "org-from-token"}))


@pytest.fixture
def settings():
    return Settings(
        client_id="test-client",
        client_secret="test-secret",
        base_url=f"https://{API_HOST}",
        auth_url=f"https://{AUTH_HOST}",
        _env_file=None,
    )


@pytest.fixture
async def token_manager(upwind, clock):
    http_client = httpx.AsyncClient(transport=upwind.transport)
    manager = TokenManager(
        Credentials(
            client_id="test-client",
            client_secret="test-secret",
            auth_url=f"https://{AUTH_HOST}",
        ),
        http_client=http_client,
        clock=clock,
    )
    yield manager
    await manager.aclose()
