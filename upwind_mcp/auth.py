"""
OAuth2 client-credentials session for the Upwind API.

This module handles the outbound Authentication (AuthN) layer:
- Acquires access tokens with the client-credentials grant
- Caches the token and reuses it until shortly before it expires
- Serializes refreshes so concurrent tool calls trigger one token request
- Best-effort discovery of the caller's organization id from the token payload

Expiry handling:
    The token endpoint reports a lifetime (``expires_in``, seconds). We treat the
    token as stale EXPIRY_MARGIN_SECONDS before that, so a request never leaves
    with a token that is about to lapse in flight:

        expires_at = acquired_at + (expires_in - EXPIRY_MARGIN_SECONDS)

    A lifetime shorter than the margin yields an expiry in the past. The token
    is still used for the call that fetched it, and the next call fetches a new
    one. No special case.

Organization discovery:
    Upwind tokens are JWTs whose payload usually names the tenant. We read the
    payload WITHOUT verifying the signature. The result is only a default for
    the organization id parameter when the caller left it out; it must never be
    used to make an authorization decision. The Upwind API enforces access
    with the token itself.
"""

import asyncio
import binascii
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
from jwt.utils import base64url_decode

logger = logging.getLogger("upwind-mcp.auth")

EXPIRY_MARGIN_SECONDS = 300

# Claims that may carry the tenant id, checked in order. Dotted names are nested.
ORGANIZATION_ID_CLAIMS = (
    "organizationId",
    "org_id",
    "organization.id",
    "org",
    "tenant_id",
    "tenantId",
)

# Left out of the debug dump when no organization claim is found.
_UNINTERESTING_CLAIMS = ("exp", "iat", "sub")


class AuthenticationError(Exception):
    """
    Raised when an access token could not be obtained.

    Covers transport failures, rejected credentials (non-2xx) and token
    responses we can't use. The original exception is chained as __cause__
    and kept on ``cause`` for callers that log it.

    Attributes:
        message: Human-readable error description
        cause: The underlying exception
    """

    def __init__(self, message: str, cause: Exception | None = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


@dataclass(frozen=True)
class Credentials:
    """
    Client-credentials grant inputs, fixed for the lifetime of the process.

    Attributes:
        client_id: OAuth2 client id
        client_secret: OAuth2 client secret
        auth_url: Authorization server root; the token endpoint is {auth_url}/oauth/token
    """

    client_id: str
    client_secret: str = field(repr=False)
    auth_url: str = "https://auth.upwind.io"

    @property
    def token_url(self) -> str:
        return f"{self.auth_url.rstrip('/')}/oauth/token"


@dataclass
class Session:
    """
    The cached token. Owned and mutated only by TokenManager.

    Attributes:
        access_token: Bearer token, or None before the first acquisition
        expires_at: Unix timestamp after which the token must not be reused
    """

    access_token: str | None = None
    expires_at: float = 0.0

    def is_valid(self, now: float) -> bool:
        return self.access_token is not None and now < self.expires_at


class TokenManager:
    """
    Owns one client-credentials session and hands out valid bearer tokens.

    Args:
        credentials: Client id/secret and authorization server URL
        http_client: Client used for the token request. Created (with the
                     given timeout) when not supplied.
        clock: Returns the current Unix time; injectable for tests
        timeout: Timeout in seconds for a self-created http client
    """

    def __init__(
        self,
        credentials: Credentials,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
        timeout: float = 30.0,
    ):
        self.credentials = credentials
        self.session = Session()
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._clock = clock
        # One refresh at a time; waiters re-check the session once they get in.
        self._refresh_lock = asyncio.Lock()

    async def ensure_valid_token(self) -> str:
        """
        Return a bearer token, fetching a new one if the cached one is stale.

        Returns:
            The access token to put in the Authorization header

        Raises:
            AuthenticationError: If a new token was needed and could not be obtained.
                The session is left exactly as it was before the attempt.
        """
        # Fast path: no lock, no I/O.
        if self.session.is_valid(self._clock()):
            return self.session.access_token

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited for the lock.
            if self.session.is_valid(self._clock()):
                return self.session.access_token
            return await self._acquire_token()

    async def _acquire_token(self) -> str:
        try:
            response = await self._http.post(
                self.credentials.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.credentials.client_id,
                    "client_secret": self.credentials.client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            response.raise_for_status()
            body = response.json()
            access_token = body["access_token"]
            expires_in = float(body["expires_in"])
            if not isinstance(access_token, str) or not access_token:
                raise ValueError("access_token is empty or not a string")
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(
                "Token acquisition failed",
                extra={
                    "log_data": {
                        "token_url": self.credentials.token_url,
                        "client_id": self.credentials.client_id,
                        "error": f"{type(e).__name__}: {e}",
                    }
                },
            )
            raise AuthenticationError(f"Failed to authenticate with Upwind: {e}", cause=e) from e

        # Only reached on success, so a failed attempt never touches the session.
        self.session.access_token = access_token
        self.session.expires_at = self._clock() + (expires_in - EXPIRY_MARGIN_SECONDS)

        logger.info(
            "Access token acquired",
            extra={
                "log_data": {
                    "client_id": self.credentials.client_id,
                    "expires_in": expires_in,
                    "reuse_for_seconds": max(expires_in - EXPIRY_MARGIN_SECONDS, 0),
                }
            },
        )
        return access_token

    async def discover_organization_id(self) -> str | None:
        """
        Best-effort lookup of the organization id carried in the access token.

        Never raises: an authentication failure or an undecodable token both
        yield None. The value is NOT verified; use it only as a default for an
        omitted organization id.
        """
        try:
            token = await self.ensure_valid_token()
        except AuthenticationError as e:
            logger.warning("Could not discover organization id: %s", e.message)
            return None

        return organization_id_from_token(token)

    async def aclose(self) -> None:
        await self._http.aclose()


def decode_unverified_claims(token: str) -> dict[str, Any] | None:
    """
    Decode a JWT payload without checking its signature.

    Only the middle segment is read; the header and signature may be anything.
    Returns None unless the token has exactly three dot-separated segments and
    the middle one is base64url-encoded JSON object (missing ``=`` padding is
    restored by PyJWT).
    """
    if token.count(".") != 2:
        return None

    payload = token.split(".")[1]
    try:
        claims = json.loads(base64url_decode(payload))
    except (binascii.Error, ValueError) as e:
        logger.debug("Could not decode access token payload: %s", e)
        return None

    return claims if isinstance(claims, dict) else None


def organization_id_from_claims(claims: dict[str, Any]) -> str | None:
    """Return the first populated organization claim, following ORGANIZATION_ID_CLAIMS order."""
    for name in ORGANIZATION_ID_CLAIMS:
        value: Any = claims
        for part in name.split("."):
            value = value.get(part) if isinstance(value, dict) else None
        if value:
            return str(value)

    # Helps work out which claim a new tenant type uses.
    if logger.isEnabledFor(logging.DEBUG):
        visible = {k: v for k, v in claims.items() if k not in _UNINTERESTING_CLAIMS}
        logger.debug("No organization claim in token payload", extra={"log_data": {"claims": visible}})
    return None


def organization_id_from_token(token: str) -> str | None:
    claims = decode_unverified_claims(token)
    if claims is None:
        return None
    return organization_id_from_claims(claims)
