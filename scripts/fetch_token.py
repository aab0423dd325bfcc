"""
CLI utility to check Upwind API credentials.

Performs the same client-credentials grant the MCP server uses and reports
what the server would see: how long the token will be reused and which
organization id it defaults to when a tool call leaves it out.

Credentials come from the usual settings (UPWIND_CLIENT_ID,
UPWIND_CLIENT_SECRET, optional UPWIND_AUTH_URL, or a .env file) and can be
overridden on the command line.

Usage examples:

    # Check the configured credentials
    python -m scripts.fetch_token

    # Also show the (unverified) token claims, minus exp/iat/sub
    python -m scripts.fetch_token --show-claims

    # Print only the raw token, e.g. for curl
    python -m scripts.fetch_token --raw

The raw token can be used with curl:

    curl -H "Authorization: Bearer <token>" \\
      https://api.upwind.io/v1/organizations/<org-id>/threat-policies
"""

import argparse
import asyncio
import datetime
import json
import sys

from pydantic import ValidationError

from upwind_mcp.auth import (
    AuthenticationError,
    Credentials,
    TokenManager,
    decode_unverified_claims,
    organization_id_from_claims,
)
from upwind_mcp.config import Settings


async def fetch_token(credentials: Credentials, timeout: float) -> TokenManager:
    """
    Run one client-credentials grant and return the manager holding the session.

    Raises:
        AuthenticationError: If the grant fails
    """
    tokens = TokenManager(credentials, timeout=timeout)
    try:
        await tokens.ensure_valid_token()
    finally:
        await tokens.aclose()
    return tokens


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Fetch an Upwind access token with the configured client credentials.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Check configured credentials:
    %(prog)s

  Override the client id and secret:
    %(prog)s --client-id abc --client-secret s3cr3t

  Show the token claims:
    %(prog)s --show-claims
        """,
    )

    parser.add_argument("--client-id", help="OAuth2 client id (default: UPWIND_CLIENT_ID)")
    parser.add_argument("--client-secret", help="OAuth2 client secret (default: UPWIND_CLIENT_SECRET)")
    parser.add_argument("--auth-url", help="Authorization server (default: UPWIND_AUTH_URL)")
    parser.add_argument(
        "--show-claims",
        action="store_true",
        help="Print the token payload claims (signature NOT verified)",
    )
    parser.add_argument(
        "--raw",
        action="store_true",
        help="Print only the access token",
    )

    args = parser.parse_args()

    overrides = {
        "client_id": args.client_id,
        "client_secret": args.client_secret,
        "auth_url": args.auth_url,
    }
    try:
        settings = Settings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        sys.exit(f"Invalid configuration: {e}")

    credentials = Credentials(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        auth_url=settings.auth_url,
    )

    try:
        tokens = asyncio.run(fetch_token(credentials, settings.request_timeout))
    except AuthenticationError as e:
        sys.exit(str(e))

    session = tokens.session
    if args.raw:
        print(session.access_token)
        return

    claims = decode_unverified_claims(session.access_token) or {}
    reuse_until = datetime.datetime.fromtimestamp(session.expires_at, tz=datetime.timezone.utc)

    print(f"Client ID:     {credentials.client_id}")
    print(f"Token URL:     {credentials.token_url}")
    print(f"Reused until:  {reuse_until.isoformat()}")
    print(f"Organization:  {organization_id_from_claims(claims) or '(not found in token)'}")

    if args.show_claims:
        visible = {k: v for k, v in claims.items() if k not in ("exp", "iat", "sub")}
        print()
        print("Token claims (unverified):")
        print(json.dumps(visible, indent=2))


if __name__ == "__main__":
    main()
