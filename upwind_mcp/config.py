"""
Application configuration loaded from environment variables.

Uses pydantic-settings to define typed configuration that automatically reads
from environment variables (and a local .env file, if present).

Required:
- UPWIND_CLIENT_ID, UPWIND_CLIENT_SECRET: OAuth2 client credentials issued by
  the Upwind console. The server refuses to start without them.

Optional:
- UPWIND_BASE_URL, UPWIND_AUTH_URL: API and token endpoints (production by default)
- UPWIND_TRANSPORT: "stdio" (default) or "sse"
- UPWIND_HOST / HOST, UPWIND_PORT / PORT: bind address for the SSE transport
- UPWIND_LOG_LEVEL, UPWIND_REQUEST_TIMEOUT
"""

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Server configuration with environment variable bindings.

    Each field maps to an environment variable with the UPWIND_ prefix.
    For example, `client_id` reads from UPWIND_CLIENT_ID. The SSE bind
    address also honours the bare HOST and PORT variables.
    """

    # --- Upwind credentials ---

    # No defaults: a missing value fails validation when Settings is built.
    client_id: str
    client_secret: str

    # --- Upwind endpoints ---

    base_url: str = "https://api.upwind.io"
    auth_url: str = "https://auth.upwind.io"

    # Global connect/read timeout for every outbound call, in seconds.
    request_timeout: float = 30.0

    # --- Server settings ---

    transport: Literal["stdio", "sse"] = "stdio"

    host: str = Field(
        default="localhost",
        validation_alias=AliasChoices("UPWIND_HOST", "HOST", "host"),
    )
    port: int = Field(
        default=3000,
        validation_alias=AliasChoices("UPWIND_PORT", "PORT", "port"),
    )

    log_level: str = "info"

    model_config = {
        "env_prefix": "UPWIND_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        # .env files often carry unrelated variables (PORT for other tools, etc.)
        "extra": "ignore",
        "populate_by_name": True,
    }


@lru_cache
def get_settings() -> Settings:
    """
    Build the settings once, on first use.

    Kept lazy so that importing the server module (e.g. from tests) does not
    require credentials in the environment.
    """
    return Settings()
