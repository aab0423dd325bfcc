"""
Tests for environment-based configuration (upwind_mcp/config.py) and the
startup credential check in server.load_settings().
"""

import pytest
from pydantic import ValidationError

from upwind_mcp.config import Settings, get_settings
from upwind_mcp.server import load_settings

UPWIND_VARS = (
    "UPWIND_CLIENT_ID",
    "UPWIND_CLIENT_SECRET",
    "UPWIND_BASE_URL",
    "UPWIND_AUTH_URL",
    "UPWIND_TRANSPORT",
    "UPWIND_HOST",
    "UPWIND_PORT",
    "HOST",
    "PORT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Start each test without Upwind variables and away from any local .env file."""
    for name in UPWIND_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_missing_credentials_fail_validation():
    with pytest.raises(ValidationError):
        Settings()


def test_credentials_and_defaults_from_environment(monkeypatch):
    monkeypatch.setenv("UPWIND_CLIENT_ID", "client-abc")
    monkeypatch.setenv("UPWIND_CLIENT_SECRET", "secret-xyz")

    settings = Settings()

    assert settings.client_id == "client-abc"
    assert settings.client_secret == "secret-xyz"
    assert settings.base_url == "https://api.upwind.io"
    assert settings.auth_url == "https://auth.upwind.io"
    assert settings.transport == "stdio"
    assert settings.host == "localhost"
    assert settings.port == 3000
    assert settings.request_timeout == 30.0


def test_endpoints_and_transport_overrides(monkeypatch):
    monkeypatch.setenv("UPWIND_CLIENT_ID", "client-abc")
    monkeypatch.setenv("UPWIND_CLIENT_SECRET", "secret-xyz")
    monkeypatch.setenv("UPWIND_BASE_URL", "https://api.eu.upwind.io")
    monkeypatch.setenv("UPWIND_AUTH_URL", "https://auth.eu.upwind.io")
    monkeypatch.setenv("UPWIND_TRANSPORT", "sse")
    monkeypatch.setenv("PORT", "8080")

    settings = Settings()

    assert settings.base_url == "https://api.eu.upwind.io"
    assert settings.auth_url == "https://auth.eu.upwind.io"
    assert settings.transport == "sse"
    assert settings.port == 8080


def test_prefixed_port_wins_over_bare_port(monkeypatch):
    monkeypatch.setenv("UPWIND_CLIENT_ID", "client-abc")
    monkeypatch.setenv("UPWIND_CLIENT_SECRET", "secret-xyz")
    monkeypatch.setenv("UPWIND_PORT", "9000")
    monkeypatch.setenv("PORT", "8080")

    assert Settings().port == 9000


def test_credentials_read_from_dotenv_file(tmp_path):
    (tmp_path / ".env").write_text("UPWIND_CLIENT_ID=from-file\nUPWIND_CLIENT_SECRET=file-secret\n")

    settings = Settings()

    assert settings.client_id == "from-file"
    assert settings.client_secret == "file-secret"


def test_startup_exits_when_credentials_missing():
    with pytest.raises(SystemExit) as exc_info:
        load_settings()

    assert "UPWIND_CLIENT_ID and UPWIND_CLIENT_SECRET" in str(exc_info.value.code)


def test_startup_returns_settings_when_configured(monkeypatch):
    monkeypatch.setenv("UPWIND_CLIENT_ID", "client-abc")
    monkeypatch.setenv("UPWIND_CLIENT_SECRET", "secret-xyz")

    assert load_settings().client_id == "client-abc"
