"""Shared test fixtures for idptoken.

Provides reusable fixtures for building flow configurations, stubbing the
IDP with :class:`httpx.MockTransport`, isolating the environment and
running CLI commands. These fixtures are automatically discovered by pytest
and available to all test modules without explicit imports.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import pytest

from idptoken.models import FlowConfig
from idptoken.output import OutputFormat, OutputManager, reset_output, set_output
from idptoken.pkce import derive_code_challenge

# RFC 7636 appendix B
RFC_VERIFIER = "dBjftJeZ4CVP-mJ92K4cB9DmhLhEUNh1qX5eo2ZNg-c"
RFC_CHALLENGE = "E9Melhoa2OwvFrEMTJguCQM5HlrxP2FjIeGOdV_gYgc"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file").  Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------


def make_config(**overrides: Any) -> FlowConfig:
    """Build a valid :class:`FlowConfig` for the example IDP.

    PKCE is off unless requested, so authorization URLs stay short.
    """
    values: dict[str, Any] = {
        "auth_endpoint": "https://idp.example/authorize",
        "token_endpoint": "https://idp.example/token",
        "userinfo_endpoint": "https://idp.example/userinfo",
        "client_id": "abc",
        "client_secret": "s3cret",
        "scope": "openid offline_access",
        "state": "xyz",
        "pkce": False,
        "no_browser": True,
    }
    if overrides.get("pkce"):
        values["code_verifier"] = RFC_VERIFIER
        values["code_challenge"] = derive_code_challenge(RFC_VERIFIER)
    values.update(overrides)
    return FlowConfig(**values)


@pytest.fixture
def flow_config() -> FlowConfig:
    """A valid configuration for ``https://idp.example`` without PKCE."""
    return make_config()


@pytest.fixture
def config_factory() -> Callable[..., FlowConfig]:
    """:func:`make_config` for tests that need variations."""
    return make_config


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Clear ``IDPTOKEN_*`` variables and point the data dir at *tmp_path*."""
    for var in list(os.environ):
        if var.startswith("IDPTOKEN_"):
            monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.delenv("BROWSER", raising=False)
    return tmp_path


# ---------------------------------------------------------------------------
# IDP stub
# ---------------------------------------------------------------------------


class FakeIdp:
    """Records requests and answers them from per-path handlers.

    Example::

        idp = FakeIdp()
        idp.token_response = {"access_token": "AT1"}
        client = idp.client()
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_response: Any = {
            "access_token": "AT1",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "RT1",
        }
        self.token_status = 200
        self.userinfo_response: Any = {"sub": "user-1", "email": "user@idp.example"}
        self.userinfo_status = 200
        self.metadata_response: Any = {
            "authorization_endpoint": "https://idp.example/authorize",
            "token_endpoint": "https://idp.example/token",
            "userinfo_endpoint": "https://idp.example/userinfo",
        }
        self.raise_on: Optional[str] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if self.raise_on == path:
            raise httpx.ConnectError("connection refused", request=request)
        if path == "/token":
            return _respond(self.token_status, self.token_response)
        if path == "/userinfo":
            return _respond(self.userinfo_status, self.userinfo_response)
        if path == "/.well-known/openid-configuration":
            return _respond(200, self.metadata_response)
        return httpx.Response(404, text="not found")

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def token_forms(self) -> list[dict[str, str]]:
        """Decoded form bodies of every token endpoint request."""
        from urllib.parse import parse_qsl

        return [dict(parse_qsl(r.content.decode())) for r in self.requests_to("/token")]


def _respond(status: int, payload: Any) -> httpx.Response:
    if isinstance(payload, str):
        return httpx.Response(status, text=payload)
    return httpx.Response(status, content=json.dumps(payload).encode(), headers={"content-type": "application/json"})


@pytest.fixture
def fake_idp() -> FakeIdp:
    return FakeIdp()


@pytest.fixture
def idp_client(fake_idp: FakeIdp) -> httpx.Client:
    client = fake_idp.client()
    yield client
    client.close()


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def json_output() -> OutputManager:
    """Install a plain JSON, colourless OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.JSON, no_color=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def verbose_output() -> OutputManager:
    """Install a verbose, colourless OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.JSON, no_color=True, verbose=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


@pytest.fixture
def patch_http(monkeypatch: pytest.MonkeyPatch, fake_idp: FakeIdp) -> Callable[..., httpx.Client]:
    """Make ``idptoken fetch`` talk to *fake_idp* instead of the network."""

    def factory(timeout: float = 30.0, transport: Any = None) -> httpx.Client:
        return fake_idp.client()

    monkeypatch.setattr("idptoken.commands.fetch.create_http_client", factory)
    return factory
