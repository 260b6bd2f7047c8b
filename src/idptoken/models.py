"""Pydantic models shared across idptoken.

**Configuration** -- :class:`FlowConfig`, the effective settings of a run,
built by :func:`idptoken.config.resolve_flow_config` and treated as read-only
by everything else.

**IDP payloads** -- :class:`TokenSet` (token endpoint response) and
:class:`IdpMetadata` (OIDC discovery document subset).
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_CALLBACK_PATH = "/oauth2/callback"
DEFAULT_PORT = 8080
DEFAULT_SCOPE = "openid offline_access"
DEFAULT_TIMEOUT = 30.0


class FlowConfig(BaseModel):
    """Effective configuration for one token flow.

    The PKCE verifier/challenge pair and the expected ``state`` together
    form the single pending authorization of the process.

    Example::

        FlowConfig(
            auth_endpoint="https://idp.example/authorize",
            token_endpoint="https://idp.example/token",
            client_id="abc",
            state="xyz",
            pkce=False,
        )
    """

    model_config = ConfigDict(frozen=True)

    auth_endpoint: str = Field(default="", description="Authorization endpoint")
    token_endpoint: str = Field(default="", description="Token endpoint")
    userinfo_endpoint: str = Field(default="", description="User info endpoint")
    metadata_endpoint: str = Field(default="", description="OIDC discovery document URL")
    callback_path: str = Field(default=DEFAULT_CALLBACK_PATH)
    port: int = Field(default=DEFAULT_PORT)
    client_id: str = ""
    client_secret: str = ""
    scope: str = Field(default=DEFAULT_SCOPE, description="Space-delimited scopes")
    state: str = ""
    pkce: bool = True
    code_verifier: str = ""
    code_challenge: str = ""
    refresh_token: str = ""
    client_credentials: bool = False
    userinfo: bool = False
    no_browser: bool = False
    verbose: bool = False
    timeout: float = Field(default=DEFAULT_TIMEOUT, description="Outbound HTTP timeout in seconds")

    @property
    def redirect_uri(self) -> str:
        """The redirect URI registered with the IDP for this run."""
        return f"http://localhost:{self.port}{self.callback_path}"

    @property
    def login_url(self) -> str:
        """Local URL that starts the flow.

        Uses the IPv4 loopback address the callback server binds, so it works
        where ``localhost`` resolves to ``::1`` first.
        """
        return f"http://127.0.0.1:{self.port}/login"

    def masked(self) -> dict[str, Any]:
        """Return the config as a dict safe for printing.

        The client secret is replaced with asterisks and the refresh token
        is truncated to its first 15 characters.
        """
        data = self.model_dump()
        data["client_secret"] = "*" * len(self.client_secret)
        if len(self.refresh_token) > 15:
            data["refresh_token"] = self.refresh_token[:15] + "..."
        return data


class TokenSet(BaseModel):
    """Token endpoint response.

    ``userinfo`` is not part of the OAuth2 response; it is attached after a
    successful userinfo request so that everything prints as one document.
    Unknown response fields are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    token_type: Optional[str] = None
    scope: Optional[str] = None
    expires_in: int = Field(default=0, ge=0)
    access_token: str = ""
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    userinfo: Optional[dict[str, Any]] = None

    @field_validator("expires_in", mode="before")
    @classmethod
    def _missing_lifetime(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("access_token", mode="before")
    @classmethod
    def _missing_token(cls, value: Any) -> Any:
        return "" if value is None else value


class IdpMetadata(BaseModel):
    """The subset of the OIDC discovery document used by idptoken."""

    model_config = ConfigDict(extra="ignore")

    authorization_endpoint: str = ""
    token_endpoint: str = ""
    userinfo_endpoint: str = ""
