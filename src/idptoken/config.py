"""Configuration resolution and validation.

* **Flow configuration** -- :func:`resolve_flow_config` turns the raw CLI
  values (already merged with ``IDPTOKEN_*`` environment variables by typer)
  into the effective :class:`~idptoken.models.FlowConfig`: it fills in the
  random state and PKCE pair, applies OIDC discovery and normalizes the
  scope. :func:`validate_flow_config` reports what is still wrong.
* **Directory layout** -- XDG Base Directory compliant data directory on
  Linux/BSD, ``~/.idptoken/`` on macOS and Windows, used for crash logs.

Precedence for every setting, highest first: CLI flag, environment
variable, discovered metadata (endpoints only), built-in default.
"""

from __future__ import annotations

import json
import os
import platform
from pathlib import Path
from typing import Optional

import httpx

from idptoken.client.discovery import fetch_metadata
from idptoken.client.http import create_http_client
from idptoken.exceptions import ConfigError
from idptoken.models import (
    DEFAULT_CALLBACK_PATH,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    FlowConfig,
    IdpMetadata,
)
from idptoken.output import block, debug
from idptoken.pkce import (
    MAX_VERIFIER_LENGTH,
    MIN_VERIFIER_LENGTH,
    derive_code_challenge,
    generate_code_verifier,
    generate_state,
    is_valid_verifier,
)

_APP_NAME = "idptoken"

DEFAULT_SCOPE_SETTING = "openid,offline_access"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/idptoken/`` (default ``~/.local/share/idptoken/``).
    On macOS/Windows: ``~/.idptoken/``.
    """
    if _is_xdg_platform():
        env_value = os.environ.get("XDG_DATA_HOME", "")
        base = Path(env_value) if env_value else Path.home() / ".local" / "share"
        path = base / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Flow configuration ---


def normalize_scope(scope: str) -> str:
    """Turn a comma and/or space separated scope list into the OAuth2 form.

    >>> normalize_scope("openid,offline_access")
    'openid offline_access'
    """
    return " ".join(scope.replace(",", " ").split())


def apply_metadata(
    metadata: IdpMetadata,
    auth_endpoint: str,
    token_endpoint: str,
    userinfo_endpoint: str,
) -> tuple[str, str, str]:
    """Fill the endpoints that were not configured explicitly from *metadata*."""
    return (
        auth_endpoint or metadata.authorization_endpoint,
        token_endpoint or metadata.token_endpoint,
        userinfo_endpoint or metadata.userinfo_endpoint,
    )


def resolve_flow_config(
    *,
    auth_endpoint: str = "",
    token_endpoint: str = "",
    userinfo_endpoint: str = "",
    metadata_endpoint: str = "",
    callback_path: str = DEFAULT_CALLBACK_PATH,
    port: int = DEFAULT_PORT,
    client_id: str = "",
    client_secret: str = "",
    scope: str = DEFAULT_SCOPE_SETTING,
    state: str = "",
    pkce: bool = True,
    code_verifier: str = "",
    code_challenge: str = "",
    refresh_token: str = "",
    client_credentials: bool = False,
    userinfo: bool = False,
    no_browser: bool = False,
    verbose: bool = False,
    timeout: float = DEFAULT_TIMEOUT,
    http: Optional[httpx.Client] = None,
) -> FlowConfig:
    """Build and validate the effective :class:`FlowConfig`.

    Empty strings mean "not configured". The metadata document, when a
    ``metadata_endpoint`` is given, only supplies endpoints that are still
    empty.

    Args:
        http: Client used for discovery. A temporary one is created when
            omitted.

    Raises:
        ConfigError: The resulting configuration is incomplete or
            inconsistent. The masked configuration is printed first.
    """
    if metadata_endpoint:
        debug(f"Fetching metadata document from {metadata_endpoint}")
        if http is not None:
            metadata = fetch_metadata(http, metadata_endpoint)
        else:
            with create_http_client(timeout) as discovery_http:
                metadata = fetch_metadata(discovery_http, metadata_endpoint)
        auth_endpoint, token_endpoint, userinfo_endpoint = apply_metadata(
            metadata, auth_endpoint, token_endpoint, userinfo_endpoint
        )

    if pkce:
        code_verifier = code_verifier or generate_code_verifier()
        if not code_challenge and is_valid_verifier(code_verifier):
            code_challenge = derive_code_challenge(code_verifier)

    config = FlowConfig(
        auth_endpoint=auth_endpoint,
        token_endpoint=token_endpoint,
        userinfo_endpoint=userinfo_endpoint,
        metadata_endpoint=metadata_endpoint,
        callback_path=callback_path,
        port=port,
        client_id=client_id,
        client_secret=client_secret,
        scope=normalize_scope(scope),
        state=state or generate_state(),
        pkce=pkce,
        code_verifier=code_verifier,
        code_challenge=code_challenge,
        refresh_token=refresh_token,
        client_credentials=client_credentials,
        userinfo=userinfo,
        no_browser=no_browser,
        verbose=verbose,
        timeout=timeout,
    )

    errors = validate_flow_config(config)
    if verbose or errors:
        block("Configuration", json.dumps(config.masked(), indent=2))
    if errors:
        raise ConfigError("invalid configuration:\n" + "\n".join(f"  - {e}" for e in errors))
    return config


def validate_flow_config(config: FlowConfig) -> list[str]:
    """Validate *config*.

    The authorization endpoint only matters for the authorization code
    flow, and userinfo is not available with client credentials.

    Returns:
        A list of human-readable error strings. Empty if valid.
    """
    errors: list[str] = []
    interactive = not (config.refresh_token or config.client_credentials)

    if len(config.callback_path) < 2 or not config.callback_path.startswith("/"):
        errors.append(
            f"callback path must start with '/' and have at least two characters, "
            f"got {config.callback_path!r}"
        )
    if not 1 <= config.port <= 65535:
        errors.append(f"port must be between 1 and 65535, got {config.port}")
    if not config.client_id:
        errors.append("client id is required")
    if not config.state:
        errors.append("state must not be empty")
    if not config.token_endpoint:
        errors.append("token endpoint is required (set it or use a metadata endpoint)")
    if interactive and not config.auth_endpoint:
        errors.append("authorization endpoint is required (set it or use a metadata endpoint)")
    if config.userinfo and not config.client_credentials and not config.userinfo_endpoint:
        errors.append("userinfo endpoint is required when userinfo is requested")
    if config.timeout <= 0:
        errors.append(f"timeout must be positive, got {config.timeout:g}")

    for name, value in (
        ("authorization endpoint", config.auth_endpoint),
        ("token endpoint", config.token_endpoint),
        ("userinfo endpoint", config.userinfo_endpoint),
        ("metadata endpoint", config.metadata_endpoint),
    ):
        if value:
            problem = _check_endpoint_url(name, value)
            if problem:
                errors.append(problem)

    if config.pkce:
        if not is_valid_verifier(config.code_verifier):
            errors.append(
                f"code verifier must be {MIN_VERIFIER_LENGTH}-{MAX_VERIFIER_LENGTH} "
                "characters from [A-Za-z0-9-._~]"
            )
        elif not config.code_challenge:
            errors.append("PKCE requires a code challenge")
        elif derive_code_challenge(config.code_verifier) != config.code_challenge:
            errors.append("code challenge is not the S256 transform of the code verifier")

    return errors


def _check_endpoint_url(name: str, value: str) -> Optional[str]:
    """Return an error message unless *value* is an absolute http(s) URL."""
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL as exc:
        return f"{name} is not a valid URL: {exc}"
    if url.scheme not in ("http", "https") or not url.host:
        return f"{name} must be an absolute http(s) URL, got {value!r}"
    return None
