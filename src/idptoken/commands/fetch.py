"""Fetch command -- obtain tokens from the identity provider.

Implements ``idptoken fetch``. Every option can also be set through an
``IDPTOKEN_*`` environment variable; a flag on the command line wins over
the environment, which wins over the built-in default.

Which flow runs depends on the options:

* ``--client-credentials`` -- client credentials grant, no browser.
* ``--refresh-token`` -- refresh token grant, no browser.
* otherwise -- the interactive authorization code flow on a local callback
  server.
"""

from __future__ import annotations

import typer

from idptoken.client.http import create_http_client
from idptoken.config import DEFAULT_SCOPE_SETTING, resolve_flow_config
from idptoken.exceptions import ConfigError, IdpTokenError
from idptoken.exit_codes import EXIT_SUCCESS
from idptoken.models import DEFAULT_CALLBACK_PATH, DEFAULT_PORT, DEFAULT_TIMEOUT
from idptoken.output import error, suggest
from idptoken.runner import run

_ENV = "IDPTOKEN_"


def fetch_command(
    ctx: typer.Context,
    auth_endpoint: str = typer.Option(
        "", "--auth-endpoint", envvar=f"{_ENV}AUTH_ENDPOINT", help="Authorization endpoint URL."
    ),
    token_endpoint: str = typer.Option(
        "", "--token-endpoint", envvar=f"{_ENV}TOKEN_ENDPOINT", help="Token endpoint URL."
    ),
    userinfo_endpoint: str = typer.Option(
        "", "--userinfo-endpoint", envvar=f"{_ENV}USERINFO_ENDPOINT", help="Userinfo endpoint URL."
    ),
    metadata_endpoint: str = typer.Option(
        "",
        "--metadata-endpoint",
        envvar=f"{_ENV}METADATA_ENDPOINT",
        help="OIDC discovery document URL. Fills endpoints that are not set explicitly.",
    ),
    callback_path: str = typer.Option(
        DEFAULT_CALLBACK_PATH,
        "--callback-path",
        envvar=f"{_ENV}CALLBACK_PATH",
        help="Path of the redirect URI registered with the IDP.",
    ),
    port: int = typer.Option(
        DEFAULT_PORT, "--port", envvar=f"{_ENV}PORT", help="Local callback server port."
    ),
    client_id: str = typer.Option("", "--client-id", envvar=f"{_ENV}CLIENT_ID", help="OAuth2 client ID."),
    client_secret: str = typer.Option(
        "",
        "--client-secret",
        envvar=f"{_ENV}CLIENT_SECRET",
        show_envvar=False,
        show_default=False,
        help="OAuth2 client secret.",
    ),
    scope: str = typer.Option(
        DEFAULT_SCOPE_SETTING,
        "--scope",
        envvar=f"{_ENV}SCOPE",
        help="Requested scopes, comma or space separated.",
    ),
    state: str = typer.Option(
        "", "--state", envvar=f"{_ENV}STATE", help="State parameter. Random when omitted."
    ),
    pkce: bool = typer.Option(
        True, "--pkce/--no-pkce", envvar=f"{_ENV}PKCE", help="Use PKCE (S256)."
    ),
    code_verifier: str = typer.Option(
        "",
        "--code-verifier",
        envvar=f"{_ENV}CODE_VERIFIER",
        help="PKCE code verifier. Random when omitted.",
    ),
    code_challenge: str = typer.Option(
        "",
        "--code-challenge",
        envvar=f"{_ENV}CODE_CHALLENGE",
        help="PKCE code challenge. Derived from the verifier when omitted.",
    ),
    refresh_token: str = typer.Option(
        "",
        "--refresh-token",
        envvar=f"{_ENV}REFRESH_TOKEN",
        show_envvar=False,
        show_default=False,
        help="Redeem this refresh token instead of running the browser flow.",
    ),
    client_credentials: bool = typer.Option(
        False,
        "--client-credentials",
        envvar=f"{_ENV}CLIENT_CREDENTIALS",
        help="Use the client credentials grant.",
    ),
    userinfo: bool = typer.Option(
        False, "--userinfo", envvar=f"{_ENV}USERINFO", help="Attach the userinfo document."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", envvar=f"{_ENV}NO_BROWSER", help="Do not open a browser window."
    ),
    timeout: float = typer.Option(
        DEFAULT_TIMEOUT,
        "--timeout",
        envvar=f"{_ENV}TIMEOUT",
        help="Timeout in seconds for requests to the IDP.",
    ),
) -> None:
    """Obtain tokens and print them as JSON on stdout.

    Diagnostics, the login URL and (with ``--verbose``) the decoded token
    bodies go to stderr, so the output can be piped into ``jq``.

    Example::

        idptoken fetch --metadata-endpoint https://idp.example/.well-known/openid-configuration \\
            --client-id abc --client-secret s3cret
        idptoken fetch --token-endpoint https://idp.example/token --client-id abc \\
            --refresh-token "$RT" | jq -r .access_token
    """
    verbose = bool((ctx.obj or {}).get("verbose", False))

    try:
        with create_http_client(timeout) as http:
            config = resolve_flow_config(
                auth_endpoint=auth_endpoint,
                token_endpoint=token_endpoint,
                userinfo_endpoint=userinfo_endpoint,
                metadata_endpoint=metadata_endpoint,
                callback_path=callback_path,
                port=port,
                client_id=client_id,
                client_secret=client_secret,
                scope=scope,
                state=state,
                pkce=pkce,
                code_verifier=code_verifier,
                code_challenge=code_challenge,
                refresh_token=refresh_token,
                client_credentials=client_credentials,
                userinfo=userinfo,
                no_browser=no_browser,
                verbose=verbose,
                timeout=timeout,
                http=http,
            )
            code = run(config, http)
    except IdpTokenError as exc:
        error(str(exc))
        if isinstance(exc, ConfigError):
            suggest("Run: idptoken fetch --help")
        raise typer.Exit(code=exc.exit_code) from None

    if code != EXIT_SUCCESS:
        raise typer.Exit(code=code)
