"""Main control routines for the three token flows.

Each ``run_*`` function takes a resolved :class:`~idptoken.models.FlowConfig`
and returns the process exit code. The refresh token and client credentials
flows raise :class:`~idptoken.exceptions.IdpTokenError` subclasses on
failure; the authorization code flow reports callback failures through the
exit code recorded on its :class:`~idptoken.lifecycle.Lifecycle`.
"""

from __future__ import annotations

from typing import Optional

import httpx

from idptoken.browser import launch_browser
from idptoken.client.token_client import TokenClient
from idptoken.exceptions import OutputError
from idptoken.exit_codes import EXIT_SUCCESS
from idptoken.flow import AuthorizationFlow, attach_userinfo
from idptoken.jwt import interpret_jwt, seconds_to_friendly
from idptoken.lifecycle import Lifecycle, interrupt_handler
from idptoken.models import FlowConfig, TokenSet
from idptoken.output import block, debug, info, print_json, success
from idptoken.server import DEFAULT_SHUTDOWN_GRACE, CallbackServer


def print_tokens(tokens: TokenSet, verbose: bool = False) -> None:
    """Write *tokens* as JSON to stdout.

    In verbose mode the token lifetime and the decoded bodies of the access
    and ID tokens follow on stderr, with epoch claims annotated.

    Raises:
        OutputError: stdout or stderr could not be written.
    """
    try:
        print_json(tokens.model_dump(exclude_none=True))
        if verbose:
            success(f"Access token expires in {seconds_to_friendly(tokens.expires_in)}")
            block("AccessToken", interpret_jwt(tokens.access_token))
            if tokens.id_token:
                block("IDToken", interpret_jwt(tokens.id_token))
    except (OSError, ValueError) as exc:
        raise OutputError(f"could not print tokens: {exc}") from exc


def run(config: FlowConfig, http: Optional[httpx.Client] = None) -> int:
    """Dispatch to the flow selected by *config*.

    Client credentials win over a refresh token; without either the
    interactive authorization code flow runs.
    """
    if config.client_credentials:
        return run_client_credentials_flow(config, http)
    if config.refresh_token:
        return run_refresh_flow(config, http)
    return run_auth_code_flow(config, http)


def run_refresh_flow(config: FlowConfig, http: Optional[httpx.Client] = None) -> int:
    """Redeem ``config.refresh_token`` without starting the callback server."""
    debug("Using refresh token flow")
    with TokenClient(config, http) as client:
        tokens = client.redeem_refresh_token(config.refresh_token)
        if config.userinfo:
            tokens = attach_userinfo(client, config, tokens)
    print_tokens(tokens, verbose=config.verbose)
    return EXIT_SUCCESS


def run_client_credentials_flow(config: FlowConfig, http: Optional[httpx.Client] = None) -> int:
    """Request a token for the client itself without starting the callback server."""
    debug("Using client credentials flow")
    with TokenClient(config, http) as client:
        tokens = client.redeem_client_credentials()
    print_tokens(tokens, verbose=config.verbose)
    return EXIT_SUCCESS


def run_auth_code_flow(
    config: FlowConfig,
    http: Optional[httpx.Client] = None,
    grace: float = DEFAULT_SHUTDOWN_GRACE,
) -> int:
    """Serve the authorization code flow until a callback settles it.

    Starts the callback server, prints the login URL, opens the browser
    unless disabled and blocks until a handler (or SIGINT) requests exit.
    The server is then stopped with a bounded grace period.

    Returns:
        The exit code recorded on the lifecycle.

    Raises:
        ServerStartError: The callback port cannot be bound.
    """
    lifecycle = Lifecycle(verbose=config.verbose)

    def on_tokens(tokens: TokenSet) -> None:
        print_tokens(tokens, verbose=config.verbose)

    with TokenClient(config, http) as client:
        flow = AuthorizationFlow(config, client)
        server = CallbackServer(flow, lifecycle, on_tokens)
        with interrupt_handler(lifecycle):
            server.start()
            try:
                info(f"Serving oauth2 authorization code flow at 👉 {config.login_url}")
                if not config.no_browser:
                    launch_browser(config.login_url)
                code = lifecycle.wait()
            finally:
                server.stop(grace)
    debug(f"Exiting with code {code}")
    return code if code is not None else lifecycle.exit_code
