"""idptoken -- obtain OAuth2/OIDC tokens from an identity provider for debugging.

Runs the authorization code flow (with PKCE) against a third-party IDP on a
short-lived local callback server, or redeems a refresh token or the
client's own credentials, and prints the resulting tokens as JSON.

Typical workflow::

    idptoken fetch --metadata-endpoint https://idp.example/.well-known/openid-configuration \
        --client-id abc --client-secret s3cret
    idptoken jwt "$ACCESS_TOKEN"

Modules:
    app: Typer application and CLI entry point.
    config: Flow configuration resolution and validation.
    flow: Authorization URL and callback validation.
    server: Local callback server.
    lifecycle: Soft-exit coordination between threads.
    runner: Control routines for the three flows.
    client: Token, userinfo and discovery requests.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes.
    output: stdout/stderr formatting with Rich support.
"""

__version__ = "0.1.0"
