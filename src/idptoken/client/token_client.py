"""Back-channel token endpoint client.

:class:`TokenClient` redeems an authorization code, a refresh token or the
client's own credentials for a :class:`~idptoken.models.TokenSet`. All three
grants share :meth:`TokenClient.exchange`, which implements the decode
policy:

* the body is decoded as JSON whatever the HTTP status, because IDPs
  disagree on which status an error response carries;
* an empty ``access_token`` is a failure even on HTTP 200;
* the raw body is attached to every decode failure for diagnostics;
* network-level failures raise :class:`~idptoken.exceptions.TokenTransportError`,
  everything else :class:`~idptoken.exceptions.TokenResponseError`.

No request is ever retried.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from idptoken.client.http import create_http_client
from idptoken.exceptions import TokenResponseError, TokenTransportError
from idptoken.jwt import pretty_json
from idptoken.models import FlowConfig, TokenSet
from idptoken.output import debug

FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


class TokenClient:
    """Client for the IDP token endpoint.

    Use as a context manager when the client owns its
    :class:`httpx.Client`; a client passed in by the caller is never closed.

    Args:
        config: The effective flow configuration (endpoint, client
            credentials, redirect URI, scope).
        http: Optional pre-built :class:`httpx.Client`. When omitted one is
            created with ``config.timeout``.

    Example::

        with TokenClient(config) as client:
            tokens = client.redeem_refresh_token(config.refresh_token)
    """

    def __init__(self, config: FlowConfig, http: Optional[httpx.Client] = None) -> None:
        self._config = config
        self._owns_http = http is None
        self._http = http if http is not None else create_http_client(config.timeout)

    def __enter__(self) -> TokenClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    @property
    def http(self) -> httpx.Client:
        """The underlying HTTP client (shared with the userinfo fetcher)."""
        return self._http

    # ------------------------------------------------------------------ #
    # Grants
    # ------------------------------------------------------------------ #

    def redeem_code(self, code: str, code_verifier: Optional[str] = None) -> TokenSet:
        """Exchange an authorization code (``grant_type=authorization_code``).

        Args:
            code: The code received on the callback.
            code_verifier: The PKCE verifier, when the flow used PKCE.
        """
        params = {
            "grant_type": "authorization_code",
            "redirect_uri": self._config.redirect_uri,
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
            "code": code,
        }
        if code_verifier:
            params["code_verifier"] = code_verifier
        return self.exchange(params)

    def redeem_refresh_token(self, refresh_token: str) -> TokenSet:
        """Exchange a refresh token (``grant_type=refresh_token``)."""
        return self.exchange(
            {
                "grant_type": "refresh_token",
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
                "refresh_token": refresh_token,
            }
        )

    def redeem_client_credentials(self) -> TokenSet:
        """Request a token for the client itself (``grant_type=client_credentials``)."""
        return self.exchange(
            {
                "grant_type": "client_credentials",
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
                "scope": self._config.scope,
            }
        )

    # ------------------------------------------------------------------ #
    # Shared primitive
    # ------------------------------------------------------------------ #

    def exchange(self, params: dict[str, str]) -> TokenSet:
        """POST *params* form-encoded to the token endpoint and decode the result.

        Args:
            params: Grant parameters, including ``grant_type``.

        Returns:
            The decoded :class:`~idptoken.models.TokenSet` with a non-empty
            ``access_token``.

        Raises:
            TokenTransportError: The request could not be completed.
            TokenResponseError: The body is not a token response or carries
                no access token.
        """
        grant = params.get("grant_type", "?")
        try:
            response = self._http.post(
                self._config.token_endpoint,
                data=params,
                headers=FORM_HEADERS,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TokenTransportError(
                f"could not send HTTP request to redeem tokens: {exc}"
            ) from exc
        debug(f"Sent POST request to redeem tokens ({grant}), status {response.status_code}")

        raw = response.text
        try:
            payload: Any = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise TokenResponseError(
                f"could not parse JSON response for redeemed tokens: {exc}, raw body: {raw}",
                raw_body=raw,
                status=response.status_code,
            ) from exc

        if not isinstance(payload, dict):
            raise TokenResponseError(
                f"token response is not a JSON object, raw body: {raw}",
                raw_body=raw,
                status=response.status_code,
            )

        try:
            tokens = TokenSet.model_validate(payload)
        except ValidationError as exc:
            raise TokenResponseError(
                f"unexpected token response shape: {exc.error_count()} invalid field(s), "
                f"raw body: {raw}",
                raw_body=raw,
                status=response.status_code,
            ) from exc

        if not tokens.access_token:
            raise TokenResponseError(
                f"no access token received (HTTP {response.status_code}), "
                f"JSON response:\n{pretty_json(raw)}",
                raw_body=raw,
                status=response.status_code,
            )
        return tokens
