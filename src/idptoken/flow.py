"""Authorization code flow orchestration.

:func:`build_authorization_url` produces the redirect that sends the user to
the IDP. :class:`AuthorizationFlow` resolves the IDP's redirect back to the
local callback path: it checks ``state``, consumes the single pending
authorization, redeems the ``code`` through
:class:`~idptoken.client.token_client.TokenClient` and optionally attaches
the userinfo document.

A process runs exactly one flow. The pending authorization is consumed by
the first callback that carries the expected state, whatever happens after
that, so a replayed or duplicated redirect can never trigger a second token
exchange.
"""

from __future__ import annotations

import hmac
import re
import threading
from typing import Optional
from urllib.parse import parse_qs, quote, urlencode

from idptoken.client.token_client import TokenClient
from idptoken.client.userinfo import fetch_userinfo
from idptoken.exceptions import (
    AuthorizationConsumedError,
    ExchangeError,
    ExchangeFailedError,
    MalformedRequestError,
    MissingCodeError,
    StateMismatchError,
    UserInfoError,
)
from idptoken.models import FlowConfig, TokenSet
from idptoken.output import debug, warning
from idptoken.pkce import CHALLENGE_METHOD

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2}).{0,2}")


def build_authorization_url(config: FlowConfig) -> str:
    """Return the IDP authorization URL for *config*.

    Parameters are ``client_id``, ``redirect_uri``, ``scope``,
    ``response_type=code`` and ``state``, followed by ``code_challenge`` and
    ``code_challenge_method=S256`` when PKCE is enabled. Spaces in the scope
    are encoded as ``%20``.
    """
    params = [
        ("client_id", config.client_id),
        ("redirect_uri", config.redirect_uri),
        ("scope", config.scope),
        ("response_type", "code"),
        ("state", config.state),
    ]
    if config.pkce:
        params.append(("code_challenge", config.code_challenge))
        params.append(("code_challenge_method", CHALLENGE_METHOD))

    separator = "&" if "?" in config.auth_endpoint else "?"
    return f"{config.auth_endpoint}{separator}{urlencode(params, quote_via=quote)}"


class PendingAuthorization:
    """The one in-flight authorization of this process.

    Holds the expected state and PKCE verifier and a single-use flag.

    Args:
        state: The state sent to the IDP.
        code_verifier: The PKCE verifier, or ``None`` without PKCE.
    """

    def __init__(self, state: str, code_verifier: Optional[str] = None) -> None:
        self.state = state
        self.code_verifier = code_verifier
        self._lock = threading.Lock()
        self._consumed = False

    @property
    def consumed(self) -> bool:
        with self._lock:
            return self._consumed

    def matches(self, state: str) -> bool:
        """Compare *state* with the expected state in constant time."""
        return hmac.compare_digest(state.encode("utf-8"), self.state.encode("utf-8"))

    def consume(self) -> bool:
        """Mark the authorization as used.

        Returns:
            ``True`` for the first caller, ``False`` for every later one.
        """
        with self._lock:
            if self._consumed:
                return False
            self._consumed = True
            return True


class AuthorizationFlow:
    """Resolves callbacks for a single authorization code flow.

    Args:
        config: Effective configuration.
        token_client: Client used to redeem the authorization code. Its
            HTTP client is reused for the userinfo request.

    Example::

        flow = AuthorizationFlow(config, token_client)
        redirect = flow.authorization_url
        tokens = flow.handle_callback("code=XYZ123&state=xyz")
    """

    def __init__(self, config: FlowConfig, token_client: TokenClient) -> None:
        self._config = config
        self._token_client = token_client
        self.pending = PendingAuthorization(
            state=config.state,
            code_verifier=config.code_verifier if config.pkce else None,
        )

    @property
    def config(self) -> FlowConfig:
        return self._config

    @property
    def authorization_url(self) -> str:
        """The IDP authorization URL the ``/login`` route redirects to."""
        return build_authorization_url(self._config)

    def handle_callback(self, query: str, form: bytes = b"") -> TokenSet:
        """Validate the callback parameters and redeem its code.

        Args:
            query: The raw query string of the callback request.
            form: The URL-encoded body of a ``response_mode=form_post``
                callback. Its values take precedence over the query.

        Returns:
            The redeemed tokens, with ``userinfo`` attached when requested
            and available.

        Raises:
            MalformedRequestError: The query string or form body cannot be
                parsed.
            StateMismatchError: ``state`` is missing or differs from the
                expected value. Checked before anything else is looked at.
            AuthorizationConsumedError: A previous callback already used the
                pending authorization.
            MissingCodeError: ``code`` is missing or empty.
            ExchangeFailedError: The token endpoint call failed.
        """
        debug("Processing callback for authorization code")
        params = _parse_params(query, form)

        state = _first(params, "state")
        if not self.pending.matches(state):
            raise StateMismatchError(f"expected: {self.pending.state}, got: {state}")

        if not self.pending.consume():
            raise AuthorizationConsumedError(
                "a callback for this authorization was already processed"
            )

        code = _first(params, "code")
        if not code:
            raise MissingCodeError(_missing_code_message(params))

        try:
            tokens = self._token_client.redeem_code(code, self.pending.code_verifier)
        except ExchangeError as exc:
            raise ExchangeFailedError(str(exc), cause=exc) from exc

        if self._config.userinfo:
            tokens = attach_userinfo(self._token_client, self._config, tokens)
        return tokens


def attach_userinfo(token_client: TokenClient, config: FlowConfig, tokens: TokenSet) -> TokenSet:
    """Return *tokens* with the userinfo document attached.

    Failures are reported as warnings and the tokens are returned unchanged.
    """
    try:
        document = fetch_userinfo(token_client.http, config.userinfo_endpoint, tokens.access_token)
    except UserInfoError as exc:
        warning(str(exc))
        return tokens
    return tokens.model_copy(update={"userinfo": document})


def _parse_params(query: str, form: bytes) -> dict[str, list[str]]:
    """Merge form and query parameters, form values first."""
    params = _parse_query(query)
    if not form:
        return params
    try:
        body = form.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedRequestError(f"form body is not valid UTF-8: {exc}") from exc
    merged = _parse_query(body)
    for name, values in params.items():
        merged.setdefault(name, []).extend(values)
    return merged


def _parse_query(query: str) -> dict[str, list[str]]:
    bad_escape = _BAD_ESCAPE.search(query)
    if bad_escape is not None:
        raise MalformedRequestError(f"invalid URL escape {bad_escape.group(0)!r}")
    try:
        return parse_qs(query, keep_blank_values=True, errors="strict")
    except ValueError as exc:
        raise MalformedRequestError(str(exc)) from exc


def _first(params: dict[str, list[str]], name: str) -> str:
    values = params.get(name)
    return values[0] if values else ""


def _missing_code_message(params: dict[str, list[str]]) -> str:
    idp_error = _first(params, "error")
    if not idp_error:
        return "missing 'code' parameter"
    description = _first(params, "error_description")
    if description:
        return f"missing 'code' parameter, IDP returned error: {idp_error} ({description})"
    return f"missing 'code' parameter, IDP returned error: {idp_error}"
