"""Exception hierarchy for idptoken.

All exceptions inherit from :class:`IdpTokenError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`idptoken.exit_codes`.
Errors that can be reported back to the browser over the local callback
server additionally carry an HTTP ``status_code``.

Subclass hierarchy::

    IdpTokenError (exit 1)
    +-- ConfigError                  (exit 2)
    +-- ServerStartError             (exit 1)
    +-- FlowError                    (exit 3, HTTP 400)
    |   +-- MalformedRequestError
    |   +-- MissingCodeError
    |   +-- StateMismatchError
    |   +-- AuthorizationConsumedError  (HTTP 409)
    |   +-- ExchangeFailedError      (exit from cause, HTTP 502)
    +-- ExchangeError                (exit 4)
    |   +-- TokenResponseError
    |   +-- TokenTransportError      (exit 6)
    +-- UserInfoError                (exit 5)
    +-- OutputError                  (exit 1)
"""

from __future__ import annotations

from typing import Optional

from idptoken.exit_codes import (
    EXIT_CALLBACK_REJECTED,
    EXIT_CONFIG_ERROR,
    EXIT_CONNECTION_ERROR,
    EXIT_EXCHANGE_FAILED,
    EXIT_GENERIC_FAILURE,
    EXIT_USERINFO_FAILED,
)


class IdpTokenError(Exception):
    """Base exception for all idptoken errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`idptoken.exit_codes`.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(IdpTokenError):
    """Raised for invalid or incomplete configuration, before any network activity."""

    exit_code = EXIT_CONFIG_ERROR


class ServerStartError(IdpTokenError):
    """Raised when the local callback server cannot bind its port."""


# --- Callback handling ---


class FlowError(IdpTokenError):
    """Base class for failures while resolving an IDP callback.

    Attributes:
        status_code: HTTP status written back to the browser.
        label: Short description used as the ``ERROR: <label>: ...`` prefix.
    """

    exit_code = EXIT_CALLBACK_REJECTED
    status_code: int = 400
    label: str = "oauth2 flow error"


class MalformedRequestError(FlowError):
    """Raised when the callback query string cannot be parsed."""

    label = "could not parse query in callback"


class MissingCodeError(FlowError):
    """Raised when the callback carries no ``code`` parameter."""


class StateMismatchError(FlowError):
    """Raised when the callback ``state`` differs from the expected state."""

    label = "unexpected state parameter value in callback"


class AuthorizationConsumedError(FlowError):
    """Raised when a callback arrives after the pending authorization was used."""

    status_code = 409
    label = "authorization already consumed"


class ExchangeFailedError(FlowError):
    """Raised when the code-for-token exchange fails during a callback.

    The exit code follows the underlying :class:`ExchangeError` so that a
    network failure and an IDP rejection stay distinguishable.

    Args:
        message: Human-readable error description.
        cause: The :class:`ExchangeError` raised by the token client.
    """

    status_code = 502

    def __init__(self, message: str, cause: "ExchangeError"):
        super().__init__(message, exit_code=cause.exit_code)
        self.cause = cause


# --- Back-channel ---


class ExchangeError(IdpTokenError):
    """Base class for token endpoint failures."""

    exit_code = EXIT_EXCHANGE_FAILED


class TokenResponseError(ExchangeError):
    """Raised when the token response cannot be decoded or holds no access token.

    Attributes:
        raw_body: The response body as received, for diagnostics.
        status: HTTP status of the response.
    """

    def __init__(self, message: str, raw_body: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.raw_body = raw_body
        self.status = status


class TokenTransportError(ExchangeError):
    """Raised on network-level failures reaching the token endpoint.

    Covers timeouts, DNS resolution, refused connections and TLS errors.
    """

    exit_code = EXIT_CONNECTION_ERROR


class UserInfoError(IdpTokenError):
    """Raised when the userinfo endpoint cannot be queried or decoded."""

    exit_code = EXIT_USERINFO_FAILED


class OutputError(IdpTokenError):
    """Raised when the token payload cannot be written to stdout."""
