"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific failure category and is referenced by the
corresponding :class:`~idptoken.exceptions.IdpTokenError` subclass.
Shell wrappers can inspect the exit code to tell a rejected callback from an
IDP-side failure without parsing stderr.

Every code must stay inside the portable range ``[0, 125]``; values outside
it are replaced with :data:`EXIT_OUT_OF_RANGE` by
:meth:`~idptoken.lifecycle.Lifecycle.request_exit`.

Example::

    $ idptoken fetch --client-id abc --metadata-endpoint https://idp/.well-known/openid-configuration
    $ echo $?
    3   # EXIT_CALLBACK_REJECTED -- the redirect carried the wrong state
"""

EXIT_SUCCESS = 0
"""Tokens were obtained and printed."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred (output failure, unexpected error)."""

EXIT_CONFIG_ERROR = 2
"""The configuration was invalid or incomplete; no network activity happened."""

EXIT_CALLBACK_REJECTED = 3
"""The IDP callback was malformed, lacked a code, or failed the state check."""

EXIT_EXCHANGE_FAILED = 4
"""The token endpoint rejected the grant or returned an undecodable body."""

EXIT_USERINFO_FAILED = 5
"""The userinfo request failed. Only used when the failure is surfaced on its own."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred talking to the IDP (timeout, DNS, TLS, refused)."""

EXIT_INTERRUPTED = 8
"""The run was interrupted (SIGINT) before the flow completed."""

EXIT_OUT_OF_RANGE = 125
"""Replacement for any requested exit code outside ``[0, 125]``."""

MAX_PORTABLE_EXIT_CODE = 125
