"""Outbound HTTP to the identity provider.

Everything that talks to the IDP goes through an :class:`httpx.Client`
created by :func:`create_http_client`, so tests can swap the transport for
an :class:`httpx.MockTransport`.

Modules:
    :mod:`~idptoken.client.token_client` -- token endpoint grants.
    :mod:`~idptoken.client.userinfo` -- bearer-authenticated userinfo GET.
    :mod:`~idptoken.client.discovery` -- OIDC discovery document.
"""

from idptoken.client.discovery import fetch_metadata
from idptoken.client.http import create_http_client
from idptoken.client.token_client import TokenClient
from idptoken.client.userinfo import fetch_userinfo

__all__ = ["TokenClient", "create_http_client", "fetch_metadata", "fetch_userinfo"]
