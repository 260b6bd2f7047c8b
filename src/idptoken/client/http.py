"""Shared :class:`httpx.Client` construction."""

from __future__ import annotations

from typing import Optional

import httpx

from idptoken.models import DEFAULT_TIMEOUT


def create_http_client(
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Create the :class:`httpx.Client` used for all IDP requests.

    Redirects are not followed: a token endpoint answering with a redirect
    is a misconfiguration the user should see.

    Args:
        timeout: Connect/read/write/pool timeout in seconds.
        transport: Optional transport override (tests).
    """
    return httpx.Client(timeout=timeout, transport=transport, follow_redirects=False)
