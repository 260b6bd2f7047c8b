"""OIDC userinfo endpoint.

The userinfo document has no fixed schema, so it is returned as a plain
dict. Callers treat every failure as non-fatal.
"""

from __future__ import annotations

from typing import Any

import httpx

from idptoken.exceptions import UserInfoError
from idptoken.output import debug


def fetch_userinfo(http: httpx.Client, endpoint: str, access_token: str) -> dict[str, Any]:
    """GET the userinfo document with a bearer access token.

    Args:
        http: Client used for the request.
        endpoint: The userinfo endpoint URL.
        access_token: Access token sent as ``Authorization: Bearer``.

    Returns:
        The decoded JSON object.

    Raises:
        UserInfoError: On transport failure, a non-2xx status, or a body
            that is not a JSON object.
    """
    try:
        response = http.get(
            endpoint,
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {access_token}",
            },
        )
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise UserInfoError(f"could not send request for userinfo: {exc}") from exc
    debug(f"Sent GET request for userinfo, status {response.status_code}")

    if not response.is_success:
        raise UserInfoError(
            f"userinfo request failed with status {response.status_code}: {response.text}"
        )
    try:
        document = response.json()
    except ValueError as exc:
        raise UserInfoError(f"could not parse userinfo response: {exc}") from exc
    if not isinstance(document, dict):
        raise UserInfoError("userinfo response is not a JSON object")
    return document
