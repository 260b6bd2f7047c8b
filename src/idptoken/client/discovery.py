"""OIDC discovery document fetch.

Only ``authorization_endpoint``, ``token_endpoint`` and
``userinfo_endpoint`` are used. Discovery is a convenience: on any failure a
warning is printed and an empty :class:`~idptoken.models.IdpMetadata` is
returned, so explicitly configured endpoints keep working and missing ones
are reported by configuration validation.
"""

from __future__ import annotations

import httpx
from pydantic import ValidationError

from idptoken.models import IdpMetadata
from idptoken.output import warning


def fetch_metadata(http: httpx.Client, metadata_url: str) -> IdpMetadata:
    """Fetch the discovery document at *metadata_url*.

    Args:
        http: Client used for the request.
        metadata_url: Typically ``https://idp/.well-known/openid-configuration``.

    Returns:
        The parsed metadata, or an empty instance on failure.
    """
    try:
        response = http.get(metadata_url, headers={"Accept": "application/json"})
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        warning(f"Could not send request for metadata document: {exc}")
        return IdpMetadata()

    if response.status_code != 200:
        warning(f"Unexpected status code for {metadata_url}: {response.status_code}")
        return IdpMetadata()

    try:
        return IdpMetadata.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        warning(f"Could not parse metadata document response: {exc}")
        return IdpMetadata()
