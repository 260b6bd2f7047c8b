"""JWT body decoding and human-friendly annotation.

Nothing here verifies signatures or claims; the helpers exist so a developer
can read what the IDP put into a token.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from datetime import datetime
from typing import Iterable

NOT_A_JWT = "<not a JWT>"

EPOCH_KEYS = ("iat", "nbf", "exp", "xms_tcdt")  # xms_tcdt: Azure AD tenant creation time


def decode_jwt_body(token: str) -> str:
    """Return the decoded payload segment of *token* as text.

    Returns :data:`NOT_A_JWT` when the token does not have three segments or
    the payload is not valid base64url/UTF-8.
    """
    parts = token.strip().split(".")
    if len(parts) != 3:
        return NOT_A_JWT
    payload = parts[1]
    payload += "=" * (-len(payload) % 4)
    try:
        return base64.urlsafe_b64decode(payload.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return NOT_A_JWT


def pretty_json(text: str) -> str:
    """Indent a JSON document, or return ``Invalid JSON: <text>``."""
    try:
        return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
    except (json.JSONDecodeError, TypeError):
        return f"Invalid JSON: {text}"


def inject_epoch_comments(text: str, keys: Iterable[str] = EPOCH_KEYS) -> str:
    """Append ``//👈 <local time>`` after the first occurrence of each epoch key.

    The result is JSONC, meant for reading only. Keys that are missing or
    not integers are left untouched.
    """
    result = text
    for key in keys:
        match = re.search(rf'"{re.escape(key)}": (\d+),?', text)
        if match is None:
            continue
        try:
            moment = datetime.fromtimestamp(int(match.group(1))).astimezone()
        except (OverflowError, OSError, ValueError):
            continue
        original = match.group(0)
        stamp = moment.strftime("%Y-%m-%d %H:%M:%S %z %Z")
        result = result.replace(original, f"{original} //👈 {stamp}", 1)
    return result


def interpret_jwt(token: str) -> str:
    """Decode, indent and annotate *token* in one step."""
    return inject_epoch_comments(pretty_json(decode_jwt_body(token)))


def seconds_to_friendly(seconds: int) -> str:
    """Render a duration like ``1 hour, 0 minutes and 5 seconds``."""
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    text = ""
    if hours > 0:
        text += f"{_plural(hours, 'hour')}, "
    if minutes > 0 or hours > 0:
        text += f"{_plural(minutes, 'minute')} and "
    return text + _plural(secs, "second")


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit}" if value == 1 else f"{value} {unit}s"
