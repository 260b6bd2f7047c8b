"""PKCE (:rfc:`7636`) and state generation.

Exports :func:`generate_code_verifier`, :func:`derive_code_challenge` and
:func:`generate_state`. All three are pure apart from their randomness; the
verifier generator accepts a seeded :class:`random.Random` so tests can make
it deterministic.
"""

from __future__ import annotations

import base64
import hashlib
import random
import secrets
import string
from typing import Optional

# RFC 7636 section 4.1: ALPHA / DIGIT / "-" / "." / "_" / "~"
UNRESERVED_CHARACTERS = string.ascii_letters + string.digits + "-._~"

DEFAULT_VERIFIER_LENGTH = 50
MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128

CHALLENGE_METHOD = "S256"


def generate_code_verifier(
    length: int = DEFAULT_VERIFIER_LENGTH,
    rng: Optional[random.Random] = None,
) -> str:
    """Generate a PKCE code verifier.

    Args:
        length: Number of characters, between 43 and 128 inclusive.
        rng: Random source. Defaults to :class:`secrets.SystemRandom`.

    Returns:
        A string of *length* characters from the unreserved set.

    Raises:
        ValueError: If *length* is outside the RFC 7636 bounds.
    """
    if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"code verifier length must be between {MIN_VERIFIER_LENGTH} "
            f"and {MAX_VERIFIER_LENGTH}, got {length}"
        )
    source = rng if rng is not None else secrets.SystemRandom()
    return "".join(source.choice(UNRESERVED_CHARACTERS) for _ in range(length))


def derive_code_challenge(verifier: str) -> str:
    """Return the S256 challenge for *verifier*: unpadded base64url of its SHA-256."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def is_valid_verifier(verifier: str) -> bool:
    """Check length and character set of a verifier against RFC 7636."""
    if not MIN_VERIFIER_LENGTH <= len(verifier) <= MAX_VERIFIER_LENGTH:
        return False
    return all(ch in UNRESERVED_CHARACTERS for ch in verifier)


def generate_state() -> str:
    """Return a 16 character hex string used to correlate the IDP redirect."""
    return secrets.token_hex(8)
