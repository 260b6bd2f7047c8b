"""Tests for PKCE verifier/challenge and state generation."""

from __future__ import annotations

import random
import re

import pytest

from idptoken.pkce import (
    DEFAULT_VERIFIER_LENGTH,
    UNRESERVED_CHARACTERS,
    derive_code_challenge,
    generate_code_verifier,
    generate_state,
    is_valid_verifier,
)


class TestCodeVerifier:
    def test_default_length(self) -> None:
        assert len(generate_code_verifier()) == DEFAULT_VERIFIER_LENGTH == 50

    @pytest.mark.parametrize("length", [43, 64, 128])
    def test_alphabet_and_length(self, length: int) -> None:
        verifier = generate_code_verifier(length)
        assert len(verifier) == length
        assert set(verifier) <= set(UNRESERVED_CHARACTERS)
        assert is_valid_verifier(verifier)

    @pytest.mark.parametrize("length", [0, 42, 129])
    def test_out_of_bounds_raises(self, length: int) -> None:
        with pytest.raises(ValueError, match="between 43 and 128"):
            generate_code_verifier(length)

    def test_seeded_rng_is_reproducible(self) -> None:
        first = generate_code_verifier(rng=random.Random(7))
        second = generate_code_verifier(rng=random.Random(7))
        assert first == second

    def test_random_verifiers_differ(self) -> None:
        assert generate_code_verifier() != generate_code_verifier()

    @pytest.mark.parametrize(
        "verifier",
        ["a" * 42, "a" * 129, "a" * 42 + "!", "ä" * 50],
    )
    def test_invalid_verifiers(self, verifier: str) -> None:
        assert not is_valid_verifier(verifier)


class TestCodeChallenge:
    def test_rfc7636_appendix_b(self) -> None:
        verifier = "dBjftJeZ4CVP-mJ92K4cB9DmhLhEUNh1qX5eo2ZNg-c"
        assert derive_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCQM5HlrxP2FjIeGOdV_gYgc"

    def test_deterministic_unpadded_base64url(self) -> None:
        verifier = generate_code_verifier()
        challenge = derive_code_challenge(verifier)
        assert challenge == derive_code_challenge(verifier)
        assert len(challenge) == 43
        assert re.fullmatch(r"[A-Za-z0-9_-]{43}", challenge)


class TestState:
    def test_sixteen_hex_characters(self) -> None:
        assert re.fullmatch(r"[0-9a-f]{16}", generate_state())

    def test_states_differ(self) -> None:
        assert generate_state() != generate_state()
