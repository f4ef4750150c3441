"""Tests for the session token codec and token hashing."""

import random
import string
from datetime import UTC, datetime, timedelta

import pytest
from jose import jwt
from jose.utils import base64url_decode

from firesession.core.exceptions import WeakSigningKeyError
from firesession.core.security import (
    SessionTokenCodec,
    is_canonical_token,
    generate_session_id,
    hash_session_token,
    verify_session_token_hash,
)
from firesession.schemas.users import AuthProvider


_B64URL_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits + "-_"


def _flip_bit(token: str, index: int, bit: int) -> str:
    """Flip one bit of one character of the raw token string."""
    flipped = chr(ord(token[index]) ^ (1 << bit))
    return token[:index] + flipped + token[index + 1 :]


def _twin_signature(token: str) -> str:
    """Respell the signature so it decodes to the same bytes."""
    head, _, signature = token.rpartition(".")
    # A 32-byte HMAC leaves the two low bits of the last character unused
    last = _B64URL_ALPHABET.index(signature[-1])
    return f"{head}.{signature[:-1]}{_B64URL_ALPHABET[last ^ 1]}"


def _claims(codec: SessionTokenCodec, **overrides):
    values = {
        "uid": "firebase-uid-alice",
        "email": "alice@example.com",
        "name": "Alice Liddell",
        "provider": AuthProvider.GOOGLE,
        "photo_url": "https://example.com/alice.png",
    }
    values.update(overrides)
    return codec.mint_claims(**values)


class TestSessionTokenCodec:
    """Tests for signing and verifying session tokens."""

    def test_round_trip(self, codec: SessionTokenCodec):
        """A signed token verifies back to exactly the same claims."""
        claims = _claims(codec)
        token = codec.sign(claims)

        assert codec.verify(token) == claims

    def test_round_trip_with_optional_fields_missing(self, codec: SessionTokenCodec):
        claims = _claims(codec, name=None, provider=None, photo_url=None)

        assert codec.verify(codec.sign(claims)) == claims

    def test_wire_claims_use_camel_case_names(self, codec: SessionTokenCodec):
        token = codec.sign(_claims(codec))
        payload = jwt.get_unverified_claims(token)

        assert payload["photoURL"] == "https://example.com/alice.png"
        assert payload["sessionId"].startswith("session_")
        assert payload["provider"] == "google"
        assert payload["iss"] == codec.issuer
        assert payload["aud"] == codec.audience

    def test_default_lifetime_is_seven_days(self, codec: SessionTokenCodec):
        claims = _claims(codec)

        assert claims.expires_at - claims.issued_at == 7 * 24 * 60 * 60
        assert claims.expires - claims.issued == timedelta(days=7)

    def test_every_session_gets_a_new_id(self, codec: SessionTokenCodec):
        assert _claims(codec).session_id != _claims(codec).session_id

    def test_single_bit_flips_are_rejected(self, codec: SessionTokenCodec):
        """Flipping any bit of any character of the token never verifies."""
        token = codec.sign(_claims(codec))

        accepted = [
            (index, bit)
            for index in range(len(token))
            for bit in range(8)
            if codec.verify(_flip_bit(token, index, bit)) is not None
        ]

        assert accepted == []

    def test_random_single_bit_flips_are_rejected(self, codec: SessionTokenCodec):
        """1000 randomized single-bit mutations over fresh tokens never verify."""
        rng = random.Random(20240611)

        for _ in range(1000):
            token = codec.sign(_claims(codec))
            mutated = _flip_bit(token, rng.randrange(len(token)), rng.randrange(8))
            assert mutated != token
            assert codec.verify(mutated) is None

    def test_non_canonical_signature_is_rejected(self, codec: SessionTokenCodec):
        token = codec.sign(_claims(codec))
        twin = _twin_signature(token)

        assert twin != token
        assert base64url_decode(twin.rsplit(".", 1)[1].encode()) == base64url_decode(
            token.rsplit(".", 1)[1].encode()
        )
        assert codec.verify(twin) is None

    def test_expired_token_is_rejected(self, codec: SessionTokenCodec):
        now = datetime.now(UTC)
        claims = _claims(codec, now=now - timedelta(hours=1), expires_delta=timedelta(minutes=59, seconds=59))

        assert claims.expires < now
        assert codec.verify(codec.sign(claims)) is None

    def test_unexpired_token_is_accepted(self, codec: SessionTokenCodec):
        claims = _claims(codec, expires_delta=timedelta(hours=1))

        assert codec.verify(codec.sign(claims)) == claims

    def test_other_secret_is_rejected(self, codec: SessionTokenCodec):
        other = SessionTokenCodec("another-signing-secret-that-is-long-enough-42")
        token = other.sign(_claims(other))

        assert codec.verify(token) is None

    def test_wrong_audience_is_rejected(self, codec: SessionTokenCodec, signing_secret: str):
        other = SessionTokenCodec(signing_secret, audience="someone-else")
        token = other.sign(_claims(other))

        assert codec.verify(token) is None

    def test_wrong_issuer_is_rejected(self, codec: SessionTokenCodec, signing_secret: str):
        other = SessionTokenCodec(signing_secret, issuer="someone-else")
        token = other.sign(_claims(other))

        assert codec.verify(token) is None

    def test_unknown_claims_are_rejected(self, codec: SessionTokenCodec, signing_secret: str):
        """Claims outside the declared set fail verification even when signed."""
        payload = codec.sign(_claims(codec))
        claims = jwt.get_unverified_claims(payload)
        claims["role"] = "admin"
        token = jwt.encode(claims, signing_secret, algorithm="HS256")

        assert codec.verify(token) is None

    def test_missing_claims_are_rejected(self, codec: SessionTokenCodec, signing_secret: str):
        claims = jwt.get_unverified_claims(codec.sign(_claims(codec)))
        del claims["sessionId"]
        token = jwt.encode(claims, signing_secret, algorithm="HS256")

        assert codec.verify(token) is None

    def test_garbage_is_rejected(self, codec: SessionTokenCodec):
        assert codec.verify("not-a-token") is None
        assert codec.verify("") is None

    def test_decode_skips_signature_check(self, codec: SessionTokenCodec):
        other = SessionTokenCodec("another-signing-secret-that-is-long-enough-42")
        claims = _claims(other)
        token = other.sign(claims)

        assert codec.verify(token) is None
        assert codec.decode(token) == claims

    def test_decode_garbage_returns_none(self, codec: SessionTokenCodec):
        assert codec.decode("not-a-token") is None

    def test_short_secret_is_refused(self):
        with pytest.raises(WeakSigningKeyError):
            SessionTokenCodec("too-short")

    def test_secret_length_counts_bytes(self):
        # 16 two-byte characters
        SessionTokenCodec("é" * 16)


class TestPurposeTokens:
    """Tests for single-purpose tokens."""

    def test_round_trip(self, codec: SessionTokenCodec):
        token = codec.sign_purpose_token(
            {"userId": "u1", "email": "a@x.com"}, "password_reset", timedelta(hours=1)
        )
        payload = codec.verify_purpose_token(token, "password_reset")

        assert payload is not None
        assert payload["userId"] == "u1"
        assert payload["email"] == "a@x.com"
        assert payload["purpose"] == "password_reset"
        assert payload["exp"] - payload["iat"] == 3600
        assert "iss" not in payload

    def test_other_purpose_is_rejected(self, codec: SessionTokenCodec):
        token = codec.sign_purpose_token({"userId": "u1"}, "password_reset", timedelta(hours=1))

        assert codec.verify_purpose_token(token, "email_verification") is None

    def test_purpose_token_is_not_a_session(self, codec: SessionTokenCodec):
        token = codec.sign_purpose_token({"userId": "u1"}, "password_reset", timedelta(hours=1))

        assert codec.verify(token) is None

    def test_session_is_not_a_purpose_token(self, codec: SessionTokenCodec):
        token = codec.sign(_claims(codec))

        assert codec.verify_purpose_token(token, "password_reset") is None

    def test_expired_purpose_token_is_rejected(self, codec: SessionTokenCodec):
        token = codec.sign_purpose_token(
            {"userId": "u1"},
            "password_reset",
            timedelta(hours=1),
            now=datetime.now(UTC) - timedelta(hours=1, seconds=1),
        )

        assert codec.verify_purpose_token(token, "password_reset") is None

    def test_purpose_token_bit_flips_are_rejected(self, codec: SessionTokenCodec):
        token = codec.sign_purpose_token({"userId": "u1"}, "password_reset", timedelta(hours=1))

        for index in range(len(token)):
            for bit in range(8):
                assert codec.verify_purpose_token(_flip_bit(token, index, bit), "password_reset") is None

        assert codec.verify_purpose_token(_twin_signature(token), "password_reset") is None


class TestCanonicalTokens:
    """Tests for the base64url spelling check."""

    def test_signed_tokens_are_canonical(self, codec: SessionTokenCodec):
        assert is_canonical_token(codec.sign(_claims(codec)))

    @pytest.mark.parametrize(
        "token",
        [
            "",
            "a.b",
            "a.b.c.d",
            "eyJhbGciOiJIUzI1NiJ9.e30.ab+c",
            "eyJhbGciOiJIUzI1NiJ9.e30.abc=",
            "eyJhbGciOiJIUzI1NiJ9.e30.a",
            "eyJhbGciOiJIUzI1NiJ9.e30.ab c",
            "eyJhbGciOiJIUzI1NiJ9.e30.abcé",
        ],
    )
    def test_malformed_spellings_are_not_canonical(self, token: str):
        assert not is_canonical_token(token)

    def test_twin_spelling_is_not_canonical(self, codec: SessionTokenCodec):
        assert not is_canonical_token(_twin_signature(codec.sign(_claims(codec))))


class TestTokenHashing:
    """Tests for stored session token hashes."""

    def test_hash_verifies_only_its_token(self, codec: SessionTokenCodec):
        first = codec.sign(_claims(codec))
        second = codec.sign(_claims(codec))
        token_hash = hash_session_token(first)

        assert token_hash != first
        assert verify_session_token_hash(first, token_hash)
        assert not verify_session_token_hash(second, token_hash)

    def test_hashes_are_salted(self):
        assert hash_session_token("tok1") != hash_session_token("tok1")

    def test_corrupted_hash_does_not_raise(self):
        assert verify_session_token_hash("tok1", "not-a-hash") is False

    def test_session_ids_are_unique(self):
        ids = {generate_session_id() for _ in range(100)}

        assert len(ids) == 100
