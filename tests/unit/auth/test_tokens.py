from __future__ import annotations

from datetime import timedelta

import jwt
import pytest

from parley.auth.tokens import TokenVerifier, extract_bearer_token
from parley.kernel.time import utc_now

pytestmark = pytest.mark.unit

SECRET = "unit-test-secret-with-at-least-32-bytes"


@pytest.fixture
def verifier() -> TokenVerifier:
    return TokenVerifier(SECRET)


def test_issued_token_verifies(verifier):
    token = verifier.issue("alice", ["USER"])
    claims = verifier.verify(token)
    assert claims is not None
    assert claims.sub == "alice"
    assert claims.roles == ["USER"]
    assert claims.exp > utc_now()


def test_default_validity_is_ten_hours(verifier):
    now = utc_now().replace(microsecond=0)
    claims = verifier.verify(verifier.issue("alice", now=now))
    assert claims.exp - now == timedelta(hours=10)


def test_expired_token_is_rejected(verifier):
    token = verifier.issue("alice", expires_in=timedelta(seconds=-5))
    assert verifier.verify(token) is None


def test_token_signed_with_other_secret_is_rejected(verifier):
    forged = TokenVerifier("another-secret-that-is-also-32-bytes-long").issue("alice")
    assert verifier.verify(forged) is None


def test_tampered_payload_is_rejected(verifier):
    header, _, signature = verifier.issue("alice").split(".")
    other_payload = verifier.issue("root").split(".")[1]
    assert verifier.verify(f"{header}.{other_payload}.{signature}") is None


def test_garbage_is_rejected(verifier):
    assert verifier.verify("not-a-jwt") is None
    assert verifier.verify("") is None


def test_token_without_subject_is_rejected(verifier):
    token = jwt.encode({"exp": int((utc_now() + timedelta(hours=1)).timestamp())}, SECRET, algorithm="HS256")
    assert verifier.verify(token) is None


def test_unsigned_token_is_rejected(verifier):
    token = jwt.encode(
        {"sub": "alice", "exp": int((utc_now() + timedelta(hours=1)).timestamp())},
        None,
        algorithm="none",
    )
    assert verifier.verify(token) is None


def test_issuer_is_checked_when_configured():
    issuing = TokenVerifier(SECRET, issuer="parley")
    strict = TokenVerifier(SECRET, issuer="someone-else")
    token = issuing.issue("alice")
    assert issuing.verify(token).iss == "parley"
    assert strict.verify(token) is None


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("bearer abc", "abc"),
        ("Bearer ", None),
        ("Basic dXNlcjpwYXNz", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_bearer_token(header, expected):
    assert extract_bearer_token(header) == expected
