"""Unit tests for auth/tokens.py -- bearer token issue and verification.

Covers:
- issue() then verify() returns the subject id
- expiry is judged against the injected clock, with optional leeway
- a token for one key class never verifies under the other
- garbage input or a mistyped claim is TOKEN_MALFORMED, a foreign signature
  is TOKEN_INVALID
- the sid claim ties an access token to the refresh token of its login
- usage errors (empty subject, non-positive ttl) raise
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import AuthFailure
from auth.tokens import KeyClass, TokenCodec
from conftest import make_settings


def test_issue_then_verify_returns_subject(codec):
    token = codec.issue("user-1", 60, KeyClass.ACCESS)
    outcome = codec.verify(token, KeyClass.ACCESS)
    assert outcome.ok
    assert outcome.value == "user-1"


def test_tokens_for_same_subject_are_distinct(codec):
    # Same clock instant, same subject -- jti keeps them apart.
    assert codec.issue("user-1", 60, KeyClass.REFRESH) != codec.issue("user-1", 60, KeyClass.REFRESH)


def test_token_valid_until_expiry(codec, clock):
    token = codec.issue("user-1", 60, KeyClass.ACCESS)
    clock.advance(58)
    assert codec.verify(token, KeyClass.ACCESS).ok


def test_token_expired_after_ttl(codec, clock):
    token = codec.issue("user-1", 60, KeyClass.ACCESS)
    clock.advance(60)
    outcome = codec.verify(token, KeyClass.ACCESS)
    assert outcome.error is AuthFailure.TOKEN_EXPIRED


def test_leeway_extends_validity(clock):
    codec = TokenCodec(make_settings(token_leeway_seconds=30), clock=clock)
    token = codec.issue("user-1", 60, KeyClass.ACCESS)
    clock.advance(75)
    assert codec.verify(token, KeyClass.ACCESS).ok
    clock.advance(20)
    assert codec.verify(token, KeyClass.ACCESS).error is AuthFailure.TOKEN_EXPIRED


def test_access_token_rejected_as_refresh(codec):
    token = codec.issue("user-1", 60, KeyClass.ACCESS)
    assert codec.verify(token, KeyClass.REFRESH).error is AuthFailure.TOKEN_INVALID


def test_refresh_token_rejected_as_access(codec):
    token = codec.issue("user-1", 60, KeyClass.REFRESH)
    assert codec.verify(token, KeyClass.ACCESS).error is AuthFailure.TOKEN_INVALID


def test_wrong_typ_claim_under_right_key_is_invalid(settings, codec, clock):
    # Correct signature, but the token claims to be a refresh token.
    payload = {
        "sub": "user-1",
        "exp": int((clock() + timedelta(seconds=60)).timestamp()),
        "typ": "refresh",
    }
    token = jwt.encode(payload, settings.access_token_secret, algorithm="HS256")
    assert codec.verify(token, KeyClass.ACCESS).error is AuthFailure.TOKEN_INVALID


def test_foreign_signature_is_invalid(codec, clock):
    other = TokenCodec(make_settings(), clock=clock)
    token = other.issue("user-1", 60, KeyClass.ACCESS)
    assert codec.verify(token, KeyClass.ACCESS).error is AuthFailure.TOKEN_INVALID


@pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b.c"])
def test_garbage_is_malformed(codec, garbage):
    assert codec.verify(garbage, KeyClass.ACCESS).error is AuthFailure.TOKEN_MALFORMED


def test_missing_typ_claim_is_malformed(settings, codec):
    exp = int((datetime.now(timezone.utc) + timedelta(seconds=60)).timestamp())
    token = jwt.encode({"sub": "user-1", "exp": exp}, settings.access_token_secret, algorithm="HS256")
    assert codec.verify(token, KeyClass.ACCESS).error is AuthFailure.TOKEN_MALFORMED


@pytest.mark.parametrize("bad_claim", [{"sub": 123}, {"iat": "yesterday"}])
def test_mistyped_claim_is_malformed(settings, codec, bad_claim):
    exp = int((datetime.now(timezone.utc) + timedelta(seconds=60)).timestamp())
    payload = {"sub": "user-1", "exp": exp, "typ": "access", **bad_claim}
    token = jwt.encode(payload, settings.access_token_secret, algorithm="HS256")
    assert codec.verify(token, KeyClass.ACCESS).error is AuthFailure.TOKEN_MALFORMED


def test_session_id_is_carried_by_both_key_classes(codec):
    sid = codec.new_session_id()
    access = codec.issue("user-1", 60, KeyClass.ACCESS, session_id=sid)
    refresh = codec.issue("user-1", 60, KeyClass.REFRESH, session_id=sid)
    assert codec.session_id(access) == codec.session_id(refresh) == sid
    assert codec.verify(access, KeyClass.ACCESS).ok


@pytest.mark.parametrize("token", [None, "", "not-a-token"])
def test_session_id_absent(codec, token):
    assert codec.session_id(token) is None
    assert codec.session_id(codec.issue("user-1", 60, KeyClass.ACCESS)) is None


def test_issue_rejects_empty_subject(codec):
    with pytest.raises(ValueError):
        codec.issue("", 60, KeyClass.ACCESS)


def test_issue_rejects_non_positive_ttl(codec):
    with pytest.raises(ValueError):
        codec.issue("user-1", 0, KeyClass.ACCESS)
