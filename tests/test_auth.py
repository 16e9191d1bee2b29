"""Tests for the password gate."""

from __future__ import annotations

import pytest

from auth import SessionRegistry, hash_password, validate_new_password, verify_password


def test_hash_is_sha256_hex():
    assert hash_password("test") == "9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08"


def test_validate_new_password():
    validate_new_password("abcd", "abcd")
    with pytest.raises(ValueError, match="at least 4 characters"):
        validate_new_password("abc", "abc")
    with pytest.raises(ValueError, match="do not match"):
        validate_new_password("abcd", "abce")


def test_verify_password():
    stored = hash_password("secret")
    assert verify_password("secret", stored)
    assert not verify_password("Secret", stored)
    assert not verify_password("secret", None)


def test_sessions():
    sessions = SessionRegistry()
    token = sessions.create()
    assert sessions.is_valid(token)
    assert not sessions.is_valid("other")
    assert not sessions.is_valid(None)
    sessions.revoke(token)
    assert not sessions.is_valid(token)
    a, b = sessions.create(), sessions.create()
    sessions.clear()
    assert not sessions.is_valid(a) and not sessions.is_valid(b)
