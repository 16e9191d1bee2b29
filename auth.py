"""
Password gate. The password is stored only as a SHA-256 hex digest in settings; a successful
login issues an opaque session token that API requests send as X-Session-Token.
"""
from __future__ import annotations

import hashlib
import hmac
import secrets
import threading

MIN_PASSWORD_LENGTH = 4


def hash_password(password: str) -> str:
    return hashlib.sha256((password or "").encode("utf-8")).hexdigest()


def validate_new_password(password: str, confirm: str | None = None) -> None:
    """Raise ValueError if password is too short or does not match its confirmation."""
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if confirm is not None and password != confirm:
        raise ValueError("Passwords do not match")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    return hmac.compare_digest(hash_password(password), password_hash)


class SessionRegistry:
    """In-memory session tokens; cleared on restart, on logout and on password reset."""

    def __init__(self) -> None:
        self._tokens: set[str] = set()
        self._lock = threading.Lock()

    def create(self) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._tokens.add(token)
        return token

    def is_valid(self, token: str | None) -> bool:
        if not token:
            return False
        with self._lock:
            return token in self._tokens

    def revoke(self, token: str | None) -> None:
        with self._lock:
            self._tokens.discard(token or "")

    def clear(self) -> None:
        with self._lock:
            self._tokens.clear()
