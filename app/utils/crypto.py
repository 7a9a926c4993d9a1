"""
Crypto utilities — bcrypt password hashing & Fernet share tokens.

Password hashing:
  bcrypt with a configurable work factor (``BCRYPT_ROUNDS``, default 12).

Share tokens:
  ``issue_share_token`` / ``read_share_token`` wrap a small JSON payload in a
  Fernet token (AES-128-CBC + HMAC-SHA256). Fernet embeds the issue time, so
  expiry is enforced with ``ttl`` on decrypt and nothing is stored server-side.

  WARNING: ENCRYPTION_KEY must be a 32-byte URL-safe base64 key generated via:
    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
  Store it in the environment — never hard-code or commit it.
"""

import json
import os
import time

import bcrypt
from cryptography.fernet import Fernet, InvalidToken
from flask import current_app, has_app_context


class ShareTokenExpired(Exception):
    """The share token was valid but is older than the allowed TTL."""


class ShareTokenInvalid(Exception):
    """The share token is malformed or was signed with another key."""


def _bcrypt_rounds() -> int:
    if has_app_context():
        return int(current_app.config.get("BCRYPT_ROUNDS", 12))
    return 12


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt."""
    salt = bcrypt.gensalt(rounds=_bcrypt_rounds())
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its bcrypt hash."""
    if not password_hash or not plain_password:
        return False
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )
    except ValueError:
        # Not a bcrypt hash
        return False


# ── Fernet share tokens ──────────────────────────────────────────────────────


def _get_fernet() -> Fernet:
    """Return a Fernet instance keyed by the ENCRYPTION_KEY env var.

    Raises RuntimeError if ENCRYPTION_KEY is not set.
    """
    raw_key = os.getenv("ENCRYPTION_KEY")
    if not raw_key:
        raise RuntimeError(
            "ENCRYPTION_KEY environment variable is not set. "
            "Generate one with: python -c \""
            "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
        )
    return Fernet(raw_key.encode() if isinstance(raw_key, str) else raw_key)


def issue_share_token(payload: dict) -> str:
    """Seal ``payload`` into a URL-safe token."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return _get_fernet().encrypt(body).decode("utf-8")


def read_share_token(token: str, ttl: int) -> dict:
    """Open a token from issue_share_token.

    Raises:
        ShareTokenExpired: token is authentic but older than ``ttl`` seconds.
        ShareTokenInvalid: token is tampered, truncated or foreign.
    """
    fernet = _get_fernet()
    try:
        raw = fernet.decrypt(token.encode("utf-8"), ttl=ttl)
    except InvalidToken:
        # Fernet raises the same error for expiry and tampering; tell them apart
        try:
            issued_at = fernet.extract_timestamp(token.encode("utf-8"))
        except InvalidToken as exc:
            raise ShareTokenInvalid("Invalid share token") from exc
        if time.time() - issued_at > ttl:
            raise ShareTokenExpired("Share link has expired")
        raise ShareTokenInvalid("Invalid share token")
    try:
        return json.loads(raw.decode("utf-8"))
    except ValueError as exc:
        raise ShareTokenInvalid("Invalid share token") from exc
