"""
Password hashing with scrypt, stored as ``<hex digest>.<hex salt>``.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

_KEY_LENGTH = 64
# Cost parameters; stored hashes are only verifiable with the same values
_N, _R, _P = 16384, 8, 1


def _derive(password: str, salt: str) -> bytes:
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=_N,
        r=_R,
        p=_P,
        dklen=_KEY_LENGTH,
    )


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    return f"{_derive(password, salt).hex()}.{salt}"


def verify_password(supplied: str, stored: str) -> bool:
    digest, sep, salt = stored.partition(".")
    if not sep or not digest or not salt:
        return False
    try:
        expected = bytes.fromhex(digest)
    except ValueError:
        return False
    return hmac.compare_digest(expected, _derive(supplied, salt))
