"""Password hashing for organization members."""

from __future__ import annotations

import base64
import hashlib
import hmac
import os
from typing import Optional, Tuple


PBKDF2_ALGORITHM = "pbkdf2_sha256"
PBKDF2_ROUNDS = 260_000


def _b64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _parse_hash(encoded_hash: str) -> Optional[Tuple[int, bytes, bytes]]:
    parts = (encoded_hash or "").split("$", 3)
    if len(parts) != 4 or parts[0] != PBKDF2_ALGORITHM:
        return None
    try:
        rounds = int(parts[1])
        salt = base64.b64decode(parts[2].encode("ascii"))
        digest = base64.b64decode(parts[3].encode("ascii"))
    except ValueError:
        return None
    return rounds, salt, digest


def hash_password(password: str, *, rounds: int = PBKDF2_ROUNDS) -> str:
    """Hash a password with PBKDF2-SHA256 and a random salt."""

    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return f"{PBKDF2_ALGORITHM}${rounds}${_b64(salt)}${_b64(digest)}"


def verify_password(password: str, encoded_hash: str) -> bool:
    parsed = _parse_hash(encoded_hash)
    if parsed is None:
        return False
    rounds, salt, expected = parsed
    observed = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(observed, expected)
