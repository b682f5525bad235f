from __future__ import annotations

import bcrypt

# bcrypt ignores input past 72 bytes.
_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return str(password or "").encode("utf-8")[:_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(_encode(password), str(password_hash).encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False
