"""
auth/hashing.py -- Legacy salted hashing for passwords and session secrets.

Construction: sha1(md5(salt) + md5(value)), every digest hex-encoded, all
operands coerced to str and UTF-8 encoded. Stored password hashes and the
secret_key column of users_sessions were both produced by this function, so
its output must stay byte-identical. It is not a modern password hash; moving
to one needs a migration that re-hashes on next login, and session secrets
would have to move with it.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import secrets
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auth.store import AuthStore


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()  # noqa: S324 # nosec B324 -- legacy format


def get_encrypted_string(value, salt=None) -> str:
    """Return sha1(md5(salt) . md5(value)) as 40 hex characters.

    None is treated as the empty string for both arguments, so
    get_encrypted_string(v) == get_encrypted_string(v, "").
    """
    value = "" if value is None else str(value)
    salt = "" if salt is None else str(salt)
    return hashlib.sha1((_md5(salt) + _md5(value)).encode("ascii")).hexdigest()  # noqa: S324 # nosec B324


def get_encrypted_password(store: AuthStore, email: str, password: str) -> str | None:
    """Hash password with the salt stored for the user owning email.

    Returns None when no user has that email. Callers turn None into a
    generic credentials failure; it must never reach the client as a
    distinct error.
    """
    user_id = store.get_user_id_by_email(str(email))
    if user_id is None:
        return None

    key = store.get_user_setting(user_id, "password_key")
    return get_encrypted_string(str(password), key)


def generate_password_key() -> str:
    """Return a fresh per-user salt in the same 40-hex shape as stored keys."""
    return get_encrypted_string(secrets.token_hex(16), secrets.token_hex(16))
