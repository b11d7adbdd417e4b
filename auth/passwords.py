"""
auth/passwords.py -- Account password lifecycle: register, change, forgot, reset.

Every stored password is get_encrypted_string(plain, password_key) where
password_key is a per-user salt kept in users_settings. Changing a password
always rotates that salt.

Forgot / reset flow:
  1. request_password_reset() stores a one-off key and the unix time it was
     issued as the reset_password_key / reset_password_timestamp settings.
  2. The key travels to the user inside build_reset_link().
  3. reset_password() accepts the key while it is younger than the TTL, sets
     the new password and deletes both settings so the link works once.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime
from urllib.parse import urlencode

from auth.hashing import generate_password_key, get_encrypted_string
from auth.models import User
from auth.store import AuthStore

logger = logging.getLogger("backoffice.auth.passwords")

RESET_KEY_SETTING = "reset_password_key"
RESET_TIMESTAMP_SETTING = "reset_password_timestamp"

# Module setting that overrides the configured reset TTL (seconds) at runtime.
RESET_TTL_MODULE = "Authentication"
RESET_TTL_SETTING = "reset_password_ttl"


def register_user(store: AuthStore, email: str, password: str, *, is_god: bool = False, active: bool = True) -> int:
    """Create a user with a fresh salt and return its id.

    Raises sqlalchemy.exc.IntegrityError if the email already exists.
    """
    key = generate_password_key()
    user = User(
        email=email,
        password=get_encrypted_string(password, key),
        is_god=is_god,
        active=active,
        settings={"password_key": key},
    )
    return store.create_user(user)


def change_password(store: AuthStore, user_id: int, new_password: str) -> bool:
    """Re-hash new_password under a rotated salt. Returns False for an unknown user.

    Hash and salt are committed together; on a database error neither changes.
    """
    key = generate_password_key()
    return store.update_password(user_id, get_encrypted_string(new_password, key), password_key=key)


def request_password_reset(store: AuthStore, email: str, now: datetime) -> str | None:
    """Issue a reset key for email. Returns None if no such user exists.

    Callers must answer the same way whether or not a key was issued.
    """
    user_id = store.get_user_id_by_email(email)
    if user_id is None:
        return None

    key = get_encrypted_string(email, secrets.token_hex(16))
    store.set_user_setting(user_id, RESET_KEY_SETTING, key)
    store.set_user_setting(user_id, RESET_TIMESTAMP_SETTING, int(now.timestamp()))
    logger.info("Password reset requested for user %d", user_id)
    return key


def get_reset_ttl(store: AuthStore, default_seconds: int) -> int:
    """Return the reset-link lifetime, preferring the module setting over the default."""
    raw = store.get_module_setting(RESET_TTL_MODULE, RESET_TTL_SETTING)
    if raw is None:
        return default_seconds
    try:
        ttl = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s.%s=%r", RESET_TTL_MODULE, RESET_TTL_SETTING, raw)
        return default_seconds
    return ttl if ttl > 0 else default_seconds


def reset_password(
    store: AuthStore,
    email: str,
    key: str,
    new_password: str,
    now: datetime,
    ttl_seconds: int,
) -> bool:
    """Set a new password if key is the live reset key for email.

    Returns False, without touching anything, for an unknown email, a wrong or
    missing key, or an expired key.
    """
    user_id = store.get_user_id_by_email(email)
    if user_id is None:
        return False

    stored_key = store.get_user_setting(user_id, RESET_KEY_SETTING)
    issued_at = store.get_user_setting(user_id, RESET_TIMESTAMP_SETTING)
    if not stored_key or not key or issued_at is None:
        return False
    if not hmac.compare_digest(stored_key.encode("utf-8"), str(key).encode("utf-8")):
        return False
    try:
        issued = int(issued_at)
    except ValueError:
        return False
    if int(now.timestamp()) - issued > ttl_seconds:
        logger.info("Expired password reset key used for user %d", user_id)
        return False

    change_password(store, user_id, new_password)
    store.delete_user_setting(user_id, RESET_KEY_SETTING)
    store.delete_user_setting(user_id, RESET_TIMESTAMP_SETTING)
    logger.info("Password reset completed for user %d", user_id)
    return True


def build_reset_link(site_url: str, email: str, key: str) -> str:
    """Return the absolute URL of the reset-password action carrying email and key."""
    return f"{site_url.rstrip('/')}/private/authentication/reset_password?{urlencode({'email': email, 'key': key})}"
