"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
Authentication service do the work; these only own the domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class User:
    """A back office identity.

    password is the legacy salted hash (see auth/hashing.py), never plaintext.
    settings holds per-user key/value pairs; the auth core relies on
    "password_key" (the salt), "reset_password_key" and
    "reset_password_timestamp".

    is_god marks a superuser: every installed module and action is allowed
    without consulting group rights.
    """

    email: str
    password: str
    id: int | None = None
    active: bool = True
    deleted: bool = False
    is_god: bool = False
    date: str = ""  # UTC, set by store on insert
    settings: dict[str, str] = field(default_factory=dict)

    def get_setting(self, name: str, default: str | None = None) -> str | None:
        return self.settings.get(name, default)


@dataclass
class UserSession:
    """A users_sessions row binding a transport session id to a user.

    secret_key is derived server-side from (session_id, user_id) and must be
    presented together with session_id. date is the last-activity timestamp.
    """

    session_id: str
    secret_key: str
    user_id: int
    date: str
    id: int | None = None


class PasswordStrength(str, Enum):
    weak = "weak"
    average = "average"
    strong = "strong"
