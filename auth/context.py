"""
auth/context.py -- Per-request evaluation context for authentication checks.

One AuthContext is built per inbound request and passed into every
Authentication call. It owns everything that used to be process-global:
the resolved identity, the logged-in verdict and the memoized rights. Because
nothing outlives the context, one user's rights can never leak into another
user's request.

session is the session-backed mapping of the transport layer (Starlette's
request.session in the API, a plain dict in tests and the CLI). The auth core
reads and writes three keys in it: see LOGGED_IN_KEY, SECRET_KEY_KEY and
CSRF_TOKEN_KEY.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from dataclasses import dataclass, field

from auth.models import User

LOGGED_IN_KEY = "backend_logged_in"
SECRET_KEY_KEY = "backend_secret_key"
CSRF_TOKEN_KEY = "csrf_token"


@dataclass
class AuthContext:
    """Identity and rights cache for one evaluation (normally one request).

    logged_in is None until the session has been validated once; afterwards
    it is the cached verdict. allowed_modules / allowed_actions /
    installed_modules are None until first use and then filled exactly once.
    """

    session_id: str
    session: MutableMapping = field(default_factory=dict)
    request_uri: str = ""
    query: dict[str, str] = field(default_factory=dict)

    logged_in: bool | None = None
    user: User | None = None
    allowed_modules: dict[str, bool] | None = None
    allowed_actions: dict[str, dict[str, int]] | None = None
    installed_modules: set[str] | None = None

    @property
    def secret_key(self) -> str:
        return str(self.session.get(SECRET_KEY_KEY) or "")

    def reset(self) -> None:
        """Forget every cached result so the next check starts from the session again."""
        self.logged_in = None
        self.user = None
        self.allowed_modules = None
        self.allowed_actions = None
        self.installed_modules = None
