"""
auth/authentication.py -- Session validation and two-tier access control.

Authentication is a stateless service: every method takes the request's
AuthContext, and all per-request state (identity, logged-in verdict, rights
caches) lives on that context. Build one Authentication per process and one
AuthContext per request.

Session model:
  A login inserts a users_sessions row binding the transport session id to the
  user, together with a secret_key derived from (session_id, user_id). A
  request is authenticated when its (session_id, secret_key) pair matches a
  row whose last activity is within SESSION_LIFETIME; the row's date is then
  refreshed. Expiry is checked when the row is read, and old rows are swept on
  every successful login.

Access model:
  Module level: a module is reachable if any of the user's groups lists it in
      groups_rights_modules.
  Action level: the effective level of (module, action) is the MAX level over
      all of the user's groups; any level > 0 grants access.
  God users reach every installed module and action without rights rows.
  ALWAYS_ALLOWED_MODULES / ALWAYS_ALLOWED_ACTIONS need no login at all.
  Rights for modules that are not installed never grant anything.

Every check answers with a plain bool and denies on anything unknown.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from types import MappingProxyType

from auth.context import CSRF_TOKEN_KEY, LOGGED_IN_KEY, SECRET_KEY_KEY, AuthContext
from auth.hashing import get_encrypted_password, get_encrypted_string
from auth.models import User, UserSession
from auth.modules import ModuleRegistry
from auth.naming import to_camel_case
from auth.store import AuthStore, format_date

logger = logging.getLogger("backoffice.auth")

SESSION_LIFETIME = timedelta(minutes=30)

ALWAYS_ALLOWED_MODULES = ("Core", "Error", "Authentication")

# Reachable for anonymous users (login screen, password reset, error pages)
# whatever the rights tables say.
ALWAYS_ALLOWED_ACTIONS = MappingProxyType(
    {
        "Core": MappingProxyType({"GenerateUrl": 7, "ContentCss": 7, "Templates": 7}),
        "Error": MappingProxyType({"Index": 7}),
        "Authentication": MappingProxyType({"Index": 7, "ResetPassword": 7, "Logout": 7}),
    }
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Authentication:
    """Login, logout, session validation and rights checks.

    Usage:
        auth = Authentication(store, ModuleRegistry(store, settings.available_modules))
        ctx = AuthContext(session_id=transport_session_id, session=request.session)
        if auth.is_allowed_action(ctx, "Edit", "Pages"):
            ...

    clock returns the current time; tests inject a fixed or advancing clock
    to exercise the inactivity window.
    """

    def __init__(
        self,
        store: AuthStore,
        registry: ModuleRegistry,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.registry = registry
        self.clock = clock

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _now(self) -> str:
        return format_date(self.clock())

    def _cutoff(self) -> str:
        return format_date(self.clock() - SESSION_LIFETIME)

    def cleanup_old_sessions(self) -> int:
        """Delete every session row, for all users, idle longer than SESSION_LIFETIME."""
        removed = self.store.delete_sessions_older_than(self._cutoff())
        if removed:
            logger.info("Removed %d expired session(s)", removed)
        return removed

    def is_logged_in(self, ctx: AuthContext) -> bool:
        """Validate the context's (session_id, secret_key) pair against users_sessions.

        On a match the row's last-activity date is refreshed and the user is
        loaded onto the context. The verdict is cached on the context, so a
        second call in the same request does not query again. On a miss the
        stored secret key is blanked, which keeps later checks cheap.
        """
        if ctx.logged_in is not None:
            return ctx.logged_in

        secret_key = ctx.secret_key
        if ctx.session_id and secret_key:
            row = self.store.get_session(ctx.session_id, secret_key, self._cutoff())
            if row is not None:
                user = self.store.get_user(row.user_id)
                if user is not None and user.active and not user.deleted:
                    self.store.touch_session(row.id, self._now())
                    ctx.user = user
                    ctx.logged_in = True
                    return True

        self._mark_anonymous(ctx)
        return False

    def get_user(self, ctx: AuthContext) -> User | None:
        """Return the authenticated user for this context, or None when anonymous."""
        return ctx.user if self.is_logged_in(ctx) else None

    def login_user(self, ctx: AuthContext, login: str, password: str) -> UserSession | None:
        """Log a user in with email and password.

        Returns the new session row on success. Returns None when the
        credentials do not match an active, non-deleted user; unknown emails
        and wrong passwords take the same path, including the credentials
        query, so callers cannot tell them apart.
        """
        login = str(login)
        password = str(password)

        encrypted = get_encrypted_password(self.store, login, password)
        if encrypted is None:
            # Unknown email: same salt lookup and hashing as a known one, then
            # query with a value no row can hold.
            get_encrypted_string(password, self.store.get_user_setting(0, "password_key"))
            encrypted = ""

        user_id = self.store.get_user_id_by_credentials(login, encrypted)
        if user_id is None or not ctx.session_id:
            if user_id is not None:
                logger.warning("Login for %s refused: no transport session id", login)
            else:
                logger.info("Failed login for %s", login)
            self._mark_anonymous(ctx)
            return None

        self.cleanup_old_sessions()
        # One row per transport session: a re-login replaces the previous binding.
        self.store.delete_sessions_by_session_id(ctx.session_id)

        session = UserSession(
            session_id=ctx.session_id,
            secret_key=get_encrypted_string(ctx.session_id, user_id),
            user_id=user_id,
            date=self._now(),
        )
        session.id = self.store.insert_session(session)

        ctx.session[LOGGED_IN_KEY] = True
        ctx.session[SECRET_KEY_KEY] = session.secret_key
        ctx.reset()
        ctx.logged_in = True
        ctx.user = self.store.get_user(user_id)
        logger.info("User %d logged in", user_id)
        return session

    def logout(self, ctx: AuthContext) -> None:
        """Drop every session row of the current transport session and clear the session keys.

        The transport session itself is not destroyed; other session data
        stays usable for the rest of the site.
        """
        removed = self.store.delete_sessions_by_session_id(ctx.session_id)
        ctx.session[LOGGED_IN_KEY] = False
        ctx.session[SECRET_KEY_KEY] = ""
        ctx.session[CSRF_TOKEN_KEY] = ""
        ctx.reset()
        ctx.logged_in = False
        logger.info("Logged out transport session (%d row(s) removed)", removed)

    def _mark_anonymous(self, ctx: AuthContext) -> None:
        ctx.session[LOGGED_IN_KEY] = False
        ctx.session[SECRET_KEY_KEY] = ""
        ctx.reset()
        ctx.logged_in = False

    # ------------------------------------------------------------------
    # Rights
    # ------------------------------------------------------------------

    def get_installed_modules(self, ctx: AuthContext) -> set[str]:
        if ctx.installed_modules is None:
            ctx.installed_modules = self.registry.get_installed_modules(ctx.request_uri, ctx.query)
        return ctx.installed_modules

    def get_allowed_modules(self, ctx: AuthContext) -> dict[str, bool]:
        """Return {module: True} for every installed module the user's groups grant.

        Filled once per context; anonymous contexts get an empty dict.
        """
        if not self.is_logged_in(ctx):
            return {}
        if ctx.allowed_modules is None:
            installed = self.get_installed_modules(ctx)
            rows = self.store.get_allowed_module_rows(ctx.session_id, ctx.secret_key)
            ctx.allowed_modules = {module: True for module in rows if module in installed}
        return ctx.allowed_modules

    def get_allowed_actions(self, ctx: AuthContext) -> dict[str, dict[str, int]]:
        """Return {module: {action: level}} with the MAX level over the user's groups.

        Only installed modules are kept. Filled once per context; anonymous
        contexts get an empty dict.
        """
        if not self.is_logged_in(ctx):
            return {}
        if ctx.allowed_actions is None:
            installed = self.get_installed_modules(ctx)
            allowed: dict[str, dict[str, int]] = {}
            for module, action, level in self.store.get_allowed_action_rows(ctx.session_id, ctx.secret_key):
                if module in installed:
                    allowed.setdefault(module, {})[action] = int(level)
            ctx.allowed_actions = allowed
        return ctx.allowed_actions

    def is_allowed_module(self, ctx: AuthContext, module: str) -> bool:
        """Return True if the current identity may open module."""
        module = to_camel_case(module)

        if module in ALWAYS_ALLOWED_MODULES:
            return True

        if not self.is_logged_in(ctx):
            return False

        if ctx.user is not None and ctx.user.is_god and module in self.get_installed_modules(ctx):
            return True

        return self.get_allowed_modules(ctx).get(module, False)

    def is_allowed_action(self, ctx: AuthContext, action: str, module: str) -> bool:
        """Return True if the current identity may run action inside module."""
        action = to_camel_case(action)
        module = to_camel_case(module)

        if action in ALWAYS_ALLOWED_ACTIONS.get(module, {}):
            return True

        if not self.is_logged_in(ctx):
            return False

        if ctx.user is not None and ctx.user.is_god and module in self.get_installed_modules(ctx):
            return True

        return self.get_allowed_actions(ctx).get(module, {}).get(action, 0) > 0
