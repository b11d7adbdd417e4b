"""Unit tests for session handling in auth/authentication.py.

Covers:
- login_user() success and failure paths, session row shape, context flags
- is_logged_in() after login, after logout, and for expired rows
- the 30-minute inactivity window and timestamp refresh
- the expiry sweep on login (system-wide) and explicit cleanup_old_sessions()
- per-context caching and reset()
"""

from unittest.mock import patch

from auth.authentication import SESSION_LIFETIME
from auth.context import CSRF_TOKEN_KEY, LOGGED_IN_KEY, SECRET_KEY_KEY
from auth.hashing import get_encrypted_string
from auth.models import UserSession
from auth.store import format_date


class TestLogin:
    def test_success_returns_session(self, auth, seeded, make_context, clock):
        ctx = make_context("sess-1")
        session = auth.login_user(ctx, "editor@example.com", "Ed1tor!pass")

        assert session is not None
        assert session.user_id == seeded.editor_id
        assert session.session_id == "sess-1"
        assert session.secret_key == get_encrypted_string("sess-1", seeded.editor_id)
        assert session.date == format_date(clock())
        assert session.id is not None

    def test_success_sets_context_and_session_keys(self, auth, seeded, make_context):
        ctx = make_context("sess-1")
        session = auth.login_user(ctx, "editor@example.com", "Ed1tor!pass")

        assert ctx.logged_in is True
        assert ctx.user is not None and ctx.user.id == seeded.editor_id
        assert ctx.session[LOGGED_IN_KEY] is True
        assert ctx.session[SECRET_KEY_KEY] == session.secret_key

    def test_wrong_password(self, auth, seeded, make_context):
        ctx = make_context()
        assert auth.login_user(ctx, "editor@example.com", "nope") is None
        assert ctx.logged_in is False
        assert ctx.session[LOGGED_IN_KEY] is False
        assert ctx.session[SECRET_KEY_KEY] == ""

    def test_unknown_email_queries_like_wrong_password(self, auth, store, seeded, make_context):
        """Unknown emails still reach the credentials query, with an unmatchable hash."""
        ctx = make_context()
        with patch.object(store, "get_user_id_by_credentials", wraps=store.get_user_id_by_credentials) as spy:
            assert auth.login_user(ctx, "ghost@example.com", "whatever") is None
        spy.assert_called_once_with("ghost@example.com", "")

    def test_unknown_email_issues_the_same_lookups(self, auth, store, seeded, make_context):
        """Known and unknown emails read the salt setting the same number of times."""
        calls = {}
        for email in ("editor@example.com", "ghost@example.com"):
            with patch.object(store, "get_user_setting", wraps=store.get_user_setting) as settings_spy, patch.object(
                store, "get_user_id_by_credentials", wraps=store.get_user_id_by_credentials
            ) as credentials_spy:
                assert auth.login_user(make_context(), email, "wrong") is None
            calls[email] = (settings_spy.call_count, credentials_spy.call_count)
        assert calls["ghost@example.com"] == calls["editor@example.com"] == (1, 1)

    def test_inactive_user_cannot_log_in(self, auth, seeded, make_context):
        assert auth.login_user(make_context(), "inactive@example.com", "Inact1ve!pass") is None

    def test_deleted_user_cannot_log_in(self, auth, store, seeded, make_context):
        store.update_user(seeded.plain_id, deleted=True)
        assert auth.login_user(make_context(), "plain@example.com", "Pla1n!pass") is None

    def test_failure_clears_previous_login_state(self, auth, seeded, make_context):
        session = {}
        auth.login_user(make_context("sess-1", session), "editor@example.com", "Ed1tor!pass")
        assert session[LOGGED_IN_KEY] is True

        ctx = make_context("sess-1", session)
        assert auth.login_user(ctx, "editor@example.com", "bad") is None
        assert session[LOGGED_IN_KEY] is False
        assert session[SECRET_KEY_KEY] == ""

    def test_missing_transport_session_id_refuses_login(self, auth, store, seeded, make_context):
        ctx = make_context("")
        assert auth.login_user(ctx, "editor@example.com", "Ed1tor!pass") is None
        assert store.list_sessions(seeded.editor_id) == []

    def test_relogin_in_same_transport_session_keeps_one_row(self, auth, store, seeded, make_context):
        auth.login_user(make_context("sess-1"), "editor@example.com", "Ed1tor!pass")
        auth.login_user(make_context("sess-1"), "editor@example.com", "Ed1tor!pass")
        assert len(store.list_sessions(seeded.editor_id)) == 1

    def test_multiple_devices_keep_separate_rows(self, auth, store, seeded, make_context):
        auth.login_user(make_context("laptop"), "editor@example.com", "Ed1tor!pass")
        auth.login_user(make_context("phone"), "editor@example.com", "Ed1tor!pass")
        assert {s.session_id for s in store.list_sessions(seeded.editor_id)} == {"laptop", "phone"}


class TestIsLoggedIn:
    def test_login_then_check_on_next_request(self, auth, seeded, make_context):
        session = {}
        login_session = auth.login_user(make_context("sess-1", session), "editor@example.com", "Ed1tor!pass")

        ctx = make_context("sess-1", session)
        assert auth.is_logged_in(ctx) is True
        assert auth.get_user(ctx).id == login_session.user_id

    def test_session_id_and_secret_key_suffice(self, auth, seeded, make_context):
        login_session = auth.login_user(make_context("sess-1"), "editor@example.com", "Ed1tor!pass")

        ctx = make_context("sess-1", {SECRET_KEY_KEY: login_session.secret_key})
        assert auth.is_logged_in(ctx) is True

    def test_wrong_secret_key(self, auth, seeded, make_context):
        auth.login_user(make_context("sess-1"), "editor@example.com", "Ed1tor!pass")
        ctx = make_context("sess-1", {SECRET_KEY_KEY: "forged"})
        assert auth.is_logged_in(ctx) is False
        assert ctx.session[SECRET_KEY_KEY] == ""

    def test_secret_key_bound_to_session_id(self, auth, seeded, make_context):
        login_session = auth.login_user(make_context("sess-1"), "editor@example.com", "Ed1tor!pass")
        ctx = make_context("sess-2", {SECRET_KEY_KEY: login_session.secret_key})
        assert auth.is_logged_in(ctx) is False

    def test_empty_values_are_anonymous_without_query(self, auth, store, make_context):
        ctx = make_context("sess-1")
        with patch.object(store, "get_session") as spy:
            assert auth.is_logged_in(ctx) is False
        spy.assert_not_called()
        assert ctx.session[LOGGED_IN_KEY] is False

    def test_result_cached_per_context(self, auth, store, seeded, make_context):
        session = {}
        auth.login_user(make_context("sess-1", session), "editor@example.com", "Ed1tor!pass")

        ctx = make_context("sess-1", session)
        with patch.object(store, "get_session", wraps=store.get_session) as spy:
            assert auth.is_logged_in(ctx) is True
            assert auth.is_logged_in(ctx) is True
        assert spy.call_count == 1

    def test_reset_forces_revalidation(self, auth, store, seeded, make_context):
        session = {}
        auth.login_user(make_context("sess-1", session), "editor@example.com", "Ed1tor!pass")
        ctx = make_context("sess-1", session)
        assert auth.is_logged_in(ctx) is True

        store.delete_sessions_by_session_id("sess-1")
        assert auth.is_logged_in(ctx) is True  # cached
        ctx.reset()
        assert auth.is_logged_in(ctx) is False

    def test_deactivated_user_session_is_rejected(self, auth, store, seeded, make_context):
        session = {}
        auth.login_user(make_context("sess-1", session), "editor@example.com", "Ed1tor!pass")
        store.update_user(seeded.editor_id, active=False)
        assert auth.is_logged_in(make_context("sess-1", session)) is False


class TestExpiry:
    def test_validation_refreshes_timestamp(self, auth, store, seeded, make_context, clock):
        session = {}
        auth.login_user(make_context("sess-1", session), "editor@example.com", "Ed1tor!pass")

        clock.advance(minutes=20)
        assert auth.is_logged_in(make_context("sess-1", session)) is True
        assert store.list_sessions(seeded.editor_id)[0].date == format_date(clock())

        # 40 minutes after login but only 20 after the last activity
        clock.advance(minutes=20)
        assert auth.is_logged_in(make_context("sess-1", session)) is True

    def test_idle_longer_than_window_is_logged_out(self, auth, seeded, make_context, clock):
        session = {}
        auth.login_user(make_context("sess-1", session), "editor@example.com", "Ed1tor!pass")

        clock.advance(minutes=31)
        assert auth.is_logged_in(make_context("sess-1", session)) is False

    def test_exactly_at_window_is_expired(self, auth, seeded, make_context, clock):
        session = {}
        auth.login_user(make_context("sess-1", session), "editor@example.com", "Ed1tor!pass")

        clock.now = clock.now + SESSION_LIFETIME
        assert auth.is_logged_in(make_context("sess-1", session)) is False

    def test_pre_aged_row_is_never_trusted(self, auth, store, seeded, make_context, clock):
        """A stale row that the sweep has not removed yet still does not authenticate."""
        secret = get_encrypted_string("old-sess", seeded.editor_id)
        store.insert_session(
            UserSession(
                session_id="old-sess",
                secret_key=secret,
                user_id=seeded.editor_id,
                date=format_date(clock() - SESSION_LIFETIME * 2),
            )
        )
        assert auth.is_logged_in(make_context("old-sess", {SECRET_KEY_KEY: secret})) is False
        assert len(store.list_sessions(seeded.editor_id)) == 1  # lazy expiry: not deleted on read

    def test_login_sweeps_expired_rows_for_all_users(self, auth, store, seeded, make_context, clock):
        auth.login_user(make_context("god-sess"), "god@example.com", "G0d!Passw0rd")
        clock.advance(minutes=45)

        auth.login_user(make_context("editor-sess"), "editor@example.com", "Ed1tor!pass")
        assert store.list_sessions(seeded.god_id) == []
        assert len(store.list_sessions(seeded.editor_id)) == 1

    def test_cleanup_old_sessions(self, auth, store, seeded, make_context, clock):
        auth.login_user(make_context("a"), "god@example.com", "G0d!Passw0rd")
        clock.advance(minutes=10)
        auth.login_user(make_context("b"), "editor@example.com", "Ed1tor!pass")
        clock.advance(minutes=25)

        assert auth.cleanup_old_sessions() == 1
        assert store.list_sessions(seeded.god_id) == []
        assert len(store.list_sessions(seeded.editor_id)) == 1


class TestLogout:
    def test_logout_invalidates_credentials(self, auth, seeded, make_context):
        login_session = auth.login_user(make_context("sess-1"), "editor@example.com", "Ed1tor!pass")

        auth.logout(make_context("sess-1", {CSRF_TOKEN_KEY: "tok"}))

        ctx = make_context("sess-1", {SECRET_KEY_KEY: login_session.secret_key})
        assert auth.is_logged_in(ctx) is False

    def test_logout_clears_session_keys(self, auth, seeded, make_context):
        session = {CSRF_TOKEN_KEY: "tok", "cart": "keep me"}
        auth.login_user(make_context("sess-1", session), "editor@example.com", "Ed1tor!pass")

        ctx = make_context("sess-1", session)
        auth.logout(ctx)
        assert session[LOGGED_IN_KEY] is False
        assert session[SECRET_KEY_KEY] == ""
        assert session[CSRF_TOKEN_KEY] == ""
        assert session["cart"] == "keep me"
        assert ctx.logged_in is False and ctx.user is None

    def test_logout_removes_every_row_of_the_transport_session(self, auth, store, seeded, make_context, clock):
        for user_id in (seeded.editor_id, seeded.god_id):
            store.insert_session(
                UserSession(
                    session_id="shared",
                    secret_key=get_encrypted_string("shared", user_id),
                    user_id=user_id,
                    date=format_date(clock()),
                )
            )
        auth.logout(make_context("shared"))
        assert store.list_sessions(seeded.editor_id) == []
        assert store.list_sessions(seeded.god_id) == []

    def test_logout_leaves_other_devices(self, auth, store, seeded, make_context):
        auth.login_user(make_context("laptop"), "editor@example.com", "Ed1tor!pass")
        auth.login_user(make_context("phone"), "editor@example.com", "Ed1tor!pass")
        auth.logout(make_context("laptop"))
        assert [s.session_id for s in store.list_sessions(seeded.editor_id)] == ["phone"]
