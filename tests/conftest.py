"""
tests/conftest.py -- Shared test fixtures for the back office auth tests.

This module provides:
  - FakeClock: an injectable, manually advanced UTC clock
  - store / registry / auth: an in-memory AuthStore with the Authentication
    service wired around it
  - seeded: users, groups, rights and installed modules for rights tests
  - make_context: builds a fresh AuthContext per simulated request
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool, and a
plain :memory: database is per-connection.

DEBUG and ALLOWED_HOSTS must be set before any api/core import so
get_settings() auto-generates SECRET_KEY and TrustedHostMiddleware accepts
TestClient's "testserver" host.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any core/api import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from auth.authentication import Authentication
from auth.context import AuthContext
from auth.modules import ModuleRegistry
from auth.passwords import register_user
from auth.store import AuthStore

INSTALLED_MODULES = ["Dashboard", "Pages", "Settings", "Users"]
AVAILABLE_MODULES = INSTALLED_MODULES + ["Core", "Authentication", "Error", "Extensions", "Blog"]


class FakeClock:
    """Callable clock returning a fixed UTC time until advanced."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class Seeded:
    god_id: int
    editor_id: int
    plain_id: int
    inactive_id: int
    editors_group: int
    viewers_group: int


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def registry(store: AuthStore) -> ModuleRegistry:
    return ModuleRegistry(store, AVAILABLE_MODULES)


@pytest.fixture
def auth(store: AuthStore, registry: ModuleRegistry, clock: FakeClock) -> Authentication:
    return Authentication(store, registry, clock=clock)


@pytest.fixture
def make_context() -> Callable[..., AuthContext]:
    """Return a factory for per-request contexts sharing a transport session dict.

    Pass the same session dict to simulate a browser sending its session
    cookie on a follow-up request.
    """

    def factory(session_id: str = "transport-session-1", session: dict | None = None, **kwargs) -> AuthContext:
        return AuthContext(session_id=session_id, session=session if session is not None else {}, **kwargs)

    return factory


@pytest.fixture
def seeded(store: AuthStore) -> Seeded:
    """Users, groups and rights used across the rights tests.

    - god@example.com: superuser, no groups
    - editor@example.com: in "editors" and "viewers"; editors grant Pages with
      Pages/Edit level 0, viewers grant Pages/Edit level 3 plus Pages/Index 1.
      Also granted Blog (not installed) through editors.
    - plain@example.com: no groups, no god flag
    - inactive@example.com: inactive account
    """
    for module in INSTALLED_MODULES:
        store.install_module(module)

    god_id = register_user(store, "god@example.com", "G0d!Passw0rd", is_god=True)
    editor_id = register_user(store, "editor@example.com", "Ed1tor!pass")
    plain_id = register_user(store, "plain@example.com", "Pla1n!pass")
    inactive_id = register_user(store, "inactive@example.com", "Inact1ve!pass", active=False)

    editors = store.create_group("editors")
    viewers = store.create_group("viewers")
    store.add_user_to_group(editor_id, editors)
    store.add_user_to_group(editor_id, viewers)

    store.grant_module(editors, "Pages")
    store.grant_module(editors, "Blog")
    store.grant_module(viewers, "Pages")
    store.grant_action(editors, "Pages", "Edit", 0)
    store.grant_action(viewers, "Pages", "Edit", 3)
    store.grant_action(viewers, "Pages", "Index", 1)
    store.grant_action(editors, "Pages", "Delete", 0)
    store.grant_action(editors, "Blog", "Index", 7)

    return Seeded(
        god_id=god_id,
        editor_id=editor_id,
        plain_id=plain_id,
        inactive_id=inactive_id,
        editors_group=editors,
        viewers_group=viewers,
    )


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AuthStore, sent_links: list[tuple[str, str]]):
    """Return a lifespan that wires the test store into app.state."""
    from api.main import build_services

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.authentication = build_services(store)
        app.state.send_reset_link = lambda email, link: sent_links.append((email, link))
        yield

    return test_lifespan


@pytest.fixture
def api_client(request) -> Generator[tuple[TestClient, AuthStore, list[tuple[str, str]]], None, None]:
    """Yield (client, store, sent_links) against an isolated shared-memory database.

    The store is seeded with an admin (god) user and an editor user. The rate
    limiter is disabled so repeated logins inside one test are not throttled.
    sent_links collects (email, link) pairs handed to the reset-link sender.
    """
    from api.limiter import limiter
    from api.main import app

    db_url = f"sqlite:///file:test_api_{request.node.name}?mode=memory&cache=shared&uri=true"
    store = AuthStore(db_url)
    for module in INSTALLED_MODULES:
        store.install_module(module)
    register_user(store, "admin@example.com", "Adm1n!Passw0rd", is_god=True)
    editor_id = register_user(store, "editor@example.com", "Ed1tor!pass")
    group = store.create_group("maintainers")
    store.add_user_to_group(editor_id, group)
    store.grant_module(group, "Settings")
    store.grant_action(group, "Settings", "CleanupSessions", 1)

    sent_links: list[tuple[str, str]] = []
    app.router.lifespan_context = _patch_lifespan(store, sent_links)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store, sent_links

    limiter.enabled = True
    store.close()
