"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthStore is the repository; _row_to_user
and _row_to_session are the mappers. The Authentication service never touches
SQL directly; every query the auth core issues lives here.

Security:
  All queries use bound parameters. No f-strings in SQL.

Dates:
  Every date column holds a UTC string in DATE_FORMAT ("YYYY-MM-DD HH:MM:SS").
  The fixed width makes string comparison chronological, which is what the
  session expiry predicates rely on.

Booleans:
  active / deleted / is_god are stored as INTEGER 0/1 and converted to bool in
  the mappers.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import User, UserSession

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", String(255), nullable=False),  # legacy salted hash
    Column("active", Integer, nullable=False, server_default="1"),
    Column("deleted", Integer, nullable=False, server_default="0"),
    Column("is_god", Integer, nullable=False, server_default="0"),
    Column("date", String(19), nullable=False),
)

_users_settings = Table(
    "users_settings",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("value", Text, nullable=False),
    PrimaryKeyConstraint("user_id", "name"),
)

_users_sessions = Table(
    "users_sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("session_id", String(255), nullable=False, index=True),
    Column("secret_key", String(255), nullable=False),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("date", String(19), nullable=False, index=True),
)

_groups = Table(
    "groups",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
)

_users_groups = Table(
    "users_groups",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("group_id", Integer, ForeignKey("groups.id"), nullable=False),
    PrimaryKeyConstraint("user_id", "group_id"),
)

_groups_rights_modules = Table(
    "groups_rights_modules",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("group_id", Integer, ForeignKey("groups.id"), nullable=False),
    Column("module", String(255), nullable=False),
    UniqueConstraint("group_id", "module"),
)

_groups_rights_actions = Table(
    "groups_rights_actions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("group_id", Integer, ForeignKey("groups.id"), nullable=False),
    Column("module", String(255), nullable=False),
    Column("action", String(255), nullable=False),
    Column("level", Integer, nullable=False, server_default="1"),
    UniqueConstraint("group_id", "module", "action"),
)

_modules = Table(
    "modules",
    _metadata,
    Column("name", String(255), primary_key=True),
    Column("installed_on", String(19), nullable=False),
)

_modules_settings = Table(
    "modules_settings",
    _metadata,
    Column("module", String(255), nullable=False),
    Column("name", String(255), nullable=False),
    Column("value", Text, nullable=False),
    PrimaryKeyConstraint("module", "name"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so session reads are not blocked by writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def format_date(moment: datetime) -> str:
    """Render a datetime as the UTC string stored in date columns.

    Naive datetimes are assumed to already be UTC.
    """
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(DATE_FORMAT)


def _now() -> str:
    return format_date(datetime.now(timezone.utc))


def _write_user_setting(conn, user_id: int, name: str, value) -> None:
    """Upsert one users_settings row on an open connection (caller owns the transaction)."""
    s = _users_settings
    result = conn.execute(s.update().where((s.c.user_id == user_id) & (s.c.name == name)).values(value=str(value)))
    if result.rowcount == 0:
        conn.execute(s.insert().values(user_id=user_id, name=name, value=str(value)))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for users, sessions, groups, rights, modules and settings.

    Usage:
        store = AuthStore("sqlite:///:memory:")
        user_id = store.create_user(User(email="admin@example.com", password=hashed))
        store.set_user_setting(user_id, "password_key", key)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session(self, session_id: str, secret_key: str, not_before: str) -> UserSession | None:
        """Return the session row for (session_id, secret_key) if its last activity is after not_before.

        Rows at or before the cutoff are treated as absent even when the
        sweep has not removed them yet.
        """
        s = _users_sessions
        with self.engine.connect() as conn:
            row = conn.execute(
                select(s)
                .where((s.c.session_id == session_id) & (s.c.secret_key == secret_key) & (s.c.date > not_before))
                .limit(1)
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def touch_session(self, row_id: int, date: str) -> None:
        """Stamp a new last-activity date on a session row."""
        with self.engine.connect() as conn:
            conn.execute(_users_sessions.update().where(_users_sessions.c.id == row_id).values(date=date))
            conn.commit()

    def insert_session(self, session: UserSession) -> int:
        """Insert a session row and return its id."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users_sessions.insert().values(
                    session_id=session.session_id,
                    secret_key=session.secret_key,
                    user_id=session.user_id,
                    date=session.date,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def delete_sessions_by_session_id(self, session_id: str) -> int:
        """Delete every row sharing a transport session id. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_users_sessions.delete().where(_users_sessions.c.session_id == session_id))
            conn.commit()
        return result.rowcount

    def delete_sessions_older_than(self, cutoff: str) -> int:
        """Delete all rows, for every user, whose last activity is at or before cutoff."""
        with self.engine.connect() as conn:
            result = conn.execute(_users_sessions.delete().where(_users_sessions.c.date <= cutoff))
            conn.commit()
        return result.rowcount

    def list_sessions(self, user_id: int) -> list[UserSession]:
        """Return every session row of a user, oldest first. Used by the admin CLI (list-sessions)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_users_sessions).where(_users_sessions.c.user_id == user_id).order_by(_users_sessions.c.id)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a user plus its settings and return the new id.

        Raises sqlalchemy.exc.IntegrityError if the email is already taken.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    password=user.password,
                    active=1 if user.active else 0,
                    deleted=1 if user.deleted else 0,
                    is_god=1 if user.is_god else 0,
                    date=user.date or _now(),
                )
            )
            user_id = result.inserted_primary_key[0]
            for name, value in user.settings.items():
                conn.execute(_users_settings.insert().values(user_id=user_id, name=name, value=str(value)))
        return user_id

    def get_user(self, user_id: int) -> User | None:
        """Look up a user by primary key, settings included. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(select(_users).where(_users.c.id == user_id)).fetchone()
            if row is None:
                return None
            settings = conn.execute(
                select(_users_settings.c.name, _users_settings.c.value).where(_users_settings.c.user_id == user_id)
            ).fetchall()
        return _row_to_user(row, {name: value for name, value in settings})

    def get_user_id_by_email(self, email: str) -> int | None:
        """Return the id of the non-deleted user owning email, or None."""
        with self.engine.connect() as conn:
            user_id = conn.execute(
                select(_users.c.id).where((_users.c.email == email) & (_users.c.deleted == 0)).limit(1)
            ).scalar()
        return user_id

    def get_user_id_by_credentials(self, email: str, password: str) -> int | None:
        """Return the id of the active, non-deleted user with this email and password hash."""
        u = _users
        with self.engine.connect() as conn:
            user_id = conn.execute(
                select(u.c.id)
                .where((u.c.email == email) & (u.c.password == password) & (u.c.active == 1) & (u.c.deleted == 0))
                .limit(1)
            ).scalar()
        return user_id

    def update_password(self, user_id: int, password: str, password_key: str | None = None) -> bool:
        """Replace the stored password hash. Returns False if user_id was not found.

        When password_key is given, the hash and its salt are written in one
        transaction: a failed salt write leaves the old password in place.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(password=password))
            if result.rowcount == 0:
                return False
            if password_key is not None:
                _write_user_setting(conn, user_id, "password_key", password_key)
        return True

    def update_user(self, user_id: int, **fields) -> bool:
        """Update active / deleted / is_god flags. Bools are converted to 0/1.

        Used by the admin CLI (deactivate-user).
        """
        values = {k: (1 if v else 0) for k, v in fields.items() if k in ("active", "deleted", "is_god")}
        if not values:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_user_setting(self, user_id: int, name: str, default: str | None = None) -> str | None:
        with self.engine.connect() as conn:
            value = conn.execute(
                select(_users_settings.c.value).where(
                    (_users_settings.c.user_id == user_id) & (_users_settings.c.name == name)
                )
            ).scalar()
        return value if value is not None else default

    def set_user_setting(self, user_id: int, name: str, value) -> None:
        """Insert or replace one per-user setting."""
        with self.engine.begin() as conn:
            _write_user_setting(conn, user_id, name, value)

    def delete_user_setting(self, user_id: int, name: str) -> None:
        s = _users_settings
        with self.engine.connect() as conn:
            conn.execute(s.delete().where((s.c.user_id == user_id) & (s.c.name == name)))
            conn.commit()

    def get_module_setting(self, module: str, name: str, default: str | None = None) -> str | None:
        s = _modules_settings
        with self.engine.connect() as conn:
            value = conn.execute(select(s.c.value).where((s.c.module == module) & (s.c.name == name))).scalar()
        return value if value is not None else default

    def set_module_setting(self, module: str, name: str, value) -> None:
        """Insert or replace one module-level setting."""
        s = _modules_settings
        with self.engine.begin() as conn:
            result = conn.execute(
                s.update().where((s.c.module == module) & (s.c.name == name)).values(value=str(value))
            )
            if result.rowcount == 0:
                conn.execute(s.insert().values(module=module, name=name, value=str(value)))

    # ------------------------------------------------------------------
    # Groups and rights
    # ------------------------------------------------------------------

    def create_group(self, name: str) -> int:
        """Insert a group and return its id. Raises IntegrityError on a duplicate name."""
        with self.engine.connect() as conn:
            result = conn.execute(_groups.insert().values(name=name))
            conn.commit()
            return result.inserted_primary_key[0]

    def get_group_id(self, name: str) -> int | None:
        with self.engine.connect() as conn:
            return conn.execute(select(_groups.c.id).where(_groups.c.name == name)).scalar()

    def add_user_to_group(self, user_id: int, group_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users_groups.insert().values(user_id=user_id, group_id=group_id))
            conn.commit()

    def grant_module(self, group_id: int, module: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_groups_rights_modules.insert().values(group_id=group_id, module=module))
            conn.commit()

    def grant_action(self, group_id: int, module: str, action: str, level: int = 7) -> None:
        """Insert or replace the level a group holds for (module, action)."""
        a = _groups_rights_actions
        with self.engine.begin() as conn:
            result = conn.execute(
                a.update()
                .where((a.c.group_id == group_id) & (a.c.module == module) & (a.c.action == action))
                .values(level=int(level))
            )
            if result.rowcount == 0:
                conn.execute(a.insert().values(group_id=group_id, module=module, action=action, level=int(level)))

    def get_allowed_module_rows(self, session_id: str, secret_key: str) -> list[str]:
        """Return the distinct modules granted to the user behind (session_id, secret_key).

        Walks users_sessions -> users -> users_groups -> groups_rights_modules,
        so a module appears once no matter how many groups grant it.
        """
        us, ug, grm = _users_sessions, _users_groups, _groups_rights_modules
        stmt = (
            select(grm.c.module)
            .distinct()
            .select_from(
                us.join(_users, us.c.user_id == _users.c.id)
                .join(ug, _users.c.id == ug.c.user_id)
                .join(grm, ug.c.group_id == grm.c.group_id)
            )
            .where((us.c.session_id == session_id) & (us.c.secret_key == secret_key))
        )
        with self.engine.connect() as conn:
            return [row[0] for row in conn.execute(stmt).fetchall()]

    def get_allowed_action_rows(self, session_id: str, secret_key: str) -> list[tuple[str, str, int]]:
        """Return (module, action, level) for the user behind (session_id, secret_key).

        level is MAX(level) over all of the user's groups. There is no group
        precedence: a 0 in one group never masks a grant in another.
        """
        us, ug, gra = _users_sessions, _users_groups, _groups_rights_actions
        stmt = (
            select(gra.c.module, gra.c.action, func.max(gra.c.level).label("level"))
            .select_from(
                us.join(_users, us.c.user_id == _users.c.id)
                .join(ug, _users.c.id == ug.c.user_id)
                .join(gra, ug.c.group_id == gra.c.group_id)
            )
            .where((us.c.session_id == session_id) & (us.c.secret_key == secret_key))
            .group_by(gra.c.module, gra.c.action)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [(row.module, row.action, int(row.level)) for row in rows]

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    def get_module_names(self) -> list[str]:
        """Return the names in the modules table (the installed modules)."""
        with self.engine.connect() as conn:
            return [row[0] for row in conn.execute(select(_modules.c.name).order_by(_modules.c.name)).fetchall()]

    def install_module(self, name: str) -> bool:
        """Register a module as installed. Returns False if it already was."""
        with self.engine.begin() as conn:
            exists = conn.execute(select(_modules.c.name).where(_modules.c.name == name)).scalar()
            if exists is not None:
                return False
            conn.execute(_modules.insert().values(name=name, installed_on=_now()))
        return True

    def uninstall_module(self, name: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_modules.delete().where(_modules.c.name == name))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, settings: dict[str, str]) -> User:
    return User(
        id=row.id,
        email=row.email,
        password=row.password,
        active=bool(row.active),
        deleted=bool(row.deleted),
        is_god=bool(row.is_god),
        date=row.date,
        settings=settings,
    )


def _row_to_session(row) -> UserSession:
    return UserSession(
        id=row.id,
        session_id=row.session_id,
        secret_key=row.secret_key,
        user_id=row.user_id,
        date=row.date,
    )
