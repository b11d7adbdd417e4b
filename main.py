#!/usr/bin/env python3
"""
Back office admin CLI -- bootstrap users, groups, rights and modules.

Usage:
  python main.py create-user admin@example.com --god
  python main.py create-group editors
  python main.py add-to-group editor@example.com editors
  python main.py grant-module editors Pages
  python main.py grant-action editors Pages Edit --level 7
  python main.py install-module Pages
  python main.py deactivate-user editor@example.com
  python main.py list-sessions editor@example.com
  python main.py strength 'Corr3ct horse!'
  python main.py cleanup-sessions

Passwords for create-user are prompted for unless --password is given.

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (default: ./backoffice.db).
                --db overrides it for a single invocation.
"""

import argparse
import getpass
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.authentication import Authentication
from auth.models import PasswordStrength
from auth.modules import ModuleRegistry
from auth.naming import to_camel_case
from auth.passwords import register_user
from auth.store import AuthStore
from auth.strength import check_password
from core.config import get_settings


def _read_password(args: argparse.Namespace) -> Optional[str]:
    if args.password is not None:
        return args.password
    first = getpass.getpass("  Password: ")
    if first != getpass.getpass("  Repeat password: "):
        print("  [!] Passwords do not match.")
        return None
    return first


def _group_id(store: AuthStore, name: str) -> Optional[int]:
    group_id = store.get_group_id(name)
    if group_id is None:
        print(f"  [!] No group named '{name}'. Create it with: python main.py create-group {name}")
    return group_id


# ---------------------------------------------------------------------------
# Commands
#
# Each returns the process exit code.
# ---------------------------------------------------------------------------


def cmd_create_user(store: AuthStore, args: argparse.Namespace) -> int:
    password = _read_password(args)
    if not password:
        print("  [!] A password is required.")
        return 1
    strength = check_password(password)
    if strength is PasswordStrength.weak and not args.allow_weak:
        print("  [!] Password is weak. Choose a stronger one or pass --allow-weak.")
        return 1
    try:
        user_id = register_user(store, args.email, password, is_god=args.god)
    except IntegrityError:
        print(f"  [!] A user with email '{args.email}' already exists.")
        return 1
    role = "god user" if args.god else "user"
    print(f"  Created {role} {args.email} (id {user_id}, password {strength.value}).")
    return 0


def cmd_create_group(store: AuthStore, args: argparse.Namespace) -> int:
    try:
        group_id = store.create_group(args.name)
    except IntegrityError:
        print(f"  [!] Group '{args.name}' already exists.")
        return 1
    print(f"  Created group {args.name} (id {group_id}).")
    return 0


def cmd_add_to_group(store: AuthStore, args: argparse.Namespace) -> int:
    user_id = store.get_user_id_by_email(args.email)
    if user_id is None:
        print(f"  [!] No user with email '{args.email}'.")
        return 1
    group_id = _group_id(store, args.group)
    if group_id is None:
        return 1
    try:
        store.add_user_to_group(user_id, group_id)
    except IntegrityError:
        print(f"  {args.email} is already in {args.group}.")
        return 0
    print(f"  Added {args.email} to {args.group}.")
    return 0


def cmd_grant_module(store: AuthStore, args: argparse.Namespace) -> int:
    group_id = _group_id(store, args.group)
    if group_id is None:
        return 1
    module = to_camel_case(args.module)
    try:
        store.grant_module(group_id, module)
    except IntegrityError:
        print(f"  {args.group} already has {module}.")
        return 0
    print(f"  Granted module {module} to {args.group}.")
    return 0


def cmd_grant_action(store: AuthStore, args: argparse.Namespace) -> int:
    group_id = _group_id(store, args.group)
    if group_id is None:
        return 1
    module = to_camel_case(args.module)
    action = to_camel_case(args.action)
    store.grant_action(group_id, module, action, args.level)
    print(f"  Granted {module}/{action} at level {args.level} to {args.group}.")
    return 0


def cmd_install_module(store: AuthStore, args: argparse.Namespace) -> int:
    module = to_camel_case(args.name)
    if args.uninstall:
        if store.uninstall_module(module):
            print(f"  Uninstalled {module}.")
        else:
            print(f"  {module} was not installed.")
        return 0
    if store.install_module(module):
        print(f"  Installed {module}.")
    else:
        print(f"  {module} is already installed.")
    return 0


def cmd_deactivate_user(store: AuthStore, args: argparse.Namespace) -> int:
    user_id = store.get_user_id_by_email(args.email)
    if user_id is None:
        print(f"  [!] No user with email '{args.email}'.")
        return 1
    store.update_user(user_id, active=args.reactivate)
    if args.reactivate:
        print(f"  Reactivated {args.email}.")
    else:
        # Rows stay until the next sweep; they no longer authenticate.
        print(f"  Deactivated {args.email} ({len(store.list_sessions(user_id))} session(s) revoked).")
    return 0


def cmd_list_sessions(store: AuthStore, args: argparse.Namespace) -> int:
    user_id = store.get_user_id_by_email(args.email)
    if user_id is None:
        print(f"  [!] No user with email '{args.email}'.")
        return 1
    sessions = store.list_sessions(user_id)
    if not sessions:
        print(f"  No sessions for {args.email}.")
        return 0
    for session in sessions:
        print(f"  {session.date}  {session.session_id}")
    return 0


def cmd_strength(store: AuthStore, args: argparse.Namespace) -> int:
    print(f"  {check_password(args.password).value}")
    return 0


def cmd_cleanup_sessions(store: AuthStore, args: argparse.Namespace) -> int:
    auth = Authentication(store, ModuleRegistry(store))
    removed = auth.cleanup_old_sessions()
    print(f"  Removed {removed} expired session(s).")
    return 0


_COMMANDS = {
    "create-user": cmd_create_user,
    "create-group": cmd_create_group,
    "add-to-group": cmd_add_to_group,
    "grant-module": cmd_grant_module,
    "grant-action": cmd_grant_action,
    "install-module": cmd_install_module,
    "deactivate-user": cmd_deactivate_user,
    "list-sessions": cmd_list_sessions,
    "strength": cmd_strength,
    "cleanup-sessions": cmd_cleanup_sessions,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="backoffice-admin",
        description="Manage back office users, groups, rights and installed modules.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user admin@example.com --god
  python main.py grant-action editors pages edit
  DATABASE_URL=sqlite:////var/lib/cms/auth.db python main.py cleanup-sessions
        """,
    )
    parser.add_argument(
        "--db",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("create-user", help="Create a back office user")
    p.add_argument("email")
    p.add_argument("--password", default=None, help="Password (prompted for when omitted)")
    p.add_argument("--god", action="store_true", help="Grant unrestricted access to every installed module")
    p.add_argument("--allow-weak", action="store_true", help="Accept a password scored as weak")

    p = sub.add_parser("create-group", help="Create a rights group")
    p.add_argument("name")

    p = sub.add_parser("add-to-group", help="Add a user to a group")
    p.add_argument("email")
    p.add_argument("group")

    p = sub.add_parser("grant-module", help="Let a group open a module")
    p.add_argument("group")
    p.add_argument("module")

    p = sub.add_parser("grant-action", help="Let a group run an action inside a module")
    p.add_argument("group")
    p.add_argument("module")
    p.add_argument("action")
    p.add_argument("--level", type=int, default=7, help="Access level; 0 denies (default: 7)")

    p = sub.add_parser("install-module", help="Mark a module as installed")
    p.add_argument("name")
    p.add_argument("--uninstall", action="store_true", help="Remove the module instead")

    p = sub.add_parser("deactivate-user", help="Block a user from logging in and invalidate their sessions")
    p.add_argument("email")
    p.add_argument("--reactivate", action="store_true", help="Allow the user to log in again")

    p = sub.add_parser("list-sessions", help="Show the session rows of a user")
    p.add_argument("email")

    p = sub.add_parser("strength", help="Score a password as weak, average or strong")
    p.add_argument("password")

    sub.add_parser("cleanup-sessions", help="Delete sessions idle longer than 30 minutes")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    store = AuthStore(args.db or get_settings().database_url)
    try:
        return _COMMANDS[args.command](store, args)
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
