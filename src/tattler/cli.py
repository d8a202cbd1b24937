"""CLI entry point for tattler.

tattler polls GitHub notifications and keeps an unread badge that status
bars can read. `tattler run` is the long-running poller; everything else is
a one-shot command that talks to GitHub directly and exits.
"""

import argparse
import asyncio
import json
import secrets
import signal
import sys
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.table import Table

from . import db
from .config import ensure_config_exists, get_config_path, load_config
from .errors import TattlerError
from .events import (
    Command,
    IgnoreNotification,
    Login,
    Logout,
    MarkAllRead,
    MarkNotificationRead,
    OpenNotification,
    OpenNotifications,
    UnsubscribeNotification,
)
from .github import PROVIDER_TYPE, GitHubClient
from .poller import Poller


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _one_shot(
    action: Callable[[Poller], Awaitable[Any]], sync: bool = False
) -> Any:
    """Run action against a poller holding the stored clients, then close it.

    With sync, every client is polled once first so the in-memory state
    knows the current notifications.
    """

    async def run() -> Any:
        poller = Poller(load_config())
        if sync:
            # counts are current once synced
            poller.subscribe_outputs(notifications=False)
        poller.load_clients()
        try:
            if sync:
                await poller.sync_once()
            return await action(poller)
        finally:
            await poller.close()

    try:
        return asyncio.run(run())
    except (TattlerError, ValueError) as e:
        _fail(str(e))


def _dispatch(command: Command, sync: bool = False) -> Any:
    return _one_shot(lambda poller: poller.router.dispatch(command), sync=sync)


def cmd_run(args: argparse.Namespace) -> None:
    """Run the poller until interrupted. SIGUSR1 marks everything read."""

    async def run() -> None:
        poller = Poller(load_config())
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, poller.stop)
        loop.add_signal_handler(signal.SIGUSR1, poller.request_mark_all_read)
        await poller.run_forever()

    asyncio.run(run())


def cmd_login(args: argparse.Namespace) -> None:
    """Store a credential for a new GitHub client."""
    if args.url:
        config = load_config()
        if not config.github.client_id:
            _fail("set [github] client_id in the config to use the OAuth flow")
        state = secrets.token_urlsafe(16)
        print(GitHubClient(PROVIDER_TYPE, config.github).auth_url(state))
        print(f"state: {state}")
        return
    if args.code and not args.state:
        _fail("--code needs the --state it was issued with")
    if not (args.token or args.code):
        _fail("pass --token, or --code and --state (see --url)")

    client = _dispatch(Login(token=args.token, code=args.code, state=args.state or ""))
    print(f"Logged in as {client.id}")


def cmd_logout(args: argparse.Namespace) -> None:
    """Revoke and forget a client."""
    _dispatch(Logout(args.client_id))
    print(f"Logged out {args.client_id}")


def cmd_clients(args: argparse.Namespace) -> None:
    """List registered clients."""
    with db.connect() as conn:
        clients = db.get_clients(conn)

    if not clients:
        print("No clients. Run 'tattler login' to add one.")
        return

    for c in clients:
        created = datetime.fromtimestamp(c.created_at).strftime("%Y-%m-%d %H:%M")
        status = "token stored" if c.token else "no token"
        print(f"{c.id} | {c.provider_type} | {created} | {status}")


def _unread(poller: Poller) -> list[dict[str, Any]]:
    rows = []
    for client in poller.registry:
        for record in client.store.records(unread_only=True):
            rows.append({**asdict(record), "id": client.notification_id(record.id)})
    rows.sort(key=lambda r: r["updated_at"], reverse=True)
    return rows


async def _list(poller: Poller) -> list[dict[str, Any]]:
    return _unread(poller)


def cmd_list(args: argparse.Namespace) -> None:
    """Fetch and list unread notifications."""
    rows = _one_shot(_list, sync=True)

    if getattr(args, "json", False):
        print(json.dumps(rows))
        return

    if not rows:
        print("No unread notifications.")
        return

    table = Table(box=None, header_style="bold")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Updated", no_wrap=True)
    table.add_column("Repository", style="cyan")
    table.add_column("Title")
    table.add_column("Reason", style="dim")
    for r in rows:
        table.add_row(r["id"], r["updated_at"], r["repository"], r["subject_title"], r["reason"])
    Console().print(table)


def cmd_read(args: argparse.Namespace) -> None:
    """Mark one notification, or everything, as read."""
    if args.id is None:
        _dispatch(MarkAllRead(), sync=True)
        print("Marked all notifications as read")
    else:
        _dispatch(MarkNotificationRead(args.id), sync=True)
        print(f"Marked {args.id} as read")


def cmd_ignore(args: argparse.Namespace) -> None:
    """Ignore a notification's thread."""
    _dispatch(IgnoreNotification(args.id), sync=True)
    print(f"Ignored {args.id}")


def cmd_unsubscribe(args: argparse.Namespace) -> None:
    """Unsubscribe from a notification's thread."""
    _dispatch(UnsubscribeNotification(args.id), sync=True)
    print(f"Unsubscribed from {args.id}")


def cmd_open(args: argparse.Namespace) -> None:
    """Open a notification in the browser and mark it read."""
    url = _dispatch(OpenNotification(args.id), sync=True)
    print(url)


def cmd_open_all(args: argparse.Namespace) -> None:
    """Open the configured notifications page."""
    target = _dispatch(OpenNotifications())
    print(target)


def cmd_badge(args: argparse.Namespace) -> None:
    """Print the badge text written by the poller."""
    path = load_config().badge.path
    if path.exists():
        print(path.read_text())
    else:
        print("?")


def cmd_config_init(args: argparse.Namespace) -> None:
    """Initialize config file with defaults."""
    config_path = ensure_config_exists()
    print(f"Config file at: {config_path}")


def cmd_config_path(args: argparse.Namespace) -> None:
    """Print config file path."""
    print(get_config_path())


def cmd_config_show(args: argparse.Namespace) -> None:
    """Show current config."""
    config_path = get_config_path()
    if config_path.exists():
        print(config_path.read_text())
    else:
        print(f"No config file at {config_path}")
        print("Run 'tattler config init' to create one.")


def setup_config_parser(subparsers: argparse._SubParsersAction) -> None:
    """Set up the config subcommand."""
    config_parser = subparsers.add_parser(
        "config",
        help="Manage tattler configuration",
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")

    # config init
    init_parser = config_subparsers.add_parser("init", help="Create default config file")
    init_parser.set_defaults(func=cmd_config_init)

    # config path
    path_parser = config_subparsers.add_parser("path", help="Print config file path")
    path_parser.set_defaults(func=cmd_config_path)

    # config show
    show_parser = config_subparsers.add_parser("show", help="Show current config")
    show_parser.set_defaults(func=cmd_config_show)

    config_parser.set_defaults(func=lambda a: config_parser.print_help())


def setup_account_parsers(subparsers: argparse._SubParsersAction) -> None:
    """Set up login, logout and clients."""
    login_parser = subparsers.add_parser("login", help="Add a GitHub account")
    login_parser.add_argument("--token", help="Personal access token")
    login_parser.add_argument("--code", help="OAuth code from the authorize redirect")
    login_parser.add_argument("--state", help="State the OAuth code was issued with")
    login_parser.add_argument(
        "--url", action="store_true", help="Print the OAuth authorize URL and exit"
    )
    login_parser.set_defaults(func=cmd_login)

    logout_parser = subparsers.add_parser("logout", help="Remove a GitHub account")
    logout_parser.add_argument("client_id", help="Client ID (see 'tattler clients')")
    logout_parser.set_defaults(func=cmd_logout)

    clients_parser = subparsers.add_parser("clients", help="List accounts")
    clients_parser.set_defaults(func=cmd_clients)


def setup_notification_parsers(subparsers: argparse._SubParsersAction) -> None:
    """Set up the commands that act on notifications."""
    list_parser = subparsers.add_parser("list", aliases=["ls"], help="List unread")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    list_parser.set_defaults(func=cmd_list)

    read_parser = subparsers.add_parser("read", help="Mark read (everything without an ID)")
    read_parser.add_argument("id", nargs="?", help="Notification ID")
    read_parser.set_defaults(func=cmd_read)

    ignore_parser = subparsers.add_parser("ignore", help="Ignore a thread")
    ignore_parser.add_argument("id", help="Notification ID")
    ignore_parser.set_defaults(func=cmd_ignore)

    unsubscribe_parser = subparsers.add_parser("unsubscribe", help="Unsubscribe from a thread")
    unsubscribe_parser.add_argument("id", help="Notification ID")
    unsubscribe_parser.set_defaults(func=cmd_unsubscribe)

    open_parser = subparsers.add_parser("open", help="Open a notification in the browser")
    open_parser.add_argument("id", help="Notification ID")
    open_parser.set_defaults(func=cmd_open)

    open_all_parser = subparsers.add_parser("open-all", help="Open the notifications page")
    open_all_parser.set_defaults(func=cmd_open_all)

    badge_parser = subparsers.add_parser("badge", help="Print the unread badge")
    badge_parser.set_defaults(func=cmd_badge)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tattler",
        description="GitHub notification poller with an unread badge",
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run the poller")
    run_parser.set_defaults(func=cmd_run)

    setup_account_parsers(subparsers)
    setup_notification_parsers(subparsers)
    setup_config_parser(subparsers)
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
    elif hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
