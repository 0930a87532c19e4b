#!/usr/bin/env python3
"""
accountsync - keep a local cache of Gmail, Calendar and Contacts in sync.
"""

import argparse
import asyncio
import sys
from datetime import datetime
from typing import Optional

from googleapiclient.errors import HttpError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from accountsync.config import Settings
from accountsync.connectors.google_session import FileTokenSession
from accountsync.errors import SyncEngineError
from accountsync.events import COMPLETED, FAILED, PROGRESS, STARTED, SyncEvent
from accountsync.models.account import Account
from accountsync.models.results import SyncResult
from accountsync.service import AccountService
from accountsync.utils.log import configure_logging


# Rich console
console = Console()

EVENT_STYLES = {
    STARTED: "cyan",
    PROGRESS: "dim",
    COMPLETED: "green",
    FAILED: "bold red",
}

SYNC_CHOICES = ("mail", "calendar", "contacts")


class ConsoleEventChannel:
    """Prints sync events as they happen."""

    def __init__(self, console: Console):
        self._console = console

    def publish(self, event: SyncEvent) -> None:
        color = EVENT_STYLES.get(event.kind, "white")
        self._console.print(
            f"[{color}]●[/{color}] [bold]{event.sync_type.value}[/bold] {event.kind} [dim]{event.message}[/dim]"
        )


def _format_millis(epoch_millis: Optional[int]) -> str:
    if not epoch_millis:
        return "-"
    return datetime.fromtimestamp(epoch_millis / 1000).strftime("%Y-%m-%d %H:%M")


def _require_account(service: AccountService, email: str) -> Account:
    account = service.find_account(email)
    if account is None:
        raise SyncEngineError(f"Unknown account {email}; run `accountsync add-account {email}` first")
    return account


def print_accounts(service: AccountService) -> None:
    table = Table(title="Linked accounts", show_header=True, header_style="bold")
    table.add_column("Email", style="cyan")
    table.add_column("ID", style="dim")
    table.add_column("Scopes")
    table.add_column("Added", justify="right")
    for account in service.list_accounts():
        table.add_row(account.email, account.id, ", ".join(sorted(account.scopes)), _format_millis(account.added_at))
    console.print(table)


def print_sync_summary(results: dict) -> None:
    table = Table(title="Sync Summary", show_header=True, header_style="bold")
    table.add_column("Type", style="cyan")
    table.add_column("Synced", justify="right", style="green")
    table.add_column("Mode")
    for name, result in results.items():
        if isinstance(result, SyncResult):
            table.add_row(name, str(result.synced), result.type)
        else:
            table.add_row(name, "[red]-[/red]", f"[red]{result.get('error')}[/red]")
    console.print()
    console.print(table)


def print_status(service: AccountService, account: Account) -> None:
    table = Table(title=f"Sync status for {account.email}", show_header=True, header_style="bold")
    table.add_column("Type", style="cyan")
    table.add_column("Cursor")
    table.add_column("Last sync", justify="right")
    for name, state in service.get_sync_status(account.id).items():
        if state is None:
            table.add_row(name, "[dim]never synced[/dim]", "-")
        else:
            table.add_row(name, str(state["last_cursor"] or "-"), _format_millis(state["last_sync_at"]))
    console.print(table)


async def run_sync(service: AccountService, account: Account, full: bool, only: Optional[str]) -> None:
    console.print(Panel.fit(f"🔄 [bold]accountsync[/bold] - {account.email}", style="blue"))
    if only is None and not full:
        results = await service.sync_all(account.id)
    else:
        results = {}
        runners = {
            "mail": ("emails", lambda: service.sync_emails(account.id, full=full)),
            "calendar": ("calendar", lambda: service.sync_calendar(account.id)),
            "contacts": ("contacts", lambda: service.sync_contacts(account.id)),
        }
        for key in [only] if only else SYNC_CHOICES:
            name, runner = runners[key]
            try:
                results[name] = await runner()
            except (HttpError, SyncEngineError) as e:
                results[name] = {"error": str(e)}
    print_sync_summary(results)


async def run_search(service: AccountService, account: Account, query: str, limit: int, remote: bool) -> None:
    result = await service.search_emails(account.id, query, limit=limit, search_remote=remote)
    table = Table(title=f'🔍 "{query}" ({result.total} local, source: {result.source})', header_style="bold")
    table.add_column("Date", style="dim")
    table.add_column("From", style="cyan")
    table.add_column("Subject")
    for email in result.emails:
        subject = email["subject"]
        subject_preview = subject[:60] + "..." if len(subject) > 60 else subject
        table.add_row(_format_millis(email["date"]), email["from_email"] or "", subject_preview)
    console.print(table)
    if result.remote_error:
        console.print(f"[yellow]Remote search failed: {result.remote_error}[/yellow]")


def add_account(settings: Settings, service: AccountService, email: str) -> None:
    tokens = FileTokenSession(str(settings.credentials_path), str(settings.token_dir), interactive=True)
    tokens.credentials(email)
    account = service.add_account(email)
    console.print(f"[green]✅ Linked {account.email}[/green] [dim]({account.id})[/dim]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="accountsync - local cache of Gmail, Calendar and Contacts"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: ACCOUNTSYNC_LOG_LEVEL or INFO)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("accounts", help="List linked accounts")

    add = sub.add_parser("add-account", help="Authorize and link an account")
    add.add_argument("email")

    sync = sub.add_parser("sync", help="Sync an account")
    sync.add_argument("email")
    sync.add_argument("--full", action="store_true", help="Force a full mail sync")
    sync.add_argument("--only", choices=SYNC_CHOICES, default=None, help="Sync a single type")

    search = sub.add_parser("search", help="Search cached emails")
    search.add_argument("email")
    search.add_argument("query")
    search.add_argument("-n", "--limit", type=int, default=50, help="Maximum results (default: 50)")
    search.add_argument("--remote", action="store_true", help="Also search Gmail and pull in missing messages")

    status = sub.add_parser("status", help="Show sync cursors")
    status.add_argument("email")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(args.log_level or settings.log_level, console=console)

    try:
        with AccountService(settings, events=ConsoleEventChannel(console)) as service:
            if args.command == "accounts":
                print_accounts(service)
            elif args.command == "add-account":
                add_account(settings, service, args.email)
            elif args.command == "sync":
                account = _require_account(service, args.email)
                asyncio.run(run_sync(service, account, args.full, args.only))
            elif args.command == "search":
                account = _require_account(service, args.email)
                asyncio.run(run_search(service, account, args.query, args.limit, args.remote))
            elif args.command == "status":
                print_status(service, _require_account(service, args.email))
    except SyncEngineError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
