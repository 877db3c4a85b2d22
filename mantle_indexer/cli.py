"""Operator command line.

Usage:
    mantle-indexer run
    mantle-indexer stop
    mantle-indexer status
    mantle-indexer refresh-stats
    mantle-indexer ack-alert ALERT_ID [--by NAME]
    mantle-indexer watch add ADDRESS [--label L] [--type T] [--reason R] [--severity S]
    mantle-indexer watch remove ADDRESS
    mantle-indexer watch list
    mantle-indexer init-db
"""

from __future__ import annotations

import asyncio
import getpass
import uuid

from argparse import ArgumentParser, Namespace
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

from mantle_indexer import live
from mantle_indexer.alerts.models import Severity
from mantle_indexer.alerts.repository import AlertRepository
from mantle_indexer.analysis.refresher import StatsRefresher
from mantle_indexer.data.state.store import StateStore
from mantle_indexer.data.watchlist.models import WatchedAddress
from mantle_indexer.data.watchlist.repository import WatchlistRepository
from mantle_indexer.helpers.config import get_optional_env, load_indexer_config
from mantle_indexer.helpers.db import create_tables, get_session_factory
from mantle_indexer.helpers.logging import get_logger
from mantle_indexer.ingestion.source import RPCBlockSource


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence


logger = get_logger(__name__)
console = Console()


async def cmd_run(args: Namespace) -> int:
    """Run the live indexer in the foreground."""
    return await live.main()


async def cmd_stop(args: Namespace) -> int:
    """Ask a running indexer to stop after its in-flight block."""
    await StateStore(get_session_factory()).request_stop()
    console.print("[yellow]Stop requested; the running indexer will exit shortly[/yellow]")
    return 0


async def _source_head() -> int | None:
    rpc_url = get_optional_env("ETH_RPC_URL")
    if not rpc_url:
        return None
    config = load_indexer_config()
    async with RPCBlockSource(rpc_url, timeout=config.rpc_timeout) as source:
        try:
            return await source.get_head_number()
        except Exception as e:
            logger.warning("Could not read source head: %s", e)
            return None


async def cmd_status(args: Namespace) -> int:
    """Show tip, source head, lag and run status."""
    state = StateStore(get_session_factory())
    tip = await state.get_tip()
    status = await state.get_status()
    head = await _source_head()

    table = Table(title="Indexer Status")
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right", style="yellow")
    table.add_row("Status", str(status.get("status")))
    table.add_row("Started at", str(status.get("started_at") or "-"))
    if status.get("error"):
        table.add_row("Error", f"[red]{status['error']}[/red]")
    table.add_row("Last indexed block", f"{tip:,}")
    table.add_row("Source head", f"{head:,}" if head is not None else "unknown")
    table.add_row("Lag", f"{max(head - tip, 0):,}" if head is not None else "unknown")
    console.print(table)
    return 0


async def cmd_refresh_stats(args: Namespace) -> int:
    """Recompute the derived aggregates now."""
    config = load_indexer_config()
    refresher = StatsRefresher(
        get_session_factory(),
        timeout=config.stats_refresh_timeout,
        top_addresses_limit=config.top_addresses_limit,
    )
    counts = await refresher.refresh()

    table = Table(title="Refreshed Aggregates")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right", style="yellow")
    for name, rows in counts.items():
        table.add_row(name, f"{rows:,}")
    console.print(table)
    return 0


async def cmd_ack_alert(args: Namespace) -> int:
    """Acknowledge an alert."""
    try:
        alert_id = uuid.UUID(args.alert_id)
    except ValueError:
        console.print(f"[red]Not an alert id: {args.alert_id}[/red]")
        return 1

    acknowledged = await AlertRepository(get_session_factory()).acknowledge(
        alert_id, args.by or getpass.getuser()
    )
    if not acknowledged:
        console.print("[yellow]Alert not found or already acknowledged[/yellow]")
        return 1
    console.print(f"[green]✓ Acknowledged {alert_id}[/green]")
    return 0


async def cmd_watch_add(args: Namespace) -> int:
    """Add or replace a watch list entry."""
    metadata = {"severity": args.severity} if args.severity else {}
    entry = WatchedAddress(
        address=args.address,
        label=args.label,
        address_type=args.type,
        watch_reason=args.reason,
        alert_on_activity=not args.no_alert,
        metadata=metadata,
    )
    await WatchlistRepository(get_session_factory()).add(entry)
    console.print(f"[green]✓ Watching {entry.address}[/green]")
    return 0


async def cmd_watch_remove(args: Namespace) -> int:
    """Remove a watch list entry."""
    removed = await WatchlistRepository(get_session_factory()).remove(args.address)
    if not removed:
        console.print(f"[yellow]{args.address} is not on the watch list[/yellow]")
        return 1
    console.print(f"[green]✓ Removed {args.address.lower()}[/green]")
    return 0


async def cmd_watch_list(args: Namespace) -> int:
    """Print the watch list."""
    entries = await WatchlistRepository(get_session_factory()).list_entries()

    table = Table(title=f"Watched Addresses ({len(entries)})")
    table.add_column("Address", style="cyan")
    table.add_column("Label")
    table.add_column("Type")
    table.add_column("Severity", style="yellow")
    table.add_column("Alerts", justify="center")
    table.add_column("Reason")
    for entry in entries:
        table.add_row(
            entry.address,
            entry.label or "",
            entry.address_type or "",
            entry.severity,
            "on" if entry.alert_on_activity else "off",
            entry.watch_reason or "",
        )
    console.print(table)
    return 0


async def cmd_init_db(args: Namespace) -> int:
    """Create missing tables."""
    await create_tables()
    console.print("[green]✓ Tables created[/green]")
    return 0


def build_parser() -> ArgumentParser:
    """Build the argument parser."""
    parser = ArgumentParser(
        prog="mantle-indexer",
        description="Mantle block indexer, alerting and stats",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("run", help="Run the live indexer").set_defaults(func=cmd_run)
    commands.add_parser("stop", help="Stop a running indexer").set_defaults(
        func=cmd_stop
    )
    commands.add_parser("status", help="Show indexer progress").set_defaults(
        func=cmd_status
    )
    commands.add_parser(
        "refresh-stats", help="Recompute daily/hourly stats and top addresses"
    ).set_defaults(func=cmd_refresh_stats)
    commands.add_parser("init-db", help="Create database tables").set_defaults(
        func=cmd_init_db
    )

    ack = commands.add_parser("ack-alert", help="Acknowledge an alert")
    ack.add_argument("alert_id", help="Alert UUID")
    ack.add_argument("--by", help="Who acknowledges (default: current user)")
    ack.set_defaults(func=cmd_ack_alert)

    watch = commands.add_parser("watch", help="Manage the watch list")
    watch_commands = watch.add_subparsers(dest="watch_command", required=True)

    add = watch_commands.add_parser("add", help="Watch an address")
    add.add_argument("address")
    add.add_argument("--label")
    add.add_argument("--type", help="e.g. exploit, sanctioned, blacklist, whale")
    add.add_argument("--reason", help="Why the address is watched")
    add.add_argument(
        "--severity",
        choices=[s.value for s in Severity],
        help="Override the severity implied by --type",
    )
    add.add_argument(
        "--no-alert", action="store_true", help="Keep the entry but do not alert"
    )
    add.set_defaults(func=cmd_watch_add)

    remove = watch_commands.add_parser("remove", help="Stop watching an address")
    remove.add_argument("address")
    remove.set_defaults(func=cmd_watch_remove)

    watch_commands.add_parser("list", help="List watched addresses").set_defaults(
        func=cmd_watch_list
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``mantle-indexer`` script.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    command: Callable[[Namespace], Awaitable[int]] = args.func
    try:
        return asyncio.run(command(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except ValueError as e:
        # Missing or malformed configuration
        console.print(f"[red]{e}[/red]")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
