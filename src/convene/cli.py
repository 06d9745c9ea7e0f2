#!/usr/bin/env python3
"""Convene CLI for audience and booking administration."""

import argparse
import logging

import questionary
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from convene.app import App, create_app
from convene.audience import ROOT

console = Console()


def select_audience(app: App) -> dict | None:
    """Prompt the user to select an audience from the active list."""
    audiences = app.audiences.get_all(status="active")
    if not audiences:
        console.print("[red]No audiences found.[/]")
        return None
    return questionary.select(
        "Select an audience:",
        choices=[questionary.Choice(title=f"{a['name']} (#{a['id']})", value=a) for a in audiences],
    ).ask()


def _add_branch(app: App, node: Tree, audience_id: int) -> None:
    for child in app.audiences.get_children(audience_id):
        count = app.memberships.get_member_count(child["id"])
        _add_branch(app, node.add(f"{child['name']} [dim]#{child['id']} · {count} members[/]"), child["id"])


def show_tree(app: App) -> None:
    """Print the audience tree with direct member counts."""
    tree = Tree("[bold]Audiences[/]")
    for root in app.audiences.get_all(parent_id=ROOT):
        count = app.memberships.get_member_count(root["id"])
        _add_branch(app, tree.add(f"{root['name']} [dim]#{root['id']} · {count} members[/]"), root["id"])
    console.print(tree)


def show_members(app: App, include_children: bool) -> None:
    audience = select_audience(app)
    if not audience:
        return
    members = app.memberships.get_members(audience["id"], include_children=include_children)
    scope = "including sub-audiences" if include_children else "direct"
    console.print(f"[bold]{audience['name']}[/] ({scope}): {len(members)} member(s)")
    if members:
        console.print(", ".join(str(m) for m in members))


def check_conflicts(app: App, environment_id: int, booking_date: str, start: str, end: str) -> None:
    """List active bookings overlapping a proposed window."""
    conflicts = app.conflicts.get_conflicts(environment_id, booking_date, start, end)
    if not conflicts:
        console.print(
            f"[green]No conflicts on environment {environment_id} at {booking_date} {start}-{end}.[/]"
        )
        return

    table = Table(title=f"Conflicts on {booking_date}")
    table.add_column("Booking")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Description")
    for booking in conflicts:
        table.add_row(
            str(booking["id"]), booking["start_time"], booking["end_time"], booking["description"]
        )
    console.print(table)


def delete_audience(app: App) -> None:
    """Delete a selected audience and everything below it."""
    audience = select_audience(app)
    if not audience:
        return

    descendants = app.audiences.get_descendant_ids(audience["id"])
    members = app.memberships.get_member_count(audience["id"], include_children=True)
    summary = (
        f"Will delete [bold]{audience['name']}[/], {len(descendants)} sub-audience(s) "
        f"and the memberships of {members} user(s)."
    )
    console.print(f"[yellow]{summary}[/]")

    if not questionary.confirm("Proceed with these changes?").ask():
        console.print("[dim]Cancelled.[/]")
        return

    if app.audiences.delete(audience["id"]):
        console.print(f"[green]Deleted {audience['name']}.[/]")
    else:
        console.print(f"[red]Some rows under {audience['name']} could not be deleted.[/]")


def enqueue_privacy_job(app: App, action: str, user_id: int) -> None:
    from convene.jobs import erase_user_data_job, export_user_data_job

    if action == "erase":
        console.print(f"[yellow]Will erase the personal data of user {user_id}.[/]")
        if not questionary.confirm("Proceed with these changes?").ask():
            console.print("[dim]Cancelled.[/]")
            return
        job = app.task_queue().enqueue(erase_user_data_job, user_id)
    else:
        job = app.task_queue().enqueue(export_user_data_job, user_id)
    console.print(f"[green]Queued {action} job {job.id} for user {user_id}.[/]")


def expire_campaigns(app: App) -> None:
    """Expire re-registration campaigns past their end date."""
    expired = app.reregistrations.expire_overdue()
    console.print(f"[green]Expired {expired} re-registration campaign(s).[/]")


def main():
    parser = argparse.ArgumentParser(description="Convene CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("tree", help="Show the audience tree")

    members = subparsers.add_parser("members", help="List the members of an audience")
    members.add_argument("--include-children", action="store_true")

    conflicts = subparsers.add_parser("conflicts", help="Check a booking window for conflicts")
    conflicts.add_argument("environment_id", type=int)
    conflicts.add_argument("date", help="YYYY-MM-DD")
    conflicts.add_argument("start", help="HH:MM")
    conflicts.add_argument("end", help="HH:MM")

    subparsers.add_parser("delete-audience", help="Delete an audience and its sub-audiences")

    privacy = subparsers.add_parser("privacy", help="Queue a privacy export or erasure")
    privacy.add_argument("action", choices=["export", "erase"])
    privacy.add_argument("user_id", type=int)

    subparsers.add_parser("expire-campaigns", help="Expire overdue re-registration campaigns")

    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    app = create_app()

    try:
        if args.command == "tree":
            show_tree(app)
        elif args.command == "members":
            show_members(app, args.include_children)
        elif args.command == "conflicts":
            check_conflicts(app, args.environment_id, args.date, args.start, args.end)
        elif args.command == "delete-audience":
            delete_audience(app)
        elif args.command == "privacy":
            enqueue_privacy_job(app, args.action, args.user_id)
        elif args.command == "expire-campaigns":
            expire_campaigns(app)
    finally:
        app.activity.flush()


if __name__ == "__main__":
    main()
