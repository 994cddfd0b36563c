"""Click CLI for inspecting stored events and running the gateway."""

from __future__ import annotations

import asyncio
import json

import click

from concierge.conversation.db import SQLiteConversationStore


@click.group()
@click.option(
    "--db", envvar="DATABASE_PATH", default="data/concierge.db",
    help="Event database path.",
)
@click.pass_context
def cli(ctx: click.Context, db: str) -> None:
    """DM concierge gateway CLI."""
    ctx.ensure_object(dict)
    ctx.obj["db"] = db


@cli.group("events")
def events_group() -> None:
    """Inspect stored webhook events."""


@events_group.command("list")
@click.option("--limit", default=20, show_default=True, help="Number of events to show.")
@click.pass_context
def events_list(ctx: click.Context, limit: int) -> None:
    """List the most recent events, newest first."""
    store = SQLiteConversationStore(ctx.obj["db"])
    try:
        events = asyncio.run(store.get_recent_events(limit))
    finally:
        store.close()
    output = [e.model_dump(mode="json") for e in events]
    click.echo(json.dumps(output, indent=2))


@events_group.command("click")
@click.argument("event_id", type=int)
@click.pass_context
def events_click(ctx: click.Context, event_id: int) -> None:
    """Mark an event's deep link as clicked."""
    store = SQLiteConversationStore(ctx.obj["db"])
    try:
        found = asyncio.run(store.mark_deep_link_clicked(event_id))
    finally:
        store.close()
    if not found:
        raise click.ClickException(f"Event not found: {event_id}")
    click.echo(f"Deep link marked clicked for event {event_id}")


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=8080, show_default=True, type=int)
def serve(host: str, port: int) -> None:
    """Run the gateway (configuration comes from environment variables)."""
    import uvicorn

    uvicorn.run("concierge.app:create_app_from_env", factory=True, host=host, port=port)
