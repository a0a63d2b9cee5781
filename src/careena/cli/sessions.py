"""CLI: careena sessions show|new|history"""

import json
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from careena.errors import CareenaError

console = Console()


def _get_client():
    from careena.cli.main import _get_client
    return _get_client()


def _run(coro):
    from careena.cli.main import _run
    return _run(coro)


@click.group()
def sessions():
    """Current session and local chat history."""


@sessions.command("show")
@click.option("--json-output", "--json", is_flag=True)
def sessions_show(json_output: bool):
    """Restore the current session and show its details."""

    async def _show():
        client = _get_client()
        try:
            with console.status("Loading session..."):
                state = await client.start()
            details = client.machine.details
            if json_output:
                click.echo(json.dumps({
                    "state": state.value,
                    "session_id": client.session_id,
                    "details": details.model_dump(mode="json") if details else None,
                }, indent=2))
                return
            console.print(f"[bold]{client.session_id}[/bold] ({state.value})")
            if details is not None:
                console.print(f"[dim]status={details.status} created={details.created_at}[/dim]")
            console.print(f"{len(client.messages)} messages")
        except CareenaError as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)
        finally:
            await client.close()

    _run(_show())


@sessions.command("new")
@click.option("-y", "--yes", is_flag=True, help="Skip the confirmation prompt")
def sessions_new(yes: bool):
    """Start a new inquiry."""

    async def _new():
        client = _get_client()
        try:
            await client.start()
            started = await client.new_inquiry(lambda: yes or click.confirm("Discard the current conversation?"))
            if started:
                console.print(f"[green]Session created: {client.session_id}[/green]")
            else:
                console.print("[yellow]Kept the current session.[/yellow]")
        except CareenaError as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)
        finally:
            await client.close()

    _run(_new())


@sessions.command("history")
@click.option("-q", "--search", "query", default=None)
@click.option("--json-output", "--json", is_flag=True)
def sessions_history(query: Optional[str], json_output: bool):
    """List locally saved chats, newest first."""

    async def _history():
        client = _get_client()
        history = client.machine.history()
        entries = history.search(query) if query else history.entries()
        await client.close()
        if json_output:
            click.echo(json.dumps([e.model_dump(mode="json", by_alias=True) for e in entries], indent=2))
            return
        table = Table(title=f"Chats ({len(entries)})")
        table.add_column("ID", style="bold")
        table.add_column("Title")
        table.add_column("Last message")
        table.add_column("Updated")
        for e in entries:
            table.add_row(e.id, e.title, e.last_message, e.timestamp.isoformat(timespec="minutes"))
        console.print(table)

    _run(_history())
