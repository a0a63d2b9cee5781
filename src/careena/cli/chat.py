"""CLI: careena chat, careena classify"""

import json
from typing import Optional

import click
from rich.console import Console

from careena.interpret.classifier import classify_text
from careena.interpret.patterns import format_patient_info
from careena.models.classification import PaymentSteps, PlainText, PostApprovalLink, QuestionWithOptions
from careena.models.message import Message
from careena.session_machine import SessionState
from careena.share import share_payload

console = Console()

HELP = "Commands: /pick N, /info, /new, /quit"


def _get_client():
    from careena.cli.main import _get_client
    return _get_client()


def _run(coro):
    from careena.cli.main import _run
    return _run(coro)


async def _render(client, message: Message) -> None:
    if message.sender == "user":
        console.print(f"[bold]You:[/bold] {message.text}")
        return
    result = client.classify(message)
    if isinstance(result, QuestionWithOptions):
        state = client.tracker.state_for(message.id)
        picked = state.selected_option_value if state.is_locked else None
        console.print(f"[green]Careena:[/green] {result.question}")
        for i, option in enumerate(result.options, 1):
            mark = " [dim](selected)[/dim]" if picked is not None and picked in (option, result.reply_for(i - 1)) else ""
            console.print(f"  [cyan]{i}.[/cyan] {option}{mark}")
    elif isinstance(result, PaymentSteps):
        resolved = await client.resolve_links(message)
        console.print("[green]Careena:[/green] Complete these steps:")
        for i, step in enumerate(result.steps, 1):
            url = resolved.get(step.url, step.url)
            console.print(f"  [cyan]{i}. {step.title}[/cyan] {step.description}")
            console.print(f"     {url}")
            console.print(f"     [dim]share: {share_payload(step.url, client.links)['whatsapp']}[/dim]")
    elif isinstance(result, PostApprovalLink):
        console.print(f"[green]Careena:[/green] {message.text}")
        if result.url:
            console.print(f"  [cyan]Continue:[/cyan] {await client.links.resolve(result.url)}")
    else:
        console.print(f"[green]Careena:[/green] {message.text}")
        if not isinstance(result, PlainText):
            console.print(f"  [dim][{result.kind}][/dim]")


def _last_agent(client) -> Optional[Message]:
    return next((m for m in reversed(client.messages) if m.is_agent), None)


@click.command("chat")
def chat_cmd():
    """Interactive chat with the loan assistant."""

    async def _chat():
        client = _get_client()
        try:
            with console.status("Loading session..."):
                state = await client.start()
            if state != SessionState.ACTIVE:
                console.print(f"[red]Session not available ({state.value}). Log in again.[/red]")
                return
            console.print(f"[dim]Session: {client.session_id}[/dim]")
            for message in client.messages:
                await _render(client, message)
            console.print(f"[cyan]{HELP}[/cyan]\n")
            while client.state != SessionState.LOGGED_OUT:
                text = click.prompt("You", prompt_suffix=": ").strip()
                if text in ("/quit", "/exit"):
                    break
                if text == "/new":
                    started = await client.new_inquiry(lambda: click.confirm("Start a new inquiry?"))
                    if started:
                        console.print(f"[dim]Session: {client.session_id}[/dim]")
                        for message in client.messages:
                            await _render(client, message)
                    continue
                if text == "/info":
                    text = format_patient_info(
                        click.prompt("Patient's full name"),
                        click.prompt("Patient's phone number"),
                        click.prompt("Treatment cost"),
                        click.prompt("Monthly income"),
                    )
                if text.startswith("/pick"):
                    last = _last_agent(client)
                    try:
                        index = int(text.split()[1]) - 1
                    except (IndexError, ValueError):
                        console.print(f"[yellow]{HELP}[/yellow]")
                        continue
                    with console.status("Waiting for reply..."):
                        reply = await client.choose_option(last.id, index) if last else None
                    if reply is None and not client.banner:
                        console.print("[yellow]That option is not available.[/yellow]")
                else:
                    with console.status("Waiting for reply..."):
                        reply = await client.send(text)
                if reply is not None:
                    await _render(client, reply)
                if client.banner:
                    console.print(f"[red]{client.banner}[/red]")
        except (KeyboardInterrupt, EOFError, click.Abort):
            pass
        finally:
            await client.close()

    _run(_chat())


@click.command("classify")
@click.argument("source", type=click.File("r"), default="-")
@click.option("--sender", type=click.Choice(["agent", "user"]), default="agent")
def classify_cmd(source, sender: str):
    """Classify a message read from FILE (or stdin) and print JSON."""
    result = classify_text(source.read(), sender)
    click.echo(json.dumps(result.model_dump(), indent=2, ensure_ascii=False))
