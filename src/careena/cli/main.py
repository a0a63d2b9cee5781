"""
Careena CLI, `careena` command.

Commands:
  careena auth login            Patient phone OTP login
  careena auth doctor-login     Doctor/staff login
  careena chat                  Interactive REPL chat
  careena classify [FILE]       Classify a message offline
  careena sessions <cmd>        Current session and chat history
"""

import asyncio
import logging

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install careena[cli]")

from careena.client import AsyncCareena
from careena.config import Settings, load_config

console = Console()


def _get_client(require_login: bool = True) -> AsyncCareena:
    client = AsyncCareena(settings=Settings.load(load_config()))
    if require_login and not client.machine.is_authenticated:
        console.print("[red]Not logged in. Run `careena auth login` first.[/red]")
        raise SystemExit(1)
    return client


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option("0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def main(verbose: bool):
    """Careena CLI: chat with the CarePay loan assistant."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


from careena.cli.auth import auth
from careena.cli.chat import chat_cmd, classify_cmd
from careena.cli.sessions import sessions

main.add_command(auth)
main.add_command(chat_cmd)
main.add_command(classify_cmd)
main.add_command(sessions)


if __name__ == "__main__":
    main()
