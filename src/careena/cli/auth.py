"""CLI: careena auth login|doctor-login|status|logout"""

from typing import Optional

import click
from rich.console import Console

from careena.config import load_config, save_config
from careena.errors import CareenaError

console = Console()


def _get_client(require_login: bool = True):
    from careena.cli.main import _get_client
    return _get_client(require_login)


def _run(coro):
    from careena.cli.main import _run
    return _run(coro)


def _remember_base_url(base_url: Optional[str]) -> None:
    if base_url:
        save_config({**load_config(), "base_url": base_url})


@click.group()
def auth():
    """Authentication commands."""


@auth.command("login")
@click.option("--base-url", default=None, help="Loan bot API base URL")
@click.option("--doctor-id", default=None, help="Referring doctor id")
@click.option("--doctor-name", default=None, help="Referring doctor name")
def auth_login(base_url: Optional[str], doctor_id: Optional[str], doctor_name: Optional[str]):
    """Log in with a phone number and OTP."""
    _remember_base_url(base_url)

    async def _login():
        client = _get_client(require_login=False)
        try:
            phone = click.prompt("Phone number")
            with console.status("Sending OTP..."):
                await client.auth.send_otp(phone)
            console.print("[green]OTP sent![/green]")

            otp = click.prompt("OTP")
            with console.status("Verifying..."):
                await client.login_with_otp(phone, otp, doctor_id=doctor_id, doctor_name=doctor_name)
            identity = client.machine.identity()
            console.print(f"[green]Logged in as {identity.kind} {identity.value}[/green]")
        except CareenaError as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)
        finally:
            await client.close()

    _run(_login())


@auth.command("doctor-login")
@click.option("--code", "doctor_code", prompt="Doctor code")
@click.option("--password", prompt=True, hide_input=True)
@click.option("--remember", is_flag=True, help="Keep credentials and re-authenticate automatically")
@click.option("--base-url", default=None, help="Loan bot API base URL")
def auth_doctor_login(doctor_code: str, password: str, remember: bool, base_url: Optional[str]):
    """Doctor/staff login."""
    _remember_base_url(base_url)

    async def _login():
        client = _get_client(require_login=False)
        try:
            with console.status("Logging in..."):
                await client.login_doctor(doctor_code, password, remember=remember)
            identity = client.machine.identity()
            name = identity.name or identity.value
            console.print(f"[green]Logged in as Dr. {name.replace('_', ' ')}[/green]")
        except CareenaError as e:
            console.print(f"[red]{e}[/red]")
            raise SystemExit(1)
        finally:
            await client.close()

    _run(_login())


@auth.command("status")
def auth_status():
    """Show current auth status."""

    async def _status():
        client = _get_client(require_login=False)
        machine = client.machine
        identity = machine.identity()
        if machine.is_authenticated and identity is not None:
            console.print(f"[green]Logged in[/green] as {identity.kind} {identity.value}")
            console.print(f"[dim]Sessions this login: {machine.session_count}[/dim]")
        else:
            console.print("[yellow]Not logged in. Run `careena auth login`.[/yellow]")
        await client.close()

    _run(_status())


@auth.command("logout")
def auth_logout():
    """Drop the session and saved token."""

    async def _logout():
        client = _get_client(require_login=False)
        client.logout()
        await client.close()
        console.print("[green]Logged out.[/green]")

    _run(_logout())
