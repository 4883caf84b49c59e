# src/relay_app/main.py

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from token_relay.errors import (
    MissingRefreshTokenError,
    TokenRelayError,
    handle_api_error,
    mask_credential,
)

from .config import load_config, resolve_credentials_file
from .config_exceptions import RelayConfigError
from .logging_setup import setup_logging
from .session import AuthSession

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relay", description="API client with transparent access-token refresh"
    )
    parser.add_argument("--env-file", type=str, default=None, help="Path to a .env file.")
    parser.add_argument(
        "--verbose", action="store_true", help="Show debug output on the console."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    login = subparsers.add_parser("login", help="Log in and store the token pair.")
    login.add_argument("--email", required=True)
    login.add_argument("--password", default=None, help="Prompted for if omitted.")

    subparsers.add_parser("logout", help="Log out and forget the stored tokens.")
    subparsers.add_parser("whoami", help="Show the current user.")
    subparsers.add_parser("status", help="Show the stored credentials (masked).")

    get = subparsers.add_parser("get", help="GET an API path with the stored credentials.")
    get.add_argument("path")
    return parser


def _show_forced_logout(error) -> None:
    console.print(
        Panel(
            f"Your session has expired ({error}).\n"
            "Run [bold]relay login --email <address>[/bold] to sign in again.",
            title="[bold yellow]Login required[/bold yellow]",
            border_style="yellow",
        )
    )


def _show_status(session: AuthSession) -> None:
    pair = session.store.get()
    table = Table(title="Stored credentials")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("API URL", session.config.api_url)
    table.add_row("File", str(resolve_credentials_file(session.config)))
    table.add_row("Access token", mask_credential(pair.access_token if pair else None))
    table.add_row("Refresh token", mask_credential(pair.refresh_token if pair else None))
    console.print(table)


async def run_command(args: argparse.Namespace, session: AuthSession) -> int:
    try:
        if args.command == "login":
            password = args.password or Prompt.ask("Password", password=True)
            user = await session.login(args.email, password)
            console.print(f"[green]Logged in as[/green] {user.get('email', args.email)}")
        elif args.command == "logout":
            await session.logout()
            console.print("[green]Logged out.[/green]")
        elif args.command == "whoami":
            user = await session.get_current_user()
            console.print_json(json.dumps(user))
        elif args.command == "status":
            _show_status(session)
        elif args.command == "get":
            response = await session.request("GET", args.path)
            try:
                console.print_json(json.dumps(response.json()))
            except ValueError:
                console.print(response.text)
    except MissingRefreshTokenError:
        console.print(
            "[bold red]Not logged in.[/bold red] "
            "Run [bold]relay login --email <address>[/bold] first."
        )
        return 1
    except TokenRelayError as e:
        # A forced logout has already been reported by _show_forced_logout
        if not session.requires_login:
            console.print(f"[bold red]Error:[/bold red] {handle_api_error(e)}")
        return 1
    return 0


async def _main(args: argparse.Namespace) -> int:
    config = load_config(env_file=args.env_file)
    async with AuthSession(config, on_forced_logout=_show_forced_logout) as session:
        return await run_command(args, session)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(console_level=logging.DEBUG if args.verbose else logging.WARNING)
    try:
        return asyncio.run(_main(args))
    except RelayConfigError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
