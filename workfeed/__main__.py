"""WorkWidget command line: run the API server or manage connections"""

import argparse
import asyncio
import sys

from rich.console import Console
from rich.table import Table

from workfeed.container import Container
from workfeed.core.config import get_settings
from workfeed.core.logging import setup_logging
from workfeed.errors import StorageError, UserCancelledError, WorkfeedError
from workfeed.models import AggregatedState, Notification, Provider

console = Console()


def _provider(name: str) -> Provider:
    try:
        return Provider(name)
    except ValueError:
        choices = ", ".join(p.value for p in Provider)
        raise argparse.ArgumentTypeError(f"unknown provider '{name}' (choose from {choices})") from None


# ============================================
# Commands
# ============================================


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    from workfeed.api import create_app

    settings = get_settings()
    app = create_app(settings, start_polling=not args.no_polling)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_config=None)
    return 0


async def connect(args: argparse.Namespace) -> int:
    container = Container(get_settings())
    provider: Provider = args.provider
    try:
        config = container.config(provider)
        if not config.is_configured:
            console.print(f"✗ {provider.display_name} client id is not configured")
            return 1
        if provider.supports_multiple_accounts:
            identity = await container.oauth.authorize_multi_account(provider, config)
            console.print(f"✓ Connected {provider.display_name} as {identity.display_name}")
        else:
            await container.oauth.authorize(provider, config)
            console.print(f"✓ Connected {provider.display_name}")
        return 0
    except UserCancelledError:
        console.print("Cancelled.")
        return 1
    except WorkfeedError as e:
        console.print(f"✗ {provider.display_name}: {e}")
        return 1
    finally:
        await container.close()


async def disconnect(args: argparse.Namespace) -> int:
    container = Container(get_settings())
    provider: Provider = args.provider
    try:
        if args.account:
            container.oauth.disconnect_account(provider, args.account)
            console.print(f"✓ Removed {provider.display_name} account {args.account}")
        else:
            container.oauth.disconnect(provider)
            console.print(f"✓ Disconnected {provider.display_name}")
        return 0
    except StorageError as e:
        console.print(f"✗ {e}")
        return 1
    finally:
        await container.close()


async def accounts(args: argparse.Namespace) -> int:
    container = Container(get_settings())
    try:
        store = container.settings_store
        table = Table(title="Services")
        table.add_column("Service")
        table.add_column("Enabled")
        table.add_column("Connected")
        table.add_column("Accounts")
        for provider in Provider:
            registered = (
                container.credentials.list_accounts(provider)
                if provider.supports_multiple_accounts
                else []
            )
            marked = [f"{a} *" if a == store.active_account else a for a in registered]
            table.add_row(
                provider.display_name,
                "yes" if store.is_enabled(provider) else "no",
                "yes" if store.is_authenticated(provider) else "no",
                ", ".join(marked),
            )
        console.print(table)
        return 0
    except StorageError as e:
        console.print(f"✗ {e}")
        return 1
    finally:
        await container.close()


async def refresh(args: argparse.Namespace) -> int:
    container = Container(get_settings())
    try:
        await container.startup()
        state = await container.aggregator.refresh_all()
        _print_state(state)
        return 1 if state.errors else 0
    finally:
        await container.close()


def _print_state(state: AggregatedState) -> None:
    if state.is_showing_sample_data:
        console.print("[dim]No services connected, showing sample data[/dim]")

    for title, items in (
        ("Pinned", state.pinned),
        ("Recent", state.recent),
        ("Upcoming", state.upcoming),
    ):
        if not items:
            continue
        table = Table(title=title, show_lines=False)
        table.add_column("When")
        table.add_column("Service")
        table.add_column("Title")
        table.add_column("Detail")
        for n in items:
            table.add_row(*_row(n))
        console.print(table)

    for provider, message in state.errors.items():
        console.print(f"[red]✗ {provider.display_name}: {message}[/red]")


def _row(n: Notification) -> tuple[str, str, str, str]:
    when = n.timestamp.astimezone().strftime("%m-%d %H:%M")
    return when, n.provider.display_name, n.title, n.subtitle


# ============================================
# Entry point
# ============================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="workfeed", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    serve_parser = sub.add_parser("serve", help="Run the loopback API server")
    serve_parser.add_argument("--no-polling", action="store_true", help="Do not poll on a timer")
    serve_parser.set_defaults(handler=serve)

    connect_parser = sub.add_parser("connect", help="Connect a service in the browser")
    connect_parser.add_argument("provider", type=_provider)
    connect_parser.set_defaults(handler=connect)

    disconnect_parser = sub.add_parser("disconnect", help="Forget a service's credentials")
    disconnect_parser.add_argument("provider", type=_provider)
    disconnect_parser.add_argument("--account", help="Only remove this account")
    disconnect_parser.set_defaults(handler=disconnect)

    accounts_parser = sub.add_parser("accounts", help="Show services and connected accounts")
    accounts_parser.set_defaults(handler=accounts)

    refresh_parser = sub.add_parser("refresh", help="Run one refresh round and print it")
    refresh_parser.set_defaults(handler=refresh)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(get_settings())

    result = args.handler(args)
    if asyncio.iscoroutine(result):
        result = asyncio.run(result)
    return result


if __name__ == "__main__":
    sys.exit(main())
