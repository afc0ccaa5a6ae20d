"""Command-line interface for the Qinglong bot.

COMMANDS:
---------
- start:        Run the Telegram bot in the foreground.
- check:        Verify the Telegram token and Qinglong credentials.
- extract-cron: Show the task parameters a script would get on upload.
- version:      Show version information.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import NoReturn

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from qlbot import __version__
from qlbot.config import Settings, settings
from qlbot.qinglong import QinglongClient
from qlbot.telegram import TelegramService
from qlbot.telegram.bot import validate_token
from qlbot.workflow import (
    AsyncioScheduler,
    SessionStore,
    WorkflowEngine,
    describe_cron,
    next_run,
)

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(name)s: %(message)s" if verbose else "%(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        handlers=[RichHandler(rich_tracebacks=True, console=console, show_path=verbose)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def create_service(config: Settings) -> tuple[TelegramService, AsyncioScheduler]:
    """Wire the Telegram service, workflow engine and Qinglong client together.

    Args:
        config: Application settings

    Returns:
        Tuple of (service, scheduler); the scheduler must be shut down
        when the service stops
    """
    scheduler = AsyncioScheduler()
    store = SessionStore(
        scheduler,
        command_template=config.command_template,
        default_schedule=config.default_schedule,
    )
    backend = QinglongClient(
        config.qinglong_url,
        config.qinglong_client_id,
        config.qinglong_client_secret,
    )
    service = TelegramService(
        bot_token=config.telegram_bot_token,
        api_root=config.telegram_api_root,
        proxy=config.telegram_proxy or None,
        download_retries=config.download_retries,
    )
    engine = WorkflowEngine(
        store,
        service.transport,
        backend,
        scheduler,
        supported_extensions=config.supported_extensions,
        edit_timeout=config.session_timeout_seconds,
        notice_ttl=config.notice_ttl_seconds,
    )
    service.set_engine(engine)
    return service, scheduler


def _require_config() -> None:
    if not settings.telegram_configured():
        console.print("[red]Error:[/red] QLBOT_TELEGRAM_BOT_TOKEN not set")
        console.print("  1. Create a bot via @BotFather on Telegram")
        console.print("  2. Set the token: export QLBOT_TELEGRAM_BOT_TOKEN='your-token'")
        sys.exit(1)

    if not settings.qinglong_configured():
        console.print("[red]Error:[/red] Qinglong panel not configured")
        console.print("  Set QLBOT_QINGLONG_URL, QLBOT_QINGLONG_CLIENT_ID and QLBOT_QINGLONG_CLIENT_SECRET")
        sys.exit(1)


def cmd_start(args: argparse.Namespace) -> None:
    """Start the Telegram bot in the foreground."""
    _require_config()

    ok, msg = asyncio.run(
        validate_token(
            settings.telegram_bot_token,
            settings.telegram_api_root,
            settings.telegram_proxy or None,
        )
    )
    if not ok:
        console.print(f"[red]Invalid token:[/red] {msg}")
        sys.exit(1)

    console.print(f"[green]Connected as {msg}[/green]")
    console.print("\n[dim]Starting Telegram service (press Ctrl+C to stop)...[/dim]\n")

    async def _run() -> None:
        service, scheduler = create_service(settings)
        try:
            await service.start()
        finally:
            await scheduler.shutdown()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[dim]Telegram service stopped.[/dim]")


def cmd_check(args: argparse.Namespace) -> None:
    """Verify the Telegram token and the Qinglong credentials."""
    _require_config()

    async def _check() -> list[tuple[str, bool, str]]:
        telegram_ok, telegram_msg = await validate_token(
            settings.telegram_bot_token,
            settings.telegram_api_root,
            settings.telegram_proxy or None,
        )
        client = QinglongClient(
            settings.qinglong_url,
            settings.qinglong_client_id,
            settings.qinglong_client_secret,
        )
        qinglong_ok, qinglong_msg = await client.check()
        return [
            ("Telegram", telegram_ok, telegram_msg),
            (f"Qinglong ({client.base_url})", qinglong_ok, qinglong_msg),
        ]

    results = asyncio.run(_check())

    table = Table(title="Connection check")
    table.add_column("Service")
    table.add_column("Status")
    table.add_column("Details")
    for name, ok, detail in results:
        status = "[green]OK[/green]" if ok else "[red]FAILED[/red]"
        table.add_row(name, status, detail)
    console.print(table)

    if not all(ok for _, ok, _ in results):
        sys.exit(1)


def cmd_extract_cron(args: argparse.Namespace) -> None:
    """Show the task parameters a script would get when uploaded."""
    path = Path(args.file).expanduser()
    if not path.exists():
        console.print(f"[red]Error:[/red] File not found: {path}")
        sys.exit(1)

    content = path.read_text(encoding="utf-8", errors="replace")
    store = SessionStore(
        AsyncioScheduler(),
        command_template=settings.command_template,
        default_schedule=settings.default_schedule,
    )
    params = store.default_params_for(path.name, content)

    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("name", params.name)
    table.add_row("command", params.command)
    table.add_row("schedule", params.schedule)

    upcoming = next_run(params.schedule)
    if upcoming is not None:
        table.add_row("next run", upcoming.strftime("%Y-%m-%d %H:%M %Z"))
        table.add_row("description", describe_cron(params.schedule))
    else:
        table.add_row("next run", "[yellow]schedule could not be parsed[/yellow]")

    console.print(table)


def cmd_version(args: argparse.Namespace) -> None:
    """Show version information."""
    console.print(f"qlbot v{__version__}")


def main() -> NoReturn:
    """Main entry point for the qlbot CLI."""
    parser = argparse.ArgumentParser(
        prog="qlbot",
        description="Telegram bot for uploading scripts to a Qinglong panel",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed output")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("start", help="Run the Telegram bot in the foreground")
    subparsers.add_parser("check", help="Verify Telegram and Qinglong configuration")

    extract_parser = subparsers.add_parser(
        "extract-cron",
        help="Show the task parameters a script would get on upload",
    )
    extract_parser.add_argument("file", help="Path to the script")

    subparsers.add_parser("version", help="Show version information")

    args = parser.parse_args()
    setup_logging(args.verbose)

    commands = {
        "start": cmd_start,
        "check": cmd_check,
        "extract-cron": cmd_extract_cron,
        "version": cmd_version,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(0)

    handler(args)
    sys.exit(0)


if __name__ == "__main__":
    main()
