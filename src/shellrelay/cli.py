"""CLI entry point for shellrelay."""

from __future__ import annotations

import asyncio
import logging
import sys

import typer
from rich.console import Console
from rich.text import Text

from shellrelay import __version__
from shellrelay.config import ShellConfig, split_command

app = typer.Typer(
    name="shellrelay",
    help="Relay an interactive command interpreter to a consumer.",
    no_args_is_help=True,
)

# Seconds to wait for drains after dispose before exiting anyway.
_CLOSE_TIMEOUT = 5.0


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@app.command()
def console(
    command: str | None = typer.Option(
        None,
        "--command",
        "-C",
        help="Interpreter command line (default: cmd /K or /bin/sh -i).",
    ),
    cwd: str | None = typer.Option(
        None, "--cwd", help="Working directory (default: system root)."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Drive a shell session from this terminal (stdin in, chunks out)."""
    setup_logging(verbose)

    config = ShellConfig.load(config_file)
    if command:
        config.command = split_command(command)
    if cwd:
        config.cwd = cwd

    asyncio.run(_run_console(config))


@app.command()
def version() -> None:
    """Print the shellrelay version."""
    typer.echo(f"shellrelay v{__version__}")


async def _run_console(config: ShellConfig) -> None:
    """Forward stdin lines to the session and print what it relays."""
    from shellrelay.relay.wire import Wire
    from shellrelay.shell.errors import SpawnError
    from shellrelay.shell.session import ShellSession

    out = Console(highlight=False)
    wire = Wire()
    queue = wire.subscribe()

    # --- Wire consumer (async background task) ---
    async def _consume_wire() -> None:
        while True:
            chunk = await queue.get()
            if chunk is None:
                break
            style = "red" if chunk.is_error else ""
            out.print(Text(chunk.text, style=style), end="")

    consumer = asyncio.create_task(_consume_wire())
    session = ShellSession(wire, config=config, title="console")
    loop = asyncio.get_running_loop()

    try:
        await session.start()
    except SpawnError as e:
        typer.echo(f"Error: {e}", err=True)
        wire.close()
        await consumer
        raise typer.Exit(1)

    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line or line.strip().lower() == "exit":
                break
            if not await session.execute_command(line.rstrip("\r\n")):
                typer.echo("Error: no shell session available", err=True)
    finally:
        session.dispose()
        await session.wait_closed(timeout=_CLOSE_TIMEOUT)
        wire.close()
        await consumer


def main() -> None:
    app()


if __name__ == "__main__":
    main()
