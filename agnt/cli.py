"""
AGNT Command-Line Interface
Main entry point: full-screen chat by default, pipe mode with --pipe.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console

from agnt import __version__
from agnt.core.config import Config, setup_logging
from agnt.core.errors import ConfigError
from agnt.core.session import SessionController
from agnt.llm.anthropic_client import AnthropicClient
from agnt.llm.base_client import BaseStreamClient
from agnt.llm.mock_client import MockStreamClient
from agnt.pipe import build_pipe_message, run_pipe
from agnt.tui import run_tui

app = typer.Typer(
    name="agnt",
    help="AGNT - terminal chat client for Claude with remote code execution",
    add_completion=False
)

console = Console(soft_wrap=True)
err_console = Console(stderr=True, soft_wrap=True)


def create_client(config: Config) -> BaseStreamClient:
    """Pick the stream source for this run."""
    if config.mock_mode:
        logger.info("Mock mode: using the offline stream client")
        return MockStreamClient()
    return AnthropicClient(
        api_key=config.api_key,
        model=config.model,
        max_tokens=config.max_tokens,
        base_url=config.base_url,
    )


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    pipe: bool = typer.Option(
        False,
        "--pipe", "-p",
        help="Read the message from stdin and stream the answer to stdout"
    ),
    message: Optional[str] = typer.Option(
        None,
        "--message", "-m",
        help="Message to prepend to piped input (or to send first in the TUI)"
    ),
    code_execution: bool = typer.Option(
        False,
        "--code-execution", "-x",
        help="Offer the remote code execution tool"
    ),
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output-dir", "-o",
        help="Where files produced by code execution are saved"
    ),
    mock: bool = typer.Option(
        False,
        "--mock",
        help="Use built-in mock responses (offline demo mode)"
    ),
):
    """Start a chat session."""
    if ctx.invoked_subcommand is not None:
        return

    try:
        config = Config.from_env(
            code_execution=True if code_execution else None,
            output_dir=output_dir,
            mock_mode=True if mock else None,
        )
    except ConfigError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    setup_logging(config, console=pipe)
    logger.info(f"=== AGNT {__version__} starting ({'pipe' if pipe else 'tui'} mode) ===")

    try:
        config.validate()
    except ConfigError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if pipe:
        stdin_text = "" if sys.stdin.isatty() else sys.stdin.read()
        full_message = build_pipe_message(message, stdin_text)
        if not full_message.strip():
            err_console.print("[red]Error:[/red] nothing to send (pipe text on stdin or pass --message)")
            raise typer.Exit(code=1)
        controller = SessionController(config, create_client(config))
        try:
            exit_code = asyncio.run(run_pipe(controller, full_message))
        except KeyboardInterrupt:
            raise typer.Exit(code=130)
        raise typer.Exit(code=exit_code)

    if not sys.stdin.isatty() or not sys.stdout.isatty():
        err_console.print("[red]Error:[/red] the chat UI needs a terminal; use --pipe for non-interactive use")
        raise typer.Exit(code=1)

    controller = SessionController(config, create_client(config))
    try:
        asyncio.run(run_tui(controller, initial_message=message))
    except KeyboardInterrupt:
        raise typer.Exit(code=130)
    logger.info("=== AGNT terminated ===")


@app.command()
def version():
    """Show AGNT version."""
    console.print(f"AGNT version [bold cyan]{__version__}[/bold cyan]")


def main():
    """Console script entry point."""
    app()


if __name__ == "__main__":
    main()
