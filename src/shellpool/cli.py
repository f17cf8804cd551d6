"""CLI entry point for shellpool."""

from __future__ import annotations

import asyncio
import functools
import logging
import os

import typer

from shellpool.config import ShellPoolConfig
from shellpool.errors import CommandTimeoutError, ShellPoolError
from shellpool.pool import SessionPool, SessionRegistry
from shellpool.pty import spawn_terminal
from shellpool.sanitize import sanitize_user_input


app = typer.Typer(
    name="shellpool",
    help="Run commands in reusable shell sessions and stream their output.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build_pool(config: ShellPoolConfig) -> SessionPool:
    """Wire a registry and pool from config."""
    factory = functools.partial(
        spawn_terminal, command=config.shell.command, env=config.shell.env
    )
    registry = SessionRegistry(
        terminal_factory=factory, max_sessions=config.pool.max_sessions
    )
    return SessionPool(
        registry,
        command_timeout=config.pool.command_timeout,
        classifier=config.pool.classifier(),
    )


@app.command()
def run(
    commands: list[str] = typer.Argument(help="Commands to run, in order, in one session."),
    cwd: str = typer.Option(
        ".", "--cwd", "-C", help="Working directory the session starts in."
    ),
    timeout: float | None = typer.Option(
        None, "--timeout", "-t", help="Seconds to wait for each command (default: from config)."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Don't stream output lines."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run commands in a pooled shell session, streaming their output."""
    setup_logging(verbose)

    workdir = os.path.abspath(cwd)
    if not os.path.isdir(workdir):
        typer.echo(f"Error: Directory does not exist: {workdir}", err=True)
        raise typer.Exit(1)

    config = ShellPoolConfig.load(config_file)
    if timeout is not None:
        config.pool.command_timeout = timeout

    cleaned = [sanitize_user_input(c) for c in commands]
    cleaned = [c for c in cleaned if c]
    if not cleaned:
        typer.echo("Error: Nothing to run", err=True)
        raise typer.Exit(1)

    exit_code = asyncio.run(_run_commands(workdir, cleaned, config, quiet))
    raise typer.Exit(exit_code)


async def _run_commands(
    workdir: str, commands: list[str], config: ShellPoolConfig, quiet: bool
) -> int:
    pool = build_pool(config)
    try:
        for command in commands:
            try:
                session = await pool.acquire_session(workdir)
            except ShellPoolError as e:
                typer.echo(f"Error: {e}", err=True)
                return 1

            handle = pool.submit_command(session, command)
            if not quiet:
                handle.on("line", typer.echo)
            try:
                await handle
            except CommandTimeoutError as e:
                typer.echo(f"Error: {e}", err=True)
                return 1
            except ShellPoolError as e:
                typer.echo(f"Error in session {session.id}: {e}", err=True)
                return 1
        return 0
    finally:
        pool.dispose_all()
        await pool.registry.cleanup()


@app.command("config")
def show_config(
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Print the effective configuration as JSON."""
    config = ShellPoolConfig.load(config_file)
    typer.echo(config.model_dump_json(indent=2))


if __name__ == "__main__":
    app()
