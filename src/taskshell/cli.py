"""CLI entry point for taskshell."""

from __future__ import annotations

import asyncio
import logging
import os
import sys

import typer

from taskshell import __version__
from taskshell.config import ShellConfig
from taskshell.errors import ConfigError, ShellError

app = typer.Typer(
    name="taskshell",
    help="Attach an interactive terminal to a running task.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    # Anything above WARNING would interleave with the remote shell's output
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def stdout_is_tty() -> bool:
    try:
        return os.isatty(sys.stdout.fileno())
    except (AttributeError, OSError, ValueError):
        return False


def describe_error(task_id: str, error: ShellError) -> str:
    """One-line diagnostic naming the task and the cause."""
    message = str(error)
    if task_id in message:
        return f"Error: {message}"
    return f"Error: task {task_id}: {message}"


@app.command()
def shell(
    task_id: str = typer.Argument(help="Id of the interactive task to attach to."),
    command: list[str] | None = typer.Argument(
        None,
        help="Command to run instead of the default shell (pass after --).",
    ),
    root_url: str | None = typer.Option(
        None,
        "--root-url",
        "-r",
        help="Deployment root URL (default: TASKCLUSTER_ROOT_URL).",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Connect to the shell of a running interactive task."""
    from taskshell.endpoint import EndpointResolver
    from taskshell.shell import ShellOrchestrator, make_dialer

    setup_logging(verbose)

    # Decided once; both raw mode and the remote pty follow it
    tty = stdout_is_tty()

    try:
        config = ShellConfig.load(config_file)
        if root_url:
            config.queue.root_url = root_url

        orchestrator = ShellOrchestrator(
            resolver=EndpointResolver(config),
            tty=tty,
            dial=make_dialer(config.session.open_timeout),
        )
        exit_code = asyncio.run(orchestrator.run(task_id, command or []))
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)
    except ShellError as e:
        typer.echo(describe_error(task_id, e), err=True)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        raise typer.Exit(130)

    if exit_code:
        raise typer.Exit(exit_code)


@app.command()
def version() -> None:
    """Print the taskshell version."""
    typer.echo(f"taskshell v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
