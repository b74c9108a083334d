"""CLI commands for autoservice."""

import asyncio
import sys
from collections.abc import Awaitable, Callable, Sequence

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from autoservice import __logo__, __version__
from autoservice.config.loader import ConfigError, load_config
from autoservice.config.schema import Config
from autoservice.daemon.base import ServiceStatus
from autoservice.daemon.manager import ServiceManager
from autoservice.errors import ServiceError
from autoservice.runtime.runner import EXIT_FAILURE, AutoServiceRunner
from autoservice.worker import heartbeat_worker

app = typer.Typer(
    name="autoservice",
    help=f"{__logo__} autoservice - run this program as an OS service",
)

console = Console()
err_console = Console(stderr=True)

COMMANDS = ("install", "remove", "uninstall", "start", "stop", "pause", "resume", "status", "auto")
APP_FLAGS = ("--verbose", "--version", "-v", "--help")
AUTO_FLAGS = ("--supervised",)
NAME_PREFIX = "name="


# ---------------------------------------------------------------------------
# Argument normalization
# ---------------------------------------------------------------------------


def normalize_argv(argv: Sequence[str]) -> list[str]:
    """Turn the free-form command line into one typer understands.

    ``name=<n>`` may appear anywhere, the first known command word is the
    command (``auto`` when there is none), and every other token is a worker
    argument passed after ``--``.
    """
    command: str | None = None
    name: str | None = None
    app_flags: list[str] = []
    command_flags: list[str] = []
    worker_args: list[str] = []

    tokens = list(argv)
    while tokens:
        token = tokens.pop(0)
        if token == "--":
            worker_args.extend(tokens)
            break
        if token.startswith(NAME_PREFIX) and len(token) > len(NAME_PREFIX):
            name = token[len(NAME_PREFIX):]
        elif command is None and token.lower() in COMMANDS:
            command = token.lower()
        elif token in APP_FLAGS:
            app_flags.append(token)
        elif token in AUTO_FLAGS and command in (None, "auto"):
            command_flags.append(token)
        else:
            worker_args.append(token)

    command = command or "auto"
    if command not in ("install", "auto") and worker_args:
        # Control commands take no worker arguments.
        worker_args = []

    normalized = [*app_flags, command]
    if name:
        normalized += ["--name", name]
    normalized += command_flags
    if worker_args:
        normalized += ["--", *worker_args]
    return normalized


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} autoservice v{__version__}")
        raise typer.Exit()


def _setup_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")
    logger.enable("autoservice")


def _fail(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {escape(message)}")
    raise typer.Exit(EXIT_FAILURE)


def _config(ctx: typer.Context) -> Config:
    return ctx.obj["config"]


def _service_name(ctx: typer.Context, name: str | None) -> str:
    return name or _config(ctx).service.name


def _get_manager(config: Config) -> ServiceManager:
    return ServiceManager(env_passthrough=config.daemon.env_passthrough)


def _run_service_action(
    ctx: typer.Context,
    action: Callable[[ServiceManager], Awaitable[None]],
    success_msg: str,
) -> None:
    """Run a service manager action with standard error handling."""
    try:
        manager = _get_manager(_config(ctx))
        asyncio.run(action(manager))
    except ServiceError as e:
        _fail(str(e))
    console.print(f"[green]✓[/green] {success_msg}")


NameOption = typer.Option(None, "--name", "-n", help="Service name (default from config)")
WorkerArgs = typer.Argument(None, help="Arguments passed to the worker")


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
):
    """autoservice - install, control and run a program as an OS service."""
    _setup_logging(verbose)
    try:
        config = load_config()
    except ConfigError as e:
        _fail(str(e))
    ctx.obj = {"config": config, "verbose": verbose}


# ============================================================================
# Service control
# ============================================================================


@app.command()
def install(
    ctx: typer.Context,
    name: str | None = NameOption,
    args: list[str] | None = WorkerArgs,
):
    """Install this program as an OS service."""
    config = _config(ctx)
    service_name = _service_name(ctx, name)
    worker_args = list(args or config.service.arguments)

    async def action(manager: ServiceManager) -> None:
        spec = await manager.install_current_application(
            service_name,
            description=config.service.description,
            arguments=[f"{NAME_PREFIX}{service_name}", *worker_args],
            environment=config.service.environment,
            auto_start=config.service.auto_start,
        )
        logger.debug(f"Installed {spec.executable_path} {' '.join(spec.arguments)}")

    _run_service_action(ctx, action, f"Service '{service_name}' installed")
    if not config.service.auto_start:
        console.print(f"Start with: [cyan]autoservice start name={service_name}[/cyan]")


@app.command()
def remove(ctx: typer.Context, name: str | None = NameOption):
    """Stop and remove the OS service."""
    service_name = _service_name(ctx, name)
    _run_service_action(ctx, lambda m: m.remove(service_name), f"Service '{service_name}' removed")


@app.command()
def uninstall(ctx: typer.Context, name: str | None = NameOption):
    """Alias for remove."""
    remove(ctx, name)


@app.command()
def start(ctx: typer.Context, name: str | None = NameOption):
    """Start the service via the OS service manager."""
    service_name = _service_name(ctx, name)
    _run_service_action(ctx, lambda m: m.start(service_name), f"Service '{service_name}' started")


@app.command()
def stop(ctx: typer.Context, name: str | None = NameOption):
    """Stop the service."""
    service_name = _service_name(ctx, name)
    _run_service_action(ctx, lambda m: m.stop(service_name), f"Service '{service_name}' stopped")


@app.command()
def pause(ctx: typer.Context, name: str | None = NameOption):
    """Pause the service (Windows only)."""
    service_name = _service_name(ctx, name)
    _run_service_action(ctx, lambda m: m.pause(service_name), f"Service '{service_name}' paused")


@app.command()
def resume(ctx: typer.Context, name: str | None = NameOption):
    """Resume a paused service (Windows only)."""
    service_name = _service_name(ctx, name)
    _run_service_action(ctx, lambda m: m.resume(service_name), f"Service '{service_name}' resumed")


@app.command()
def status(ctx: typer.Context, name: str | None = NameOption):
    """Show service status."""
    service_name = _service_name(ctx, name)
    try:
        manager = _get_manager(_config(ctx))
    except ServiceError as e:
        _fail(str(e))

    info = asyncio.run(manager.get_info(service_name))

    table = Table(title="Service Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    color = {ServiceStatus.RUNNING: "green", ServiceStatus.ERROR: "red"}.get(info.status, "dim")
    table.add_row("Service", info.name)
    table.add_row("Backend", manager.backend.name)
    table.add_row("Status", f"[{color}]{info.status.value}[/{color}]")
    table.add_row("Installed", "[green]yes[/green]" if info.installed else "[red]no[/red]")
    table.add_row("PID", str(info.pid) if info.pid else "-")
    table.add_row("Service file", str(info.service_file) if info.service_file else "-")

    console.print(table)


# ============================================================================
# Auto mode
# ============================================================================


@app.command()
def auto(
    ctx: typer.Context,
    name: str | None = NameOption,
    supervised: bool = typer.Option(False, "--supervised", help="Skip detection and run as a service"),
    args: list[str] | None = WorkerArgs,
):
    """Install on first elevated run, otherwise run the worker."""
    config = _config(ctx)
    service_name = _service_name(ctx, name)
    worker_args = list(args or config.service.arguments)

    runner = AutoServiceRunner(
        service_name,
        heartbeat_worker(config.host.heartbeat_interval),
        description=config.service.description,
        args=worker_args,
        environment=config.service.environment,
        service_arguments=[f"{NAME_PREFIX}{service_name}", *worker_args],
        env_passthrough=config.daemon.env_passthrough,
        force_supervised=supervised,
        shutdown_timeout=config.host.shutdown_timeout,
        console=console,
    )
    exit_code = asyncio.run(runner.run())
    if exit_code:
        raise typer.Exit(exit_code)


def main(argv: Sequence[str] | None = None) -> None:
    """Console script entry point."""
    argv = sys.argv[1:] if argv is None else argv
    app(args=normalize_argv(argv), prog_name="autoservice")


if __name__ == "__main__":
    main()
