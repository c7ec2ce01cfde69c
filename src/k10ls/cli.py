"""k10ls CLI - Command line interface."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import click
import structlog
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from k10ls import __version__
from k10ls.core.config import (
    DEFAULT_CONFIG_PATH,
    ForwardConfig,
    ForwardSettings,
    effective_address,
    effective_namespace,
    get_settings,
    load_config,
)
from k10ls.core.exceptions import ConfigError

console = Console()

_shutdown_requested = False

# Third-party loggers that are chatty about every forwarded connection.
NOISY_LOGGERS = ("kr8s", "httpx", "httpcore", "websockets", "asyncio")


@click.command()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(dir_okay=False),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Path to YAML or TOML config file",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Log level (default: info, or K10LS_LOG_LEVEL)",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output (same as --log-level debug)")
@click.option(
    "--retry-delay",
    type=click.FloatRange(min=0.0, min_open=True),
    default=None,
    help="Seconds to wait before reconnecting a failed tunnel (default: 2)",
)
@click.option(
    "--metrics-port",
    type=click.IntRange(1, 65535),
    default=None,
    help="Serve Prometheus metrics on this port",
)
@click.version_option(__version__, prog_name="k10ls")
def main(
    config_file: str,
    log_level: str | None,
    verbose: bool,
    retry_delay: float | None,
    metrics_port: int | None,
):
    """k10ls - Keep Kubernetes port-forwards alive.

    Forwards every pod, service and label selector declared in the config
    file, reconnecting forever when a tunnel drops.

    Examples:

        k10ls

        k10ls --config ~/forwards.yaml --log-level debug

        K10LS_RETRY_DELAY=5 k10ls -c config.toml
    """
    try:
        config = load_config(config_file)
        settings = _effective_settings(get_settings(), log_level, verbose, retry_delay, metrics_port)
    except ConfigError as e:
        console.print(f"[red]Failed to load config: {e.message}[/red]")
        sys.exit(1)
    except ValidationError as e:
        console.print(f"[red]Invalid K10LS_* environment settings: {e}[/red]")
        sys.exit(1)

    _configure_logging(settings.log_level)
    _print_summary(config, config_file)

    if settings.metrics_port:
        from k10ls.observability.metrics import start_metrics_server

        start_metrics_server(settings.metrics_port)
        console.print(f"Metrics: http://0.0.0.0:{settings.metrics_port}/metrics", style="dim")

    _run_with_signal_handling(config, settings)


def _effective_settings(
    settings: ForwardSettings,
    log_level: str | None,
    verbose: bool,
    retry_delay: float | None,
    metrics_port: int | None,
) -> ForwardSettings:
    """Apply CLI flags on top of environment settings."""
    overrides: dict[str, object] = {}
    if verbose:
        overrides["log_level"] = "debug"
    elif log_level:
        overrides["log_level"] = log_level.lower()
    if retry_delay is not None:
        overrides["retry_delay"] = retry_delay
    if metrics_port is not None:
        overrides["metrics_port"] = metrics_port
    return settings.model_copy(update=overrides)


def _configure_logging(log_level: str) -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )

    noisy_level = logging.DEBUG if level == logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def _print_summary(config: ForwardConfig, config_file: str) -> None:
    console.print(f"[bold cyan]k10ls[/bold cyan] {__version__}  [dim]{config_file}[/dim]")

    table = Table(title=f"{config.target_count} targets")
    table.add_column("Context", style="cyan")
    table.add_column("Target", style="bold")
    table.add_column("Namespace", style="dim")
    table.add_column("Address")
    table.add_column("Ports", style="green")

    for context in config.contexts:
        for target in context.targets:
            table.add_row(
                context.name,
                target.identity,
                effective_namespace(target, context),
                effective_address(target, context, config.default_address),
                " ".join(str(mapping) for mapping in target.ports),
            )

    console.print(table)
    console.print("\nPress Ctrl+C to stop.\n", style="dim")


def _run_with_signal_handling(config: ForwardConfig, settings: ForwardSettings) -> None:
    """Run all sessions with proper signal handling for clean Ctrl+C shutdown."""
    from k10ls.client.dispatcher import Dispatcher

    global _shutdown_requested
    _shutdown_requested = False

    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    dispatcher = Dispatcher(config, settings)
    main_task = loop.create_task(dispatcher.run())

    def signal_handler(sig: int, frame: object) -> None:
        """Handle Ctrl+C / SIGTERM."""
        global _shutdown_requested
        if _shutdown_requested:
            console.print("\n[red]Force shutdown![/red]")
            sys.exit(1)
        _shutdown_requested = True
        console.print("\n[yellow]Shutting down gracefully...[/yellow]")
        loop.call_soon_threadsafe(dispatcher.stop)

    signal.signal(signal.SIGINT, signal_handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, signal_handler)

    try:
        loop.run_until_complete(main_task)
    except asyncio.CancelledError:
        pass
    except KeyboardInterrupt:
        pass
    finally:
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()

    console.print("[green]All tunnels closed.[/green]")


if __name__ == "__main__":
    main()
