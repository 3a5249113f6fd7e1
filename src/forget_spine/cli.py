"""
CLI: ``forget-spine``: run the server and administer distributions.

    forget-spine serve                  start the HTTP API
    forget-spine rate set orders 0.9    out-of-band _R override
    forget-spine rate clear orders      drop the override
    forget-spine show orders            decayed snapshot, read-only
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from forget_spine.core.errors import ForgetError
from forget_spine.core.settings import Settings, get_settings
from forget_spine.decay import unix_now
from forget_spine.service import DistributionService
from forget_spine.store import create_store, fill

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="forget-spine",
    help="forget-spine: decaying frequency distributions backed by Redis.",
    no_args_is_help=True,
)
rate_app = typer.Typer(no_args_is_help=True)
app.add_typer(rate_app, name="rate", help="Per-distribution decay rate overrides.")


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except ForgetError as exc:
        err_console.print(f"[red]{exc.__class__.__name__}: {exc.message}[/red]")
        raise typer.Exit(code=1) from exc


async def _with_service(settings: Settings, action) -> None:
    store = create_store(settings)
    try:
        service = DistributionService.from_settings(store, None, settings)
        await action(service)
    finally:
        await store.close()


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
) -> None:
    """Start the forget-spine HTTP API."""
    import uvicorn

    settings = get_settings()
    host = host or settings.host
    port = port or settings.port
    console.print(f"[bold green]Starting forget-spine[/bold green] on {host}:{port}")
    uvicorn.run(
        "forget_spine.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@rate_app.command("set")
def rate_set(
    distribution: str = typer.Argument(..., help="Distribution name"),
    rate: float = typer.Argument(..., help="Retention per decay step, in (0, 1]"),
) -> None:
    """Set the stored decay rate of a distribution."""

    async def action(service: DistributionService) -> None:
        await service.set_rate(distribution, rate)

    _run(_with_service(get_settings(), action))
    console.print(f"[green]✓[/green] {distribution}: rate = {rate}")


@rate_app.command("clear")
def rate_clear(distribution: str = typer.Argument(..., help="Distribution name")) -> None:
    """Remove the stored decay rate; the default applies again."""

    async def action(service: DistributionService) -> None:
        await service.set_rate(distribution, None)

    _run(_with_service(get_settings(), action))
    console.print(f"[green]✓[/green] {distribution}: rate override cleared")


@app.command("show")
def show(distribution: str = typer.Argument(..., help="Distribution name")) -> None:
    """Print the decayed snapshot of a distribution without persisting it."""
    settings = get_settings()

    async def action(service: DistributionService) -> None:
        dist = await fill(service.store, distribution, default_rate=settings.default_rate)
        dist.decay(unix_now(), interval=settings.decay_interval)

        table = Table(title=f"{dist.name}  (Z={dist.total}, rate={dist.rate})")
        table.add_column("field")
        table.add_column("count", justify="right")
        table.add_column("probability", justify="right")
        for label, count in sorted(dist.data.items(), key=lambda kv: -kv[1]):
            table.add_row(label, str(count), f"{dist.probability(label):.4f}")
        console.print(table)

    _run(_with_service(settings, action))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
