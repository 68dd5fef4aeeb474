"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from adapters.endpoint_registry import EndpointRegistry
from adapters.http_client import build_async_client
from adapters.request_executor import RequestExecutor
from core.config import AppSettings, write_user_env_vars
from core.domain.errors import ServiceError

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()


async def _check_backend(settings: AppSettings) -> tuple[bool, str]:
    descriptor = EndpointRegistry(settings.backend_base_url).resolve("health")
    # Sin reintentos: el doctor debe responder rápido.
    quick = settings.model_copy(update={"http_max_retries": 0})
    async with build_async_client(quick) as client:
        try:
            envelope = await RequestExecutor(client, quick).execute(descriptor)
        except ServiceError as exc:
            return False, f"{exc.envelope.kind.value}: {exc}"
    return True, f"HTTP {envelope.status}"


@app.command()
def run() -> None:
    """Run baseline diagnostics and show recommended fixes."""

    settings = AppSettings()

    table = Table(title="plancraft doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    table.add_row("Backend base_url", "OK", settings.backend_base_url)
    table.add_row(
        "Retry policy",
        "OK",
        f"{settings.http_max_retries} retries, backoff {settings.http_backoff_base_seconds}s "
        f"(max {settings.http_backoff_max_seconds}s), timeout {settings.http_timeout_seconds}s",
    )
    table.add_row("Currency", "OK", f"{settings.currency} ({settings.currency_minor_units} minor units)")
    table.add_row("Session store", "OK", str(settings.resolved_state_dir()))

    ok_http, detail_http = asyncio.run(_check_backend(settings))
    table.add_row("Backend health", "OK" if ok_http else "FAIL", detail_http)

    _console.print(table)

    if not ok_http:
        _console.print(
            "\n[yellow]Note:[/yellow] Set PLANCRAFT_BACKEND_BASE_URL or run `plancraft doctor setup-backend`."
        )
        raise typer.Exit(code=1)


@app.command(name="setup-backend")
def setup_backend() -> None:
    """Interactive backend setup (stores config in the user config .env)."""

    settings = AppSettings()
    base_url = typer.prompt(
        "Backend base URL",
        default=settings.backend_base_url,
        show_default=True,
    ).strip()
    currency = typer.prompt("Currency", default=settings.currency, show_default=True).strip().upper()

    if not base_url.startswith(("http://", "https://")):
        raise typer.BadParameter("base URL must start with http:// or https://")

    env_path = write_user_env_vars(
        {
            "PLANCRAFT_BACKEND_BASE_URL": base_url.rstrip("/"),
            "PLANCRAFT_CURRENCY": currency,
        }
    )

    _console.print(f"[green]Saved backend config to:[/green] {env_path}")
