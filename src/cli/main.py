"""CLI principal (Typer).

Por qué una CLI sobre el Core:
- Permite inspeccionar el registro de endpoints, calcular precios y revisar
  sesiones persistidas sin levantar la capa de presentación.
- No contiene lógica de negocio: delega en `core` y `adapters`.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from adapters.endpoint_registry import EndpointRegistry
from adapters.state_store import JsonFileStateStore
from cli import doctor
from cli.ui_components import (
    build_operations_table,
    build_price_panel,
    build_state_table,
    print_banner,
)
from core.config import AppSettings
from core.domain.errors import MissingParameterError, UnknownOperationError
from core.domain.models import Selection, WorkflowState
from core.services.pricing_calculator import PricingCalculator

app = typer.Typer(no_args_is_help=True, help="Subscription plan configuration core.")
app.add_typer(doctor.app, name="doctor")

_console = Console()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
    banner: bool = typer.Option(False, "--banner", help="Show the banner."),
) -> None:
    settings = AppSettings()
    configure_logging("DEBUG" if verbose else settings.log_level)
    if banner:
        print_banner(_console)


@app.command()
def operations() -> None:
    """List the backend operations known to the endpoint registry."""

    settings = AppSettings()
    _console.print(build_operations_table(EndpointRegistry(settings.backend_base_url)))


def _parse_filters(values: list[str] | None) -> dict[str, str]:
    filters: dict[str, str] = {}
    for item in values or []:
        if "=" not in item:
            raise typer.BadParameter(f"filters must look like key=value, got {item!r}")
        key, value = item.split("=", 1)
        filters[key.strip()] = value.strip()
    return filters


@app.command()
def resolve(
    operation: str = typer.Argument(..., help="Logical operation, e.g. 'accounts'."),
    id: Optional[str] = typer.Option(None, "--id"),
    secondary_id: Optional[str] = typer.Option(None, "--secondary-id"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1),
    sort: Optional[str] = typer.Option(None, "--sort"),
    filter: Optional[List[str]] = typer.Option(None, "--filter", help="key=value (repeatable)."),
) -> None:
    """Print the request descriptor an operation resolves to (no I/O)."""

    settings = AppSettings()
    registry = EndpointRegistry(settings.backend_base_url)
    params = {
        "id": id,
        "secondary_id": secondary_id,
        "limit": limit,
        "sort": sort,
        "filters": _parse_filters(filter),
    }
    try:
        descriptor = registry.resolve(operation, params)
    except (UnknownOperationError, MissingParameterError) as exc:
        _console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc
    _console.print_json(descriptor.model_dump_json())


@app.command()
def price(
    selection_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Selection as JSON."),
    proration: Optional[str] = typer.Option(None, "--proration", help="Proration factor between 0 and 1."),
) -> None:
    """Compute the price summary of a selection."""

    settings = AppSettings()
    selection = Selection.model_validate_json(selection_file.read_text(encoding="utf-8"))
    factor: Decimal | None = None
    if proration is not None:
        try:
            factor = Decimal(proration)
        except InvalidOperation as exc:
            raise typer.BadParameter(f"invalid proration factor: {proration!r}") from exc
    try:
        summary = PricingCalculator(settings).compute_total(selection, proration_factor=factor)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    _console.print(build_price_panel(summary))


@app.command()
def session(session_id: str = typer.Argument(..., help="Session id.")) -> None:
    """Show a persisted workflow session."""

    settings = AppSettings()
    store = JsonFileStateStore(settings.resolved_state_dir())
    raw = store.get(session_id)
    if raw is None:
        _console.print(f"[yellow]No session {session_id!r} in {store.directory}[/yellow]")
        raise typer.Exit(code=1)
    state = WorkflowState.model_validate_json(raw)
    _console.print(build_state_table(state))
    _console.print(build_price_panel(PricingCalculator(settings).compute_total(state.selection)))


def run() -> None:
    app()
