"""Componentes de UI para CLI (Rich).

Por qué separar componentes:
- Evita mezclar lógica de comandos con detalles visuales.
- Permite reutilizar tablas/paneles en múltiples comandos.
"""

from __future__ import annotations

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from adapters.endpoint_registry import EndpointRegistry
from core.domain.models import COMPLETED, NOT_STARTED, PriceSummary, WorkflowState


def print_banner(console: Console) -> None:
    title = Text("plancraft", style="bold cyan")
    subtitle = Text("Subscription plans • Validation • Pricing", style="dim")
    body = Align.center(Text.assemble(title, "\n", subtitle), vertical="middle")
    console.print(Panel(body, border_style="cyan", padding=(1, 4)))


def build_operations_table(registry: EndpointRegistry) -> Table:
    """Tabla del registro de endpoints (operación -> ruta)."""

    table = Table(title="Backend operations")
    table.add_column("Operation", style="cyan", no_wrap=True)
    table.add_column("Method", style="white")
    table.add_column("Route", style="magenta")
    table.add_column("Public", style="green")
    table.add_column("Defaults", style="dim")
    for name, spec in registry.operations():
        defaults = ", ".join(f"{k}={v}" for k, v in spec.defaults.items())
        table.add_row(name, spec.method.value, spec.route, "yes" if spec.public else "", defaults)
    return table


def build_price_panel(summary: PriceSummary) -> Panel:
    """Panel con el `PriceSummary`."""

    body = Text()
    body.append(f"Recurring: {summary.recurring_total} {summary.currency}", style="bold")
    if summary.recurring_total != summary.recurring_subtotal:
        body.append(f"  (subtotal {summary.recurring_subtotal})", style="dim")
    body.append(f"\nOne-time:  {summary.one_time_total} {summary.currency}", style="bold")
    if summary.one_time_total != summary.one_time_subtotal:
        body.append(f"  (subtotal {summary.one_time_subtotal})", style="dim")
    if summary.discounts_applied:
        body.append("\n\nDiscounts:\n", style="bold")
        for d in summary.discounts_applied:
            body.append(f"- {d.discount_id} ({d.kind.value}, {d.applies_to.value}): -{d.amount}\n")
    body.append(f"\nComputed at {summary.computed_at.isoformat()}", style="dim")
    return Panel(body, title=Text("Price", style="bold yellow"), border_style="yellow")


def build_state_table(state: WorkflowState) -> Table:
    """Tabla con la posición y la selección de una sesión persistida."""

    step = state.current_step_id
    label = {NOT_STARTED: "not started", COMPLETED: "completed"}.get(step, step)
    table = Table(title=f"Session {state.session_id} • {label}")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Kind", style="white")
    table.add_column("Qty", justify="right")
    table.add_column("Unit price", justify="right", style="magenta")
    table.add_column("Step", style="dim")
    for c in state.selection.components:
        table.add_row(c.id, c.kind.value, str(c.quantity), str(c.unit_price), c.step_id or "")
    return table
