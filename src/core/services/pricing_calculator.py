"""Cálculo de precio de la selección.

Algoritmo (orden fijo y documentado):
1. Particionar componentes en recurrentes y únicos; sumar `unit_price * quantity`
   (los recurrentes con prorrateo se escalan por `proration_factor` si se indica).
2. Por partición, aplicar primero los descuentos porcentuales (se suman entre sí,
   tope 100%) y después los descuentos fijos (se suman, el total no baja de 0).
3. Redondear a la unidad menor de la moneda con half-even, solo al final.

Como los porcentajes se suman y los fijos también, el orden de la lista de
descuentos dentro de una misma clase no cambia el resultado.

Nunca se memoiza: cada mutación de la selección recalcula desde cero.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Callable

from core.config import AppSettings
from core.domain.models import (
    AppliedDiscount,
    ComponentKind,
    Discount,
    DiscountKind,
    PriceSummary,
    Selection,
    utc_now,
)

_HUNDRED = Decimal(100)


def round_minor(value: Decimal, minor_units: int) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-minor_units), rounding=ROUND_HALF_EVEN)


def _subtotal(selection: Selection, kind: ComponentKind, proration_factor: Decimal | None) -> Decimal:
    total = Decimal(0)
    for component in selection.components:
        if component.kind is not kind:
            continue
        amount = component.unit_price * component.quantity
        if kind is ComponentKind.RECURRING and proration_factor is not None and component.proration_eligible:
            amount *= proration_factor
        total += amount
    return total


def _apply_discounts(
    subtotal: Decimal,
    discounts: list[Discount],
    minor_units: int,
) -> tuple[Decimal, list[AppliedDiscount]]:
    percentages = sorted((d for d in discounts if d.kind is DiscountKind.PERCENTAGE), key=lambda d: d.id)
    flats = sorted((d for d in discounts if d.kind is DiscountKind.FLAT), key=lambda d: d.id)
    applied: list[AppliedDiscount] = []

    rate = min(sum((d.value for d in percentages), Decimal(0)), _HUNDRED)
    remaining = subtotal - subtotal * rate / _HUNDRED
    headroom = subtotal
    for d in percentages:
        amount = min(subtotal * d.value / _HUNDRED, headroom)
        headroom -= amount
        applied.append(
            AppliedDiscount(
                discount_id=d.id,
                applies_to=d.applies_to,
                kind=d.kind,
                amount=round_minor(amount, minor_units),
            )
        )

    for d in flats:
        amount = min(d.value, remaining)
        remaining -= amount
        applied.append(
            AppliedDiscount(
                discount_id=d.id,
                applies_to=d.applies_to,
                kind=d.kind,
                amount=round_minor(amount, minor_units),
            )
        )
    return remaining, applied


class PricingCalculator:
    """Calculadora pura: misma selección (y mismo reloj) => mismo resumen."""

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        settings = settings or AppSettings()
        self._currency = settings.currency
        self._minor_units = settings.currency_minor_units
        self._clock = clock

    def compute_total(
        self,
        selection: Selection,
        *,
        proration_factor: Decimal | None = None,
    ) -> PriceSummary:
        if proration_factor is not None and not (Decimal(0) <= proration_factor <= Decimal(1)):
            raise ValueError(f"proration_factor must be within [0, 1], got {proration_factor}")

        totals: dict[ComponentKind, Decimal] = {}
        subtotals: dict[ComponentKind, Decimal] = {}
        applied: list[AppliedDiscount] = []
        for kind in (ComponentKind.RECURRING, ComponentKind.ONE_TIME):
            subtotal = _subtotal(selection, kind, proration_factor)
            discounts = [d for d in selection.discounts if d.applies_to is kind]
            total, kind_applied = _apply_discounts(subtotal, discounts, self._minor_units)
            subtotals[kind] = subtotal
            totals[kind] = total
            applied.extend(kind_applied)

        return PriceSummary(
            recurring_subtotal=round_minor(subtotals[ComponentKind.RECURRING], self._minor_units),
            one_time_subtotal=round_minor(subtotals[ComponentKind.ONE_TIME], self._minor_units),
            recurring_total=round_minor(totals[ComponentKind.RECURRING], self._minor_units),
            one_time_total=round_minor(totals[ComponentKind.ONE_TIME], self._minor_units),
            discounts_applied=tuple(applied),
            currency=self._currency,
            computed_at=self._clock(),
        )
