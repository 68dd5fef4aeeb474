"""Workflow concreto: plan de suscripción.

Pasos (por ordinal):
1. account    -> nombre (único en el backend), email, tipo; VAT solo para empresas.
2. base_plan  -> tier del plan (componente recurrente). El tier `starter` salta add_ons.
3. add_ons    -> asientos extra y paquete de soporte.
4. setup      -> onboarding (cargo único) y horas de migración si hay onboarding.
5. promotions -> código promocional; sin campos visibles para `starter` (se salta solo).
6. review     -> aceptación de términos.

El catálogo y las promociones son estáticos aquí; el precio autoritativo del
backend se obtiene con la operación `plan_quote`.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Mapping

import httpx

from adapters.data_transformer import DataTransformer
from adapters.endpoint_registry import EndpointRegistry
from adapters.http_client import build_async_client
from adapters.request_executor import ExecutorHooks, RequestExecutor
from core.config import AppSettings
from core.domain.models import (
    Component,
    ComponentKind,
    Discount,
    DiscountKind,
    ResponseEnvelope,
    ValidationResult,
)
from core.domain.steps import FieldDefinition, RemoteCheck, StepDefinition, WorkflowSnapshot
from core.interfaces.store import KeyValueStore
from core.services.pricing_calculator import PricingCalculator
from core.services.validation_engine import (
    is_true,
    matches,
    max_length,
    max_value,
    min_length,
    min_value,
    one_of,
)
from core.services.workflow_engine import WorkflowEngine

EMAIL_PATTERN = r"[^@\s]+@[^@\s]+\.[A-Za-z]{2,}"
VAT_PATTERN = r"[A-Z]{2}[A-Z0-9]{2,12}"

PLAN_TIERS: Mapping[str, Decimal] = {
    "starter": Decimal("19.00"),
    "growth": Decimal("49.00"),
    "scale": Decimal("149.00"),
}
SEAT_PRICE = Decimal("8.00")
SUPPORT_PACKAGES: Mapping[str, Decimal] = {
    "none": Decimal("0.00"),
    "standard": Decimal("25.00"),
    "priority": Decimal("99.00"),
}
ONBOARDING_FEE = Decimal("250.00")
MIGRATION_HOURLY_RATE = Decimal("120.00")

PROMOTIONS: Mapping[str, Discount] = {
    "WELCOME10": Discount(
        id="welcome10",
        applies_to=ComponentKind.RECURRING,
        kind=DiscountKind.PERCENTAGE,
        value=Decimal("10"),
    ),
    "SETUP50": Discount(
        id="setup50",
        applies_to=ComponentKind.ONE_TIME,
        kind=DiscountKind.FLAT,
        value=Decimal("50.00"),
    ),
}


def _normalize_code(value: Any) -> str:
    return str(value).strip().upper()


def _tier(snapshot: WorkflowSnapshot) -> str | None:
    return snapshot.value("base_plan", "tier")


# ---------------------------------------------------------------------------
# Componentes derivados de campos
# ---------------------------------------------------------------------------


def _tier_components(value: Any) -> list[Component]:
    return [
        Component(
            id=f"plan-{value}",
            kind=ComponentKind.RECURRING,
            unit_price=PLAN_TIERS[value],
            proration_eligible=True,
            label=f"{str(value).title()} plan",
        )
    ]


def _seat_components(value: Any) -> list[Component]:
    seats = int(value)
    if seats == 0:
        return []
    return [
        Component(
            id="extra-seats",
            kind=ComponentKind.RECURRING,
            unit_price=SEAT_PRICE,
            quantity=seats,
            proration_eligible=True,
            label="Extra seats",
        )
    ]


def _support_components(value: Any) -> list[Component]:
    if value == "none":
        return []
    return [
        Component(
            id=f"support-{value}",
            kind=ComponentKind.RECURRING,
            unit_price=SUPPORT_PACKAGES[value],
            label=f"{str(value).title()} support",
        )
    ]


def _onboarding_components(value: Any) -> list[Component]:
    if value is not True:
        return []
    return [
        Component(
            id="onboarding",
            kind=ComponentKind.ONE_TIME,
            unit_price=ONBOARDING_FEE,
            label="Guided onboarding",
        )
    ]


def _migration_components(value: Any) -> list[Component]:
    return [
        Component(
            id="data-migration",
            kind=ComponentKind.ONE_TIME,
            unit_price=MIGRATION_HOURLY_RATE,
            quantity=int(value),
            label="Data migration (hours)",
        )
    ]


def _promo_discounts(value: Any) -> list[Discount]:
    return [PROMOTIONS[_normalize_code(value)]]


def _known_promo(value: Any) -> ValidationResult:
    if _normalize_code(value) not in PROMOTIONS:
        return ValidationResult.invalid("unknown_promo", "This promotion code is not valid.")
    return ValidationResult.ok()


def _integer(value: Any) -> ValidationResult:
    if isinstance(value, bool) or not isinstance(value, int):
        return ValidationResult.invalid("not_an_integer", "Must be a whole number.")
    return ValidationResult.ok()


# ---------------------------------------------------------------------------
# Comprobación remota: nombre de cuenta disponible
# ---------------------------------------------------------------------------


def _availability_params(value: Any) -> dict[str, Any]:
    return {"filters": {"name": str(value).strip()}}


def _availability_result(envelope: ResponseEnvelope) -> ValidationResult:
    data = envelope.data if isinstance(envelope.data, Mapping) else {}
    if data.get("available") is True:
        return ValidationResult.ok()
    suggestion = data.get("suggestion")
    message = "This account name is already taken."
    if suggestion:
        message += f" Try {suggestion!r}."
    return ValidationResult.invalid("name_taken", message)


# ---------------------------------------------------------------------------
# Definición de pasos
# ---------------------------------------------------------------------------


def _after_base_plan(snapshot: WorkflowSnapshot) -> str | None:
    if _tier(snapshot) == "starter":
        return "setup"
    return None


PLAN_STEPS: tuple[StepDefinition, ...] = (
    StepDefinition(
        id="account",
        ordinal=1,
        title="Account",
        fields=(
            FieldDefinition(
                id="account_name",
                required=True,
                rules=(min_length(3), max_length(80)),
                remote_check=RemoteCheck(
                    operation="account_name_availability",
                    params=_availability_params,
                    evaluate=_availability_result,
                ),
            ),
            FieldDefinition(
                id="contact_email",
                required=True,
                rules=(matches(EMAIL_PATTERN, reason_code="invalid_email", message="Enter a valid email address."),),
            ),
            FieldDefinition(id="account_type", required=True, rules=(one_of(("business", "personal")),)),
            FieldDefinition(
                id="vat_id",
                required=True,
                rules=(matches(VAT_PATTERN, reason_code="invalid_vat", message="Enter a valid VAT number."),),
                visible_when=lambda s: s.value("account", "account_type") == "business",
            ),
        ),
    ),
    StepDefinition(
        id="base_plan",
        ordinal=2,
        title="Plan",
        fields=(
            FieldDefinition(
                id="tier",
                required=True,
                rules=(one_of(tuple(PLAN_TIERS)),),
                components=_tier_components,
            ),
        ),
        next_step=_after_base_plan,
    ),
    StepDefinition(
        id="add_ons",
        ordinal=3,
        title="Add-ons",
        fields=(
            FieldDefinition(
                id="extra_seats",
                rules=(_integer, min_value(0), max_value(500)),
                components=_seat_components,
            ),
            FieldDefinition(
                id="support",
                rules=(one_of(tuple(SUPPORT_PACKAGES)),),
                components=_support_components,
            ),
        ),
    ),
    StepDefinition(
        id="setup",
        ordinal=4,
        title="Setup",
        fields=(
            FieldDefinition(id="onboarding", components=_onboarding_components),
            FieldDefinition(
                id="migration_hours",
                rules=(_integer, min_value(1), max_value(200)),
                visible_when=lambda s: s.value("setup", "onboarding") is True,
                components=_migration_components,
            ),
        ),
    ),
    StepDefinition(
        id="promotions",
        ordinal=5,
        title="Promotions",
        fields=(
            FieldDefinition(
                id="promo_code",
                rules=(_known_promo,),
                visible_when=lambda s: _tier(s) not in (None, "starter"),
                components=_promo_discounts,
            ),
        ),
    ),
    StepDefinition(
        id="review",
        ordinal=6,
        title="Review",
        fields=(FieldDefinition(id="accept_terms", required=True, rules=(is_true(),)),),
    ),
)


def plan_payload_builder(currency: str) -> Callable[[WorkflowSnapshot], dict[str, Any]]:
    """Construye el plan canónico (forma `plan` del DataTransformer)."""

    def build(snapshot: WorkflowSnapshot) -> dict[str, Any]:
        account_type = snapshot.value("account", "account_type")
        payload: dict[str, Any] = {
            "account_name": str(snapshot.value("account", "account_name", "")).strip(),
            "contact_email": str(snapshot.value("account", "contact_email", "")).strip(),
            "account_type": account_type,
            "currency": currency,
            "components": [
                c.model_dump(
                    mode="python",
                    include={"id", "kind", "unit_price", "quantity", "proration_eligible", "label"},
                )
                for c in snapshot.selection.components
            ],
        }
        if account_type == "business":
            payload["vat_id"] = snapshot.value("account", "vat_id")
        promo = snapshot.value("promotions", "promo_code")
        if promo and _tier(snapshot) not in (None, "starter"):
            payload["promo_code"] = _normalize_code(promo)
        return payload

    return build


def build_plan_engine(
    *,
    store: KeyValueStore,
    session_id: str,
    settings: AppSettings | None = None,
    client: httpx.AsyncClient | None = None,
    auth: Callable[[], str | None] | None = None,
    hooks: ExecutorHooks | None = None,
) -> WorkflowEngine:
    """Arma el motor del plan con registro, ejecutor y transformer por defecto.

    Reanuda la sesión si el store ya tiene estado para `session_id`.
    """

    settings = settings or AppSettings()
    client = client or build_async_client(settings)
    return WorkflowEngine.restore(
        PLAN_STEPS,
        store=store,
        session_id=session_id,
        pricing=PricingCalculator(settings),
        registry=EndpointRegistry(settings.backend_base_url),
        executor=RequestExecutor(client, settings, hooks=hooks),
        transformer=DataTransformer(),
        auth=auth,
        payload_builder=plan_payload_builder(settings.currency),
    )
