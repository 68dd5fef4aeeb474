"""Modelos del dominio (Pydantic v2).

Por qué Pydantic en el dominio:
- Nos da validación estricta y documentación autocontenida (Field) sin acoplar
  el Core a librerías de I/O.
- El estado del workflow se persiste como JSON y debe volver idéntico
  (Decimal, orden de la selección, paso actual).

Nota:
- Estos modelos describen *qué* es la información, no *cómo* se obtiene.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from urllib.parse import urlencode

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

NOT_STARTED = "__not_started__"
COMPLETED = "__completed__"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"

    @property
    def idempotent(self) -> bool:
        return self is HttpMethod.GET


class ErrorKind(str, Enum):
    NETWORK = "network"
    UNAUTHENTICATED = "unauthenticated"
    BACKEND = "backend"
    UNPARSED = "unparsed_backend"
    SHAPE_MISMATCH = "shape_mismatch"


# ---------------------------------------------------------------------------
# Capa de backend (transitorio, una llamada)
# ---------------------------------------------------------------------------


class OperationParams(BaseModel):
    """Parámetros reconocidos por el registro de endpoints."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    id: str | None = Field(default=None, description="Identificador principal.")
    secondary_id: str | None = Field(
        default=None,
        alias="secondaryId",
        description="Identificador de un recurso anidado.",
    )
    limit: int | None = Field(default=None, ge=1, le=1000)
    sort: str | None = Field(default=None, min_length=1)
    filters: dict[str, str] = Field(default_factory=dict)


class RequestDescriptor(BaseModel):
    """Petición concreta producida por el registro; inmutable una vez construida."""

    model_config = ConfigDict(frozen=True)

    operation: str = Field(..., min_length=1)
    method: HttpMethod
    url: str = Field(..., min_length=1)
    query: tuple[tuple[str, str], ...] = Field(default_factory=tuple)
    body: Any = None
    public: bool = Field(
        default=False,
        description="True si la operación no requiere token.",
    )

    @property
    def slot(self) -> str:
        """Identidad de la llamada para la guarda de carreras (operación + parámetros)."""

        return f"{self.operation}:{self.method.value} {self.url}?{urlencode(self.query)}"


class ResponseEnvelope(BaseModel):
    status: int
    data: Any = Field(default=None, description="Forma canónica (DataTransformer).")
    raw: Any = Field(default=None, description="Forma del backend, retenida para diagnóstico.")
    operation: str | None = None
    slot: str | None = None
    sequence: int | None = None


class ErrorEnvelope(BaseModel):
    kind: ErrorKind
    message: str
    backend_detail: str | None = None
    status: int | None = None
    raw: Any = None


# ---------------------------------------------------------------------------
# Selección y precio
# ---------------------------------------------------------------------------


class ComponentKind(str, Enum):
    RECURRING = "recurring"
    ONE_TIME = "one_time"


class Component(BaseModel):
    """Línea del plan (cargo recurrente o único)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, max_length=128)
    kind: ComponentKind
    unit_price: Decimal = Field(..., ge=0)
    quantity: int = Field(default=1, ge=1)
    proration_eligible: bool = False
    label: str | None = None
    step_id: str | None = Field(default=None, description="Paso que creó el componente.")
    field_id: str | None = Field(default=None, description="Campo que creó el componente.")


class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"


class Discount(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    applies_to: ComponentKind
    kind: DiscountKind
    value: Decimal = Field(..., ge=0)
    step_id: str | None = None
    field_id: str | None = None


class Selection(BaseModel):
    """Conjunto ordenado de componentes elegidos en la sesión.

    Las operaciones devuelven una selección nueva; el motor es el único que
    reemplaza la selección vigente.
    """

    model_config = ConfigDict(frozen=True)

    components: tuple[Component, ...] = Field(default_factory=tuple)
    discounts: tuple[Discount, ...] = Field(default_factory=tuple)

    def get(self, component_id: str) -> Component | None:
        for component in self.components:
            if component.id == component_id:
                return component
        return None

    def with_component(self, component: Component) -> Selection:
        """Agrega o reemplaza (en su posición) un componente con el mismo id."""

        items = list(self.components)
        for i, existing in enumerate(items):
            if existing.id == component.id:
                items[i] = component
                break
        else:
            items.append(component)
        return self.model_copy(update={"components": tuple(items)})

    def without_component(self, component_id: str) -> Selection:
        items = tuple(c for c in self.components if c.id != component_id)
        return self.model_copy(update={"components": items})

    def with_discount(self, discount: Discount) -> Selection:
        items = [d for d in self.discounts if d.id != discount.id]
        items.append(discount)
        return self.model_copy(update={"discounts": tuple(items)})

    def without_owner(self, step_id: str, field_id: str | None = None) -> Selection:
        """Elimina componentes y descuentos creados por un paso (o uno de sus campos)."""

        def owned(item: Component | Discount) -> bool:
            if item.step_id != step_id:
                return False
            return field_id is None or item.field_id == field_id

        return self.model_copy(
            update={
                "components": tuple(c for c in self.components if not owned(c)),
                "discounts": tuple(d for d in self.discounts if not owned(d)),
            }
        )


class AppliedDiscount(BaseModel):
    discount_id: str
    applies_to: ComponentKind
    kind: DiscountKind
    amount: Decimal


class PriceSummary(BaseModel):
    """Totales derivados; siempre se recalculan desde la selección."""

    model_config = ConfigDict(frozen=True)

    recurring_subtotal: Decimal
    one_time_subtotal: Decimal
    recurring_total: Decimal
    one_time_total: Decimal
    discounts_applied: tuple[AppliedDiscount, ...] = Field(default_factory=tuple)
    currency: str = "USD"
    computed_at: datetime = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Validación y estado del workflow
# ---------------------------------------------------------------------------


class ValidationStatus(str, Enum):
    UNKNOWN = "unknown"
    VALID = "valid"
    INVALID = "invalid"
    PENDING = "pending"
    SKIPPED = "skipped"


class ValidationResult(BaseModel):
    """`valid` o `invalid(reason_code, message)`."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    reason_code: str | None = None
    message: str | None = None
    field_id: str | None = None

    @classmethod
    def ok(cls, field_id: str | None = None) -> ValidationResult:
        return cls(valid=True, field_id=field_id)

    @classmethod
    def invalid(
        cls,
        reason_code: str,
        message: str,
        *,
        field_id: str | None = None,
    ) -> ValidationResult:
        return cls(valid=False, reason_code=reason_code, message=message, field_id=field_id)

    def for_field(self, field_id: str) -> ValidationResult:
        return self.model_copy(update={"field_id": field_id})

    def raise_for_invalid(self) -> None:
        from core.domain.errors import ValidationError  # noqa: PLC0415

        if not self.valid:
            raise ValidationError(self)


class StepVisit(BaseModel):
    """Entrada de auditoría: un paso evaluado (entrado o saltado)."""

    step_id: str
    skipped: bool = False
    at: datetime = Field(default_factory=utc_now)


class PendingRequest(BaseModel):
    slot: str
    sequence: int


class WorkflowState(BaseModel):
    """Estado de la sesión de configuración; lo posee solo el WorkflowEngine."""

    session_id: str = Field(..., min_length=1)
    current_step_id: str = NOT_STARTED
    selection: Selection = Field(default_factory=Selection)
    per_step_validation: dict[str, ValidationStatus] = Field(default_factory=dict)
    pending_request: PendingRequest | None = None
    field_values: dict[str, dict[str, Any]] = Field(default_factory=dict)
    history: list[str] = Field(
        default_factory=list,
        description="Camino de pasos entrados por el usuario (para back()).",
    )
    step_log: list[StepVisit] = Field(default_factory=list)
    reference_data: dict[str, Any] = Field(default_factory=dict)
    revision: int = 0
