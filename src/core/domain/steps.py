"""Definiciones estáticas de pasos del workflow.

Por qué dataclasses y no Pydantic:
- Una definición de paso lleva callables (predicados de visibilidad, reglas,
  resolvers), que no se serializan: es configuración de código, de solo lectura.
- Lo que sí se persiste (valores, selección) vive en `WorkflowState`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Sequence

from core.domain.models import (
    Component,
    Discount,
    OperationParams,
    ResponseEnvelope,
    Selection,
    ValidationResult,
)

DONE = "__done__"

FieldRule = Callable[[Any], ValidationResult]


@dataclass(frozen=True)
class WorkflowSnapshot:
    """Vista de solo lectura entregada a predicados, reglas y resolvers."""

    selection: Selection
    field_values: Mapping[str, Mapping[str, Any]]

    @classmethod
    def of(cls, selection: Selection, field_values: Mapping[str, Mapping[str, Any]]) -> WorkflowSnapshot:
        frozen = {k: MappingProxyType(dict(v)) for k, v in field_values.items()}
        return cls(selection=selection, field_values=MappingProxyType(frozen))

    def value(self, step_id: str, field_id: str, default: Any = None) -> Any:
        return self.field_values.get(step_id, {}).get(field_id, default)


@dataclass(frozen=True)
class RemoteCheck:
    """Regla validada por el servidor (p.ej. unicidad)."""

    operation: str
    params: Callable[[Any], OperationParams | Mapping[str, Any]]
    evaluate: Callable[[ResponseEnvelope], ValidationResult]


@dataclass(frozen=True)
class FieldDefinition:
    id: str
    required: bool = False
    rules: Sequence[FieldRule] = ()
    visible_when: Callable[[WorkflowSnapshot], bool] | None = None
    remote_check: RemoteCheck | None = None
    # Convierte el valor del campo en líneas del plan / descuentos.
    components: Callable[[Any], Sequence[Component | Discount]] | None = None

    def is_visible(self, snapshot: WorkflowSnapshot) -> bool:
        return self.visible_when is None or bool(self.visible_when(snapshot))


def next_by_ordinal(snapshot: WorkflowSnapshot) -> str | None:
    """Resolver por defecto: el motor elige el siguiente paso por ordinal."""

    return None


@dataclass(frozen=True)
class StepDefinition:
    id: str
    ordinal: int
    fields: Sequence[FieldDefinition] = ()
    # Devuelve el id del siguiente paso, `DONE`, o None para "siguiente por ordinal".
    next_step: Callable[[WorkflowSnapshot], str | None] = next_by_ordinal
    title: str | None = None
    _index: Mapping[str, FieldDefinition] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_index", {f.id: f for f in self.fields})

    @property
    def required_fields(self) -> tuple[str, ...]:
        return tuple(f.id for f in self.fields if f.required)

    def get_field(self, field_id: str) -> FieldDefinition | None:
        return self._index.get(field_id)

    def visible_fields(self, snapshot: WorkflowSnapshot) -> list[FieldDefinition]:
        return [f for f in self.fields if f.is_visible(snapshot)]
