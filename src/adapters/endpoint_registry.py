"""Registro de endpoints (data-driven).

Idea:
- En vez de un `switch` por nombre de endpoint, cada operación lógica es una
  entrada de tabla (`EndpointSpec`) con un builder puro y aislado.
- Cambiar una ruta o el nombre de un query param del backend es editar datos,
  sin tocar el resto de endpoints.

Reglas:
- Sin I/O. Misma operación + mismos parámetros => mismo `RequestDescriptor`.
- Los defaults (p.ej. `limit=10`) son por endpoint, nunca globales.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from string import Formatter
from types import MappingProxyType
from typing import Any, Mapping
from urllib.parse import quote

from core.domain.errors import MissingParameterError, UnknownOperationError
from core.domain.models import HttpMethod, OperationParams, RequestDescriptor

_PARAM_NAMES = ("id", "secondary_id", "limit", "sort")


@dataclass(frozen=True)
class EndpointSpec:
    """Entrada de la tabla: qué parámetros consume y dónde los coloca."""

    method: HttpMethod
    route: str
    # Parámetro canónico -> nombre del query param en el backend (en este orden).
    query: Mapping[str, str] = field(default_factory=dict)
    defaults: Mapping[str, Any] = field(default_factory=dict)
    # Parámetros de query obligatorios (los de ruta siempre lo son).
    required: frozenset[str] = frozenset()
    public: bool = False
    accepts_filters: bool = False
    filter_format: str = "{key}"

    @property
    def path_params(self) -> tuple[str, ...]:
        return tuple(name for _, name, _, _ in Formatter().parse(self.route) if name)

    def build(self, operation: str, base_url: str, params: OperationParams) -> RequestDescriptor:
        values: dict[str, Any] = {name: getattr(params, name) for name in _PARAM_NAMES}
        for name, default in self.defaults.items():
            if values.get(name) is None:
                values[name] = default

        path_values: dict[str, str] = {}
        for name in self.path_params:
            value = values.get(name)
            if value is None or value == "":
                raise MissingParameterError(operation, name)
            path_values[name] = quote(str(value), safe="")

        for name in sorted(self.required):
            if values.get(name) is None:
                raise MissingParameterError(operation, name)

        query: list[tuple[str, str]] = []
        for name, wire_name in self.query.items():
            value = values.get(name)
            if value is not None:
                query.append((wire_name, str(value)))
        if self.accepts_filters:
            for key in sorted(params.filters):
                query.append((self.filter_format.format(key=key), params.filters[key]))

        return RequestDescriptor(
            operation=operation,
            method=self.method,
            url=base_url.rstrip("/") + self.route.format(**path_values),
            query=tuple(query),
            public=self.public,
        )


ENDPOINTS: Mapping[str, EndpointSpec] = MappingProxyType(
    {
        "health": EndpointSpec(HttpMethod.GET, "/health", public=True),
        "components": EndpointSpec(
            HttpMethod.GET,
            "/catalog/components",
            query={"limit": "pageSize", "sort": "orderBy"},
            defaults={"limit": 50},
            public=True,
            accepts_filters=True,
        ),
        "component": EndpointSpec(HttpMethod.GET, "/catalog/components/{id}", public=True),
        "account": EndpointSpec(HttpMethod.GET, "/accounts/{id}"),
        "accounts": EndpointSpec(
            HttpMethod.GET,
            "/accounts",
            query={"limit": "limit", "sort": "sort"},
            defaults={"limit": 10, "sort": "name"},
            accepts_filters=True,
            filter_format="filter[{key}]",
        ),
        "account_name_availability": EndpointSpec(
            HttpMethod.GET,
            "/accounts/availability",
            accepts_filters=True,
        ),
        "address": EndpointSpec(HttpMethod.GET, "/accounts/{id}/addresses/{secondary_id}"),
        "addresses": EndpointSpec(
            HttpMethod.GET,
            "/accounts/{id}/addresses",
            query={"limit": "limit"},
            defaults={"limit": 20},
        ),
        "account_attachment": EndpointSpec(HttpMethod.POST, "/accounts/{id}/attachments"),
        "plan_quote": EndpointSpec(HttpMethod.POST, "/plans/quote"),
        "plan_create": EndpointSpec(HttpMethod.POST, "/plans"),
        "plan_update": EndpointSpec(HttpMethod.PUT, "/plans/{id}"),
        "plan_delete": EndpointSpec(HttpMethod.DELETE, "/plans/{id}"),
    }
)


class EndpointRegistry:
    """Resuelve operaciones lógicas contra la tabla de endpoints."""

    def __init__(self, base_url: str, table: Mapping[str, EndpointSpec] | None = None) -> None:
        self._base_url = base_url
        self._table: dict[str, EndpointSpec] = dict(ENDPOINTS if table is None else table)

    @property
    def base_url(self) -> str:
        return self._base_url

    def spec(self, operation: str) -> EndpointSpec:
        try:
            return self._table[operation]
        except KeyError:
            raise UnknownOperationError(operation) from None

    def register(self, operation: str, spec: EndpointSpec) -> None:
        if operation in self._table:
            raise ValueError(f"operation already registered: {operation!r}")
        self._table[operation] = spec

    def operations(self) -> list[tuple[str, EndpointSpec]]:
        return sorted(self._table.items())

    def resolve(
        self,
        operation: str,
        params: OperationParams | Mapping[str, Any] | None = None,
    ) -> RequestDescriptor:
        spec = self.spec(operation)
        if params is None:
            params = OperationParams()
        elif not isinstance(params, OperationParams):
            params = OperationParams.model_validate(dict(params))
        return spec.build(operation, self._base_url, params)
