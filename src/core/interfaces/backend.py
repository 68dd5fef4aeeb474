"""Contratos de acceso al backend.

Por qué Protocol:
- ValidationEngine y WorkflowEngine dependen de la *forma* del ejecutor y del
  registro, no de httpx; en tests se sustituyen por fakes.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, runtime_checkable

from core.domain.models import OperationParams, RequestDescriptor, ResponseEnvelope


class SlotTicket(Protocol):
    slot: str
    sequence: int


@runtime_checkable
class EndpointResolver(Protocol):
    def resolve(
        self,
        operation: str,
        params: OperationParams | Mapping[str, Any] | None = None,
    ) -> RequestDescriptor:
        """Operación lógica + parámetros -> petición concreta (sin I/O)."""

        ...


@runtime_checkable
class BackendExecutor(Protocol):
    def issue(self, slot: str) -> SlotTicket:
        """Reserva el siguiente número de secuencia del slot."""

        ...

    async def execute(
        self,
        descriptor: RequestDescriptor,
        *,
        auth_token: str | None = None,
        body: Any = None,
        ticket: SlotTicket | None = None,
    ) -> ResponseEnvelope:
        """Ejecuta la petición; lanza `ServiceError` o `StaleResultError`."""

        ...
