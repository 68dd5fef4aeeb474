"""Taxonomía de errores del Core.

Por qué una jerarquía propia:
- Separa errores de programación (configuración rota, fallan rápido) de fallos
  transitorios o de contrato del backend (se normalizan a `ErrorEnvelope`).
- Los llamadores pueden distinguir "inalcanzable" (`NetworkError`) de
  "cambió la forma" (`ShapeMismatchError`) sin inspeccionar mensajes.
"""

from __future__ import annotations

from typing import Any, TYPE_CHECKING

from core.domain.models import ErrorEnvelope, ErrorKind

if TYPE_CHECKING:
    from core.domain.models import ValidationResult


class PlanCraftError(Exception):
    """Raíz de todos los errores del proyecto."""


# Errores de programación: nunca se reintentan ni se capturan en el Core.


class UnknownOperationError(PlanCraftError, LookupError):
    def __init__(self, operation: str) -> None:
        super().__init__(f"unknown operation: {operation!r}")
        self.operation = operation


class MissingParameterError(PlanCraftError, ValueError):
    def __init__(self, operation: str, parameter: str) -> None:
        super().__init__(f"operation {operation!r} requires parameter {parameter!r}")
        self.operation = operation
        self.parameter = parameter


class UnknownStepError(PlanCraftError, LookupError):
    def __init__(self, step_id: str, field_id: str | None = None) -> None:
        target = step_id if field_id is None else f"{step_id}.{field_id}"
        super().__init__(f"unknown step or field: {target!r}")
        self.step_id = step_id
        self.field_id = field_id


class InvalidTransitionError(PlanCraftError):
    pass


# Errores que viajan hasta el llamador como `ErrorEnvelope`.


class ServiceError(PlanCraftError):
    """Fallo de una llamada al backend, normalizado."""

    kind: ErrorKind = ErrorKind.NETWORK

    def __init__(self, message: str, *, backend_detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.backend_detail = backend_detail

    @property
    def envelope(self) -> ErrorEnvelope:
        return ErrorEnvelope(
            kind=self.kind,
            message=self.message,
            backend_detail=self.backend_detail,
        )


class NetworkError(ServiceError):
    """Sin respuesta del backend (timeout o fallo de transporte)."""

    kind = ErrorKind.NETWORK

    def __init__(self, message: str, *, reason: str, attempts: int = 1) -> None:
        super().__init__(message, backend_detail=reason)
        self.reason = reason
        self.attempts = attempts


class UnauthenticatedError(ServiceError):
    kind = ErrorKind.UNAUTHENTICATED


class BackendError(ServiceError):
    """El backend respondió con error en una forma reconocida."""

    kind = ErrorKind.BACKEND

    def __init__(
        self,
        message: str,
        *,
        status: int,
        backend_detail: str | None = None,
        raw: Any = None,
    ) -> None:
        super().__init__(message, backend_detail=backend_detail)
        self.status = status
        self.raw = raw

    @property
    def envelope(self) -> ErrorEnvelope:
        return ErrorEnvelope(
            kind=self.kind,
            message=self.message,
            backend_detail=self.backend_detail,
            status=self.status,
        )


class UnparsedBackendError(BackendError):
    """El backend respondió con error en una forma desconocida; se adjunta el payload crudo."""

    kind = ErrorKind.UNPARSED

    @property
    def envelope(self) -> ErrorEnvelope:
        return ErrorEnvelope(
            kind=self.kind,
            message=self.message,
            backend_detail=self.backend_detail,
            status=self.status,
            raw=self.raw,
        )


class ShapeMismatchError(ServiceError):
    """Deriva de contrato: un campo esperado falta o no está soportado."""

    kind = ErrorKind.SHAPE_MISMATCH

    def __init__(self, field_path: str, message: str | None = None) -> None:
        super().__init__(message or f"shape mismatch at {field_path!r}", backend_detail=field_path)
        self.field_path = field_path


# Señales de control.


class StaleResultError(PlanCraftError):
    """La llamada fue reemplazada por otra más reciente del mismo slot."""

    def __init__(self, slot: str, sequence: int) -> None:
        super().__init__(f"result #{sequence} for slot {slot!r} was superseded")
        self.slot = slot
        self.sequence = sequence


class ValidationError(PlanCraftError):
    """Error de usuario recuperable; nunca se registra como fallo del sistema."""

    def __init__(self, result: ValidationResult) -> None:
        super().__init__(result.message or result.reason_code or "invalid")
        self.result = result
