"""Extracción de errores del backend (formas conocidas).

Por qué funciones sueltas:
- Cada forma de error es un extractor independiente; una forma nueva es una
  función nueva registrada en el ejecutor, sin tocar las existentes.
- Un extractor devuelve `(message, backend_detail)` o None si no reconoce el payload.
"""

from __future__ import annotations

from typing import Any, Callable

ErrorExtractor = Callable[[Any], "tuple[str, str | None] | None"]


def message_shape(payload: Any) -> tuple[str, str | None] | None:
    """`{"message": "..."}` (opcionalmente con `code`)."""

    if not isinstance(payload, dict):
        return None
    message = payload.get("message")
    if not isinstance(message, str) or not message.strip():
        return None
    code = payload.get("code")
    return message.strip(), str(code) if code is not None else None


def error_details_shape(payload: Any) -> tuple[str, str | None] | None:
    """`{"error": {"details": "..."}}` (forma de la API v2)."""

    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if not isinstance(error, dict):
        return None
    details = error.get("details")
    if not isinstance(details, str) or not details.strip():
        return None
    code = error.get("code")
    return details.strip(), str(code) if code is not None else None


DEFAULT_EXTRACTORS: tuple[ErrorExtractor, ...] = (
    message_shape,
    error_details_shape,
)
