"""Contrato del almacén clave-valor del estado de sesión.

Por qué Protocol:
- El motor persiste el `WorkflowState` sin saber si va a memoria, archivo o
  un servicio externo; las implementaciones viven en `adapters.state_store`.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    """Almacén de texto por clave (una entrada por id de sesión)."""

    def get(self, key: str) -> str | None:
        """Devuelve el valor guardado o None si la clave no existe."""

        ...

    def set(self, key: str, value: str) -> None:
        """Guarda/reemplaza el valor; puede lanzar `OSError`."""

        ...

    def delete(self, key: str) -> None:
        ...
