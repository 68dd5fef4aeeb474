"""Interfaces/abstracciones del Core.

Por qué:
- Define contratos (Protocol) que implementan adaptadores concretos.
- Permite invertir dependencias: el Core depende de abstracciones.
"""

from core.interfaces.backend import BackendExecutor, EndpointResolver, SlotTicket
from core.interfaces.store import KeyValueStore

__all__ = [
    "BackendExecutor",
    "EndpointResolver",
    "KeyValueStore",
    "SlotTicket",
]
