"""Almacenes clave-valor para el estado de sesión.

Por qué JSON en disco:
- Permite reanudar una sesión tras recargar (CLI, proceso nuevo) sin
  depender de un servicio externo.
- El valor ya llega serializado (`WorkflowState.model_dump_json()`); aquí solo
  se guarda texto UTF-8 de forma estable.
"""

from __future__ import annotations

import re
from pathlib import Path

_SAFE_KEY = re.compile(r"[^A-Za-z0-9._-]")


class InMemoryStateStore:
    """Implementación en memoria (tests, sesiones efímeras)."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class JsonFileStateStore:
    """Un archivo `<key>.json` por sesión dentro de `directory`."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, key: str) -> Path:
        cleaned = _SAFE_KEY.sub("-", key.strip()).strip("-.") or "session"
        return self._directory / f"{cleaned}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Escritura atómica: primero un temporal, luego replace.
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(value + "\n", encoding="utf-8")
        tmp.replace(path)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
