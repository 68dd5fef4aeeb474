"""Configuración del Core.

Por qué aquí:
- Centraliza variables de entorno (pydantic-settings) sin contaminar la CLI.
- Permite que adaptadores (HTTP, persistencia) y servicios (pricing) lean
  config de forma consistente.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_user_config_dir() -> Path:
    """Directorio de configuración por usuario (cross-platform, sin dependencias)."""

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / "plancraft"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "plancraft"

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "plancraft"
    return Path.home() / ".config" / "plancraft"


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


def _parse_env_lines(text: str) -> dict[str, str]:
    data: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key:
            data[key] = value
    return data


def write_user_env_vars(values: dict[str, str], *, env_path: Path | None = None) -> Path:
    """Escribe/actualiza variables en el .env global del usuario."""

    env_path = env_path or get_user_env_file()
    env_path.parent.mkdir(parents=True, exist_ok=True)

    existing: dict[str, str] = {}
    if env_path.exists():
        existing = _parse_env_lines(env_path.read_text(encoding="utf-8"))

    existing.update({k: v for k, v in values.items() if v is not None})

    lines = ["# plancraft user config (.env)"]
    for key in sorted(existing.keys()):
        lines.append(f"{key}={existing[key]}")
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return env_path


class AppSettings(BaseSettings):
    """Configuración central de la aplicación.

    Por qué pydantic-settings:
    - Tipado + validación en el borde (env vars) sin ensuciar el Core con lógica.
    - Un único contrato de configuración para CLI/adapters/servicios.
    """

    model_config = SettingsConfigDict(
        env_prefix="PLANCRAFT_",
        extra="ignore",
        case_sensitive=False,
        # Orden: proyecto primero (dev), luego config global de usuario.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    backend_base_url: str = Field(
        default="http://localhost:8080/api/v1",
        min_length=8,
        description="Base URL del servicio de facturación (sin barra final).",
    )
    user_agent: str = Field(
        default="plancraft/0.1",
        min_length=1,
        description="User-Agent para peticiones al backend.",
    )

    http_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Espera máxima por request (segundos).",
    )
    http_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Reintentos máximos para operaciones idempotentes (GET) ante fallos de red.",
    )
    http_backoff_base_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Base del backoff exponencial: base * 2**intento.",
    )
    http_backoff_max_seconds: float = Field(
        default=8.0,
        ge=0,
        description="Tope del backoff (segundos).",
    )
    http_backoff_jitter_seconds: float = Field(
        default=0.25,
        ge=0,
        description="Jitter uniforme añadido a cada espera.",
    )

    currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Código ISO de la moneda de los precios.",
    )
    currency_minor_units: int = Field(
        default=2,
        ge=0,
        le=4,
        description="Decimales de la unidad menor (redondeo half-even).",
    )

    state_dir: Path | None = Field(
        default=None,
        description="Directorio del store JSON de sesiones (por defecto: config de usuario).",
    )
    log_level: str = Field(
        default="INFO",
        description="Nivel de logging para la CLI.",
    )

    def resolved_state_dir(self) -> Path:
        return self.state_dir or (get_user_config_dir() / "sessions")
