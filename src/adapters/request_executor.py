"""Ejecutor de peticiones al backend.

Responsabilidad:
- Ejecutar un `RequestDescriptor` con httpx: token, codificación del cuerpo
  (JSON o multipart), reintentos con backoff para GET y normalización de errores.
- Guardar la última secuencia emitida por slot: el resultado de una llamada
  reemplazada nunca llega al llamador (se lanza `StaleResultError`).

No hace:
- Transformar la forma de la respuesta (eso es `DataTransformer`).
- Mostrar nada: los hooks reciben datos estructurados y la UI decide.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Mapping

import httpx

from adapters.error_shapes import DEFAULT_EXTRACTORS, ErrorExtractor
from core.config import AppSettings
from core.domain.errors import (
    BackendError,
    NetworkError,
    ServiceError,
    ShapeMismatchError,
    StaleResultError,
    UnauthenticatedError,
    UnparsedBackendError,
)
from core.domain.models import ErrorEnvelope, ErrorKind, RequestDescriptor, ResponseEnvelope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotTicket:
    slot: str
    sequence: int


class SlotSequencer:
    """Secuencia monótona por slot; solo la última emitida está vigente."""

    def __init__(self) -> None:
        self._latest: dict[str, int] = {}

    def issue(self, slot: str) -> SlotTicket:
        sequence = self._latest.get(slot, 0) + 1
        self._latest[slot] = sequence
        return SlotTicket(slot=slot, sequence=sequence)

    def is_current(self, ticket: SlotTicket) -> bool:
        return self._latest.get(ticket.slot) == ticket.sequence

    def latest(self, slot: str) -> int | None:
        return self._latest.get(slot)


@dataclass(frozen=True)
class RequestEvent:
    operation: str
    method: str
    url: str
    attempt: int


@dataclass(frozen=True)
class ResponseEvent:
    operation: str
    method: str
    url: str
    attempt: int
    elapsed_seconds: float
    status: int | None = None
    error: ErrorEnvelope | None = None


@dataclass
class ExecutorHooks:
    """Callbacks opcionales para capas de UI (spinners, toasts)."""

    before_request: Callable[[RequestEvent], None] | None = None
    after_response: Callable[[ResponseEvent], None] | None = None


def _is_binary(value: Any) -> bool:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return True
    return callable(getattr(value, "read", None))


def _form_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


def encode_body(body: Any) -> dict[str, Any]:
    """Kwargs de httpx para el cuerpo: multipart si hay binarios, JSON si no."""

    if body is None:
        return {}
    if _is_binary(body):
        body = {"file": body}
    if isinstance(body, Mapping) and any(_is_binary(v) for v in body.values()):
        files: dict[str, Any] = {}
        data: dict[str, str] = {}
        for key, value in body.items():
            if value is None:
                continue
            if isinstance(value, (bytearray, memoryview)):
                files[key] = bytes(value)
            elif _is_binary(value):
                files[key] = value
            else:
                data[key] = _form_value(value)
        return {"files": files, "data": data}
    return {"json": body}


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "").lower()
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            if response.is_error:
                return response.text
            raise ShapeMismatchError("$", "response body is not valid JSON") from None
    if content_type.startswith("text/"):
        return response.text
    return response.content


class RequestExecutor:
    """Ejecuta descriptores del registro contra el backend."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: AppSettings | None = None,
        *,
        error_extractors: Iterable[ErrorExtractor] | None = None,
        hooks: ExecutorHooks | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or AppSettings()
        self._extractors: list[ErrorExtractor] = list(
            DEFAULT_EXTRACTORS if error_extractors is None else error_extractors
        )
        self._hooks = hooks or ExecutorHooks()
        self._sleep = sleep or asyncio.sleep
        self._sequencer = SlotSequencer()

    def add_error_extractor(self, extractor: ErrorExtractor, *, first: bool = True) -> None:
        if first:
            self._extractors.insert(0, extractor)
        else:
            self._extractors.append(extractor)

    def issue(self, slot: str) -> SlotTicket:
        return self._sequencer.issue(slot)

    def is_current(self, ticket: SlotTicket) -> bool:
        return self._sequencer.is_current(ticket)

    async def execute(
        self,
        descriptor: RequestDescriptor,
        *,
        auth_token: str | None = None,
        body: Any = None,
        ticket: SlotTicket | None = None,
    ) -> ResponseEnvelope:
        """Ejecuta la petición y devuelve el envelope con `raw` (sin transformar).

        Lanza:
        - `UnauthenticatedError` sin I/O si falta token en una operación no pública.
        - `NetworkError` tras agotar reintentos (solo GET se reintenta).
        - `BackendError` / `UnparsedBackendError` ante respuestas de error.
        - `StaleResultError` si otra llamada del mismo slot se emitió después.
        """

        headers = self._auth_headers(descriptor, auth_token)
        if ticket is None:
            ticket = self.issue(descriptor.slot)
        elif ticket.slot != descriptor.slot:
            raise ValueError(f"ticket slot {ticket.slot!r} does not match {descriptor.slot!r}")

        payload = descriptor.body if body is None else body
        try:
            envelope = await self._send(descriptor, headers, encode_body(payload))
        except ServiceError:
            if not self._sequencer.is_current(ticket):
                logger.debug("Dropping failed stale result #%d for %s", ticket.sequence, ticket.slot)
                raise StaleResultError(ticket.slot, ticket.sequence) from None
            raise

        if not self._sequencer.is_current(ticket):
            logger.debug("Dropping stale result #%d for %s", ticket.sequence, ticket.slot)
            raise StaleResultError(ticket.slot, ticket.sequence)
        return envelope.model_copy(update={"slot": ticket.slot, "sequence": ticket.sequence})

    def _auth_headers(self, descriptor: RequestDescriptor, auth_token: str | None) -> dict[str, str]:
        if descriptor.public:
            return {}
        if not auth_token:
            raise UnauthenticatedError(
                f"operation {descriptor.operation!r} requires an auth token"
            )
        return {"Authorization": f"Bearer {auth_token}"}

    def _backoff(self, attempt: int) -> float:
        s = self._settings
        delay = min(s.http_backoff_base_seconds * (2**attempt), s.http_backoff_max_seconds)
        if s.http_backoff_jitter_seconds > 0:
            delay += random.uniform(0.0, s.http_backoff_jitter_seconds)
        return delay

    async def _send(
        self,
        descriptor: RequestDescriptor,
        headers: dict[str, str],
        encoded: dict[str, Any],
    ) -> ResponseEnvelope:
        method = descriptor.method
        # Métodos no idempotentes nunca se reintentan (evita efectos duplicados).
        attempts = 1 + (self._settings.http_max_retries if method.idempotent else 0)
        reason = "transport"
        last_exc: Exception | None = None

        for attempt in range(attempts):
            if self._hooks.before_request:
                self._hooks.before_request(
                    RequestEvent(descriptor.operation, method.value, descriptor.url, attempt + 1)
                )
            started = time.monotonic()
            try:
                request = self._client.build_request(
                    method.value,
                    descriptor.url,
                    params=list(descriptor.query),
                    headers=headers,
                    **encoded,
                )
                response = await self._client.send(request)
            except httpx.TimeoutException as exc:
                reason, last_exc = "timeout", exc
            except httpx.TransportError as exc:
                reason, last_exc = "transport", exc
            else:
                elapsed = time.monotonic() - started
                try:
                    envelope = self._to_envelope(descriptor, response)
                except ServiceError as exc:
                    self._emit_after(descriptor, attempt, elapsed, response.status_code, exc.envelope)
                    raise
                self._emit_after(descriptor, attempt, elapsed, response.status_code, None)
                return envelope

            elapsed = time.monotonic() - started
            error = ErrorEnvelope(kind=ErrorKind.NETWORK, message=str(last_exc), backend_detail=reason)
            self._emit_after(descriptor, attempt, elapsed, None, error)
            if attempt + 1 < attempts:
                delay = self._backoff(attempt)
                logger.warning(
                    "%s %s failed (%s); retry %d/%d in %.2fs",
                    method.value,
                    descriptor.url,
                    reason,
                    attempt + 1,
                    attempts - 1,
                    delay,
                )
                await self._sleep(delay)

        logger.error("%s %s failed after %d attempt(s): %s", method.value, descriptor.url, attempts, reason)
        raise NetworkError(
            f"{method.value} {descriptor.url} failed after {attempts} attempt(s): {reason}",
            reason=reason,
            attempts=attempts,
        ) from last_exc

    def _emit_after(
        self,
        descriptor: RequestDescriptor,
        attempt: int,
        elapsed: float,
        status: int | None,
        error: ErrorEnvelope | None,
    ) -> None:
        if self._hooks.after_response:
            self._hooks.after_response(
                ResponseEvent(
                    operation=descriptor.operation,
                    method=descriptor.method.value,
                    url=descriptor.url,
                    attempt=attempt + 1,
                    elapsed_seconds=elapsed,
                    status=status,
                    error=error,
                )
            )

    def _to_envelope(self, descriptor: RequestDescriptor, response: httpx.Response) -> ResponseEnvelope:
        payload = _decode(response)
        if response.is_error:
            raise self._normalize_error(response.status_code, payload)
        return ResponseEnvelope(
            status=response.status_code,
            raw=payload,
            operation=descriptor.operation,
        )

    def _normalize_error(self, status: int, payload: Any) -> BackendError:
        for extractor in self._extractors:
            extracted = extractor(payload)
            if extracted is not None:
                message, detail = extracted
                return BackendError(message, status=status, backend_detail=detail, raw=payload)
        return UnparsedBackendError(
            f"backend returned HTTP {status} with an unrecognized error body",
            status=status,
            raw=payload,
        )
