"""Motor del workflow de configuración del plan.

Este módulo es el único dueño del `WorkflowState`. ValidationEngine y
PricingCalculator reciben una vista de solo lectura y devuelven valores
derivados; nunca escriben en el estado.

Concurrencia (un solo hilo, cooperativo):
- Cada mutación relevante para la validación incrementa `revision`. Una
  validación que termina después de una mutación se descarta
  (`invalid("state_changed")`) en lugar de mover el paso.
- Las cargas de referencia (`refresh`) usan la secuencia por slot del
  ejecutor: solo el resultado emitido más recientemente se aplica.

Persistencia:
- Write-through en cada mutación; si el store falla se registra y se sigue:
  el estado en memoria es la fuente de verdad de la sesión.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Callable, Mapping, Sequence

from adapters.data_transformer import DataTransformer
from core.domain.errors import (
    InvalidTransitionError,
    PlanCraftError,
    ServiceError,
    StaleResultError,
    UnknownStepError,
)
from core.domain.models import (
    COMPLETED,
    NOT_STARTED,
    Component,
    Discount,
    ErrorEnvelope,
    OperationParams,
    PendingRequest,
    PriceSummary,
    ResponseEnvelope,
    Selection,
    StepVisit,
    ValidationResult,
    ValidationStatus,
    WorkflowState,
)
from core.domain.steps import DONE, StepDefinition, WorkflowSnapshot
from core.interfaces.backend import BackendExecutor, EndpointResolver
from core.interfaces.store import KeyValueStore
from core.services.pricing_calculator import PricingCalculator
from core.services.validation_engine import ValidationEngine, is_blank

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkflowView:
    """Proyección de solo lectura para la capa de presentación."""

    current_step_id: str
    visible_fields: tuple[str, ...]
    field_values: Mapping[str, Any]
    field_results: Mapping[str, ValidationResult]
    step_status: ValidationStatus
    price: PriceSummary
    notifications: tuple[ErrorEnvelope, ...]


class WorkflowEngine:
    def __init__(
        self,
        steps: Sequence[StepDefinition],
        *,
        store: KeyValueStore,
        session_id: str,
        pricing: PricingCalculator | None = None,
        validator: ValidationEngine | None = None,
        registry: EndpointResolver | None = None,
        executor: BackendExecutor | None = None,
        transformer: DataTransformer | None = None,
        auth: Callable[[], str | None] | None = None,
        payload_builder: Callable[[WorkflowSnapshot], Mapping[str, Any]] | None = None,
        proration_factor: Decimal | None = None,
        state: WorkflowState | None = None,
    ) -> None:
        if not steps:
            raise ValueError("a workflow needs at least one step")
        self._order = [s.id for s in sorted(steps, key=lambda s: s.ordinal)]
        self._auth = auth or (lambda: None)
        self._registry = registry
        self._executor = executor
        self._transformer = transformer
        self._validator = validator or ValidationEngine(
            steps,
            registry=registry,
            executor=executor,
            transformer=transformer,
            auth=self._auth,
        )
        self._pricing = pricing or PricingCalculator()
        self._store = store
        self._payload_builder = payload_builder
        self._proration_factor = proration_factor

        self._state = state or WorkflowState(session_id=session_id)
        self._field_results: dict[str, dict[str, ValidationResult]] = {}
        self._notifications: list[ErrorEnvelope] = []
        self._price = self._compute_price()

    @classmethod
    def restore(
        cls,
        steps: Sequence[StepDefinition],
        *,
        store: KeyValueStore,
        session_id: str,
        **kwargs: Any,
    ) -> WorkflowEngine:
        """Reanuda una sesión persistida (o empieza una nueva si no existe)."""

        state: WorkflowState | None = None
        raw = store.get(session_id)
        if raw:
            state = WorkflowState.model_validate_json(raw)
        return cls(steps, store=store, session_id=session_id, state=state, **kwargs)

    # ------------------------------------------------------------------
    # Lectura
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkflowState:
        return self._state.model_copy(deep=True)

    @property
    def current_step_id(self) -> str:
        return self._state.current_step_id

    @property
    def price(self) -> PriceSummary:
        return self._price

    @property
    def notifications(self) -> tuple[ErrorEnvelope, ...]:
        return tuple(self._notifications)

    def clear_notifications(self) -> None:
        self._notifications.clear()

    def snapshot(self) -> WorkflowSnapshot:
        return WorkflowSnapshot.of(self._state.selection, self._state.field_values)

    def visible_fields(self, step_id: str | None = None) -> tuple[str, ...]:
        step_id = step_id or self._state.current_step_id
        if step_id in (NOT_STARTED, COMPLETED):
            return ()
        step = self._validator.step(step_id)
        return tuple(f.id for f in step.visible_fields(self.snapshot()))

    def view(self) -> WorkflowView:
        step_id = self._state.current_step_id
        visible = self.visible_fields(step_id)
        results = self._field_results.get(step_id, {})
        return WorkflowView(
            current_step_id=step_id,
            visible_fields=visible,
            field_values=MappingProxyType(
                {k: v for k, v in self._state.field_values.get(step_id, {}).items() if k in visible}
            ),
            field_results=MappingProxyType({k: v for k, v in results.items() if k in visible}),
            step_status=self._state.per_step_validation.get(step_id, ValidationStatus.UNKNOWN),
            price=self._price,
            notifications=tuple(self._notifications),
        )

    # ------------------------------------------------------------------
    # Transiciones
    # ------------------------------------------------------------------

    async def advance(self) -> ValidationResult:
        """Valida el paso actual y, si es válido, pasa al siguiente.

        Si la validación falla, el paso no cambia y se devuelve el primer
        resultado `invalid`.
        """

        current = self._state.current_step_id
        if current == COMPLETED:
            raise InvalidTransitionError("workflow is already completed")
        if current == NOT_STARTED:
            self._move_to(self._order[0])
            return ValidationResult.ok()

        revision = self._state.revision
        snapshot = self.snapshot()
        outcome = await self._validator.validate_step(current, snapshot)

        if self._state.revision != revision or self._state.current_step_id != current:
            logger.debug("Discarding validation of %s: state changed meanwhile", current)
            return ValidationResult.invalid(
                "state_changed",
                "The step changed while it was being validated.",
            )

        self._field_results[current] = dict(outcome.field_results)
        self._notifications.extend(outcome.errors)
        statuses = dict(self._state.per_step_validation)
        statuses[current] = outcome.status
        if not outcome.valid:
            self._commit(per_step_validation=statuses, bump=False)
            return outcome.result

        self._commit(per_step_validation=statuses, bump=False)
        self._move_to(self._resolve_next(current, snapshot))
        return ValidationResult.ok()

    def back(self) -> str:
        """Vuelve al paso anterior del camino recorrido (sin borrar datos)."""

        current = self._state.current_step_id
        if current == NOT_STARTED:
            raise InvalidTransitionError("cannot go back before the first step")

        history = list(self._state.history)
        if current != COMPLETED and history:
            history.pop()
        target = history[-1] if history else NOT_STARTED
        self._commit(current_step_id=target, history=history)
        return target

    def reset(self) -> None:
        revision = self._state.revision + 1
        self._field_results.clear()
        self._notifications.clear()
        self._state = WorkflowState(session_id=self._state.session_id, revision=revision)
        self._price = self._compute_price()
        self._persist()

    def reset_step(self, step_id: str) -> None:
        """Borra los valores de un paso y los componentes que creó."""

        self._validator.step(step_id)
        values = {k: dict(v) for k, v in self._state.field_values.items() if k != step_id}
        statuses = dict(self._state.per_step_validation)
        statuses[step_id] = ValidationStatus.UNKNOWN
        self._field_results.pop(step_id, None)
        self._commit(
            field_values=values,
            selection=self._state.selection.without_owner(step_id),
            per_step_validation=statuses,
        )

    # ------------------------------------------------------------------
    # Datos del usuario
    # ------------------------------------------------------------------

    def update_field(self, step_id: str, field_id: str, value: Any) -> ValidationResult:
        """Guarda el valor, valida el campo y recalcula el precio.

        No valida el paso completo: el paso vuelve a `unknown` hasta el
        próximo `advance()`. Las líneas del plan que deriva el campo se
        recalculan en `_commit`.
        """

        result = self._validator.validate_field(step_id, field_id, value)

        values = {k: dict(v) for k, v in self._state.field_values.items()}
        values.setdefault(step_id, {})[field_id] = value

        statuses = dict(self._state.per_step_validation)
        statuses[step_id] = ValidationStatus.UNKNOWN
        self._field_results.setdefault(step_id, {})[field_id] = result
        self._commit(field_values=values, per_step_validation=statuses)
        return result

    def select_component(self, step_id: str, component: Component) -> None:
        self._validator.step(step_id)
        owned = component.model_copy(update={"step_id": step_id})
        self._commit(selection=self._state.selection.with_component(owned))

    def deselect_component(self, component_id: str) -> None:
        self._commit(selection=self._state.selection.without_component(component_id))

    # ------------------------------------------------------------------
    # Backend
    # ------------------------------------------------------------------

    def _require_backend(self) -> tuple[EndpointResolver, BackendExecutor]:
        if self._registry is None or self._executor is None:
            raise PlanCraftError("this workflow has no backend configured")
        return self._registry, self._executor

    async def refresh(
        self,
        operation: str,
        params: OperationParams | Mapping[str, Any] | None = None,
        *,
        key: str | None = None,
    ) -> ResponseEnvelope | None:
        """Carga datos de referencia en `reference_data[key or operation]`.

        Devuelve None si la llamada fue reemplazada por otra más reciente del
        mismo slot o si falló (el fallo queda como notificación).
        """

        registry, executor = self._require_backend()
        descriptor = registry.resolve(operation, params)
        ticket = executor.issue(descriptor.slot)
        pending = PendingRequest(slot=ticket.slot, sequence=ticket.sequence)
        self._commit(pending_request=pending, bump=False)

        try:
            envelope = await executor.execute(descriptor, auth_token=self._auth(), ticket=ticket)
            if self._transformer is not None:
                envelope = self._transformer.apply(envelope)
        except StaleResultError:
            logger.debug("Ignoring superseded %s result #%d", operation, ticket.sequence)
            return None
        except ServiceError as exc:
            logger.warning("Refreshing %s failed: %s", operation, exc)
            self._notifications.append(exc.envelope)
            self._clear_pending(pending)
            return None

        reference = dict(self._state.reference_data)
        reference[key or operation] = envelope.data
        updates: dict[str, Any] = {"reference_data": reference}
        if self._state.pending_request == pending:
            updates["pending_request"] = None
        self._commit(bump=False, **updates)
        return envelope

    async def submit(self, operation: str = "plan_create") -> ResponseEnvelope:
        """Envía el plan completado al backend.

        Revalida localmente todos los pasos recorridos y lanza `ValidationError`
        con el primer campo inválido. Los fallos del backend quedan como
        notificación y se propagan.
        """

        if self._state.current_step_id != COMPLETED:
            raise InvalidTransitionError("the plan can only be submitted once the workflow is completed")
        if self._payload_builder is None:
            raise PlanCraftError("this workflow has no payload builder configured")
        registry, executor = self._require_backend()

        snapshot = self.snapshot()
        for step_id in self._state.history:
            for definition in self._validator.step(step_id).visible_fields(snapshot):
                value = snapshot.value(step_id, definition.id)
                self._validator.validate_field(step_id, definition.id, value).raise_for_invalid()

        payload = dict(self._payload_builder(snapshot))
        descriptor = registry.resolve(operation)
        try:
            body = payload if self._transformer is None else self._transformer.request_body(operation, payload)
            envelope = await executor.execute(descriptor, auth_token=self._auth(), body=body)
            if self._transformer is not None:
                envelope = self._transformer.apply(envelope)
        except ServiceError as exc:
            logger.warning("Submitting plan failed: %s", exc)
            self._notifications.append(exc.envelope)
            raise

        reference = dict(self._state.reference_data)
        reference[operation] = envelope.data
        self._commit(reference_data=reference, bump=False)
        return envelope

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    def _resolve_next(self, step_id: str, snapshot: WorkflowSnapshot) -> str:
        step = self._validator.step(step_id)
        target = step.next_step(snapshot)
        if target is None:
            index = self._order.index(step_id)
            return self._order[index + 1] if index + 1 < len(self._order) else COMPLETED
        if target == DONE:
            return COMPLETED
        if target not in self._order:
            raise UnknownStepError(target)
        return target

    def _move_to(self, target: str) -> None:
        """Entra en `target`, saltando automáticamente pasos sin campos visibles."""

        history = list(self._state.history)
        log = list(self._state.step_log)
        statuses = dict(self._state.per_step_validation)
        snapshot = self.snapshot()
        seen: set[str] = set()

        while target != COMPLETED:
            if target in seen:
                raise InvalidTransitionError(f"step resolvers loop through {target!r}")
            seen.add(target)
            if self._validator.step(target).visible_fields(snapshot):
                break
            logger.debug("Auto-skipping step %s (no visible fields)", target)
            log.append(StepVisit(step_id=target, skipped=True))
            statuses[target] = ValidationStatus.SKIPPED
            target = self._resolve_next(target, snapshot)

        if target != COMPLETED:
            log.append(StepVisit(step_id=target))
            history.append(target)
        self._commit(
            current_step_id=target,
            history=history,
            step_log=log,
            per_step_validation=statuses,
        )

    def _clear_pending(self, pending: PendingRequest) -> None:
        if self._state.pending_request == pending:
            self._commit(pending_request=None, bump=False)

    def _compute_price(self) -> PriceSummary:
        return self._pricing.compute_total(
            self._state.selection,
            proration_factor=self._proration_factor,
        )

    def _active_steps(self, snapshot: WorkflowSnapshot) -> list[str]:
        """Pasos del camino actual que muestran al menos un campo."""

        active: list[str] = []
        seen: set[str] = set()
        target = self._order[0]
        while target != COMPLETED and target not in seen:
            seen.add(target)
            if self._validator.step(target).visible_fields(snapshot):
                active.append(target)
            target = self._resolve_next(target, snapshot)
        return active

    def _derive_selection(
        self,
        selection: Selection,
        field_values: Mapping[str, Mapping[str, Any]],
    ) -> Selection:
        """Reconstruye las líneas que poseen los campos.

        Solo aportan líneas los campos visibles, válidos y no vacíos de pasos
        activos. Los valores ocultos se conservan en `field_values` y vuelven a
        aportar si el campo reaparece. Las selecciones manuales (sin campo
        dueño) no se tocan.
        """

        snapshot = WorkflowSnapshot.of(selection, field_values)
        derived = Selection(
            components=tuple(c for c in selection.components if c.field_id is None),
            discounts=tuple(d for d in selection.discounts if d.field_id is None),
        )
        for step_id in self._active_steps(snapshot):
            for definition in self._validator.step(step_id).visible_fields(snapshot):
                if definition.components is None:
                    continue
                value = snapshot.value(step_id, definition.id)
                if is_blank(value) or not self._validator.validate_field(step_id, definition.id, value).valid:
                    continue
                for item in definition.components(value):
                    owned = item.model_copy(update={"step_id": step_id, "field_id": definition.id})
                    if isinstance(owned, Discount):
                        derived = derived.with_discount(owned)
                    else:
                        derived = derived.with_component(owned)
        return derived

    def _commit(self, *, bump: bool = True, **updates: Any) -> None:
        if bump:
            updates["revision"] = self._state.revision + 1
        if "selection" in updates or "field_values" in updates:
            updates["selection"] = self._derive_selection(
                updates.get("selection", self._state.selection),
                updates.get("field_values", self._state.field_values),
            )
        self._state = self._state.model_copy(update=updates)
        if "selection" in updates:
            self._price = self._compute_price()
        self._persist()

    def _persist(self) -> None:
        try:
            self._store.set(self._state.session_id, self._state.model_dump_json())
        except Exception as exc:  # noqa: BLE001 - persistencia best-effort
            logger.warning("Could not persist session %s: %s", self._state.session_id, exc)
