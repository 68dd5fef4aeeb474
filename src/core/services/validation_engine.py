"""Motor de validación por campo y por paso.

Reglas de diseño:
- `validate_field` es local y síncrono.
- `validate_step` evalúa solo los campos visibles del paso; las reglas locales
  corren primero y, si alguna falla, no se despacha ninguna comprobación remota
  (lo barato filtra lo caro).
- Un fallo de red en una comprobación remota deja el paso no avanzable, pero se
  devuelve como `ErrorEnvelope`, nunca como excepción.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Sequence

from adapters.data_transformer import DataTransformer
from core.domain.errors import PlanCraftError, ServiceError, StaleResultError, UnknownStepError
from core.domain.models import ErrorEnvelope, ValidationResult, ValidationStatus
from core.domain.steps import FieldDefinition, FieldRule, RemoteCheck, StepDefinition, WorkflowSnapshot
from core.interfaces.backend import BackendExecutor, EndpointResolver

logger = logging.getLogger(__name__)

CHECK_PENDING = "check_pending"
CHECK_FAILED = "check_failed"


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return not value
    return False


# ---------------------------------------------------------------------------
# Reglas reutilizables
# ---------------------------------------------------------------------------


def min_length(n: int) -> FieldRule:
    def rule(value: Any) -> ValidationResult:
        if len(str(value).strip()) < n:
            return ValidationResult.invalid("too_short", f"Must be at least {n} characters.")
        return ValidationResult.ok()

    return rule


def max_length(n: int) -> FieldRule:
    def rule(value: Any) -> ValidationResult:
        if len(str(value)) > n:
            return ValidationResult.invalid("too_long", f"Must be at most {n} characters.")
        return ValidationResult.ok()

    return rule


def matches(pattern: str, *, reason_code: str = "invalid_format", message: str = "Invalid format.") -> FieldRule:
    compiled = re.compile(pattern)

    def rule(value: Any) -> ValidationResult:
        if not isinstance(value, str) or not compiled.fullmatch(value.strip()):
            return ValidationResult.invalid(reason_code, message)
        return ValidationResult.ok()

    return rule


def one_of(choices: Iterable[Any]) -> FieldRule:
    allowed = tuple(choices)

    def rule(value: Any) -> ValidationResult:
        if value not in allowed:
            options = ", ".join(str(c) for c in allowed)
            return ValidationResult.invalid("not_allowed", f"Must be one of: {options}.")
        return ValidationResult.ok()

    return rule


def _as_number(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def min_value(n: int | Decimal) -> FieldRule:
    def rule(value: Any) -> ValidationResult:
        number = _as_number(value)
        if number is None:
            return ValidationResult.invalid("not_a_number", "Must be a number.")
        if number < n:
            return ValidationResult.invalid("too_small", f"Must be at least {n}.")
        return ValidationResult.ok()

    return rule


def max_value(n: int | Decimal) -> FieldRule:
    def rule(value: Any) -> ValidationResult:
        number = _as_number(value)
        if number is None:
            return ValidationResult.invalid("not_a_number", "Must be a number.")
        if number > n:
            return ValidationResult.invalid("too_large", f"Must be at most {n}.")
        return ValidationResult.ok()

    return rule


def is_true(message: str = "Must be accepted.") -> FieldRule:
    def rule(value: Any) -> ValidationResult:
        if value is not True:
            return ValidationResult.invalid("not_accepted", message)
        return ValidationResult.ok()

    return rule


# ---------------------------------------------------------------------------
# Motor
# ---------------------------------------------------------------------------


@dataclass
class StepValidation:
    """Resultado agregado de un paso."""

    step_id: str
    field_results: dict[str, ValidationResult] = field(default_factory=dict)
    errors: list[ErrorEnvelope] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return all(r.valid for r in self.field_results.values())

    @property
    def first_failure(self) -> ValidationResult | None:
        for result in self.field_results.values():
            if not result.valid:
                return result
        return None

    @property
    def result(self) -> ValidationResult:
        return self.first_failure or ValidationResult.ok()

    @property
    def status(self) -> ValidationStatus:
        if self.valid:
            return ValidationStatus.VALID
        if any(r.reason_code == CHECK_PENDING for r in self.field_results.values()):
            return ValidationStatus.PENDING
        return ValidationStatus.INVALID


class ValidationEngine:
    def __init__(
        self,
        steps: Sequence[StepDefinition],
        *,
        registry: EndpointResolver | None = None,
        executor: BackendExecutor | None = None,
        transformer: DataTransformer | None = None,
        auth: Callable[[], str | None] | None = None,
    ) -> None:
        self._steps = {s.id: s for s in steps}
        self._registry = registry
        self._executor = executor
        self._transformer = transformer
        self._auth = auth or (lambda: None)

    def step(self, step_id: str) -> StepDefinition:
        try:
            return self._steps[step_id]
        except KeyError:
            raise UnknownStepError(step_id) from None

    def field_definition(self, step_id: str, field_id: str) -> FieldDefinition:
        definition = self.step(step_id).get_field(field_id)
        if definition is None:
            raise UnknownStepError(step_id, field_id)
        return definition

    def validate_field(self, step_id: str, field_id: str, value: Any) -> ValidationResult:
        definition = self.field_definition(step_id, field_id)
        if is_blank(value):
            if definition.required:
                return ValidationResult.invalid("required", "This field is required.", field_id=field_id)
            return ValidationResult.ok(field_id)

        for rule in definition.rules:
            result = rule(value)
            if not result.valid:
                logger.debug("Field %s.%s invalid: %s", step_id, field_id, result.reason_code)
                return result.for_field(field_id)
        return ValidationResult.ok(field_id)

    async def validate_step(self, step_id: str, snapshot: WorkflowSnapshot) -> StepValidation:
        step = self.step(step_id)
        outcome = StepValidation(step_id=step_id)
        visible = step.visible_fields(snapshot)

        for definition in visible:
            value = snapshot.value(step_id, definition.id)
            outcome.field_results[definition.id] = self.validate_field(step_id, definition.id, value)
        if not outcome.valid:
            return outcome

        remote = [
            (d, d.remote_check)
            for d in visible
            if d.remote_check is not None and not is_blank(snapshot.value(step_id, d.id))
        ]
        if not remote:
            return outcome

        checks = await asyncio.gather(
            *(self._run_remote(step_id, d, check, snapshot.value(step_id, d.id)) for d, check in remote)
        )
        for (definition, _), (result, error) in zip(remote, checks):
            outcome.field_results[definition.id] = result
            if error is not None:
                outcome.errors.append(error)
        return outcome

    async def _run_remote(
        self,
        step_id: str,
        definition: FieldDefinition,
        check: RemoteCheck,
        value: Any,
    ) -> tuple[ValidationResult, ErrorEnvelope | None]:
        if self._registry is None or self._executor is None:
            raise PlanCraftError(
                f"field {step_id}.{definition.id} has a remote check but no executor is configured"
            )

        descriptor = self._registry.resolve(check.operation, check.params(value))
        try:
            envelope = await self._executor.execute(descriptor, auth_token=self._auth())
            if self._transformer is not None:
                envelope = self._transformer.apply(envelope)
        except StaleResultError:
            return (
                ValidationResult.invalid(
                    CHECK_PENDING,
                    "A newer check for this value is still running.",
                    field_id=definition.id,
                ),
                None,
            )
        except ServiceError as exc:
            logger.warning("Remote check for %s.%s failed: %s", step_id, definition.id, exc)
            return (
                ValidationResult.invalid(
                    CHECK_FAILED,
                    "This value could not be verified right now.",
                    field_id=definition.id,
                ),
                exc.envelope,
            )
        return check.evaluate(envelope).for_field(definition.id), None
