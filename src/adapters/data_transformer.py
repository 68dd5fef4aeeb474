"""Adaptador bidireccional: modelo canónico <-> formas del backend.

Idea:
- Cada forma (account, component, plan, ...) es una tabla de `FieldMapping`
  (renombres, cambios de anidamiento, conversores de valor).
- `OPERATION_SHAPES` declara, por operación, qué forma viaja en la petición y
  cuál vuelve en la respuesta. Una migración del backend se audita campo por
  campo editando solo estas tablas.

Reglas:
- `to_wire` rechaza campos canónicos no soportados; `from_wire` ignora campos
  nuevos del backend (el payload crudo queda en `ResponseEnvelope.raw`).
- Los opcionales ausentes vuelven como `None`: el registro canónico siempre
  trae todas sus claves.
- Cualquier campo obligatorio ausente lanza `ShapeMismatchError` con su ruta.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Callable, Iterator, Mapping, Sequence

from core.domain.errors import ShapeMismatchError
from core.domain.models import ResponseEnvelope

_MISSING = object()


@dataclass(frozen=True)
class FieldMapping:
    canonical: str
    wire: str
    optional: bool = False
    to_wire: Callable[[Any], Any] | None = None
    from_wire: Callable[[Any], Any] | None = None
    # Nombre de la forma aplicada a cada elemento de una lista.
    item_shape: str | None = None


def _decimal_to_wire(value: Any) -> str:
    if isinstance(value, float):
        raise ValueError("floats are not accepted for money")
    return str(Decimal(value))


def _decimal_from_wire(value: Any) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    return Decimal(str(value))


def _enum_codec(mapping: Mapping[str, str]) -> tuple[Callable[[Any], str], Callable[[Any], str]]:
    reverse = {v: k for k, v in mapping.items()}

    def encode(value: Any) -> str:
        return mapping[getattr(value, "value", value)]

    def decode(value: Any) -> str:
        return reverse[value]

    return encode, decode


_charge_to_wire, _charge_from_wire = _enum_codec({"recurring": "RECURRING", "one_time": "ONE_TIME"})
_account_type_to_wire, _account_type_from_wire = _enum_codec({"business": "B2B", "personal": "B2C"})

_MONEY = {"to_wire": _decimal_to_wire, "from_wire": _decimal_from_wire}

SHAPES: Mapping[str, Sequence[FieldMapping]] = MappingProxyType(
    {
        "account": (
            FieldMapping("id", "accountId"),
            FieldMapping("name", "displayName"),
            FieldMapping("email", "contact.email"),
            FieldMapping(
                "account_type",
                "type",
                optional=True,
                to_wire=_account_type_to_wire,
                from_wire=_account_type_from_wire,
            ),
            FieldMapping("vat_id", "taxInfo.vatNumber", optional=True),
        ),
        "account_list": (
            FieldMapping("items", "data", item_shape="account"),
            FieldMapping("total", "meta.total", optional=True),
        ),
        "availability": (
            FieldMapping("available", "isAvailable"),
            FieldMapping("suggestion", "suggestedName", optional=True),
        ),
        "address": (
            FieldMapping("id", "addressId"),
            FieldMapping("line1", "street.line1"),
            FieldMapping("line2", "street.line2", optional=True),
            FieldMapping("city", "city"),
            FieldMapping("postal_code", "zip"),
            FieldMapping("country", "countryCode"),
        ),
        "address_list": (FieldMapping("items", "data", item_shape="address"),),
        "component": (
            FieldMapping("id", "componentId"),
            FieldMapping("kind", "chargeType", to_wire=_charge_to_wire, from_wire=_charge_from_wire),
            FieldMapping("unit_price", "price.amount", **_MONEY),
            FieldMapping("quantity", "qty"),
            FieldMapping("proration_eligible", "prorate"),
            FieldMapping("label", "description", optional=True),
        ),
        "component_list": (FieldMapping("items", "data", item_shape="component"),),
        "plan": (
            FieldMapping("account_name", "account.displayName"),
            FieldMapping("contact_email", "account.contact.email"),
            FieldMapping(
                "account_type",
                "account.type",
                to_wire=_account_type_to_wire,
                from_wire=_account_type_from_wire,
            ),
            FieldMapping("vat_id", "account.taxInfo.vatNumber", optional=True),
            FieldMapping("currency", "currency"),
            FieldMapping("components", "lineItems", item_shape="component"),
            FieldMapping("promo_code", "promotionCode", optional=True),
        ),
        "quote": (
            FieldMapping("recurring_total", "totals.recurring", **_MONEY),
            FieldMapping("one_time_total", "totals.oneTime", **_MONEY),
            FieldMapping("currency", "currency"),
        ),
        "plan_receipt": (
            FieldMapping("id", "planId"),
            FieldMapping("status", "status"),
        ),
    }
)

# Operación -> (forma de la petición, forma de la respuesta).
OPERATION_SHAPES: Mapping[str, tuple[str | None, str | None]] = MappingProxyType(
    {
        "health": (None, None),
        "components": (None, "component_list"),
        "component": (None, "component"),
        "account": (None, "account"),
        "accounts": (None, "account_list"),
        "account_name_availability": (None, "availability"),
        "address": (None, "address"),
        "addresses": (None, "address_list"),
        "account_attachment": (None, None),
        "plan_quote": ("plan", "quote"),
        "plan_create": ("plan", "plan_receipt"),
        "plan_update": ("plan", "plan_receipt"),
        "plan_delete": (None, None),
    }
)


def _get_path(data: Mapping[str, Any], path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _set_path(data: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def _leaf_paths(data: Mapping[str, Any], prefix: str = "") -> Iterator[str]:
    for key, value in data.items():
        path = f"{prefix}{key}"
        if isinstance(value, Mapping) and value:
            yield from _leaf_paths(value, prefix=f"{path}.")
        else:
            yield path


class DataTransformer:
    """Aplica las tablas de mapeo en ambas direcciones."""

    def __init__(
        self,
        shapes: Mapping[str, Sequence[FieldMapping]] | None = None,
        operation_shapes: Mapping[str, tuple[str | None, str | None]] | None = None,
    ) -> None:
        self._shapes = dict(SHAPES if shapes is None else shapes)
        self._operations = dict(OPERATION_SHAPES if operation_shapes is None else operation_shapes)

    def shapes(self) -> list[str]:
        return sorted(self._shapes)

    def _table(self, shape: str) -> Sequence[FieldMapping]:
        try:
            return self._shapes[shape]
        except KeyError:
            raise ShapeMismatchError("$", f"unsupported shape: {shape!r}") from None

    def request_shape(self, operation: str) -> str | None:
        return self._operations.get(operation, (None, None))[0]

    def response_shape(self, operation: str) -> str | None:
        return self._operations.get(operation, (None, None))[1]

    def to_wire(self, shape: str, canonical: Any, *, _prefix: str = "") -> dict[str, Any]:
        table = self._table(shape)
        if not isinstance(canonical, Mapping):
            raise ShapeMismatchError(_prefix.rstrip(".") or "$", f"expected an object for {shape!r}")

        known = [m.canonical for m in table]
        for leaf in _leaf_paths(canonical):
            if not any(leaf == path or leaf.startswith(path + ".") for path in known):
                raise ShapeMismatchError(f"{_prefix}{leaf}", f"unsupported field for {shape!r}")

        wire: dict[str, Any] = {}
        for mapping in table:
            path = f"{_prefix}{mapping.canonical}"
            value = _get_path(canonical, mapping.canonical)
            if value is _MISSING or value is None:
                if mapping.optional:
                    continue
                raise ShapeMismatchError(path, f"missing required field for {shape!r}")
            value = self._convert(
                value, mapping.item_shape, mapping.to_wire, path, self.to_wire
            )
            _set_path(wire, mapping.wire, value)
        return wire

    def from_wire(self, shape: str, wire: Any, *, _prefix: str = "") -> dict[str, Any]:
        table = self._table(shape)
        if not isinstance(wire, Mapping):
            raise ShapeMismatchError(_prefix.rstrip(".") or "$", f"expected an object for {shape!r}")

        canonical: dict[str, Any] = {}
        for mapping in table:
            path = f"{_prefix}{mapping.wire}"
            value = _get_path(wire, mapping.wire)
            if value is _MISSING or value is None:
                if mapping.optional:
                    _set_path(canonical, mapping.canonical, None)
                    continue
                raise ShapeMismatchError(path, f"backend response missing field for {shape!r}")
            value = self._convert(
                value, mapping.item_shape, mapping.from_wire, path, self.from_wire
            )
            _set_path(canonical, mapping.canonical, value)
        return canonical

    def _convert(
        self,
        value: Any,
        item_shape: str | None,
        converter: Callable[[Any], Any] | None,
        path: str,
        recurse: Callable[..., dict[str, Any]],
    ) -> Any:
        if item_shape is not None:
            if not isinstance(value, (list, tuple)):
                raise ShapeMismatchError(path, "expected a list")
            return [recurse(item_shape, item, _prefix=f"{path}[{i}].") for i, item in enumerate(value)]
        if converter is None:
            return value
        try:
            return converter(value)
        except (KeyError, ValueError, TypeError, InvalidOperation) as exc:
            raise ShapeMismatchError(path, f"unsupported value {value!r}") from exc

    def request_body(self, operation: str, canonical: Any) -> Any:
        shape = self.request_shape(operation)
        if shape is None:
            return canonical
        return self.to_wire(shape, canonical)

    def apply(self, envelope: ResponseEnvelope) -> ResponseEnvelope:
        """Rellena `data` desde `raw` según la forma de respuesta de la operación."""

        shape = self.response_shape(envelope.operation or "")
        if shape is None:
            return envelope.model_copy(update={"data": envelope.raw})
        return envelope.model_copy(update={"data": self.from_wire(shape, envelope.raw)})
