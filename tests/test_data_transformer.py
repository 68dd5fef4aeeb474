# ==============================================================================
# FILE: tests/test_data_transformer.py
# DESCRIPTION: Canonical <-> wire mapping tables
# ==============================================================================

from decimal import Decimal

import pytest

from adapters.data_transformer import OPERATION_SHAPES, DataTransformer
from core.domain.errors import ShapeMismatchError
from core.domain.models import ResponseEnvelope

COMPONENT = {
    "id": "plan-growth",
    "kind": "recurring",
    "unit_price": Decimal("49.00"),
    "quantity": 1,
    "proration_eligible": True,
    "label": "Growth plan",
}
ACCOUNT = {
    "id": "acc-1",
    "name": "Acme",
    "email": "billing@acme.test",
    "account_type": "business",
    "vat_id": "DE123456789",
}
ADDRESS = {
    "id": "addr-1",
    "line1": "Main St 1",
    "line2": "Floor 3",
    "city": "Berlin",
    "postal_code": "10115",
    "country": "DE",
}

CANONICAL_SAMPLES = {
    "account": ACCOUNT,
    "account_list": {"items": [ACCOUNT, {**ACCOUNT, "id": "acc-2", "vat_id": None}], "total": 2},
    "availability": {"available": False, "suggestion": "acme-2"},
    "address": ADDRESS,
    "address_list": {"items": [ADDRESS]},
    "component": COMPONENT,
    "component_list": {"items": [COMPONENT, {**COMPONENT, "id": "onboarding", "kind": "one_time", "label": None}]},
    "plan": {
        "account_name": "Acme",
        "contact_email": "billing@acme.test",
        "account_type": "personal",
        "currency": "USD",
        "components": [COMPONENT],
        "vat_id": None,
        "promo_code": "WELCOME10",
    },
    "quote": {"recurring_total": Decimal("44.10"), "one_time_total": Decimal("0.00"), "currency": "USD"},
    "plan_receipt": {"id": "p-1", "status": "draft"},
}


@pytest.fixture
def transformer():
    return DataTransformer()


def test_every_shape_has_a_sample(transformer):
    assert set(transformer.shapes()) == set(CANONICAL_SAMPLES)


@pytest.mark.parametrize("shape", sorted(CANONICAL_SAMPLES))
def test_round_trip(transformer, shape):
    canonical = CANONICAL_SAMPLES[shape]

    assert transformer.from_wire(shape, transformer.to_wire(shape, canonical)) == canonical


def test_component_wire_shape(transformer):
    wire = transformer.to_wire("component", COMPONENT)

    assert wire == {
        "componentId": "plan-growth",
        "chargeType": "RECURRING",
        "price": {"amount": "49.00"},
        "qty": 1,
        "prorate": True,
        "description": "Growth plan",
    }


def test_nested_plan_wire_shape(transformer):
    wire = transformer.to_wire("plan", CANONICAL_SAMPLES["plan"])

    assert wire["account"] == {
        "displayName": "Acme",
        "contact": {"email": "billing@acme.test"},
        "type": "B2C",
    }
    assert wire["lineItems"][0]["componentId"] == "plan-growth"
    assert wire["promotionCode"] == "WELCOME10"


def test_missing_wire_field_names_path(transformer):
    wire = transformer.to_wire("account", ACCOUNT)
    del wire["contact"]["email"]

    with pytest.raises(ShapeMismatchError) as excinfo:
        transformer.from_wire("account", wire)

    assert excinfo.value.field_path == "contact.email"


def test_missing_field_inside_list_names_index(transformer):
    wire = transformer.to_wire("component_list", CANONICAL_SAMPLES["component_list"] | {"items": [COMPONENT]})
    del wire["data"][0]["price"]

    with pytest.raises(ShapeMismatchError) as excinfo:
        transformer.from_wire("component_list", wire)

    assert excinfo.value.field_path == "data[0].price.amount"


def test_unsupported_canonical_field_is_rejected(transformer):
    with pytest.raises(ShapeMismatchError) as excinfo:
        transformer.to_wire("component", {**COMPONENT, "discount": "5"})

    assert excinfo.value.field_path == "discount"


def test_missing_required_canonical_field(transformer):
    canonical = dict(COMPONENT)
    del canonical["unit_price"]

    with pytest.raises(ShapeMismatchError) as excinfo:
        transformer.to_wire("component", canonical)

    assert excinfo.value.field_path == "unit_price"


def test_unknown_enum_value_is_a_shape_mismatch(transformer):
    wire = transformer.to_wire("component", COMPONENT)
    wire["chargeType"] = "USAGE"

    with pytest.raises(ShapeMismatchError) as excinfo:
        transformer.from_wire("component", wire)

    assert excinfo.value.field_path == "chargeType"


def test_new_backend_fields_are_ignored(transformer):
    wire = transformer.to_wire("plan_receipt", {"id": "p-1", "status": "active"})
    wire["createdBy"] = "system"

    assert transformer.from_wire("plan_receipt", wire) == {"id": "p-1", "status": "active"}


def test_floats_are_rejected_for_money(transformer):
    with pytest.raises(ShapeMismatchError):
        transformer.to_wire("component", {**COMPONENT, "unit_price": 49.0})


def test_apply_fills_data_and_keeps_raw(transformer):
    raw = {"isAvailable": True}
    envelope = transformer.apply(ResponseEnvelope(status=200, raw=raw, operation="account_name_availability"))

    assert envelope.data == {"available": True, "suggestion": None}
    assert envelope.raw == raw


def test_apply_passes_through_untyped_operations(transformer):
    envelope = transformer.apply(ResponseEnvelope(status=200, raw={"status": "ok"}, operation="health"))

    assert envelope.data == {"status": "ok"}


def test_apply_empty_body_for_typed_operation(transformer):
    with pytest.raises(ShapeMismatchError):
        transformer.apply(ResponseEnvelope(status=200, raw=None, operation="account"))


def test_request_body_uses_operation_request_shape(transformer):
    body = transformer.request_body("plan_quote", CANONICAL_SAMPLES["plan"])

    assert body["currency"] == "USD"
    assert "lineItems" in body
    assert transformer.request_body("account_attachment", {"file": b"x"}) == {"file": b"x"}


def test_every_operation_shape_exists(transformer):
    known = set(transformer.shapes())
    for request_shape, response_shape in OPERATION_SHAPES.values():
        assert request_shape is None or request_shape in known
        assert response_shape is None or response_shape in known


def test_optional_none_survives_round_trip(transformer):
    canonical = {**ACCOUNT, "vat_id": None}

    wire = transformer.to_wire("account", canonical)

    assert "taxInfo" not in wire
    assert transformer.from_wire("account", wire) == canonical


def test_absent_optional_comes_back_as_none(transformer):
    wire = {"componentId": "x", "chargeType": "ONE_TIME", "price": {"amount": "1"}, "qty": 1, "prorate": False}

    assert transformer.from_wire("component", wire)["label"] is None
