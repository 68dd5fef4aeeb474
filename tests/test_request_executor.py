# ==============================================================================
# FILE: tests/test_request_executor.py
# DESCRIPTION: Auth, body encoding, retries, error normalization, race guard
# ==============================================================================

import asyncio
import json

import httpx
import pytest

from adapters.request_executor import ExecutorHooks, encode_body
from core.domain.errors import (
    BackendError,
    NetworkError,
    ShapeMismatchError,
    StaleResultError,
    UnauthenticatedError,
    UnparsedBackendError,
)
from core.domain.models import ErrorKind

pytestmark = pytest.mark.asyncio


def json_response(status, payload):
    return httpx.Response(status, json=payload)


async def test_injects_bearer_token(registry, make_executor):
    seen = []

    def handler(request):
        seen.append(request)
        return json_response(200, {"accountId": "1"})

    executor = make_executor(handler)
    envelope = await executor.execute(registry.resolve("account", {"id": "1"}), auth_token="tok-123")

    assert seen[0].headers["Authorization"] == "Bearer tok-123"
    assert envelope.status == 200
    assert envelope.raw == {"accountId": "1"}
    assert envelope.data is None
    assert envelope.sequence == 1


async def test_query_parameters_are_sent(registry, make_executor):
    seen = []

    def handler(request):
        seen.append(request)
        return json_response(200, {"data": []})

    executor = make_executor(handler)
    await executor.execute(registry.resolve("accounts", {"limit": 25}), auth_token="t")

    assert seen[0].url.params["limit"] == "25"
    assert seen[0].url.params["sort"] == "name"


async def test_public_operation_needs_no_token(registry, make_executor):
    seen = []

    def handler(request):
        seen.append(request)
        return json_response(200, {"data": []})

    executor = make_executor(handler)
    await executor.execute(registry.resolve("components"), auth_token=None)

    assert "Authorization" not in seen[0].headers


async def test_missing_token_on_private_operation_does_no_io(registry, make_executor):
    calls = []
    executor = make_executor(lambda request: calls.append(request) or json_response(200, {}))

    with pytest.raises(UnauthenticatedError) as excinfo:
        await executor.execute(registry.resolve("account", {"id": "1"}), auth_token=None)

    assert calls == []
    assert excinfo.value.envelope.kind is ErrorKind.UNAUTHENTICATED


async def test_structured_body_is_sent_as_json(registry, make_executor):
    seen = []

    def handler(request):
        seen.append(request)
        return json_response(201, {"planId": "p1", "status": "draft"})

    executor = make_executor(handler)
    await executor.execute(registry.resolve("plan_create"), auth_token="t", body={"currency": "USD"})

    assert seen[0].headers["content-type"] == "application/json"
    assert json.loads(seen[0].read()) == {"currency": "USD"}


async def test_binary_body_switches_to_multipart(registry, make_executor):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(204)

    executor = make_executor(handler)
    envelope = await executor.execute(
        registry.resolve("account_attachment", {"id": "a1"}),
        auth_token="t",
        body={"file": b"%PDF-1.7", "kind": "contract"},
    )

    content_type = seen[0].headers["content-type"]
    body = seen[0].read()
    assert content_type.startswith("multipart/form-data")
    assert b"%PDF-1.7" in body
    assert b"contract" in body
    assert envelope.status == 204
    assert envelope.raw is None


async def test_encode_body_variants():
    assert encode_body(None) == {}
    assert encode_body({"a": 1}) == {"json": {"a": 1}}
    encoded = encode_body({"doc": bytearray(b"x"), "n": 2, "flag": True, "skip": None})
    assert encoded == {"files": {"doc": b"x"}, "data": {"n": "2", "flag": "true"}}
    assert encode_body(b"raw") == {"files": {"file": b"raw"}, "data": {}}


async def test_get_is_retried_with_exponential_backoff(registry, make_executor, sleeps):
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return json_response(200, {"accountId": "1"})

    executor = make_executor(handler)
    envelope = await executor.execute(registry.resolve("account", {"id": "1"}), auth_token="t")

    assert envelope.status == 200
    assert len(attempts) == 3
    assert sleeps.delays == [0.5, 1.0]


async def test_get_exhausts_retries_then_raises_network_error(registry, make_executor, sleeps):
    attempts = []

    def handler(request):
        attempts.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    executor = make_executor(handler)
    with pytest.raises(NetworkError) as excinfo:
        await executor.execute(registry.resolve("account", {"id": "1"}), auth_token="t")

    assert len(attempts) == 3
    assert excinfo.value.reason == "timeout"
    assert excinfo.value.attempts == 3
    assert excinfo.value.envelope.kind is ErrorKind.NETWORK


@pytest.mark.parametrize("operation,params", [
    ("plan_create", {}),
    ("plan_update", {"id": "p1"}),
    ("plan_delete", {"id": "p1"}),
])
async def test_non_idempotent_methods_are_never_retried(registry, make_executor, sleeps, operation, params):
    attempts = []

    def handler(request):
        attempts.append(request)
        raise httpx.ConnectError("boom", request=request)

    executor = make_executor(handler)
    with pytest.raises(NetworkError):
        await executor.execute(registry.resolve(operation, params), auth_token="t", body={"x": "1"})

    assert len(attempts) == 1
    assert sleeps.delays == []


async def test_backoff_is_capped(settings, registry, make_executor, sleeps):
    settings.http_max_retries = 5
    settings.http_backoff_max_seconds = 2.0

    def handler(request):
        raise httpx.ConnectError("down", request=request)

    executor = make_executor(handler)
    with pytest.raises(NetworkError):
        await executor.execute(registry.resolve("components"))

    assert sleeps.delays == [0.5, 1.0, 2.0, 2.0, 2.0]


async def test_message_error_shape(registry, make_executor):
    executor = make_executor(lambda request: json_response(404, {"message": "Account not found", "code": "E404"}))

    with pytest.raises(BackendError) as excinfo:
        await executor.execute(registry.resolve("account", {"id": "x"}), auth_token="t")

    envelope = excinfo.value.envelope
    assert envelope.kind is ErrorKind.BACKEND
    assert envelope.message == "Account not found"
    assert envelope.backend_detail == "E404"
    assert envelope.status == 404


async def test_nested_error_details_shape(registry, make_executor):
    executor = make_executor(lambda request: json_response(409, {"error": {"details": "Name already in use"}}))

    with pytest.raises(BackendError) as excinfo:
        await executor.execute(registry.resolve("plan_create"), auth_token="t", body={})

    assert excinfo.value.envelope.message == "Name already in use"
    assert excinfo.value.status == 409


async def test_unrecognized_error_shape_keeps_raw_payload(registry, make_executor):
    payload = {"errors": [{"msg": "bad"}]}
    executor = make_executor(lambda request: json_response(500, payload))

    with pytest.raises(UnparsedBackendError) as excinfo:
        await executor.execute(registry.resolve("account", {"id": "1"}), auth_token="t")

    assert excinfo.value.envelope.kind is ErrorKind.UNPARSED
    assert excinfo.value.envelope.raw == payload


async def test_error_responses_are_not_retried(registry, make_executor, sleeps):
    attempts = []

    def handler(request):
        attempts.append(request)
        return json_response(503, {"message": "maintenance"})

    executor = make_executor(handler)
    with pytest.raises(BackendError):
        await executor.execute(registry.resolve("components"))

    assert len(attempts) == 1


async def test_custom_error_extractor_is_pluggable(registry, make_executor):
    executor = make_executor(lambda request: json_response(422, {"errors": [{"msg": "bad tier"}]}))

    def list_shape(payload):
        if isinstance(payload, dict) and isinstance(payload.get("errors"), list) and payload["errors"]:
            return payload["errors"][0]["msg"], None
        return None

    executor.add_error_extractor(list_shape)
    with pytest.raises(BackendError) as excinfo:
        await executor.execute(registry.resolve("plan_quote"), auth_token="t", body={})

    assert not isinstance(excinfo.value, UnparsedBackendError)
    assert excinfo.value.envelope.message == "bad tier"


async def test_invalid_json_success_is_a_shape_mismatch(registry, make_executor):
    executor = make_executor(
        lambda request: httpx.Response(200, content=b"{not json", headers={"content-type": "application/json"})
    )

    with pytest.raises(ShapeMismatchError) as excinfo:
        await executor.execute(registry.resolve("components"))

    assert excinfo.value.field_path == "$"
    assert excinfo.value.envelope.kind is ErrorKind.SHAPE_MISMATCH


async def test_hooks_receive_structured_events(registry, make_executor):
    before, after = [], []
    hooks = ExecutorHooks(before_request=before.append, after_response=after.append)
    executor = make_executor(lambda request: json_response(200, {"data": []}), hooks=hooks)

    await executor.execute(registry.resolve("components"))

    assert [(e.operation, e.method, e.attempt) for e in before] == [("components", "GET", 1)]
    assert after[0].status == 200
    assert after[0].error is None
    assert after[0].elapsed_seconds >= 0


async def test_hooks_see_network_failures(registry, make_executor):
    after = []

    def handler(request):
        raise httpx.ConnectError("down", request=request)

    executor = make_executor(handler, hooks=ExecutorHooks(after_response=after.append))
    with pytest.raises(NetworkError):
        await executor.execute(registry.resolve("components"))

    assert [e.attempt for e in after] == [1, 2, 3]
    assert all(e.status is None and e.error.kind is ErrorKind.NETWORK for e in after)


async def test_superseded_call_result_is_discarded(registry, make_executor):
    release_first = asyncio.Event()
    calls = []

    async def handler(request):
        calls.append(request)
        index = len(calls)
        if index == 1:
            await release_first.wait()
            return json_response(200, {"accountId": "1", "displayName": "old"})
        return json_response(200, {"accountId": "1", "displayName": "new"})

    executor = make_executor(handler)
    descriptor = registry.resolve("account", {"id": "1"})

    first = asyncio.create_task(executor.execute(descriptor, auth_token="t"))
    while not calls:
        await asyncio.sleep(0)
    second = await executor.execute(descriptor, auth_token="t")
    release_first.set()

    assert second.raw["displayName"] == "new"
    assert second.sequence == 2
    with pytest.raises(StaleResultError) as excinfo:
        await first
    assert excinfo.value.sequence == 1


async def test_superseded_failure_is_also_discarded(registry, make_executor):
    release_first = asyncio.Event()
    calls = []

    async def handler(request):
        calls.append(request)
        if len(calls) == 1:
            await release_first.wait()
            return json_response(500, {"message": "old failure"})
        return json_response(200, {"data": []})

    executor = make_executor(handler)
    descriptor = registry.resolve("components")

    first = asyncio.create_task(executor.execute(descriptor))
    while not calls:
        await asyncio.sleep(0)
    await executor.execute(descriptor)
    release_first.set()

    with pytest.raises(StaleResultError):
        await first


async def test_different_slots_do_not_interfere(registry, make_executor):
    executor = make_executor(lambda request: json_response(200, {"ok": True}))

    a = await executor.execute(registry.resolve("account", {"id": "1"}), auth_token="t")
    b = await executor.execute(registry.resolve("account", {"id": "2"}), auth_token="t")

    assert a.sequence == 1
    assert b.sequence == 1


async def test_ticket_must_match_slot(registry, make_executor):
    executor = make_executor(lambda request: json_response(200, {}))
    ticket = executor.issue("other-slot")

    with pytest.raises(ValueError):
        await executor.execute(registry.resolve("components"), ticket=ticket)


async def test_non_json_success_keeps_bytes(registry, make_executor):
    executor = make_executor(
        lambda request: httpx.Response(200, content=b"\x00\x01", headers={"content-type": "application/octet-stream"})
    )

    envelope = await executor.execute(registry.resolve("components"))

    assert envelope.raw == b"\x00\x01"
