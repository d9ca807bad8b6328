"""
Tests for the MercadoPago REST client using httpx.MockTransport.
"""
import json

import httpx
import pytest

from marketplace_billing.services.mercadopago_client import MercadoPagoClient, MercadoPagoError


def make_client(handler):
    return MercadoPagoClient(base_url="https://api.mercadopago.test", transport=httpx.MockTransport(handler))


def test_get_payment_sends_bearer_token():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["path"] = request.url.path
        return httpx.Response(200, json={"id": 123, "status": "approved"})

    with make_client(handler) as client:
        payment = client.get_payment(123, "APP_USR-token")

    assert payment["status"] == "approved"
    assert seen == {"auth": "Bearer APP_USR-token", "path": "/v1/payments/123"}


def test_create_and_cancel_preapproval():
    requests = []

    def handler(request):
        requests.append((request.method, request.url.path, json.loads(request.content or b"{}")))
        if request.method == "POST":
            return httpx.Response(201, json={"id": "pre1", "status": "pending", "init_point": "https://mp/checkout"})
        return httpx.Response(200, json={"id": "pre1", "status": "cancelled"})

    with make_client(handler) as client:
        created = client.create_preapproval({"reason": "Plan"}, "tok")
        cancelled = client.cancel_preapproval("pre1", "tok")

    assert created["init_point"] == "https://mp/checkout"
    assert cancelled["status"] == "cancelled"
    assert requests == [
        ("POST", "/preapproval", {"reason": "Plan"}),
        ("PUT", "/preapproval/pre1", {"status": "cancelled"}),
    ]


def test_preapproval_plan_endpoints():
    requests = []

    def handler(request):
        requests.append((request.method, request.url.path))
        return httpx.Response(200, json={"id": "plan1", "status": "active"})

    with make_client(handler) as client:
        client.create_preapproval_plan({"reason": "Subscription: Basic"}, "APP_USR-token")
        client.get_preapproval_plan("plan1", "APP_USR-token")
        client.update_preapproval_plan("plan1", {"reason": "Subscription: Basic"}, "APP_USR-token")

    assert requests == [
        ("POST", "/preapproval_plan"),
        ("GET", "/preapproval_plan/plan1"),
        ("PUT", "/preapproval_plan/plan1"),
    ]


def test_http_error_is_raised_with_status():
    def handler(request):
        return httpx.Response(404, json={"message": "not found"})

    with make_client(handler) as client:
        with pytest.raises(MercadoPagoError) as exc_info:
            client.get_preapproval("missing", "tok")

    assert exc_info.value.status_code == 404
    assert not exc_info.value.is_transient


def test_server_error_and_timeout_are_transient():
    def server_error(request):
        return httpx.Response(503, text="unavailable")

    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with make_client(server_error) as client:
        with pytest.raises(MercadoPagoError) as exc_info:
            client.get_payment(1, "tok")
    assert exc_info.value.is_transient

    with make_client(timeout) as client:
        with pytest.raises(MercadoPagoError) as exc_info:
            client.get_payment(1, "tok")
    assert exc_info.value.status_code is None
    assert exc_info.value.is_transient


def test_missing_token_fails_without_request():
    def handler(request):
        raise AssertionError("no request expected")

    with make_client(handler) as client:
        with pytest.raises(MercadoPagoError):
            client.get_payment(1, None)
