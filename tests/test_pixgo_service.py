import json
from decimal import Decimal

import httpx
import pytest

from pixcheckout.exceptions import ConfigurationError, ProviderError, TransientNetworkError
from pixcheckout.pixgo_service import ChargeRequest, PixGoClient

BASE = "https://pixgo.test/api/v1"


def make_client(handler):
    return PixGoClient(BASE, timeout=1, transport=httpx.MockTransport(handler))


def charge_request(**overrides):
    fields = dict(
        amount=Decimal("25.50"),
        description="Produto X",
        payer_name="Maria Silva",
        payer_tax_id="12345678909",
        payer_email="maria@example.com",
        payer_phone=None,
        external_reference="intent-1",
    )
    fields.update(overrides)
    return ChargeRequest(**fields)


def test_create_charge_success():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["key"] = request.headers["X-API-Key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "success": True,
            "data": {"payment_id": "pay_1", "qr_code": "00020126...", "status": "pending"},
        })

    charge = make_client(handler).create_charge("key-1", charge_request())

    assert charge.payment_id == "pay_1"
    assert charge.qr_payload == "00020126..."
    assert seen["url"] == f"{BASE}/payment/create"
    assert seen["key"] == "key-1"
    assert seen["body"] == {
        "amount": 25.5,
        "description": "Produto X",
        "customer_name": "Maria Silva",
        "customer_cpf": "12345678909",
        "customer_email": "maria@example.com",
        "external_id": "intent-1",
    }


def test_create_charge_sends_phone_when_given():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True, "data": {"payment_id": "p", "qr_code": "q"}})

    make_client(handler).create_charge("key", charge_request(payer_phone="11999990000"))

    assert bodies[0]["customer_phone"] == "11999990000"


def test_create_charge_rejected_by_provider():
    def handler(request):
        return httpx.Response(400, json={"success": False, "message": "CPF inválido"})

    with pytest.raises(ProviderError) as exc:
        make_client(handler).create_charge("key", charge_request(payer_tax_id="123"))

    assert exc.value.message == "CPF inválido"


def test_create_charge_success_false_with_200():
    def handler(request):
        return httpx.Response(200, json={"success": False, "message": "Valor mínimo não atingido"})

    with pytest.raises(ProviderError, match="Valor mínimo"):
        make_client(handler).create_charge("key", charge_request())


def test_create_charge_incomplete_response():
    def handler(request):
        return httpx.Response(200, json={"success": True, "data": {"payment_id": "p"}})

    with pytest.raises(ProviderError):
        make_client(handler).create_charge("key", charge_request())


def test_network_failure_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientNetworkError):
        make_client(handler).create_charge("key", charge_request())


def test_server_error_is_transient():
    def handler(request):
        return httpx.Response(502, text="bad gateway")

    with pytest.raises(TransientNetworkError):
        make_client(handler).get_status("key", "pay_1")


def test_missing_api_key_fails_before_network():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"success": True, "data": {}})

    client = make_client(handler)
    with pytest.raises(ConfigurationError):
        client.create_charge("", charge_request())
    with pytest.raises(ConfigurationError):
        client.get_status(None, "pay_1")

    assert calls == []


def test_get_status():
    def handler(request):
        assert request.url.path == "/api/v1/payment/pay_9/status"
        return httpx.Response(200, json={"success": True, "data": {"status": "COMPLETED"}})

    assert make_client(handler).get_status("key", "pay_9") == "completed"


def test_get_status_unsuccessful():
    def handler(request):
        return httpx.Response(200, json={"success": False})

    with pytest.raises(ProviderError):
        make_client(handler).get_status("key", "pay_9")


def test_create_charge_with_malformed_data_is_transient():
    def handler(request):
        return httpx.Response(200, json={"success": True, "data": "oops"})

    with pytest.raises(TransientNetworkError):
        make_client(handler).create_charge("key", charge_request())


def test_get_status_with_malformed_data_is_transient():
    def handler(request):
        return httpx.Response(200, json={"success": True, "data": ["completed"]})

    with pytest.raises(TransientNetworkError):
        make_client(handler).get_status("key", "pay_9")
