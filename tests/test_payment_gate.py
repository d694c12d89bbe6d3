import base64
import json
from decimal import Decimal

import httpx
import pytest

from conftest import RecordingTransport
from payment_gate import (
    PaymentContext,
    PaymentGate,
    build_requirements,
    decode_payment_header,
    to_atomic_units,
)
from pricing import PaymentMethod

FACILITATOR = "https://facilitator.example.test"
RECIPIENT = "0x4C3B0B1Cab290300bd5A36AD5f33A607acbD7ac3"
RESOURCE = "https://api.example.test/api/v1/evm/chains"

PAYLOAD = {
    "x402Version": 1,
    "scheme": "exact",
    "network": "base",
    "payload": {"signature": "0xsig", "authorization": {"from": "0xBuyer"}},
}
HEADER = base64.b64encode(json.dumps(PAYLOAD).encode()).decode()


def _context(header=HEADER, method="usdc-base-mainnet"):
    return PaymentContext(
        facilitator_url=FACILITATOR,
        payment_header=header,
        resource=RESOURCE,
        payment_method=method,
    )


def _facilitator(verify=None, settle=None, verify_status=200, settle_status=200):
    verify = verify if verify is not None else {"isValid": True, "payer": "0xBuyer"}
    settle = settle if settle is not None else {"success": True, "transaction": "0xtx", "network": "base"}

    def handler(request):
        if request.url.path.endswith("/verify"):
            return httpx.Response(verify_status, json=verify)
        if request.url.path.endswith("/settle"):
            return httpx.Response(settle_status, json=settle)
        return httpx.Response(404)

    return RecordingTransport(handler)


def test_to_atomic_units():
    assert to_atomic_units(Decimal("0.03")) == "30000"
    assert to_atomic_units(Decimal("1")) == "1000000"


def test_decode_payment_header_accepts_base64_and_raw_json():
    assert decode_payment_header(HEADER) == PAYLOAD
    assert decode_payment_header(json.dumps(PAYLOAD)) == PAYLOAD


def test_decode_payment_header_rejects_garbage():
    with pytest.raises(ValueError):
        decode_payment_header("definitely not a payment")


def test_requirements_bind_resource_amount_and_network():
    req = build_requirements(Decimal("0.03"), RECIPIENT, RESOURCE, PaymentMethod.USDC_BASE_SEPOLIA)

    assert req["maxAmountRequired"] == "30000"
    assert req["resource"] == RESOURCE
    assert req["payTo"] == RECIPIENT
    assert req["network"] == "base-sepolia"
    assert req["asset"] == "0x036CbD53842c5426634e7929541eC2318f3dCF7e"


@pytest.mark.asyncio
async def test_verify_then_settle_success():
    transport = _facilitator()
    gate = PaymentGate(transport=transport)

    verdict = await gate.verify_and_settle(Decimal("0.03"), RECIPIENT, _context())

    assert verdict.success
    assert verdict.transaction == "0xtx"
    assert verdict.network == "base"
    assert [r.url.path for r in transport.requests] == ["/verify", "/settle"]
    body = json.loads(transport.requests[0].content)
    assert body["paymentPayload"] == PAYLOAD
    assert body["paymentRequirements"]["resource"] == RESOURCE
    assert body["paymentRequirements"]["maxAmountRequired"] == "30000"


@pytest.mark.asyncio
async def test_invalid_payment_is_not_settled():
    transport = _facilitator(verify={"isValid": False, "invalidReason": "insufficient_funds"})
    gate = PaymentGate(transport=transport)

    verdict = await gate.verify_and_settle(Decimal("0.03"), RECIPIENT, _context())

    assert not verdict.success
    assert verdict.error == "insufficient_funds"
    assert verdict.message
    assert [r.url.path for r in transport.requests] == ["/verify"]


@pytest.mark.asyncio
async def test_settlement_failure_is_reported():
    transport = _facilitator(settle={"success": False, "errorReason": "invalid_transaction_state"})

    verdict = await PaymentGate(transport=transport).verify_and_settle(Decimal("0.03"), RECIPIENT, _context())

    assert not verdict.success
    assert verdict.error == "invalid_transaction_state"


@pytest.mark.asyncio
async def test_facilitator_http_error_becomes_failed_verdict():
    transport = _facilitator(verify_status=500, verify={"error": "boom"})

    verdict = await PaymentGate(transport=transport).verify_and_settle(Decimal("0.03"), RECIPIENT, _context())

    assert not verdict.success
    assert "500" in verdict.error
    assert "boom" in verdict.message


@pytest.mark.asyncio
async def test_unreachable_facilitator_becomes_failed_verdict():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    gate = PaymentGate(transport=httpx.MockTransport(handler))
    verdict = await gate.verify_and_settle(Decimal("0.03"), RECIPIENT, _context())

    assert not verdict.success
    assert "unreachable" in verdict.error


@pytest.mark.asyncio
async def test_facilitator_timeout_becomes_failed_verdict():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    gate = PaymentGate(transport=httpx.MockTransport(handler))
    verdict = await gate.verify_and_settle(Decimal("0.03"), RECIPIENT, _context())

    assert not verdict.success
    assert verdict.error == "x402 facilitator timeout"


@pytest.mark.asyncio
@pytest.mark.parametrize("header, method, expected", [
    ("", "usdc-base-mainnet", "Missing payment header"),
    (HEADER, "btc-lightning", "Unsupported payment method: btc-lightning"),
    ("%%%not-json%%%", "usdc-base-mainnet", "Cannot decode payment header"),
    (base64.b64encode(b"[" * 200000).decode(), "usdc-base-mainnet", "Cannot decode payment header"),
])
async def test_bad_input_never_reaches_facilitator(header, method, expected):
    transport = _facilitator()

    verdict = await PaymentGate(transport=transport).verify_and_settle(
        Decimal("0.03"), RECIPIENT, _context(header=header, method=method),
    )

    assert not verdict.success
    assert verdict.error == expected
    assert transport.requests == []


@pytest.mark.asyncio
async def test_test_mode_accepts_without_facilitator():
    transport = _facilitator()
    gate = PaymentGate(test_mode=True, transport=transport)

    verdict = await gate.verify_and_settle(Decimal("0.03"), RECIPIENT, _context(header="anything"))

    assert verdict.success
    assert verdict.network == "base"
    assert transport.requests == []


@pytest.mark.asyncio
async def test_test_mode_still_requires_a_header():
    verdict = await PaymentGate(test_mode=True).verify_and_settle(
        Decimal("0.03"), RECIPIENT, _context(header=""),
    )

    assert not verdict.success
