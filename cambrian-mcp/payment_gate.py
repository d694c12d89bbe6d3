"""
x402 payment verification and settlement.

The gate sends a caller's signed payment header to an x402 facilitator:
``/verify`` first, then ``/settle``. Whatever happens (rejection, HTTP error,
timeout, garbage response) the result is a :class:`PaymentVerdict`; nothing
raises past :meth:`PaymentGate.verify_and_settle`.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from coinbase_jwt import cdp_auth_headers
from logging_utils import log_json
from pricing import PaymentMethod

logger = logging.getLogger("cambrian-mcp.payments")

FACILITATOR_TIMEOUT = 30.0
USDC_DECIMALS = 6

# Network-aware USDC contract and EIP-712 domain, keyed by payment method.
NETWORKS: dict[PaymentMethod, dict[str, Any]] = {
    PaymentMethod.USDC_BASE_MAINNET: {
        "network": "base",
        "asset": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        "extra": {"name": "USD Coin", "version": "2"},
    },
    PaymentMethod.USDC_BASE_SEPOLIA: {
        "network": "base-sepolia",
        "asset": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        "extra": {"name": "USDC", "version": "2"},
    },
}


class PaymentContext(BaseModel):
    facilitator_url: str
    payment_header: str
    resource: str
    payment_method: str


class PaymentVerdict(BaseModel):
    """Outcome of a verify + settle round trip."""

    success: bool
    error: Optional[str] = None
    message: Optional[str] = None
    transaction: Optional[str] = None
    network: Optional[str] = None


def to_atomic_units(amount: Decimal) -> str:
    """USDC amount to its 6-decimal integer string (0.03 -> "30000")."""
    return str(int((Decimal(amount) * (10 ** USDC_DECIMALS)).to_integral_value()))


def decode_payment_header(payment_header: str) -> dict[str, Any]:
    """Decode an X-PAYMENT header: base64 JSON, or raw JSON.

    Raises:
        ValueError: if neither encoding yields a JSON object.
        RecursionError: if the JSON nests deeper than the decoder allows.
    """
    try:
        payload = json.loads(base64.b64decode(payment_header, validate=True))
    except (binascii.Error, ValueError):
        payload = json.loads(payment_header)
    if not isinstance(payload, dict):
        raise ValueError("Payment payload must be a JSON object")
    return payload


def build_requirements(
    amount: Decimal,
    recipient: str,
    resource: str,
    method: PaymentMethod,
) -> dict[str, Any]:
    network = NETWORKS[method]
    return {
        "scheme": "exact",
        "network": network["network"],
        "maxAmountRequired": to_atomic_units(amount),
        "resource": resource,
        "description": f"Access to {resource}",
        "mimeType": "application/json",
        "payTo": recipient,
        "maxTimeoutSeconds": 300,
        "asset": network["asset"],
        "extra": network["extra"],
    }


class PaymentGate:
    """Client for an x402 facilitator.

    Args:
        test_mode: accept any non-empty header without contacting the
            facilitator. Development only.
        cdp_api_key_id / cdp_api_key_secret: credentials for the CDP-hosted
            facilitator; ignored for other hosts.
        transport: optional httpx transport, used by tests.
    """

    def __init__(
        self,
        *,
        test_mode: bool = False,
        cdp_api_key_id: str = "",
        cdp_api_key_secret: str = "",
        timeout: float = FACILITATOR_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.test_mode = test_mode
        self._cdp_key_id = cdp_api_key_id
        self._cdp_key_secret = cdp_api_key_secret
        self._timeout = timeout
        self._transport = transport

    async def verify_and_settle(
        self,
        amount: Decimal,
        recipient: str,
        context: PaymentContext,
    ) -> PaymentVerdict:
        if not context.payment_header:
            return PaymentVerdict(success=False, error="Missing payment header")

        try:
            method = PaymentMethod(context.payment_method)
        except ValueError:
            return PaymentVerdict(
                success=False,
                error=f"Unsupported payment method: {context.payment_method}",
            )

        if self.test_mode:
            logger.warning("x402 test mode: accepting payment without verification")
            return PaymentVerdict(
                success=True,
                message="Test mode: payment not verified",
                transaction="test-mode-no-tx",
                network=NETWORKS[method]["network"],
            )

        try:
            payload = decode_payment_header(context.payment_header)
        except (ValueError, RecursionError):
            return PaymentVerdict(success=False, error="Cannot decode payment header")

        requirements = build_requirements(amount, recipient, context.resource, method)
        body = {
            "x402Version": payload.get("x402Version", 1),
            "paymentPayload": payload,
            "paymentRequirements": requirements,
        }
        log_json(logger, logging.DEBUG, "Facilitator request", body)

        base_url = context.facilitator_url.rstrip("/")
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, follow_redirects=True, transport=self._transport,
            ) as client:
                verified = await self._post(client, f"{base_url}/verify", body)
                if not verified.get("isValid", False):
                    reason = verified.get("invalidReason") or "Payment verification failed"
                    logger.info("x402 payment rejected: %s", reason)
                    return PaymentVerdict(
                        success=False,
                        error=reason,
                        message="Payment verification failed",
                    )

                settled = await self._post(client, f"{base_url}/settle", body)
        except httpx.TimeoutException:
            logger.warning("x402 facilitator timeout (%s)", base_url)
            return PaymentVerdict(success=False, error="x402 facilitator timeout")
        except _FacilitatorError as e:
            logger.warning("x402 facilitator call failed: %s", e)
            return PaymentVerdict(success=False, error=str(e), message=e.body)
        except httpx.HTTPError as e:
            logger.warning("x402 facilitator unreachable: %s", e)
            return PaymentVerdict(success=False, error=f"Facilitator unreachable: {e}")
        except Exception as e:
            logger.exception("x402 verification failed")
            return PaymentVerdict(success=False, error=f"Verification error: {e}")

        if not settled.get("success", False):
            reason = settled.get("errorReason") or settled.get("error") or "Settlement failed"
            return PaymentVerdict(success=False, error=reason, message="Payment settlement failed")

        tx_hash = settled.get("transaction") or settled.get("txHash") or ""
        logger.info("x402 payment settled: tx=%s amount=%s resource=%s", tx_hash, amount, context.resource)
        return PaymentVerdict(
            success=True,
            message="Payment settled",
            transaction=str(tx_hash),
            network=settled.get("network") or requirements["network"],
        )

    async def _post(self, client: httpx.AsyncClient, url: str, body: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        auth = cdp_auth_headers(url, self._cdp_key_id, self._cdp_key_secret)
        if auth:
            headers.update(auth)

        resp = await client.post(url, json=body, headers=headers)
        if resp.status_code != 200:
            raise _FacilitatorError(
                f"Facilitator {url.rsplit('/', 1)[-1]} failed ({resp.status_code})",
                resp.text[:200],
            )
        try:
            data = resp.json()
        except ValueError:
            raise _FacilitatorError("Facilitator returned invalid JSON", resp.text[:200])
        if not isinstance(data, dict):
            raise _FacilitatorError(
                f"Unexpected facilitator response type: {type(data).__name__}", None,
            )
        return data


class _FacilitatorError(Exception):
    def __init__(self, message: str, body: Optional[str]):
        super().__init__(message)
        self.body = body
