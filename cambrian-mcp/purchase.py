"""
Purchase Orchestration
======================
Resolve a catalog item, take payment through the x402 gate, then proxy the
call to the Cambrian API.

Every attempt ends in a :class:`PurchaseResult`; the ``toolResult`` string is
the only place success or failure is reported:

  - ``"Invalid endpoint ID"``                     unknown item, no payment taken
  - ``"Payment failed: <reason>"``                gate refused, no upstream call
  - ``{"success": true, "data": ...}``            upstream answered
  - ``{"success": true, "paymentSuccess": true, "error": ...}``
                                                  paid, upstream failed (no refund)
  - ``{"success": false, "error": ..., "details": ...}``
                                                  unexpected internal fault
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Optional, Union
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, Field

from catalog import Catalog, Operation
from logging_utils import log_json
from payment_gate import PaymentContext, PaymentGate
from pricing import ITEM_PRICE

logger = logging.getLogger("cambrian-mcp.purchase")

UPSTREAM_TIMEOUT = 30.0

# The fee-ranges endpoint historically defaulted to a one-week window.
FEE_RANGES_ITEM_ID = "solanapoolsfeeranges"
FEE_RANGES_DEFAULT_DAYS = "7"

Scalar = Union[str, int, float, bool, None]


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class PurchaseRequest(BaseModel):
    itemId: str
    paymentMethod: str
    signedTransaction: str = Field(description="x402 payment header signed by the buyer")
    params: Optional[dict[str, Scalar]] = None


class PurchaseResult(BaseModel):
    purchasableItemId: str
    makePurchaseRequest: PurchaseRequest
    orderId: str
    toolResult: str


def _query_value(value: Scalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_upstream_url(base_url: str, operation: Operation, params: Optional[dict[str, Scalar]]) -> str:
    """Base URL + path, with caller params as a query string (None values skipped)."""
    values = {key: value for key, value in (params or {}).items() if value is not None}
    if operation.id == FEE_RANGES_ITEM_ID and values.get("timeframeDays") in (None, ""):
        values["timeframeDays"] = FEE_RANGES_DEFAULT_DAYS

    url = f"{base_url.rstrip('/')}{operation.path}"
    if values:
        url = f"{url}?{urlencode([(key, _query_value(value)) for key, value in values.items()])}"
    return url


class PurchaseOrchestrator:
    """Payment-gated proxy from catalog items to upstream API calls."""

    def __init__(
        self,
        catalog: Catalog,
        gate: PaymentGate,
        *,
        api_base_url: str,
        api_key: str,
        recipient: str,
        facilitator_url: str,
        timeout: float = UPSTREAM_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.catalog = catalog
        self.gate = gate
        self.api_base_url = api_base_url.rstrip("/")
        self.recipient = recipient
        self.facilitator_url = facilitator_url
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    async def purchase(self, request: PurchaseRequest) -> PurchaseResult:
        order_id = str(uuid.uuid4())

        def result(tool_result: str) -> PurchaseResult:
            return PurchaseResult(
                purchasableItemId=request.itemId,
                makePurchaseRequest=request,
                orderId=order_id,
                toolResult=tool_result,
            )

        try:
            operation = self.catalog.find_by_id(request.itemId)
            if operation is None:
                logger.info("Purchase for unknown item %s (order=%s)", request.itemId, order_id)
                return result("Invalid endpoint ID")

            resource = f"{self.api_base_url}{operation.path}"
            log_json(logger, logging.INFO, "Processing payment", {
                "order_id": order_id,
                "amount": str(ITEM_PRICE.amount),
                "recipient": self.recipient,
                "paymentMethod": request.paymentMethod,
                "resource": resource,
                "signedTransaction": request.signedTransaction,
            })

            verdict = await self.gate.verify_and_settle(
                ITEM_PRICE.amount,
                self.recipient,
                PaymentContext(
                    facilitator_url=self.facilitator_url,
                    payment_header=request.signedTransaction,
                    resource=resource,
                    payment_method=request.paymentMethod,
                ),
            )
            if not verdict.success:
                logger.info("Payment failed for order=%s: %s", order_id, verdict.error or verdict.message)
                return result(f"Payment failed: {verdict.error or verdict.message}")

            url = build_upstream_url(self.api_base_url, operation, request.params)
            try:
                data = await self._call_upstream(operation.method, url)
            except httpx.HTTPError as e:
                logger.warning("Upstream call failed after payment (order=%s, %s %s): %s",
                               order_id, operation.method, url, e)
                return result(json.dumps({
                    "success": True,
                    "paymentSuccess": True,
                    "message": "Payment successful. API returned an error.",
                    "error": str(e) or type(e).__name__,
                }))

            logger.info("Purchase fulfilled: order=%s item=%s tx=%s", order_id, operation.id, verdict.transaction)
            return result(json.dumps({"success": True, "data": data}))

        except Exception as e:
            logger.exception("Purchase failed unexpectedly (order=%s, item=%s)", order_id, request.itemId)
            return result(json.dumps({
                "success": False,
                "error": str(e),
                "details": "Payment verification failed",
            }))

    async def _call_upstream(self, method: str, url: str) -> Any:
        headers = {
            "X-API-KEY": self._api_key,
            "Accept": "application/json",
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.request(method, url, headers=headers)
        resp.raise_for_status()
        try:
            return resp.json()
        except ValueError:
            return resp.text
