"""
Pricing for the Cambrian MCP broker.

One flat tier: every catalog operation costs the same amount in USDC and is
listed with the Base mainnet payment method. Per-operation pricing is not
supported.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Iterable

from pydantic import BaseModel, ConfigDict, field_serializer

from catalog import Operation


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class PaymentMethod(str, Enum):
    USDC_BASE_MAINNET = "usdc-base-mainnet"
    USDC_BASE_SEPOLIA = "usdc-base-sepolia"


SUPPORTED_PAYMENT_METHODS: tuple[PaymentMethod, ...] = (
    PaymentMethod.USDC_BASE_MAINNET,
    PaymentMethod.USDC_BASE_SEPOLIA,
)


class Price(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: Decimal
    currency: str = "USDC"
    paymentMethod: PaymentMethod = PaymentMethod.USDC_BASE_MAINNET

    @field_serializer("amount")
    def _amount_as_number(self, amount: Decimal) -> float:
        return float(amount)


class PriceListingItem(BaseModel):
    id: str
    name: str
    description: str
    price: Price
    params: dict[str, str]


class PaymentMethodsResponse(BaseModel):
    walletAddress: str
    paymentMethod: PaymentMethod


# ---------------------------------------------------------------------------
# Flat tier
# ---------------------------------------------------------------------------

ITEM_PRICE = Price(amount=Decimal("0.03"))


def project(operations: Iterable[Operation]) -> list[PriceListingItem]:
    """Map operations to listing items, one per operation, all at ITEM_PRICE."""
    return [
        PriceListingItem(
            id=op.id,
            name=op.name,
            description=op.description,
            price=ITEM_PRICE,
            params=dict(op.params),
        )
        for op in operations
    ]


def payment_methods(wallet_address: str) -> list[PaymentMethodsResponse]:
    """Pair the recipient wallet with each supported payment method."""
    return [
        PaymentMethodsResponse(walletAddress=wallet_address, paymentMethod=method)
        for method in SUPPORTED_PAYMENT_METHODS
    ]
