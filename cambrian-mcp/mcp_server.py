#!/usr/bin/env python3
"""
Cambrian MCP Broker: monetized MCP server
==========================================
Model Context Protocol server that sells calls to the Cambrian data API
(https://opabinia.cambrian.org) one at a time, paid in USDC on Base via x402.

Run standalone:  python mcp_server.py   (stdio transport)
Hosted:          main.py mounts the streamable-HTTP app at /mcp

Tools provided (MonetizedMCP convention):
  - price-listing     -- Priced catalog of Cambrian API operations (free)
  - payment-methods   -- Recipient wallet + accepted payment methods (free)
  - make-purchase     -- Pay for one operation and receive its response
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional

from fastmcp import FastMCP

from catalog import Catalog
from config import Settings, load_settings
from logging_utils import configure_logging
from payment_gate import PaymentGate
from pricing import ITEM_PRICE, payment_methods, project
from purchase import PurchaseOrchestrator, PurchaseRequest, Scalar
from schema_loader import LoadOutcome, load_catalog


# ---------------------------------------------------------------------------
# Tool bodies
# ---------------------------------------------------------------------------


def list_pricing(catalog: Catalog, search_query: Optional[str] = None) -> dict:
    items = project(catalog.search(search_query))
    return {"items": [item.model_dump(mode="json") for item in items]}


def list_payment_methods(wallet_address: str) -> list[dict]:
    return [m.model_dump(mode="json") for m in payment_methods(wallet_address)]


def build_orchestrator(catalog: Catalog, settings: Settings) -> PurchaseOrchestrator:
    gate = PaymentGate(
        test_mode=settings.x402_test_mode,
        cdp_api_key_id=settings.cdp_api_key_id,
        cdp_api_key_secret=settings.cdp_api_key_secret,
    )
    return PurchaseOrchestrator(
        catalog,
        gate,
        api_base_url=settings.api_base_url,
        api_key=settings.api_key,
        recipient=settings.payment_recipient,
        facilitator_url=settings.facilitator_url,
    )


# ---------------------------------------------------------------------------
# MCP Server
# ---------------------------------------------------------------------------


def create_mcp(catalog: Catalog, orchestrator: PurchaseOrchestrator, wallet_address: str) -> FastMCP:
    """Build the MCP server around an already loaded catalog."""
    mcp = FastMCP(
        "cambrian-mcp",
        instructions=(
            "Cambrian API broker: on-chain DeFi data (EVM and Solana pools, prices, "
            "tokens, TVL) sold per call.\n\n"
            "1. price-listing: browse the priced catalog (optionally with searchQuery).\n"
            "2. payment-methods: get the recipient wallet and accepted payment methods.\n"
            f"3. make-purchase: pay {ITEM_PRICE.amount} {ITEM_PRICE.currency} with a signed x402 "
            "payment (signedTransaction) and receive the API response in toolResult.\n\n"
            "Payment is for the call, not its outcome: if the Cambrian API fails after "
            "payment settles, toolResult reports paymentSuccess with the error."
        ),
    )

    @mcp.tool(name="price-listing")
    def price_listing(searchQuery: str = "") -> str:
        """FREE -- List every purchasable Cambrian API operation with its price.

        Args:
            searchQuery: Optional case-insensitive filter on name and description.
        """
        return json.dumps(list_pricing(catalog, searchQuery), indent=2)

    @mcp.tool(name="payment-methods")
    def payment_methods_tool() -> str:
        """FREE -- Recipient wallet address and the accepted payment methods."""
        return json.dumps(list_payment_methods(wallet_address), indent=2)

    @mcp.tool(name="make-purchase")
    async def make_purchase(
        itemId: str,
        paymentMethod: str,
        signedTransaction: str,
        params: Optional[dict[str, Scalar]] = None,
    ) -> str:
        """PAID -- Pay for one Cambrian API call and return its result.

        Args:
            itemId: Item id from price-listing (e.g., "evm-chains").
            paymentMethod: "usdc-base-mainnet" or "usdc-base-sepolia".
            signedTransaction: Base64 x402 payment payload signed by the buyer.
            params: Query parameters for the upstream call.
        """
        result = await orchestrator.purchase(PurchaseRequest(
            itemId=itemId,
            paymentMethod=paymentMethod,
            signedTransaction=signedTransaction,
            params=params,
        ))
        return result.model_dump_json(indent=2)

    return mcp


async def build_mcp(settings: Settings) -> tuple[FastMCP, LoadOutcome]:
    """Load the catalog once, then assemble the server around it."""
    outcome = await load_catalog(settings.schema_url)
    orchestrator = build_orchestrator(outcome.catalog, settings)
    return create_mcp(outcome.catalog, orchestrator, settings.payment_recipient), outcome


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    configure_logging()
    mcp, _ = asyncio.run(build_mcp(load_settings()))
    mcp.run()
