"""Shared fixtures: sample schemas, catalogs and fake collaborators."""

import httpx
import pytest

from catalog import Catalog, Operation
from payment_gate import PaymentVerdict

BASE_URL = "https://api.example.test"


SAMPLE_SCHEMA = {
    "openapi": "3.1.0",
    "paths": {
        "/api/v1/evm/chains": {
            "get": {
                "operationId": "evm-chains",
                "summary": "Get EVM Chains",
                "description": "List all supported EVM chains",
            },
        },
        "/api/v1/solana/pools/fee_ranges": {
            "get": {
                "operationId": "solanapoolsfeeranges",
                "summary": "Solana Pool Fee Ranges",
                "description": "Fee ranges for Solana pools",
                "parameters": [
                    {"name": "pool_ids", "in": "query", "description": "Comma separated pool ids"},
                    {"name": "timeframeDays", "in": "query"},
                ],
            },
        },
        "/api/v1/solana/tokens": {
            "parameters": [{"name": "shared", "in": "query"}],
            "get": {},
            "post": {"summary": "Register token"},
        },
    },
}


class FakeGate:
    """Stands in for PaymentGate and records every call."""

    def __init__(self, verdict=None, exc=None):
        self.verdict = verdict or PaymentVerdict(success=True, transaction="0xabc", network="base")
        self.exc = exc
        self.calls = []

    async def verify_and_settle(self, amount, recipient, context):
        self.calls.append((amount, recipient, context))
        if self.exc:
            raise self.exc
        return self.verdict


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps the requests it served."""

    def __init__(self, handler):
        self.requests = []

        def _record(request):
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


@pytest.fixture
def sample_catalog():
    return Catalog([
        Operation(id="evm-chains", name="Get EVM Chains", description="List all supported EVM chains",
                  path="/api/v1/evm/chains"),
        Operation(id="uniswap-v3-pools", name="Get Uniswap V3 Pools",
                  description="Get all pools for a token on Uniswap V3",
                  path="/api/v1/evm/uniswap/v3/pools",
                  params={"chain": "Chain ID (e.g., 8453 for Base)", "token": "Token address"}),
        Operation(id="solanapoolsfeeranges", name="Solana Pool Fee Ranges",
                  description="Fee ranges for Solana pools", path="/api/v1/solana/pools/fee_ranges",
                  params={"pool_ids": "Comma separated pool ids", "timeframeDays": "timeframeDays"}),
    ])
