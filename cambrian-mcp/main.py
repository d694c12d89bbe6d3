"""
Cambrian MCP Broker - HTTP host

Serves the monetized MCP server over streamable HTTP at /mcp, plus health and
discovery routes. The operation catalog is loaded once, before uvicorn starts
accepting connections.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastmcp import FastMCP

from config import Settings, load_settings
from logging_utils import configure_logging
from mcp_server import build_mcp
from pricing import ITEM_PRICE, SUPPORTED_PAYMENT_METHODS
from schema_loader import LoadOutcome

logger = logging.getLogger("cambrian-mcp")

VERSION = "1.0.0"


def create_app(mcp: FastMCP, settings: Settings, outcome: LoadOutcome) -> FastAPI:
    """Wrap a built MCP server in a FastAPI app.

    Uses stateless_http=True so load balancers that drop idle connections
    do not break sessions.
    """
    mcp_app = mcp.http_app(path="/", stateless_http=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # FastMCP's session manager lives in the mounted app's lifespan.
        async with mcp_app.lifespan(mcp_app):
            logger.info(
                "Cambrian MCP ready: %d items, wallet=%s, fallback_catalog=%s",
                len(outcome.catalog), settings.payment_recipient[:10] + "...", outcome.is_fallback,
            )
            yield
        logger.info("Shutting down Cambrian MCP")

    app = FastAPI(
        title="Cambrian MCP Broker",
        description="Pay-per-call access to the Cambrian API through a monetized MCP server (x402 USDC on Base).",
        version=VERSION,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def mcp_trailing_slash(request: Request, call_next):
        """Rewrite /mcp to /mcp/ so MCP clients are not 307-redirected on POST."""
        if request.url.path == "/mcp":
            request.scope["path"] = "/mcp/"
        return await call_next(request)

    @app.get("/health", tags=["health"])
    async def health():
        """Service health check."""
        return {
            "status": "ok",
            "service": "cambrian-mcp",
            "version": VERSION,
            "items": len(outcome.catalog),
            "fallback_catalog": outcome.is_fallback,
            "mcp_endpoint": "/mcp",
        }

    @app.get("/.well-known/mcp.json", tags=["discovery"], include_in_schema=False)
    async def well_known_mcp():
        """MCP discovery metadata."""
        return {
            "name": "cambrian-mcp",
            "description": "Cambrian DeFi data API sold per call via MonetizedMCP tools.",
            "url": "/mcp",
            "transport": "streamable-http",
            "version": VERSION,
            "payment": {
                "protocol": "x402",
                "currency": ITEM_PRICE.currency,
                "price_per_call": float(ITEM_PRICE.amount),
                "methods": [m.value for m in SUPPORTED_PAYMENT_METHODS],
                "wallet": settings.payment_recipient,
            },
            "tools": [
                {"name": "price-listing", "paid": False},
                {"name": "payment-methods", "paid": False},
                {"name": "make-purchase", "paid": True},
            ],
        }

    app.mount("/mcp", mcp_app)
    return app


async def build_app(settings: Settings) -> FastAPI:
    mcp, outcome = await build_mcp(settings)
    return create_app(mcp, settings, outcome)


def main() -> None:
    configure_logging()
    settings = load_settings()
    app = asyncio.run(build_app(settings))
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
