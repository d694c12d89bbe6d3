"""
Runtime configuration for the Cambrian MCP broker.

Values come from the process environment, with a local ``.env`` file loaded
first for development. Every setting has a documented fallback so the server
can start with nothing configured (payments will still need a real wallet).
"""

from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

DEFAULT_RECIPIENT = "0x4C3B0B1Cab290300bd5A36AD5f33A607acbD7ac3"
DEFAULT_API_BASE_URL = "https://opabinia.cambrian.org"
DEFAULT_FACILITATOR_URL = "https://x402.org/facilitator"


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    payment_recipient: str = DEFAULT_RECIPIENT
    api_base_url: str = DEFAULT_API_BASE_URL
    api_key: str = ""
    schema_url: str = f"{DEFAULT_API_BASE_URL}/openapi.json"
    facilitator_url: str = DEFAULT_FACILITATOR_URL
    x402_test_mode: bool = False
    cdp_api_key_id: str = ""
    cdp_api_key_secret: str = ""
    port: int = 3001


def load_settings() -> Settings:
    """Build settings from the current environment."""
    base_url = os.environ.get("CAMBRIAN_API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/")
    return Settings(
        payment_recipient=os.environ.get("PAYMENT_RECIPIENT") or DEFAULT_RECIPIENT,
        api_base_url=base_url,
        api_key=os.environ.get("CAMBRIAN_API_KEY", ""),
        schema_url=os.environ.get("CAMBRIAN_SCHEMA_URL", f"{base_url}/openapi.json"),
        facilitator_url=os.environ.get("X402_FACILITATOR_URL", DEFAULT_FACILITATOR_URL).rstrip("/"),
        x402_test_mode=_env_flag("X402_TEST_MODE"),
        cdp_api_key_id=os.environ.get("CDP_API_KEY_ID", ""),
        cdp_api_key_secret=os.environ.get("CDP_API_KEY_SECRET", ""),
        port=int(os.environ.get("PORT", "3001")),
    )
