"""Logging setup and payload redaction for payment traffic."""

from __future__ import annotations

import logging
import os
from typing import Any

_CONFIGURED = False


def _resolve_level() -> int:
    level = os.environ.get("LOG_LEVEL")
    if level:
        return getattr(logging, level.upper(), logging.INFO)
    if os.environ.get("DEBUG") == "1":
        return logging.DEBUG
    return logging.INFO


def configure_logging() -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    logging.basicConfig(
        level=_resolve_level(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    _CONFIGURED = True


_SENSITIVE_KEYS = {
    "authorization",
    "signedtransaction",
    "payment_header",
    "paymentheader",
    "signature",
    "x-api-key",
    "api_key",
}
_SENSITIVE_SUFFIXES = ("_secret", "_signature", "_private_key")


def _should_redact(key: str) -> bool:
    key_lower = key.lower()
    if key_lower in _SENSITIVE_KEYS:
        return True
    if key_lower.endswith(_SENSITIVE_SUFFIXES):
        return True
    return "x-payment" in key_lower


def redact(value: Any, *, sensitive: bool = False) -> Any:
    """Return a copy of ``value`` with secret-looking fields masked."""
    if isinstance(value, dict):
        return {
            key: redact(item, sensitive=(sensitive or _should_redact(str(key))))
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(redact(item, sensitive=sensitive) for item in value)
    if isinstance(value, str) and sensitive:
        return f"<redacted:{len(value)} chars>"
    return value


def log_json(logger: logging.Logger, level: int, message: str, data: Any) -> None:
    if logger.isEnabledFor(level):
        logger.log(level, "%s: %s", message, redact(data))
