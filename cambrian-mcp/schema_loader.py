"""
OpenAPI schema loading.

Fetches the upstream OpenAPI document and flattens ``paths`` into a list of
:class:`catalog.Operation`. Any failure (network, HTTP status, bad JSON, bad
structure) yields the fixed fallback catalog instead of an exception, and the
returned outcome says which path was taken.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Iterator, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict

from catalog import Catalog, Operation

logger = logging.getLogger("cambrian-mcp.schema")

SCHEMA_FETCH_TIMEOUT = 30.0

# Known-good operations served when the schema cannot be loaded.
FALLBACK_OPERATIONS: tuple[Operation, ...] = (
    Operation(
        id="evm-chains",
        name="Get EVM Chains",
        description="List all supported EVM chains",
        path="/api/v1/evm/chains",
        method="GET",
        params={},
    ),
    Operation(
        id="uniswap-v3-pools",
        name="Get Uniswap V3 Pools",
        description="Get all pools for a token on Uniswap V3",
        path="/api/v1/evm/uniswap/v3/pools",
        method="GET",
        params={
            "chain": "Chain ID (e.g., 8453 for Base)",
            "token": "Token address",
        },
    ),
)


class SchemaError(ValueError):
    """The schema document is not a usable OpenAPI description."""


class Loaded(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    catalog: Catalog
    source_url: str

    @property
    def is_fallback(self) -> bool:
        return False


class Fallback(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    catalog: Catalog
    cause: str

    @property
    def is_fallback(self) -> bool:
        return True


LoadOutcome = Union[Loaded, Fallback]


def fallback_catalog() -> Catalog:
    return Catalog(FALLBACK_OPERATIONS)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _fold_parameters(parameters: Any) -> dict[str, str]:
    params: dict[str, str] = {}
    if not isinstance(parameters, list):
        return params
    for param in parameters:
        if not isinstance(param, dict):
            continue
        name = param.get("name")
        if not name:
            continue
        params[str(name)] = str(param.get("description") or name)
    return params


def _synthesize_id(counter: Iterator[int], taken: set[str]) -> str:
    while True:
        candidate = f"endpoint-{next(counter)}"
        if candidate not in taken:
            return candidate


def normalize_schema(
    document: Any,
    counter: Optional[Iterator[int]] = None,
) -> list[Operation]:
    """Flatten an OpenAPI document into operations.

    ``counter`` supplies the numbers for synthesized ``endpoint-N`` ids. Pass
    a fresh one per load pass; the default starts at 1.

    Raises:
        SchemaError: if the document has no usable ``paths`` mapping.
    """
    if counter is None:
        counter = itertools.count(1)
    if not isinstance(document, dict):
        raise SchemaError(f"Schema must be a JSON object, got {type(document).__name__}")
    paths = document.get("paths") or {}
    if not isinstance(paths, dict):
        raise SchemaError("Schema 'paths' must be an object")

    operations: list[Operation] = []
    seen: set[str] = set()
    for path, path_item in paths.items():
        if not isinstance(path_item, dict):
            raise SchemaError(f"Path item for {path!r} must be an object")
        for method, descriptor in path_item.items():
            # Path-level keys like "parameters" or "summary" are not operations.
            if not isinstance(descriptor, dict):
                continue

            op_id = descriptor.get("operationId")
            if not op_id or not isinstance(op_id, str) or op_id in seen:
                op_id = _synthesize_id(counter, seen)
            seen.add(op_id)

            verb = str(method).upper()
            operations.append(Operation(
                id=op_id,
                name=descriptor.get("summary") or f"{verb} {path}",
                description=descriptor.get("description") or f"Access {path}",
                path=path,
                method=verb,
                params=_fold_parameters(descriptor.get("parameters")),
            ))
    return operations


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


async def load_catalog(
    schema_url: str,
    *,
    timeout: float = SCHEMA_FETCH_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> LoadOutcome:
    """Fetch ``schema_url`` and build a catalog from it.

    Never raises. On any failure the fixed fallback catalog is returned
    wrapped in :class:`Fallback` together with the cause.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
            resp = await client.get(schema_url, headers={"Accept": "application/json"})
        resp.raise_for_status()
        operations = normalize_schema(resp.json(), itertools.count(1))
        if not operations:
            raise SchemaError("Schema declares no operations")
    except (httpx.HTTPError, ValueError) as e:
        # json.JSONDecodeError and SchemaError are both ValueErrors.
        logger.warning("Failed to load OpenAPI schema from %s: %s. Using fallback catalog.", schema_url, e)
        return Fallback(catalog=fallback_catalog(), cause=str(e) or type(e).__name__)
    except Exception as e:
        logger.exception("Unexpected error loading OpenAPI schema from %s. Using fallback catalog.", schema_url)
        return Fallback(catalog=fallback_catalog(), cause=str(e) or type(e).__name__)

    logger.info("Loaded %d operations from %s", len(operations), schema_url)
    return Loaded(catalog=Catalog(operations), source_url=schema_url)
