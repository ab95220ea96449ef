"""
MCP server exposing PlasmaScan contract, transaction and token lookups.
"""

import argparse
import json
import logging
import math
import signal
import sys
import traceback
from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import CallToolResult, TextContent

from .config import load_config
from .errors import PlasmaScanError
from .models import (
    ContractCreationInfo,
    ContractSourceResult,
    LogFilter,
    TokenSnapshot,
    records_to_dicts,
)
from .service import ScanService

logger = logging.getLogger(__name__)

INSTRUCTIONS = "\n".join(
    [
        "Use `plasmascan_get_contract` to fetch ABI, source code, and metadata for verified contracts.",
        "Use `plasmascan_get_contract_logs` to read contract event logs with optional block bounds and topics.",
        "Use `plasmascan_get_contract_creation` to inspect deployer details for up to 5 addresses.",
        "Use `plasmascan_get_transaction_status` and `plasmascan_get_transaction_receipt_status` to inspect execution state.",
        "Use the token tools (`plasmascan_get_token_*` and `plasmascan_get_address_*`) for ERC-20 and ERC-721 balances, holders, and metadata.",
        "Configuration via environment variables: PLASMASCAN_API_KEY (optional), PLASMASCAN_NETWORK_ID, "
        "PLASMASCAN_CHAIN_ID, PLASMASCAN_BASE_URL, PLASMASCAN_TIMEOUT_MS.",
    ]
)

server = FastMCP(name="plasmascan-mcp", instructions=INSTRUCTIONS)

_service: Optional[ScanService] = None


def _get_service() -> ScanService:
    global _service
    if _service is None:
        cfg = load_config()
        _service = ScanService(cfg)
    return _service


def _normalize_array_param(value: Optional[Any], name: str) -> Optional[list]:
    """
    Ensure a parameter intended as an array is actually treated as one:
    - str/bytes: likely misuse, raise with guidance
    - list/tuple: keep as list
    - Mapping: reject (not an array)
    - other scalars: auto-wrap into single-element list
    """
    if value is None:
        return None
    if isinstance(value, (str, bytes, bytearray)):
        raise ValueError(f"{name} must be an array (e.g. ['0x...']); got a string/bytes.")
    if isinstance(value, Mapping):
        raise ValueError(f"{name} must be an array, not an object/map.")
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _to_jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return _to_jsonable(value.to_dict())
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, Mapping):
        return {str(key): _to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    return value


def _dumps(data: Any) -> str:
    try:
        return json.dumps(_to_jsonable(data), indent=2)
    except (TypeError, ValueError) as exc:
        return json.dumps({"message": "Failed to serialize payload", "error": str(exc)})


def _error_payload(error: Any) -> Dict[str, Any]:
    if isinstance(error, PlasmaScanError):
        return error.to_dict()
    if isinstance(error, BaseException):
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return {"message": str(error) or type(error).__name__, "stack": stack}
    return {"message": "Unknown error", "details": repr(error)}


def _success(data: Any) -> CallToolResult:
    text = data if isinstance(data, str) else _dumps(data)
    return CallToolResult(content=[TextContent(type="text", text=text)])


def _failure(error: Any) -> CallToolResult:
    return CallToolResult(
        content=[TextContent(type="text", text=_dumps(_error_payload(error)))],
        isError=True,
    )


def _call(build: Callable[[], Any]) -> CallToolResult:
    try:
        return _success(build())
    except Exception as exc:  # pylint: disable=broad-except
        logger.info("Tool call failed: %s", exc)
        return _failure(exc)


def _fetch_creation(svc: ScanService, address: str) -> Optional[ContractCreationInfo]:
    creations = svc.get_contract_creation([address])
    return creations[0] if creations else None


def _build_contract_payload(
    contract: ContractSourceResult,
    include_source: bool = True,
    include_abi: bool = True,
    include_metadata: bool = True,
    creation: Optional[ContractCreationInfo] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"address": contract.address}
    if include_abi:
        payload["abi"] = contract.abi
    if include_source:
        payload["source_code"] = contract.source_code
    if include_metadata:
        payload["metadata"] = {
            "contract_name": contract.contract_name,
            "compiler_version": contract.compiler_version,
            **contract.metadata,
        }
    if creation:
        payload["creation"] = creation.to_dict()
    return payload


def _build_token_payload(snapshot: TokenSnapshot) -> Dict[str, Any]:
    return {
        "contract_address": snapshot.contract_address,
        "total_supply": snapshot.total_supply,
        "metadata": snapshot.info.to_dict() if snapshot.info else None,
    }


@server.tool(
    name="plasmascan_get_contract",
    title="Fetch contract ABI and source",
    description="Returns verified PlasmaScan contract data including ABI, source code, compiler metadata, and optional creation info.",
)
def get_contract(
    address: str,
    include_source: bool = True,
    include_abi: bool = True,
    include_metadata: bool = True,
    include_creation: bool = True,
) -> CallToolResult:
    def build() -> Dict[str, Any]:
        svc = _get_service()
        contract = svc.get_contract_source_code(address)
        creation = _fetch_creation(svc, address) if include_creation else None
        return _build_contract_payload(contract, include_source, include_abi, include_metadata, creation)

    return _call(build)


@server.tool(
    name="plasmascan_get_transaction_status",
    title="Check transaction execution status",
    description="Returns PlasmaScan execution status for a transaction hash.",
)
def get_transaction_status(tx_hash: str) -> CallToolResult:
    def build() -> Dict[str, Any]:
        status = _get_service().get_transaction_status(tx_hash)
        return {"tx_hash": tx_hash, "status": status.status, "message": status.message}

    return _call(build)


@server.tool(
    name="plasmascan_get_transaction_receipt_status",
    title="Check transaction receipt status",
    description="Returns the PlasmaScan receipt success flag for a transaction hash.",
)
def get_transaction_receipt_status(tx_hash: str) -> CallToolResult:
    def build() -> Dict[str, Any]:
        status = _get_service().get_transaction_receipt_status(tx_hash)
        return {"tx_hash": tx_hash, "status": status.status}

    return _call(build)


@server.tool(
    name="plasmascan_get_contract_logs",
    title="Fetch contract event logs",
    description="Reads PlasmaScan event logs by address with optional block range, pagination, and topic filters. "
    "`topics` must be an array of up to 4 topic hashes (use null to skip a position).",
)
def get_contract_logs(
    address: str,
    from_block: Optional[int] = None,
    to_block: Optional[int] = None,
    page: Optional[int] = None,
    offset: Optional[int] = None,
    topics: Optional[Any] = None,
) -> CallToolResult:
    def build() -> Dict[str, Any]:
        normalized_topics = _normalize_array_param(topics, "topics")
        log_filter = LogFilter(
            address=address,
            from_block=from_block,
            to_block=to_block,
            topics=tuple(normalized_topics) if normalized_topics else None,
            page=page,
            offset=offset,
        )
        logs = _get_service().get_logs(log_filter)
        return {"address": address, "count": len(logs), "logs": records_to_dicts(logs)}

    return _call(build)


@server.tool(
    name="plasmascan_get_contract_creation",
    title="Fetch contract deployer info",
    description="Returns deployer address and transaction hash for up to 5 contracts in a single call.",
)
def get_contract_creation(
    address: Optional[str] = None,
    addresses: Optional[Any] = None,
) -> CallToolResult:
    def build() -> Dict[str, Any]:
        targets = _normalize_array_param(addresses, "addresses") or ([address] if address else [])
        if not targets:
            raise ValueError("provide `address` or `addresses`")
        creations = _get_service().get_contract_creation(targets)
        return {"count": len(creations), "creations": records_to_dicts(creations)}

    return _call(build)


@server.tool(
    name="plasmascan_get_token_supply",
    title="Fetch token total supply",
    description="Returns the current ERC-20 token total supply from PlasmaScan.",
)
def get_token_supply(contract_address: str) -> CallToolResult:
    return _call(lambda: _get_service().get_token_supply(contract_address))


@server.tool(
    name="plasmascan_get_token_supply_history",
    title="Fetch token supply at a block",
    description="Returns historical ERC-20 total supply for a specific block.",
)
def get_token_supply_history(contract_address: str, block_number: int) -> CallToolResult:
    return _call(lambda: _get_service().get_token_supply_history(contract_address, block_number))


@server.tool(
    name="plasmascan_get_token_balance",
    title="Fetch ERC-20 token balance",
    description="Returns an address balance for a given ERC-20 token. tag: latest|earliest|pending (default latest).",
)
def get_token_balance(
    contract_address: str,
    holder_address: str,
    tag: Optional[str] = None,
) -> CallToolResult:
    return _call(lambda: _get_service().get_token_balance(contract_address, holder_address, tag))


@server.tool(
    name="plasmascan_get_token_balance_history",
    title="Fetch historical token balance",
    description="Returns an address ERC-20 balance at a specific block.",
)
def get_token_balance_history(
    contract_address: str,
    holder_address: str,
    block_number: int,
) -> CallToolResult:
    return _call(
        lambda: _get_service().get_token_balance_history(contract_address, holder_address, block_number)
    )


@server.tool(
    name="plasmascan_get_token_holder_list",
    title="List top token holders",
    description="Returns the token holder list for an ERC-20 contract with optional pagination.",
)
def get_token_holder_list(
    contract_address: str,
    page: Optional[int] = None,
    offset: Optional[int] = None,
) -> CallToolResult:
    def build() -> Dict[str, Any]:
        holders = _get_service().get_token_holder_list(contract_address, page, offset)
        return {
            "contract_address": contract_address,
            "count": len(holders),
            "holders": records_to_dicts(holders),
        }

    return _call(build)


@server.tool(
    name="plasmascan_get_token_info",
    title="Fetch token metadata",
    description="Returns token metadata (name, symbol, supply) for an ERC-20 contract.",
)
def get_token_info(contract_address: str) -> CallToolResult:
    def build() -> Dict[str, Any]:
        info = _get_service().get_token_info(contract_address)
        return {"contract_address": contract_address, "info": info.to_dict() if info else None}

    return _call(build)


@server.tool(
    name="plasmascan_get_address_token_holdings",
    title="List ERC-20 token holdings",
    description="Returns ERC-20 token balances held by an address.",
)
def get_address_token_holdings(
    address: str,
    page: Optional[int] = None,
    offset: Optional[int] = None,
) -> CallToolResult:
    def build() -> Dict[str, Any]:
        holdings = _get_service().get_address_token_holdings(address, page, offset)
        return {"address": address, "count": len(holdings), "holdings": records_to_dicts(holdings)}

    return _call(build)


@server.tool(
    name="plasmascan_get_address_nft_holdings",
    title="List ERC-721 holdings",
    description="Returns ERC-721 token holdings for an address.",
)
def get_address_nft_holdings(
    address: str,
    page: Optional[int] = None,
    offset: Optional[int] = None,
) -> CallToolResult:
    def build() -> Dict[str, Any]:
        holdings = _get_service().get_address_nft_holdings(address, page, offset)
        return {"address": address, "count": len(holdings), "holdings": records_to_dicts(holdings)}

    return _call(build)


@server.tool(
    name="plasmascan_get_address_nft_inventory",
    title="List ERC-721 inventory for contract",
    description="Returns ERC-721 token holdings for an address filtered by contract.",
)
def get_address_nft_inventory(
    address: str,
    contract_address: str,
    page: Optional[int] = None,
    offset: Optional[int] = None,
) -> CallToolResult:
    def build() -> Dict[str, Any]:
        holdings = _get_service().get_address_nft_inventory(address, contract_address, page, offset)
        return {
            "address": address,
            "contract_address": contract_address,
            "count": len(holdings),
            "holdings": records_to_dicts(holdings),
        }

    return _call(build)


@server.resource(
    "plasmascan://contract/{address}",
    name="plasmascan-contract",
    title="PlasmaScan contract profile",
    description="On-demand ABI and source for a verified PlasmaScan contract.",
    mime_type="application/json",
)
def contract_resource(address: str) -> str:
    svc = _get_service()
    contract = svc.get_contract_source_code(address)
    creation = _fetch_creation(svc, address)
    return _dumps(_build_contract_payload(contract, creation=creation))


@server.resource(
    "plasmascan://token/{address}",
    name="plasmascan-token",
    title="PlasmaScan token metadata",
    description="Token metadata and supply information for ERC-20 contracts.",
    mime_type="application/json",
)
def token_resource(address: str) -> str:
    snapshot = _get_service().get_token_snapshot(address)
    return _dumps(_build_token_payload(snapshot))


def _handle_shutdown(signum: int, _frame: Any) -> None:
    logger.info("Received signal %s, shutting down.", signum)
    sys.exit(0)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the PlasmaScan MCP server.")
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default="stdio",
        help="Transport protocol for MCP.",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host for SSE/HTTP transports.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for SSE/HTTP transports.",
    )
    parser.add_argument(
        "--mount-path",
        default="/",
        help="Mount path for SSE transport (only when transport=sse).",
    )
    args = parser.parse_args()

    global _service
    cfg = load_config()
    # stdout carries the stdio transport, so logs go to stderr.
    logging.basicConfig(
        level=cfg.log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _service = ScanService(cfg)
    logger.info("Using explorer API %s (chain %s)", cfg.base_url, cfg.chain_id)

    signal.signal(signal.SIGINT, _handle_shutdown)
    signal.signal(signal.SIGTERM, _handle_shutdown)

    # FastMCP uses host/port only for SSE/HTTP transports; stdio ignores them.
    server.settings.host = args.host
    server.settings.port = args.port

    if args.transport == "sse":
        server.run(transport="sse", mount_path=args.mount_path)
    else:
        server.run(transport=args.transport)


if __name__ == "__main__":
    main()
