import argparse
import json
import logging
import sys
from typing import Any, Optional

from .config import load_config
from .errors import PlasmaScanError
from .models import LogFilter, records_to_dicts
from .service import ScanService


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Query PlasmaScan contracts, transactions and tokens.",
        allow_abbrev=False,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    contract_parser = subparsers.add_parser("contract", help="Fetch verified contract ABI and source")
    contract_parser.add_argument("--address", required=True, help="Contract address (0x-prefixed).")
    contract_parser.add_argument(
        "--abi-only",
        action="store_true",
        help="Only fetch the ABI (getabi) instead of the full source record.",
    )

    logs_parser = subparsers.add_parser("logs", help="Fetch contract event logs")
    logs_parser.add_argument("--address", required=True, help="Contract address (0x-prefixed).")
    logs_parser.add_argument("--from-block", type=int, help="First block (inclusive).")
    logs_parser.add_argument("--to-block", type=int, help="Last block (inclusive).")
    logs_parser.add_argument("--page", type=int, help="Page number (1-based).")
    logs_parser.add_argument("--offset", type=int, help="Page size.")
    logs_parser.add_argument(
        "--topic",
        action="append",
        dest="topics",
        help="Topic filter, in order topic0..topic3. Use '-' to leave a position unfiltered.",
    )

    creation_parser = subparsers.add_parser("creation", help="Fetch contract deployer info")
    creation_parser.add_argument(
        "addresses",
        nargs="+",
        help="One to five contract addresses (0x-prefixed).",
    )

    for name, help_text in (
        ("tx-status", "Fetch transaction execution status"),
        ("receipt-status", "Fetch transaction receipt status"),
    ):
        tx_parser = subparsers.add_parser(name, help=help_text)
        tx_parser.add_argument("--tx-hash", required=True, help="Transaction hash (0x-prefixed).")

    supply_parser = subparsers.add_parser("token-supply", help="Fetch token total supply")
    supply_parser.add_argument("--contract", required=True, help="Token contract address.")
    supply_parser.add_argument("--block", type=int, help="Historical block number.")

    balance_parser = subparsers.add_parser("token-balance", help="Fetch a holder's token balance")
    balance_parser.add_argument("--contract", required=True, help="Token contract address.")
    balance_parser.add_argument("--holder", required=True, help="Holder address.")
    balance_parser.add_argument("--block", type=int, help="Historical block number.")
    balance_parser.add_argument(
        "--tag",
        choices=["latest", "earliest", "pending"],
        help="Block tag when --block is not given. Defaults to latest.",
    )

    info_parser = subparsers.add_parser("token-info", help="Fetch token metadata and supply")
    info_parser.add_argument("--contract", required=True, help="Token contract address.")

    holders_parser = subparsers.add_parser("holders", help="List token holders")
    holders_parser.add_argument("--contract", required=True, help="Token contract address.")
    holders_parser.add_argument("--page", type=int, help="Page number (1-based).")
    holders_parser.add_argument("--offset", type=int, help="Page size.")

    return parser


def _parse_topics(raw: Optional[list]) -> Optional[tuple]:
    if not raw:
        return None
    return tuple(None if topic == "-" else topic for topic in raw)


def run(args: argparse.Namespace, service: ScanService) -> Any:
    if args.command == "contract":
        if args.abi_only:
            return service.get_contract_abi(args.address)
        return service.get_contract_source_code(args.address)
    if args.command == "logs":
        log_filter = LogFilter(
            address=args.address,
            from_block=args.from_block,
            to_block=args.to_block,
            topics=_parse_topics(args.topics),
            page=args.page,
            offset=args.offset,
        )
        return records_to_dicts(service.get_logs(log_filter))
    if args.command == "creation":
        return records_to_dicts(service.get_contract_creation(args.addresses))
    if args.command == "tx-status":
        return service.get_transaction_status(args.tx_hash)
    if args.command == "receipt-status":
        return service.get_transaction_receipt_status(args.tx_hash)
    if args.command == "token-supply":
        if args.block is not None:
            return service.get_token_supply_history(args.contract, args.block)
        return service.get_token_supply(args.contract)
    if args.command == "token-balance":
        if args.block is not None:
            return service.get_token_balance_history(args.contract, args.holder, args.block)
        return service.get_token_balance(args.contract, args.holder, args.tag)
    if args.command == "token-info":
        return service.get_token_snapshot(args.contract)
    if args.command == "holders":
        return records_to_dicts(service.get_token_holder_list(args.contract, args.page, args.offset))
    raise ValueError(f"Unknown command '{args.command}'.")


def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config()
        logging.basicConfig(level=config.log_level, stream=sys.stderr)
        service = ScanService(config)
        result = run(args, service)
        if hasattr(result, "to_dict"):
            result = result.to_dict()
        print(json.dumps(result, indent=2))
    except PlasmaScanError as exc:
        print(f"Error: [{exc.code.value}] {exc.message}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:  # pylint: disable=broad-except
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
