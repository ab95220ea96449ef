import json
import logging
import math
import re
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import Config
from .errors import ErrorCode, PlasmaScanError
from .etherscan_client import EtherscanClient
from .models import (
    ContractAbiResult,
    ContractCreationInfo,
    ContractSourceResult,
    LogEntry,
    LogFilter,
    Numeric,
    TokenBalance,
    TokenHolder,
    TokenHolding,
    TokenInfo,
    TokenSnapshot,
    TokenSupply,
    TransactionStatus,
)

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
HASH_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")
_DECIMAL_RE = re.compile(r"^[+-]?[0-9]+$")
_HEX_RE = re.compile(r"^0[xX][0-9a-fA-F]+$")
_NOT_VERIFIED_RE = re.compile(r"not verified", re.IGNORECASE)

MAX_CREATION_ADDRESSES = 5
MAX_TOPICS = 4
MAX_PAGE_SIZE = 1000
BALANCE_TAGS = ("latest", "earliest", "pending")
DEFAULT_BALANCE_TAG = "latest"

# Upstream endpoints disagree on key casing; first non-empty key wins.
CREATION_ADDRESS_KEYS = ("contractAddress", "ContractAddress")
CREATION_CREATOR_KEYS = ("contractCreator", "ContractCreator")
CREATION_TX_HASH_KEYS = ("txHash", "TxHash")
STATUS_MESSAGE_KEYS = ("message", "errDescription")
HOLDER_ADDRESS_KEYS = ("TokenHolderAddress", "holderAddress")
HOLDER_QUANTITY_KEYS = ("TokenHolderQuantity", "quantity")
TOKEN_CONTRACT_KEYS = ("contractAddress", "TokenAddress")
TOKEN_NAME_KEYS = ("tokenName", "TokenName", "name")
TOKEN_SYMBOL_KEYS = ("tokenSymbol", "TokenSymbol", "symbol")
TOKEN_DECIMALS_KEYS = ("decimals", "divisor")
TOKEN_SUPPLY_KEYS = ("totalSupply",)
HOLDING_BALANCE_KEYS = ("TokenBalance", "balance", "TokenQuantity")


def first_present(entry: Dict[str, Any], keys: Sequence[str], default: Any = None) -> Any:
    for key in keys:
        value = entry.get(key)
        if value is not None and value != "":
            return value
    return default


def parse_numeric(value: Any) -> Numeric:
    """
    Parse a decimal or 0x-hex upstream string; NaN when it is neither.

    The whole string must match, so "12abc" is NaN rather than a prefix parse to 12.
    """
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        return math.nan
    text = value.strip()
    if _DECIMAL_RE.match(text):
        return int(text, 10)
    if _HEX_RE.match(text):
        return int(text, 16)
    return math.nan


class ScanService:
    """Validate inputs, call the explorer, and reshape results into typed records."""

    def __init__(self, config: Config, client: Optional[EtherscanClient] = None) -> None:
        self.config = config
        self.client = client or EtherscanClient(config)

    def get_contract_abi(self, address: str) -> ContractAbiResult:
        normalized = self._require_address(address)
        result = self.client.get_abi(normalized)
        return ContractAbiResult(address=normalized, abi=self._parse_abi(result, normalized))

    def get_contract_source_code(self, address: str) -> ContractSourceResult:
        normalized = self._require_address(address)
        result = self.client.get_source_code(normalized)

        if not isinstance(result, list) or not result or not isinstance(result[0], dict):
            raise self._invalid("Empty response received while fetching source code", result)

        entry = result[0]
        abi = self._parse_abi(entry.get("ABI"), normalized)
        metadata = {
            key: value
            for key, value in entry.items()
            if key not in ("SourceCode", "ABI") and value is not None
        }

        return ContractSourceResult(
            address=normalized,
            source_code=entry.get("SourceCode") or "",
            abi=abi,
            metadata=metadata,
            contract_name=entry.get("ContractName") or None,
            compiler_version=entry.get("CompilerVersion") or None,
        )

    def get_contract_creation(self, addresses: Sequence[str]) -> List[ContractCreationInfo]:
        if not addresses:
            return []
        if len(addresses) > MAX_CREATION_ADDRESSES:
            raise self._invalid(
                f"The getcontractcreation endpoint accepts up to {MAX_CREATION_ADDRESSES} addresses per request"
            )

        normalized = [self._require_address(addr) for addr in addresses]
        result = self._as_list(self.client.get_contract_creation(normalized), "contract creation")
        return [self._map_creation(entry) for entry in result if isinstance(entry, dict)]

    def get_logs(self, log_filter: LogFilter) -> List[LogEntry]:
        address = self._require_address(log_filter.address) if log_filter.address is not None else None
        from_block = self._optional_block_number(log_filter.from_block, "fromBlock")
        to_block = self._optional_block_number(log_filter.to_block, "toBlock")
        page = self._optional_positive(log_filter.page, "page")
        offset = self._optional_page_size(log_filter.offset)
        topics = self._normalize_topics(log_filter.topics)

        result = self.client.get_logs(address, from_block, to_block, topics, page, offset)
        if result is None:
            return []
        if not isinstance(result, list):
            raise self._invalid("Unexpected logs payload", result)
        return [self._map_log(entry) for entry in result if isinstance(entry, dict)]

    def get_transaction_status(self, tx_hash: str) -> TransactionStatus:
        normalized = self._require_tx_hash(tx_hash)
        result = self._as_dict(self.client.get_transaction_status(normalized), "transaction status")
        return TransactionStatus(
            status=str(result.get("status", "")),
            message=first_present(result, STATUS_MESSAGE_KEYS),
        )

    def get_transaction_receipt_status(self, tx_hash: str) -> TransactionStatus:
        normalized = self._require_tx_hash(tx_hash)
        result = self._as_dict(self.client.get_transaction_receipt_status(normalized), "receipt status")
        return TransactionStatus(status=str(result.get("status", "")))

    def get_token_supply(self, contract_address: str) -> TokenSupply:
        address = self._require_address(contract_address)
        total_supply = self.client.get_token_supply(address)
        return TokenSupply(contract_address=address, total_supply=str(total_supply))

    def get_token_supply_history(self, contract_address: str, block_number: int) -> TokenSupply:
        address = self._require_address(contract_address)
        block = self._require_block_number(block_number)
        total_supply = self.client.get_token_supply_history(address, block)
        return TokenSupply(contract_address=address, total_supply=str(total_supply), block_number=block)

    def get_token_balance(
        self,
        contract_address: str,
        account_address: str,
        tag: Optional[str] = None,
    ) -> TokenBalance:
        token = self._require_address(contract_address, "contract address")
        holder = self._require_address(account_address, "holder address")
        normalized_tag = self._normalize_tag(tag)
        balance = self.client.get_token_balance(token, holder, normalized_tag)
        return TokenBalance(
            contract_address=token,
            account_address=holder,
            balance=str(balance),
            tag=normalized_tag,
        )

    def get_token_balance_history(
        self,
        contract_address: str,
        account_address: str,
        block_number: int,
    ) -> TokenBalance:
        token = self._require_address(contract_address, "contract address")
        holder = self._require_address(account_address, "holder address")
        block = self._require_block_number(block_number)
        balance = self.client.get_token_balance_history(token, holder, block)
        return TokenBalance(
            contract_address=token,
            account_address=holder,
            balance=str(balance),
            block_number=block,
        )

    def get_token_holder_list(
        self,
        contract_address: str,
        page: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[TokenHolder]:
        address = self._require_address(contract_address)
        page_num = self._optional_positive(page, "page")
        page_size = self._optional_page_size(offset)
        result = self._as_list(
            self.client.get_token_holder_list(address, page_num, page_size), "token holder list"
        )
        return [self._map_holder(entry) for entry in result if isinstance(entry, dict)]

    def get_token_info(self, contract_address: str) -> Optional[TokenInfo]:
        address = self._require_address(contract_address)
        result = self._as_list(self.client.get_token_info(address), "token info")
        if not result or not isinstance(result[0], dict):
            return None

        entry = result[0]
        return TokenInfo(
            contract_address=entry.get("contractAddress") or address,
            raw=dict(entry),
            name=first_present(entry, TOKEN_NAME_KEYS),
            symbol=first_present(entry, TOKEN_SYMBOL_KEYS),
            decimals=first_present(entry, TOKEN_DECIMALS_KEYS),
            total_supply=first_present(entry, TOKEN_SUPPLY_KEYS),
        )

    def get_address_token_holdings(
        self,
        address: str,
        page: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[TokenHolding]:
        account = self._require_address(address)
        page_num = self._optional_positive(page, "page")
        page_size = self._optional_page_size(offset)
        result = self._as_list(
            self.client.get_address_token_balance(account, page_num, page_size), "token holdings"
        )
        return [self._map_holding(entry) for entry in result if isinstance(entry, dict)]

    def get_address_nft_holdings(
        self,
        address: str,
        page: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[TokenHolding]:
        account = self._require_address(address)
        page_num = self._optional_positive(page, "page")
        page_size = self._optional_page_size(offset)
        result = self._as_list(
            self.client.get_address_nft_balance(account, page_num, page_size), "NFT holdings"
        )
        return [self._map_holding(entry) for entry in result if isinstance(entry, dict)]

    def get_address_nft_inventory(
        self,
        address: str,
        contract_address: str,
        page: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[TokenHolding]:
        account = self._require_address(address)
        contract = self._require_address(contract_address, "contract address")
        page_num = self._optional_positive(page, "page")
        page_size = self._optional_page_size(offset)
        result = self._as_list(
            self.client.get_address_nft_inventory(account, contract, page_num, page_size),
            "NFT inventory",
        )
        return [
            self._map_holding(entry, default_contract=contract)
            for entry in result
            if isinstance(entry, dict)
        ]

    def get_token_snapshot(self, contract_address: str) -> TokenSnapshot:
        """
        Fetch token metadata and current supply concurrently.

        A supply lookup rejected by the API (``API_ERROR``) is reported as ``None``;
        any other failure on either branch propagates.
        """
        address = self._require_address(contract_address)
        with ThreadPoolExecutor(max_workers=2) as pool:
            info_future = pool.submit(self.get_token_info, address)
            supply_future = pool.submit(self.get_token_supply, address)
            info = info_future.result()
            total_supply = self._supply_or_none(supply_future)

        return TokenSnapshot(contract_address=address, total_supply=total_supply, info=info)

    def _supply_or_none(self, future: "Future[TokenSupply]") -> Optional[str]:
        try:
            return future.result().total_supply
        except PlasmaScanError as exc:
            if exc.code is ErrorCode.API_ERROR:
                logger.info("Token supply unavailable for snapshot: %s", exc.message)
                return None
            raise

    def _invalid(self, message: str, details: Any = None) -> PlasmaScanError:
        return PlasmaScanError(message, ErrorCode.INVALID_RESPONSE, self.config.base_url, details)

    def _require_address(self, address: Any, label: str = "address") -> str:
        if not isinstance(address, str):
            raise self._invalid(f"Invalid EVM {label}: {address!r}")
        candidate = address.strip()
        if not ADDRESS_PATTERN.match(candidate):
            raise self._invalid(f"Invalid EVM {label}: {address}")
        return candidate

    def _require_tx_hash(self, tx_hash: Any) -> str:
        if not isinstance(tx_hash, str):
            raise self._invalid(f"Invalid transaction hash: {tx_hash!r}")
        candidate = tx_hash.strip()
        if not HASH_PATTERN.match(candidate):
            raise self._invalid(f"Invalid transaction hash: {tx_hash}")
        return candidate

    def _require_block_number(self, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise self._invalid(f"Invalid block number: {value}")
        return value

    def _optional_block_number(self, value: Any, field: str) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise self._invalid(f"{field} must be a non-negative integer: {value}")
        return value

    def _optional_positive(self, value: Any, field: str) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise self._invalid(f"{field} must be a positive integer: {value}")
        return value

    def _optional_page_size(self, value: Any) -> Optional[int]:
        offset = self._optional_positive(value, "offset")
        if offset is not None and offset > MAX_PAGE_SIZE:
            raise self._invalid(f"offset must be at most {MAX_PAGE_SIZE}: {offset}")
        return offset

    def _normalize_tag(self, tag: Optional[str]) -> str:
        if tag is None:
            return DEFAULT_BALANCE_TAG
        normalized = str(tag).strip().lower()
        if normalized not in BALANCE_TAGS:
            raise self._invalid(f"tag must be one of: {', '.join(BALANCE_TAGS)}")
        return normalized

    def _normalize_topics(self, topics: Optional[Sequence[Optional[str]]]) -> Dict[str, str]:
        if not topics:
            return {}
        if isinstance(topics, str):
            raise self._invalid("topics must be a list of topic hashes, not a string")
        if len(topics) > MAX_TOPICS:
            raise self._invalid(f"At most {MAX_TOPICS} topics are supported")

        params: Dict[str, str] = {}
        for idx, topic in enumerate(topics):
            # None leaves this position unfiltered.
            if topic is None:
                continue
            if not isinstance(topic, str) or not HASH_PATTERN.match(topic.strip()):
                raise self._invalid(f"Invalid topic{idx}: {topic}")
            params[f"topic{idx}"] = topic.strip()
        return params

    def _parse_abi(self, raw_abi: Any, address: str) -> Any:
        trimmed = raw_abi.strip() if isinstance(raw_abi, str) else ""
        if not trimmed:
            raise self._invalid(f"Empty ABI returned for {address}")

        if _NOT_VERIFIED_RE.search(trimmed):
            raise PlasmaScanError(
                f"Contract {address} is not verified",
                ErrorCode.UNVERIFIED_CONTRACT,
                self.config.base_url,
                raw_abi,
            )

        try:
            return json.loads(trimmed)
        except json.JSONDecodeError as exc:
            raise self._invalid(f"Failed to parse ABI for {address}", str(exc)) from exc

    def _as_list(self, result: Any, what: str) -> List[Any]:
        if result is None or result == "":
            return []
        if not isinstance(result, list):
            raise self._invalid(f"Unexpected {what} payload", result)
        return result

    def _as_dict(self, result: Any, what: str) -> Dict[str, Any]:
        if not isinstance(result, dict):
            raise self._invalid(f"Unexpected {what} payload", result)
        return result

    def _map_creation(self, entry: Dict[str, Any]) -> ContractCreationInfo:
        return ContractCreationInfo(
            contract_address=first_present(entry, CREATION_ADDRESS_KEYS, ""),
            contract_creator=first_present(entry, CREATION_CREATOR_KEYS, ""),
            tx_hash=first_present(entry, CREATION_TX_HASH_KEYS, ""),
        )

    def _map_log(self, entry: Dict[str, Any]) -> LogEntry:
        topics: Tuple[str, ...] = tuple(entry.get("topics") or ())
        return LogEntry(
            address=entry.get("address", ""),
            block_number=parse_numeric(entry.get("blockNumber")),
            data=entry.get("data", ""),
            log_index=parse_numeric(entry.get("logIndex")),
            time_stamp=parse_numeric(entry.get("timeStamp")),
            topics=topics,
            transaction_hash=entry.get("transactionHash", ""),
            transaction_index=parse_numeric(entry.get("transactionIndex")),
        )

    def _map_holder(self, entry: Dict[str, Any]) -> TokenHolder:
        return TokenHolder(
            holder_address=first_present(entry, HOLDER_ADDRESS_KEYS, ""),
            quantity=str(first_present(entry, HOLDER_QUANTITY_KEYS, "0")),
            raw=dict(entry),
        )

    def _map_holding(self, entry: Dict[str, Any], default_contract: str = "") -> TokenHolding:
        return TokenHolding(
            contract_address=first_present(entry, TOKEN_CONTRACT_KEYS, default_contract),
            balance=str(first_present(entry, HOLDING_BALANCE_KEYS, "0")),
            raw=dict(entry),
            token_name=first_present(entry, TOKEN_NAME_KEYS),
            token_symbol=first_present(entry, TOKEN_SYMBOL_KEYS),
        )
