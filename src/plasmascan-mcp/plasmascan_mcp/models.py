from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional, Tuple, Union

# Log numeric fields hold float("nan") when upstream sent something unparseable.
Numeric = Union[int, float]


class _Record:
    """Shared dict conversion. Fields named in ``_omit_if_none`` are dropped when unset."""

    _omit_if_none: ClassVar[FrozenSet[str]] = frozenset()

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if value is None and f.name in self._omit_if_none:
                continue
            if isinstance(value, _Record):
                value = value.to_dict()
            elif isinstance(value, tuple):
                value = list(value)
            out[f.name] = value
        return out


@dataclass(frozen=True)
class ContractAbiResult(_Record):
    address: str
    abi: Any


@dataclass(frozen=True)
class ContractSourceResult(_Record):
    address: str
    source_code: str
    abi: Any
    metadata: Dict[str, Any] = field(default_factory=dict)
    contract_name: Optional[str] = None
    compiler_version: Optional[str] = None

    _omit_if_none: ClassVar[FrozenSet[str]] = frozenset({"contract_name", "compiler_version"})


@dataclass(frozen=True)
class ContractCreationInfo(_Record):
    contract_address: str
    contract_creator: str
    tx_hash: str


@dataclass(frozen=True)
class LogFilter:
    address: Optional[str] = None
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    topics: Optional[Tuple[Optional[str], ...]] = None
    page: Optional[int] = None
    offset: Optional[int] = None


@dataclass(frozen=True)
class LogEntry(_Record):
    address: str
    block_number: Numeric
    data: str
    log_index: Numeric
    time_stamp: Numeric
    topics: Tuple[str, ...]
    transaction_hash: str
    transaction_index: Numeric


@dataclass(frozen=True)
class TransactionStatus(_Record):
    status: str
    message: Optional[str] = None

    _omit_if_none: ClassVar[FrozenSet[str]] = frozenset({"message"})


@dataclass(frozen=True)
class TokenSupply(_Record):
    contract_address: str
    total_supply: str
    block_number: Optional[int] = None

    _omit_if_none: ClassVar[FrozenSet[str]] = frozenset({"block_number"})


@dataclass(frozen=True)
class TokenBalance(_Record):
    contract_address: str
    account_address: str
    balance: str
    tag: Optional[str] = None
    block_number: Optional[int] = None

    _omit_if_none: ClassVar[FrozenSet[str]] = frozenset({"tag", "block_number"})


@dataclass(frozen=True)
class TokenHolder(_Record):
    holder_address: str
    quantity: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TokenInfo(_Record):
    contract_address: str
    raw: Dict[str, Any] = field(default_factory=dict)
    name: Optional[str] = None
    symbol: Optional[str] = None
    decimals: Optional[str] = None
    total_supply: Optional[str] = None

    _omit_if_none: ClassVar[FrozenSet[str]] = frozenset({"name", "symbol", "decimals", "total_supply"})


@dataclass(frozen=True)
class TokenHolding(_Record):
    contract_address: str
    balance: str
    raw: Dict[str, Any] = field(default_factory=dict)
    token_name: Optional[str] = None
    token_symbol: Optional[str] = None

    _omit_if_none: ClassVar[FrozenSet[str]] = frozenset({"token_name", "token_symbol"})


@dataclass(frozen=True)
class TokenSnapshot(_Record):
    """Token metadata plus current supply; either may be missing upstream."""

    contract_address: str
    total_supply: Optional[str]
    info: Optional[TokenInfo]


def records_to_dicts(records: List[_Record]) -> List[Dict[str, Any]]:
    return [record.to_dict() for record in records]
