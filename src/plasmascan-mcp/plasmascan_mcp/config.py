import logging
import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_NETWORK_ID = "mainnet"
DEFAULT_CHAIN_ID = "9745"
DEFAULT_TIMEOUT_MS = 15_000
MIN_TIMEOUT_MS = 1_000
DEFAULT_LOG_LEVEL = "INFO"
BASE_URL_TEMPLATE = "https://api.routescan.io/v2/network/{network_id}/evm/{chain_id}/etherscan/api"

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class Config:
    base_url: str
    network_id: str = DEFAULT_NETWORK_ID
    chain_id: str = DEFAULT_CHAIN_ID
    request_timeout_ms: int = DEFAULT_TIMEOUT_MS
    api_key: Optional[str] = None
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def request_timeout(self) -> float:
        """Timeout in seconds, as expected by requests."""
        return self.request_timeout_ms / 1000


def _non_blank(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def parse_timeout_ms(raw: Optional[str]) -> int:
    """Parse the leading integer of raw; fall back to the default, never below the floor."""
    match = _LEADING_INT_RE.match(raw or "")
    if not match:
        return DEFAULT_TIMEOUT_MS
    return max(MIN_TIMEOUT_MS, int(match.group(1)))


def build_base_url(network_id: str, chain_id: str, override: Optional[str] = None) -> str:
    if override:
        url = override
    else:
        url = BASE_URL_TEMPLATE.format(network_id=network_id, chain_id=chain_id)
    return url[:-1] if url.endswith("/") else url


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Load configuration from environment variables (and a .env file when reading os.environ)."""
    if environ is None:
        load_dotenv()
        environ = os.environ

    network_id = _non_blank(environ.get("PLASMASCAN_NETWORK_ID")) or DEFAULT_NETWORK_ID
    chain_id = _non_blank(environ.get("PLASMASCAN_CHAIN_ID")) or DEFAULT_CHAIN_ID
    api_key = _non_blank(environ.get("PLASMASCAN_API_KEY"))
    timeout_ms = parse_timeout_ms(environ.get("PLASMASCAN_TIMEOUT_MS"))
    base_url = build_base_url(network_id, chain_id, _non_blank(environ.get("PLASMASCAN_BASE_URL")))
    log_level = (_non_blank(environ.get("PLASMASCAN_LOG_LEVEL")) or DEFAULT_LOG_LEVEL).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        log_level = DEFAULT_LOG_LEVEL

    return Config(
        base_url=base_url,
        network_id=network_id,
        chain_id=chain_id,
        request_timeout_ms=timeout_ms,
        api_key=api_key,
        log_level=log_level,
    )
