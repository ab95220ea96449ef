import json
import logging
import time
from concurrent import futures
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import requests

from . import envelope
from .config import Config
from .errors import ErrorCode, PlasmaScanError

logger = logging.getLogger(__name__)

HttpGet = Callable[..., requests.Response]

READ_CHUNK_SIZE = 1024
MAX_CONCURRENT_REQUESTS = 4


class EtherscanClient:
    """Thin wrapper around an Etherscan-compatible API. One GET per call, no retry."""

    def __init__(self, config: Config, http_get: Optional[HttpGet] = None) -> None:
        self.config = config
        self.base_url = config.base_url
        self.session = requests.Session()
        self._http_get = http_get or self.session.get
        self._pool = futures.ThreadPoolExecutor(
            max_workers=MAX_CONCURRENT_REQUESTS, thread_name_prefix="plasmascan-http"
        )

    def get_abi(self, address: str) -> Any:
        params = {
            "module": "contract",
            "action": "getabi",
            "address": address,
        }
        return self._request(params)

    def get_source_code(self, address: str) -> Any:
        params = {
            "module": "contract",
            "action": "getsourcecode",
            "address": address,
        }
        return self._request(params)

    def get_contract_creation(self, addresses: Sequence[str]) -> Any:
        params = {
            "module": "contract",
            "action": "getcontractcreation",
            "contractaddresses": ",".join(addresses),
        }
        return self._request(params, allow_empty=True)

    def get_logs(
        self,
        address: Optional[str] = None,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
        topics: Optional[Dict[str, str]] = None,
        page: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Any:
        params: Dict[str, Any] = {
            "module": "logs",
            "action": "getLogs",
        }
        if address:
            params["address"] = address
        if from_block is not None:
            params["fromBlock"] = str(from_block)
        if to_block is not None:
            params["toBlock"] = str(to_block)
        if page is not None:
            params["page"] = str(page)
        if offset is not None:
            params["offset"] = str(offset)
        if topics:
            params.update(topics)
        return self._request(params, allow_empty=True)

    def get_transaction_status(self, tx_hash: str) -> Any:
        params = {
            "module": "transaction",
            "action": "getstatus",
            "txhash": tx_hash,
        }
        return self._request(params)

    def get_transaction_receipt_status(self, tx_hash: str) -> Any:
        params = {
            "module": "transaction",
            "action": "gettxreceiptstatus",
            "txhash": tx_hash,
        }
        return self._request(params)

    def get_token_supply(self, contract_address: str) -> Any:
        params = {
            "module": "stats",
            "action": "tokensupply",
            "contractaddress": contract_address,
        }
        return self._request(params)

    def get_token_supply_history(self, contract_address: str, block_number: int) -> Any:
        params = {
            "module": "stats",
            "action": "tokensupplyhistory",
            "contractaddress": contract_address,
            "blockno": str(block_number),
        }
        return self._request(params)

    def get_token_balance(self, contract_address: str, address: str, tag: str) -> Any:
        params = {
            "module": "account",
            "action": "tokenbalance",
            "contractaddress": contract_address,
            "address": address,
            "tag": tag,
        }
        return self._request(params)

    def get_token_balance_history(self, contract_address: str, address: str, block_number: int) -> Any:
        params = {
            "module": "account",
            "action": "tokenbalancehistory",
            "contractaddress": contract_address,
            "address": address,
            "blockno": str(block_number),
        }
        return self._request(params)

    def get_token_holder_list(
        self, contract_address: str, page: Optional[int] = None, offset: Optional[int] = None
    ) -> Any:
        params = {
            "module": "token",
            "action": "tokenholderlist",
            "contractaddress": contract_address,
        }
        params.update(self._pagination(page, offset))
        return self._request(params, allow_empty=True)

    def get_token_info(self, contract_address: str) -> Any:
        params = {
            "module": "token",
            "action": "tokeninfo",
            "contractaddress": contract_address,
        }
        return self._request(params, allow_empty=True)

    def get_address_token_balance(
        self, address: str, page: Optional[int] = None, offset: Optional[int] = None
    ) -> Any:
        params = {
            "module": "account",
            "action": "addresstokenbalance",
            "address": address,
        }
        params.update(self._pagination(page, offset))
        return self._request(params, allow_empty=True)

    def get_address_nft_balance(
        self, address: str, page: Optional[int] = None, offset: Optional[int] = None
    ) -> Any:
        params = {
            "module": "account",
            "action": "addresstokennftbalance",
            "address": address,
        }
        params.update(self._pagination(page, offset))
        return self._request(params, allow_empty=True)

    def get_address_nft_inventory(
        self,
        address: str,
        contract_address: str,
        page: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Any:
        params = {
            "module": "account",
            "action": "addresstokennftinventory",
            "address": address,
            "contractaddress": contract_address,
        }
        params.update(self._pagination(page, offset))
        return self._request(params, allow_empty=True)

    def _pagination(self, page: Optional[int], offset: Optional[int]) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if page is not None:
            params["page"] = str(page)
        if offset is not None:
            params["offset"] = str(offset)
        return params

    def _build_url(self, params: Dict[str, Any]) -> str:
        # No apikey here: this URL goes into logs and error payloads.
        prepared = requests.Request("GET", self.base_url, params=params).prepare()
        return prepared.url or self.base_url

    def _fetch(self, params: Dict[str, Any], deadline: float) -> Tuple[int, str, bytes]:
        """Runs on the request pool. The caller stops waiting at ``deadline``; this stops reading."""
        response = self._http_get(
            self.base_url,
            params=params,
            timeout=self.config.request_timeout,
            stream=True,
        )
        try:
            if not 200 <= response.status_code < 300:
                return response.status_code, response.reason, b""
            chunks = []
            for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise requests.Timeout("response body not received before the deadline")
                chunks.append(chunk)
            return response.status_code, response.reason, b"".join(chunks)
        finally:
            response.close()

    def _request(self, params: Dict[str, Any], allow_empty: bool = False) -> Any:
        url = self._build_url(params)
        merged = dict(params)
        if self.config.api_key:
            merged["apikey"] = self.config.api_key

        logger.debug("GET %s", url)
        deadline = time.monotonic() + self.config.request_timeout
        future = self._pool.submit(self._fetch, merged, deadline)
        try:
            status_code, reason, body = future.result(timeout=max(deadline - time.monotonic(), 0))
        except (futures.TimeoutError, requests.Timeout) as exc:
            future.cancel()
            logger.warning("Request timed out after %sms: %s", self.config.request_timeout_ms, url)
            raise PlasmaScanError(
                "PlasmaScan request timed out", ErrorCode.HTTP_ERROR, url, str(exc) or None
            ) from exc
        except requests.RequestException as exc:
            logger.warning("Request failed: %s (%s)", url, exc)
            raise PlasmaScanError(
                "Unexpected error while calling PlasmaScan", ErrorCode.HTTP_ERROR, url, str(exc)
            ) from exc

        if not 200 <= status_code < 300:
            logger.warning("HTTP %s from %s", status_code, url)
            raise PlasmaScanError(
                f"HTTP error {status_code} while calling PlasmaScan",
                ErrorCode.HTTP_ERROR,
                url,
                {"status": status_code, "status_text": reason},
            )

        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise PlasmaScanError(
                "Failed to parse response from PlasmaScan", ErrorCode.INVALID_RESPONSE, url, str(exc)
            ) from exc

        try:
            return envelope.unwrap(payload, url, allow_empty=allow_empty)
        except PlasmaScanError as exc:
            logger.warning("%s from %s: %s", exc.code.value, url, exc.message)
            raise
