import json
from typing import Any, Dict, Iterator, List, Optional

import pytest

from plasmascan_mcp.config import Config
from plasmascan_mcp.etherscan_client import EtherscanClient
from plasmascan_mcp.service import ScanService

BASE_URL = "https://api.example.test/v2/network/mainnet/evm/9745/etherscan/api"
ADDRESS = "0x" + "ab" * 20
OTHER_ADDRESS = "0x" + "cd" * 20
TX_HASH = "0x" + "12" * 32
TOPIC = "0x" + "ef" * 32


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, reason: str = "OK", json_error: bool = False):
        self._payload = payload
        self.status_code = status_code
        self.reason = reason
        self._json_error = json_error
        self.closed = False

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        body = b"<html>bad gateway</html>" if self._json_error else json.dumps(self._payload).encode()
        for start in range(0, len(body), chunk_size):
            yield body[start : start + chunk_size]

    def close(self) -> None:
        self.closed = True


def as_response(item: Any) -> FakeResponse:
    if isinstance(item, BaseException):
        raise item
    if isinstance(item, FakeResponse):
        return item
    return FakeResponse(item)


class FakeHttp:
    """Stands in for requests.Session.get and records every call."""

    def __init__(self, *responses: Any) -> None:
        self.responses: List[Any] = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def queue(self, item: Any) -> None:
        self.responses.append(item)

    def __call__(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        stream: bool = False,
    ):
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout, "stream": stream})
        if not self.responses:
            raise AssertionError(f"unexpected request: {params}")
        return as_response(self.responses.pop(0))

    @property
    def last_params(self) -> Dict[str, Any]:
        return self.calls[-1]["params"]


def ok(result: Any, message: str = "OK") -> Dict[str, Any]:
    return {"status": "1", "message": message, "result": result}


def failed(result: Any = None, message: str = "NOTOK") -> Dict[str, Any]:
    return {"status": "0", "message": message, "result": result}


@pytest.fixture
def config() -> Config:
    return Config(base_url=BASE_URL, request_timeout_ms=2500, api_key="test-key")


@pytest.fixture
def http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def client(config, http) -> EtherscanClient:
    return EtherscanClient(config, http_get=http)


@pytest.fixture
def service(config, client) -> ScanService:
    return ScanService(config, client=client)
