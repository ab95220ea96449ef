import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from conftest import BASE_URL, FakeHttp, FakeResponse, failed, ok
from plasmascan_mcp.config import Config
from plasmascan_mcp.envelope import extract_error_message, is_empty_result, unwrap
from plasmascan_mcp.errors import ErrorCode, PlasmaScanError
from plasmascan_mcp.etherscan_client import EtherscanClient


def test_request_sends_module_action_apikey_and_timeout(client, http):
    http.queue(ok("1000"))

    assert client.get_token_supply("0xabc") == "1000"

    call = http.calls[0]
    assert call["url"] == BASE_URL
    assert call["timeout"] == 2.5
    assert call["params"] == {
        "module": "stats",
        "action": "tokensupply",
        "contractaddress": "0xabc",
        "apikey": "test-key",
    }


def test_apikey_omitted_when_not_configured():
    http = FakeHttp(ok("1"))
    client = EtherscanClient(Config(base_url=BASE_URL), http_get=http)

    client.get_transaction_receipt_status("0x01")

    assert "apikey" not in http.last_params


def test_success_status_returns_result_regardless_of_message(client, http):
    http.queue(ok([{"a": 1}], message="No records found"))

    assert client.get_source_code("0xabc") == [{"a": 1}]


def test_no_records_found_tolerated_when_allowed(client, http):
    http.queue(failed([], message="No records found"))

    assert client.get_token_holder_list("0xabc") == []


def test_no_records_found_is_an_api_error_when_not_tolerated(client, http):
    http.queue(failed(None, message="No records found"))

    with pytest.raises(PlasmaScanError) as excinfo:
        client.get_transaction_status("0x01")

    assert excinfo.value.code is ErrorCode.API_ERROR
    assert excinfo.value.message == "No records found"


def test_api_error_message_prefers_result_string(client, http):
    http.queue(failed("Max rate limit reached", message="NOTOK"))

    with pytest.raises(PlasmaScanError) as excinfo:
        client.get_abi("0xabc")

    err = excinfo.value
    assert err.code is ErrorCode.API_ERROR
    assert err.message == "Max rate limit reached"
    assert err.details == {"status": "0", "message": "NOTOK", "result": "Max rate limit reached"}
    assert "action=getabi" in err.url
    assert "apikey" not in err.url


def test_http_error_carries_status_and_reason(client, http):
    http.queue(FakeResponse(status_code=503, reason="Service Unavailable"))

    with pytest.raises(PlasmaScanError) as excinfo:
        client.get_token_supply("0xabc")

    err = excinfo.value
    assert err.code is ErrorCode.HTTP_ERROR
    assert err.message == "HTTP error 503 while calling PlasmaScan"
    assert err.details == {"status": 503, "status_text": "Service Unavailable"}


def test_timeout_maps_to_http_error(client, http):
    http.queue(requests.Timeout("read timed out"))

    with pytest.raises(PlasmaScanError) as excinfo:
        client.get_token_supply("0xabc")

    assert excinfo.value.code is ErrorCode.HTTP_ERROR
    assert "timed out" in excinfo.value.message


def test_connection_error_maps_to_http_error(client, http):
    http.queue(requests.ConnectionError("refused"))

    with pytest.raises(PlasmaScanError) as excinfo:
        client.get_token_supply("0xabc")

    assert excinfo.value.code is ErrorCode.HTTP_ERROR
    assert excinfo.value.message == "Unexpected error while calling PlasmaScan"


def test_unparseable_body_is_invalid_response(client, http):
    http.queue(FakeResponse(json_error=True))

    with pytest.raises(PlasmaScanError) as excinfo:
        client.get_token_supply("0xabc")

    assert excinfo.value.code is ErrorCode.INVALID_RESPONSE


def test_logs_params_skip_unset_fields(client, http):
    http.queue(ok([]))

    client.get_logs(address="0xabc", from_block=0, topics={"topic2": "0xff"}, offset=10)

    params = http.last_params
    assert params["fromBlock"] == "0"
    assert params["offset"] == "10"
    assert params["topic2"] == "0xff"
    assert "toBlock" not in params
    assert "page" not in params


def test_default_transport_is_session_get(config):
    client = EtherscanClient(config)

    assert client._http_get == client.session.get


class TestEnvelope:
    def test_empty_result_sentinels_are_case_insensitive(self):
        assert is_empty_result({"message": "No Transactions Found "})
        assert is_empty_result({"message": "NO RECORDS FOUND"})
        assert not is_empty_result({"message": "NOTOK"})
        assert not is_empty_result({})

    def test_error_message_fallbacks(self):
        assert extract_error_message({"result": "boom", "message": "NOTOK"}) == "boom"
        assert extract_error_message({"result": "  ", "message": "NOTOK"}) == "NOTOK"
        assert extract_error_message({"result": [], "message": ""}) == "Unknown API error"

    def test_non_object_payload_is_invalid(self):
        with pytest.raises(PlasmaScanError) as excinfo:
            unwrap(["not", "an", "envelope"], BASE_URL)

        assert excinfo.value.code is ErrorCode.INVALID_RESPONSE


def test_body_is_streamed_and_response_closed(client, http):
    response = FakeResponse(ok("1000"))
    http.queue(response)

    assert client.get_token_supply("0xabc") == "1000"

    assert http.calls[0]["stream"] is True
    assert response.closed


def test_redirect_status_is_an_http_error(client, http):
    http.queue(FakeResponse(status_code=302, reason="Found"))

    with pytest.raises(PlasmaScanError) as excinfo:
        client.get_token_supply("0xabc")

    assert excinfo.value.code is ErrorCode.HTTP_ERROR
    assert excinfo.value.details == {"status": 302, "status_text": "Found"}


class _DripHandler(BaseHTTPRequestHandler):
    """Sends the envelope at once, then trailing whitespace one byte at a time."""

    body = b'{"status": "1", "message": "OK", "result": "1"}'
    trailing_bytes = 6
    delay = 0.5

    def do_GET(self):
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(self.body) + self.trailing_bytes))
        self.end_headers()
        self.wfile.write(self.body)
        for _ in range(self.trailing_bytes):
            time.sleep(self.delay)
            self.wfile.write(b" ")

    def log_message(self, format, *args):
        pass


class _PromptHandler(_DripHandler):
    trailing_bytes = 0


def _serve(handler):
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    server.daemon_threads = True
    threading.Thread(target=server.serve_forever, daemon=True).start()
    return server


def _local_client(server) -> EtherscanClient:
    host, port = server.server_address[:2]
    client = EtherscanClient(Config(base_url=f"http://{host}:{port}/api", request_timeout_ms=1000))
    client.session.trust_env = False
    return client


@pytest.fixture
def drip_server():
    server = _serve(_DripHandler)
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def prompt_server():
    server = _serve(_PromptHandler)
    yield server
    server.shutdown()
    server.server_close()


def test_trickling_body_times_out_at_total_deadline(drip_server):
    client = _local_client(drip_server)
    started = time.monotonic()

    with pytest.raises(PlasmaScanError) as excinfo:
        client.get_token_supply("0xabc")

    elapsed = time.monotonic() - started
    assert excinfo.value.code is ErrorCode.HTTP_ERROR
    assert excinfo.value.message == "PlasmaScan request timed out"
    assert elapsed < 2.0


def test_local_server_round_trip(prompt_server):
    client = _local_client(prompt_server)

    assert client.get_token_supply("0xabc") == "1"
