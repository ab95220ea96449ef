from unittest.mock import patch

from plasmascan_mcp.config import (
    DEFAULT_TIMEOUT_MS,
    Config,
    build_base_url,
    load_config,
    parse_timeout_ms,
)


def test_defaults_when_environment_is_empty():
    cfg = load_config({})

    assert cfg.network_id == "mainnet"
    assert cfg.chain_id == "9745"
    assert cfg.request_timeout_ms == DEFAULT_TIMEOUT_MS
    assert cfg.api_key is None
    assert cfg.base_url == "https://api.routescan.io/v2/network/mainnet/evm/9745/etherscan/api"
    assert cfg.log_level == "INFO"


def test_blank_values_fall_back_to_defaults():
    cfg = load_config(
        {
            "PLASMASCAN_NETWORK_ID": "   ",
            "PLASMASCAN_CHAIN_ID": "",
            "PLASMASCAN_API_KEY": "  ",
            "PLASMASCAN_BASE_URL": " ",
        }
    )

    assert cfg.network_id == "mainnet"
    assert cfg.chain_id == "9745"
    assert cfg.api_key is None
    assert "/network/mainnet/evm/9745/" in cfg.base_url


def test_network_and_chain_are_interpolated_into_base_url():
    cfg = load_config({"PLASMASCAN_NETWORK_ID": "testnet", "PLASMASCAN_CHAIN_ID": "9746"})

    assert cfg.base_url == "https://api.routescan.io/v2/network/testnet/evm/9746/etherscan/api"


def test_base_url_override_is_used_verbatim_without_trailing_slash():
    cfg = load_config({"PLASMASCAN_BASE_URL": "https://explorer.example/api/", "PLASMASCAN_CHAIN_ID": "1"})

    assert cfg.base_url == "https://explorer.example/api"


def test_api_key_is_trimmed():
    cfg = load_config({"PLASMASCAN_API_KEY": " secret "})

    assert cfg.api_key == "secret"


def test_timeout_parsing():
    assert parse_timeout_ms(None) == DEFAULT_TIMEOUT_MS
    assert parse_timeout_ms("") == DEFAULT_TIMEOUT_MS
    assert parse_timeout_ms("abc") == DEFAULT_TIMEOUT_MS
    assert parse_timeout_ms("2500") == 2500
    assert parse_timeout_ms("3000ms") == 3000
    assert parse_timeout_ms("10") == 1000
    assert parse_timeout_ms("-5000") == 1000


def test_timeout_seconds_property():
    cfg = Config(base_url="https://x", request_timeout_ms=2500)

    assert cfg.request_timeout == 2.5


def test_unknown_log_level_falls_back():
    assert load_config({"PLASMASCAN_LOG_LEVEL": "debug"}).log_level == "DEBUG"
    assert load_config({"PLASMASCAN_LOG_LEVEL": "chatty"}).log_level == "INFO"


def test_build_base_url_strips_single_trailing_slash():
    assert build_base_url("mainnet", "9745", "https://a.example/api/") == "https://a.example/api"


@patch("plasmascan_mcp.config.load_dotenv")
def test_reading_process_environment_loads_dotenv(mock_load_dotenv, monkeypatch):
    monkeypatch.setenv("PLASMASCAN_CHAIN_ID", "424242")

    cfg = load_config()

    mock_load_dotenv.assert_called_once()
    assert cfg.chain_id == "424242"


@patch("plasmascan_mcp.config.load_dotenv")
def test_explicit_mapping_skips_dotenv(mock_load_dotenv):
    load_config({})

    mock_load_dotenv.assert_not_called()
