"""
Etherscan response envelope handling.

Every upstream response has the shape ``{"status": "0" | "1", "message": str, "result": T}``.
This module is the only place that knows how to read it.
"""

from typing import Any, Dict

from .errors import ErrorCode, PlasmaScanError

SUCCESS_STATUS = "1"
EMPTY_RESULT_MESSAGES = frozenset({"no records found", "no transactions found"})
FALLBACK_ERROR_MESSAGE = "Unknown API error"


def is_empty_result(payload: Dict[str, Any]) -> bool:
    message = payload.get("message")
    if not isinstance(message, str):
        return False
    return message.strip().lower() in EMPTY_RESULT_MESSAGES


def extract_error_message(payload: Dict[str, Any]) -> str:
    result = payload.get("result")
    if isinstance(result, str) and result.strip():
        return result

    message = payload.get("message")
    if isinstance(message, str) and message.strip():
        return message

    return FALLBACK_ERROR_MESSAGE


def unwrap(payload: Any, url: str, allow_empty: bool = False) -> Any:
    """Return the envelope result, or raise a classified error."""
    if not isinstance(payload, dict):
        raise PlasmaScanError(
            "Unexpected response from PlasmaScan (non-object body)",
            ErrorCode.INVALID_RESPONSE,
            url,
            payload,
        )

    if str(payload.get("status", "")).strip() == SUCCESS_STATUS:
        return payload.get("result")

    if allow_empty and is_empty_result(payload):
        return payload.get("result")

    raise PlasmaScanError(extract_error_message(payload), ErrorCode.API_ERROR, url, payload)
