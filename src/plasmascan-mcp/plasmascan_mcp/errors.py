from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    HTTP_ERROR = "HTTP_ERROR"
    API_ERROR = "API_ERROR"
    # Reserved: nothing maps upstream responses to it yet.
    NOT_FOUND = "NOT_FOUND"
    UNVERIFIED_CONTRACT = "UNVERIFIED_CONTRACT"
    INVALID_RESPONSE = "INVALID_RESPONSE"


class PlasmaScanError(Exception):
    """A classified failure raised by the client or service layer."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        url: str,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.url = url
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code.value,
            "url": self.url,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"PlasmaScanError({self.message!r}, code={self.code.value}, url={self.url!r})"
