"""Proxy error taxonomy."""

import json
from enum import Enum

from deepseek_proxy.models import ErrorDetail, ErrorResponse


class ErrorType(str, Enum):
    """Error kinds reported to callers."""

    API_ERROR = "api_error"  # upstream answered with a non-200 status
    STREAM_ERROR = "stream_error"  # upstream broke mid-stream
    REQUEST_ERROR = "request_error"  # outbound request could not complete
    TIMEOUT_ERROR = "timeout_error"
    PROXY_ERROR = "proxy_error"
    INVALID_REQUEST_ERROR = "invalid_request_error"


class ProxyError(Exception):
    """A tagged failure with a human-readable message."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.PROXY_ERROR,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.status_code = status_code

    def to_dict(self) -> dict:
        """Error envelope as a plain dict."""
        return error_envelope(self.message, self.error_type)

    def to_sse(self) -> str:
        """Error envelope framed as a single SSE event."""
        return f"data: {json.dumps(self.to_dict(), ensure_ascii=False)}\n\n"

    def __repr__(self) -> str:
        return f"ProxyError({self.error_type.value!r}, {self.message!r})"


def error_envelope(message: str, error_type: ErrorType | str) -> dict:
    """Build ``{"error": {"message": ..., "type": ...}}``."""
    kind = error_type.value if isinstance(error_type, ErrorType) else error_type
    return ErrorResponse(error=ErrorDetail(message=message, type=kind)).model_dump()
