"""Core processing modules."""

from deepseek_proxy.core.errors import ErrorType, ProxyError, error_envelope
from deepseek_proxy.core.handler import ChatCompletionHandler, create_handler
from deepseek_proxy.core.proxy_client import UpstreamClient, create_client
from deepseek_proxy.core.relay import RelayState, StreamRelay
from deepseek_proxy.core.sanitizer import PayloadSanitizer, create_sanitizer, sanitize_payload
from deepseek_proxy.core.sse import DONE_EVENT, SSELineBuffer, format_event, frame_line

__all__ = [
    "ErrorType",
    "ProxyError",
    "error_envelope",
    "ChatCompletionHandler",
    "create_handler",
    "UpstreamClient",
    "create_client",
    "RelayState",
    "StreamRelay",
    "PayloadSanitizer",
    "create_sanitizer",
    "sanitize_payload",
    "DONE_EVENT",
    "SSELineBuffer",
    "format_event",
    "frame_line",
]
