"""Chat completions handler - picks the streaming or buffered path."""

import time
import uuid
from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from deepseek_proxy.core.errors import ErrorType, ProxyError, error_envelope
from deepseek_proxy.core.proxy_client import UpstreamClient
from deepseek_proxy.core.relay import StreamRelay
from deepseek_proxy.core.sanitizer import PayloadSanitizer, create_sanitizer
from deepseek_proxy.metrics import MetricsExporter
from deepseek_proxy.models import ChatRequest
from deepseek_proxy.utils import get_logger

logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ChatCompletionHandler:
    """Entry point for ``POST /v1/chat/completions``.

    Coordinates:
    1. Sanitization of tool-calling fields
    2. Streaming relay when ``stream`` is ``true``
    3. Buffered upstream call otherwise
    """

    def __init__(
        self,
        client: UpstreamClient,
        sanitizer: PayloadSanitizer | None = None,
        path: str = "/v1/chat/completions",
    ) -> None:
        """Initialize handler.

        Args:
            client: Upstream client
            sanitizer: Payload sanitizer
            path: Upstream chat completions path
        """
        self.client = client
        self.sanitizer = sanitizer or create_sanitizer()
        self.path = path

    async def handle(self, body: Any) -> JSONResponse | StreamingResponse:
        """Produce exactly one downstream response for ``body``.

        Args:
            body: Decoded request body

        Returns:
            JSON response or SSE stream
        """
        if not isinstance(body, dict):
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content=error_envelope("Request body must be a JSON object", ErrorType.INVALID_REQUEST_ERROR),
            )

        request_id = uuid.uuid4().hex[:12]
        try:
            summary = ChatRequest.model_validate(body)
        except ValidationError as e:
            # Shape problems are the upstream's call; keep forwarding.
            logger.warning("request.unrecognized_shape", request_id=request_id, error=str(e))
            summary = ChatRequest(stream=body.get("stream"))

        logger.info(
            "request.received",
            request_id=request_id,
            model=summary.model,
            messages=len(summary.messages),
            stream=summary.is_streaming,
            tools_count=summary.tools_count,
        )
        if "tools" in body:
            logger.debug(
                "request.tools",
                request_id=request_id,
                has_tools=bool(summary.tools),
                tools_count=summary.tools_count,
                tools_type=type(summary.tools).__name__,
            )

        cleaned = self.sanitizer.sanitize(body)

        if summary.is_streaming:
            relay = StreamRelay(self.client, path=self.path, request_id=request_id)
            return StreamingResponse(
                relay.run(cleaned),
                status_code=status.HTTP_200_OK,
                media_type="text/event-stream; charset=utf-8",
                headers=SSE_HEADERS,
            )

        return await self._handle_buffered(cleaned, request_id)

    async def _handle_buffered(self, cleaned: dict[str, Any], request_id: str) -> JSONResponse:
        """Forward without streaming and return the upstream JSON as-is."""
        started = time.perf_counter()
        try:
            result = await self.client.send(self.path, cleaned)
        except ProxyError as e:
            MetricsExporter.record_request("buffered", e.error_type.value, time.perf_counter() - started)
            logger.error("request.failed", request_id=request_id, error=e.message, type=e.error_type.value)
            return self._proxy_error(e.message)
        except Exception as e:
            MetricsExporter.record_request("buffered", ErrorType.PROXY_ERROR.value, time.perf_counter() - started)
            logger.exception("request.failed", request_id=request_id)
            return self._proxy_error(str(e))

        elapsed = time.perf_counter() - started
        MetricsExporter.record_request("buffered", "ok", elapsed)
        self._log_reply(result, request_id, cleaned.get("model"), elapsed)
        return JSONResponse(status_code=status.HTTP_200_OK, content=result)

    @staticmethod
    def _proxy_error(message: str) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_envelope(f"Proxy error: {message}", ErrorType.PROXY_ERROR),
        )

    @staticmethod
    def _log_reply(result: Any, request_id: str, model: str | None, elapsed: float) -> None:
        content = None
        usage = None
        if isinstance(result, dict):
            choices = result.get("choices") or []
            if choices and isinstance(choices[0], dict):
                message = choices[0].get("message") or {}
                content = message.get("content") if isinstance(message, dict) else None
            usage = result.get("usage")
        logger.info(
            "request.completed",
            request_id=request_id,
            model=model,
            duration_ms=round(elapsed * 1000, 2),
            content_preview=content[:200] if isinstance(content, str) else None,
            total_tokens=usage.get("total_tokens") if isinstance(usage, dict) else None,
        )


def create_handler(
    client: UpstreamClient,
    path: str = "/v1/chat/completions",
) -> ChatCompletionHandler:
    """Factory for chat completion handler.

    Args:
        client: Upstream client
        path: Upstream chat completions path

    Returns:
        Configured handler
    """
    return ChatCompletionHandler(client, create_sanitizer(), path)
