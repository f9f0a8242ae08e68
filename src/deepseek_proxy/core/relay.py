"""Stream relay - re-emits upstream SSE events to the downstream client."""

import asyncio
import json
import time
import uuid
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any

import httpx

from deepseek_proxy.core.errors import ErrorType, ProxyError
from deepseek_proxy.core.proxy_client import UpstreamClient
from deepseek_proxy.core.sse import (
    DATA_PREFIX,
    DONE_EVENT,
    DONE_SENTINEL,
    SSELineBuffer,
    format_event,
    frame_line,
)
from deepseek_proxy.metrics import MetricsExporter
from deepseek_proxy.utils import get_logger

logger = get_logger(__name__)


class RelayState(Enum):
    """Relay lifecycle states."""

    CONNECTING = "connecting"
    AWAITING_HEADERS = "awaiting_headers"
    STREAMING = "streaming"
    DRAINING = "draining"
    CLOSED = "closed"
    ERROR = "error"


TERMINAL_STATES = frozenset({RelayState.CLOSED, RelayState.ERROR})


class StreamRelay:
    """Relays one upstream event stream to one downstream connection.

    The downstream response headers are already committed when :meth:`run`
    starts, so every failure is reported as an in-band SSE error event.
    Exactly one terminal frame is produced: ``[DONE]`` on success or an
    error envelope, never both.
    """

    def __init__(
        self,
        client: UpstreamClient,
        path: str = "/v1/chat/completions",
        request_id: str | None = None,
    ) -> None:
        """Initialize relay.

        Args:
            client: Upstream client owning the connection pool
            path: Upstream path to POST to
            request_id: Correlation id for logs
        """
        self.client = client
        self.path = path
        self.request_id = request_id or uuid.uuid4().hex[:12]
        self.state = RelayState.CONNECTING
        self.error: ProxyError | None = None
        self.buffer = SSELineBuffer()
        self.events_sent = 0
        self.token_count = 0
        self.usage: dict[str, Any] | None = None
        self._model: str | None = None
        self._started = 0.0

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    async def run(self, payload: dict[str, Any]) -> AsyncIterator[str]:
        """Stream the upstream response as downstream SSE frames.

        Args:
            payload: Sanitized request payload

        Yields:
            Complete ``data: ...\\n\\n`` frames in upstream order
        """
        self._model = payload.get("model")
        messages = payload.get("messages")
        self._started = time.perf_counter()
        logger.info(
            "relay.start",
            request_id=self.request_id,
            model=self._model,
            messages=len(messages) if isinstance(messages, list) else 0,
            has_tools=bool(payload.get("tools")),
        )

        try:
            async with self.client.stream(self.path, payload) as response:
                self.state = RelayState.AWAITING_HEADERS
                logger.info("relay.upstream_status", request_id=self.request_id, status=response.status_code)

                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(
                        "relay.upstream_error",
                        request_id=self.request_id,
                        status=response.status_code,
                        body=body,
                    )
                    frame = self._fail(ProxyError(
                        f"Upstream API error: {response.status_code} - {body}",
                        ErrorType.API_ERROR,
                        status_code=response.status_code,
                    ))
                    if frame:
                        yield frame
                    return

                self.state = RelayState.STREAMING
                async for chunk in response.aiter_text():
                    for line in self.buffer.feed(chunk):
                        frame = self._process_line(line)
                        if frame is None:
                            continue
                        yield frame
                        if self.done:
                            return

                self.state = RelayState.DRAINING
                rest = self.buffer.flush().rstrip("\r")
                if rest.strip():
                    logger.debug("relay.flush_partial", request_id=self.request_id, size=len(rest))
                    frame = self._process_line(rest)
                    if frame is not None:
                        yield frame
                if not self.done:
                    yield self._finish()

        except httpx.TimeoutException:
            logger.error("relay.timeout", request_id=self.request_id, state=self.state.value)
            frame = self._fail(ProxyError("Request timeout", ErrorType.TIMEOUT_ERROR))
            if frame:
                yield frame
        except httpx.TransportError as e:
            cause = str(e) or type(e).__name__
            if self.state is RelayState.CONNECTING:
                error = ProxyError(f"Request failed: {cause}", ErrorType.REQUEST_ERROR)
            else:
                error = ProxyError(f"Stream error: {cause}", ErrorType.STREAM_ERROR)
            logger.error(
                "relay.transport_error",
                request_id=self.request_id,
                state=self.state.value,
                error=cause,
            )
            frame = self._fail(error)
            if frame:
                yield frame
        except (asyncio.CancelledError, GeneratorExit):
            if not self.done:
                logger.warning(
                    "relay.downstream_disconnected",
                    request_id=self.request_id,
                    state=self.state.value,
                    events_sent=self.events_sent,
                )
                self.state = RelayState.CLOSED
                MetricsExporter.record_request("stream", "cancelled", self._elapsed())
            raise
        except Exception as e:
            logger.exception("relay.failed", request_id=self.request_id, state=self.state.value)
            frame = self._fail(ProxyError(f"Proxy error: {e}", ErrorType.PROXY_ERROR))
            if frame:
                yield frame

    def _process_line(self, line: str) -> str | None:
        """Turn one complete upstream line into a downstream frame.

        Returns:
            Frame to send, or None when the line is dropped
        """
        if not line.strip():
            return None

        if not line.startswith(DATA_PREFIX):
            logger.debug("relay.reframed_line", request_id=self.request_id, line=line[:200])
            return self._emit(frame_line(line))

        data = line[len(DATA_PREFIX):]
        if data == DONE_SENTINEL:
            self.buffer.clear()
            return self._finish()

        self._observe(data)
        return self._emit(format_event(data))

    def _observe(self, data: str) -> None:
        """Extract content deltas for logging; never affects forwarding."""
        try:
            parsed = json.loads(data)
        except (ValueError, RecursionError):
            logger.debug("relay.unparsed_event", request_id=self.request_id, data=data[:200])
            return

        if not isinstance(parsed, dict):
            return
        if isinstance(parsed.get("usage"), dict):
            self.usage = parsed["usage"]

        choices = parsed.get("choices")
        if not choices or not isinstance(choices, list) or not isinstance(choices[0], dict):
            return
        delta = choices[0].get("delta") or {}
        if not isinstance(delta, dict):
            return
        for key in ("content", "reasoning_content"):
            content = delta.get(key)
            if content:
                self.token_count += 1
                logger.debug("relay.delta", request_id=self.request_id, kind=key, content=content)

    def _emit(self, frame: str) -> str:
        self.events_sent += 1
        return frame

    def _finish(self) -> str:
        self.state = RelayState.CLOSED
        elapsed = self._elapsed()
        logger.info(
            "relay.done",
            request_id=self.request_id,
            model=self._model,
            duration_ms=round(elapsed * 1000, 2),
            tokens=self.token_count,
            events=self.events_sent,
            usage=self.usage,
        )
        MetricsExporter.record_request("stream", "ok", elapsed)
        MetricsExporter.record_stream(self._model or "", self.events_sent, self.token_count)
        return self._emit(DONE_EVENT)

    def _fail(self, error: ProxyError) -> str | None:
        """Enter the error state and return the error frame.

        Returns None when a terminal frame has already been produced.
        """
        if self.done:
            logger.warning(
                "relay.error_after_close",
                request_id=self.request_id,
                error=error.message,
            )
            return None
        self.state = RelayState.ERROR
        self.error = error
        MetricsExporter.record_request("stream", error.error_type.value, self._elapsed())
        return self._emit(error.to_sse())

    def _elapsed(self) -> float:
        return time.perf_counter() - self._started if self._started else 0.0
