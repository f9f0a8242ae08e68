"""Upstream client for forwarding chat completion requests."""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from deepseek_proxy.config import Settings
from deepseek_proxy.core.errors import ErrorType, ProxyError
from deepseek_proxy.utils import get_logger

logger = get_logger(__name__)


class UpstreamClient:
    """Client for the upstream completion API.

    Owns a single ``httpx.AsyncClient`` whose pool limits come from settings
    and are shared read-only by every request.
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            settings: Application settings
            transport: Optional transport override (tests)
        """
        self.settings = settings
        self.api_key = settings.deepseek_api_key
        self.request_timeout = settings.request_timeout
        self.stream_timeout = settings.stream_timeout
        self.limits = httpx.Limits(
            max_connections=settings.max_connections,
            max_keepalive_connections=settings.max_connections if settings.keep_alive else 0,
        )
        self._client = httpx.AsyncClient(
            base_url=settings.upstream_base_url,
            limits=self.limits,
            transport=transport,
        )

    def build_headers(self, body: bytes, stream: bool = False) -> dict[str, str]:
        """Build outbound request headers.

        Args:
            body: Serialized request body
            stream: Whether an event stream is requested

        Returns:
            Header mapping
        """
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "Content-Length": str(len(body)),
            "User-Agent": self.settings.user_agent,
        }
        if stream:
            headers["Accept"] = "text/event-stream"
            headers["Cache-Control"] = "no-cache"
        if not self.settings.keep_alive:
            headers["Connection"] = "close"
        return headers

    @staticmethod
    def encode(payload: dict[str, Any]) -> bytes:
        return json.dumps(payload, ensure_ascii=False).encode("utf-8")

    async def send(self, path: str, payload: dict[str, Any]) -> Any:
        """Forward a non-streaming request and return the decoded body.

        Upstream status codes are not checked: error bodies are handed back
        for the caller to forward verbatim.

        Args:
            path: Upstream path
            payload: Sanitized request payload

        Returns:
            Decoded JSON response body

        Raises:
            ProxyError: On timeout, transport failure or undecodable body
        """
        body = self.encode(payload)
        logger.debug("upstream.request", path=path, model=payload.get("model"), stream=False)

        try:
            response = await self._client.post(
                path,
                content=body,
                headers=self.build_headers(body),
                timeout=self.request_timeout,
            )
        except httpx.TimeoutException as e:
            logger.error("upstream.timeout", path=path, timeout=self.request_timeout)
            raise ProxyError("Request timeout", ErrorType.TIMEOUT_ERROR) from e
        except httpx.TransportError as e:
            logger.error("upstream.request_failed", path=path, error=str(e) or type(e).__name__)
            raise ProxyError(str(e) or type(e).__name__, ErrorType.REQUEST_ERROR) from e

        if response.status_code != 200:
            logger.warning("upstream.non_200", status=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise ProxyError(
                f"Failed to parse response: {e}",
                ErrorType.API_ERROR,
                status_code=response.status_code,
            ) from e

    @asynccontextmanager
    async def stream(self, path: str, payload: dict[str, Any]) -> AsyncIterator[httpx.Response]:
        """Open a streaming request.

        The response is closed when the context exits, whatever the reason.

        Args:
            path: Upstream path
            payload: Sanitized request payload

        Yields:
            Upstream response with headers read and body pending
        """
        body = self.encode(payload)
        logger.debug("upstream.request", path=path, model=payload.get("model"), stream=True)

        async with self._client.stream(
            "POST",
            path,
            content=body,
            headers=self.build_headers(body, stream=True),
            timeout=self.stream_timeout,
        ) as response:
            yield response

    async def aclose(self) -> None:
        await self._client.aclose()


def create_client(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> UpstreamClient:
    """Factory for upstream client.

    Args:
        settings: Application settings
        transport: Optional transport override

    Returns:
        Configured client
    """
    return UpstreamClient(settings, transport)
