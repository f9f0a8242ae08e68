"""Main FastAPI application entry point."""

import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from deepseek_proxy import __version__
from deepseek_proxy.config import Settings, get_settings
from deepseek_proxy.core import ErrorType, create_client, create_handler, error_envelope
from deepseek_proxy.metrics import MetricsExporter
from deepseek_proxy.models import HealthStatus, ModelCard, ModelList
from deepseek_proxy.utils import configure_logging, get_logger

logger = get_logger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "*",
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Expose-Headers": "*",
}

FEATURES = ["auto-tools-cleaning", "streaming", "java-client-support"]


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the proxy application.

    Args:
        settings: Settings override; loaded from the environment otherwise
        transport: Upstream transport override (tests)

    Returns:
        Configured FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        # Raises before the server accepts connections when the key is missing.
        app_settings = settings or get_settings()
        configure_logging(app_settings.log_level)

        logger.info(
            "startup",
            version=__version__,
            host=app_settings.host,
            port=app_settings.port,
            upstream=app_settings.upstream_base_url,
            has_api_key=bool(app_settings.deepseek_api_key),
        )

        client = create_client(app_settings, transport)
        app.state.settings = app_settings
        app.state.upstream = client
        app.state.handler = create_handler(client, app_settings.chat_path)

        yield

        await client.aclose()
        logger.info("shutdown")

    app = FastAPI(
        title="DeepSeek Proxy",
        description="OpenAI-compatible proxy with request cleaning and SSE relay",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        """Log every request and answer OPTIONS preflights."""
        started = time.perf_counter()
        logger.info(
            "http.request",
            method=request.method,
            path=request.url.path,
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            content_type=request.headers.get("content-type"),
            content_length=request.headers.get("content-length"),
        )

        if request.method == "OPTIONS":
            response = Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)
        else:
            response = await call_next(request)

        logger.info(
            "http.response",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Unmatched routes and methods answer with an OpenAI-style 404."""
        if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED):
            logger.info("http.not_found", method=request.method, path=request.url.path)
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content=error_envelope(
                    f"Endpoint {request.method} {request.url.path} not found",
                    ErrorType.INVALID_REQUEST_ERROR,
                ),
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(str(exc.detail), ErrorType.INVALID_REQUEST_ERROR),
        )

    @app.get("/health")
    async def health_check() -> HealthStatus:
        """Health check endpoint."""
        return HealthStatus(
            service="DeepSeek Proxy - Auto Tools Cleaner",
            version=__version__,
            timestamp=datetime.now(timezone.utc).isoformat(),
            features=FEATURES,
        )

    @app.get("/metrics")
    async def metrics() -> PlainTextResponse:
        """Prometheus metrics endpoint."""
        content_type, metrics_body = MetricsExporter.get_prometheus_format()
        return PlainTextResponse(
            content=metrics_body.decode("utf-8"),
            media_type=content_type
        )

    @app.get("/v1/models")
    async def list_models(request: Request) -> ModelList:
        """Static list of supported models."""
        now = int(time.time())
        models = request.app.state.settings.available_models
        return ModelList(
            data=[ModelCard(id=model, created=now - index) for index, model in enumerate(models)]
        )

    @app.post("/v1/chat/completions", response_model=None)
    async def chat_completions(request: Request) -> Response:
        """Chat completions endpoint."""
        try:
            body = await request.json()
        except ValueError as e:
            logger.warning("request.invalid_json", error=str(e))
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content=error_envelope(f"Invalid JSON body: {e}", ErrorType.INVALID_REQUEST_ERROR),
            )

        return await request.app.state.handler.handle(body)

    return app


app = create_app()


def main():
    """CLI entry point."""
    import uvicorn

    try:
        settings = get_settings()
    except ValidationError as e:
        configure_logging("info")
        logger.error("startup.missing_credential", env="DEEPSEEK_API_KEY", error=str(e))
        sys.exit(1)

    configure_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
