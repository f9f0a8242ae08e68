"""Prometheus metrics exposition."""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, Info, generate_latest

from deepseek_proxy import __version__

# Application info
APP_INFO = Info("deepseek_proxy", "Application information")
APP_INFO.info({"version": __version__})

# Request counters
REQUESTS_TOTAL = Counter(
    "deepseek_proxy_requests_total",
    "Chat completion requests handled",
    ["mode", "outcome"]
)

STREAM_EVENTS_TOTAL = Counter(
    "deepseek_proxy_stream_events_total",
    "SSE events relayed downstream",
)

STREAM_TOKENS_TOTAL = Counter(
    "deepseek_proxy_stream_tokens_total",
    "Content deltas observed in relayed streams",
    ["model"]
)

# Response time
UPSTREAM_LATENCY = Histogram(
    "deepseek_proxy_upstream_seconds",
    "Time from request start to final byte",
    ["mode"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0]
)


class MetricsExporter:
    """Exports metrics in Prometheus format."""

    @staticmethod
    def get_prometheus_format() -> tuple[str, bytes]:
        """Get metrics in Prometheus exposition format.

        Returns:
            Tuple of (content_type, metrics_body)
        """
        return CONTENT_TYPE_LATEST, generate_latest()

    @staticmethod
    def record_request(mode: str, outcome: str, duration: float) -> None:
        """Record one finished request.

        Args:
            mode: ``stream`` or ``buffered``
            outcome: ``ok`` or the error type
            duration: Seconds spent on the upstream exchange
        """
        REQUESTS_TOTAL.labels(mode=mode, outcome=outcome).inc()
        UPSTREAM_LATENCY.labels(mode=mode).observe(duration)

    @staticmethod
    def record_stream(model: str, events: int, tokens: int) -> None:
        """Record relay volume for a finished stream."""
        STREAM_EVENTS_TOTAL.inc(events)
        STREAM_TOKENS_TOTAL.labels(model=model or "unknown").inc(tokens)
