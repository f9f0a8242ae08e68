"""DeepSeek-compatible chat completions proxy with SSE relay."""

__version__ = "1.0.0"
