"""Pydantic models for API requests and responses."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Message(BaseModel):
    """Chat message model."""

    model_config = ConfigDict(extra="allow")

    role: str
    content: Any = None


class ChatRequest(BaseModel):
    """OpenAI-compatible chat completion request.

    Only the fields the proxy inspects are declared; everything else is
    carried through untouched in the raw payload.
    """

    model_config = ConfigDict(extra="allow")

    model: str | None = None
    messages: list[Message] = Field(default_factory=list)
    stream: Any = None
    tools: Any = None
    tool_choice: Any = None
    functions: Any = None
    function_call: Any = None

    @property
    def is_streaming(self) -> bool:
        """Streaming is requested only by a literal ``true``."""
        return self.stream is True

    @property
    def tools_count(self) -> int:
        return len(self.tools) if isinstance(self.tools, list) else 0


class ModelCard(BaseModel):
    """Entry of the /v1/models listing."""

    id: str
    object: Literal["model"] = "model"
    created: int
    owned_by: str = "deepseek"


class ModelList(BaseModel):
    """OpenAI-compatible models listing."""

    object: Literal["list"] = "list"
    data: list[ModelCard]


class HealthStatus(BaseModel):
    """Liveness payload."""

    status: str = "healthy"
    service: str
    version: str
    timestamp: str
    features: list[str] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """Error body inside the envelope."""

    message: str
    type: str


class ErrorResponse(BaseModel):
    """Error envelope shared by JSON responses and SSE error events."""

    error: ErrorDetail
