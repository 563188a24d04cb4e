from typing import Any

from pydantic import BaseModel
from pydantic import Field


class ModelResponse(BaseModel):
    """What the model invocation collaborator hands back for one request.

    Only `usage` and `provider_metadata` are read by the caching layer. The
    generated content is passed through untouched.
    """

    content: str | None = None
    stop_reason: str | None = None
    # Raw provider usage payload, e.g. {"input_tokens": ..., "cache_read_input_tokens": ...}
    usage: dict[str, Any] = Field(default_factory=dict)
    # e.g. {"anthropic": {"cache_creation_input_tokens": 2048}}
    provider_metadata: dict[str, Any] | None = None
