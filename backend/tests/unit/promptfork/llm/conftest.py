"""Shared fixtures for promptfork LLM tests."""

from collections.abc import Callable
from collections.abc import Generator
from typing import Any

import pytest

from promptfork.llm.catalog import ModelCatalog
from promptfork.llm.catalog import parse_model_catalog
from promptfork.llm.interfaces import LLM
from promptfork.llm.interfaces import LLMConfig
from promptfork.llm.model_response import ModelResponse
from promptfork.llm.models import LanguageModelInput
from promptfork.llm.prompt_cache.warmup import default_warmup_registry
from promptfork.llm.prompt_cache.warmup import WarmupExecutorRegistry

SONNET = "claude-3-5-sonnet-20241022"


class FakeLLM(LLM):
    """Records every request and answers with a fixed usage payload."""

    def __init__(
        self,
        model_provider: str = "anthropic",
        model_name: str = SONNET,
        usage: dict[str, Any] | None = None,
        provider_metadata: dict[str, Any] | None = None,
    ) -> None:
        self._config = LLMConfig(model_provider=model_provider, model_name=model_name)
        self.usage = usage if usage is not None else {"input_tokens": 10}
        self.provider_metadata = provider_metadata
        self.calls: list[dict[str, Any]] = []

    @property
    def config(self) -> LLMConfig:
        return self._config

    async def ainvoke(
        self,
        prompt: LanguageModelInput,
        system: str | None = None,
        structured_response_format: dict | None = None,
        max_tokens: int | None = None,
        provider_options: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ModelResponse:
        self.calls.append(
            {
                "prompt": prompt,
                "system": system,
                "structured_response_format": structured_response_format,
                "max_tokens": max_tokens,
                "provider_options": provider_options,
                "metadata": metadata,
            }
        )
        return ModelResponse(
            content="ready",
            stop_reason="end_turn",
            usage=dict(self.usage),
            provider_metadata=self.provider_metadata,
        )


@pytest.fixture
def make_llm() -> Callable[..., FakeLLM]:
    """Factory for fake LLMs, keyword arguments are passed to FakeLLM."""
    return FakeLLM


@pytest.fixture
def anthropic_llm() -> FakeLLM:
    return FakeLLM(
        usage={"input_tokens": 50, "output_tokens": 5, "cache_read_input_tokens": 1000}
    )


@pytest.fixture
def openai_llm() -> FakeLLM:
    return FakeLLM(
        model_provider="openai",
        model_name="gpt-4o",
        usage={
            "prompt_tokens": 2000,
            "completion_tokens": 10,
            "prompt_tokens_details": {"cached_tokens": 1536},
        },
    )


def build_catalog_payload(
    capabilities: dict[str, Any] | None = None,
    pricing: dict[str, Any] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "schema_version": 1,
        "snapshot_date": "2025-01-15",
        "generated_at": "2025-01-15T12:00:00Z",
        "sources": ["https://example.com/pricing"],
    }
    if capabilities is not None:
        payload["capabilities"] = capabilities
    if pricing is not None:
        payload["pricing"] = pricing
    return payload


@pytest.fixture
def make_catalog() -> Callable[..., ModelCatalog]:
    """Factory for catalogs: make_catalog(capabilities={...}, pricing={...})."""

    def _make(
        capabilities: dict[str, Any] | None = None,
        pricing: dict[str, Any] | None = None,
    ) -> ModelCatalog:
        return parse_model_catalog(build_catalog_payload(capabilities, pricing))

    return _make


@pytest.fixture
def catalog_payload() -> Callable[..., dict[str, Any]]:
    return build_catalog_payload


@pytest.fixture
def warmup_registry() -> WarmupExecutorRegistry:
    return WarmupExecutorRegistry()


@pytest.fixture(autouse=True)
def clear_default_warmup_registry() -> Generator[None, None, None]:
    yield
    default_warmup_registry.clear()
