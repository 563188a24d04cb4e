"""No-op provider adapter for providers without caching support."""

from typing import Any

from promptfork.llm.constants import CacheProvider
from promptfork.llm.models import LanguageModelInput
from promptfork.llm.prompt_cache.models import CacheConfig
from promptfork.llm.prompt_cache.models import ModelCapabilities
from promptfork.llm.prompt_cache.providers.base import PromptCacheProvider
from promptfork.llm.prompt_cache.utils import prepare_messages_with_cacheable_transform

DISABLED_CAPABILITIES = ModelCapabilities(
    supported=False,
    min_tokens=0,
    max_breakpoints=0,
    supports_ttl=False,
    supported_ttl=(),
    supports_tool_caching=False,
    is_automatic=False,
)


class NoOpPromptCacheProvider(PromptCacheProvider):
    """No-op adapter for providers that don't support prompt caching."""

    cache_provider = CacheProvider.OTHER

    def __init__(
        self,
        model: str = "",
        capabilities: ModelCapabilities = DISABLED_CAPABILITIES,
    ) -> None:
        super().__init__(model, capabilities)

    def supports_caching(self) -> bool:
        return False

    def to_provider_options(
        self, config: CacheConfig, **kwargs: Any
    ) -> dict[str, Any]:
        return {}

    def prepare_messages_for_caching(
        self,
        cacheable_prefix: LanguageModelInput | None,
        suffix: LanguageModelInput,
        continuation: bool,
        provider_options: dict[str, Any] | None = None,
    ) -> LanguageModelInput:
        """Return prefix + suffix unchanged."""
        return prepare_messages_with_cacheable_transform(
            cacheable_prefix=cacheable_prefix,
            suffix=suffix,
            continuation=continuation,
            transform_cacheable=None,
        )

    def default_ttl_seconds(self) -> float:
        return 0
