"""OpenAI provider adapter for prompt caching."""

from typing import Any

from promptfork.llm.constants import CacheProvider
from promptfork.llm.models import LanguageModelInput
from promptfork.llm.prompt_cache.models import CacheConfig
from promptfork.llm.prompt_cache.models import CacheTTL
from promptfork.llm.prompt_cache.providers.base import PromptCacheProvider
from promptfork.llm.prompt_cache.utils import prepare_messages_with_cacheable_transform


class OpenAIPromptCacheProvider(PromptCacheProvider):
    """OpenAI adapter for prompt caching (implicit caching)."""

    cache_provider = CacheProvider.OPENAI

    def to_provider_options(
        self, config: CacheConfig, **kwargs: Any
    ) -> dict[str, Any]:
        """OpenAI has no markers, only toggles. TTL settings are dropped."""
        options: dict[str, Any] = {
            "auto_caching": config.enabled and self.supports_caching(),
        }
        if self.capabilities.supports_tool_caching:
            options["tool_caching"] = {"enabled": config.enabled}
        return options

    def prepare_messages_for_caching(
        self,
        cacheable_prefix: LanguageModelInput | None,
        suffix: LanguageModelInput,
        continuation: bool,
        provider_options: dict[str, Any] | None = None,
    ) -> LanguageModelInput:
        """OpenAI caches prefixes over 1024 tokens automatically, so messages
        only need to be combined with a byte-stable prefix first."""
        return prepare_messages_with_cacheable_transform(
            cacheable_prefix=cacheable_prefix,
            suffix=suffix,
            continuation=continuation,
            transform_cacheable=None,
        )

    def default_ttl_seconds(self) -> float:
        # Cached prefixes are evicted after at most an hour of inactivity
        return CacheTTL.ONE_HOUR.seconds
