"""Anthropic provider adapter for prompt caching."""

from collections.abc import Sequence
from typing import Any

from promptfork.llm.constants import CacheProvider
from promptfork.llm.models import CacheControl
from promptfork.llm.models import ChatCompletionMessage
from promptfork.llm.models import LanguageModelInput
from promptfork.llm.prompt_cache.models import CacheConfig
from promptfork.llm.prompt_cache.models import CacheSegmentConfig
from promptfork.llm.prompt_cache.models import CacheTTL
from promptfork.llm.prompt_cache.providers.base import PromptCacheProvider
from promptfork.llm.prompt_cache.utils import prepare_messages_with_cacheable_transform
from promptfork.llm.prompt_cache.utils import with_cache_control

CACHE_CONTROL_KEY = "cache_control"


def _add_anthropic_cache_control(
    messages: Sequence[ChatCompletionMessage],
    markers: Sequence[CacheControl],
) -> Sequence[ChatCompletionMessage]:
    """Attach markers to the trailing prefix messages, in order.

    Anthropic caches everything up to and including a marked block, so with
    fewer markers than messages the last message still carries the final marker
    and the whole prefix is covered.
    """
    if not messages or not markers:
        return messages

    markers = list(markers)[: len(messages)]
    first_marked = len(messages) - len(markers)
    updated = list(messages[:first_marked])
    for message, marker in zip(messages[first_marked:], markers):
        updated.append(with_cache_control(message, marker))
    return updated


class AnthropicPromptCacheProvider(PromptCacheProvider):
    """Anthropic adapter (explicit caching with cache_control markers).

    implicit caching = just need to ensure byte-equivalent prefixes, and the provider
                       auto-detects and reuses them.
    explicit caching = the caller must mark where each cacheable block ends. Anthropic
    does this with the cache_control parameter, at most 4 per request:
    https://platform.claude.com/docs/en/build-with-claude/prompt-caching
    """

    cache_provider = CacheProvider.ANTHROPIC

    def to_provider_options(
        self, config: CacheConfig, **kwargs: Any
    ) -> dict[str, Any]:
        """One ordered marker per segment (or a single marker without segments)."""
        if not config.enabled or not self.supports_caching():
            return {}

        limit = min(max(config.max_breakpoints, 0), self.capabilities.max_breakpoints)
        segments = config.segments or (CacheSegmentConfig(ttl=config.default_ttl),)

        markers: list[dict[str, Any]] = []
        for segment in segments[: int(limit)]:
            ttl = segment.ttl or config.default_ttl
            marker = CacheControl(
                ttl=(
                    ttl.value
                    if ttl is not None and ttl in self.capabilities.supported_ttl
                    else None
                )
            )
            markers.append(marker.model_dump(exclude_none=True))

        return {CACHE_CONTROL_KEY: markers} if markers else {}

    def prepare_messages_for_caching(
        self,
        cacheable_prefix: LanguageModelInput | None,
        suffix: LanguageModelInput,
        continuation: bool,
        provider_options: dict[str, Any] | None = None,
    ) -> LanguageModelInput:
        """Attach cache_control to the cacheable prefix.

        Without provider options a single ephemeral marker with the provider's
        default TTL is placed on the last prefix message.
        """
        if provider_options is None:
            markers = [CacheControl()]
        else:
            markers = [
                CacheControl.model_validate(marker)
                for marker in provider_options.get(CACHE_CONTROL_KEY, [])
            ]

        return prepare_messages_with_cacheable_transform(
            cacheable_prefix=cacheable_prefix,
            suffix=suffix,
            continuation=continuation,
            transform_cacheable=lambda messages: _add_anthropic_cache_control(
                messages, markers
            ),
        )

    def default_ttl_seconds(self) -> float:
        return CacheTTL.FIVE_MINUTES.seconds
