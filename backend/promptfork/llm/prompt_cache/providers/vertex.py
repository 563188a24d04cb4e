"""Vertex AI / Gemini provider adapter for prompt caching."""

from collections.abc import Sequence
from typing import Any

from promptfork.llm.constants import CacheProvider
from promptfork.llm.models import AssistantMessage
from promptfork.llm.models import ChatCompletionMessage
from promptfork.llm.models import LanguageModelInput
from promptfork.llm.prompt_cache.models import CacheConfig
from promptfork.llm.prompt_cache.models import CacheTTL
from promptfork.llm.prompt_cache.providers.base import PromptCacheProvider
from promptfork.llm.prompt_cache.utils import prepare_messages_with_cacheable_transform
from promptfork.llm.prompt_cache.utils import revalidate_message_from_original

CACHED_CONTENT_KEY = "cached_content"


class VertexAIPromptCacheProvider(PromptCacheProvider):
    """Vertex AI adapter.

    Gemini supports implicit caching of repeated prefixes plus explicit context
    caches referenced by name. Explicit caches are created outside of this
    package, a request only passes the handle along.
    """

    cache_provider = CacheProvider.GOOGLE

    def to_provider_options(
        self,
        config: CacheConfig,
        cached_content: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """`{"cached_content": name}` when a usable handle is given, otherwise `{}`.

        A missing handle is not an error, the request just goes out uncached.
        """
        if not config.enabled or not self.supports_caching():
            return {}

        handle = (cached_content or "").strip()
        if not handle:
            return {}
        return {CACHED_CONTENT_KEY: handle}

    def prepare_messages_for_caching(
        self,
        cacheable_prefix: LanguageModelInput | None,
        suffix: LanguageModelInput,
        continuation: bool,
        provider_options: dict[str, Any] | None = None,
    ) -> LanguageModelInput:
        """Attach cache_control to content blocks of every cacheable prefix message."""
        return prepare_messages_with_cacheable_transform(
            cacheable_prefix=cacheable_prefix,
            suffix=suffix,
            continuation=continuation,
            transform_cacheable=_add_vertex_cache_control,
        )

    def default_ttl_seconds(self) -> float:
        return CacheTTL.FIVE_MINUTES.seconds


def _add_vertex_cache_control(
    messages: Sequence[ChatCompletionMessage],
) -> Sequence[ChatCompletionMessage]:
    """Add cache_control inside content blocks for Vertex AI/Gemini caching.

    Gemini requires cache_control on a content block within the content array,
    not at the message level. String content is converted to the array format
    and the last block of each message gets the marker.
    """
    updated: list[ChatCompletionMessage] = []
    for message in messages:
        # Assistant content is plain text only, leave it untouched
        if isinstance(message, AssistantMessage):
            updated.append(message)
            continue

        mutated = message.model_dump()
        content = mutated.get("content")

        if isinstance(content, str):
            mutated["content"] = [
                {
                    "type": "text",
                    "text": content,
                    "cache_control": {"type": "ephemeral"},
                }
            ]
        elif isinstance(content, list) and content:
            last_block = dict(content[-1])
            # Image blocks cannot carry a marker
            if last_block.get("type") == "text":
                last_block["cache_control"] = {"type": "ephemeral"}
            mutated["content"] = content[:-1] + [last_block]

        updated.append(revalidate_message_from_original(message, mutated))
    return updated
