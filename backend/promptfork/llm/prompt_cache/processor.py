"""Assembly of cache-aware requests."""

from typing import Any

from promptfork.configs.cache_configs import ENABLE_PROMPT_CACHING
from promptfork.llm.catalog import ModelCatalog
from promptfork.llm.interfaces import LLMConfig
from promptfork.llm.models import ChatCompletionMessage
from promptfork.llm.models import LanguageModelInput
from promptfork.llm.models import SystemMessage
from promptfork.llm.models import UserMessage
from promptfork.llm.prompt_cache.models import CacheConfig
from promptfork.llm.prompt_cache.models import CacheScope
from promptfork.llm.prompt_cache.models import create_default_cache_config
from promptfork.llm.prompt_cache.providers.factory import get_provider_adapter
from promptfork.llm.prompt_cache.providers.noop import NoOpPromptCacheProvider
from promptfork.llm.prompt_cache.segments import CacheSegmentManager
from promptfork.utils.logger import setup_logger

logger = setup_logger()


def build_cacheable_prefix(
    segment_manager: CacheSegmentManager,
) -> list[ChatCompletionMessage] | None:
    """One message per registered segment, in registration order.

    System-only segments become system messages, everything else is sent as
    user content. Returns None when nothing is registered.
    """
    segments = segment_manager.get_segments()
    if not segments:
        return None

    prefix: list[ChatCompletionMessage] = []
    for segment in segments:
        if segment.scope == CacheScope.SYSTEM_ONLY:
            prefix.append(SystemMessage(content=segment.content))
        else:
            prefix.append(UserMessage(content=segment.content))
    return prefix


def _combine_without_caching(
    cacheable_prefix: LanguageModelInput | None,
    suffix: LanguageModelInput,
    continuation: bool,
) -> tuple[LanguageModelInput, dict[str, Any]]:
    combined = NoOpPromptCacheProvider().prepare_messages_for_caching(
        cacheable_prefix=cacheable_prefix,
        suffix=suffix,
        continuation=continuation,
    )
    return combined, {}


def process_with_prompt_cache(
    llm_config: LLMConfig,
    cacheable_prefix: LanguageModelInput | None,
    suffix: LanguageModelInput,
    continuation: bool = False,
    cache_config: CacheConfig | None = None,
    catalog: ModelCatalog | None = None,
    cached_content: str | None = None,
) -> tuple[LanguageModelInput, dict[str, Any]]:
    """Process prompt with caching support.

    Takes a cacheable prefix and suffix, processes them according to the
    provider's caching capabilities, and returns the combined messages along
    with the provider cache options for the request.

    Args:
        llm_config: Provider and model the request is for
        cacheable_prefix: Optional cacheable prefix. If None, no caching is attempted.
        suffix: The non-cacheable suffix to append
        continuation: If True, suffix is appended to the last message of
            cacheable_prefix rather than sent as separate messages
        cache_config: Cache configuration, validated by the caller. Defaults to
            `create_default_cache_config()`.
        catalog: Optional capability override catalog
        cached_content: Gemini explicit cache handle, ignored by other providers

    Returns:
        Tuple of (processed_prompt, provider_options). provider_options is empty
        whenever the request goes out uncached.
    """
    if not ENABLE_PROMPT_CACHING:
        logger.debug("Prompt caching is disabled via configuration")
        return _combine_without_caching(cacheable_prefix, suffix, continuation)

    if cacheable_prefix is None:
        logger.debug("No cacheable prefix provided, skipping caching")
        return suffix, {}

    provider_adapter = get_provider_adapter(llm_config, catalog)

    if not provider_adapter.supports_caching():
        logger.debug(
            f"Provider {llm_config.model_provider} does not support caching for "
            f"{llm_config.model_name}, combining messages without caching"
        )
        return _combine_without_caching(cacheable_prefix, suffix, continuation)

    cache_config = cache_config or create_default_cache_config()

    try:
        provider_options = provider_adapter.to_provider_options(
            cache_config, cached_content=cached_content
        )
        processed_prompt = provider_adapter.prepare_messages_for_caching(
            cacheable_prefix=cacheable_prefix,
            suffix=suffix,
            continuation=continuation,
            provider_options=provider_options,
        )
    except Exception as e:
        # Best-effort: a request that goes out uncached is still a correct request
        logger.warning(
            f"Error processing prompt with caching for provider={llm_config.model_provider}: {str(e)}. "
            "Falling back to non-cached behavior."
        )
        return _combine_without_caching(cacheable_prefix, suffix, continuation)

    logger.debug(
        f"Processed prompt with caching: provider={llm_config.model_provider}, "
        f"model={llm_config.model_name}, adapter={provider_adapter.cache_provider}, "
        f"continuation={continuation}"
    )
    return processed_prompt, provider_options
