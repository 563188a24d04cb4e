"""Factory for creating provider-specific prompt cache adapters."""

from promptfork.llm.catalog import infer_provider_from_model
from promptfork.llm.catalog import ModelCatalog
from promptfork.llm.constants import CacheProvider
from promptfork.llm.constants import MULTI_VENDOR_PROVIDERS
from promptfork.llm.constants import PROVIDER_NAME_TO_CACHE_PROVIDER
from promptfork.llm.interfaces import LLMConfig
from promptfork.llm.prompt_cache.capabilities import coerce_cache_provider
from promptfork.llm.prompt_cache.capabilities import get_cache_capabilities
from promptfork.llm.prompt_cache.providers.anthropic import AnthropicPromptCacheProvider
from promptfork.llm.prompt_cache.providers.base import PromptCacheProvider
from promptfork.llm.prompt_cache.providers.noop import NoOpPromptCacheProvider
from promptfork.llm.prompt_cache.providers.openai import OpenAIPromptCacheProvider
from promptfork.llm.prompt_cache.providers.vertex import VertexAIPromptCacheProvider

PROVIDER_ADAPTERS: dict[CacheProvider, type[PromptCacheProvider]] = {
    CacheProvider.ANTHROPIC: AnthropicPromptCacheProvider,
    CacheProvider.OPENAI: OpenAIPromptCacheProvider,
    CacheProvider.GOOGLE: VertexAIPromptCacheProvider,
    CacheProvider.OTHER: NoOpPromptCacheProvider,
}


def resolve_cache_provider(model_provider: str, model_name: str) -> CacheProvider:
    """Map a routed provider name (e.g. "bedrock") and model to a cache family.

    Routers that serve several vendors are resolved by the model name, so
    "bedrock" + "anthropic.claude-3-5-sonnet..." behaves like Anthropic.
    """
    provider = model_provider.lower()
    if provider in MULTI_VENDOR_PROVIDERS:
        inferred = infer_provider_from_model(model_name)
        if inferred is not None:
            return inferred

    if provider in PROVIDER_NAME_TO_CACHE_PROVIDER:
        return PROVIDER_NAME_TO_CACHE_PROVIDER[provider]
    return coerce_cache_provider(provider)


def create_cache_adapter(
    provider: CacheProvider | str,
    model: str,
    catalog: ModelCatalog | None = None,
) -> PromptCacheProvider:
    cache_provider = coerce_cache_provider(provider)
    capabilities = get_cache_capabilities(cache_provider, model, catalog)
    return PROVIDER_ADAPTERS[cache_provider](model, capabilities)


def get_provider_adapter(
    llm_config: LLMConfig, catalog: ModelCatalog | None = None
) -> PromptCacheProvider:
    """Get the prompt cache adapter for the provider/model an LLM is configured with.

    Providers without caching support get the no-op adapter.
    """
    cache_provider = resolve_cache_provider(
        llm_config.model_provider, llm_config.model_name
    )
    return create_cache_adapter(cache_provider, llm_config.model_name, catalog)
