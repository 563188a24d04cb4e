"""Provider adapters for prompt caching."""

from promptfork.llm.prompt_cache.providers.anthropic import AnthropicPromptCacheProvider
from promptfork.llm.prompt_cache.providers.base import PromptCacheProvider
from promptfork.llm.prompt_cache.providers.factory import create_cache_adapter
from promptfork.llm.prompt_cache.providers.factory import get_provider_adapter
from promptfork.llm.prompt_cache.providers.factory import resolve_cache_provider
from promptfork.llm.prompt_cache.providers.noop import NoOpPromptCacheProvider
from promptfork.llm.prompt_cache.providers.openai import OpenAIPromptCacheProvider
from promptfork.llm.prompt_cache.providers.vertex import VertexAIPromptCacheProvider

__all__ = [
    "AnthropicPromptCacheProvider",
    "create_cache_adapter",
    "get_provider_adapter",
    "NoOpPromptCacheProvider",
    "OpenAIPromptCacheProvider",
    "PromptCacheProvider",
    "resolve_cache_provider",
    "VertexAIPromptCacheProvider",
]
