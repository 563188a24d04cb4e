"""
LLM Constants

Centralized constants for LLM providers and the provider families used for
prompt-cache decisions.
"""

from enum import Enum


# Provider names
class LlmProviderNames(str, Enum):
    """
    Canonical string identifiers for LLM providers, as routed by LiteLLM.
    """

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    GEMINI = "gemini"
    BEDROCK = "bedrock"
    BEDROCK_CONVERSE = "bedrock_converse"
    VERTEX_AI = "vertex_ai"
    OPENROUTER = "openrouter"
    AZURE = "azure"
    OLLAMA_CHAT = "ollama_chat"
    MISTRAL = "mistral"
    LITELLM_PROXY = "litellm_proxy"

    def __str__(self) -> str:
        """Needed so things like:

        f"{LlmProviderNames.OPENAI}/" gives back "openai/" instead of "LlmProviderNames.OPENAI/"
        """
        return self.value


class CacheProvider(str, Enum):
    """
    Provider families that share prompt-cache behavior.

    This is a closed set: every table keyed by CacheProvider must cover all members.
    """

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"
    OTHER = "other"

    def __str__(self) -> str:
        return self.value


# Routed providers that always serve one model family's caching semantics
PROVIDER_NAME_TO_CACHE_PROVIDER: dict[str, CacheProvider] = {
    LlmProviderNames.ANTHROPIC.value: CacheProvider.ANTHROPIC,
    LlmProviderNames.OPENAI.value: CacheProvider.OPENAI,
    LlmProviderNames.AZURE.value: CacheProvider.OPENAI,
    LlmProviderNames.GOOGLE.value: CacheProvider.GOOGLE,
    LlmProviderNames.GEMINI.value: CacheProvider.GOOGLE,
    LlmProviderNames.VERTEX_AI.value: CacheProvider.GOOGLE,
}

# Routers that can serve several vendors. The model name decides the cache family.
MULTI_VENDOR_PROVIDERS: set[str] = {
    LlmProviderNames.BEDROCK.value,
    LlmProviderNames.BEDROCK_CONVERSE.value,
    LlmProviderNames.OPENROUTER.value,
    LlmProviderNames.LITELLM_PROXY.value,
    LlmProviderNames.VERTEX_AI.value,
}

ANTHROPIC_MODEL_TAGS = ("anthropic.", "anthropic/", "claude")
OPENAI_MODEL_TAGS = ("openai/", "gpt-", "chatgpt-", "o1", "o3", "o4")
GOOGLE_MODEL_TAGS = ("gemini", "google/")
