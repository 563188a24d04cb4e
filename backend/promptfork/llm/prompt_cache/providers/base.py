"""Base interface for provider-specific prompt caching adapters."""

from abc import ABC
from abc import abstractmethod
from typing import Any

from promptfork.llm.constants import CacheProvider
from promptfork.llm.models import LanguageModelInput
from promptfork.llm.prompt_cache.models import CacheConfig
from promptfork.llm.prompt_cache.models import ModelCapabilities


class PromptCacheProvider(ABC):
    """Projects an already-validated CacheConfig onto one provider's wire format.

    Adapters do no business validation (see validation.py). They only re-apply
    numeric clamps so a bad config can never produce an invalid request.
    """

    cache_provider: CacheProvider

    def __init__(self, model: str, capabilities: ModelCapabilities) -> None:
        self.model = model
        self.capabilities = capabilities

    def supports_caching(self) -> bool:
        """Whether requests for this model can be cached at all."""
        return self.capabilities.supported

    @abstractmethod
    def to_provider_options(
        self, config: CacheConfig, **kwargs: Any
    ) -> dict[str, Any]:
        """Wire-level cache options for a request.

        Args:
            config: Cache configuration, validated against the same capabilities
            kwargs: Provider specific extras (e.g. a Gemini cached content handle)

        Returns:
            Options to hand to the model invocation collaborator. Empty when
            caching does not apply.
        """
        raise NotImplementedError

    @abstractmethod
    def prepare_messages_for_caching(
        self,
        cacheable_prefix: LanguageModelInput | None,
        suffix: LanguageModelInput,
        continuation: bool,
        provider_options: dict[str, Any] | None = None,
    ) -> LanguageModelInput:
        """Transform messages to enable caching.

        Args:
            cacheable_prefix: Optional cacheable prefix (str or list of messages)
            suffix: Non-cacheable suffix (str or list of messages)
            continuation: If True, suffix is appended to the last message of
                cacheable_prefix rather than sent as separate messages. A string
                prefix always stays in its own content block.
            provider_options: Output of `to_provider_options` for this request

        Returns:
            Combined and transformed messages ready for the LLM call
        """
        raise NotImplementedError

    def get_cache_ttl_seconds(self, config: CacheConfig | None = None) -> float:
        """Lifetime of entries written with this config, 0 when nothing is cached."""
        if not self.supports_caching():
            return 0
        if config is not None and config.default_ttl is not None:
            return config.default_ttl.seconds
        return self.default_ttl_seconds()

    @abstractmethod
    def default_ttl_seconds(self) -> float:
        raise NotImplementedError
