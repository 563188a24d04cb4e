import abc
from typing import Any

from pydantic import BaseModel

from promptfork.llm.model_response import ModelResponse
from promptfork.llm.models import LanguageModelInput


class LLMConfig(BaseModel):
    model_provider: str
    model_name: str
    # This disables the "model_" protected namespace for pydantic
    model_config = {"protected_namespaces": ()}


class LLM(abc.ABC):
    """Model invocation collaborator.

    Implementations perform the actual network round-trip. The caching layer only
    assembles requests for it and reads usage back from its responses.
    """

    @property
    @abc.abstractmethod
    def config(self) -> LLMConfig:
        raise NotImplementedError

    @abc.abstractmethod
    async def ainvoke(
        self,
        prompt: LanguageModelInput,
        system: str | None = None,
        structured_response_format: dict | None = None,
        max_tokens: int | None = None,
        provider_options: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ModelResponse:
        raise NotImplementedError
