from typing import Literal

from pydantic import BaseModel


class CacheControl(BaseModel):
    """Provider cache marker attached to a message or content block."""

    type: Literal["ephemeral"] = "ephemeral"
    ttl: Literal["5m", "1h"] | None = None


# Content part structures for multimodal messages
# The classes in this mirror the OpenAI Chat Completions message types and work well with routers like LiteLLM
class TextContentPart(BaseModel):
    type: Literal["text"] = "text"
    text: str
    cache_control: CacheControl | None = None


class ImageUrlDetail(BaseModel):
    url: str
    detail: Literal["auto", "low", "high"] | None = None


class ImageContentPart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageUrlDetail


ContentPart = TextContentPart | ImageContentPart


# Message types
class SystemMessage(BaseModel):
    role: Literal["system"] = "system"
    content: str | list[ContentPart]
    cache_control: CacheControl | None = None


class UserMessage(BaseModel):
    role: Literal["user"] = "user"
    content: str | list[ContentPart]
    cache_control: CacheControl | None = None


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str | None = None
    cache_control: CacheControl | None = None


# Union type for the chat messages this package assembles
ChatCompletionMessage = SystemMessage | UserMessage | AssistantMessage
# Allows for passing in a string directly. This is provided for convenience and is wrapped as a UserMessage.
LanguageModelInput = list[ChatCompletionMessage] | str
