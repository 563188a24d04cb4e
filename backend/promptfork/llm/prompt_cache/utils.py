"""Utility functions for prompt caching."""

import json
import math
from collections.abc import Callable
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel

from promptfork.llm.models import CacheControl
from promptfork.llm.models import ChatCompletionMessage
from promptfork.llm.models import LanguageModelInput
from promptfork.llm.models import UserMessage

# Rough chars-per-token ratio. Deliberately model-agnostic, only used for
# go/no-go decisions against provider floors.
CHARS_PER_TOKEN = 4

MessageTransform = Callable[
    [Sequence[ChatCompletionMessage]], Sequence[ChatCompletionMessage]
]


def estimate_tokens(content: str) -> int:
    return math.ceil(len(content) / CHARS_PER_TOKEN)


def serialize_cache_content(content: str | dict[str, Any] | BaseModel) -> str:
    """Cacheable content must be byte-stable across requests, so structured
    content is serialized deterministically."""
    if isinstance(content, str):
        return content
    if isinstance(content, BaseModel):
        return content.model_dump_json()
    return json.dumps(content, sort_keys=True, default=str)


def normalize_language_model_input(
    input: LanguageModelInput,
) -> Sequence[ChatCompletionMessage]:
    """Strings are wrapped as a single user message."""
    if isinstance(input, str):
        return [UserMessage(role="user", content=input)]
    return input


def revalidate_message_from_original(
    original: ChatCompletionMessage,
    mutated: dict[str, Any],
) -> ChatCompletionMessage:
    """Rebuild a mutated message with the original message class so the role
    stays attached to the right model."""
    return original.__class__.model_validate(mutated)


def with_cache_control(
    message: ChatCompletionMessage, marker: CacheControl
) -> ChatCompletionMessage:
    mutated = message.model_dump()
    mutated["cache_control"] = marker.model_dump(exclude_none=True)
    return revalidate_message_from_original(original=message, mutated=mutated)


def combine_messages_with_continuation(
    prefix_msgs: Sequence[ChatCompletionMessage],
    suffix_msgs: Sequence[ChatCompletionMessage],
    continuation: bool,
    was_prefix_string: bool,
) -> list[ChatCompletionMessage]:
    """Combine prefix and suffix messages.

    With `continuation`, the first suffix message's content is appended to the
    last prefix message instead of starting a new message. A string prefix always
    stays in its own message so its cache boundary is not moved.
    """
    if not continuation or not prefix_msgs or was_prefix_string:
        return list(prefix_msgs) + list(suffix_msgs)

    result = list(prefix_msgs)
    last_msg = result[-1].model_dump()
    suffix_first = suffix_msgs[0].model_dump() if suffix_msgs else {}

    if last_msg.get("content") is not None and suffix_first.get("content") is not None:
        if isinstance(last_msg["content"], str) and isinstance(
            suffix_first["content"], str
        ):
            last_msg["content"] = last_msg["content"] + suffix_first["content"]
        else:
            # Multimodal content, merge as content blocks
            prefix_content = (
                last_msg["content"]
                if isinstance(last_msg["content"], list)
                else [{"type": "text", "text": last_msg["content"]}]
            )
            suffix_content = (
                suffix_first["content"]
                if isinstance(suffix_first["content"], list)
                else [{"type": "text", "text": suffix_first["content"]}]
            )
            last_msg["content"] = prefix_content + suffix_content

    result[-1] = revalidate_message_from_original(original=result[-1], mutated=last_msg)
    result.extend(suffix_msgs[1:])
    return result


def prepare_messages_with_cacheable_transform(
    cacheable_prefix: LanguageModelInput | None,
    suffix: LanguageModelInput,
    continuation: bool,
    transform_cacheable: MessageTransform | None = None,
) -> LanguageModelInput:
    """Normalize both parts, optionally transform the cacheable messages
    (e.g. attach cache markers), then combine them."""
    if cacheable_prefix is None:
        return suffix

    prefix_msgs = normalize_language_model_input(cacheable_prefix)
    suffix_msgs = normalize_language_model_input(suffix)

    if transform_cacheable is not None:
        prefix_msgs = transform_cacheable(prefix_msgs)

    return combine_messages_with_continuation(
        prefix_msgs,
        suffix_msgs,
        continuation,
        was_prefix_string=isinstance(cacheable_prefix, str),
    )
