"""Per-session registry of cacheable content segments.

A session registers its segments first (system prompt, documents, ...) and
then only reads them while requests are assembled. Instances are not meant to
be shared across concurrent sessions.
"""

from datetime import datetime
from datetime import timezone
from typing import Any

from pydantic import BaseModel

from promptfork.llm.catalog import ModelCatalog
from promptfork.llm.constants import CacheProvider
from promptfork.llm.prompt_cache.capabilities import coerce_cache_provider
from promptfork.llm.prompt_cache.capabilities import get_cache_capabilities
from promptfork.llm.prompt_cache.exceptions import SegmentValidationError
from promptfork.llm.prompt_cache.models import CacheConfig
from promptfork.llm.prompt_cache.models import CacheScope
from promptfork.llm.prompt_cache.models import CacheSegment
from promptfork.llm.prompt_cache.models import CacheTTL
from promptfork.llm.prompt_cache.models import CacheValidationResult
from promptfork.llm.prompt_cache.models import create_default_cache_config
from promptfork.llm.prompt_cache.models import ModelCapabilities
from promptfork.llm.prompt_cache.utils import estimate_tokens
from promptfork.llm.prompt_cache.utils import serialize_cache_content
from promptfork.llm.prompt_cache.validation import format_breakpoint_limit
from promptfork.utils.logger import setup_logger

logger = setup_logger()

SYSTEM_SEGMENT_KEY_PREFIX = "system"


def _is_explicit_ttl(ttl: CacheTTL | None) -> bool:
    return ttl is not None and ttl != CacheTTL.SESSION


class CacheSegmentManager:
    def __init__(
        self,
        provider: CacheProvider | str,
        model: str,
        config: CacheConfig | None = None,
        catalog: ModelCatalog | None = None,
    ) -> None:
        self.provider = coerce_cache_provider(provider)
        self.model = model
        self.config = config or create_default_cache_config()
        self.catalog = catalog
        self.capabilities = get_cache_capabilities(self.provider, model, catalog)

        self._segments: list[CacheSegment] = []
        self._system_segment_count = 0

    @property
    def max_segments(self) -> int | float:
        return min(self.config.max_breakpoints, self.capabilities.max_breakpoints)

    @property
    def total_tokens(self) -> int:
        return sum(segment.token_count for segment in self._segments)

    def add_segment(
        self,
        key: str,
        content: str | dict[str, Any] | BaseModel,
        *,
        scope: CacheScope | None = None,
        ttl: CacheTTL | None = None,
        min_tokens: int | None = None,
        force: bool = False,
    ) -> list[str]:
        """Register a cacheable segment.

        Some rules can be overridden with `force` (breakpoint overflow, content
        below the provider floor, scope wider than the config default). Duplicate
        keys, unsupported caching and unsupported TTL values never can.

        Returns:
            Non-blocking warnings

        Raises:
            SegmentValidationError: if the segment is rejected
        """
        content_str = serialize_cache_content(content)
        token_count = estimate_tokens(content_str)
        scope = scope or self.config.default_scope
        ttl = ttl if ttl is not None else self.config.default_ttl
        floor = min_tokens if min_tokens is not None else self.capabilities.min_tokens

        blocking: list[str] = []
        forceable: list[str] = []
        warnings: list[str] = []

        if any(segment.key == key for segment in self._segments):
            blocking.append(f"Cache key '{key}' already exists")

        if not self.capabilities.supported:
            blocking.append(
                f"Caching is not supported for {self.provider}/{self.model}"
            )

        if _is_explicit_ttl(ttl):
            if not self.capabilities.supports_ttl:
                warnings.append(
                    f"TTL '{ttl}' specified but provider does not support TTL, "
                    "it will be ignored"
                )
                ttl = None
            elif ttl not in self.capabilities.supported_ttl:
                supported = ", ".join(
                    str(value) for value in self.capabilities.supported_ttl
                )
                blocking.append(
                    f"Unsupported TTL '{ttl}'. Supported values: {supported}"
                )

        if len(self._segments) >= self.max_segments:
            forceable.append(
                "Cannot add segment: would exceed maximum breakpoints "
                f"({format_breakpoint_limit(self.max_segments)})"
            )

        if token_count < floor:
            forceable.append(
                f"Content has {token_count} tokens, below minimum of {floor}"
            )

        if scope.is_more_permissive_than(self.config.default_scope):
            forceable.append(
                f"Scope '{scope}' is more permissive than the default scope "
                f"'{self.config.default_scope}'"
            )

        if not content_str:
            warnings.append("Cache segment has empty content")

        if blocking:
            raise SegmentValidationError(blocking + forceable)
        if forceable:
            if not force:
                raise SegmentValidationError(forceable)
            for message in forceable:
                logger.warning(f"Cache segment '{key}' accepted with force: {message}")
            warnings.extend(f"Forced: {message}" for message in forceable)

        self._segments.append(
            CacheSegment(
                key=key,
                content=content_str,
                token_count=token_count,
                ttl=ttl,
                scope=scope,
                forced=bool(forceable),
                created_at=datetime.now(timezone.utc),
            )
        )
        logger.debug(
            f"Registered cache segment '{key}': {token_count} tokens, ttl={ttl}, "
            f"scope={scope}"
        )
        return warnings

    def add_system_segment(
        self,
        content: str | dict[str, Any] | BaseModel,
        *,
        key: str | None = None,
        ttl: CacheTTL | None = None,
        min_tokens: int | None = None,
        force: bool = False,
    ) -> list[str]:
        """Register system content: system-only scope, longest supported TTL.

        System prompts are the most stable and least sensitive content in a
        session, so they get the longest lifetime the provider offers.
        """
        if key is None:
            key = f"{SYSTEM_SEGMENT_KEY_PREFIX}-{self._system_segment_count}"
        if ttl is None:
            ttl = self.capabilities.longest_ttl or CacheTTL.SESSION

        warnings = self.add_segment(
            key,
            content,
            scope=CacheScope.SYSTEM_ONLY,
            ttl=ttl,
            min_tokens=min_tokens,
            force=force,
        )
        self._system_segment_count += 1
        return warnings

    def get_segments(self) -> list[CacheSegment]:
        return list(self._segments)

    def get_segments_by_scope(self, scope: CacheScope) -> list[CacheSegment]:
        return [segment for segment in self._segments if segment.scope == scope]

    def get_segments_by_ttl(self, ttl: CacheTTL | None) -> list[CacheSegment]:
        return [segment for segment in self._segments if segment.ttl == ttl]

    def estimate_tokens(self, content: str | dict[str, Any] | BaseModel) -> int:
        return estimate_tokens(serialize_cache_content(content))

    def should_cache(
        self,
        content: str | dict[str, Any] | BaseModel,
        min_tokens: int | None = None,
        force: bool = False,
    ) -> bool:
        """Whether the content would be worth caching. Registers nothing."""
        if not self.capabilities.supported or not self.config.enabled:
            return False
        if force:
            return True
        floor = min_tokens if min_tokens is not None else self.capabilities.min_tokens
        return self.estimate_tokens(content) >= floor

    def clear(self) -> None:
        self._segments.clear()
        self._system_segment_count = 0

    def validate(self) -> CacheValidationResult:
        return self.validate_for_model(self.model)

    def validate_for_model(self, model: str) -> CacheValidationResult:
        """Replay the registered segments against another model of the same provider."""
        capabilities = get_cache_capabilities(self.provider, model, self.catalog)
        if not capabilities.supported:
            return CacheValidationResult.from_messages(
                [f"Caching is not supported for model '{model}'"]
            )

        errors: list[str] = []
        warnings: list[str] = []

        limit = min(self.config.max_breakpoints, capabilities.max_breakpoints)
        if len(self._segments) > limit:
            errors.append(
                f"{len(self._segments)} segments exceed the breakpoint limit of "
                f"{format_breakpoint_limit(limit)} for model '{model}'"
            )

        for index, segment in enumerate(self._segments):
            errors.extend(
                self._ttl_errors(index, segment, model, capabilities, warnings)
            )
            if segment.token_count < capabilities.min_tokens:
                warnings.append(
                    f"Segment {index} ({segment.key}) has {segment.token_count} "
                    f"tokens, below minimum of {capabilities.min_tokens} for "
                    f"model '{model}'"
                )

        return CacheValidationResult.from_messages(errors, warnings)

    @staticmethod
    def _ttl_errors(
        index: int,
        segment: CacheSegment,
        model: str,
        capabilities: ModelCapabilities,
        warnings: list[str],
    ) -> list[str]:
        if not _is_explicit_ttl(segment.ttl):
            return []
        if not capabilities.supports_ttl:
            warnings.append(
                f"Segment {index} ({segment.key}) specifies TTL '{segment.ttl}' but "
                f"model '{model}' does not support TTL"
            )
            return []
        if segment.ttl not in capabilities.supported_ttl:
            supported = ", ".join(str(value) for value in capabilities.supported_ttl)
            return [
                f"Segment {index} ({segment.key}) uses unsupported TTL "
                f"'{segment.ttl}'. Supported: {supported}"
            ]
        return []
