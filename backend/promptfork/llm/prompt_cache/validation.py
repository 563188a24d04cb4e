"""Validation of cache configuration against provider capabilities.

Everything here runs before any request is sent. Blocking problems are
reported as errors, degraded-but-usable setups as warnings.
"""

import math
from collections.abc import Sequence

from promptfork.llm.catalog import ModelCatalog
from promptfork.llm.constants import CacheProvider
from promptfork.llm.prompt_cache.capabilities import get_cache_capabilities
from promptfork.llm.prompt_cache.exceptions import CacheConfigurationError
from promptfork.llm.prompt_cache.models import CacheConfig
from promptfork.llm.prompt_cache.models import CacheSegmentConfig
from promptfork.llm.prompt_cache.models import CacheTTL
from promptfork.llm.prompt_cache.models import CacheValidationResult
from promptfork.llm.prompt_cache.models import ModelCapabilities
from promptfork.utils.logger import setup_logger

logger = setup_logger()


def format_breakpoint_limit(limit: int | float) -> str:
    return "unbounded" if math.isinf(limit) else str(int(limit))


def validate_ttl_ordering(
    ttls: Sequence[CacheTTL | None],
) -> CacheValidationResult:
    """Segments sharing a request must go from the longest TTL to the shortest.

    A longer TTL after a shorter one cannot be honored: the shorter entry expires
    first and takes the rest of the prefix with it. Segments without a TTL are
    skipped.
    """
    errors: list[str] = []
    previous: CacheTTL | None = None
    for index, ttl in enumerate(ttls):
        if ttl is None:
            continue
        if previous is not None and ttl.seconds > previous.seconds:
            errors.append(
                f"Segment {index} TTL '{ttl}' is longer than previous segment. "
                "TTL values must be ordered from longest to shortest in the same request."
            )
        previous = ttl
    return CacheValidationResult.from_messages(errors)


def _validate_ttl_support(
    ttl: CacheTTL, label: str, caps: ModelCapabilities, provider: str, model: str
) -> list[str]:
    # Session TTL means "whatever the provider does by default", always acceptable
    if ttl == CacheTTL.SESSION:
        return []
    if not caps.supports_ttl:
        return [
            f"{label} '{ttl}' requires TTL support, but {provider}/{model} "
            "does not support cache TTL"
        ]
    if ttl not in caps.supported_ttl:
        supported = ", ".join(str(value) for value in caps.supported_ttl)
        return [
            f"{label} '{ttl}' is not supported by {provider}/{model} "
            f"(supported: {supported})"
        ]
    return []


def _validate_segment(
    index: int,
    segment: CacheSegmentConfig,
    config: CacheConfig,
    caps: ModelCapabilities,
    provider: str,
    model: str,
) -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []

    if segment.ttl is not None:
        errors.extend(
            _validate_ttl_support(
                segment.ttl, f"Segment {index} TTL", caps, provider, model
            )
        )
        if (
            config.default_ttl is not None
            and segment.ttl.seconds > config.default_ttl.seconds
        ):
            errors.append(
                f"Segment {index} TTL '{segment.ttl}' is longer than the default TTL "
                f"'{config.default_ttl}'"
            )

    if segment.min_tokens is not None and segment.min_tokens < caps.min_tokens:
        message = (
            f"Segment {index} has {segment.min_tokens} tokens, below provider "
            f"minimum of {caps.min_tokens}"
        )
        if segment.force:
            warnings.append(f"{message} (forced, it will likely not be cached)")
        else:
            errors.append(message)

    errors.extend(_validate_segment_scope(index, segment, config))
    return errors, warnings


def _validate_segment_scope(
    index: int, segment: CacheSegmentConfig, config: CacheConfig
) -> list[str]:
    if not segment.scope.is_more_permissive_than(config.default_scope):
        return []
    return [
        f"Segment {index} scope '{segment.scope}' is more permissive than "
        f"default scope '{config.default_scope}'"
    ]


def _validate_segment_count(
    config: CacheConfig, caps: ModelCapabilities
) -> list[str]:
    segment_limit = max(0, min(config.max_breakpoints, caps.max_breakpoints))
    if len(config.segments) <= segment_limit:
        return []
    return [
        f"{len(config.segments)} segments exceed the breakpoint limit of "
        f"{format_breakpoint_limit(segment_limit)}"
    ]


def validate_cache_config(
    config: CacheConfig,
    provider: CacheProvider | str,
    model: str,
    catalog: ModelCatalog | None = None,
) -> CacheValidationResult:
    if not config.enabled:
        return CacheValidationResult()

    caps = get_cache_capabilities(provider, model, catalog)
    errors: list[str] = []
    warnings: list[str] = []

    if config.max_breakpoints < 0:
        errors.append(f"Max breakpoints ({config.max_breakpoints}) must be >= 0")

    # Segments are still bounded and scope-checked when the config is ignored
    if not caps.supported:
        logger.debug(f"Caching not supported for {provider}/{model}, config ignored")
        warnings.append(
            f"Caching is not supported for {provider}/{model}; "
            "the cache configuration will be ignored"
        )
        errors.extend(_validate_segment_count(config, caps))
        for index, segment in enumerate(config.segments):
            errors.extend(_validate_segment_scope(index, segment, config))
        return CacheValidationResult.from_messages(errors, warnings)

    if config.max_breakpoints > caps.max_breakpoints:
        errors.append(
            f"Max breakpoints ({config.max_breakpoints}) exceeds provider limit "
            f"({format_breakpoint_limit(caps.max_breakpoints)})"
        )

    if config.default_ttl is not None:
        errors.extend(
            _validate_ttl_support(
                config.default_ttl, "Default TTL", caps, str(provider), model
            )
        )

    errors.extend(_validate_segment_count(config, caps))

    for index, segment in enumerate(config.segments):
        segment_errors, segment_warnings = _validate_segment(
            index, segment, config, caps, str(provider), model
        )
        errors.extend(segment_errors)
        warnings.extend(segment_warnings)

    result = CacheValidationResult.from_messages(errors, warnings)
    return result.merge(
        validate_ttl_ordering([segment.ttl for segment in config.segments])
    )


def ensure_valid_cache_config(
    config: CacheConfig,
    provider: CacheProvider | str,
    model: str,
    catalog: ModelCatalog | None = None,
) -> list[str]:
    """Raise CacheConfigurationError with every blocking error, otherwise return warnings."""
    result = validate_cache_config(config, provider, model, catalog)
    if not result.valid:
        raise CacheConfigurationError(result.errors)
    return result.warnings


def validate_breakpoint_limit(
    count: int,
    provider: CacheProvider | str,
    model: str,
    catalog: ModelCatalog | None = None,
) -> CacheValidationResult:
    caps = get_cache_capabilities(provider, model, catalog)
    if count > caps.max_breakpoints:
        return CacheValidationResult.from_messages(
            [
                f"Requested {count} breakpoints exceeds provider limit of "
                f"{format_breakpoint_limit(caps.max_breakpoints)}"
            ]
        )
    return CacheValidationResult()


def validate_min_tokens(
    tokens: int,
    provider: CacheProvider | str,
    model: str,
    catalog: ModelCatalog | None = None,
) -> CacheValidationResult:
    """Below-floor content is still sendable, so this only ever warns."""
    caps = get_cache_capabilities(provider, model, catalog)
    if tokens < caps.min_tokens:
        return CacheValidationResult.from_messages(
            [],
            [
                f"Content has {tokens} tokens, below provider minimum of "
                f"{caps.min_tokens} for effective caching"
            ],
        )
    return CacheValidationResult()
