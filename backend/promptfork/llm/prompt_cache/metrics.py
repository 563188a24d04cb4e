"""Normalization of provider usage payloads into cache statistics.

Explicit-cache providers (Anthropic) report cache writes and reads separately.
Automatic-cache providers (OpenAI, Gemini) report a single cached count nested
in the prompt usage, with no visibility into writes. Both end up as CacheStats.

Metrics are purely observational: parsing never raises, an unrecognized payload
yields zeroed stats that still carry the raw payload.
"""

from collections.abc import Callable
from collections.abc import Sequence
from typing import Any

from promptfork.llm.catalog import ModelCatalog
from promptfork.llm.constants import CacheProvider
from promptfork.llm.cost import get_model_pricing
from promptfork.llm.model_response import ModelResponse
from promptfork.llm.prompt_cache.capabilities import coerce_cache_provider
from promptfork.llm.prompt_cache.capabilities import get_cache_capabilities
from promptfork.llm.prompt_cache.models import CacheSavingsEstimate
from promptfork.llm.prompt_cache.models import CacheStats
from promptfork.llm.prompt_cache.models import SavingsRecommendation
from promptfork.utils.logger import setup_logger

logger = setup_logger()

UNKNOWN_PROVIDER = "unknown"
# Below this the estimate is reported as recommended but with minimal savings
MINIMAL_SAVINGS_USD = 0.01


def _get_usage_value(usage: Any, key: str) -> Any:
    """Retrieve a field from usage objects (e.g. litellm Usage) or dictionaries."""
    if usage is None:
        return None
    if isinstance(usage, dict):
        return usage.get(key)
    return getattr(usage, key, None)


def _get_token_count(usage: Any, *keys: str) -> int:
    for key in keys:
        value = _get_usage_value(usage, key)
        if value is not None:
            return int(value)
    return 0


def _build_stats(
    provider: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    cache_write_tokens: int,
    cache_read_tokens: int,
    raw: Any,
    catalog: ModelCatalog | None,
) -> CacheStats:
    # Tokens read from cache are the tokens not processed fresh
    saved_tokens = cache_read_tokens
    pricing = get_model_pricing(model, catalog, provider)
    return CacheStats(
        provider=provider,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_write_tokens=cache_write_tokens,
        cache_read_tokens=cache_read_tokens,
        saved_tokens=saved_tokens,
        cache_hit_rate=cache_read_tokens / input_tokens if input_tokens > 0 else 0.0,
        estimated_savings_usd=saved_tokens / 1_000_000 * pricing.input_per_1m,
        raw=raw,
    )


def _parse_anthropic(
    usage: Any, model: str, catalog: ModelCatalog | None
) -> CacheStats:
    return _build_stats(
        provider=CacheProvider.ANTHROPIC.value,
        model=model,
        input_tokens=_get_token_count(usage, "input_tokens", "prompt_tokens"),
        output_tokens=_get_token_count(usage, "output_tokens", "completion_tokens"),
        cache_write_tokens=_get_token_count(usage, "cache_creation_input_tokens"),
        cache_read_tokens=_get_token_count(usage, "cache_read_input_tokens"),
        raw=usage,
        catalog=catalog,
    )


def _parse_openai(usage: Any, model: str, catalog: ModelCatalog | None) -> CacheStats:
    details = _get_usage_value(usage, "prompt_tokens_details")
    return _build_stats(
        provider=CacheProvider.OPENAI.value,
        model=model,
        input_tokens=_get_token_count(usage, "prompt_tokens", "input_tokens"),
        output_tokens=_get_token_count(usage, "completion_tokens", "output_tokens"),
        # Writes are automatic and not reported
        cache_write_tokens=0,
        cache_read_tokens=_get_token_count(details, "cached_tokens"),
        raw=usage,
        catalog=catalog,
    )


def _parse_google(usage: Any, model: str, catalog: ModelCatalog | None) -> CacheStats:
    return _build_stats(
        provider=CacheProvider.GOOGLE.value,
        model=model,
        input_tokens=_get_token_count(usage, "prompt_token_count", "prompt_tokens"),
        output_tokens=_get_token_count(
            usage, "candidates_token_count", "completion_tokens"
        ),
        cache_write_tokens=0,
        cache_read_tokens=_get_token_count(usage, "cached_content_token_count"),
        raw=usage,
        catalog=catalog,
    )


def _parse_unknown(usage: Any, model: str, catalog: ModelCatalog | None) -> CacheStats:
    return empty_cache_stats(raw=usage)


USAGE_PARSERS: dict[
    CacheProvider, Callable[[Any, str, ModelCatalog | None], CacheStats]
] = {
    CacheProvider.ANTHROPIC: _parse_anthropic,
    CacheProvider.OPENAI: _parse_openai,
    CacheProvider.GOOGLE: _parse_google,
    CacheProvider.OTHER: _parse_unknown,
}


def empty_cache_stats(provider: str = UNKNOWN_PROVIDER, raw: Any = None) -> CacheStats:
    return CacheStats(provider=provider, raw=raw)


def parse_cache_metrics(
    usage: Any,
    provider: CacheProvider | str,
    model: str,
    catalog: ModelCatalog | None = None,
) -> CacheStats:
    """Normalize one call's usage payload (dict or attribute object)."""
    cache_provider = coerce_cache_provider(provider)
    try:
        return USAGE_PARSERS[cache_provider](usage, model, catalog)
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning(
            f"Could not parse cache usage for {cache_provider}/{model}: {e}. "
            "Reporting zeroed cache stats."
        )
        return empty_cache_stats(raw=usage)


def _merge_provider_metadata(
    response: ModelResponse, provider: CacheProvider
) -> dict[str, Any]:
    """Some providers only report cache writes in provider metadata, e.g.
    {"anthropic": {"cache_creation_input_tokens": 2048}}."""
    usage = dict(response.usage)
    metadata = (response.provider_metadata or {}).get(provider.value)
    if isinstance(metadata, dict):
        for key, value in metadata.items():
            usage.setdefault(key, value)
    return usage


def parse_response_metrics(
    response: ModelResponse,
    provider: CacheProvider | str,
    model: str,
    catalog: ModelCatalog | None = None,
) -> CacheStats:
    cache_provider = coerce_cache_provider(provider)
    return parse_cache_metrics(
        _merge_provider_metadata(response, cache_provider),
        cache_provider,
        model,
        catalog,
    )


def aggregate_cache_metrics(stats: Sequence[CacheStats]) -> CacheStats:
    """Sum stats across calls.

    The hit rate is recomputed from the totals rather than averaged, so short
    calls do not skew it. Provider identity comes from the first entry.
    """
    if not stats:
        return empty_cache_stats(raw={"aggregated_from": 0})

    input_tokens = sum(s.input_tokens for s in stats)
    cache_read_tokens = sum(s.cache_read_tokens for s in stats)
    breakpoints = [s.breakpoints_used for s in stats if s.breakpoints_used is not None]

    return CacheStats(
        provider=stats[0].provider,
        input_tokens=input_tokens,
        output_tokens=sum(s.output_tokens for s in stats),
        cache_write_tokens=sum(s.cache_write_tokens for s in stats),
        cache_read_tokens=cache_read_tokens,
        saved_tokens=sum(s.saved_tokens for s in stats),
        cache_hit_rate=cache_read_tokens / input_tokens if input_tokens > 0 else 0.0,
        estimated_savings_usd=sum(s.estimated_savings_usd for s in stats),
        ttl=stats[0].ttl,
        breakpoints_used=sum(breakpoints) if breakpoints else None,
        raw={
            "aggregated_from": len(stats),
            "individual": [s.raw for s in stats],
        },
    )


def estimate_cache_savings(
    content_tokens: int,
    request_count: int,
    provider: CacheProvider | str,
    model: str,
    catalog: ModelCatalog | None = None,
) -> CacheSavingsEstimate:
    """Pre-call estimate: the first request writes the cache, every later one reads it."""
    caps = get_cache_capabilities(provider, model, catalog)
    pricing = get_model_pricing(model, catalog, provider)

    potential_saved_tokens = content_tokens * max(0, request_count - 1)
    potential_saved_usd = potential_saved_tokens / 1_000_000 * pricing.input_per_1m

    if not caps.supported:
        return CacheSavingsEstimate(
            potential_saved_tokens=0,
            potential_saved_usd=0.0,
            cache_effective=False,
            recommendation=SavingsRecommendation.UNSUPPORTED,
            message=f"Caching is not supported for {provider}/{model}",
        )

    if content_tokens < caps.min_tokens:
        recommendation = SavingsRecommendation.TOO_SHORT
        message = (
            "Content too short for effective caching "
            f"({content_tokens} < {caps.min_tokens} min tokens)"
        )
    elif request_count <= 1:
        recommendation = SavingsRecommendation.SINGLE_USE
        message = "Caching not beneficial for single-use content"
    else:
        recommendation = SavingsRecommendation.RECOMMENDED
        if potential_saved_usd < MINIMAL_SAVINGS_USD:
            message = f"Cache savings minimal (< ${MINIMAL_SAVINGS_USD})"
        else:
            message = (
                f"Caching recommended: save ~{request_count - 1}x {content_tokens} "
                f"tokens (~${potential_saved_usd:.4f})"
            )

    return CacheSavingsEstimate(
        potential_saved_tokens=potential_saved_tokens,
        potential_saved_usd=potential_saved_usd,
        cache_effective=recommendation == SavingsRecommendation.RECOMMENDED,
        recommendation=recommendation,
        message=message,
    )


def format_cache_stats(stats: CacheStats) -> str:
    lines = [
        f"Cache Stats ({stats.provider}):",
        f"  Input Tokens: {stats.input_tokens:,}",
        f"  Output Tokens: {stats.output_tokens:,}",
        f"  Total Tokens: {stats.input_tokens + stats.output_tokens:,}",
        f"  Cache Read: {stats.cache_read_tokens:,} ({stats.cache_hit_rate * 100:.1f}%)",
        f"  Cache Write: {stats.cache_write_tokens:,}",
        f"  Saved: {stats.saved_tokens:,} tokens (~${stats.estimated_savings_usd:.4f})",
    ]
    if stats.ttl is not None:
        lines.append(f"  TTL: {stats.ttl}")
    if stats.breakpoints_used:
        lines.append(f"  Breakpoints: {stats.breakpoints_used}")
    return "\n".join(lines)


class CacheMetricsCollector:
    """Accumulates per-call stats for one session (or one fork branch)."""

    def __init__(
        self,
        provider: CacheProvider | str,
        model: str,
        catalog: ModelCatalog | None = None,
    ) -> None:
        self.provider = coerce_cache_provider(provider)
        self.model = model
        self.catalog = catalog
        self._stats: list[CacheStats] = []

    @property
    def call_count(self) -> int:
        return len(self._stats)

    def add_metrics(self, usage: Any) -> CacheStats:
        stats = parse_cache_metrics(usage, self.provider, self.model, self.catalog)
        self._stats.append(stats)
        return stats

    def add_response(self, response: ModelResponse) -> CacheStats:
        stats = parse_response_metrics(
            response, self.provider, self.model, self.catalog
        )
        self._stats.append(stats)
        return stats

    def add_stats(self, stats: CacheStats) -> None:
        self._stats.append(stats)

    def get_aggregated_stats(self) -> CacheStats:
        return aggregate_cache_metrics(self._stats)

    def get_individual_stats(self) -> list[CacheStats]:
        return list(self._stats)

    def clear(self) -> None:
        self._stats.clear()
