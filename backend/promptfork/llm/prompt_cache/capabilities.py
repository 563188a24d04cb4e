"""Per-provider/model prompt-cache capabilities.

Provider limits are not enforced loudly by the providers themselves: a cache
marker past the breakpoint limit or below the token floor is simply ignored,
so the request succeeds and nothing is cached. Everything here errs on the
conservative side for that reason.
"""

import math
from collections.abc import Callable
from typing import Any
from typing import Literal

from promptfork.configs.cache_configs import PROMPT_CACHE_MAX_PRACTICAL_BREAKPOINTS
from promptfork.llm.catalog import ModelCatalog
from promptfork.llm.catalog import normalize_model_name
from promptfork.llm.catalog import UNBOUNDED_BREAKPOINTS
from promptfork.llm.constants import CacheProvider
from promptfork.llm.prompt_cache.models import CacheStrategy
from promptfork.llm.prompt_cache.models import CacheTTL
from promptfork.llm.prompt_cache.models import ModelCapabilities
from promptfork.utils.logger import setup_logger

logger = setup_logger()

CacheFeature = Literal["ttl", "tool_caching", "automatic"]

ANTHROPIC_MAX_BREAKPOINTS = 4
ANTHROPIC_TTL_VALUES = (CacheTTL.FIVE_MINUTES, CacheTTL.ONE_HOUR)
GOOGLE_MAX_BREAKPOINTS = 1


def _anthropic(min_tokens: int) -> ModelCapabilities:
    return ModelCapabilities(
        supported=True,
        min_tokens=min_tokens,
        max_breakpoints=ANTHROPIC_MAX_BREAKPOINTS,
        supports_ttl=True,
        supported_ttl=ANTHROPIC_TTL_VALUES,
        supports_tool_caching=False,
        is_automatic=False,
    )


def _openai_automatic(supports_tool_caching: bool = True) -> ModelCapabilities:
    return ModelCapabilities(
        supported=True,
        min_tokens=1024,
        max_breakpoints=math.inf,
        supports_ttl=False,
        supported_ttl=(),
        supports_tool_caching=supports_tool_caching,
        is_automatic=True,
    )


# Opus 4.5 and Haiku 4.5 cache from 4096 tokens, Haiku 3/3.5 from 2048,
# every other Sonnet/Opus from 1024
ANTHROPIC_MODELS: dict[str, ModelCapabilities] = {
    "claude-opus-4-5": _anthropic(4096),
    "claude-4-5-haiku": _anthropic(4096),
    "claude-haiku-4-5": _anthropic(4096),
    "claude-3-5-sonnet": _anthropic(1024),
    "claude-3-5-sonnet-20241022": _anthropic(1024),
    "claude-3-5-sonnet-20240620": _anthropic(1024),
    "claude-3-5-haiku": _anthropic(2048),
    "claude-3-5-haiku-20241022": _anthropic(2048),
    "claude-3-opus": _anthropic(1024),
    "claude-3-opus-20240229": _anthropic(1024),
    "claude-3-sonnet": _anthropic(1024),
    "claude-3-sonnet-20240229": _anthropic(1024),
    "claude-3-haiku": _anthropic(2048),
    "claude-3-haiku-20240307": _anthropic(2048),
}
# Sonnet-class is the most common family
ANTHROPIC_DEFAULT = _anthropic(1024)

OPENAI_MODELS: dict[str, ModelCapabilities] = {
    "gpt-4o": _openai_automatic(),
    "gpt-4o-mini": _openai_automatic(),
    "gpt-4-turbo": _openai_automatic(),
    "gpt-4-turbo-preview": _openai_automatic(),
    "gpt-4": _openai_automatic(supports_tool_caching=False),
    "gpt-3.5-turbo": ModelCapabilities(
        supported=False,
        min_tokens=1024,
        max_breakpoints=0,
        supports_ttl=False,
        supported_ttl=(),
        supports_tool_caching=False,
        is_automatic=False,
    ),
}
# Unknown OpenAI models are assumed to be modern GPT-4o-class
OPENAI_DEFAULT = _openai_automatic()

GOOGLE_DEFAULT = ModelCapabilities(
    supported=False,
    min_tokens=2048,
    max_breakpoints=GOOGLE_MAX_BREAKPOINTS,
    supports_ttl=False,
    supported_ttl=(),
    supports_tool_caching=False,
    is_automatic=False,
)

DEFAULT_CAPABILITIES = ModelCapabilities(
    supported=False,
    min_tokens=2048,
    max_breakpoints=1,
    supports_ttl=False,
    supported_ttl=(),
    supports_tool_caching=False,
    is_automatic=False,
)


def _canonical_model_name(model: str) -> str:
    name = normalize_model_name(model)
    # Routed names look like "anthropic/claude-3-haiku" or "us.anthropic.claude-3-haiku-v1:0"
    if "/" in name:
        name = name.rsplit("/", 1)[-1]
    claude_index = name.find("claude")
    if claude_index > 0:
        name = name[claude_index:]
    return name


def _lookup(
    table: dict[str, ModelCapabilities], model: str
) -> ModelCapabilities | None:
    if model in table:
        return table[model]
    name = _canonical_model_name(model)
    if name in table:
        return table[name]
    prefix_matches = [key for key in table if name.startswith(key)]
    if not prefix_matches:
        return None
    return table[max(prefix_matches, key=len)]


def _resolve_anthropic(model: str) -> ModelCapabilities:
    return _lookup(ANTHROPIC_MODELS, model) or ANTHROPIC_DEFAULT


def _resolve_openai(model: str) -> ModelCapabilities:
    return _lookup(OPENAI_MODELS, model) or OPENAI_DEFAULT


def _resolve_google(model: str) -> ModelCapabilities:
    return GOOGLE_DEFAULT


def _resolve_other(model: str) -> ModelCapabilities:
    return DEFAULT_CAPABILITIES


def _clamp_anthropic(caps: dict[str, Any]) -> dict[str, Any]:
    caps["is_automatic"] = False
    caps["supports_tool_caching"] = False
    caps["max_breakpoints"] = min(caps["max_breakpoints"], ANTHROPIC_MAX_BREAKPOINTS)
    caps["supported_ttl"] = tuple(
        ttl for ttl in caps["supported_ttl"] if ttl in ANTHROPIC_TTL_VALUES
    )
    return caps


def _clamp_openai(caps: dict[str, Any]) -> dict[str, Any]:
    caps["supports_ttl"] = False
    caps["supported_ttl"] = ()
    return caps


def _clamp_google(caps: dict[str, Any]) -> dict[str, Any]:
    caps["max_breakpoints"] = min(caps["max_breakpoints"], GOOGLE_MAX_BREAKPOINTS)
    caps["supports_tool_caching"] = False
    return caps


def _clamp_other(caps: dict[str, Any]) -> dict[str, Any]:
    caps["supported"] = False
    return caps


_STATIC_RESOLVERS: dict[CacheProvider, Callable[[str], ModelCapabilities]] = {
    CacheProvider.ANTHROPIC: _resolve_anthropic,
    CacheProvider.OPENAI: _resolve_openai,
    CacheProvider.GOOGLE: _resolve_google,
    CacheProvider.OTHER: _resolve_other,
}

_SAFETY_CLAMPS: dict[CacheProvider, Callable[[dict[str, Any]], dict[str, Any]]] = {
    CacheProvider.ANTHROPIC: _clamp_anthropic,
    CacheProvider.OPENAI: _clamp_openai,
    CacheProvider.GOOGLE: _clamp_google,
    CacheProvider.OTHER: _clamp_other,
}


def coerce_cache_provider(provider: CacheProvider | str) -> CacheProvider:
    if isinstance(provider, CacheProvider):
        return provider
    try:
        return CacheProvider(provider.lower())
    except ValueError:
        return CacheProvider.OTHER


def _apply_override(
    caps: dict[str, Any], override: dict[str, Any]
) -> dict[str, Any]:
    for field, value in override.items():
        if field == "max_breakpoints" and value == UNBOUNDED_BREAKPOINTS:
            value = math.inf
        elif field == "supported_ttl":
            value = tuple(CacheTTL(ttl) for ttl in value)
        caps[field] = value
    return caps


def _normalize(caps: dict[str, Any]) -> dict[str, Any]:
    caps["min_tokens"] = max(0, caps["min_tokens"])
    caps["max_breakpoints"] = max(0, caps["max_breakpoints"])

    if not caps["supports_ttl"] or not caps["supported_ttl"]:
        caps["supports_ttl"] = False
        caps["supported_ttl"] = ()

    # Callers only need to check `supported`, min_tokens is kept for estimates
    if not caps["supported"]:
        caps["max_breakpoints"] = 0
        caps["supports_ttl"] = False
        caps["supported_ttl"] = ()
        caps["supports_tool_caching"] = False
        caps["is_automatic"] = False
    return caps


def get_cache_capabilities(
    provider: CacheProvider | str,
    model: str,
    catalog: ModelCatalog | None = None,
) -> ModelCapabilities:
    """Cache capabilities for a provider/model pair.

    Static table first (exact match, then longest prefix, then the provider's
    family default), then the optional catalog override, then the provider's
    safety clamp. The clamp always runs last, so a drifted catalog can never
    exceed a real provider limit.
    """
    cache_provider = coerce_cache_provider(provider)
    caps = _STATIC_RESOLVERS[cache_provider](model).model_dump()

    if catalog is not None:
        override = catalog.get_capability_override(cache_provider, model)
        if override:
            logger.debug(
                f"Applying catalog capability override for {cache_provider}/{model}: "
                f"{sorted(override)}"
            )
            caps = _apply_override(caps, override)

    caps = _SAFETY_CLAMPS[cache_provider](caps)
    return ModelCapabilities(**_normalize(caps))


def supports_cache_feature(
    provider: CacheProvider | str,
    model: str,
    feature: CacheFeature,
    catalog: ModelCatalog | None = None,
) -> bool:
    caps = get_cache_capabilities(provider, model, catalog)
    if feature == "ttl":
        return caps.supports_ttl
    if feature == "tool_caching":
        return caps.supports_tool_caching
    if feature == "automatic":
        return caps.is_automatic
    return False


def get_effective_breakpoint_limit(
    provider: CacheProvider | str,
    model: str,
    max_practical: int = PROMPT_CACHE_MAX_PRACTICAL_BREAKPOINTS,
    catalog: ModelCatalog | None = None,
) -> int:
    """Finite breakpoint limit for planning, unbounded limits become `max_practical`."""
    caps = get_cache_capabilities(provider, model, catalog)
    if math.isinf(caps.max_breakpoints):
        return max_practical
    return int(caps.max_breakpoints)


def is_valid_ttl(
    provider: CacheProvider | str,
    model: str,
    ttl: CacheTTL | str,
    catalog: ModelCatalog | None = None,
) -> bool:
    caps = get_cache_capabilities(provider, model, catalog)
    return caps.supports_ttl and CacheTTL(ttl) in caps.supported_ttl


def get_recommended_cache_strategy(
    provider: CacheProvider | str,
    model: str,
    catalog: ModelCatalog | None = None,
) -> CacheStrategy:
    caps = get_cache_capabilities(provider, model, catalog)
    if not caps.supported:
        return CacheStrategy.DISABLED
    if caps.is_automatic:
        return CacheStrategy.AUTOMATIC_OPTIMIZATION
    return CacheStrategy.EXPLICIT_SEGMENTS
