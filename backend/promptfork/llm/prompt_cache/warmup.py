"""Cache warmup: populating a provider cache before fork branches run.

Only providers with explicit caching benefit from a warmup. Automatic-cache
providers already reuse identical prefixes, an extra round-trip would only add
latency and cost.
"""

import abc
import math
import time
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict

from promptfork.configs.cache_configs import WARMUP_MAX_TOKENS
from promptfork.configs.cache_configs import WARMUP_OVERHEAD_TOKENS
from promptfork.configs.cache_configs import WARMUP_PROMPT
from promptfork.llm.catalog import ModelCatalog
from promptfork.llm.constants import CacheProvider
from promptfork.llm.interfaces import LLM
from promptfork.llm.prompt_cache.capabilities import get_cache_capabilities
from promptfork.llm.prompt_cache.context import ForkContext
from promptfork.llm.prompt_cache.metrics import aggregate_cache_metrics
from promptfork.llm.prompt_cache.metrics import parse_response_metrics
from promptfork.llm.prompt_cache.models import ModelCapabilities
from promptfork.llm.prompt_cache.models import WarmupResult
from promptfork.llm.prompt_cache.processor import build_cacheable_prefix
from promptfork.llm.prompt_cache.processor import process_with_prompt_cache
from promptfork.llm.prompt_cache.providers.factory import resolve_cache_provider
from promptfork.llm.prompt_cache.segments import CacheSegmentManager
from promptfork.llm.prompt_cache.utils import CHARS_PER_TOKEN
from promptfork.utils.logger import setup_logger

logger = setup_logger()

WARMUP_METADATA = {"warmup": True}


class WarmupConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    provider: CacheProvider
    model: str
    # Needed for explicit warmup calls only, planning helpers work without it
    llm: LLM | None = None
    system_prompt: str | None = None
    warmup_prompt: str = WARMUP_PROMPT
    max_tokens: int = WARMUP_MAX_TOKENS
    catalog: ModelCatalog | None = None

    @classmethod
    def from_llm(cls, llm: LLM, **kwargs: Any) -> "WarmupConfig":
        return cls(
            provider=resolve_cache_provider(
                llm.config.model_provider, llm.config.model_name
            ),
            model=llm.config.model_name,
            llm=llm,
            **kwargs,
        )

    @property
    def capabilities(self) -> ModelCapabilities:
        return get_cache_capabilities(self.provider, self.model, self.catalog)


class WarmupExecutor(abc.ABC):
    """Performs the warmup call for cache-optimized forks."""

    @property
    @abc.abstractmethod
    def supports_cache_optimization(self) -> bool:
        raise NotImplementedError

    def should_warmup(self, branch_count: int, ctx: ForkContext) -> bool:
        return self.supports_cache_optimization and branch_count > 1

    @abc.abstractmethod
    async def explicit_warmup(self, ctx: ForkContext) -> WarmupResult:
        raise NotImplementedError


class WarmupExecutorRegistry:
    """Holds the warmup executor a fork uses when none is passed explicitly.

    Empty until `register` is called. Forks can also bypass it entirely by
    passing an executor or their own registry.
    """

    def __init__(self) -> None:
        self._executor: WarmupExecutor | None = None

    def register(self, executor: WarmupExecutor) -> None:
        self._executor = executor

    def get(self) -> WarmupExecutor | None:
        return self._executor

    def clear(self) -> None:
        self._executor = None


default_warmup_registry = WarmupExecutorRegistry()


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


async def explicit_warmup(
    config: WarmupConfig,
    segment_manager: CacheSegmentManager | None = None,
) -> WarmupResult:
    """Send one minimal request carrying the cached prefix.

    The prefix is assembled exactly as branches assemble it, so the cache
    entry written here is the one they read.
    """
    if not config.capabilities.supported:
        logger.debug(
            f"Skipping warmup, caching is not supported for "
            f"{config.provider}/{config.model}"
        )
        return WarmupResult()
    if config.llm is None:
        raise ValueError("Explicit warmup requires an LLM to send the warmup call")

    start = time.monotonic()
    cacheable_prefix = (
        build_cacheable_prefix(segment_manager) if segment_manager is not None else None
    )
    prompt, provider_options = process_with_prompt_cache(
        llm_config=config.llm.config,
        cacheable_prefix=cacheable_prefix,
        suffix=config.warmup_prompt,
        cache_config=segment_manager.config if segment_manager is not None else None,
        catalog=config.catalog,
    )
    response = await config.llm.ainvoke(
        prompt,
        system=config.system_prompt,
        max_tokens=config.max_tokens,
        provider_options=provider_options or None,
        metadata=dict(WARMUP_METADATA),
    )

    stats = parse_response_metrics(
        response, config.provider, config.model, config.catalog
    )
    result = WarmupResult(
        token_cost=stats.input_tokens + stats.output_tokens,
        cache_created_tokens=stats.cache_write_tokens,
        duration_ms=_elapsed_ms(start),
    )
    logger.info(
        f"Cache warmup for {config.provider}/{config.model}: "
        f"{result.cache_created_tokens} tokens cached, "
        f"{result.token_cost} tokens spent in {result.duration_ms:.0f}ms"
    )
    return result


async def first_branch_warmup(
    branch: Callable[[ForkContext], Awaitable[Any]],
    ctx: ForkContext,
) -> tuple[Any, WarmupResult]:
    """Run a real branch as the warmup. Its result is kept."""
    start = time.monotonic()
    calls_before = ctx.metrics.call_count if ctx.metrics is not None else 0

    result = await branch(ctx)

    if ctx.metrics is None:
        return result, WarmupResult(duration_ms=_elapsed_ms(start))

    stats = aggregate_cache_metrics(ctx.metrics.get_individual_stats()[calls_before:])
    return result, WarmupResult(
        token_cost=stats.input_tokens + stats.output_tokens,
        cache_created_tokens=stats.cache_write_tokens,
        duration_ms=_elapsed_ms(start),
    )


def should_warmup(
    config: WarmupConfig,
    segment_manager: CacheSegmentManager | None,
    branch_count: int,
) -> bool:
    capabilities = config.capabilities
    if not capabilities.supported or capabilities.is_automatic:
        return False
    if segment_manager is None or not segment_manager.get_segments():
        return False
    if segment_manager.total_tokens < capabilities.min_tokens:
        return False
    return branch_count > 1


def estimate_warmup_cost(
    segment_manager: CacheSegmentManager | None = None,
    system_prompt: str | None = None,
) -> int:
    """Rough token cost of one explicit warmup call, for pre-flight budgeting."""
    segment_tokens = segment_manager.total_tokens if segment_manager is not None else 0
    system_tokens = (
        math.ceil(len(system_prompt) / CHARS_PER_TOKEN) if system_prompt else 0
    )
    return segment_tokens + system_tokens + WARMUP_OVERHEAD_TOKENS + WARMUP_MAX_TOKENS


class LLMWarmupExecutor(WarmupExecutor):
    def __init__(
        self,
        config: WarmupConfig,
        segment_manager: CacheSegmentManager | None = None,
    ) -> None:
        self.config = config
        self.segment_manager = segment_manager

    @property
    def supports_cache_optimization(self) -> bool:
        capabilities = self.config.capabilities
        return capabilities.supported and not capabilities.is_automatic

    def should_warmup(self, branch_count: int, ctx: ForkContext) -> bool:
        segment_manager = self.segment_manager or ctx.segment_manager
        return should_warmup(self.config, segment_manager, branch_count)

    async def explicit_warmup(self, ctx: ForkContext) -> WarmupResult:
        config = self.config
        if config.llm is None and ctx.llm is not None:
            config = config.model_copy(update={"llm": ctx.llm})
        segment_manager = self.segment_manager or ctx.segment_manager
        return await explicit_warmup(config, segment_manager)


def setup_warmup_executor(
    config: WarmupConfig,
    segment_manager: CacheSegmentManager | None = None,
    registry: WarmupExecutorRegistry = default_warmup_registry,
) -> LLMWarmupExecutor:
    executor = LLMWarmupExecutor(config, segment_manager)
    registry.register(executor)
    return executor
