"""Fan-out of N inference branches over a shared cached prefix.

Strategies:
    fast-parallel: every branch starts immediately. The cache is left to chance,
        with explicit-cache providers N concurrent requests can each pay for a
        cache write.
    cache-optimized: the cache is populated before the bulk of the branches run.
        explicit: one minimal warmup call, then all branches in parallel.
        first-branch: branch 0 runs alone, then the rest in parallel.
        none: like fast-parallel, reported in the same result shape.

A missing warmup executor never fails a fork, it degrades to fast-parallel
with a warning.
"""

import asyncio
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Sequence
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from promptfork.llm.prompt_cache.context import ForkContext
from promptfork.llm.prompt_cache.exceptions import ForkExecutionError
from promptfork.llm.prompt_cache.schema_conflict import detect_schema_conflict
from promptfork.llm.prompt_cache.schema_conflict import handle_schema_conflict
from promptfork.llm.prompt_cache.schema_conflict import SchemaConflictBehavior
from promptfork.llm.prompt_cache.warmup import default_warmup_registry
from promptfork.llm.prompt_cache.warmup import first_branch_warmup
from promptfork.llm.prompt_cache.warmup import WarmupExecutor
from promptfork.llm.prompt_cache.warmup import WarmupExecutorRegistry
from promptfork.utils.logger import setup_logger

logger = setup_logger()

WARMUP_UNAVAILABLE_MESSAGE = (
    "Cache optimization requested but no warmup executor available. "
    "Falling back to fast-parallel execution."
)

ForkBranch = Callable[[ForkContext], Awaitable[Any]]


class ForkStrategy(str, Enum):
    FAST_PARALLEL = "fast-parallel"
    CACHE_OPTIMIZED = "cache-optimized"


class WarmupStrategy(str, Enum):
    EXPLICIT = "explicit"
    FIRST_BRANCH = "first-branch"
    NONE = "none"


class ForkOptions(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    strategy: ForkStrategy
    branches: list[ForkBranch]
    # Defaults to explicit for cache-optimized forks
    warmup: WarmupStrategy | None = None
    # Output shape per branch, checked for cache-breaking differences
    schemas: list[Any] | None = None
    on_schema_conflict: SchemaConflictBehavior = SchemaConflictBehavior.WARN

    @property
    def effective_warmup(self) -> WarmupStrategy:
        if self.warmup is not None:
            return self.warmup
        if self.strategy == ForkStrategy.CACHE_OPTIMIZED:
            return WarmupStrategy.EXPLICIT
        return WarmupStrategy.NONE


class ForkCacheStats(BaseModel):
    warmup_cost: int = 0
    # Cache read tokens per branch, in submission order
    branch_cache_hits: list[int] = Field(default_factory=list)
    total_saved: int = 0


class ForkResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    # In submission order, regardless of completion order
    results: list[Any]
    warnings: list[str] = Field(default_factory=list)
    cache_stats: ForkCacheStats = Field(default_factory=ForkCacheStats)


def _zeroed_stats(branch_count: int) -> ForkCacheStats:
    return ForkCacheStats(branch_cache_hits=[0] * branch_count)


def _measured_stats(
    contexts: Sequence[ForkContext], warmup_cost: int = 0
) -> ForkCacheStats:
    branch_cache_hits: list[int] = []
    total_saved = 0
    for context in contexts:
        if context.metrics is None:
            branch_cache_hits.append(0)
            continue
        stats = context.metrics.get_aggregated_stats()
        branch_cache_hits.append(stats.cache_read_tokens)
        total_saved += stats.saved_tokens
    return ForkCacheStats(
        warmup_cost=warmup_cost,
        branch_cache_hits=branch_cache_hits,
        total_saved=total_saved,
    )


def _raise_for_failures(outcomes: list[Any], completed: Sequence[Any] = ()) -> None:
    """Raise ForkExecutionError if any branch outcome is an exception.

    `completed` holds the results of branches that ran before these outcomes,
    the outcomes are indexed after them. Non-Exception errors (e.g. task
    cancellation) are re-raised as is.
    """
    branch_errors: dict[int, BaseException] = {}
    partial_results: list[Any] = list(completed)
    for index, outcome in enumerate(outcomes, start=len(partial_results)):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            branch_errors[index] = outcome
            partial_results.append(None)
        else:
            partial_results.append(outcome)

    if not branch_errors:
        return

    for index, error in branch_errors.items():
        logger.warning(f"Fork branch {index} failed: {error!r}")
    first_error = branch_errors[min(branch_errors)]
    raise ForkExecutionError(branch_errors, partial_results) from first_error


async def _run_parallel(
    branches: Sequence[ForkBranch], contexts: Sequence[ForkContext]
) -> list[Any]:
    # Every launched branch runs to completion, failed ones included
    outcomes = await asyncio.gather(
        *(branch(context) for branch, context in zip(branches, contexts)),
        return_exceptions=True,
    )
    return list(outcomes)


class ForkScheduler:
    """Runs fork branches according to a strategy.

    The warmup executor is taken from the constructor, otherwise from the
    registry at run time.
    """

    def __init__(
        self,
        warmup_executor: WarmupExecutor | None = None,
        registry: WarmupExecutorRegistry = default_warmup_registry,
    ) -> None:
        self.warmup_executor = warmup_executor
        self.registry = registry

    def _resolve_executor(self) -> WarmupExecutor | None:
        return self.warmup_executor or self.registry.get()

    async def run(self, ctx: ForkContext, options: ForkOptions) -> ForkResult:
        branches = options.branches
        if not branches:
            return ForkResult(results=[])

        warnings: list[str] = []
        contexts = [ctx.child(index) for index in range(len(branches))]

        if options.strategy == ForkStrategy.FAST_PARALLEL:
            results = await self._run_all(branches, contexts)
            return ForkResult(
                results=results,
                warnings=warnings,
                cache_stats=_zeroed_stats(len(branches)),
            )

        schema_warning = self._check_schemas(ctx, options)
        if schema_warning is not None:
            logger.warning(schema_warning)
            warnings.append(schema_warning)

        executor = self._resolve_executor()
        if executor is None or not executor.supports_cache_optimization:
            logger.warning(WARMUP_UNAVAILABLE_MESSAGE)
            warnings.append(WARMUP_UNAVAILABLE_MESSAGE)
            results = await self._run_all(branches, contexts)
            return ForkResult(
                results=results,
                warnings=warnings,
                cache_stats=_zeroed_stats(len(branches)),
            )

        warmup = options.effective_warmup
        if warmup == WarmupStrategy.FIRST_BRANCH:
            results = await self._run_first_branch_then_rest(branches, contexts)
            return ForkResult(
                results=results,
                warnings=warnings,
                cache_stats=_measured_stats(contexts),
            )

        if warmup == WarmupStrategy.NONE:
            results = await self._run_all(branches, contexts)
            return ForkResult(
                results=results,
                warnings=warnings,
                cache_stats=_zeroed_stats(len(branches)),
            )

        if not executor.should_warmup(len(branches), ctx):
            message = (
                f"Warmup skipped for {len(branches)} branch(es): the cached prefix "
                "does not qualify for a warmup. Running branches without warmup."
            )
            logger.info(message)
            warnings.append(message)
            results = await self._run_all(branches, contexts)
            return ForkResult(
                results=results,
                warnings=warnings,
                cache_stats=_zeroed_stats(len(branches)),
            )

        warmup_result = await executor.explicit_warmup(ctx)
        results = await self._run_all(branches, contexts)
        return ForkResult(
            results=results,
            warnings=warnings,
            cache_stats=_measured_stats(contexts, warmup_result.token_cost),
        )

    @staticmethod
    def _check_schemas(ctx: ForkContext, options: ForkOptions) -> str | None:
        """Raises SchemaConflictViolation before any branch starts under `error`."""
        if not options.schemas or len(options.branches) <= 1:
            return None
        conflict = detect_schema_conflict(options.schemas, provider=ctx.cache_provider)
        return handle_schema_conflict(conflict, options.on_schema_conflict)

    @staticmethod
    async def _run_all(
        branches: Sequence[ForkBranch], contexts: Sequence[ForkContext]
    ) -> list[Any]:
        outcomes = await _run_parallel(branches, contexts)
        _raise_for_failures(outcomes)
        return outcomes

    @staticmethod
    async def _run_first_branch_then_rest(
        branches: Sequence[ForkBranch], contexts: Sequence[ForkContext]
    ) -> list[Any]:
        try:
            first_result, warmup_result = await first_branch_warmup(
                branches[0], contexts[0]
            )
        except Exception as e:
            # The remaining branches are never launched
            logger.warning(f"Fork branch 0 failed during first-branch warmup: {e!r}")
            raise ForkExecutionError({0: e}, [None] * len(branches)) from e

        logger.debug(
            f"First branch warmed the cache: {warmup_result.cache_created_tokens} "
            f"tokens written in {warmup_result.duration_ms:.0f}ms"
        )
        outcomes = await _run_parallel(branches[1:], contexts[1:])
        _raise_for_failures(outcomes, completed=[first_result])
        return [first_result, *outcomes]


async def fork(
    ctx: ForkContext,
    options: ForkOptions,
    warmup_executor: WarmupExecutor | None = None,
    registry: WarmupExecutorRegistry = default_warmup_registry,
) -> ForkResult:
    return await ForkScheduler(warmup_executor, registry).run(ctx, options)
