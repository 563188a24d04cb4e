"""Tests for fork scheduling strategies."""

import asyncio
from collections.abc import Callable
from typing import Any

import pytest
from pydantic import BaseModel

from promptfork.llm.prompt_cache.context import FORK_BRANCH_INDEX_KEY
from promptfork.llm.prompt_cache.context import ForkContext
from promptfork.llm.prompt_cache.exceptions import ForkExecutionError
from promptfork.llm.prompt_cache.exceptions import SchemaConflictViolation
from promptfork.llm.prompt_cache.fork import fork
from promptfork.llm.prompt_cache.fork import ForkOptions
from promptfork.llm.prompt_cache.fork import ForkScheduler
from promptfork.llm.prompt_cache.fork import ForkStrategy
from promptfork.llm.prompt_cache.fork import WARMUP_UNAVAILABLE_MESSAGE
from promptfork.llm.prompt_cache.fork import WarmupStrategy
from promptfork.llm.prompt_cache.models import WarmupResult
from promptfork.llm.prompt_cache.segments import CacheSegmentManager
from promptfork.llm.prompt_cache.warmup import default_warmup_registry
from promptfork.llm.prompt_cache.warmup import setup_warmup_executor
from promptfork.llm.prompt_cache.warmup import WARMUP_METADATA
from promptfork.llm.prompt_cache.warmup import WarmupConfig
from promptfork.llm.prompt_cache.warmup import WarmupExecutor
from promptfork.llm.prompt_cache.warmup import WarmupExecutorRegistry

SONNET = "claude-3-5-sonnet-20241022"


class StubWarmupExecutor(WarmupExecutor):
    def __init__(
        self,
        supports: bool = True,
        warmup: bool = True,
        token_cost: int = 42,
        events: list[Any] | None = None,
    ) -> None:
        self.supports = supports
        self.warmup = warmup
        self.token_cost = token_cost
        self.events = events if events is not None else []
        self.warmup_calls: list[ForkContext] = []

    @property
    def supports_cache_optimization(self) -> bool:
        return self.supports

    def should_warmup(self, branch_count: int, ctx: ForkContext) -> bool:
        return self.warmup and branch_count > 1

    async def explicit_warmup(self, ctx: ForkContext) -> WarmupResult:
        self.warmup_calls.append(ctx)
        self.events.append("warmup")
        return WarmupResult(token_cost=self.token_cost)


def _returning(value: Any, delay: float = 0.0, events: list[Any] | None = None):
    async def branch(ctx: ForkContext) -> Any:
        if events is not None:
            events.append(("start", value))
        await asyncio.sleep(delay)
        if events is not None:
            events.append(("end", value))
        return value

    return branch


def _failing(message: str):
    async def branch(ctx: ForkContext) -> Any:
        raise RuntimeError(message)

    return branch


async def _ask(ctx: ForkContext) -> str:
    response = await ctx.infer("Question")
    return response.content


class Summary(BaseModel):
    title: str
    points: list[str]


class Sentiment(BaseModel):
    label: str
    score: float


class TestFallbackWithoutExecutor:
    """A cache-optimized fork never fails for lack of a warmup executor."""

    @pytest.mark.asyncio
    async def test_falls_back_to_parallel(
        self, warmup_registry: WarmupExecutorRegistry
    ) -> None:
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            warmup=WarmupStrategy.EXPLICIT,
            branches=[_returning(0), _returning(1), _returning(2)],
        )

        result = await fork(ForkContext("test"), options, registry=warmup_registry)

        assert result.results == [0, 1, 2]
        assert result.cache_stats.warmup_cost == 0
        assert result.cache_stats.branch_cache_hits == [0, 0, 0]
        assert result.cache_stats.total_saved == 0
        assert len(result.warnings) == 1
        assert "no warmup executor available" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_incapable_executor(self) -> None:
        executor = StubWarmupExecutor(supports=False)
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            branches=[_returning(0), _returning(1)],
        )

        result = await fork(ForkContext("test"), options, warmup_executor=executor)

        assert result.results == [0, 1]
        assert result.warnings == [WARMUP_UNAVAILABLE_MESSAGE]
        assert executor.warmup_calls == []

    @pytest.mark.asyncio
    async def test_default_registry_is_used(self) -> None:
        executor = StubWarmupExecutor()
        default_warmup_registry.register(executor)
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            branches=[_returning(0), _returning(1)],
        )

        result = await fork(ForkContext("test"), options)

        assert result.warnings == []
        assert len(executor.warmup_calls) == 1
        assert result.cache_stats.warmup_cost == 42


class TestFastParallel:
    """Tests for the fast-parallel strategy."""

    @pytest.mark.asyncio
    async def test_results_in_submission_order(self) -> None:
        executor = StubWarmupExecutor()
        options = ForkOptions(
            strategy=ForkStrategy.FAST_PARALLEL,
            branches=[_returning("a", 0.03), _returning("b", 0.01), _returning("c")],
        )

        result = await fork(ForkContext("test"), options, warmup_executor=executor)

        assert result.results == ["a", "b", "c"]
        assert result.warnings == []
        assert result.cache_stats.warmup_cost == 0
        assert result.cache_stats.branch_cache_hits == [0, 0, 0]
        assert executor.warmup_calls == []

    @pytest.mark.asyncio
    async def test_no_branches(self) -> None:
        for strategy in ForkStrategy:
            result = await fork(
                ForkContext("test"), ForkOptions(strategy=strategy, branches=[])
            )
            assert result.results == []
            assert result.warnings == []

    def test_default_warmup_strategy(self) -> None:
        fast = ForkOptions(strategy=ForkStrategy.FAST_PARALLEL, branches=[])
        optimized = ForkOptions(strategy="cache-optimized", branches=[])

        assert fast.effective_warmup == WarmupStrategy.NONE
        assert optimized.effective_warmup == WarmupStrategy.EXPLICIT


class TestExplicitWarmupStrategy:
    """Tests for cache-optimized forks with an explicit warmup call."""

    @pytest.mark.asyncio
    async def test_warmup_runs_before_branches(self) -> None:
        events: list[Any] = []
        executor = StubWarmupExecutor(events=events)
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            branches=[_returning(i, events=events) for i in range(3)],
        )

        result = await ForkScheduler(executor).run(ForkContext("test"), options)

        assert events[0] == "warmup"
        assert result.results == [0, 1, 2]
        assert result.cache_stats.warmup_cost == 42

    @pytest.mark.asyncio
    async def test_reports_measured_branch_hits(self, anthropic_llm: Any) -> None:
        ctx = ForkContext("test", llm=anthropic_llm)
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            branches=[_ask, _ask, _ask],
        )

        result = await fork(ctx, options, warmup_executor=StubWarmupExecutor())

        assert result.results == ["ready", "ready", "ready"]
        assert result.cache_stats.branch_cache_hits == [1000, 1000, 1000]
        assert result.cache_stats.total_saved == 3000
        assert result.cache_stats.warmup_cost == 42

        branch_indices = sorted(
            call["metadata"][FORK_BRANCH_INDEX_KEY] for call in anthropic_llm.calls
        )
        assert branch_indices == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_declined_warmup(self) -> None:
        executor = StubWarmupExecutor(warmup=False)
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            branches=[_returning(0), _returning(1), _returning(2)],
        )

        result = await fork(ForkContext("test"), options, warmup_executor=executor)

        assert result.results == [0, 1, 2]
        assert executor.warmup_calls == []
        assert result.cache_stats.warmup_cost == 0
        assert result.warnings[0].startswith("Warmup skipped for 3 branch(es)")

    @pytest.mark.asyncio
    async def test_single_branch_skips_warmup(self) -> None:
        executor = StubWarmupExecutor()
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED, branches=[_returning(0)]
        )

        result = await fork(ForkContext("test"), options, warmup_executor=executor)

        assert result.results == [0]
        assert executor.warmup_calls == []

    @pytest.mark.asyncio
    async def test_registered_llm_executor_uses_context_segments(
        self, anthropic_llm: Any, warmup_registry: WarmupExecutorRegistry
    ) -> None:
        manager = CacheSegmentManager("anthropic", SONNET)
        manager.add_segment("docs", "a" * 5000)
        ctx = ForkContext("test", llm=anthropic_llm, segment_manager=manager)
        setup_warmup_executor(
            WarmupConfig.from_llm(anthropic_llm), registry=warmup_registry
        )
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            warmup=WarmupStrategy.EXPLICIT,
            branches=[_ask, _ask, _ask],
        )

        result = await fork(ctx, options, registry=warmup_registry)

        assert result.results == ["ready", "ready", "ready"]
        assert result.warnings == []
        assert len(anthropic_llm.calls) == 4
        assert anthropic_llm.calls[0]["metadata"] == WARMUP_METADATA
        assert anthropic_llm.calls[0]["prompt"][0].content == "a" * 5000
        assert result.cache_stats.warmup_cost > 0
        assert result.cache_stats.branch_cache_hits == [1000, 1000, 1000]


class TestFirstBranchStrategy:
    """Tests for cache-optimized forks warmed by their first branch."""

    @pytest.mark.asyncio
    async def test_first_branch_finishes_before_others_start(self) -> None:
        events: list[Any] = []
        executor = StubWarmupExecutor(events=events)
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            warmup=WarmupStrategy.FIRST_BRANCH,
            branches=[
                _returning(0, 0.02, events),
                _returning(1, events=events),
                _returning(2, events=events),
            ],
        )

        result = await fork(ForkContext("test"), options, warmup_executor=executor)

        assert events[:2] == [("start", 0), ("end", 0)]
        assert result.results == [0, 1, 2]
        assert result.cache_stats.warmup_cost == 0
        assert executor.warmup_calls == []

    @pytest.mark.asyncio
    async def test_measures_every_branch(self, anthropic_llm: Any) -> None:
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            warmup=WarmupStrategy.FIRST_BRANCH,
            branches=[_ask, _ask],
        )

        result = await fork(
            ForkContext("test", llm=anthropic_llm),
            options,
            warmup_executor=StubWarmupExecutor(),
        )

        assert result.cache_stats.branch_cache_hits == [1000, 1000]
        assert result.cache_stats.total_saved == 2000

    @pytest.mark.asyncio
    async def test_first_branch_failure_aborts_fork(self) -> None:
        launched: list[int] = []

        def _tracked(index: int):
            async def branch(ctx: ForkContext) -> int:
                launched.append(index)
                return index

            return branch

        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            warmup=WarmupStrategy.FIRST_BRANCH,
            branches=[_failing("warmup broke"), _tracked(1), _tracked(2)],
        )

        with pytest.raises(ForkExecutionError) as exc_info:
            await fork(
                ForkContext("test"), options, warmup_executor=StubWarmupExecutor()
            )

        assert launched == []
        assert list(exc_info.value.branch_errors) == [0]
        assert exc_info.value.partial_results == [None, None, None]

    @pytest.mark.asyncio
    async def test_later_failure_keeps_first_result(self) -> None:
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            warmup=WarmupStrategy.FIRST_BRANCH,
            branches=[_returning(0), _returning(1), _failing("late")],
        )

        with pytest.raises(ForkExecutionError) as exc_info:
            await fork(
                ForkContext("test"), options, warmup_executor=StubWarmupExecutor()
            )

        assert exc_info.value.partial_results == [0, 1, None]
        assert list(exc_info.value.branch_errors) == [2]


class TestNoWarmupStrategy:
    """Tests for cache-optimized forks without a warmup."""

    @pytest.mark.asyncio
    async def test_runs_without_warmup(self) -> None:
        executor = StubWarmupExecutor()
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            warmup=WarmupStrategy.NONE,
            branches=[_returning(0), _returning(1)],
        )

        result = await fork(ForkContext("test"), options, warmup_executor=executor)

        assert result.results == [0, 1]
        assert result.warnings == []
        assert result.cache_stats.branch_cache_hits == [0, 0]
        assert executor.warmup_calls == []


class TestBranchFailures:
    """Tests for partial failure reporting."""

    @pytest.mark.asyncio
    async def test_partial_results_and_cause(self) -> None:
        completed: list[int] = []

        async def slow_success(ctx: ForkContext) -> int:
            await asyncio.sleep(0.01)
            completed.append(2)
            return 2

        options = ForkOptions(
            strategy=ForkStrategy.FAST_PARALLEL,
            branches=[_returning(0), _failing("boom"), slow_success],
        )

        with pytest.raises(ForkExecutionError) as exc_info:
            await fork(ForkContext("test"), options)

        error = exc_info.value
        assert completed == [2]
        assert error.partial_results == [0, None, 2]
        assert list(error.branch_errors) == [1]
        assert isinstance(error.__cause__, RuntimeError)
        assert str(error.__cause__) == "boom"
        assert "1 of 3 fork branches failed" in str(error)

    @pytest.mark.asyncio
    async def test_first_failing_branch_is_cause(self) -> None:
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            branches=[_returning(0), _failing("first"), _failing("second")],
        )

        with pytest.raises(ForkExecutionError) as exc_info:
            await fork(
                ForkContext("test"), options, warmup_executor=StubWarmupExecutor()
            )

        assert sorted(exc_info.value.branch_errors) == [1, 2]
        assert str(exc_info.value.__cause__) == "first"


class TestSchemaChecks:
    """Tests for the pre-flight output shape check."""

    @pytest.mark.asyncio
    async def test_error_policy_raises_before_branches(
        self, anthropic_llm: Any
    ) -> None:
        started: list[int] = []

        async def branch(ctx: ForkContext) -> None:
            started.append(1)

        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            branches=[branch, branch],
            schemas=[Summary, Sentiment],
            on_schema_conflict="error",
        )

        with pytest.raises(SchemaConflictViolation):
            await fork(
                ForkContext("test", llm=anthropic_llm),
                options,
                warmup_executor=StubWarmupExecutor(),
            )
        assert started == []

    @pytest.mark.asyncio
    async def test_warn_policy_adds_warning(self, anthropic_llm: Any) -> None:
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            warmup=WarmupStrategy.NONE,
            branches=[_returning(0), _returning(1)],
            schemas=[Summary, Sentiment],
        )

        result = await fork(
            ForkContext("test", llm=anthropic_llm),
            options,
            warmup_executor=StubWarmupExecutor(),
        )

        assert result.results == [0, 1]
        assert len(result.warnings) == 1
        assert "2 different schemas" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_automatic_provider_has_no_conflict(self, openai_llm: Any) -> None:
        options = ForkOptions(
            strategy=ForkStrategy.CACHE_OPTIMIZED,
            warmup=WarmupStrategy.NONE,
            branches=[_returning(0), _returning(1)],
            schemas=[Summary, Sentiment],
            on_schema_conflict="error",
        )

        result = await fork(
            ForkContext("test", llm=openai_llm),
            options,
            warmup_executor=StubWarmupExecutor(),
        )

        assert result.warnings == []


class TestForkContext:
    """Tests for the per-branch execution context."""

    def test_child_shares_session_but_not_metrics(self, anthropic_llm: Any) -> None:
        manager = CacheSegmentManager("anthropic", SONNET)
        parent = ForkContext("test", llm=anthropic_llm, segment_manager=manager)
        child = parent.child(3)

        assert child.scope == "test"
        assert child.llm is anthropic_llm
        assert child.segment_manager is manager
        assert child.branch_index == 3
        assert child.metrics is not None
        assert child.metrics is not parent.metrics

    def test_no_metrics_without_llm(self) -> None:
        ctx = ForkContext("test")

        assert ctx.metrics is None
        assert ctx.cache_provider is None

    @pytest.mark.asyncio
    async def test_infer_requires_llm(self) -> None:
        with pytest.raises(ValueError):
            await ForkContext("test").infer("Question")

    @pytest.mark.asyncio
    async def test_infer_sends_cached_prefix(
        self, make_llm: Callable[..., Any]
    ) -> None:
        llm = make_llm()
        manager = CacheSegmentManager("anthropic", SONNET)
        manager.add_segment("docs", "a" * 5000)
        ctx = ForkContext("test", llm=llm, segment_manager=manager).child(2)

        await ctx.infer("Question", max_tokens=100, metadata={"trace": "abc"})

        [call] = llm.calls
        prefix_message, question = call["prompt"]
        assert prefix_message.content == "a" * 5000
        assert prefix_message.cache_control is not None
        assert question.content == "Question"
        assert call["max_tokens"] == 100
        assert call["provider_options"] == {"cache_control": [{"type": "ephemeral"}]}
        assert call["metadata"] == {"trace": "abc", FORK_BRANCH_INDEX_KEY: 2}
        assert ctx.metrics is not None
        assert ctx.metrics.call_count == 1

    @pytest.mark.asyncio
    async def test_infer_without_segments_sends_prompt_as_is(
        self, make_llm: Callable[..., Any]
    ) -> None:
        llm = make_llm()

        await ForkContext("test", llm=llm).infer("Question")

        [call] = llm.calls
        assert call["prompt"] == "Question"
        assert call["provider_options"] is None
        assert call["metadata"] is None

    def test_metrics_disabled_by_config(self, make_llm: Callable[..., Any]) -> None:
        manager = CacheSegmentManager("anthropic", SONNET)
        manager.config = manager.config.model_copy(update={"collect_metrics": False})

        ctx = ForkContext("test", llm=make_llm(), segment_manager=manager)
        assert ctx.metrics is None
