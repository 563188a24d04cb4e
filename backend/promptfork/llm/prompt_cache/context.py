"""Execution context handed to fork branches."""

from typing import Any

from promptfork.llm.catalog import ModelCatalog
from promptfork.llm.constants import CacheProvider
from promptfork.llm.interfaces import LLM
from promptfork.llm.model_response import ModelResponse
from promptfork.llm.models import LanguageModelInput
from promptfork.llm.prompt_cache.metrics import CacheMetricsCollector
from promptfork.llm.prompt_cache.processor import build_cacheable_prefix
from promptfork.llm.prompt_cache.processor import process_with_prompt_cache
from promptfork.llm.prompt_cache.providers.factory import resolve_cache_provider
from promptfork.llm.prompt_cache.segments import CacheSegmentManager
from promptfork.utils.logger import setup_logger

FORK_BRANCH_INDEX_KEY = "fork_branch_index"


class ForkContext:
    """Scope, model and cached prefix shared by a group of fork branches.

    Every inference made through `infer` is sent with the segments registered
    on the segment manager as its cacheable prefix, so the warmup call and all
    branches send a byte-identical prefix. Each context records the usage of
    its own calls: `child(i)` gives branch i a fresh metrics collector, which
    is how the scheduler reports real per-branch cache reads.
    """

    def __init__(
        self,
        scope: str,
        llm: LLM | None = None,
        segment_manager: CacheSegmentManager | None = None,
        catalog: ModelCatalog | None = None,
        metrics: CacheMetricsCollector | None = None,
        branch_index: int | None = None,
    ) -> None:
        self.scope = scope
        self.llm = llm
        self.segment_manager = segment_manager
        if catalog is None and segment_manager is not None:
            catalog = segment_manager.catalog
        self.catalog = catalog
        self.branch_index = branch_index

        if metrics is None and llm is not None and self._collect_metrics:
            metrics = CacheMetricsCollector(
                self.cache_provider or CacheProvider.OTHER,
                llm.config.model_name,
                catalog,
            )
        self.metrics = metrics
        self.logger = setup_logger(extra={"branch_index": branch_index})

    @property
    def _collect_metrics(self) -> bool:
        return (
            self.segment_manager is None or self.segment_manager.config.collect_metrics
        )

    @property
    def cache_provider(self) -> CacheProvider | None:
        if self.llm is None:
            return None
        return resolve_cache_provider(
            self.llm.config.model_provider, self.llm.config.model_name
        )

    def child(self, branch_index: int) -> "ForkContext":
        return ForkContext(
            scope=self.scope,
            llm=self.llm,
            segment_manager=self.segment_manager,
            catalog=self.catalog,
            branch_index=branch_index,
        )

    async def infer(
        self,
        prompt: LanguageModelInput,
        *,
        system: str | None = None,
        structured_response_format: dict | None = None,
        max_tokens: int | None = None,
        continuation: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> ModelResponse:
        if self.llm is None:
            raise ValueError(
                f"Fork context '{self.scope}' has no LLM to run inference with"
            )

        provider_options: dict[str, Any] = {}
        if self.segment_manager is not None:
            prompt, provider_options = process_with_prompt_cache(
                llm_config=self.llm.config,
                cacheable_prefix=build_cacheable_prefix(self.segment_manager),
                suffix=prompt,
                continuation=continuation,
                cache_config=self.segment_manager.config,
                catalog=self.catalog,
            )

        request_metadata = dict(metadata or {})
        if self.branch_index is not None:
            request_metadata[FORK_BRANCH_INDEX_KEY] = self.branch_index

        response = await self.llm.ainvoke(
            prompt,
            system=system,
            structured_response_format=structured_response_format,
            max_tokens=max_tokens,
            provider_options=provider_options or None,
            metadata=request_metadata or None,
        )

        if self.metrics is not None:
            stats = self.metrics.add_response(response)
            self.logger.debug(
                f"Recorded usage: input={stats.input_tokens}, "
                f"cache_read={stats.cache_read_tokens}, "
                f"cache_write={stats.cache_write_tokens}"
            )
        return response
