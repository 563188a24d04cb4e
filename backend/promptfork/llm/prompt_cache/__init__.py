"""Prompt caching and cache-aware fork execution for LLM providers.

This module decides what a provider can cache, validates cache configuration
against it, manages the cacheable segments of a session, normalizes cache
usage into metrics, detects output-shape conflicts between fork branches and
schedules fork branches (optionally behind a cache warmup).
"""

from promptfork.llm.prompt_cache.capabilities import get_cache_capabilities
from promptfork.llm.prompt_cache.capabilities import get_effective_breakpoint_limit
from promptfork.llm.prompt_cache.capabilities import get_recommended_cache_strategy
from promptfork.llm.prompt_cache.capabilities import is_valid_ttl
from promptfork.llm.prompt_cache.capabilities import supports_cache_feature
from promptfork.llm.prompt_cache.context import ForkContext
from promptfork.llm.prompt_cache.exceptions import CacheConfigurationError
from promptfork.llm.prompt_cache.exceptions import ForkExecutionError
from promptfork.llm.prompt_cache.exceptions import PromptCacheError
from promptfork.llm.prompt_cache.exceptions import SchemaConflictViolation
from promptfork.llm.prompt_cache.exceptions import SegmentValidationError
from promptfork.llm.prompt_cache.fork import fork
from promptfork.llm.prompt_cache.fork import ForkCacheStats
from promptfork.llm.prompt_cache.fork import ForkOptions
from promptfork.llm.prompt_cache.fork import ForkResult
from promptfork.llm.prompt_cache.fork import ForkScheduler
from promptfork.llm.prompt_cache.fork import ForkStrategy
from promptfork.llm.prompt_cache.fork import WarmupStrategy
from promptfork.llm.prompt_cache.metrics import aggregate_cache_metrics
from promptfork.llm.prompt_cache.metrics import CacheMetricsCollector
from promptfork.llm.prompt_cache.metrics import estimate_cache_savings
from promptfork.llm.prompt_cache.metrics import format_cache_stats
from promptfork.llm.prompt_cache.metrics import parse_cache_metrics
from promptfork.llm.prompt_cache.models import CacheConfig
from promptfork.llm.prompt_cache.models import CacheScope
from promptfork.llm.prompt_cache.models import CacheSegment
from promptfork.llm.prompt_cache.models import CacheSegmentConfig
from promptfork.llm.prompt_cache.models import CacheStats
from promptfork.llm.prompt_cache.models import CacheTTL
from promptfork.llm.prompt_cache.models import create_default_cache_config
from promptfork.llm.prompt_cache.models import create_developer_cache_config
from promptfork.llm.prompt_cache.models import create_user_content_cache_config
from promptfork.llm.prompt_cache.models import ModelCapabilities
from promptfork.llm.prompt_cache.processor import build_cacheable_prefix
from promptfork.llm.prompt_cache.processor import process_with_prompt_cache
from promptfork.llm.prompt_cache.providers.anthropic import AnthropicPromptCacheProvider
from promptfork.llm.prompt_cache.providers.base import PromptCacheProvider
from promptfork.llm.prompt_cache.providers.factory import get_provider_adapter
from promptfork.llm.prompt_cache.providers.noop import NoOpPromptCacheProvider
from promptfork.llm.prompt_cache.providers.openai import OpenAIPromptCacheProvider
from promptfork.llm.prompt_cache.providers.vertex import VertexAIPromptCacheProvider
from promptfork.llm.prompt_cache.schema_conflict import are_schemas_compatible
from promptfork.llm.prompt_cache.schema_conflict import compute_schema_signature
from promptfork.llm.prompt_cache.schema_conflict import describe_schemas_difference
from promptfork.llm.prompt_cache.schema_conflict import detect_schema_conflict
from promptfork.llm.prompt_cache.schema_conflict import handle_schema_conflict
from promptfork.llm.prompt_cache.schema_conflict import SchemaConflictBehavior
from promptfork.llm.prompt_cache.segments import CacheSegmentManager
from promptfork.llm.prompt_cache.utils import combine_messages_with_continuation
from promptfork.llm.prompt_cache.utils import normalize_language_model_input
from promptfork.llm.prompt_cache.utils import prepare_messages_with_cacheable_transform
from promptfork.llm.prompt_cache.validation import ensure_valid_cache_config
from promptfork.llm.prompt_cache.validation import validate_cache_config
from promptfork.llm.prompt_cache.warmup import default_warmup_registry
from promptfork.llm.prompt_cache.warmup import estimate_warmup_cost
from promptfork.llm.prompt_cache.warmup import LLMWarmupExecutor
from promptfork.llm.prompt_cache.warmup import setup_warmup_executor
from promptfork.llm.prompt_cache.warmup import should_warmup
from promptfork.llm.prompt_cache.warmup import WarmupConfig
from promptfork.llm.prompt_cache.warmup import WarmupExecutor
from promptfork.llm.prompt_cache.warmup import WarmupExecutorRegistry

__all__ = [
    "aggregate_cache_metrics",
    "AnthropicPromptCacheProvider",
    "are_schemas_compatible",
    "build_cacheable_prefix",
    "CacheConfig",
    "CacheConfigurationError",
    "CacheMetricsCollector",
    "CacheScope",
    "CacheSegment",
    "CacheSegmentConfig",
    "CacheSegmentManager",
    "CacheStats",
    "CacheTTL",
    "combine_messages_with_continuation",
    "compute_schema_signature",
    "create_default_cache_config",
    "create_developer_cache_config",
    "create_user_content_cache_config",
    "default_warmup_registry",
    "describe_schemas_difference",
    "detect_schema_conflict",
    "ensure_valid_cache_config",
    "estimate_cache_savings",
    "estimate_warmup_cost",
    "fork",
    "ForkCacheStats",
    "ForkContext",
    "ForkExecutionError",
    "ForkOptions",
    "ForkResult",
    "ForkScheduler",
    "ForkStrategy",
    "format_cache_stats",
    "get_cache_capabilities",
    "get_effective_breakpoint_limit",
    "get_provider_adapter",
    "get_recommended_cache_strategy",
    "handle_schema_conflict",
    "is_valid_ttl",
    "LLMWarmupExecutor",
    "ModelCapabilities",
    "normalize_language_model_input",
    "NoOpPromptCacheProvider",
    "OpenAIPromptCacheProvider",
    "parse_cache_metrics",
    "prepare_messages_with_cacheable_transform",
    "process_with_prompt_cache",
    "PromptCacheError",
    "PromptCacheProvider",
    "SchemaConflictBehavior",
    "SchemaConflictViolation",
    "SegmentValidationError",
    "setup_warmup_executor",
    "should_warmup",
    "supports_cache_feature",
    "validate_cache_config",
    "VertexAIPromptCacheProvider",
    "WarmupConfig",
    "WarmupExecutor",
    "WarmupExecutorRegistry",
    "WarmupStrategy",
]
