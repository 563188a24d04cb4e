"""Exception classes for prompt caching and fork execution."""

from typing import Any

from promptfork.llm.prompt_cache.models import SchemaConflictResult


class PromptCacheError(Exception):
    """Base exception for prompt cache errors."""


class CacheConfigurationError(PromptCacheError):
    """Cache config is incompatible with the target provider/model.

    Raised before any network call. Not retryable, the config has to change.
    """

    def __init__(self, errors: list[str]):
        super().__init__(f"Invalid cache configuration: {'; '.join(errors)}")
        self.errors = errors


class SegmentValidationError(PromptCacheError):
    """A cache segment violates a capability or scope rule."""

    def __init__(self, errors: list[str]):
        super().__init__(f"Cache segment validation failed: {', '.join(errors)}")
        self.errors = errors


class SchemaConflictViolation(PromptCacheError):
    """Fork branches use different output shapes and the caller asked for strict handling."""

    def __init__(self, message: str, conflict: SchemaConflictResult):
        super().__init__(message)
        self.conflict = conflict


class ForkExecutionError(PromptCacheError):
    """One or more fork branches failed.

    Results of the branches that did complete are kept in `partial_results`
    (None in the slots of failed or never-launched branches).
    """

    def __init__(
        self,
        branch_errors: dict[int, BaseException],
        partial_results: list[Any],
    ):
        failed = ", ".join(str(index) for index in sorted(branch_errors))
        super().__init__(
            f"{len(branch_errors)} of {len(partial_results)} fork branches failed "
            f"(branches: {failed})"
        )
        self.branch_errors = branch_errors
        self.partial_results = partial_results

