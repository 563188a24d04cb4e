"""Interfaces and data structures for prompt caching."""

import math
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


class CacheTTL(str, Enum):
    FIVE_MINUTES = "5m"
    ONE_HOUR = "1h"
    ONE_DAY = "24h"
    # Lives as long as the provider keeps it, no explicit expiry is requested
    SESSION = "session"

    @property
    def seconds(self) -> float:
        return TTL_SECONDS[self]

    def __str__(self) -> str:
        return self.value


TTL_SECONDS: dict[CacheTTL, float] = {
    CacheTTL.FIVE_MINUTES: 5 * 60,
    CacheTTL.ONE_HOUR: 60 * 60,
    CacheTTL.ONE_DAY: 24 * 60 * 60,
    CacheTTL.SESSION: math.inf,
}


class CacheScope(str, Enum):
    """Trust classification of cacheable content, least to most permissive."""

    SYSTEM_ONLY = "system-only"
    DEVELOPER_CONTENT = "developer-content"
    ALLOW_USER_CONTENT = "allow-user-content"

    @property
    def permissiveness(self) -> int:
        return SCOPE_PERMISSIVENESS[self]

    def is_more_permissive_than(self, other: "CacheScope") -> bool:
        return self.permissiveness > other.permissiveness

    def __str__(self) -> str:
        return self.value


SCOPE_PERMISSIVENESS: dict[CacheScope, int] = {
    CacheScope.SYSTEM_ONLY: 0,
    CacheScope.DEVELOPER_CONTENT: 1,
    CacheScope.ALLOW_USER_CONTENT: 2,
}


class CacheStrategy(str, Enum):
    EXPLICIT_SEGMENTS = "explicit-segments"
    AUTOMATIC_OPTIMIZATION = "automatic-optimization"
    DISABLED = "disabled"


class ModelCapabilities(BaseModel):
    """Prompt-cache facts for one (provider, model) pair."""

    model_config = ConfigDict(frozen=True)

    supported: bool
    # Minimum prefix size (in tokens) the provider will actually cache
    min_tokens: int
    # math.inf for providers that cache automatically without explicit boundaries
    max_breakpoints: int | float
    supports_ttl: bool
    supported_ttl: tuple[CacheTTL, ...] = ()
    supports_tool_caching: bool
    is_automatic: bool

    @property
    def longest_ttl(self) -> CacheTTL | None:
        if not self.supports_ttl or not self.supported_ttl:
            return None
        return max(self.supported_ttl, key=lambda ttl: ttl.seconds)


class CacheSegmentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    scope: CacheScope = CacheScope.DEVELOPER_CONTENT
    ttl: CacheTTL | None = None
    min_tokens: int | None = None
    # Accept the segment even if it breaks a forceable provider/security rule
    force: bool = False
    key: str | None = None


class CacheConfig(BaseModel):
    """Provider-agnostic cache configuration, owned by the caller."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    default_scope: CacheScope = CacheScope.DEVELOPER_CONTENT
    # None leaves expiry to the provider default
    default_ttl: CacheTTL | None = None
    max_breakpoints: int = 1
    segments: tuple[CacheSegmentConfig, ...] = ()
    collect_metrics: bool = True


def create_default_cache_config(**overrides: Any) -> CacheConfig:
    return CacheConfig(**overrides)


def create_user_content_cache_config(**overrides: Any) -> CacheConfig:
    """User-provided content: short-lived, single breakpoint."""
    options: dict[str, Any] = {
        "default_scope": CacheScope.ALLOW_USER_CONTENT,
        "default_ttl": CacheTTL.FIVE_MINUTES,
        "max_breakpoints": 1,
    }
    options.update(overrides)
    return create_default_cache_config(**options)


def create_developer_cache_config(**overrides: Any) -> CacheConfig:
    """Stable developer-authored content (docs, instructions): long-lived, several breakpoints."""
    options: dict[str, Any] = {
        "default_scope": CacheScope.DEVELOPER_CONTENT,
        "default_ttl": CacheTTL.ONE_HOUR,
        "max_breakpoints": 4,
    }
    options.update(overrides)
    return create_default_cache_config(**options)


class CacheValidationResult(BaseModel):
    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_messages(
        cls, errors: list[str], warnings: list[str] | None = None
    ) -> "CacheValidationResult":
        return cls(valid=not errors, errors=errors, warnings=warnings or [])

    def merge(self, other: "CacheValidationResult") -> "CacheValidationResult":
        return CacheValidationResult.from_messages(
            self.errors + other.errors, self.warnings + other.warnings
        )


class CacheSegment(BaseModel):
    """A cacheable chunk registered for one session."""

    model_config = ConfigDict(frozen=True)

    key: str
    content: str
    token_count: int
    ttl: CacheTTL | None
    scope: CacheScope
    # True when the segment was accepted only because the caller passed force=True
    forced: bool = False
    created_at: datetime


class CacheStats(BaseModel):
    """Normalized cache usage for one call (or an aggregate of calls)."""

    model_config = ConfigDict(frozen=True)

    provider: str
    input_tokens: int = 0
    output_tokens: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0
    saved_tokens: int = 0
    # 0-1, cache_read_tokens / input_tokens
    cache_hit_rate: float = 0.0
    estimated_savings_usd: float = 0.0
    ttl: CacheTTL | None = None
    breakpoints_used: int | None = None
    raw: Any = None


class SavingsRecommendation(str, Enum):
    UNSUPPORTED = "unsupported"
    TOO_SHORT = "too-short"
    SINGLE_USE = "single-use"
    RECOMMENDED = "recommended"


class CacheSavingsEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    potential_saved_tokens: int
    potential_saved_usd: float
    cache_effective: bool
    recommendation: SavingsRecommendation
    message: str


class WarmupResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_cost: int = 0
    cache_created_tokens: int = 0
    duration_ms: float = 0.0


class SchemaInfo(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    branch_index: int
    signature: str
    # Only populated when details are requested
    shape: Any = None
    description: str | None = None


class SchemaConflictResult(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    has_conflict: bool
    message: str
    conflicting_branches: list[list[int]] = Field(default_factory=list)
    schema_groups: list[list[SchemaInfo]] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
