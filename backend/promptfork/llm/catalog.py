"""Versioned model catalog used to override built-in cache capabilities and pricing.

A catalog is a JSON document (schema version 1) with two optional sections,
`pricing` and `capabilities`. Each section has a global `default`, per-provider
`{default, models}` blocks, and a global `models` map. Lookups for a
(provider, model) pair merge, in increasing precedence:

    global default -> provider default -> global model -> provider model

Catalog values are never trusted blindly: capability overrides are clamped per
provider in `capabilities.py` before use.
"""

import json
import time
from pathlib import Path
from typing import Any
from typing import Literal

import httpx
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import model_validator
from pydantic import ValidationError

from promptfork.configs.cache_configs import MODEL_CATALOG_REQUEST_TIMEOUT
from promptfork.configs.cache_configs import MODEL_CATALOG_TTL_SECONDS
from promptfork.llm.constants import ANTHROPIC_MODEL_TAGS
from promptfork.llm.constants import CacheProvider
from promptfork.llm.constants import GOOGLE_MODEL_TAGS
from promptfork.llm.constants import OPENAI_MODEL_TAGS
from promptfork.utils.logger import setup_logger

logger = setup_logger()

ISO_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
UNBOUNDED_BREAKPOINTS = "unbounded"

CatalogProviderName = Literal["anthropic", "openai", "google"]


class ModelCatalogError(Exception):
    """Base error for model catalog loading and validation."""


class ModelCatalogLoadError(ModelCatalogError):
    """The catalog source could not be read or parsed."""


class ModelCatalogValidationError(ModelCatalogError):
    """The catalog payload does not match the catalog schema."""

    def __init__(self, issues: list[str]):
        super().__init__(
            f"Model catalog validation failed: {'; '.join(issues)}"
            if issues
            else "Model catalog validation failed"
        )
        self.issues = issues


class _CatalogEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _require_defined_fields(self) -> "_CatalogEntry":
        if not self.model_fields_set:
            raise ValueError("catalog entry must define at least one field")
        # Fields may be omitted but never set to null
        null_fields = sorted(
            field for field in self.model_fields_set if getattr(self, field) is None
        )
        if null_fields:
            raise ValueError(f"catalog entry fields cannot be null: {null_fields}")
        return self


class CatalogPricingEntry(_CatalogEntry):
    """USD per 1M tokens."""

    input_per_1m: float | None = Field(default=None, ge=0)
    output_per_1m: float | None = Field(default=None, ge=0)
    cached_input_per_1m: float | None = Field(default=None, ge=0)
    cache_write_per_1m: float | None = Field(default=None, ge=0)
    as_of_date: str | None = Field(default=None, pattern=ISO_DATE_PATTERN)


class CatalogCapabilityEntry(_CatalogEntry):
    supported: bool | None = None
    min_tokens: int | None = Field(default=None, ge=0)
    max_breakpoints: int | Literal["unbounded"] | None = None
    supports_ttl: bool | None = None
    supported_ttl: list[Literal["5m", "1h", "24h"]] | None = None
    supports_tool_caching: bool | None = None
    is_automatic: bool | None = None

    @model_validator(mode="after")
    def _non_negative_breakpoints(self) -> "CatalogCapabilityEntry":
        if isinstance(self.max_breakpoints, int) and self.max_breakpoints < 0:
            raise ValueError("max_breakpoints must be >= 0 or 'unbounded'")
        return self


class PricingProviderSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default: CatalogPricingEntry | None = None
    models: dict[str, CatalogPricingEntry] = Field(default_factory=dict)


class PricingSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default: CatalogPricingEntry | None = None
    providers: dict[CatalogProviderName, PricingProviderSection] = Field(
        default_factory=dict
    )
    models: dict[str, CatalogPricingEntry] = Field(default_factory=dict)


class CapabilityProviderSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default: CatalogCapabilityEntry | None = None
    models: dict[str, CatalogCapabilityEntry] = Field(default_factory=dict)


class CapabilitySection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default: CatalogCapabilityEntry | None = None
    providers: dict[CatalogProviderName, CapabilityProviderSection] = Field(
        default_factory=dict
    )
    models: dict[str, CatalogCapabilityEntry] = Field(default_factory=dict)


def normalize_model_name(model: str) -> str:
    normalized = model.strip().lower()
    if normalized.startswith("models/"):
        normalized = normalized[len("models/") :]
    return normalized


def _find_model_entry(
    entries: dict[str, _CatalogEntry], model: str
) -> _CatalogEntry | None:
    if not entries:
        return None

    if model in entries:
        return entries[model]

    normalized = normalize_model_name(model)
    normalized_entries = {normalize_model_name(key): key for key in entries}
    if normalized in normalized_entries:
        return entries[normalized_entries[normalized]]

    # Longest prefix wins so dated model ids resolve to their family entry
    prefix_matches = [
        key for key in normalized_entries if key and normalized.startswith(key)
    ]
    if not prefix_matches:
        return None
    best = max(prefix_matches, key=len)
    return entries[normalized_entries[best]]


def _merge_entries(entries: list[_CatalogEntry | None]) -> dict[str, Any] | None:
    merged: dict[str, Any] = {}
    for entry in entries:
        if entry is not None:
            merged.update(entry.model_dump(exclude_unset=True))
    return merged or None


class ModelCatalog(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: Literal[1]
    snapshot_date: str = Field(pattern=ISO_DATE_PATTERN)
    generated_at: str
    sources: list[str] = Field(min_length=1)
    pricing: PricingSection | None = None
    capabilities: CapabilitySection | None = None

    def get_capability_override(
        self, provider: CacheProvider | str, model: str
    ) -> dict[str, Any] | None:
        """Merged capability fields for the pair, or None when the catalog has nothing."""
        if self.capabilities is None:
            return None
        section = self.capabilities
        provider_section = section.providers.get(str(provider))  # type: ignore[call-overload]
        return _merge_entries(
            [
                section.default,
                provider_section.default if provider_section else None,
                _find_model_entry(section.models, model),  # type: ignore[arg-type]
                (
                    _find_model_entry(provider_section.models, model)  # type: ignore[arg-type]
                    if provider_section
                    else None
                ),
            ]
        )

    def get_pricing_override(
        self, provider: CacheProvider | str | None, model: str
    ) -> dict[str, Any] | None:
        if self.pricing is None:
            return None
        section = self.pricing
        provider_section = (
            section.providers.get(str(provider))  # type: ignore[call-overload]
            if provider is not None
            else None
        )
        return _merge_entries(
            [
                section.default,
                provider_section.default if provider_section else None,
                _find_model_entry(section.models, model),  # type: ignore[arg-type]
                (
                    _find_model_entry(provider_section.models, model)  # type: ignore[arg-type]
                    if provider_section
                    else None
                ),
            ]
        )


def infer_provider_from_model(model: str) -> CacheProvider | None:
    """Best-effort provider family for a bare model name."""
    normalized = normalize_model_name(model)
    if any(tag in normalized for tag in ANTHROPIC_MODEL_TAGS):
        return CacheProvider.ANTHROPIC
    if any(tag in normalized for tag in GOOGLE_MODEL_TAGS):
        return CacheProvider.GOOGLE
    if normalized.startswith(OPENAI_MODEL_TAGS):
        return CacheProvider.OPENAI
    return None


def parse_model_catalog(data: str | bytes | dict[str, Any]) -> ModelCatalog:
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ModelCatalogLoadError(f"Model catalog is not valid JSON: {e}") from e

    try:
        return ModelCatalog.model_validate(data)
    except ValidationError as e:
        issues = [
            f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}"
            for error in e.errors()
        ]
        raise ModelCatalogValidationError(issues) from e


class CatalogLoadResult(BaseModel):
    catalog: ModelCatalog | None
    source: str
    from_cache: bool = False
    # True when the load failed and a previously loaded catalog was returned instead
    used_fallback: bool = False
    error: str | None = None


class ModelCatalogLoader:
    """Loads catalogs from a URL, a file, or an inline payload.

    URL and file loads are cached in memory for `ttl_seconds`. When a load fails
    the last good catalog for the same source is returned (`used_fallback=True`),
    unless `throw_on_error` is set.
    """

    def __init__(
        self,
        ttl_seconds: float = MODEL_CATALOG_TTL_SECONDS,
        request_timeout: float = MODEL_CATALOG_REQUEST_TIMEOUT,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.request_timeout = request_timeout
        # source -> (loaded_at monotonic seconds, catalog)
        self._cache: dict[str, tuple[float, ModelCatalog]] = {}

    def load(
        self,
        *,
        url: str | None = None,
        file_path: str | Path | None = None,
        payload: str | bytes | dict[str, Any] | None = None,
        force_refresh: bool = False,
        throw_on_error: bool = False,
    ) -> CatalogLoadResult:
        provided = [
            source for source in (url, file_path, payload) if source is not None
        ]
        if len(provided) != 1:
            raise ModelCatalogLoadError(
                "Exactly one of url, file_path or payload must be provided"
            )

        if payload is not None:
            # Inline payloads are never cached, there is nothing to refresh
            try:
                return CatalogLoadResult(
                    catalog=parse_model_catalog(payload), source="inline"
                )
            except ModelCatalogError as e:
                if throw_on_error:
                    raise
                logger.warning(f"Failed to parse inline model catalog: {e}")
                return CatalogLoadResult(catalog=None, source="inline", error=str(e))

        source = url if url is not None else str(file_path)
        cached = self._cache.get(source)
        if (
            cached is not None
            and not force_refresh
            and time.monotonic() - cached[0] < self.ttl_seconds
        ):
            return CatalogLoadResult(catalog=cached[1], source=source, from_cache=True)

        try:
            if url is not None:
                catalog = parse_model_catalog(self._fetch(url))
            else:
                catalog = parse_model_catalog(self._read(Path(source)))
        except ModelCatalogError as e:
            if throw_on_error:
                raise
            logger.warning(f"Failed to load model catalog from {source}: {e}")
            return CatalogLoadResult(
                catalog=cached[1] if cached else None,
                source=source,
                used_fallback=cached is not None,
                error=str(e),
            )

        self._cache[source] = (time.monotonic(), catalog)
        logger.debug(
            f"Loaded model catalog from {source} (snapshot {catalog.snapshot_date})"
        )
        return CatalogLoadResult(catalog=catalog, source=source)

    def clear(self) -> None:
        self._cache.clear()

    def _fetch(self, url: str) -> str:
        try:
            response = httpx.get(
                url, timeout=self.request_timeout, follow_redirects=True
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ModelCatalogLoadError(
                f"Failed to fetch model catalog from {url}: {e}"
            ) from e
        return response.text

    @staticmethod
    def _read(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ModelCatalogLoadError(
                f"Failed to read model catalog file {path}: {e}"
            ) from e
