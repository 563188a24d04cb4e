"""LLM pricing lookup and cost calculation utilities."""

from pydantic import BaseModel

from promptfork.llm.catalog import infer_provider_from_model
from promptfork.llm.catalog import ModelCatalog
from promptfork.llm.catalog import normalize_model_name
from promptfork.llm.constants import CacheProvider
from promptfork.utils.logger import setup_logger

logger = setup_logger()


class ModelPricing(BaseModel):
    """USD per 1M tokens."""

    model: str
    input_per_1m: float
    output_per_1m: float
    cached_input_per_1m: float | None = None
    cache_write_per_1m: float | None = None

    # This disables the "model_" protected namespace for pydantic
    model_config = {"protected_namespaces": ()}


# (input, output) USD per 1M tokens
TOKEN_PRICING: dict[str, tuple[float, float]] = {
    "claude-3-5-sonnet": (3.0, 15.0),
    "claude-3-5-haiku": (0.25, 1.25),
    "claude-3-opus": (15.0, 75.0),
    "claude-3-sonnet": (3.0, 15.0),
    "claude-3-haiku": (0.25, 1.25),
    "gpt-4o": (2.5, 10.0),
    "gpt-4o-mini": (0.15, 0.6),
    "gpt-4-turbo": (10.0, 30.0),
    "gpt-4": (30.0, 60.0),
    "gpt-3.5-turbo": (0.5, 1.5),
}
# Applied to models no other source knows about
DEFAULT_PRICING = (5.0, 15.0)

DEFAULT_PRICING_MODEL = "default"


def _static_pricing(model: str) -> tuple[float, float] | None:
    name = normalize_model_name(model).rsplit("/", 1)[-1]
    if name in TOKEN_PRICING:
        return TOKEN_PRICING[name]
    prefix_matches = [key for key in TOKEN_PRICING if name.startswith(key)]
    if not prefix_matches:
        return None
    return TOKEN_PRICING[max(prefix_matches, key=len)]


def _litellm_pricing(model: str) -> ModelPricing | None:
    try:
        import litellm

        model_info = litellm.model_cost.get(model)
        if not model_info:
            return None

        input_cost = model_info.get("input_cost_per_token")
        output_cost = model_info.get("output_cost_per_token")
        if input_cost is None or output_cost is None:
            return None

        cached_cost = model_info.get("cache_read_input_token_cost")
        write_cost = model_info.get("cache_creation_input_token_cost")
        return ModelPricing(
            model=model,
            input_per_1m=input_cost * 1_000_000,
            output_per_1m=output_cost * 1_000_000,
            cached_input_per_1m=(
                cached_cost * 1_000_000 if cached_cost is not None else None
            ),
            cache_write_per_1m=(
                write_cost * 1_000_000 if write_cost is not None else None
            ),
        )
    except Exception as e:
        # Pricing is advisory, a litellm lookup problem should not block anything
        logger.debug(f"Could not read litellm pricing for model {model}: {e}")
        return None


def get_model_pricing(
    model: str,
    catalog: ModelCatalog | None = None,
    provider: CacheProvider | str | None = None,
) -> ModelPricing:
    """Pricing for a model.

    Order: catalog override, the built-in table (exact then prefix), litellm's
    model cost map, then the conservative default.
    """
    static = _static_pricing(model)

    if catalog is not None:
        override = catalog.get_pricing_override(
            provider or infer_provider_from_model(model), model
        )
        if override:
            base_input, base_output = static or DEFAULT_PRICING
            return ModelPricing(
                model=model,
                input_per_1m=override.get("input_per_1m", base_input),
                output_per_1m=override.get("output_per_1m", base_output),
                cached_input_per_1m=override.get("cached_input_per_1m"),
                cache_write_per_1m=override.get("cache_write_per_1m"),
            )

    if static is not None:
        return ModelPricing(
            model=model, input_per_1m=static[0], output_per_1m=static[1]
        )

    litellm_pricing = _litellm_pricing(model)
    if litellm_pricing is not None:
        return litellm_pricing

    logger.debug(f"No pricing found for model {model}, using default pricing")
    return ModelPricing(
        model=DEFAULT_PRICING_MODEL,
        input_per_1m=DEFAULT_PRICING[0],
        output_per_1m=DEFAULT_PRICING[1],
    )


def calculate_llm_cost_cents(
    model_name: str,
    prompt_tokens: int,
    completion_tokens: int,
    catalog: ModelCatalog | None = None,
) -> float:
    """
    Calculate the cost in cents for an LLM API call.

    Uses the same pricing resolution as `get_model_pricing`, so unknown models are
    priced at the conservative default rather than treated as free.
    """
    pricing = get_model_pricing(model_name, catalog)
    cost_usd = (
        prompt_tokens * pricing.input_per_1m + completion_tokens * pricing.output_per_1m
    ) / 1_000_000
    return cost_usd * 100
