"""Tests for model pricing resolution."""

from collections.abc import Callable
from typing import Any
from unittest.mock import patch

import pytest

from promptfork.llm.cost import calculate_llm_cost_cents
from promptfork.llm.cost import DEFAULT_PRICING
from promptfork.llm.cost import DEFAULT_PRICING_MODEL
from promptfork.llm.cost import get_model_pricing


class TestGetModelPricing:
    """Tests for the pricing lookup order."""

    def test_exact_match(self) -> None:
        pricing = get_model_pricing("gpt-4o")

        assert pricing.input_per_1m == 2.5
        assert pricing.output_per_1m == 10.0

    @pytest.mark.parametrize(
        "model",
        ["claude-3-5-sonnet-20241022", "anthropic/claude-3-5-sonnet-20241022"],
    )
    def test_dated_and_routed_names(self, model: str) -> None:
        pricing = get_model_pricing(model)

        assert pricing.model == model
        assert pricing.input_per_1m == 3.0

    def test_longest_prefix_wins(self) -> None:
        assert get_model_pricing("gpt-4o-mini-2024-07-18").input_per_1m == 0.15

    def test_catalog_override(self, make_catalog: Callable[..., Any]) -> None:
        catalog = make_catalog(
            pricing={
                "models": {"gpt-4o": {"input_per_1m": 2.0, "cached_input_per_1m": 1.0}}
            }
        )

        pricing = get_model_pricing("gpt-4o", catalog)

        assert pricing.input_per_1m == 2.0
        # Fields the catalog leaves out come from the built-in table
        assert pricing.output_per_1m == 10.0
        assert pricing.cached_input_per_1m == 1.0

    def test_catalog_without_entry(self, make_catalog: Callable[..., Any]) -> None:
        catalog = make_catalog(pricing={"models": {"gpt-4o": {"input_per_1m": 2.0}}})
        assert get_model_pricing("claude-3-opus", catalog).input_per_1m == 15.0

    def test_litellm_fallback(self) -> None:
        model_cost = {
            "some-new-model": {
                "input_cost_per_token": 0.000001,
                "output_cost_per_token": 0.000002,
                "cache_read_input_token_cost": 0.0000001,
            }
        }
        with patch("litellm.model_cost", model_cost):
            pricing = get_model_pricing("some-new-model")

        assert pricing.input_per_1m == pytest.approx(1.0)
        assert pricing.output_per_1m == pytest.approx(2.0)
        assert pricing.cached_input_per_1m == pytest.approx(0.1)
        assert pricing.cache_write_per_1m is None

    def test_unknown_model_uses_default(self) -> None:
        with patch("litellm.model_cost", {}):
            pricing = get_model_pricing("totally-unknown-model")

        assert pricing.model == DEFAULT_PRICING_MODEL
        assert (pricing.input_per_1m, pricing.output_per_1m) == DEFAULT_PRICING


def test_calculate_llm_cost_cents() -> None:
    # 1M input tokens at $3 plus 100k output tokens at $15
    cost = calculate_llm_cost_cents("claude-3-5-sonnet", 1_000_000, 100_000)
    assert cost == pytest.approx(450.0)
