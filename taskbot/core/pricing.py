"""Model price table and run cost estimates."""

from __future__ import annotations

from typing import TYPE_CHECKING

from taskbot.core.config.schema import ModelPriceConfig, PricingConfig

if TYPE_CHECKING:
    from taskbot.store.models import Executor, Job

# Typical token usage of a full agent run
FULL_RUN_INPUT_TOKENS = 20_000
FULL_RUN_OUTPUT_TOKENS = 4_000
FULL_RUN_FALLBACK_COST = 0.04

# Assumed prompt size of one executor llm step
EXECUTOR_STEP_INPUT_TOKENS = 500
EXECUTOR_FALLBACK_COST = 0.002

_TIERS = ("opus", "sonnet", "haiku")


class PriceTable:
    """Resolve per-model prices from config.

    Model names may carry a provider prefix (``anthropic/claude-...``).
    Unknown models fall back to the first configured model of the same
    tier (opus/sonnet/haiku) when the name mentions one.
    """

    def __init__(self, pricing: PricingConfig | None = None):
        self._models = dict((pricing or PricingConfig()).models)

    def price_for(self, model: str | None) -> ModelPriceConfig | None:
        if not model:
            return None
        name = model.split("/")[-1].lower()
        if name in self._models:
            return self._models[name]
        for tier in _TIERS:
            if tier in name:
                for key, price in self._models.items():
                    if tier in key:
                        return price
        return None

    def cost(self, model: str | None, input_tokens: int, output_tokens: int) -> float:
        """USD cost of a call; 0.0 for models without a price."""
        price = self.price_for(model)
        if price is None:
            return 0.0
        return (
            input_tokens * price.input_per_mtok / 1_000_000
            + output_tokens * price.output_per_mtok / 1_000_000
        )


def estimate_full_agent_cost(job: Job, prices: PriceTable, default_model: str) -> float:
    """Typical cost of running ``job`` through the full agent."""
    model = job.model or default_model
    if prices.price_for(model) is None:
        return FULL_RUN_FALLBACK_COST
    return prices.cost(model, FULL_RUN_INPUT_TOKENS, FULL_RUN_OUTPUT_TOKENS)


def estimate_executor_cost(executor: Executor, prices: PriceTable, cheap_model: str) -> float:
    """Cost of one replay; only llm steps cost money."""
    return estimate_steps_cost(executor.steps, prices, cheap_model)


def estimate_steps_cost(steps: list, prices: PriceTable, cheap_model: str) -> float:
    if prices.price_for(cheap_model) is None:
        return EXECUTOR_FALLBACK_COST
    input_tokens = 0
    output_tokens = 0
    for step in steps:
        if step.type == "llm":
            input_tokens += EXECUTOR_STEP_INPUT_TOKENS
            output_tokens += step.max_tokens or 500
    return prices.cost(cheap_model, input_tokens, output_tokens)
