"""
Pricing calculations and model selection.

Computes dollar costs from token counts using the configured per-model
rates, and picks a model for a tier and feature.
"""

from dataclasses import asdict, dataclass
from decimal import Decimal

from novylist_governance.config.loader import DEFAULT_CONFIG, GovernanceConfig

from .token_counter import TokenUsage


@dataclass(frozen=True)
class CostEstimate:
    """Cost breakdown for a given model and token counts."""
    model_name: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    input_cost: float
    output_cost: float
    total_cost: float
    cost_per_thousand_input: float
    cost_per_thousand_output: float

    def to_dict(self) -> dict:
        return asdict(self)


def estimate_cost(
    model_name: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    config: GovernanceConfig = DEFAULT_CONFIG
) -> CostEstimate:
    """Calculate cost for model usage.

    Input and output tokens are priced independently. Unknown models are
    priced at the default (cheapest general-purpose) model's rates. The
    arithmetic is done in Decimal and no rounding is applied, so sub-cent
    costs survive accumulation.

    Args:
        model_name: Model identifier
        input_tokens: Prompt tokens
        output_tokens: Completion tokens
        config: Governance policy holding the rate table

    Returns:
        CostEstimate for the request

    Raises:
        ValueError: If a token count is negative
    """
    usage = TokenUsage(prompt_tokens=input_tokens, completion_tokens=output_tokens)
    rate = config.get_model_rate(model_name)

    input_rate = Decimal(str(rate.input_cost_per_1k))
    output_rate = Decimal(str(rate.output_cost_per_1k))

    # (tokens / 1000) * cost_per_1k
    input_cost = (Decimal(usage.prompt_tokens) / Decimal("1000")) * input_rate
    output_cost = (Decimal(usage.completion_tokens) / Decimal("1000")) * output_rate

    return CostEstimate(
        model_name=model_name,
        input_tokens=usage.prompt_tokens,
        output_tokens=usage.completion_tokens,
        total_tokens=usage.total_tokens,
        input_cost=float(input_cost),
        output_cost=float(output_cost),
        total_cost=float(input_cost + output_cost),
        cost_per_thousand_input=rate.input_cost_per_1k,
        cost_per_thousand_output=rate.output_cost_per_1k,
    )


def select_model_for_tier(
    tier: str,
    feature_type: str,
    config: GovernanceConfig = DEFAULT_CONFIG
) -> str:
    """Look up the model a tier uses for a feature in the static policy table."""
    return config.get_model_policy(tier).model_for(feature_type)
