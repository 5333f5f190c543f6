# shared/llm_pricing.py
"""
LLM pricing calculator for the fortune service.
Costs are estimates used for usage logging only.
"""

import logging

logger = logging.getLogger(__name__)


# Pricing per million tokens (input/output)
PRICING_CONFIG = {
    "openai": {
        "gpt-4o": {"input": 2.5, "output": 10.0},
        "gpt-4o-mini": {"input": 0.15, "output": 0.60},
        "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
        "gpt-4.1-nano": {"input": 0.10, "output": 0.40},
    },
}


def get_model_pricing(provider: str, model_id: str) -> dict[str, float]:
    """
    Get pricing for a specific model.

    Unknown models are priced at zero and logged, so usage logging never
    breaks a generation.
    """
    provider_pricing = PRICING_CONFIG.get(provider, {})

    if model_id in provider_pricing:
        return provider_pricing[model_id]

    # Dated snapshots (gpt-4o-mini-2024-07-18) share the base model price
    for base_model in sorted(provider_pricing, key=len, reverse=True):
        if model_id.startswith(base_model + "-"):
            return provider_pricing[base_model]

    logger.warning(f"No pricing for {provider}/{model_id}, assuming zero cost")
    return {"input": 0.0, "output": 0.0}


def calculate_llm_cost(
    provider: str, model_id: str, prompt_tokens: int, completion_tokens: int
) -> float:
    """
    Calculate the cost of an LLM call in USD.

    Args:
        provider: LLM provider ('openai')
        model_id: Model identifier
        prompt_tokens: Number of input tokens
        completion_tokens: Number of output tokens

    Returns:
        Cost in USD rounded to 6 decimals
    """
    if prompt_tokens < 0 or completion_tokens < 0:
        raise ValueError("Token counts cannot be negative")

    pricing = get_model_pricing(provider, model_id)
    input_cost = (prompt_tokens / 1_000_000) * pricing["input"]
    output_cost = (completion_tokens / 1_000_000) * pricing["output"]

    return round(input_cost + output_cost, 6)
