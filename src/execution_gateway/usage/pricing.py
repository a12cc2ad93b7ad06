"""
Pricing calculations and rate management.

Cost is computed from a per-model price table (USD per 1K input/output
tokens). Models missing from the table fall back to a conservative default
rate instead of failing the call.
"""

import threading
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Mapping, Optional

import structlog

from execution_gateway.models.policy_models import DEFAULT_PRICING, DEFAULT_TOKEN_RATE, ModelPricing

logger = structlog.get_logger(__name__)

_THOUSAND = Decimal("1000")
_COST_QUANTUM = Decimal("0.0001")


class PricingTable:
    """
    Hot-updatable price table.

    Attributes:
        default_rate: USD per 1K tokens applied to unknown models
    """

    def __init__(
        self,
        prices: Optional[Mapping[str, ModelPricing]] = None,
        default_rate: float = DEFAULT_TOKEN_RATE,
    ):
        self._prices: Dict[str, ModelPricing] = dict(DEFAULT_PRICING if prices is None else prices)
        self.default_rate = default_rate
        self._lock = threading.Lock()
        self._warned_models: set[str] = set()

    def get_pricing(self, model: str) -> Optional[ModelPricing]:
        """Pricing for a model, or None if the model is not in the table."""
        with self._lock:
            return self._prices.get(model)

    def update(self, prices: Mapping[str, ModelPricing], replace: bool = False) -> None:
        """
        Merge (or replace) price table entries.

        Args:
            prices: model -> pricing
            replace: Drop existing entries first
        """
        with self._lock:
            if replace:
                self._prices = {}
            self._prices.update(prices)
            self._warned_models.difference_update(prices)
        logger.info("Pricing table updated", models=sorted(prices), replace=replace)

    def models(self) -> list[str]:
        with self._lock:
            return sorted(self._prices)

    def calculate_cost(self, model: str, input_tokens: int, output_tokens: int = 0) -> float:
        """
        Cost in USD for a call, rounded to 4 decimal places.

        Args:
            model: Model identifier
            input_tokens: Prompt tokens
            output_tokens: Completion tokens

        Returns:
            Cost in USD
        """
        pricing = self.get_pricing(model)
        if pricing is None:
            if model not in self._warned_models:
                self._warned_models.add(model)
                logger.warning("No pricing found for model, using default rate", model=model, default_rate=self.default_rate)
            cost = Decimal(str(self.default_rate)) * Decimal(input_tokens + output_tokens) / _THOUSAND
        else:
            input_cost = Decimal(input_tokens) / _THOUSAND * Decimal(str(pricing.input_rate))
            output_cost = Decimal(output_tokens) / _THOUSAND * Decimal(str(pricing.output_rate))
            cost = input_cost + output_cost
        return float(cost.quantize(_COST_QUANTUM, rounding=ROUND_HALF_UP))
