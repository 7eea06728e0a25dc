"""Pricing components."""

from omeganode_checkout.pricing.engine import PriceEngine, round_money

__all__ = ["PriceEngine", "round_money"]
