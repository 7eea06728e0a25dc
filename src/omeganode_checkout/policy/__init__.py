"""Authorities for the free and discounted paths."""

from omeganode_checkout.policy.access import StoreAccessCodeRedeemer, generate_access_code
from omeganode_checkout.policy.discounts import StoreDiscountResolver, canonical_code
from omeganode_checkout.policy.trial import StoreTrialGuard, client_origin, device_fingerprint

__all__ = [
    "StoreAccessCodeRedeemer", "generate_access_code",
    "StoreDiscountResolver", "canonical_code",
    "StoreTrialGuard", "client_origin", "device_fingerprint",
]
