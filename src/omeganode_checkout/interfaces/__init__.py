"""Protocol interfaces for all omeganode_checkout components."""

from omeganode_checkout.interfaces.ledger import LedgerClient
from omeganode_checkout.interfaces.matcher import PaymentMatcher
from omeganode_checkout.interfaces.resolver import DiscountResolver, ReferralResolver
from omeganode_checkout.interfaces.store import CheckoutStore, OrderSink
from omeganode_checkout.interfaces.trial import AccessCodeRedeemer, TrialGuard

__all__ = [
    "LedgerClient",
    "PaymentMatcher",
    "DiscountResolver", "ReferralResolver",
    "CheckoutStore", "OrderSink",
    "AccessCodeRedeemer", "TrialGuard",
]
