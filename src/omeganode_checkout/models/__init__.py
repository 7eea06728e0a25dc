"""Data models for the omeganode_checkout core."""

from omeganode_checkout.models.plan import CommitmentTerm, PlanSelection, ServerClass
from omeganode_checkout.models.pricing import (
    DiscountKind,
    DiscountScope,
    DiscountTerm,
    PriceBreakdown,
)
from omeganode_checkout.models.payment import (
    PaymentCheck,
    PendingPayment,
    SignatureInfo,
    TokenBalance,
    TokenType,
    TransactionDetail,
)
from omeganode_checkout.models.records import (
    AccessCodeRecord,
    AccessGrant,
    ActivityRecord,
    DiscountValidation,
    FinalizeResult,
    OrderRecord,
    ReferralValidation,
    TrialBlock,
    TrialDecision,
    TrialIdentity,
    TrialUsageRecord,
)
from omeganode_checkout.models.config import (
    ApiConfig,
    CheckoutConfig,
    PricingConfig,
    SolanaConfig,
)

__all__ = [
    "CommitmentTerm", "PlanSelection", "ServerClass",
    "DiscountKind", "DiscountScope", "DiscountTerm", "PriceBreakdown",
    "PaymentCheck", "PendingPayment", "SignatureInfo", "TokenBalance",
    "TokenType", "TransactionDetail",
    "AccessCodeRecord", "AccessGrant", "ActivityRecord", "DiscountValidation",
    "FinalizeResult", "OrderRecord", "ReferralValidation",
    "TrialBlock", "TrialDecision", "TrialIdentity", "TrialUsageRecord",
    "ApiConfig", "CheckoutConfig", "PricingConfig", "SolanaConfig",
]
