"""Record types for persistence and authority decisions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from omeganode_checkout.models.pricing import DiscountScope, DiscountTerm


class TrialBlock(str, Enum):
    """Which identity key blocked a trial request."""

    IDENTITY = "identity"
    ORIGIN = "origin"
    DEVICE = "device"


TRIAL_DENIAL_MESSAGES = {
    TrialBlock.IDENTITY: "This account has already used a trial.",
    TrialBlock.ORIGIN: "A trial has already been used from this network.",
    TrialBlock.DEVICE: "A trial has already been used on this device.",
}


@dataclass
class TrialUsageRecord:
    """One consumed trial. Append-only."""

    operator_id: str
    network_origin: str | None
    device_fingerprint: str
    created_at: str = ""


@dataclass(frozen=True)
class TrialIdentity:
    """The three independent keys a trial request is judged on."""

    operator_id: str
    network_origin: str | None
    device_fingerprint: str


@dataclass
class TrialDecision:
    """Result of TrialGuard.try_consume()."""

    allowed: bool
    blocking_key: TrialBlock | None = None
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.blocking_key.value if self.blocking_key else None,
            "message": self.message,
        }


@dataclass
class DiscountValidation:
    """Result of DiscountResolver.validate()."""

    valid: bool
    code: str
    term: DiscountTerm | None = None
    error_reason: str | None = None
    required_scope: DiscountScope | None = None  # set on scope mismatch

    def to_dict(self) -> dict:
        term = self.term
        return {
            "valid": self.valid,
            "code": self.code,
            "kind": term.kind.value if term else None,
            "value": term.value if term else None,
            "scope": term.scope.value if term else (
                self.required_scope.value if self.required_scope else None
            ),
            "errorMessage": self.error_reason,
        }


@dataclass
class ReferralValidation:
    """Result of validating a referral code."""

    valid: bool
    code: str
    referrer_id: str | None = None
    error_reason: str | None = None


@dataclass
class AccessCodeRecord:
    """An admin-issued access code granting time-limited trial access."""

    code: str
    duration_type: str  # "1_hour" | "1_day" | "1_week" | "1_month"
    duration_hours: int
    is_redeemed: bool = False
    redeemed_by: str | None = None
    redeemed_at: str | None = None
    access_expires_at: str | None = None  # ISO 8601


@dataclass
class AccessGrant:
    """Result of an access code redemption attempt."""

    granted: bool
    code: str
    duration_type: str | None = None
    duration_hours: int | None = None
    access_expires_at: str | None = None
    error: str | None = None


@dataclass
class OrderRecord:
    """A finalized order as handed to order persistence."""

    order_number: str
    flow_id: str
    selection: dict
    final_total: int
    reference_kind: str  # "payment" | "trial" | "access" | "code"
    reference: str
    token_type: str | None = None
    received_amount: str | None = None
    discount_code: str | None = None
    referral_code: str | None = None
    created_at: str = ""
    payment_refs: list[str] = field(default_factory=list)  # every signature summed into the payment


@dataclass
class FinalizeResult:
    """Result of OrderSink.finalize_order()."""

    accepted: bool
    order: OrderRecord | None = None
    duplicate: bool = False  # same flow re-finalized: no-op
    error: str | None = None  # reference consumed by another flow


@dataclass
class ActivityRecord:
    """A single activity log entry."""

    id: int
    event_type: str
    reference: str | None
    amount: int | None
    message: str
    created_at: str
