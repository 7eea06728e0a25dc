"""Discount terms and the itemized price breakdown."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum

from omeganode_checkout.models.plan import ServerClass


class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"


class DiscountScope(str, Enum):
    SHARED = "shared"
    DEDICATED = "dedicated"
    BOTH = "both"

    def covers(self, server_class: ServerClass) -> bool:
        return self == DiscountScope.BOTH or self.value == server_class.value


@dataclass(frozen=True)
class DiscountTerm:
    """A discount code's terms as returned by the resolver."""

    code: str
    kind: DiscountKind
    value: float
    scope: DiscountScope = DiscountScope.BOTH
    expires_at: datetime | None = None
    usage_cap: int | None = None
    usage_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def is_exhausted(self) -> bool:
        return self.usage_cap is not None and self.usage_count >= self.usage_cap

    def is_active(self, server_class: ServerClass, now: datetime) -> bool:
        return (
            not self.is_expired(now)
            and not self.is_exhausted()
            and self.scope.covers(server_class)
        )

    @property
    def is_full_waiver(self) -> bool:
        return self.kind == DiscountKind.PERCENTAGE and self.value >= 100


@dataclass(frozen=True)
class PriceBreakdown:
    """Itemized result of a price computation (whole currency units)."""

    base_server_price: int
    server_price: int  # base after commitment discount
    commitment_discount: float  # fraction, e.g. 0.08
    addons_price: int
    rent_surcharge: int
    code_discount_amount: int
    referral_discount_amount: int
    final_total: int  # per month
    original_total_for_display: int
    term_months: int = 1

    @property
    def is_free(self) -> bool:
        return self.final_total == 0

    @property
    def term_total(self) -> int:
        """Amount charged for the whole commitment term."""
        return self.final_total * self.term_months

    def to_dict(self) -> dict:
        data = asdict(self)
        data["term_total"] = self.term_total
        return data
