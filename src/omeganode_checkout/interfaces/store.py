"""CheckoutStore protocol - the durable shared state behind the core."""

from __future__ import annotations

from typing import Protocol

from omeganode_checkout.models.pricing import DiscountTerm
from omeganode_checkout.models.records import (
    AccessCodeRecord,
    ActivityRecord,
    FinalizeResult,
    OrderRecord,
    TrialBlock,
)


class OrderSink(Protocol):
    """Order persistence. Exactly one order per settlement reference."""

    async def finalize_order(self, order: OrderRecord) -> FinalizeResult:
        ...


class CheckoutStore(OrderSink, Protocol):
    """Persists codes, trial usage, orders and the activity log."""

    # ── Lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        ...

    async def close(self) -> None:
        ...

    # ── Discount codes ─────────────────────────────────────

    async def get_discount_code(self, code: str) -> tuple[DiscountTerm, bool] | None:
        """(term, is_active) for a canonical code, or None."""
        ...

    async def increment_discount_usage(self, code: str) -> bool:
        ...

    # ── Referrals ──────────────────────────────────────────

    async def get_referrer(self, code: str) -> str | None:
        ...

    async def save_referral(
        self, referrer_id: str, referred_id: str | None, order_number: str,
        order_amount: int, commission_rate: float,
    ) -> None:
        ...

    # ── Access codes ───────────────────────────────────────

    async def get_access_code(self, code: str) -> AccessCodeRecord | None:
        ...

    async def redeem_access_code(
        self, code: str, operator_id: str, redeemed_at: str, expires_at: str,
    ) -> bool:
        ...

    # ── Trial usage ────────────────────────────────────────

    async def consume_trial(
        self, operator_id: str, network_origin: str | None, device_fingerprint: str,
    ) -> TrialBlock | None:
        """Record a trial unless any key was seen before. Returns the blocking key."""
        ...

    # ── Orders ─────────────────────────────────────────────

    async def get_order_by_reference(self, reference: str) -> OrderRecord | None:
        ...

    # ── Activity log ───────────────────────────────────────

    async def log_activity(
        self, event_type: str, message: str,
        reference: str | None = None, amount: int | None = None,
    ) -> None:
        ...

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        ...
