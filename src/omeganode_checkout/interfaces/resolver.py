"""Authority protocols for discount and referral codes."""

from __future__ import annotations

from typing import Protocol

from omeganode_checkout.models.plan import ServerClass
from omeganode_checkout.models.records import DiscountValidation, ReferralValidation


class DiscountResolver(Protocol):
    """Server-side authority over discount code validity."""

    async def validate(self, code: str, server_class: ServerClass) -> DiscountValidation:
        """Check expiry, usage cap, active flag and scope for a code."""
        ...

    async def redeem(self, code: str) -> bool:
        """Count one use of a code at finalization. False if the cap was hit."""
        ...


class ReferralResolver(Protocol):
    """Validates referral codes."""

    async def validate_referral(
        self, code: str, referred_id: str | None = None
    ) -> ReferralValidation:
        ...
