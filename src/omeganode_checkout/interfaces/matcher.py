"""PaymentMatcher protocol - decides whether a pending payment arrived."""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime
from typing import Protocol

from omeganode_checkout.models.payment import PaymentCheck, PendingPayment


class PaymentMatcher(Protocol):
    """Looks for an incoming transfer matching a pending payment."""

    async def verify(
        self,
        expected: PendingPayment,
        now: datetime | None = None,
        ignore: Collection[str] = (),
    ) -> PaymentCheck:
        """One bounded verification pass. Never raises on ledger errors.

        Signatures in `ignore` are skipped (already consumed elsewhere).
        """
        ...
