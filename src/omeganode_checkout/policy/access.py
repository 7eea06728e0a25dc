"""Access code redemption - admin-issued codes granting timed trial access."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from omeganode_checkout.interfaces.store import CheckoutStore
from omeganode_checkout.models.records import AccessCodeRecord, AccessGrant
from omeganode_checkout.policy.discounts import canonical_code

log = logging.getLogger(__name__)

DURATION_HOURS = {
    "1_hour": 1,
    "1_day": 24,
    "1_week": 168,
    "1_month": 720,
}

# Excludes look-alikes 0, O, 1 and I
_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_access_code(prefix: str = "TRIAL") -> str:
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(8))
    return f"{prefix}-{suffix}"


class StoreAccessCodeRedeemer:
    """Redeems access codes exactly once via a conditional update."""

    def __init__(self, store: CheckoutStore) -> None:
        self._store = store

    async def lookup(self, code: str) -> AccessCodeRecord | None:
        record = await self._store.get_access_code(canonical_code(code))
        if record is None or record.is_redeemed:
            return None
        return record

    async def redeem(
        self, code: str, operator_id: str, now: datetime | None = None,
    ) -> AccessGrant:
        canonical = canonical_code(code)
        record = await self._store.get_access_code(canonical)
        if record is None or record.is_redeemed:
            return AccessGrant(
                granted=False, code=canonical, error="Invalid or already redeemed code",
            )

        now = now or datetime.now(timezone.utc)
        expires = now + timedelta(hours=record.duration_hours)
        won = await self._store.redeem_access_code(
            canonical, operator_id, now.isoformat(), expires.isoformat(),
        )
        if not won:
            # Redeemed by someone else between lookup and update
            return AccessGrant(
                granted=False, code=canonical, error="Invalid or already redeemed code",
            )

        log.info("Access code %s redeemed by %s (%s)", canonical, operator_id,
                 record.duration_type)
        await self._store.log_activity(
            "access_redeemed", f"Access code {canonical} redeemed by {operator_id}",
            reference=canonical,
        )
        return AccessGrant(
            granted=True,
            code=canonical,
            duration_type=record.duration_type,
            duration_hours=record.duration_hours,
            access_expires_at=expires.isoformat(),
        )
