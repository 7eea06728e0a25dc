"""TrialGuard and AccessCodeRedeemer protocols - free-path authorities."""

from __future__ import annotations

from typing import Protocol

from omeganode_checkout.models.records import AccessCodeRecord, AccessGrant, TrialDecision


class TrialGuard(Protocol):
    """Atomically decides first-use trial eligibility and records it."""

    async def try_consume(
        self,
        operator_id: str,
        network_origin: str | None,
        device_fingerprint: str,
    ) -> TrialDecision:
        ...


class AccessCodeRedeemer(Protocol):
    """Redeems admin-issued access codes exactly once."""

    async def lookup(self, code: str) -> AccessCodeRecord | None:
        """Unredeemed code record, or None."""
        ...

    async def redeem(self, code: str, operator_id: str) -> AccessGrant:
        ...
