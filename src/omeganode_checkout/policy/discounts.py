"""Discount and referral code authority backed by the checkout store."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from omeganode_checkout.errors import ValidationError
from omeganode_checkout.interfaces.store import CheckoutStore
from omeganode_checkout.models.plan import ServerClass
from omeganode_checkout.models.pricing import DiscountKind, DiscountScope, DiscountTerm
from omeganode_checkout.models.records import DiscountValidation, ReferralValidation

log = logging.getLogger(__name__)

_CODE_RE = re.compile(r"^[A-Z0-9][A-Z0-9_-]{2,31}$")

SCOPE_LABELS = {
    DiscountScope.SHARED: "shared servers",
    DiscountScope.DEDICATED: "dedicated servers",
    DiscountScope.BOTH: "all plans",
}


def canonical_code(raw: str) -> str:
    """Upper-case and validate the shape of a user-entered code.

    Raises ValidationError for malformed input so no lookup is made.
    """
    code = (raw or "").strip().upper()
    if not code:
        raise ValidationError("please enter a code", field="code")
    if not _CODE_RE.match(code):
        raise ValidationError("codes are 3-32 letters, digits, '-' or '_'", field="code")
    return code


def scope_notice(code: str, scope: DiscountScope) -> str:
    return f"Code {code} was removed: it is only valid for {SCOPE_LABELS[scope]}."


class StoreDiscountResolver:
    """Validates discount codes against the store.

    Checks, in order:
    1. Code exists and is active
    2. Terms are well formed (percentage in (0, 100], flat >= 0)
    3. Not expired
    4. Usage cap not reached
    5. Scope covers the current server class

    Validation is read-only and idempotent; usage is only counted by
    redeem() when an order is finalized.
    """

    def __init__(self, store: CheckoutStore) -> None:
        self._store = store

    async def validate(
        self,
        code: str,
        server_class: ServerClass,
        now: datetime | None = None,
    ) -> DiscountValidation:
        canonical = canonical_code(code)
        now = now or datetime.now(timezone.utc)

        found = await self._store.get_discount_code(canonical)
        if found is None:
            log.info("Discount code %s not found", canonical)
            return DiscountValidation(
                valid=False, code=canonical, error_reason="Invalid discount code",
            )
        term, is_active = found

        if not is_active:
            return DiscountValidation(
                valid=False, code=canonical, error_reason="This code is no longer active",
            )
        if not _well_formed(term):
            log.warning("Discount code %s has malformed terms: %s %s",
                        canonical, term.kind.value, term.value)
            return DiscountValidation(
                valid=False, code=canonical, error_reason="Invalid discount code",
            )
        if term.is_expired(now):
            return DiscountValidation(
                valid=False, code=canonical, error_reason="This code has expired",
            )
        if term.is_exhausted():
            return DiscountValidation(
                valid=False, code=canonical,
                error_reason="This code has reached its usage limit",
            )
        if not term.scope.covers(server_class):
            return DiscountValidation(
                valid=False,
                code=canonical,
                error_reason=f"This code is only valid for {SCOPE_LABELS[term.scope]}",
                required_scope=term.scope,
            )

        log.info("Discount code %s valid: %s %s (%s)",
                 canonical, term.kind.value, term.value, term.scope.value)
        return DiscountValidation(valid=True, code=canonical, term=term)

    async def redeem(self, code: str) -> bool:
        ok = await self._store.increment_discount_usage(code)
        if not ok:
            log.warning("Discount code %s could not be redeemed (cap reached or inactive)", code)
        return ok

    async def validate_referral(
        self, code: str, referred_id: str | None = None
    ) -> ReferralValidation:
        canonical = canonical_code(code)
        referrer = await self._store.get_referrer(canonical)
        if referrer is None:
            return ReferralValidation(
                valid=False, code=canonical, error_reason="Invalid referral code",
            )
        if referred_id is not None and referrer == referred_id:
            return ReferralValidation(
                valid=False, code=canonical,
                error_reason="You cannot use your own referral code",
            )
        return ReferralValidation(valid=True, code=canonical, referrer_id=referrer)


def _well_formed(term: DiscountTerm) -> bool:
    if term.kind == DiscountKind.PERCENTAGE:
        return 0 < term.value <= 100
    return term.value >= 0
