"""Settlement flow - one customer's checkout from plan selection to order."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable

from omeganode_checkout.errors import DiscountConflictError, FlowStateError, ValidationError
from omeganode_checkout.interfaces.matcher import PaymentMatcher
from omeganode_checkout.interfaces.resolver import DiscountResolver, ReferralResolver
from omeganode_checkout.interfaces.store import CheckoutStore
from omeganode_checkout.interfaces.trial import AccessCodeRedeemer, TrialGuard
from omeganode_checkout.models.config import CheckoutConfig
from omeganode_checkout.models.payment import PaymentCheck, PendingPayment, TokenType
from omeganode_checkout.models.plan import CommitmentTerm, PlanSelection
from omeganode_checkout.models.pricing import DiscountTerm, PriceBreakdown
from omeganode_checkout.models.records import (
    AccessGrant,
    DiscountValidation,
    OrderRecord,
    ReferralValidation,
    TrialIdentity,
)
from omeganode_checkout.policy.discounts import scope_notice
from omeganode_checkout.pricing.engine import PriceEngine

log = logging.getLogger(__name__)


class FlowState(str, Enum):
    SELECTING = "selecting"
    AWAITING_PAYMENT = "awaiting_payment"
    UNMATCHED = "unmatched"  # checked, nothing (or not enough) found; retry allowed
    SETTLING = "settling"
    SETTLED = "settled"
    FAILED = "failed"


_PAYMENT_STATES = (FlowState.AWAITING_PAYMENT, FlowState.UNMATCHED)


@dataclass
class FlowOutcome:
    """What the customer should see after a flow step."""

    state: FlowState
    message: str = ""
    breakdown: PriceBreakdown | None = None
    pending: PendingPayment | None = None
    check: PaymentCheck | None = None
    order: OrderRecord | None = None
    notices: list[str] = field(default_factory=list)


class SettlementFlow:
    """Drives a single checkout attempt.

    selecting -> awaiting_payment <-> unmatched -> settling -> settled
    Any state except settled can move to failed.

    A zero total skips the payment matcher and is gated by the trial guard,
    an access code redemption, or a re-validated discount code instead.
    Payment checks happen only when the customer asks for one.

    Commitment discounts and discount codes never stack: choosing a
    discounted term clears an applied code (with a notice), and codes can
    only be applied while on the monthly term.
    """

    def __init__(
        self,
        config: CheckoutConfig,
        engine: PriceEngine,
        resolver: DiscountResolver,
        referrals: ReferralResolver,
        matcher: PaymentMatcher,
        trial_guard: TrialGuard,
        access: AccessCodeRedeemer,
        store: CheckoutStore,
        clock: Callable[[], datetime] | None = None,
        flow_id: str | None = None,
    ) -> None:
        self._cfg = config
        self._engine = engine
        self._resolver = resolver
        self._referrals = referrals
        self._matcher = matcher
        self._trial_guard = trial_guard
        self._access = access
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.flow_id = flow_id or uuid.uuid4().hex
        self.order_number = f"ON-{self.flow_id[:10].upper()}"
        self.state = FlowState.SELECTING

        self._selection: PlanSelection | None = None
        self._discount: DiscountTerm | None = None
        self._referral: ReferralValidation | None = None
        self._customer_id: str | None = None
        self._access_code: str | None = None
        self._pending: PendingPayment | None = None
        self._ignored_refs: set[str] = set()
        self._notices: list[str] = []
        self.order: OrderRecord | None = None

    # ── Read-only views ────────────────────────────────────

    @property
    def selection(self) -> PlanSelection | None:
        return self._selection

    @property
    def applied_discount(self) -> DiscountTerm | None:
        return self._discount

    @property
    def pending(self) -> PendingPayment | None:
        return self._pending

    def quote(self) -> PriceBreakdown:
        """Current price. Pure: safe to call as often as needed."""
        if self._selection is None:
            raise FlowStateError("no plan selected")
        return self._engine.compute(
            self._selection,
            applied_discount=self._discount,
            referral_active=self._referral is not None and self._referral.valid,
        )

    def drain_notices(self) -> list[str]:
        notices, self._notices = self._notices, []
        return notices

    # ── Selection phase ────────────────────────────────────

    async def select(self, selection: PlanSelection) -> FlowOutcome:
        """Set or change the plan. Re-checks any applied code against it."""
        self._require(FlowState.SELECTING)
        self._engine.validate(selection)

        previous = self._selection
        self._selection = selection

        if self._access_code and selection.commitment_term != CommitmentTerm.DAILY:
            self._notice(f"Access code {self._access_code} was removed: it only "
                         f"applies to trial access.")
            self._access_code = None

        if self._discount is not None:
            if not self._engine.allows_code(selection.commitment_term):
                self._notice(
                    f"Code {self._discount.code} was removed: discount codes cannot be "
                    f"combined with the {selection.commitment_term.value} commitment discount."
                )
                self._discount = None
            elif previous is None or previous.server_class != selection.server_class:
                await self._revalidate_discount()

        return self._outcome()

    async def apply_code(self, raw_code: str) -> DiscountValidation:
        """Validate a discount code once and apply it if the authority agrees."""
        self._require(FlowState.SELECTING)
        selection = self._need_selection()
        if not self._engine.allows_code(selection.commitment_term):
            raise DiscountConflictError(
                "discount codes can only be applied on the monthly term",
                field="code",
            )

        result = await self._resolver.validate(raw_code, selection.server_class)
        if result.valid and result.term is not None:
            self._discount = result.term
            log.info("Flow %s: applied code %s", self.flow_id[:8], result.code)
        return result

    def remove_code(self) -> None:
        self._discount = None

    async def apply_referral(self, raw_code: str, referred_id: str | None = None) -> ReferralValidation:
        self._require(FlowState.SELECTING)
        result = await self._referrals.validate_referral(raw_code, referred_id)
        self._referral = result if result.valid else None
        if referred_id:
            self._customer_id = referred_id
        return result

    async def apply_access_code(self, raw_code: str) -> AccessGrant:
        """Check an access code and switch the plan to the free trial term.

        The code is only consumed when the flow settles.
        """
        self._require(FlowState.SELECTING)
        selection = self._need_selection()
        record = await self._access.lookup(raw_code)
        if record is None:
            return AccessGrant(granted=False, code=raw_code.strip().upper(),
                               error="Invalid or already redeemed code")

        self._access_code = record.code
        if self._discount is not None:
            self._notice(f"Code {self._discount.code} was removed: access codes "
                         f"replace discount codes.")
            self._discount = None
        self._selection = selection.with_term(CommitmentTerm.DAILY)
        return AccessGrant(
            granted=True, code=record.code,
            duration_type=record.duration_type, duration_hours=record.duration_hours,
        )

    # ── Settlement phase ───────────────────────────────────

    async def begin(
        self,
        token_type: TokenType | None = None,
        identity: TrialIdentity | None = None,
        expected_amount: Decimal | None = None,
    ) -> FlowOutcome:
        """Leave selection: settle a free order or open a pending payment.

        Stablecoin payments default to the term total. SOL payments need the
        converted ``expected_amount`` from the caller.
        """
        self._require(FlowState.SELECTING)
        breakdown = self.quote()
        if identity is not None and identity.operator_id:
            self._customer_id = identity.operator_id

        if breakdown.is_free:
            return await self._settle_free(breakdown, identity)

        if token_type is None:
            raise ValidationError("choose a payment currency", field="token_type")
        receiver = self._cfg.receiver_for(token_type.value)
        if not receiver:
            raise ValidationError(
                f"payments in {token_type.value} are not configured", field="token_type",
            )
        if expected_amount is None:
            if token_type.is_native:
                raise ValidationError(
                    "SOL payments need the converted amount to expect",
                    field="expected_amount",
                )
            expected_amount = Decimal(breakdown.term_total)

        self._pending = PendingPayment(
            receiver_address=receiver,
            token_type=token_type,
            expected_amount=expected_amount,
            opened_at=self._clock(),
            validity_window_seconds=self._cfg.solana.tx_window_seconds,
        )
        self.state = FlowState.AWAITING_PAYMENT
        await self._store.log_activity(
            "payment_opened",
            f"Awaiting {self._pending.expected_amount} {token_type.value} for {self.order_number}",
            reference=self.order_number, amount=breakdown.term_total,
        )
        return self._outcome(
            message=f"Send {self._pending.expected_amount} {token_type.value.upper()} "
                    f"to {receiver}, then confirm.",
        )

    async def check_payment(self) -> FlowOutcome:
        """Handle one "I've sent payment" click."""
        if self.state not in _PAYMENT_STATES or self._pending is None:
            raise FlowStateError(f"no payment is awaiting confirmation (state: {self.state.value})")

        now = self._clock()
        if now > self._pending.opened_at + timedelta(seconds=self._cfg.session_timeout):
            self.state = FlowState.UNMATCHED
            check = PaymentCheck(
                detected=False, expired=True,
                message="This payment window has expired. Cancel and start a new payment.",
            )
            return self._outcome(message=check.message, check=check)

        check = await self._matcher.verify(self._pending, now=now, ignore=self._ignored_refs)

        if not check.detected:
            self.state = FlowState.UNMATCHED
            return self._outcome(message=check.message, check=check)

        # Integrity: a code that lapsed while the customer was paying fails the flow
        if self._discount is not None and not await self._discount_still_valid():
            return self._outcome(message=self._fail("discount code is no longer valid"),
                                 check=check)

        self.state = FlowState.SETTLING
        breakdown = self.quote()
        order = self._order(
            breakdown,
            reference_kind="payment",
            reference=check.tx_ref or "",
            token_type=self._pending.token_type.value,
            received_amount=str(check.received_amount) if check.received_amount is not None else None,
            payment_refs=check.tx_refs,
        )
        result = await self._store.finalize_order(order)
        if not result.accepted:
            # Signature already settled another order: never reuse it
            self._ignored_refs.update(check.tx_refs or [check.tx_ref or ""])
            self.state = FlowState.UNMATCHED
            message = "This transaction was already used for another order."
            log.warning("Flow %s: replayed reference rejected: %s", self.flow_id[:8], result.error)
            return self._outcome(
                message=message,
                check=PaymentCheck(detected=False, message=message),
            )

        if self._discount is not None and not result.duplicate:
            await self._resolver.redeem(self._discount.code)
        return await self._settled(result.order or order, check=check)

    async def cancel(self) -> FlowOutcome:
        """Discard the pending payment and return to selection."""
        if self.state not in _PAYMENT_STATES:
            raise FlowStateError(f"nothing to cancel (state: {self.state.value})")
        self._pending = None
        self.state = FlowState.SELECTING
        return self._outcome(message="Payment cancelled")

    async def give_up(self, reason: str = "cancelled by customer") -> FlowOutcome:
        if self.state == FlowState.SETTLED:
            raise FlowStateError("flow already settled")
        return self._outcome(message=self._fail(reason))

    # ── Internals ──────────────────────────────────────────

    async def _settle_free(
        self, breakdown: PriceBreakdown, identity: TrialIdentity | None,
    ) -> FlowOutcome:
        selection = self._need_selection()

        if self._access_code:
            operator_id = identity.operator_id if identity else ""
            if not operator_id:
                raise ValidationError("sign in to redeem an access code", field="operator_id")
            grant = await self._access.redeem(self._access_code, operator_id)
            if not grant.granted:
                self._access_code = None
                return self._outcome(message=grant.error or "Access code rejected")
            self.state = FlowState.SETTLING
            order = self._order(breakdown, "access", f"access:{grant.code}")

        elif selection.commitment_term == CommitmentTerm.DAILY:
            if identity is None:
                raise ValidationError("trial requests need an account, origin and device",
                                      field="identity")
            decision = await self._trial_guard.try_consume(
                identity.operator_id, identity.network_origin, identity.device_fingerprint,
            )
            if not decision.allowed:
                return self._outcome(message=decision.message)
            self.state = FlowState.SETTLING
            order = self._order(breakdown, "trial", f"trial:{identity.operator_id}")

        elif self._discount is not None:
            if not await self._discount_still_valid():
                return self._outcome(message=self._fail("discount code is no longer valid"))
            if not await self._resolver.redeem(self._discount.code):
                return self._outcome(message=self._fail("discount code has reached its usage limit"))
            self.state = FlowState.SETTLING
            order = self._order(breakdown, "code", f"code:{self._discount.code}:{self.flow_id}")

        else:
            raise ValidationError("a free order needs a trial, access code or discount code")

        result = await self._store.finalize_order(order)
        if not result.accepted:
            return self._outcome(message=self._fail(result.error or "order rejected"))
        return await self._settled(result.order or order)

    async def _settled(self, order: OrderRecord, check: PaymentCheck | None = None) -> FlowOutcome:
        self.order = order
        self._pending = None
        self.state = FlowState.SETTLED

        if self._referral is not None and self._referral.referrer_id:
            await self._store.save_referral(
                self._referral.referrer_id,
                referred_id=self._customer_id,
                order_number=order.order_number,
                order_amount=order.final_total,
                commission_rate=self._cfg.pricing.referral_commission_rate,
            )

        await self._store.log_activity(
            "order_settled",
            f"Order {order.order_number} settled via {order.reference_kind}",
            reference=order.reference, amount=order.final_total,
        )
        log.info("Flow %s settled: order %s (%s)", self.flow_id[:8],
                 order.order_number, order.reference_kind)
        return self._outcome(message="Order confirmed", check=check, order=order)

    async def _revalidate_discount(self) -> None:
        """Re-check the applied code after a server class change."""
        assert self._discount is not None and self._selection is not None
        result = await self._resolver.validate(self._discount.code, self._selection.server_class)
        if result.valid and result.term is not None:
            self._discount = result.term
            return
        if result.required_scope is not None:
            self._notice(scope_notice(self._discount.code, result.required_scope))
        else:
            self._notice(f"Code {self._discount.code} was removed: {result.error_reason}.")
        self._discount = None

    async def _discount_still_valid(self) -> bool:
        assert self._discount is not None and self._selection is not None
        result = await self._resolver.validate(self._discount.code, self._selection.server_class)
        if not result.valid:
            log.warning("Flow %s: code %s invalidated mid-flow: %s",
                        self.flow_id[:8], self._discount.code, result.error_reason)
        return result.valid

    def _order(
        self,
        breakdown: PriceBreakdown,
        reference_kind: str,
        reference: str,
        token_type: str | None = None,
        received_amount: str | None = None,
        payment_refs: list[str] | None = None,
    ) -> OrderRecord:
        selection = self._need_selection()
        return OrderRecord(
            order_number=self.order_number,
            flow_id=self.flow_id,
            selection=selection.to_dict(),
            final_total=breakdown.term_total,
            reference_kind=reference_kind,
            reference=reference,
            token_type=token_type,
            received_amount=received_amount,
            discount_code=self._discount.code if self._discount else None,
            referral_code=self._referral.code if self._referral else None,
            payment_refs=list(payment_refs or []),
        )

    def _fail(self, reason: str) -> str:
        log.info("Flow %s failed: %s", self.flow_id[:8], reason)
        self.state = FlowState.FAILED
        self._pending = None
        return reason

    def _notice(self, message: str) -> None:
        log.info("Flow %s notice: %s", self.flow_id[:8], message)
        self._notices.append(message)

    def _require(self, *states: FlowState) -> None:
        if self.state not in states:
            raise FlowStateError(
                f"operation not allowed in state {self.state.value}"
            )

    def _need_selection(self) -> PlanSelection:
        if self._selection is None:
            raise ValidationError("select a plan first", field="selection")
        return self._selection

    def _outcome(
        self,
        message: str = "",
        check: PaymentCheck | None = None,
        order: OrderRecord | None = None,
    ) -> FlowOutcome:
        breakdown = None
        if self._selection is not None and self.state != FlowState.FAILED:
            breakdown = self.quote()
        return FlowOutcome(
            state=self.state,
            message=message,
            breakdown=breakdown,
            pending=self._pending,
            check=check,
            order=order,
            notices=self.drain_notices(),
        )
