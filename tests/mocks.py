"""Mock implementations of the external-facing components."""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime

from omeganode_checkout.errors import LedgerError
from omeganode_checkout.models.payment import (
    PaymentCheck,
    PendingPayment,
    SignatureInfo,
    TransactionDetail,
)
from omeganode_checkout.models.plan import ServerClass
from omeganode_checkout.models.pricing import DiscountTerm
from omeganode_checkout.models.records import DiscountValidation, ReferralValidation
from omeganode_checkout.policy.discounts import SCOPE_LABELS, canonical_code


class FakeLedger:
    """Implements LedgerClient protocol over in-memory signatures and transactions."""

    def __init__(self) -> None:
        self.signatures: dict[str, list[SignatureInfo]] = {}
        self.transactions: dict[str, TransactionDetail] = {}
        self.token_accounts: dict[tuple[str, str], str] = {}
        self.fail_with: str | None = None
        self.signature_calls: list[tuple[str, int]] = []
        self.transaction_calls: list[str] = []

    async def get_signatures(self, address: str, limit: int = 10) -> list[SignatureInfo]:
        self.signature_calls.append((address, limit))
        if self.fail_with:
            raise LedgerError(self.fail_with)
        return list(self.signatures.get(address, []))[:limit]

    async def get_transaction(self, signature: str) -> TransactionDetail | None:
        self.transaction_calls.append(signature)
        if self.fail_with:
            raise LedgerError(self.fail_with)
        return self.transactions.get(signature)

    async def find_token_account(self, owner: str, mint: str) -> str | None:
        if self.fail_with:
            raise LedgerError(self.fail_with)
        return self.token_accounts.get((owner, mint))

    def add(self, address: str, sig: SignatureInfo, tx: TransactionDetail | None) -> None:
        """Test helper: stage a signature (newest first) and its transaction."""
        self.signatures.setdefault(address, []).insert(0, sig)
        if tx is not None:
            self.transactions[sig.signature] = tx


class MockMatcher:
    """Implements PaymentMatcher protocol. Returns queued checks in order."""

    def __init__(self, *checks: PaymentCheck) -> None:
        self.checks: list[PaymentCheck] = list(checks)
        self.calls: list[tuple[PendingPayment, set[str]]] = []

    async def verify(
        self,
        expected: PendingPayment,
        now: datetime | None = None,
        ignore: Collection[str] = (),
    ) -> PaymentCheck:
        self.calls.append((expected, set(ignore)))
        if not self.checks:
            return PaymentCheck(detected=False, message="Payment not detected yet.")
        return self.checks.pop(0)

    def enqueue(self, *checks: PaymentCheck) -> None:
        self.checks.extend(checks)


class MockResolver:
    """Implements DiscountResolver and ReferralResolver protocols."""

    def __init__(self, *terms: DiscountTerm) -> None:
        self.terms = {t.code: t for t in terms}
        self.referrers: dict[str, str] = {}
        self.validate_calls: list[tuple[str, ServerClass]] = []
        self.redeemed: list[str] = []
        self.redeem_ok = True

    async def validate(self, code: str, server_class: ServerClass) -> DiscountValidation:
        canonical = canonical_code(code)
        self.validate_calls.append((canonical, server_class))
        term = self.terms.get(canonical)
        if term is None:
            return DiscountValidation(valid=False, code=canonical,
                                      error_reason="Invalid discount code")
        if not term.scope.covers(server_class):
            return DiscountValidation(
                valid=False, code=canonical,
                error_reason=f"This code is only valid for {SCOPE_LABELS[term.scope]}",
                required_scope=term.scope,
            )
        return DiscountValidation(valid=True, code=canonical, term=term)

    async def redeem(self, code: str) -> bool:
        self.redeemed.append(code)
        return self.redeem_ok

    async def validate_referral(
        self, code: str, referred_id: str | None = None
    ) -> ReferralValidation:
        canonical = canonical_code(code)
        referrer = self.referrers.get(canonical)
        if referrer is None or referrer == referred_id:
            return ReferralValidation(valid=False, code=canonical,
                                      error_reason="Invalid referral code")
        return ReferralValidation(valid=True, code=canonical, referrer_id=referrer)

    def revoke(self, code: str) -> None:
        """Test helper: make a previously valid code disappear."""
        self.terms.pop(code, None)
