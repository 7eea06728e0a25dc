"""Payment matcher - finds the on-chain transfer that settles a pending payment."""

from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import datetime, timezone
from decimal import Decimal

from omeganode_checkout.errors import LedgerError
from omeganode_checkout.interfaces.ledger import LedgerClient
from omeganode_checkout.models.payment import (
    LAMPORTS_PER_SOL,
    PaymentCheck,
    PendingPayment,
    SignatureInfo,
    TransactionDetail,
)

log = logging.getLogger(__name__)

NOT_DETECTED_MESSAGE = (
    "Payment not detected yet. Please ensure you've sent the correct amount."
)


class LedgerPaymentMatcher:
    """Verifies pending payments against recent ledger activity.

    One verify() call makes a bounded, sequential chain of read-only
    queries (list signatures, then one detail fetch per candidate) and holds
    no lock, so concurrent checks for different payments are independent.

    Native SOL: the first fresh, successful transaction that increases the
    receiver's balance is a match, whatever the amount. Fees make exact
    amounts unreliable; the received amount is reported for audit.

    SPL tokens: positive deltas on the receiver's token account are summed
    across every fresh transaction, so split sends add up. The total is
    compared with the expected amount within a small tolerance; a positive
    shortfall is a partial match with the exact remaining amount.

    Any entry older than the validity window, or without a block time, is
    ignored so an old transfer cannot settle a new payment.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        token_mints: dict[str, str],
        signature_limit: int = 10,
        amount_tolerance: float = 0.01,
    ) -> None:
        self._ledger = ledger
        self._token_mints = {k.lower(): v for k, v in token_mints.items()}
        self._signature_limit = signature_limit
        self._tolerance = Decimal(str(amount_tolerance))

    async def verify(
        self,
        expected: PendingPayment,
        now: datetime | None = None,
        ignore: Collection[str] = (),
    ) -> PaymentCheck:
        """Run one verification pass. Ledger errors become retryable checks."""
        now = now or datetime.now(timezone.utc)
        log.info(
            "Verifying payment: %s, expected %s to %s",
            expected.token_type.value, expected.expected_amount,
            expected.receiver_address[:8],
        )
        try:
            if expected.token_type.is_native:
                return await self._verify_native(expected, now, ignore)
            return await self._verify_token(expected, now, ignore)
        except LedgerError as exc:
            log.warning("Ledger query failed during verification: %s", exc)
            return PaymentCheck(
                detected=False,
                retryable=True,
                message="Could not reach the Solana network to check your payment. "
                        "Please try again.",
            )

    # ── Native SOL ─────────────────────────────────────────

    async def _verify_native(
        self, expected: PendingPayment, now: datetime, ignore: Collection[str],
    ) -> PaymentCheck:
        receiver = expected.receiver_address
        signatures = await self._ledger.get_signatures(receiver, self._signature_limit)

        for sig in self._fresh(signatures, expected, now, ignore):
            tx = await self._ledger.get_transaction(sig.signature)
            if tx is None or tx.failed:
                continue

            delta = _lamport_delta(tx, receiver)
            if delta is None or delta <= 0:
                continue

            received = Decimal(delta) / LAMPORTS_PER_SOL
            log.info("Transaction found: received %s SOL in %s", received, sig.signature[:16])
            return PaymentCheck(
                detected=True,
                tx_ref=sig.signature,
                tx_refs=[sig.signature],
                received_amount=received,
                remaining=Decimal(0),
                message="Payment detected and verified",
            )

        log.info("No matching SOL payment in recent transactions")
        return PaymentCheck(detected=False, message=NOT_DETECTED_MESSAGE)

    # ── SPL tokens ─────────────────────────────────────────

    async def _verify_token(
        self, expected: PendingPayment, now: datetime, ignore: Collection[str],
    ) -> PaymentCheck:
        mint = self._token_mints.get(expected.token_type.value)
        if mint is None:
            log.error("No mint configured for %s", expected.token_type.value)
            return PaymentCheck(
                detected=False, message=f"{expected.token_type.value} is not supported",
            )

        token_account = await self._ledger.find_token_account(expected.receiver_address, mint)
        if token_account is None:
            log.info("Receiver has no token account for %s", expected.token_type.value)
            return PaymentCheck(detected=False, message=NOT_DETECTED_MESSAGE)

        signatures = await self._ledger.get_signatures(token_account, self._signature_limit)

        total = Decimal(0)
        refs: list[str] = []
        for sig in self._fresh(signatures, expected, now, ignore):
            tx = await self._ledger.get_transaction(sig.signature)
            if tx is None or tx.failed:
                continue
            delta = _token_delta(tx, token_account, mint)
            if delta > 0:
                total += delta
                refs.append(sig.signature)

        if total <= 0:
            log.info("No matching %s payment in recent transactions", expected.token_type.value)
            return PaymentCheck(detected=False, message=NOT_DETECTED_MESSAGE)

        threshold = expected.expected_amount * (1 - self._tolerance)
        if total >= threshold:
            log.info("Token payment detected: %s %s across %d transaction(s)",
                     total, expected.token_type.value, len(refs))
            return PaymentCheck(
                detected=True,
                tx_ref=refs[0],
                tx_refs=refs,
                received_amount=total,
                remaining=Decimal(0),
                message="Token payment detected",
            )

        remaining = expected.expected_amount - total
        log.info("Partial token payment: received %s, remaining %s", total, remaining)
        return PaymentCheck(
            detected=False,
            partial=True,
            tx_ref=refs[0],
            tx_refs=refs,
            received_amount=total,
            remaining=remaining,
            message=f"Partial payment received. Please send the remaining "
                    f"{remaining} {expected.token_type.value.upper()}.",
        )

    # ── Helpers ────────────────────────────────────────────

    @staticmethod
    def _fresh(
        signatures: list[SignatureInfo],
        expected: PendingPayment,
        now: datetime,
        ignore: Collection[str],
    ) -> list[SignatureInfo]:
        """Signatures inside the validity window, newest first."""
        oldest = expected.window_start(now)
        fresh: list[SignatureInfo] = []
        for sig in signatures:
            if sig.err is not None or sig.signature in ignore:
                continue
            block_dt = sig.block_datetime()
            if block_dt is None:
                continue
            if block_dt < oldest:
                log.debug("Skipping old transaction: %s, age: %ss",
                          sig.signature[:16], int((now - block_dt).total_seconds()))
                continue
            fresh.append(sig)
        return fresh


def _lamport_delta(tx: TransactionDetail, receiver: str) -> int | None:
    index = tx.account_index(receiver)
    if index is None:
        return None
    if index >= len(tx.pre_balances) or index >= len(tx.post_balances):
        return None
    return tx.post_balances[index] - tx.pre_balances[index]


def _token_delta(tx: TransactionDetail, token_account: str, mint: str) -> Decimal:
    index = tx.account_index(token_account)
    if index is None:
        return Decimal(0)

    def _amount(balances) -> tuple[int, int]:
        for bal in balances:
            if bal.account_index == index and bal.mint == mint:
                return bal.amount, bal.decimals
        return 0, -1

    pre, pre_decimals = _amount(tx.pre_token_balances)
    post, post_decimals = _amount(tx.post_token_balances)
    decimals = max(pre_decimals, post_decimals)
    if decimals < 0:
        return Decimal(0)
    return Decimal(post - pre) / (Decimal(10) ** decimals)
