"""Payment models: pending payments, ledger entries, verification results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

LAMPORTS_PER_SOL = 1_000_000_000


class TokenType(str, Enum):
    """Currencies accepted at checkout."""

    SOL = "sol"  # native token
    USDC = "usdc"  # SPL token
    USDT = "usdt"  # SPL token

    @property
    def is_native(self) -> bool:
        return self == TokenType.SOL


@dataclass(frozen=True)
class PendingPayment:
    """An expected incoming transfer, alive for one checkout session only."""

    receiver_address: str
    token_type: TokenType
    expected_amount: Decimal
    opened_at: datetime
    validity_window_seconds: int = 120

    def window_start(self, now: datetime) -> datetime:
        """Oldest block time still eligible to satisfy this payment."""
        return now - timedelta(seconds=self.validity_window_seconds)


# ---------------------------------------------------------------------------
# Ledger entries (normalized from JSON-RPC responses)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SignatureInfo:
    """One entry from getSignaturesForAddress."""

    signature: str
    block_time: int | None  # unix seconds
    err: object | None = None

    def block_datetime(self) -> datetime | None:
        if self.block_time is None:
            return None
        return datetime.fromtimestamp(self.block_time, tz=timezone.utc)


@dataclass(frozen=True)
class TokenBalance:
    """A pre/post token balance entry from transaction meta."""

    account_index: int
    mint: str
    amount: int  # raw base units
    decimals: int
    owner: str | None = None


@dataclass
class TransactionDetail:
    """The parts of getTransaction we need to diff balances."""

    signature: str
    err: object | None
    account_keys: list[str] = field(default_factory=list)
    pre_balances: list[int] = field(default_factory=list)  # lamports
    post_balances: list[int] = field(default_factory=list)
    pre_token_balances: list[TokenBalance] = field(default_factory=list)
    post_token_balances: list[TokenBalance] = field(default_factory=list)
    block_time: int | None = None

    @property
    def failed(self) -> bool:
        return self.err is not None

    def account_index(self, address: str) -> int | None:
        try:
            return self.account_keys.index(address)
        except ValueError:
            return None


# ---------------------------------------------------------------------------
# Verification result
# ---------------------------------------------------------------------------


@dataclass
class PaymentCheck:
    """Outcome of one explicit "I've sent payment" verification."""

    detected: bool
    partial: bool = False
    tx_ref: str | None = None
    received_amount: Decimal | None = None
    remaining: Decimal | None = None
    retryable: bool = False  # ledger error, ask again later
    expired: bool = False  # pending window closed, reopen to continue
    message: str = ""
    tx_refs: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "detected": self.detected,
            "partial": self.partial,
            "signature": self.tx_ref,
            "signatures": list(self.tx_refs),
            "amount": str(self.received_amount) if self.received_amount is not None else None,
            "remaining": str(self.remaining) if self.remaining is not None else None,
            "retryable": self.retryable,
            "expired": self.expired,
            "message": self.message,
        }
