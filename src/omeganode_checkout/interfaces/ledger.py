"""LedgerClient protocol - read-only queries against a Solana RPC endpoint."""

from __future__ import annotations

from typing import Protocol

from omeganode_checkout.models.payment import SignatureInfo, TransactionDetail


class LedgerClient(Protocol):
    """Idempotent, side-effect-free ledger reads.

    Implementations raise LedgerError on transport or RPC failure.
    """

    async def get_signatures(self, address: str, limit: int = 10) -> list[SignatureInfo]:
        """Most recent signatures touching an address, newest first."""
        ...

    async def get_transaction(self, signature: str) -> TransactionDetail | None:
        """Full transaction detail, or None if the node does not have it yet."""
        ...

    async def find_token_account(self, owner: str, mint: str) -> str | None:
        """The owner's token account for a mint, or None if it has none."""
        ...
