"""Solana integration components."""

from omeganode_checkout.solana.matcher import LedgerPaymentMatcher
from omeganode_checkout.solana.rpc import SolanaRpcClient

__all__ = ["LedgerPaymentMatcher", "SolanaRpcClient"]
