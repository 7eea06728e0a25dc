"""Checkout service - wires all components together."""

from __future__ import annotations

import logging

from omeganode_checkout.models.config import CheckoutConfig
from omeganode_checkout.policy.access import StoreAccessCodeRedeemer
from omeganode_checkout.policy.discounts import StoreDiscountResolver
from omeganode_checkout.policy.trial import StoreTrialGuard
from omeganode_checkout.pricing.engine import PriceEngine
from omeganode_checkout.settlement import SettlementFlow
from omeganode_checkout.solana.matcher import LedgerPaymentMatcher
from omeganode_checkout.solana.rpc import SolanaRpcClient
from omeganode_checkout.storage.sqlite import SQLiteCheckoutStore

log = logging.getLogger(__name__)


class CheckoutService:
    """Owns the store, the ledger client and the authorities built on them.

    One instance serves many independent SettlementFlows; each flow gets
    its own state but shares these components.
    """

    def __init__(self, cfg: CheckoutConfig) -> None:
        self._cfg = cfg

        self.store = SQLiteCheckoutStore(cfg.db_path)
        self.ledger = SolanaRpcClient(cfg.solana.rpc_url, cfg.solana.request_timeout)
        self.engine = PriceEngine(cfg.pricing)
        self.resolver = StoreDiscountResolver(self.store)
        self.trial_guard = StoreTrialGuard(self.store)
        self.access = StoreAccessCodeRedeemer(self.store)
        self.matcher = LedgerPaymentMatcher(
            self.ledger,
            cfg.solana.token_mints,
            signature_limit=cfg.solana.signature_limit,
            amount_tolerance=cfg.solana.amount_tolerance,
        )

    @property
    def config(self) -> CheckoutConfig:
        return self._cfg

    async def start(self) -> None:
        log.info("Starting checkout service")
        log.info("  RPC: %s", self._cfg.solana.rpc_url)
        log.info("  DB: %s", self._cfg.db_path)
        if self._cfg.test_mode:
            log.warning("  Test mode: payments go to %s", self._cfg.solana.test_receiver)
        await self.store.initialize()
        await self.store.log_activity("service_started", "Checkout service started")

    async def stop(self) -> None:
        await self.store.log_activity("service_stopped", "Checkout service stopped")
        await self.ledger.close()
        await self.store.close()
        log.info("Checkout service shut down cleanly")

    def new_flow(self, flow_id: str | None = None) -> SettlementFlow:
        return SettlementFlow(
            config=self._cfg,
            engine=self.engine,
            resolver=self.resolver,
            referrals=self.resolver,
            matcher=self.matcher,
            trial_guard=self.trial_guard,
            access=self.access,
            store=self.store,
            flow_id=flow_id,
        )
