"""Shared fixtures for omeganode_checkout tests."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from pytest_metadata.plugin import metadata_key

from omeganode_checkout.models.config import CheckoutConfig, SolanaConfig
from omeganode_checkout.policy.access import StoreAccessCodeRedeemer
from omeganode_checkout.policy.discounts import StoreDiscountResolver
from omeganode_checkout.policy.trial import StoreTrialGuard
from omeganode_checkout.pricing.engine import PriceEngine
from omeganode_checkout.settlement import SettlementFlow
from omeganode_checkout.solana.matcher import LedgerPaymentMatcher
from omeganode_checkout.storage.sqlite import SQLiteCheckoutStore

from tests.factories import NOW, RECEIVER
from tests.mocks import FakeLedger, MockMatcher, MockResolver

TEST_RECEIVER = "vpVbwh9bWRJcur5xSfpEHnAzQ74XeTpG9XDWVvzzSR8"

EXPLORER_BASE = "https://solscan.io"


def solscan_link(kind: str, id: str, label: str | None = None) -> str:
    """Build an HTML anchor to solscan for the report."""
    text = label or f"{id[:8]}...{id[-4:]}"
    return f'<a href="{EXPLORER_BASE}/{kind}/{id}" target="_blank">{text}</a>'


# ── Report metadata ──────────────────────────────────────────────


def pytest_configure(config):
    """Add receiver info to the HTML report Environment table."""
    meta = config.stash.setdefault(metadata_key, {})
    meta["Network"] = "Solana (mocked ledger)"
    meta["Receiver"] = RECEIVER
    meta["Test Receiver"] = TEST_RECEIVER


def pytest_html_results_summary(prefix, summary, postfix):
    """Inject receiver explorer links into the report summary."""
    prefix.append(
        '<div style="margin:8px 0;padding:10px;background:#f8f9fa;border:1px solid #dee2e6;'
        'border-radius:4px;font-family:monospace;font-size:13px;">'
        "<strong>Solana Explorer Links</strong><br/>"
        f'Receiver: {solscan_link("account", RECEIVER, RECEIVER)}<br/>'
        f'Test Receiver: {solscan_link("account", TEST_RECEIVER, TEST_RECEIVER)}'
        "</div>"
    )


def make_test_config(**overrides) -> CheckoutConfig:
    """Build a CheckoutConfig suitable for testing."""
    defaults = dict(
        log_level="debug",
        session_timeout=900,
        test_mode=False,
        db_path=":memory:",
        solana=SolanaConfig(rpc_url="http://127.0.0.1:9299"),
    )
    defaults.update(overrides)
    return CheckoutConfig(**defaults)


class Clock:
    """Controllable clock for flows."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def test_config():
    """Default CheckoutConfig for tests."""
    return make_test_config()


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteCheckoutStore."""
    s = SQLiteCheckoutStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def engine(test_config):
    return PriceEngine(test_config.pricing)


@pytest.fixture
def resolver(store):
    return StoreDiscountResolver(store)


@pytest.fixture
def trial_guard(store):
    return StoreTrialGuard(store)


@pytest.fixture
def access(store):
    return StoreAccessCodeRedeemer(store)


@pytest.fixture
def fake_ledger():
    return FakeLedger()


@pytest.fixture
def matcher(fake_ledger, test_config):
    return LedgerPaymentMatcher(
        fake_ledger,
        test_config.solana.token_mints,
        signature_limit=test_config.solana.signature_limit,
        amount_tolerance=test_config.solana.amount_tolerance,
    )


@pytest.fixture
def mock_matcher():
    return MockMatcher()


@pytest.fixture
def mock_resolver():
    return MockResolver()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def make_flow(test_config, engine, mock_resolver, mock_matcher, trial_guard, access, store, clock):
    """Factory for SettlementFlows wired to mocks and the in-memory store."""

    def _make(flow_id: str | None = None, resolver=None, matcher=None) -> SettlementFlow:
        r = resolver or mock_resolver
        return SettlementFlow(
            config=test_config,
            engine=engine,
            resolver=r,
            referrals=r,
            matcher=matcher or mock_matcher,
            trial_guard=trial_guard,
            access=access,
            store=store,
            clock=clock,
            flow_id=flow_id,
        )

    return _make
