"""Configuration models for the checkout core."""

from __future__ import annotations

from dataclasses import dataclass, field

# Solana mainnet mints for the supported SPL tokens
TOKEN_MINTS = {
    "usdc": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
    "usdt": "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
}


@dataclass
class PricingConfig:
    """Price tables. All amounts are whole USD per month."""

    shared_monthly_price: int = 300
    dedicated_tier_prices: dict[str, int] = field(
        default_factory=lambda: {
            "ryzen-7950x": 900,
            "epyc-9254": 1500,
            "epyc-9654": 2400,
        }
    )
    locations: list[str] = field(
        default_factory=lambda: ["frankfurt", "amsterdam", "new-york", "tokyo"]
    )
    commitment_discounts: dict[str, float] = field(
        default_factory=lambda: {
            "daily": 0.0,
            "monthly": 0.0,
            "3mo": 0.08,
            "6mo": 0.12,
            "1yr": 0.20,
        }
    )
    stake_package_price: int = 350
    stake_discount_3mo: float = 0.10  # only at the 3-month tier
    shreds_addon_price: int = 500
    rent_rate_shared: float = 0.15
    rent_rate_dedicated: float = 0.10
    referral_rate: float = 0.10
    referral_commission_rate: float = 0.10


@dataclass
class SolanaConfig:
    """Ledger query and receiver configuration."""

    rpc_url: str = "https://api.mainnet-beta.solana.com"
    receivers: dict[str, str] = field(
        default_factory=lambda: {
            "sol": "8b6cCUhEYL2B7UMC15phYkf9y9GEs3cUV2UQ4zECHroA",
            "usdc": "8b6cCUhEYL2B7UMC15phYkf9y9GEs3cUV2UQ4zECHroA",
            "usdt": "8b6cCUhEYL2B7UMC15phYkf9y9GEs3cUV2UQ4zECHroA",
        }
    )
    test_receiver: str = "vpVbwh9bWRJcur5xSfpEHnAzQ74XeTpG9XDWVvzzSR8"
    token_mints: dict[str, str] = field(default_factory=lambda: dict(TOKEN_MINTS))
    signature_limit: int = 10
    tx_window_seconds: int = 120
    amount_tolerance: float = 0.01  # 1% short still counts as paid
    request_timeout: int = 15  # seconds per RPC call


@dataclass
class ApiConfig:
    host: str = "127.0.0.1"
    port: int = 8787


@dataclass
class CheckoutConfig:
    """Complete checkout configuration."""

    # Checkout
    log_level: str = "info"
    session_timeout: int = 900  # seconds a pending payment stays checkable
    test_mode: bool = False

    # Storage
    db_path: str = "~/.omeganode_checkout/checkout.db"

    solana: SolanaConfig = field(default_factory=SolanaConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    def receiver_for(self, token_type: str) -> str | None:
        if self.test_mode:
            return self.solana.test_receiver
        return self.solana.receivers.get(token_type.lower())
