"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from pathlib import Path

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from omeganode_checkout.models.config import CheckoutConfig

_TRUTHY = {"1", "true", "yes", "on"}


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "OMEGANODE_",
) -> CheckoutConfig:
    """Load checkout configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (OMEGANODE_RPC_URL, etc.)
        2. TOML config file
        3. Defaults from CheckoutConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cfg = CheckoutConfig()

    # ── Checkout section ───────────────────────────────────
    checkout = raw.get("checkout", {})
    if v := checkout.get("log_level"):
        cfg.log_level = str(v)
    if (v := checkout.get("session_timeout")) is not None:
        cfg.session_timeout = int(v)
    if "test_mode" in checkout:
        cfg.test_mode = bool(checkout["test_mode"])

    # ── Solana section ─────────────────────────────────────
    solana = raw.get("solana", {})
    if v := solana.get("rpc_url"):
        cfg.solana.rpc_url = str(v)
    if v := solana.get("receivers"):
        cfg.solana.receivers.update({k.lower(): str(a) for k, a in v.items()})
    if v := solana.get("test_receiver"):
        cfg.solana.test_receiver = str(v)
    if v := solana.get("token_mints"):
        cfg.solana.token_mints.update({k.lower(): str(m) for k, m in v.items()})
    if (v := solana.get("signature_limit")) is not None:
        cfg.solana.signature_limit = int(v)
    if (v := solana.get("tx_window_seconds")) is not None:
        cfg.solana.tx_window_seconds = int(v)
    if (v := solana.get("amount_tolerance")) is not None:
        cfg.solana.amount_tolerance = float(v)
    if (v := solana.get("request_timeout")) is not None:
        cfg.solana.request_timeout = int(v)

    # ── Pricing section ────────────────────────────────────
    pricing = raw.get("pricing", {})
    if (v := pricing.get("shared_monthly_price")) is not None:
        cfg.pricing.shared_monthly_price = int(v)
    if v := pricing.get("dedicated_tier_prices"):
        cfg.pricing.dedicated_tier_prices = {k: int(p) for k, p in v.items()}
    if v := pricing.get("locations"):
        cfg.pricing.locations = [str(loc) for loc in v]
    if v := pricing.get("commitment_discounts"):
        cfg.pricing.commitment_discounts.update({k: float(d) for k, d in v.items()})
    if (v := pricing.get("stake_package_price")) is not None:
        cfg.pricing.stake_package_price = int(v)
    if (v := pricing.get("stake_discount_3mo")) is not None:
        cfg.pricing.stake_discount_3mo = float(v)
    if (v := pricing.get("shreds_addon_price")) is not None:
        cfg.pricing.shreds_addon_price = int(v)
    if (v := pricing.get("rent_rate_shared")) is not None:
        cfg.pricing.rent_rate_shared = float(v)
    if (v := pricing.get("rent_rate_dedicated")) is not None:
        cfg.pricing.rent_rate_dedicated = float(v)
    if (v := pricing.get("referral_rate")) is not None:
        cfg.pricing.referral_rate = float(v)
    if (v := pricing.get("referral_commission_rate")) is not None:
        cfg.pricing.referral_commission_rate = float(v)

    # ── Storage section ────────────────────────────────────
    storage = raw.get("storage", {})
    if v := storage.get("db_path"):
        cfg.db_path = str(v)

    # ── API section ────────────────────────────────────────
    api = raw.get("api", {})
    if v := api.get("host"):
        cfg.api.host = str(v)
    if (v := api.get("port")) is not None:
        cfg.api.port = int(v)

    # ── Environment variable overrides (highest priority) ──
    if rpc := os.environ.get(f"{env_prefix}RPC_URL"):
        cfg.solana.rpc_url = rpc
    if db := os.environ.get(f"{env_prefix}DB_PATH"):
        cfg.db_path = db
    if receiver := os.environ.get(f"{env_prefix}RECEIVER"):
        cfg.solana.receivers = {k: receiver for k in cfg.solana.receivers}
    if level := os.environ.get(f"{env_prefix}LOG_LEVEL"):
        cfg.log_level = level
    if test_mode := os.environ.get(f"{env_prefix}TEST_MODE"):
        cfg.test_mode = test_mode.strip().lower() in _TRUTHY

    # Expand ~ in paths
    if cfg.db_path != ":memory:":
        cfg.db_path = str(Path(cfg.db_path).expanduser())

    return cfg
