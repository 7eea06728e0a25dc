"""CLI entry point for the omeganode checkout service."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import click

from omeganode_checkout.api.http import run_server
from omeganode_checkout.config import load_config
from omeganode_checkout.errors import ValidationError
from omeganode_checkout.models.config import CheckoutConfig
from omeganode_checkout.models.payment import PendingPayment, TokenType
from omeganode_checkout.models.plan import CommitmentTerm, PlanSelection, ServerClass
from omeganode_checkout.models.pricing import DiscountKind, DiscountScope
from omeganode_checkout.policy.access import DURATION_HOURS, generate_access_code
from omeganode_checkout.pricing.engine import PriceEngine
from omeganode_checkout.service import CheckoutService
from omeganode_checkout.solana.matcher import LedgerPaymentMatcher
from omeganode_checkout.solana.rpc import SolanaRpcClient
from omeganode_checkout.storage.sqlite import SQLiteCheckoutStore


def _short(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}" if len(address) > 12 else address


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _open_store(cfg: CheckoutConfig) -> SQLiteCheckoutStore:
    return SQLiteCheckoutStore(cfg.db_path)


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """omeganode-checkout - plan pricing and Solana payment settlement."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Service ────────────────────────────────────────────


@cli.command()
@click.option("--host", default=None, help="Override [api] host")
@click.option("--port", type=int, default=None, help="Override [api] port")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the HTTP API."""
    cfg = load_config(ctx.obj["config_path"])
    if host:
        cfg.api.host = host
    if port:
        cfg.api.port = port

    click.echo(f"Starting omeganode-checkout API on {cfg.api.host}:{cfg.api.port}")

    async def _serve():
        service = CheckoutService(cfg)
        runner = await run_server(service)
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()
            await service.stop()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        click.echo("Stopped.")


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the database schema."""
    cfg = load_config(ctx.obj["config_path"])

    async def _init():
        store = _open_store(cfg)
        await store.initialize()
        await store.close()

    asyncio.run(_init())
    click.echo(f"Database ready: {cfg.db_path}")


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show checkout configuration."""
    cfg = load_config(ctx.obj["config_path"])
    click.echo(f"RPC URL:      {cfg.solana.rpc_url}")
    click.echo(f"Test mode:    {cfg.test_mode}")
    for token in TokenType:
        receiver = cfg.receiver_for(token.value) or "(not set)"
        click.echo(f"Receiver {token.value:4s}: {receiver}")
    click.echo(f"Tx window:    {cfg.solana.tx_window_seconds}s")
    click.echo(f"Session:      {cfg.session_timeout}s")
    click.echo(f"DB path:      {cfg.db_path}")
    click.echo(f"API:          {cfg.api.host}:{cfg.api.port}")


@cli.command()
@click.option("--server", "server_class", type=click.Choice([s.value for s in ServerClass]),
              default=ServerClass.SHARED.value, help="Server class")
@click.option("--term", type=click.Choice([t.value for t in CommitmentTerm]),
              default=CommitmentTerm.MONTHLY.value, help="Commitment term")
@click.option("--tier", default=None, help="Dedicated hardware tier")
@click.option("--location", default=None, help="Dedicated server location")
@click.option("--stake", type=int, default=0, help="Stake packages (dedicated only)")
@click.option("--shreds", is_flag=True, help="Add the shreds add-on (dedicated only)")
@click.option("--rent", is_flag=True, help="Enable rent sharing")
@click.option("--json", "as_json", is_flag=True, help="Print the breakdown as JSON")
@click.pass_context
def quote(
    ctx: click.Context,
    server_class: str,
    term: str,
    tier: str | None,
    location: str | None,
    stake: int,
    shreds: bool,
    rent: bool,
    as_json: bool,
) -> None:
    """Price a plan without touching the database."""
    cfg = load_config(ctx.obj["config_path"])
    selection = PlanSelection(
        server_class=ServerClass(server_class),
        commitment_term=CommitmentTerm(term),
        hardware_tier=tier,
        location=location,
        stake_packages=stake,
        shreds_addon=shreds,
        rent_sharing=rent,
    )
    try:
        breakdown = PriceEngine(cfg.pricing).compute(selection)
    except ValidationError as e:
        _fail(str(e))
        return

    if as_json:
        click.echo(json.dumps(breakdown.to_dict(), indent=2))
        return

    click.echo(f"Base server:  ${breakdown.base_server_price}")
    if breakdown.commitment_discount:
        click.echo(f"Commitment:   -{breakdown.commitment_discount:.0%}")
    click.echo(f"Server:       ${breakdown.server_price}")
    click.echo(f"Add-ons:      ${breakdown.addons_price}")
    click.echo(f"Rent:         ${breakdown.rent_surcharge}")
    click.echo(f"Total:        ${breakdown.final_total}/month")
    if breakdown.original_total_for_display != breakdown.final_total:
        click.echo(f"  (was ${breakdown.original_total_for_display})")
    if breakdown.term_months > 1:
        click.echo(f"Due now:      ${breakdown.term_total} for {breakdown.term_months} months")


@cli.command("verify-payment")
@click.option("--token", "token_type", type=click.Choice([t.value for t in TokenType]),
              required=True, help="Payment currency")
@click.option("--amount", required=True, help="Expected amount")
@click.option("--receiver", default=None, help="Override receiver address")
@click.pass_context
def verify_payment(ctx: click.Context, token_type: str, amount: str, receiver: str | None) -> None:
    """Check the receiver's recent transactions for a payment."""
    cfg = load_config(ctx.obj["config_path"])
    try:
        expected = Decimal(amount)
    except InvalidOperation:
        _fail(f"invalid amount: {amount}")
        return

    token = TokenType(token_type)
    address = receiver or cfg.receiver_for(token.value)
    if not address:
        _fail(f"no receiver configured for {token.value}")
        return

    async def _verify():
        ledger = SolanaRpcClient(cfg.solana.rpc_url, cfg.solana.request_timeout)
        matcher = LedgerPaymentMatcher(
            ledger, cfg.solana.token_mints,
            signature_limit=cfg.solana.signature_limit,
            amount_tolerance=cfg.solana.amount_tolerance,
        )
        now = datetime.now(timezone.utc)
        pending = PendingPayment(
            receiver_address=address,
            token_type=token,
            expected_amount=expected,
            opened_at=now,
            validity_window_seconds=cfg.solana.tx_window_seconds,
        )
        try:
            return await matcher.verify(pending, now=now)
        finally:
            await ledger.close()

    click.echo(f"Checking {_short(address)} for {expected} {token.value.upper()}...")
    check = asyncio.run(_verify())
    click.echo(check.message)
    if check.tx_ref:
        click.echo(f"  Signature: {check.tx_ref}")
    if check.received_amount is not None:
        click.echo(f"  Received:  {check.received_amount}")
    if check.partial and check.remaining is not None:
        click.echo(f"  Remaining: {check.remaining}")
    if not check.detected or check.partial:
        sys.exit(2)


# ── Codes ──────────────────────────────────────────────


@cli.group()
def codes():
    """Manage discount, access and referral codes."""
    pass


@codes.command("add-discount")
@click.argument("code")
@click.option("--kind", type=click.Choice([k.value for k in DiscountKind]),
              default=DiscountKind.PERCENTAGE.value, help="Discount type")
@click.option("--value", type=float, required=True, help="Percent (0-100) or flat amount")
@click.option("--scope", type=click.Choice([s.value for s in DiscountScope]),
              default=DiscountScope.BOTH.value, help="Plans the code applies to")
@click.option("--max-uses", type=int, default=None, help="Usage cap")
@click.option("--expires", default=None, help="Expiry (ISO 8601)")
@click.pass_context
def codes_add_discount(
    ctx: click.Context,
    code: str,
    kind: str,
    value: float,
    scope: str,
    max_uses: int | None,
    expires: str | None,
) -> None:
    """Create or replace a discount code."""
    cfg = load_config(ctx.obj["config_path"])
    expires_at = None
    if expires:
        try:
            expires_at = datetime.fromisoformat(expires)
        except ValueError:
            _fail(f"invalid expiry: {expires}")
            return
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

    async def _add():
        store = _open_store(cfg)
        await store.initialize()
        try:
            await store.add_discount_code(
                code, DiscountKind(kind), value, DiscountScope(scope),
                expires_at=expires_at, max_uses=max_uses,
            )
        finally:
            await store.close()

    asyncio.run(_add())
    click.echo(f"Discount code {code.upper()}: {kind} {value} ({scope})")


@codes.command("add-access")
@click.option("--duration", type=click.Choice(list(DURATION_HOURS)), default="1_day",
              help="Access duration")
@click.option("--code", default=None, help="Code to issue (generated when omitted)")
@click.pass_context
def codes_add_access(ctx: click.Context, duration: str, code: str | None) -> None:
    """Issue a single-use access code."""
    cfg = load_config(ctx.obj["config_path"])
    code = code or generate_access_code()

    async def _add():
        store = _open_store(cfg)
        await store.initialize()
        try:
            await store.add_access_code(code, duration, DURATION_HOURS[duration])
        finally:
            await store.close()

    asyncio.run(_add())
    click.echo(f"Access code {code.upper()} ({duration})")


@codes.command("add-referral")
@click.argument("code")
@click.argument("referrer_id")
@click.pass_context
def codes_add_referral(ctx: click.Context, code: str, referrer_id: str) -> None:
    """Register a referral code for a referrer."""
    cfg = load_config(ctx.obj["config_path"])

    async def _add():
        store = _open_store(cfg)
        await store.initialize()
        try:
            await store.add_referral_code(code, referrer_id)
        finally:
            await store.close()

    asyncio.run(_add())
    click.echo(f"Referral code {code.upper()} -> {referrer_id}")


# ── History ────────────────────────────────────────────


@cli.command()
@click.option("--limit", type=int, default=20, help="Number of entries")
@click.pass_context
def activity(ctx: click.Context, limit: int) -> None:
    """Show recent checkout activity."""
    cfg = load_config(ctx.obj["config_path"])

    async def _activity():
        store = _open_store(cfg)
        await store.initialize()
        try:
            return await store.get_recent_activity(limit)
        finally:
            await store.close()

    entries = asyncio.run(_activity())
    if not entries:
        click.echo("No activity recorded.")
        return
    for e in entries:
        amount = f" ${e.amount}" if e.amount is not None else ""
        click.echo(f"  {e.created_at[:19]}  {e.event_type:16s}{amount}  {e.message}")


@cli.command()
@click.pass_context
def orders(ctx: click.Context) -> None:
    """List finalized orders."""
    cfg = load_config(ctx.obj["config_path"])

    async def _orders():
        store = _open_store(cfg)
        await store.initialize()
        try:
            return await store.get_all_orders()
        finally:
            await store.close()

    records = asyncio.run(_orders())
    if not records:
        click.echo("No orders.")
        return
    for o in records:
        click.echo(f"  {o.order_number}  {o.reference_kind:8s} ${o.final_total:<6d} "
                   f"ref={o.reference[:24]}")
