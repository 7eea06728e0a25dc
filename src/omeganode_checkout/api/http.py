"""HTTP API - stateless JSON endpoints over the checkout authorities."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from aiohttp import web

from omeganode_checkout.errors import CheckoutError, ValidationError
from omeganode_checkout.models.payment import PendingPayment, TokenType
from omeganode_checkout.models.plan import PlanSelection, ServerClass
from omeganode_checkout.policy.trial import client_origin, device_fingerprint
from omeganode_checkout.service import CheckoutService

log = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("service", CheckoutService)


# ── Request helpers ────────────────────────────────────


async def _body(request: web.Request) -> dict:
    try:
        data = await request.json()
    except json.JSONDecodeError as e:
        raise ValidationError(f"invalid JSON body: {e.msg}") from e
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def _selection(data: dict) -> PlanSelection:
    raw = data.get("selection")
    if not isinstance(raw, dict):
        raise ValidationError("selection is required", field="selection")
    try:
        return PlanSelection.from_dict(raw)
    except (KeyError, ValueError, TypeError) as e:
        raise ValidationError(f"invalid selection: {e}", field="selection") from e


def _server_class(value: object) -> ServerClass:
    try:
        return ServerClass(str(value).lower())
    except ValueError:
        raise ValidationError(f"unknown server class: {value}", field="serverClass") from None


def _token_type(value: object) -> TokenType:
    try:
        return TokenType(str(value).lower())
    except ValueError:
        raise ValidationError(f"unsupported token type: {value}", field="tokenType") from None


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ValidationError as e:
        log.info("%s %s rejected: %s", request.method, request.path, e)
        return web.json_response({"error": str(e), "field": e.field}, status=400)
    except CheckoutError as e:
        log.error("%s %s failed: %s", request.method, request.path, e)
        return web.json_response({"error": str(e)}, status=500)
    except Exception:
        log.exception("Unhandled error in %s %s", request.method, request.path)
        return web.json_response({"error": "internal error"}, status=500)


# ── Handlers ───────────────────────────────────────────


async def handle_quote(request: web.Request) -> web.Response:
    """Price a selection, optionally with a discount and referral code."""
    svc = request.app[SERVICE_KEY]
    data = await _body(request)
    selection = _selection(data)

    discount = None
    term = None
    if code := data.get("discountCode"):
        if not svc.engine.allows_code(selection.commitment_term):
            discount = {
                "valid": False, "code": str(code).upper(),
                "errorMessage": "Discount codes cannot be combined with a commitment discount",
            }
        else:
            result = await svc.resolver.validate(str(code), selection.server_class)
            discount = result.to_dict()
            term = result.term if result.valid else None

    referral = None
    referral_active = False
    if code := data.get("referralCode"):
        result = await svc.resolver.validate_referral(str(code), data.get("referredId"))
        referral_active = result.valid
        referral = {"valid": result.valid, "code": result.code,
                    "errorMessage": result.error_reason}

    breakdown = svc.engine.compute(selection, applied_discount=term,
                                   referral_active=referral_active)
    return web.json_response({
        "breakdown": breakdown.to_dict(),
        "discount": discount,
        "referral": referral,
    })


async def handle_validate_discount(request: web.Request) -> web.Response:
    svc = request.app[SERVICE_KEY]
    data = await _body(request)
    code = data.get("code")
    if not code:
        raise ValidationError("code is required", field="code")
    server_class = _server_class(data.get("serverClass", ServerClass.SHARED.value))
    result = await svc.resolver.validate(str(code), server_class)
    return web.json_response(result.to_dict())


async def handle_validate_trial(request: web.Request) -> web.Response:
    """Consume a trial for the caller if none of its keys has used one."""
    svc = request.app[SERVICE_KEY]
    data = await _body(request)
    operator_id = data.get("operatorId") or data.get("discordId")
    if not operator_id:
        raise ValidationError("operatorId is required", field="operatorId")

    origin = client_origin(request.headers)
    fingerprint = device_fingerprint(data.get("fingerprint"), request.headers, origin)
    decision = await svc.trial_guard.try_consume(str(operator_id), origin, fingerprint)
    return web.json_response(decision.to_dict())


async def handle_verify_payment(request: web.Request) -> web.Response:
    """One-shot check of recent receiver activity for an expected amount."""
    svc = request.app[SERVICE_KEY]
    cfg = svc.config
    data = await _body(request)

    token_type = _token_type(data.get("tokenType"))
    try:
        expected = Decimal(str(data.get("expectedAmount")))
    except InvalidOperation:
        raise ValidationError("expectedAmount must be a number", field="expectedAmount") from None
    if not expected.is_finite() or expected <= 0:
        raise ValidationError("expectedAmount must be a positive number", field="expectedAmount")

    if data.get("isTestMode") or cfg.test_mode:
        receiver = cfg.solana.test_receiver
    else:
        receiver = cfg.receiver_for(token_type.value)
    if not receiver:
        raise ValidationError(f"no receiver configured for {token_type.value}",
                              field="tokenType")

    now = datetime.now(timezone.utc)
    pending = PendingPayment(
        receiver_address=receiver,
        token_type=token_type,
        expected_amount=expected,
        opened_at=now,
        validity_window_seconds=cfg.solana.tx_window_seconds,
    )
    check = await svc.matcher.verify(pending, now=now)
    body = check.to_dict()
    body["verified"] = check.detected
    return web.json_response(body)


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


# ── App factory ────────────────────────────────────────


def create_app(service: CheckoutService) -> web.Application:
    """Build the aiohttp application. The caller owns the service lifecycle."""
    app = web.Application(middlewares=[error_middleware])
    app[SERVICE_KEY] = service
    app.router.add_get("/health", handle_health)
    app.router.add_post("/api/quote", handle_quote)
    app.router.add_post("/api/discounts/validate", handle_validate_discount)
    app.router.add_post("/api/trials/validate", handle_validate_trial)
    app.router.add_post("/api/payments/verify", handle_verify_payment)
    return app


async def run_server(service: CheckoutService) -> web.AppRunner:
    """Start the service and serve the API. Returns the runner for cleanup."""
    await service.start()
    app = create_app(service)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, service.config.api.host, service.config.api.port)
    await site.start()
    log.info("API listening on http://%s:%d", service.config.api.host, service.config.api.port)
    return runner
