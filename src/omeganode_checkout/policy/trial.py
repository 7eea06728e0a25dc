"""Trial guard - one free trial per account, network origin and device."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping

from omeganode_checkout.errors import ValidationError
from omeganode_checkout.interfaces.store import CheckoutStore
from omeganode_checkout.models.records import TRIAL_DENIAL_MESSAGES, TrialDecision

log = logging.getLogger(__name__)

# Proxy headers in trust order
_ORIGIN_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")

# Request headers used for the fallback fingerprint
_FINGERPRINT_HEADERS = ("user-agent", "accept-language", "accept-encoding", "sec-ch-ua-platform")


def client_origin(headers: Mapping[str, str]) -> str | None:
    """Best-effort client IP from proxy headers. None when unknown."""
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in _ORIGIN_HEADERS:
        value = lowered.get(name)
        if value:
            first = value.split(",")[0].strip()
            if first and first != "unknown":
                return first
    return None


def device_fingerprint(
    supplied: str | None,
    headers: Mapping[str, str] | None = None,
    network_origin: str | None = None,
) -> str:
    """Return the client's fingerprint, or a coarse composite fallback.

    The fallback hashes a handful of request headers plus the origin. Many
    devices share those values and a client can change them freely, so it
    reduces trial abuse but does not eliminate it.
    """
    if supplied and supplied.strip() and supplied.strip() != "unknown":
        return supplied.strip()

    lowered = {k.lower(): v for k, v in (headers or {}).items()}
    parts = [lowered.get(name, "") for name in _FINGERPRINT_HEADERS]
    parts.append(network_origin or "")
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return f"fallback:{digest[:32]}"


class StoreTrialGuard:
    """Decides first-use trial eligibility across three identity keys.

    The check and the record happen in one conditional insert in the store,
    backed by a UNIQUE index on each key, so concurrent submissions from the
    same identity cannot both be allowed.
    """

    def __init__(self, store: CheckoutStore) -> None:
        self._store = store

    async def try_consume(
        self,
        operator_id: str,
        network_origin: str | None,
        device_fingerprint: str,
    ) -> TrialDecision:
        operator_id = (operator_id or "").strip()
        if not operator_id:
            raise ValidationError("an account identifier is required for a trial",
                                  field="operator_id")
        if not device_fingerprint:
            raise ValidationError("a device fingerprint is required for a trial",
                                  field="device_fingerprint")

        log.info(
            "Validating trial: operator=%s origin=%s device=%s...",
            operator_id, network_origin or "unknown", device_fingerprint[:20],
        )
        block = await self._store.consume_trial(operator_id, network_origin, device_fingerprint)
        if block is not None:
            log.info("Trial denied for %s: %s", operator_id, block.value)
            return TrialDecision(
                allowed=False, blocking_key=block, message=TRIAL_DENIAL_MESSAGES[block],
            )

        await self._store.log_activity("trial_granted", f"Trial granted to {operator_id}",
                                       reference=operator_id)
        log.info("Trial approved for %s", operator_id)
        return TrialDecision(allowed=True, message="Trial approved")
