"""TrialGuard: one trial per account, network origin and device."""

from __future__ import annotations

import asyncio

import pytest

from omeganode_checkout.errors import ValidationError
from omeganode_checkout.models.records import TrialBlock
from omeganode_checkout.policy.trial import client_origin, device_fingerprint


async def test_first_trial_allowed(trial_guard, store):
    decision = await trial_guard.try_consume("discord-1", "203.0.113.7", "fp-aaa")

    assert decision.allowed
    assert decision.blocking_key is None
    assert await store.count_trials() == 1


@pytest.mark.parametrize(
    "second, reason",
    [
        (("discord-1", "198.51.100.1", "fp-new"), TrialBlock.IDENTITY),
        (("discord-2", "203.0.113.7", "fp-new"), TrialBlock.ORIGIN),
        (("discord-2", "198.51.100.1", "fp-aaa"), TrialBlock.DEVICE),
    ],
)
async def test_any_shared_key_denies(trial_guard, store, second, reason):
    assert (await trial_guard.try_consume("discord-1", "203.0.113.7", "fp-aaa")).allowed

    decision = await trial_guard.try_consume(*second)

    assert not decision.allowed
    assert decision.blocking_key == reason
    assert decision.message
    assert await store.count_trials() == 1


async def test_identity_reported_before_origin_and_device(trial_guard):
    await trial_guard.try_consume("discord-1", "203.0.113.7", "fp-aaa")

    decision = await trial_guard.try_consume("discord-1", "203.0.113.7", "fp-aaa")

    assert decision.blocking_key == TrialBlock.IDENTITY


async def test_origin_reported_before_device(trial_guard):
    await trial_guard.try_consume("discord-1", "203.0.113.7", "fp-aaa")

    decision = await trial_guard.try_consume("discord-2", "203.0.113.7", "fp-aaa")

    assert decision.blocking_key == TrialBlock.ORIGIN


async def test_unknown_origin_never_blocks(trial_guard):
    assert (await trial_guard.try_consume("discord-1", None, "fp-aaa")).allowed
    assert (await trial_guard.try_consume("discord-2", None, "fp-bbb")).allowed


async def test_denied_request_records_nothing(trial_guard, store):
    await trial_guard.try_consume("discord-1", "203.0.113.7", "fp-aaa")
    await trial_guard.try_consume("discord-2", "203.0.113.7", "fp-bbb")

    # fp-bbb was never recorded, so a third identity on a new network may use it
    decision = await trial_guard.try_consume("discord-3", "192.0.2.55", "fp-bbb")
    assert decision.allowed
    assert await store.count_trials() == 2


async def test_concurrent_requests_allow_exactly_one(trial_guard, store):
    decisions = await asyncio.gather(*[
        trial_guard.try_consume("discord-race", f"10.0.0.{i}", f"fp-{i}")
        for i in range(10)
    ])

    assert sum(d.allowed for d in decisions) == 1
    assert await store.count_trials() == 1


async def test_concurrent_requests_sharing_device(trial_guard, store):
    decisions = await asyncio.gather(*[
        trial_guard.try_consume(f"discord-{i}", f"10.0.0.{i}", "fp-shared")
        for i in range(10)
    ])

    assert sum(d.allowed for d in decisions) == 1
    denied = [d for d in decisions if not d.allowed]
    assert all(d.blocking_key == TrialBlock.DEVICE for d in denied)


async def test_grant_logged(trial_guard, store):
    await trial_guard.try_consume("discord-1", None, "fp-aaa")

    activity = await store.get_recent_activity()
    assert activity[0].event_type == "trial_granted"


async def test_missing_identity_rejected(trial_guard):
    with pytest.raises(ValidationError):
        await trial_guard.try_consume("  ", "203.0.113.7", "fp-aaa")
    with pytest.raises(ValidationError):
        await trial_guard.try_consume("discord-1", "203.0.113.7", "")


# ── Request helpers ───────────────────────────────────────────────


def test_client_origin_header_priority():
    headers = {
        "X-Forwarded-For": "203.0.113.7, 10.0.0.1",
        "X-Real-IP": "198.51.100.1",
        "CF-Connecting-IP": "192.0.2.1",
    }
    assert client_origin(headers) == "203.0.113.7"
    assert client_origin({"x-real-ip": "198.51.100.1", "cf-connecting-ip": "192.0.2.1"}) == "198.51.100.1"
    assert client_origin({"cf-connecting-ip": "192.0.2.1"}) == "192.0.2.1"


def test_client_origin_unknown():
    assert client_origin({}) is None
    assert client_origin({"x-forwarded-for": "unknown"}) is None


def test_supplied_fingerprint_used_as_is():
    assert device_fingerprint("  fp-client  ") == "fp-client"


def test_fallback_fingerprint_is_stable_and_header_sensitive():
    headers = {"User-Agent": "Mozilla/5.0", "Accept-Language": "en-US"}
    a = device_fingerprint(None, headers, "203.0.113.7")
    b = device_fingerprint("unknown", headers, "203.0.113.7")
    c = device_fingerprint(None, {**headers, "User-Agent": "curl/8.0"}, "203.0.113.7")

    assert a.startswith("fallback:")
    assert a == b
    assert a != c
