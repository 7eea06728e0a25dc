"""SQLiteCheckoutStore: exactly-once finalization and conditional writes."""

from __future__ import annotations

import asyncio

from omeganode_checkout.models.pricing import DiscountKind
from omeganode_checkout.models.records import OrderRecord
from omeganode_checkout.storage.sqlite import SQLiteCheckoutStore

from tests.factories import shared_plan


def make_order(
    order_number: str = "ON-TEST000001",
    flow_id: str = "flow-1",
    reference: str = "sig1",
    payment_refs: list[str] | None = None,
) -> OrderRecord:
    return OrderRecord(
        order_number=order_number,
        flow_id=flow_id,
        selection=shared_plan().to_dict(),
        final_total=300,
        reference_kind="payment",
        reference=reference,
        token_type="usdc",
        received_amount="300",
        payment_refs=payment_refs if payment_refs is not None else [reference],
    )


async def test_finalize_order(store):
    result = await store.finalize_order(make_order())

    assert result.accepted
    assert not result.duplicate
    saved = await store.get_order_by_reference("sig1")
    assert saved.order_number == "ON-TEST000001"
    assert saved.selection["server_class"] == "shared"
    assert saved.received_amount == "300"


async def test_same_flow_finalize_is_noop(store):
    await store.finalize_order(make_order())

    result = await store.finalize_order(make_order())

    assert result.accepted
    assert result.duplicate
    assert len(await store.get_all_orders()) == 1


async def test_other_flow_same_reference_rejected(store):
    await store.finalize_order(make_order())

    result = await store.finalize_order(
        make_order(order_number="ON-TEST000002", flow_id="flow-2"),
    )

    assert not result.accepted
    assert "ON-TEST000001" in result.error


async def test_split_payment_claims_every_signature(store):
    await store.finalize_order(make_order(reference="sigA", payment_refs=["sigA", "sigB"]))

    # sigB was part of the first payment; it cannot fund a second order
    result = await store.finalize_order(
        make_order(order_number="ON-TEST000002", flow_id="flow-2",
                   reference="sigC", payment_refs=["sigC", "sigB"]),
    )

    assert not result.accepted
    assert await store.get_order_by_reference("sigC") is None
    assert len(await store.get_all_orders()) == 1


async def test_concurrent_finalize_single_winner(store):
    orders = [
        make_order(order_number=f"ON-RACE{i:06d}", flow_id=f"flow-{i}", reference="sigRace")
        for i in range(5)
    ]

    results = await asyncio.gather(*[store.finalize_order(o) for o in orders])

    assert sum(r.accepted for r in results) == 1
    assert len(await store.get_all_orders()) == 1


async def test_discount_usage_cap_enforced_in_update(store):
    await store.add_discount_code("TWICE", DiscountKind.FLAT, 10, max_uses=2)

    results = await asyncio.gather(*[store.increment_discount_usage("TWICE") for _ in range(5)])

    assert sum(results) == 2
    term, _ = await store.get_discount_code("TWICE")
    assert term.usage_count == 2


async def test_access_code_redeemed_once(store):
    await store.add_access_code("TRIAL-ONCE2345", "1_hour", 1)

    first = await store.redeem_access_code("TRIAL-ONCE2345", "op-1", "t0", "t1")
    second = await store.redeem_access_code("TRIAL-ONCE2345", "op-2", "t0", "t1")

    assert first
    assert not second
    record = await store.get_access_code("TRIAL-ONCE2345")
    assert record.redeemed_by == "op-1"


async def test_activity_newest_first(store):
    await store.log_activity("first", "one")
    await store.log_activity("second", "two", reference="ref", amount=5)

    activity = await store.get_recent_activity()

    assert [a.event_type for a in activity] == ["second", "first"]
    assert activity[0].amount == 5


async def test_file_database_persists(tmp_path):
    db_path = tmp_path / "nested" / "checkout.db"
    s = SQLiteCheckoutStore(str(db_path))
    await s.initialize()
    await s.finalize_order(make_order())
    await s.close()

    s = SQLiteCheckoutStore(str(db_path))
    await s.initialize()
    try:
        assert await s.get_order_by_reference("sig1") is not None
    finally:
        await s.close()
