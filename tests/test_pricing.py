"""PriceEngine: layered discounts, add-ons and mutual exclusivity."""

from __future__ import annotations

from decimal import Decimal

import pytest

from omeganode_checkout.errors import DiscountConflictError, ValidationError
from omeganode_checkout.models.plan import CommitmentTerm, PlanSelection, ServerClass
from omeganode_checkout.models.pricing import DiscountKind, DiscountScope, DiscountTerm
from omeganode_checkout.pricing.engine import round_money

from tests.factories import dedicated_plan, shared_plan

FLAT_50 = DiscountTerm(code="SAVE50", kind=DiscountKind.FLAT, value=50)
PCT_20 = DiscountTerm(code="TWENTY", kind=DiscountKind.PERCENTAGE, value=20)
FULL = DiscountTerm(code="FREEMONTH", kind=DiscountKind.PERCENTAGE, value=100)


# ── Base prices ───────────────────────────────────────────────────


def test_shared_monthly_no_addons(engine):
    b = engine.compute(shared_plan())
    assert b.base_server_price == 300
    assert b.server_price == 300
    assert b.addons_price == 0
    assert b.final_total == 300
    assert b.original_total_for_display == 300


def test_dedicated_three_month_with_stake_packages(engine):
    b = engine.compute(dedicated_plan(term=CommitmentTerm.THREE_MONTHS, stake_packages=2))
    base = engine.config.dedicated_tier_prices["epyc-9254"]
    assert b.server_price == round_money(Decimal(base) * Decimal("0.92"))
    # Stake packages get their own 10% off at the 3-month tier
    assert b.addons_price == 630
    assert b.final_total == b.server_price + 630
    assert b.commitment_discount == pytest.approx(0.08)


def test_flat_code_on_shared_monthly(engine):
    b = engine.compute(shared_plan(), applied_discount=FLAT_50)
    assert b.code_discount_amount == 50
    assert b.final_total == 250
    assert b.original_total_for_display == 300


def test_daily_term_is_free(engine):
    b = engine.compute(shared_plan(term=CommitmentTerm.DAILY))
    assert b.final_total == 0
    assert b.is_free


def test_commitment_discounts_by_term(engine):
    totals = {
        term: engine.compute(shared_plan(term=term)).server_price
        for term in (CommitmentTerm.MONTHLY, CommitmentTerm.THREE_MONTHS,
                     CommitmentTerm.SIX_MONTHS, CommitmentTerm.ONE_YEAR)
    }
    assert totals[CommitmentTerm.MONTHLY] == 300
    assert totals[CommitmentTerm.THREE_MONTHS] == 276
    assert totals[CommitmentTerm.SIX_MONTHS] == 264
    assert totals[CommitmentTerm.ONE_YEAR] == 240


# ── Add-ons ───────────────────────────────────────────────────────


@pytest.mark.parametrize("term", [CommitmentTerm.MONTHLY, CommitmentTerm.SIX_MONTHS,
                                  CommitmentTerm.ONE_YEAR])
def test_addons_unaffected_by_commitment(engine, term):
    """Outside the 3-month stake tier, add-ons cost the same on every term."""
    b = engine.compute(dedicated_plan(term=term, stake_packages=3, shreds_addon=True))
    assert b.addons_price == 3 * 350 + 500


def test_addons_not_reduced_by_code(engine):
    plain = engine.compute(dedicated_plan(stake_packages=2, shreds_addon=True))
    coded = engine.compute(dedicated_plan(stake_packages=2, shreds_addon=True),
                           applied_discount=FULL)
    assert coded.addons_price == plain.addons_price
    assert coded.final_total == plain.addons_price


def test_rent_surcharge_shared(engine):
    b = engine.compute(shared_plan(rent_sharing=True))
    assert b.rent_surcharge == 45
    assert b.final_total == 345


def test_rent_surcharge_dedicated_covers_addons(engine):
    b = engine.compute(dedicated_plan(stake_packages=1, rent_sharing=True))
    assert b.rent_surcharge == round_money(Decimal(1500 + 350) * Decimal("0.10"))


def test_percentage_code_applies_to_server_and_its_rent(engine):
    b = engine.compute(shared_plan(rent_sharing=True), applied_discount=PCT_20)
    # discountable = 300 + 45
    assert b.code_discount_amount == 69
    assert b.final_total == 345 - 69


@pytest.mark.parametrize("term, months", [
    (CommitmentTerm.MONTHLY, 1),
    (CommitmentTerm.THREE_MONTHS, 3),
    (CommitmentTerm.SIX_MONTHS, 6),
    (CommitmentTerm.ONE_YEAR, 12),
])
def test_term_total_covers_whole_commitment(engine, term, months):
    b = engine.compute(shared_plan(term=term))
    assert b.term_months == months
    assert b.term_total == b.final_total * months
    assert b.to_dict()["term_total"] == b.term_total


def test_daily_term_total_is_zero(engine):
    b = engine.compute(shared_plan(term=CommitmentTerm.DAILY))
    assert b.term_total == 0


# ── Referral ──────────────────────────────────────────────────────


def test_referral_applies_after_code(engine):
    b = engine.compute(shared_plan(), applied_discount=FLAT_50, referral_active=True)
    assert b.referral_discount_amount == 25
    assert b.final_total == 225


def test_referral_with_commitment(engine):
    b = engine.compute(shared_plan(term=CommitmentTerm.ONE_YEAR), referral_active=True)
    assert b.referral_discount_amount == 24
    assert b.final_total == 216


# ── Bounds ────────────────────────────────────────────────────────


def test_full_waiver_makes_shared_free(engine):
    b = engine.compute(shared_plan(), applied_discount=FULL)
    assert b.final_total == 0
    assert b.is_free


def test_flat_code_larger_than_price_is_capped(engine):
    huge = DiscountTerm(code="HUGE", kind=DiscountKind.FLAT, value=10_000)
    b = engine.compute(shared_plan(), applied_discount=huge)
    assert b.code_discount_amount == 300
    assert b.final_total == 0


def test_code_never_exceeds_discountable_amount(engine):
    huge = DiscountTerm(code="HUGE", kind=DiscountKind.FLAT, value=10_000)
    b = engine.compute(dedicated_plan(stake_packages=4, rent_sharing=True), applied_discount=huge)
    discountable = b.server_price + round_money(Decimal(b.server_price) * Decimal("0.10"))
    assert b.code_discount_amount == discountable
    assert b.final_total > 0


def test_final_total_never_negative(engine):
    huge = DiscountTerm(code="HUGE", kind=DiscountKind.FLAT, value=10_000)
    b = engine.compute(shared_plan(rent_sharing=True), applied_discount=huge,
                       referral_active=True)
    assert b.final_total == 0
    assert b.referral_discount_amount == 0


def test_round_half_up():
    assert round_money(Decimal("10.5")) == 11
    assert round_money(Decimal("11.5")) == 12
    assert round_money(Decimal("10.49")) == 10


# ── Mutual exclusivity ────────────────────────────────────────────


@pytest.mark.parametrize("term", [CommitmentTerm.THREE_MONTHS, CommitmentTerm.SIX_MONTHS,
                                  CommitmentTerm.ONE_YEAR])
def test_code_with_commitment_discount_rejected(engine, term):
    with pytest.raises(DiscountConflictError):
        engine.compute(shared_plan(term=term), applied_discount=FLAT_50)


def test_allows_code_only_on_monthly(engine):
    assert engine.allows_code(CommitmentTerm.MONTHLY)
    assert not engine.allows_code(CommitmentTerm.DAILY)
    assert not engine.allows_code(CommitmentTerm.THREE_MONTHS)
    assert not engine.allows_code(CommitmentTerm.ONE_YEAR)


def test_conflict_error_is_validation_error():
    assert issubclass(DiscountConflictError, ValidationError)


# ── Validation ────────────────────────────────────────────────────


def test_shared_plan_rejects_addons(engine):
    sel = PlanSelection(server_class=ServerClass.SHARED, stake_packages=1)
    with pytest.raises(ValidationError) as exc:
        engine.compute(sel)
    assert exc.value.field == "server_class"


def test_stake_package_bounds(engine):
    with pytest.raises(ValidationError):
        engine.compute(dedicated_plan(stake_packages=11))
    with pytest.raises(ValidationError):
        engine.compute(dedicated_plan(stake_packages=-1))
    engine.compute(dedicated_plan(stake_packages=10))


def test_dedicated_requires_known_tier_and_location(engine):
    with pytest.raises(ValidationError) as exc:
        engine.compute(dedicated_plan(tier="pentium-4"))
    assert exc.value.field == "hardware_tier"

    with pytest.raises(ValidationError) as exc:
        engine.compute(dedicated_plan(location="atlantis"))
    assert exc.value.field == "location"


def test_scope_does_not_affect_pricing(engine):
    """Scope is enforced by the resolver; the engine prices whatever it is given."""
    dedicated_only = DiscountTerm(code="DEDI", kind=DiscountKind.FLAT, value=50,
                                  scope=DiscountScope.DEDICATED)
    b = engine.compute(dedicated_plan(), applied_discount=dedicated_only)
    assert b.code_discount_amount == 50


def test_compute_is_deterministic(engine):
    sel = dedicated_plan(term=CommitmentTerm.SIX_MONTHS, stake_packages=3, rent_sharing=True)
    assert engine.compute(sel) == engine.compute(sel)
