"""Price engine - deterministic pricing from plan options and discount layers."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from omeganode_checkout.errors import DiscountConflictError, ValidationError
from omeganode_checkout.models.config import PricingConfig
from omeganode_checkout.models.plan import (
    MAX_STAKE_PACKAGES,
    CommitmentTerm,
    PlanSelection,
    ServerClass,
)
from omeganode_checkout.models.pricing import DiscountKind, DiscountTerm, PriceBreakdown

_ZERO_BREAKDOWN = PriceBreakdown(
    base_server_price=0,
    server_price=0,
    commitment_discount=0.0,
    addons_price=0,
    rent_surcharge=0,
    code_discount_amount=0,
    referral_discount_amount=0,
    final_total=0,
    original_total_for_display=0,
    term_months=0,
)


def round_money(value: Decimal) -> int:
    """Round to whole currency units, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _dec(value: float | int) -> Decimal:
    return Decimal(str(value))


class PriceEngine:
    """Pure price computation. No I/O, no hidden state.

    Layers, in order:
    1. Base server price (shared flat rate or dedicated hardware tier)
    2. Commitment discount on the server price only
    3. Add-ons (stake packages, shreds) never commitment/code discounted
    4. Rent surcharge on server price + add-ons
    5. Code discount on server price + its share of rent
    6. Referral discount on whatever remains after the code
    7. Clamp at zero

    final_total is the monthly charge; term_total bills it for every month
    of the commitment term.

    Commitment discounts and manually entered codes are mutually exclusive.
    A code may only be applied on the monthly term; passing one with any
    discounted term raises DiscountConflictError.
    """

    def __init__(self, config: PricingConfig | None = None) -> None:
        self._cfg = config or PricingConfig()

    @property
    def config(self) -> PricingConfig:
        return self._cfg

    # ── Validation ─────────────────────────────────────────

    def validate(self, selection: PlanSelection) -> None:
        """Reject invalid plan combinations before any pricing or I/O."""
        if not 0 <= selection.stake_packages <= MAX_STAKE_PACKAGES:
            raise ValidationError(
                f"stake packages must be between 0 and {MAX_STAKE_PACKAGES}",
                field="stake_packages",
            )

        if selection.server_class == ServerClass.SHARED:
            if selection.stake_packages or selection.shreds_addon:
                raise ValidationError(
                    "stake packages and shreds are only available on dedicated servers",
                    field="server_class",
                )
            return

        if not selection.hardware_tier:
            raise ValidationError("dedicated servers require a hardware tier", field="hardware_tier")
        if selection.hardware_tier not in self._cfg.dedicated_tier_prices:
            raise ValidationError(
                f"unknown hardware tier: {selection.hardware_tier}", field="hardware_tier",
            )
        if not selection.location:
            raise ValidationError("dedicated servers require a location", field="location")
        if self._cfg.locations and selection.location not in self._cfg.locations:
            raise ValidationError(f"unknown location: {selection.location}", field="location")

    def commitment_discount(self, term: CommitmentTerm) -> float:
        return self._cfg.commitment_discounts.get(term.value, 0.0)

    def allows_code(self, term: CommitmentTerm) -> bool:
        """Codes apply only where no commitment discount is in effect."""
        return term != CommitmentTerm.DAILY and self.commitment_discount(term) == 0

    # ── Computation ────────────────────────────────────────

    def compute(
        self,
        selection: PlanSelection,
        applied_discount: DiscountTerm | None = None,
        referral_active: bool = False,
    ) -> PriceBreakdown:
        """Compute the final charge and its itemized breakdown."""
        self.validate(selection)

        term = selection.commitment_term
        if term == CommitmentTerm.DAILY:
            # Trial-only term, free by construction
            return _ZERO_BREAKDOWN

        if applied_discount is not None and not self.allows_code(term):
            raise DiscountConflictError(
                "discount codes cannot be combined with a commitment discount",
                field="commitment_term",
            )

        cfg = self._cfg
        base = self._base_price(selection)
        commitment = self.commitment_discount(term)
        server_price = round_money(_dec(base) * (1 - _dec(commitment)))

        # Add-ons: priced independently of the commitment discount
        stake_unit = _dec(cfg.stake_package_price)
        if term == CommitmentTerm.THREE_MONTHS:
            stake_unit = stake_unit * (1 - _dec(cfg.stake_discount_3mo))
        stake_total = round_money(stake_unit * selection.stake_packages)
        shreds = cfg.shreds_addon_price if selection.shreds_addon else 0
        addons = stake_total + shreds

        rent_rate = self._rent_rate(selection)
        rent = round_money(_dec(server_price + addons) * rent_rate)

        # Code discount base: server price and the rent it generates, never add-ons
        discountable = server_price + round_money(_dec(server_price) * rent_rate)
        code_amount = self._code_discount(applied_discount, discountable)

        remainder = server_price + addons + rent - code_amount
        referral_amount = 0
        if referral_active and remainder > 0:
            referral_amount = round_money(_dec(remainder) * _dec(cfg.referral_rate))

        final_total = max(0, remainder - referral_amount)

        # Undiscounted reference price for strike-through display
        full_addons = cfg.stake_package_price * selection.stake_packages + shreds
        original = base + full_addons + round_money(_dec(base + full_addons) * rent_rate)

        return PriceBreakdown(
            base_server_price=base,
            server_price=server_price,
            commitment_discount=commitment,
            addons_price=addons,
            rent_surcharge=rent,
            code_discount_amount=code_amount,
            referral_discount_amount=referral_amount,
            final_total=final_total,
            original_total_for_display=original,
            term_months=term.months,
        )

    def _base_price(self, selection: PlanSelection) -> int:
        if selection.server_class == ServerClass.SHARED:
            return self._cfg.shared_monthly_price
        return self._cfg.dedicated_tier_prices[selection.hardware_tier or ""]

    def _rent_rate(self, selection: PlanSelection) -> Decimal:
        if not selection.rent_sharing:
            return Decimal(0)
        if selection.server_class == ServerClass.SHARED:
            return _dec(self._cfg.rent_rate_shared)
        return _dec(self._cfg.rent_rate_dedicated)

    @staticmethod
    def _code_discount(term: DiscountTerm | None, discountable: int) -> int:
        if term is None or discountable <= 0:
            return 0
        if term.kind == DiscountKind.PERCENTAGE:
            amount = round_money(_dec(discountable) * _dec(term.value) / 100)
        else:
            amount = round_money(_dec(term.value))
        return max(0, min(amount, discountable))
