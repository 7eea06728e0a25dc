"""Plan selection models: server class, commitment term, add-ons."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

MAX_STAKE_PACKAGES = 10


class ServerClass(str, Enum):
    SHARED = "shared"
    DEDICATED = "dedicated"


class CommitmentTerm(str, Enum):
    """Billing period the customer commits to."""

    DAILY = "daily"  # trial / access-code only
    MONTHLY = "monthly"
    THREE_MONTHS = "3mo"
    SIX_MONTHS = "6mo"
    ONE_YEAR = "1yr"

    @property
    def months(self) -> int:
        """Months billed up front for this term (the daily trial bills none)."""
        return _TERM_MONTHS[self]


_TERM_MONTHS = {
    CommitmentTerm.DAILY: 0,
    CommitmentTerm.MONTHLY: 1,
    CommitmentTerm.THREE_MONTHS: 3,
    CommitmentTerm.SIX_MONTHS: 6,
    CommitmentTerm.ONE_YEAR: 12,
}


@dataclass(frozen=True)
class PlanSelection:
    """Everything the customer picked on the pricing screen."""

    server_class: ServerClass
    commitment_term: CommitmentTerm = CommitmentTerm.MONTHLY
    hardware_tier: str | None = None  # dedicated only
    location: str | None = None  # dedicated only
    stake_packages: int = 0  # dedicated only, 0..10
    shreds_addon: bool = False  # dedicated only
    rent_sharing: bool = False

    @property
    def is_dedicated(self) -> bool:
        return self.server_class == ServerClass.DEDICATED

    def with_term(self, term: CommitmentTerm) -> PlanSelection:
        return replace(self, commitment_term=term)

    def to_dict(self) -> dict:
        return {
            "server_class": self.server_class.value,
            "commitment_term": self.commitment_term.value,
            "hardware_tier": self.hardware_tier,
            "location": self.location,
            "stake_packages": self.stake_packages,
            "shreds_addon": self.shreds_addon,
            "rent_sharing": self.rent_sharing,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PlanSelection:
        return cls(
            server_class=ServerClass(data["server_class"]),
            commitment_term=CommitmentTerm(data.get("commitment_term", "monthly")),
            hardware_tier=data.get("hardware_tier"),
            location=data.get("location"),
            stake_packages=int(data.get("stake_packages", 0)),
            shreds_addon=bool(data.get("shreds_addon", False)),
            rent_sharing=bool(data.get("rent_sharing", False)),
        )
