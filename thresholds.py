from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from errors import InvalidBudget
from money import cents_to_decimal, percent


class BudgetTier(str, Enum):
    good = "good"
    approaching = "approaching"
    warning = "warning"
    critical = "critical"
    exceeded = "exceeded"


class AlertPolicy(str, Enum):
    on_transition = "on_transition"
    every_insert = "every_insert"


# lower bounds in percent, most severe first
TIER_FLOORS: tuple[tuple[BudgetTier, int], ...] = (
    (BudgetTier.exceeded, 100),
    (BudgetTier.critical, 90),
    (BudgetTier.warning, 75),
    (BudgetTier.approaching, 60),
)

TIER_RANK = {
    BudgetTier.good: 0,
    BudgetTier.approaching: 1,
    BudgetTier.warning: 2,
    BudgetTier.critical: 3,
    BudgetTier.exceeded: 4,
}


@dataclass(frozen=True)
class BudgetStatus:
    tier: BudgetTier
    spent_cents: int
    limit_cents: int
    remaining_cents: int
    percentage: Decimal

    def to_dict(self) -> dict[str, object]:
        return {
            "tier": self.tier.value,
            "spent": cents_to_decimal(self.spent_cents),
            "limit": cents_to_decimal(self.limit_cents),
            "remaining": cents_to_decimal(self.remaining_cents),
            "percentage": self.percentage,
        }


def tier_for(spent_cents: int, limit_cents: int) -> BudgetTier:
    if limit_cents <= 0:
        raise InvalidBudget("Budget limit must be positive")
    # integer comparison: spent/limit >= floor/100  <=>  spent*100 >= floor*limit
    for tier, floor in TIER_FLOORS:
        if spent_cents * 100 >= floor * limit_cents:
            return tier
    return BudgetTier.good


def classify(spent_cents: int, limit_cents: int) -> BudgetStatus:
    tier = tier_for(spent_cents, limit_cents)
    return BudgetStatus(
        tier=tier,
        spent_cents=spent_cents,
        limit_cents=limit_cents,
        remaining_cents=limit_cents - spent_cents,
        percentage=percent(spent_cents, limit_cents),
    )


def should_alert(
    previous: BudgetTier, current: BudgetTier, policy: AlertPolicy
) -> bool:
    if current != BudgetTier.exceeded:
        return False
    if AlertPolicy(policy) == AlertPolicy.every_insert:
        return True
    return previous != BudgetTier.exceeded
