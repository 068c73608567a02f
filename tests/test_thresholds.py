from decimal import Decimal

import pytest

from errors import InvalidBudget
from thresholds import AlertPolicy, BudgetTier, classify, should_alert, tier_for


@pytest.mark.parametrize(
    "spent, tier",
    [
        (0, BudgetTier.good),
        (599, BudgetTier.good),
        (600, BudgetTier.approaching),
        (749, BudgetTier.approaching),
        (750, BudgetTier.warning),
        (899, BudgetTier.warning),
        (900, BudgetTier.critical),
        (999, BudgetTier.critical),
        (1000, BudgetTier.exceeded),
        (1500, BudgetTier.exceeded),
    ],
)
def test_tier_boundaries(spent, tier):
    assert tier_for(spent, 1000) == tier


def test_tier_uses_exact_ratio_not_rounded_percentage():
    # 59.995% would display as 60.00 but is still below the floor
    assert tier_for(59_995, 100_000) == BudgetTier.good
    assert classify(59_995, 100_000).percentage == Decimal("60.00")


def test_classify_reports_overrun_as_negative_remaining():
    status = classify(1200, 1000)
    assert status.tier == BudgetTier.exceeded
    assert status.remaining_cents == -200
    assert status.percentage == Decimal("120.00")
    assert status.to_dict()["remaining"] == Decimal("-2.00")


@pytest.mark.parametrize("limit", [0, -100])
def test_non_positive_limit_is_rejected(limit):
    with pytest.raises(InvalidBudget):
        classify(100, limit)


def test_should_alert_on_transition_only_fires_when_crossing():
    policy = AlertPolicy.on_transition
    assert should_alert(BudgetTier.critical, BudgetTier.exceeded, policy)
    assert should_alert(BudgetTier.good, BudgetTier.exceeded, policy)
    assert not should_alert(BudgetTier.exceeded, BudgetTier.exceeded, policy)
    assert not should_alert(BudgetTier.warning, BudgetTier.critical, policy)


def test_should_alert_every_insert_repeats_while_exceeded():
    policy = AlertPolicy.every_insert
    assert should_alert(BudgetTier.exceeded, BudgetTier.exceeded, policy)
    assert should_alert(BudgetTier.critical, BudgetTier.exceeded, "every_insert")
    assert not should_alert(BudgetTier.good, BudgetTier.critical, policy)


def test_classify_percentages():
    assert classify(750, 1000).tier == BudgetTier.warning
    assert classify(750, 1000).percentage == Decimal("75.00")
    assert classify(1000, 1000).percentage == Decimal("100.00")
    assert classify(1, 3).percentage == Decimal("33.33")
    assert classify(2, 3).percentage == Decimal("66.67")
