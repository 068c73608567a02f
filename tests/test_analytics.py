from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from analytics import (
    BudgetRecord,
    ExpenseRecord,
    aggregate,
    category_totals,
    coefficient_of_variation,
    merchant_key,
    top_merchants,
)
from database import Base
from errors import InvalidInput
from schemas import BudgetIn, CategoryIn, ExpenseIn
from services import AnalyticsService, BudgetService, CategoryService, ExpenseService
from thresholds import AlertPolicy, BudgetTier

TODAY = date(2024, 3, 20)


def _e(cents: int, day: date, description: str = "", category: str = None, cid: int = None):
    return ExpenseRecord(
        amount_cents=cents,
        date=day,
        description=description,
        category_id=cid,
        category_name=category,
    )


def _titles(report) -> list[str]:
    return [i.title for i in report.insights]


def test_empty_window_produces_zeroed_report():
    report = aggregate([], [], 3, TODAY)
    assert [t.label for t in report.monthly_trends] == ["Jan 2024", "Feb 2024", "Mar 2024"]
    assert all(t.total_cents == 0 for t in report.monthly_trends)
    assert report.category_breakdown == []
    assert report.top_merchants == []
    assert report.budget_performance == []
    assert _titles(report) == ["Daily Average"]
    summary = report.summary.to_dict()
    assert summary["total_expenses"] == 0
    assert summary["avg_per_expense"] == Decimal("0.00")
    assert summary["avg_daily"] == Decimal("0.00")


def test_months_must_be_positive():
    with pytest.raises(InvalidInput):
        aggregate([], [], 0, TODAY)


def test_expenses_outside_window_are_ignored():
    expenses = [
        _e(5_000, date(2023, 12, 31), "Old", "Food"),
        _e(1_000, date(2024, 1, 1), "New", "Food"),
    ]
    report = aggregate(expenses, [], 3, TODAY)
    assert report.summary.total_spent_cents == 1_000
    assert report.monthly_trends[0].total_cents == 1_000


def test_category_percentages_sum_to_one_hundred():
    expenses = [
        _e(1_000, date(2024, 3, 1), category="Food"),
        _e(1_000, date(2024, 3, 2), category="Travel"),
        _e(1_000, date(2024, 3, 3), category="Fun"),
    ]
    totals = category_totals(expenses)
    assert abs(sum(c.percentage for c in totals) - Decimal("100")) <= Decimal("0.05")
    assert [c.name for c in totals] == ["Food", "Fun", "Travel"]


def test_category_breakdown_keeps_top_five_and_uncategorized():
    expenses = [
        _e((i + 1) * 100, date(2024, 3, 1), category=f"Cat {i}") for i in range(6)
    ]
    expenses.append(_e(50, date(2024, 3, 1)))
    report = aggregate(expenses, [], 1, TODAY)
    names = [c.name for c in report.category_breakdown]
    assert names == ["Cat 5", "Cat 4", "Cat 3", "Cat 2", "Cat 1"]
    assert "Uncategorized" in [c.name for c in category_totals(expenses)]


def test_merchant_key_uses_first_three_words():
    assert merchant_key("Starbucks Coffee Shop #123") == "starbucks coffee shop"
    assert merchant_key("STARBUCKS coffee downtown") == "starbucks coffee downtown"
    assert merchant_key("Netflix (Recurring)") == "netflix"
    assert merchant_key("   ") is None
    assert merchant_key(None) is None


def test_top_merchants_groups_and_averages():
    expenses = [
        _e(500, date(2024, 3, 1), "Starbucks Coffee Shop #1"),
        _e(700, date(2024, 3, 2), "starbucks coffee shop #2"),
        _e(1_599, date(2024, 3, 5), "Netflix (Recurring)"),
        _e(100, date(2024, 3, 6), ""),
    ]
    merchants = top_merchants(expenses)
    assert [m.merchant for m in merchants] == ["Netflix", "Starbucks Coffee Shop"]
    coffee = merchants[1].to_dict()
    assert coffee["count"] == 2
    assert coffee["amount"] == Decimal("12.00")
    assert coffee["average"] == Decimal("6.00")


def test_budget_performance_only_covers_current_month():
    expenses = [
        _e(9_500, date(2024, 3, 5), category="Food", cid=1),
        _e(9_000, date(2024, 2, 5), category="Food", cid=1),
    ]
    budgets = [
        BudgetRecord(category_id=1, category_name="Food", limit_cents=10_000, month=3, year=2024),
        BudgetRecord(category_id=1, category_name="Food", limit_cents=10_000, month=2, year=2024),
    ]
    report = aggregate(expenses, budgets, 3, TODAY)
    assert len(report.budget_performance) == 1
    perf = report.budget_performance[0]
    assert perf.status.tier == BudgetTier.critical
    assert perf.status.spent_cents == 9_500
    assert "Budget Almost Used" in _titles(report)


def test_budget_insight_reports_most_severe_tier():
    expenses = [
        _e(12_000, date(2024, 3, 5), category="Food", cid=1),
        _e(7_000, date(2024, 3, 5), category="Fun", cid=2),
    ]
    budgets = [
        BudgetRecord(1, "Food", 10_000, 3, 2024),
        BudgetRecord(2, "Fun", 10_000, 3, 2024),
    ]
    report = aggregate(expenses, budgets, 1, TODAY)
    titles = _titles(report)
    assert "Budget Exceeded" in titles
    assert "Approaching Budget" not in titles


def test_month_over_month_decrease_is_positive():
    expenses = [
        _e(10_000, date(2024, 2, 12), category="Food"),
        _e(5_000, date(2024, 3, 12), category="Food"),
    ]
    report = aggregate(expenses, [], 2, TODAY)
    insight = next(i for i in report.insights if i.title == "Spending Reduced")
    assert insight.type == "positive"
    assert "50.00%" in insight.description


def test_month_over_month_skipped_without_previous_spend():
    report = aggregate([_e(5_000, date(2024, 3, 12))], [], 2, TODAY)
    assert "Spending Increased" not in _titles(report)
    assert "Spending Reduced" not in _titles(report)


def test_coefficient_of_variation():
    assert coefficient_of_variation([100, 100]) is None
    assert coefficient_of_variation([0, 0, 0]) is None
    assert coefficient_of_variation([100, 100, 100]) == Decimal("0.00")
    assert coefficient_of_variation([100, 200, 300]) == Decimal("40.82")


def test_consistency_insights():
    steady = [_e(10_000, date(2024, m, 12), category="Rent") for m in (1, 2, 3)]
    assert "Consistent Spending" in _titles(aggregate(steady, [], 3, TODAY))

    swings = [
        _e(1_000, date(2024, 1, 12), category="Rent"),
        _e(2_000, date(2024, 2, 12), category="Rent"),
        _e(3_000, date(2024, 3, 12), category="Rent"),
    ]
    assert "Irregular Spending" in _titles(aggregate(swings, [], 3, TODAY))


def test_outlier_insight_flags_large_expense():
    expenses = [_e(100, date(2024, 3, 4), category="Food") for _ in range(10)]
    expenses.append(_e(5_000, date(2024, 3, 4), category="Electronics"))
    report = aggregate(expenses, [], 1, TODAY)
    insight = next(i for i in report.insights if i.title == "Large Transactions")
    assert insight.description.startswith("1 unusually large")


def test_diversification_insights():
    concentrated = [_e(10_000, date(2024, 3, 4), category="Rent")]
    assert "Concentrated Spending" in _titles(aggregate(concentrated, [], 1, TODAY))

    spread = [
        _e(1_000, date(2024, 3, 4), category=name)
        for name in ("A", "B", "C", "D", "E", "F")
    ]
    titles = _titles(aggregate(spread, [], 1, TODAY))
    assert "Well Diversified" in titles
    assert "Concentrated Spending" not in titles


def test_weekend_insight():
    expenses = [
        _e(1_000, date(2024, 3, 11), category="Food"),  # Monday
        _e(2_000, date(2024, 3, 16), category="Food"),  # Saturday
    ]
    report = aggregate(expenses, [], 1, TODAY)
    insight = next(i for i in report.insights if i.title == "Weekend Spending")
    assert "100.00%" in insight.description


def test_insight_order_is_stable():
    expenses = [
        _e(10_000, date(2024, 2, 12), "Landlord", "Rent"),
        _e(5_000, date(2024, 3, 16), "Landlord", "Rent"),
        _e(1_000, date(2024, 3, 11), "Cafe", "Food"),
    ]
    titles = _titles(aggregate(expenses, [], 2, TODAY))
    assert titles[0] == "Daily Average"
    assert titles[1] == "Top Spending Category"
    assert titles.index("Spending Reduced") < titles.index("Concentrated Spending")


def test_detailed_report_from_database():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        food = CategoryService(session).create(CategoryIn(name="Food"))
        BudgetService(session).upsert(
            BudgetIn(category_id=food.id, monthly_limit_cents=10_000, month=3, year=2024)
        )
        expenses = ExpenseService(session, alert_policy=AlertPolicy.on_transition)
        for day, cents in ((2, 3_000), (9, 4_000)):
            expenses.create(
                ExpenseIn(
                    amount_cents=cents,
                    category_id=food.id,
                    description="Corner Market",
                    date=date(2024, 3, day),
                )
            )
        expenses.create(ExpenseIn(amount_cents=2_000, date=date(2024, 3, 25)))

        report = AnalyticsService(session).detailed(months=6, as_of=TODAY)
        data = report.to_dict()
        assert len(data["monthly_trends"]) == 6
        assert data["summary"]["total_expenses"] == 2
        assert data["summary"]["total_spent"] == Decimal("70.00")
        assert data["category_breakdown"][0]["name"] == "Food"
        assert data["top_merchants"][0]["merchant"] == "Corner Market"
        assert data["budget_performance"][0]["tier"] == "approaching"


def test_merchant_display_uses_each_description_own_tokens():
    expenses = [
        _e(400, date(2024, 3, 1), "Starbucks Coffee Shop #42"),
        _e(300, date(2024, 3, 2), "starbucks coffee downtown"),
    ]
    merchants = [m.merchant for m in top_merchants(expenses)]
    assert merchants == ["Starbucks Coffee Shop", "Starbucks Coffee Downtown"]
