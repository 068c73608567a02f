from __future__ import annotations

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from errors import InvalidInput
from money import cents_to_decimal, format_amount, percent, round2
from periods import Period, month_period, trailing_months
from recurrence import RECURRING_SUFFIX
from thresholds import TIER_RANK, BudgetStatus, BudgetTier, classify

UNCATEGORIZED = "Uncategorized"
TOP_N = 5
MERCHANT_TOKENS = 3
DAYS_PER_MONTH = 30
OUTLIER_FACTOR = 3
CONSISTENT_CV = 15
IRREGULAR_CV = 40
CONCENTRATION_SHARE = 80
DIVERSIFIED_MIN_CATEGORIES = 5
WEEKEND_BIAS = 30


@dataclass(frozen=True)
class ExpenseRecord:
    amount_cents: int
    date: date
    description: Optional[str] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None


@dataclass(frozen=True)
class BudgetRecord:
    category_id: int
    category_name: str
    limit_cents: int
    month: int
    year: int


@dataclass(frozen=True)
class MonthlyTrend:
    label: str
    year: int
    month: int
    total_cents: int

    def to_dict(self) -> dict[str, object]:
        return {
            "month": self.label,
            "year": self.year,
            "month_number": self.month,
            "total": cents_to_decimal(self.total_cents),
        }


@dataclass(frozen=True)
class CategoryShare:
    name: str
    total_cents: int
    percentage: Decimal

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "value": cents_to_decimal(self.total_cents),
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class MerchantSummary:
    key: str
    merchant: str
    total_cents: int
    count: int

    @property
    def average(self) -> Decimal:
        return round2(Decimal(self.total_cents) / Decimal(self.count) / Decimal(100))

    def to_dict(self) -> dict[str, object]:
        return {
            "merchant": self.merchant,
            "amount": cents_to_decimal(self.total_cents),
            "count": self.count,
            "average": self.average,
        }


@dataclass(frozen=True)
class BudgetPerformance:
    category_id: int
    category: str
    status: BudgetStatus

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {"category_id": self.category_id, "category": self.category}
        data.update(self.status.to_dict())
        return data


@dataclass(frozen=True)
class Insight:
    type: str  # positive | negative | warning | info
    title: str
    description: str

    def to_dict(self) -> dict[str, object]:
        return {"type": self.type, "title": self.title, "description": self.description}


@dataclass(frozen=True)
class Summary:
    total_expenses: int
    total_spent_cents: int
    months: int

    @property
    def avg_per_expense(self) -> Decimal:
        if not self.total_expenses:
            return Decimal("0.00")
        return round2(
            Decimal(self.total_spent_cents) / Decimal(self.total_expenses) / Decimal(100)
        )

    @property
    def avg_daily(self) -> Decimal:
        return daily_average(self.total_spent_cents, self.months)

    def to_dict(self) -> dict[str, object]:
        return {
            "total_expenses": self.total_expenses,
            "total_spent": cents_to_decimal(self.total_spent_cents),
            "avg_per_expense": self.avg_per_expense,
            "avg_daily": self.avg_daily,
        }


@dataclass
class AnalyticsReport:
    monthly_trends: list[MonthlyTrend] = field(default_factory=list)
    category_breakdown: list[CategoryShare] = field(default_factory=list)
    top_merchants: list[MerchantSummary] = field(default_factory=list)
    budget_performance: list[BudgetPerformance] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)
    summary: Optional[Summary] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "monthly_trends": [t.to_dict() for t in self.monthly_trends],
            "category_breakdown": [c.to_dict() for c in self.category_breakdown],
            "top_merchants": [m.to_dict() for m in self.top_merchants],
            "budget_performance": [b.to_dict() for b in self.budget_performance],
            "insights": [i.to_dict() for i in self.insights],
            "summary": self.summary.to_dict() if self.summary else None,
        }


def daily_average(total_cents: int, months: int) -> Decimal:
    # approximate: every month counts as 30 days
    return round2(Decimal(total_cents) / Decimal(months * DAYS_PER_MONTH) / Decimal(100))


def monthly_trends(
    expenses: Sequence[ExpenseRecord], periods: Sequence[Period]
) -> list[MonthlyTrend]:
    totals: dict[str, int] = {p.slug: 0 for p in periods}
    for expense in expenses:
        for p in periods:
            if p.contains(expense.date):
                totals[p.slug] += expense.amount_cents
                break
    return [
        MonthlyTrend(
            label=p.start.strftime("%b %Y"),
            year=p.start.year,
            month=p.start.month,
            total_cents=totals[p.slug],
        )
        for p in periods
    ]


def category_totals(expenses: Sequence[ExpenseRecord]) -> list[CategoryShare]:
    """Every category with its share of total spend, largest first."""
    by_name: dict[str, int] = defaultdict(int)
    for expense in expenses:
        by_name[expense.category_name or UNCATEGORIZED] += expense.amount_cents
    total = sum(by_name.values())
    items = sorted(by_name.items(), key=lambda kv: (-kv[1], kv[0]))
    return [
        CategoryShare(name=name, total_cents=amount, percentage=percent(amount, total))
        for name, amount in items
    ]


def merchant_key(description: Optional[str]) -> Optional[str]:
    text = (description or "").strip()
    if text.endswith(RECURRING_SUFFIX):
        text = text[: -len(RECURRING_SUFFIX)].strip()
    tokens = text.split()[:MERCHANT_TOKENS]
    if not tokens:
        return None
    return " ".join(tokens).lower()


def merchant_display(key: str) -> str:
    return " ".join(word.capitalize() for word in key.split())


def top_merchants(
    expenses: Sequence[ExpenseRecord], limit: int = TOP_N
) -> list[MerchantSummary]:
    totals: dict[str, int] = defaultdict(int)
    counts: dict[str, int] = defaultdict(int)
    for expense in expenses:
        key = merchant_key(expense.description)
        if key is None:
            continue
        totals[key] += expense.amount_cents
        counts[key] += 1
    merchants = [
        MerchantSummary(
            key=key,
            merchant=merchant_display(key),
            total_cents=amount,
            count=counts[key],
        )
        for key, amount in totals.items()
    ]
    merchants.sort(key=lambda m: (-m.total_cents, m.key))
    return merchants[:limit]


def budget_performance(
    expenses: Sequence[ExpenseRecord],
    budgets: Iterable[BudgetRecord],
    today: date,
) -> list[BudgetPerformance]:
    current = month_period(today.year, today.month)
    spent: dict[Optional[int], int] = defaultdict(int)
    for expense in expenses:
        if current.contains(expense.date):
            spent[expense.category_id] += expense.amount_cents
    out: list[BudgetPerformance] = []
    for budget in budgets:
        if (budget.year, budget.month) != (today.year, today.month):
            continue
        out.append(
            BudgetPerformance(
                category_id=budget.category_id,
                category=budget.category_name,
                status=classify(spent.get(budget.category_id, 0), budget.limit_cents),
            )
        )
    return out


def _daily_average_insight(total_cents: int, months: int) -> Insight:
    return Insight(
        "info",
        "Daily Average",
        f"You spend an average of {daily_average(total_cents, months)} per day",
    )


def _top_category_insight(breakdown: Sequence[CategoryShare]) -> Optional[Insight]:
    if not breakdown:
        return None
    top = breakdown[0]
    return Insight(
        "warning",
        "Top Spending Category",
        f"{top.name} accounts for {top.percentage:.0f}% of your total spending",
    )


_THRESHOLD_INSIGHTS = {
    BudgetTier.exceeded: ("negative", "Budget Exceeded", "exceeded"),
    BudgetTier.critical: ("warning", "Budget Almost Used", "used over 90% of"),
    BudgetTier.warning: ("warning", "Budget Warning", "used over 75% of"),
    BudgetTier.approaching: ("info", "Approaching Budget", "used over 60% of"),
}


def _budget_threshold_insight(
    performance: Sequence[BudgetPerformance],
) -> Optional[Insight]:
    if not performance:
        return None
    worst = max((p.status.tier for p in performance), key=lambda t: TIER_RANK[t])
    if worst == BudgetTier.good:
        return None
    count = sum(1 for p in performance if p.status.tier == worst)
    kind, title, phrase = _THRESHOLD_INSIGHTS[worst]
    return Insight(kind, title, f"You've {phrase} {count} budget(s) this month")


def _month_over_month_insight(trends: Sequence[MonthlyTrend]) -> Optional[Insight]:
    if len(trends) < 2:
        return None
    previous = trends[-2].total_cents
    latest = trends[-1].total_cents
    if previous <= 0 or latest == previous:
        return None
    delta = percent(abs(latest - previous), previous)
    if latest < previous:
        return Insight(
            "positive",
            "Spending Reduced",
            f"You spent {delta}% less than last month, saving "
            f"{format_amount(previous - latest)}",
        )
    return Insight(
        "negative",
        "Spending Increased",
        f"You spent {delta}% more than last month",
    )


def coefficient_of_variation(values: Sequence[int]) -> Optional[Decimal]:
    if len(values) < 3:
        return None
    data = [Decimal(v) for v in values]
    mean = statistics.mean(data)
    if mean <= 0:
        return None
    return round2(statistics.pstdev(data, mean) / mean * Decimal(100))


def _consistency_insight(trends: Sequence[MonthlyTrend]) -> Optional[Insight]:
    cv = coefficient_of_variation([t.total_cents for t in trends])
    if cv is None:
        return None
    if cv < CONSISTENT_CV:
        return Insight(
            "positive",
            "Consistent Spending",
            f"Your monthly spending is steady, varying by only {cv}%",
        )
    if cv > IRREGULAR_CV:
        return Insight(
            "warning",
            "Irregular Spending",
            f"Your monthly spending swings a lot, varying by {cv}%",
        )
    return None


def _outlier_insight(
    expenses: Sequence[ExpenseRecord], total_cents: int
) -> Optional[Insight]:
    if not expenses or total_cents <= 0:
        return None
    count = len(expenses)
    # amount > factor * (total / count), kept in integers
    flagged = [
        e for e in expenses if e.amount_cents * count > OUTLIER_FACTOR * total_cents
    ]
    if not flagged:
        return None
    share = percent(sum(e.amount_cents for e in flagged), total_cents)
    return Insight(
        "warning",
        "Large Transactions",
        f"{len(flagged)} unusually large expense(s) make up {share}% of your spending",
    )


def _diversification_insight(
    totals: Sequence[CategoryShare], total_cents: int
) -> Optional[Insight]:
    if total_cents <= 0:
        return None
    top = totals[:3]
    top_cents = sum(c.total_cents for c in top)
    if top_cents * 100 > CONCENTRATION_SHARE * total_cents:
        return Insight(
            "warning",
            "Concentrated Spending",
            f"Your top {len(top)} categories account for "
            f"{percent(top_cents, total_cents)}% of your spending",
        )
    if len(totals) >= DIVERSIFIED_MIN_CATEGORIES:
        return Insight(
            "positive",
            "Well Diversified",
            f"Your spending is spread across {len(totals)} categories",
        )
    return None


def _weekend_insight(expenses: Sequence[ExpenseRecord]) -> Optional[Insight]:
    weekend = [e.amount_cents for e in expenses if e.date.weekday() >= 5]
    weekday = [e.amount_cents for e in expenses if e.date.weekday() < 5]
    if not weekend or not weekday:
        return None
    weekend_avg = Decimal(sum(weekend)) / len(weekend)
    weekday_avg = Decimal(sum(weekday)) / len(weekday)
    if weekday_avg <= 0:
        return None
    diff = (weekend_avg - weekday_avg) / weekday_avg * Decimal(100)
    if diff <= WEEKEND_BIAS:
        return None
    return Insight(
        "info",
        "Weekend Spending",
        f"Your average weekend purchase is {round2(diff)}% larger than on weekdays",
    )


def generate_insights(
    expenses: Sequence[ExpenseRecord],
    trends: Sequence[MonthlyTrend],
    totals: Sequence[CategoryShare],
    performance: Sequence[BudgetPerformance],
    months: int,
) -> list[Insight]:
    total_cents = sum(e.amount_cents for e in expenses)
    candidates = [
        _daily_average_insight(total_cents, months),
        _top_category_insight(totals),
        _budget_threshold_insight(performance),
        _month_over_month_insight(trends),
        _consistency_insight(trends),
        _outlier_insight(expenses, total_cents),
        _diversification_insight(totals, total_cents),
        _weekend_insight(expenses),
    ]
    return [insight for insight in candidates if insight is not None]


def aggregate(
    expenses: Iterable[ExpenseRecord],
    budgets: Iterable[BudgetRecord],
    months: int,
    today: date,
) -> AnalyticsReport:
    if months < 1:
        raise InvalidInput("Analytics window must be at least one month")
    periods = trailing_months(today, months)
    window = Period("window", periods[0].start, periods[-1].end)
    snapshot = [e for e in expenses if window.contains(e.date)]
    budget_rows = list(budgets)

    trends = monthly_trends(snapshot, periods)
    totals = category_totals(snapshot)
    performance = budget_performance(snapshot, budget_rows, today)
    return AnalyticsReport(
        monthly_trends=trends,
        category_breakdown=totals[:TOP_N],
        top_merchants=top_merchants(snapshot),
        budget_performance=performance,
        insights=generate_insights(snapshot, trends, totals, performance, months),
        summary=Summary(
            total_expenses=len(snapshot),
            total_spent_cents=sum(e.amount_cents for e in snapshot),
            months=months,
        ),
    )
