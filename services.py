from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from analytics import AnalyticsReport, BudgetRecord, ExpenseRecord, aggregate
from config import get_settings
from errors import InvalidInput, NotFound
from models import (
    Alert,
    AlertSeverity,
    Budget,
    Category,
    Expense,
    RecurringExpense,
)
from money import format_amount
from periods import month_period, trailing_months
from recurrence import local_today
from schemas import BudgetIn, CategoryIn, ExpenseIn, RecurringExpenseIn
from storage import SqlStorage
from thresholds import AlertPolicy, classify, should_alert, tier_for

logger = logging.getLogger(__name__)

BUDGET_EXCEEDED = "budget_exceeded"


def get_current_user_id() -> int:
    return 1


def expense_record(expense: Expense) -> ExpenseRecord:
    return ExpenseRecord(
        amount_cents=expense.amount_cents,
        date=expense.date,
        description=expense.description,
        category_id=expense.category_id,
        category_name=expense.category.name if expense.category else None,
    )


def budget_record(budget: Budget) -> BudgetRecord:
    return BudgetRecord(
        category_id=budget.category_id,
        category_name=budget.category.name if budget.category else "Unknown",
        limit_cents=budget.monthly_limit_cents,
        month=budget.month,
        year=budget.year,
    )


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.storage = SqlStorage(session)

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFound("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if not name:
            raise InvalidInput("Category name cannot be empty")
        exists = self.session.scalar(
            select(Category.id).where(
                Category.user_id == self.user_id, Category.name == name
            )
        )
        if exists:
            raise InvalidInput("Category with this name already exists")
        category = Category(
            user_id=self.user_id, name=name, icon=data.icon, color=data.color
        )
        self.session.add(category)
        self.storage.commit()
        self.session.refresh(category)
        return category


class BudgetAlertService:
    """Raises ``budget_exceeded`` alerts after an expense lands in a category."""

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        policy: Optional[AlertPolicy] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.policy = AlertPolicy(policy or get_settings().budget_alert_policy)
        self.storage = SqlStorage(session)

    def evaluate(
        self, category_id: int, on_date: date, added_cents: int
    ) -> Optional[Alert]:
        budget = self.storage.find_budget(
            self.user_id, category_id, on_date.month, on_date.year
        )
        if budget is None:
            return None
        period = month_period(on_date.year, on_date.month)
        total = self.storage.category_spent(
            self.user_id, category_id, period.start, period.end
        )
        before = tier_for(max(0, total - added_cents), budget.monthly_limit_cents)
        after = classify(total, budget.monthly_limit_cents)
        if not should_alert(before, after.tier, self.policy):
            return None

        category_name = budget.category.name if budget.category else "this category"
        overrun = total - budget.monthly_limit_cents
        month_label = f"{on_date.month:02d}/{on_date.year}"
        if overrun > 0:
            message = (
                f"You've exceeded your {category_name} budget for {month_label} "
                f"by {format_amount(overrun)}"
            )
        else:
            message = f"You've reached your {category_name} budget for {month_label}"
        alert = self.storage.insert_alert(
            self.user_id,
            BUDGET_EXCEEDED,
            "Budget Exceeded",
            message,
            AlertSeverity.warning,
        )
        logger.info(
            f"budget_alert: user={self.user_id} category={category_id} "
            f"month={on_date.year}-{on_date.month:02d} spent={total} "
            f"limit={budget.monthly_limit_cents} policy={self.policy.value}"
        )
        return alert


class ExpenseService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        alert_policy: Optional[AlertPolicy] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.alert_policy = alert_policy
        self.storage = SqlStorage(session)

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        CategoryService(self.session, self.user_id).get(category_id)

    def get(self, expense_id: int) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if not expense or expense.user_id != self.user_id:
            raise NotFound("Expense not found")
        return expense

    def list(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
            .limit(limit)
            .offset(offset)
        )
        if start:
            stmt = stmt.where(Expense.date >= start)
        if end:
            stmt = stmt.where(Expense.date <= end)
        return self.session.scalars(stmt).all()

    def create(self, data: ExpenseIn) -> Expense:
        self._check_category(data.category_id)
        expense = self.storage.insert_expense(
            user_id=self.user_id,
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            description=data.description,
            on_date=data.date,
        )
        if data.category_id is not None:
            BudgetAlertService(self.session, self.user_id, self.alert_policy).evaluate(
                data.category_id, data.date, data.amount_cents
            )
        self.storage.commit()
        self.session.refresh(expense)
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        if data.category_id != expense.category_id:
            self._check_category(data.category_id)
        for field, value in data.model_dump().items():
            setattr(expense, field, value)
        self.storage.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.storage.commit()


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.storage = SqlStorage(session)

    def list_for_month(self, year: int, month: int) -> list[Budget]:
        return self.storage.find_budgets(self.user_id, month, year)

    def upsert(self, data: BudgetIn) -> Budget:
        CategoryService(self.session, self.user_id).get(data.category_id)
        existing = self.storage.find_budget(
            self.user_id, data.category_id, data.month, data.year
        )
        if existing:
            existing.monthly_limit_cents = data.monthly_limit_cents
            self.storage.commit()
            self.session.refresh(existing)
            return existing

        budget = Budget(
            user_id=self.user_id,
            category_id=data.category_id,
            monthly_limit_cents=data.monthly_limit_cents,
            month=data.month,
            year=data.year,
        )
        self.session.add(budget)
        self.storage.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFound("Budget not found")
        self.session.delete(budget)
        self.storage.commit()

    def performance_for_month(self, year: int, month: int) -> list[dict[str, object]]:
        period = month_period(year, month)
        out: list[dict[str, object]] = []
        for budget in self.list_for_month(year, month):
            spent = self.storage.category_spent(
                self.user_id, budget.category_id, period.start, period.end
            )
            row: dict[str, object] = {
                "budget_id": budget.id,
                "category_id": budget.category_id,
                "category": budget.category.name if budget.category else "Unknown",
            }
            row.update(classify(spent, budget.monthly_limit_cents).to_dict())
            out.append(row)
        return out


class RecurringExpenseService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.storage = SqlStorage(session)

    def get(self, template_id: int) -> RecurringExpense:
        template = self.session.get(RecurringExpense, template_id)
        if not template or template.user_id != self.user_id:
            raise NotFound("Recurring expense not found")
        return template

    def list(self) -> list[RecurringExpense]:
        stmt = (
            select(RecurringExpense)
            .options(joinedload(RecurringExpense.category))
            .where(RecurringExpense.user_id == self.user_id)
            .order_by(RecurringExpense.next_occurrence, RecurringExpense.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: RecurringExpenseIn) -> RecurringExpense:
        if data.category_id is not None:
            CategoryService(self.session, self.user_id).get(data.category_id)
        template = RecurringExpense(
            user_id=self.user_id,
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            description=data.description,
            frequency=data.frequency,
            start_date=data.start_date,
            end_date=data.end_date,
            next_occurrence=data.start_date,
            is_active=data.is_active,
        )
        self.session.add(template)
        self.storage.commit()
        self.session.refresh(template)
        return template

    def update(self, template_id: int, data: RecurringExpenseIn) -> RecurringExpense:
        template = self.get(template_id)
        if data.category_id is not None and data.category_id != template.category_id:
            CategoryService(self.session, self.user_id).get(data.category_id)
        template.category_id = data.category_id
        template.amount_cents = data.amount_cents
        template.description = data.description
        template.frequency = data.frequency
        template.end_date = data.end_date
        template.is_active = data.is_active
        if data.start_date != template.start_date:
            template.start_date = data.start_date
            if template.next_occurrence < data.start_date:
                template.next_occurrence = data.start_date
        if template.end_date is not None and template.next_occurrence > template.end_date:
            template.is_active = False
        self.storage.commit()
        self.session.refresh(template)
        return template

    def pause(self, template_id: int) -> RecurringExpense:
        template = self.get(template_id)
        template.is_active = False
        self.storage.commit()
        return template

    def resume(
        self, template_id: int, as_of: Optional[date] = None
    ) -> RecurringExpense:
        as_of = as_of or local_today()
        template = self.get(template_id)
        if template.end_date is not None and (
            template.end_date < as_of or template.next_occurrence > template.end_date
        ):
            raise InvalidInput("Recurring expense has already ended")
        template.is_active = True
        self.storage.commit()
        return template

    def delete(self, template_id: int) -> None:
        template = self.get(template_id)
        self.session.delete(template)
        self.storage.commit()


class AlertService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list(self, *, unread_only: bool = False, limit: int = 50) -> list[Alert]:
        stmt = (
            select(Alert)
            .where(Alert.user_id == self.user_id)
            .order_by(Alert.created_at.desc(), Alert.id.desc())
            .limit(limit)
        )
        if unread_only:
            stmt = stmt.where(Alert.is_read.is_(False))
        return self.session.scalars(stmt).all()


class AnalyticsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.storage = SqlStorage(session)

    def detailed(
        self, months: int = 6, as_of: Optional[date] = None
    ) -> AnalyticsReport:
        as_of = as_of or local_today()
        periods = trailing_months(as_of, months)
        expenses = self.storage.find_expenses(self.user_id, periods[0].start, as_of)
        budgets = self.storage.find_budgets(self.user_id, as_of.month, as_of.year)
        logger.info(
            f"analytics: user={self.user_id} months={months} as_of={as_of} "
            f"expenses={len(expenses)} budgets={len(budgets)}"
        )
        return aggregate(
            [expense_record(e) for e in expenses],
            [budget_record(b) for b in budgets],
            months,
            as_of,
        )
