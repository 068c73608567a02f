from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from errors import StorageFailure
from models import Alert, AlertSeverity, Budget, Expense, RecurringExpense


class SqlStorage:
    def __init__(self, session: Session) -> None:
        self.session = session

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure("Failed to commit changes") from exc

    def find_active_due_templates(self, as_of: date) -> list[RecurringExpense]:
        stmt = (
            select(RecurringExpense)
            .where(
                RecurringExpense.is_active.is_(True),
                RecurringExpense.next_occurrence <= as_of,
            )
            .order_by(RecurringExpense.next_occurrence, RecurringExpense.id)
        )
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise StorageFailure("Failed to load due recurring expenses") from exc

    def find_expenses(self, user_id: int, start: date, end: date) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(
                Expense.user_id == user_id,
                Expense.date.between(start, end),
            )
            .order_by(Expense.date, Expense.id)
        )
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise StorageFailure("Failed to load expenses") from exc

    def find_budgets(self, user_id: int, month: int, year: int) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(
                Budget.user_id == user_id,
                Budget.month == month,
                Budget.year == year,
            )
            .order_by(Budget.id)
        )
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise StorageFailure("Failed to load budgets") from exc

    def find_budget(
        self, user_id: int, category_id: int, month: int, year: int
    ) -> Optional[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == user_id,
            Budget.category_id == category_id,
            Budget.month == month,
            Budget.year == year,
        )
        try:
            return self.session.scalar(stmt)
        except SQLAlchemyError as exc:
            raise StorageFailure("Failed to load budget") from exc

    def category_spent(
        self, user_id: int, category_id: int, start: date, end: date
    ) -> int:
        stmt = select(func.coalesce(func.sum(Expense.amount_cents), 0)).where(
            Expense.user_id == user_id,
            Expense.category_id == category_id,
            Expense.date.between(start, end),
        )
        try:
            return int(self.session.execute(stmt).scalar_one() or 0)
        except SQLAlchemyError as exc:
            raise StorageFailure("Failed to total category spend") from exc

    def insert_expense(
        self,
        *,
        user_id: int,
        category_id: Optional[int],
        amount_cents: int,
        description: Optional[str],
        on_date: date,
        recurring_expense_id: Optional[int] = None,
    ) -> Expense:
        expense = Expense(
            user_id=user_id,
            category_id=category_id,
            amount_cents=amount_cents,
            description=description,
            date=on_date,
            recurring_expense_id=recurring_expense_id,
        )
        try:
            self.session.add(expense)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise StorageFailure("Failed to insert expense") from exc
        return expense

    def update_template(
        self, template_id: int, expected_next: date, **values: object
    ) -> bool:
        """Conditionally update an active template.

        The row only changes if it is still active and its ``next_occurrence``
        still equals ``expected_next``; returns whether a row matched. Loaded
        instances are not synchronized, callers expire them.
        """
        stmt = (
            update(RecurringExpense)
            .where(
                RecurringExpense.id == template_id,
                RecurringExpense.is_active.is_(True),
                RecurringExpense.next_occurrence == expected_next,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageFailure("Failed to update recurring expense") from exc
        return result.rowcount == 1

    def insert_alert(
        self,
        user_id: int,
        kind: str,
        title: str,
        message: str,
        severity: AlertSeverity,
    ) -> Alert:
        alert = Alert(
            user_id=user_id,
            type=kind,
            title=title,
            message=message,
            severity=severity,
        )
        try:
            self.session.add(alert)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise StorageFailure("Failed to insert alert") from exc
        return alert
