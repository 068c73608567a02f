import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from config import get_settings
from errors import InvalidInput
from models import Frequency, RecurringExpense
from periods import days_in_month, shift_month
from schemas import BatchResult, RecurringItemResult, RecurringOutcome
from storage import SqlStorage

logger = logging.getLogger(__name__)

RECURRING_SUFFIX = "(Recurring)"
MAX_CATCH_UP = 366


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    year, month = shift_month(base.year, base.month, months)
    # snap to the last valid day: Jan 31 -> Feb 29 (leap) / Feb 28
    day = min(desired_day, days_in_month(year, month))
    return date(year, month, day)


def advance(
    current: date,
    frequency: Union[Frequency, str],
    anchor_day: Optional[int] = None,
) -> date:
    """Return the occurrence following ``current``.

    Monthly and yearly steps keep ``anchor_day`` (default: ``current.day``)
    where the target month has it and otherwise use the month's last day, so
    a series anchored on the 31st runs Jan 31, Feb 29, Mar 31, Apr 30.
    """
    try:
        frequency = Frequency(frequency)
    except ValueError as exc:
        raise InvalidInput(f"Unsupported frequency: {frequency}") from exc
    desired_day = anchor_day or current.day
    if not 1 <= desired_day <= 31:
        raise InvalidInput(f"Invalid anchor day: {desired_day}")

    if frequency == Frequency.daily:
        return current + timedelta(days=1)
    if frequency == Frequency.weekly:
        return current + timedelta(weeks=1)
    if frequency == Frequency.monthly:
        return _add_months(current, 1, desired_day=desired_day)
    return _add_months(current, 12, desired_day=desired_day)


def recurring_description(description: Optional[str]) -> str:
    base = (description or "").strip()
    if not base:
        return RECURRING_SUFFIX
    return f"{base} {RECURRING_SUFFIX}"


@dataclass(frozen=True)
class DueTemplate:
    id: int
    user_id: int
    category_id: Optional[int]
    amount_cents: int
    description: Optional[str]
    frequency: Frequency
    start_date: date
    end_date: Optional[date]
    next_occurrence: date

    @classmethod
    def from_model(cls, template: RecurringExpense) -> "DueTemplate":
        return cls(
            id=template.id,
            user_id=template.user_id,
            category_id=template.category_id,
            amount_cents=template.amount_cents,
            description=template.description,
            frequency=template.frequency,
            start_date=template.start_date,
            end_date=template.end_date,
            next_occurrence=template.next_occurrence,
        )


class RecurringEngine:
    def __init__(self, session: Session, storage: Optional[SqlStorage] = None) -> None:
        self.session = session
        self.storage = storage or SqlStorage(session)

    def process_due(self, as_of: Optional[date] = None) -> BatchResult:
        as_of = as_of or local_today()
        result = BatchResult(as_of=as_of)
        # snapshot first: a rollback further down expires the loaded rows
        due = [
            DueTemplate.from_model(t)
            for t in self.storage.find_active_due_templates(as_of)
        ]
        logger.info(f"recurring_run: as_of={as_of} due={len(due)}")
        for item in due:
            result.record(self._process_one(item, as_of))
        self.session.expire_all()
        logger.info(
            f"recurring_run: as_of={as_of} processed={result.processed_count} "
            f"deactivated={result.deactivated_count} errors={result.error_count}"
        )
        return result

    def _process_one(self, item: DueTemplate, as_of: date) -> RecurringItemResult:
        try:
            if item.end_date is not None and item.end_date < as_of:
                return self._deactivate(item)
            return self._materialize(item, as_of)
        except Exception as exc:
            self.session.rollback()
            logger.exception(f"recurring_run: template={item.id} failed")
            return RecurringItemResult(
                template_id=item.id,
                outcome=RecurringOutcome.error,
                detail=str(exc) or exc.__class__.__name__,
                next_occurrence=item.next_occurrence,
            )

    def _deactivate(self, item: DueTemplate) -> RecurringItemResult:
        claimed = self.storage.update_template(
            item.id, item.next_occurrence, is_active=False
        )
        if not claimed:
            return self._skipped(item)
        self.session.commit()
        return RecurringItemResult(
            template_id=item.id,
            outcome=RecurringOutcome.deactivated,
            detail="end date passed",
            next_occurrence=item.next_occurrence,
        )

    def _materialize(self, item: DueTemplate, as_of: date) -> RecurringItemResult:
        current = item.next_occurrence
        expense_ids: list[int] = []
        ends = False
        while current <= as_of and len(expense_ids) < MAX_CATCH_UP:
            next_date = advance(current, item.frequency, item.start_date.day)
            values: dict[str, object] = {"next_occurrence": next_date}
            ends = item.end_date is not None and next_date > item.end_date
            if ends:
                values["is_active"] = False

            # claim each occurrence before writing its expense
            if not self.storage.update_template(item.id, current, **values):
                return self._skipped(item)
            expense = self.storage.insert_expense(
                user_id=item.user_id,
                category_id=item.category_id,
                amount_cents=item.amount_cents,
                description=recurring_description(item.description),
                on_date=as_of,
                recurring_expense_id=item.id,
            )
            expense_ids.append(expense.id)
            current = next_date
            if ends:
                break

        # all occurrences of one template commit together
        self.session.commit()
        if len(expense_ids) > 1:
            logger.info(
                f"recurring_run: template={item.id} caught up {len(expense_ids)} occurrences"
            )
        detail = "posted" if len(expense_ids) == 1 else f"posted {len(expense_ids)} occurrences"
        if ends:
            detail += "; end date reached, deactivated"
        return RecurringItemResult(
            template_id=item.id,
            outcome=RecurringOutcome.materialized,
            detail=detail,
            next_occurrence=current,
            expense_id=expense_ids[-1],
            occurrences=len(expense_ids),
        )

    def _skipped(self, item: DueTemplate) -> RecurringItemResult:
        self.session.rollback()
        logger.warning(
            f"recurring_run: template={item.id} changed concurrently, skipping"
        )
        return RecurringItemResult(
            template_id=item.id,
            outcome=RecurringOutcome.skipped,
            detail="already processed by another run",
            next_occurrence=item.next_occurrence,
        )
