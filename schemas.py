from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import Frequency

MAX_EXPENSE_CENTS = 1_000_000_000
MAX_BUDGET_CENTS = 10_000_000_000


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class ExpenseIn(BaseModel):
    amount_cents: int = Field(..., gt=0, le=MAX_EXPENSE_CENTS)
    category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=500)
    date: date


class BudgetIn(BaseModel):
    category_id: int
    monthly_limit_cents: int = Field(..., gt=0, le=MAX_BUDGET_CENTS)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2020, le=2100)


class RecurringExpenseIn(BaseModel):
    amount_cents: int = Field(..., gt=0, le=MAX_EXPENSE_CENTS)
    category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=500)
    frequency: Frequency
    start_date: date
    end_date: Optional[date] = None
    is_active: bool = True

    @model_validator(mode="after")
    def _end_after_start(self) -> "RecurringExpenseIn":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


class RecurringOutcome(str, Enum):
    materialized = "materialized"
    deactivated = "deactivated"
    error = "error"
    skipped = "skipped"


class RecurringItemResult(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    template_id: int
    outcome: RecurringOutcome
    detail: str
    next_occurrence: Optional[date] = None
    expense_id: Optional[int] = None
    occurrences: int = 0


class BatchResult(BaseModel):
    as_of: date
    total: int = 0
    processed_count: int = 0
    error_count: int = 0
    deactivated_count: int = 0
    items: list[RecurringItemResult] = Field(default_factory=list)

    def record(self, item: RecurringItemResult) -> None:
        self.items.append(item)
        self.total += 1
        if item.outcome == RecurringOutcome.materialized:
            self.processed_count += 1
        elif item.outcome == RecurringOutcome.error:
            self.error_count += 1
        elif item.outcome == RecurringOutcome.deactivated:
            self.deactivated_count += 1
