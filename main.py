import logging
import secrets
from datetime import date
from typing import NoReturn, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db
from errors import InvalidInput, NotFound, StorageFailure
from models import Alert, Budget, Category, Expense, RecurringExpense
from rate_limit import RouteClass, rate_limited
from recurrence import local_today
from scheduler import SchedulerManager, run_recurring
from schemas import BudgetIn, CategoryIn, ExpenseIn, RecurringExpenseIn
from services import (
    AlertService,
    AnalyticsService,
    BudgetService,
    CategoryService,
    ExpenseService,
    RecurringExpenseService,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Fintrack")

read_limit = Depends(rate_limited(RouteClass.read))
mutation_limit = Depends(rate_limited(RouteClass.mutation))

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, NotFound):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, StorageFailure):
        logger.error(f"storage_failure: {exc}")
        raise HTTPException(status_code=503, detail="Storage unavailable") from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


def category_to_dict(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "icon": category.icon,
        "color": category.color,
    }


def expense_to_dict(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "date": expense.date.isoformat(),
        "amount_cents": expense.amount_cents,
        "description": expense.description,
        "category_id": expense.category_id,
        "category": expense.category.name if expense.category else None,
        "recurring_expense_id": expense.recurring_expense_id,
    }


def budget_to_dict(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "category_id": budget.category_id,
        "monthly_limit_cents": budget.monthly_limit_cents,
        "month": budget.month,
        "year": budget.year,
    }


def recurring_to_dict(template: RecurringExpense) -> dict[str, object]:
    return {
        "id": template.id,
        "category_id": template.category_id,
        "amount_cents": template.amount_cents,
        "description": template.description,
        "frequency": template.frequency.value,
        "start_date": template.start_date.isoformat(),
        "end_date": template.end_date.isoformat() if template.end_date else None,
        "next_occurrence": template.next_occurrence.isoformat(),
        "is_active": template.is_active,
    }


def alert_to_dict(alert: Alert) -> dict[str, object]:
    return {
        "id": alert.id,
        "type": alert.type,
        "title": alert.title,
        "message": alert.message,
        "severity": alert.severity.value,
        "is_read": alert.is_read,
        "created_at": alert.created_at.isoformat(),
    }


def check_cron_secret(authorization: Optional[str]) -> None:
    secret = get_settings().cron_secret
    if not secret or not authorization:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not secrets.compare_digest(authorization, f"Bearer {secret}"):
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.api_route("/api/cron/process-recurring", methods=["GET", "POST"])
def process_recurring(
    as_of: Optional[date] = None,
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    check_cron_secret(authorization)
    try:
        result = run_recurring("cron", as_of, session=db)
    except (InvalidInput, StorageFailure) as exc:
        raise_http(exc)
    if result is None:
        raise HTTPException(
            status_code=409, detail="Recurring processing already running"
        )
    return result.model_dump(mode="json")


@app.get("/api/expenses", dependencies=[read_limit])
def list_expenses(
    start: Optional[date] = None,
    end: Optional[date] = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    offset = (page - 1) * limit
    items = ExpenseService(db).list(start, end, limit=limit + 1, offset=offset)
    has_more = len(items) > limit
    return {
        "items": [expense_to_dict(e) for e in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.post("/api/expenses", status_code=201, dependencies=[mutation_limit])
def create_expense(payload: ExpenseIn, db: Session = Depends(get_db)):
    try:
        expense = ExpenseService(db).create(payload)
    except (ValueError, StorageFailure) as exc:
        raise_http(exc)
    return expense_to_dict(expense)


@app.put("/api/expenses/{expense_id}", dependencies=[mutation_limit])
def update_expense(
    expense_id: int, payload: ExpenseIn, db: Session = Depends(get_db)
):
    try:
        expense = ExpenseService(db).update(expense_id, payload)
    except (ValueError, StorageFailure) as exc:
        raise_http(exc)
    return expense_to_dict(expense)


@app.delete("/api/expenses/{expense_id}", dependencies=[mutation_limit])
def delete_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        ExpenseService(db).delete(expense_id)
    except (ValueError, StorageFailure) as exc:
        raise_http(exc)
    return {"deleted": expense_id}


@app.get("/api/categories", dependencies=[read_limit])
def list_categories(db: Session = Depends(get_db)):
    return [category_to_dict(c) for c in CategoryService(db).list_all()]


@app.post("/api/categories", status_code=201, dependencies=[mutation_limit])
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(payload)
    except (ValueError, StorageFailure) as exc:
        raise_http(exc)
    return category_to_dict(category)


@app.get("/api/budgets", dependencies=[read_limit])
def list_budgets(
    month: Optional[int] = None,
    year: Optional[int] = None,
    db: Session = Depends(get_db),
):
    today = local_today()
    if month is None:
        month = today.month
    if year is None:
        year = today.year
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Month must be between 1 and 12")
    service = BudgetService(db)
    try:
        return {
            "month": month,
            "year": year,
            "budgets": [budget_to_dict(b) for b in service.list_for_month(year, month)],
            "performance": service.performance_for_month(year, month),
        }
    except (ValueError, StorageFailure) as exc:
        raise_http(exc)


@app.post("/api/budgets", dependencies=[mutation_limit])
def upsert_budget(payload: BudgetIn, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db).upsert(payload)
    except (ValueError, StorageFailure) as exc:
        raise_http(exc)
    return budget_to_dict(budget)


@app.delete("/api/budgets/{budget_id}", dependencies=[mutation_limit])
def delete_budget(budget_id: int, db: Session = Depends(get_db)):
    try:
        BudgetService(db).delete(budget_id)
    except (ValueError, StorageFailure) as exc:
        raise_http(exc)
    return {"deleted": budget_id}


@app.get("/api/recurring-expenses", dependencies=[read_limit])
def list_recurring(db: Session = Depends(get_db)):
    return [recurring_to_dict(t) for t in RecurringExpenseService(db).list()]


@app.post("/api/recurring-expenses", status_code=201, dependencies=[mutation_limit])
def create_recurring(payload: RecurringExpenseIn, db: Session = Depends(get_db)):
    try:
        template = RecurringExpenseService(db).create(payload)
    except (ValueError, StorageFailure) as exc:
        raise_http(exc)
    return recurring_to_dict(template)


@app.put("/api/recurring-expenses/{template_id}", dependencies=[mutation_limit])
def update_recurring(
    template_id: int, payload: RecurringExpenseIn, db: Session = Depends(get_db)
):
    try:
        template = RecurringExpenseService(db).update(template_id, payload)
    except (ValueError, StorageFailure) as exc:
        raise_http(exc)
    return recurring_to_dict(template)


@app.post("/api/recurring-expenses/{template_id}/pause", dependencies=[mutation_limit])
def pause_recurring(template_id: int, db: Session = Depends(get_db)):
    try:
        template = RecurringExpenseService(db).pause(template_id)
    except (ValueError, StorageFailure) as exc:
        raise_http(exc)
    return recurring_to_dict(template)


@app.post("/api/recurring-expenses/{template_id}/resume", dependencies=[mutation_limit])
def resume_recurring(template_id: int, db: Session = Depends(get_db)):
    try:
        template = RecurringExpenseService(db).resume(template_id)
    except (ValueError, StorageFailure) as exc:
        raise_http(exc)
    return recurring_to_dict(template)


@app.delete("/api/recurring-expenses/{template_id}", dependencies=[mutation_limit])
def delete_recurring(template_id: int, db: Session = Depends(get_db)):
    try:
        RecurringExpenseService(db).delete(template_id)
    except (ValueError, StorageFailure) as exc:
        raise_http(exc)
    return {"deleted": template_id}


@app.get("/api/alerts", dependencies=[read_limit])
def list_alerts(unread_only: bool = False, db: Session = Depends(get_db)):
    return [alert_to_dict(a) for a in AlertService(db).list(unread_only=unread_only)]


@app.get("/api/analytics/detailed", dependencies=[read_limit])
def analytics_detailed(
    months: int = 6,
    as_of: Optional[date] = None,
    db: Session = Depends(get_db),
):
    try:
        report = AnalyticsService(db).detailed(months, as_of)
    except (ValueError, StorageFailure) as exc:
        raise_http(exc)
    return report.to_dict()


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
