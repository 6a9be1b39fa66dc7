import logging
from datetime import datetime
from typing import NoReturn, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from sqlalchemy.orm import Session

from analytics import BudgetAnalyticsService, budget_out
from config import get_settings
from csrf import generate_csrf_token, require_csrf
from database import SessionLocal
from periods import resolve_preset
from schemas import (
    BudgetComparison,
    BudgetIn,
    BudgetOut,
    BudgetsOverviewResponse,
    BudgetUpdateIn,
    PresetOut,
    PresetQuery,
)
from services import (
    BudgetService,
    BudgetValidationError,
    DuplicateBudgetItemError,
    FatalReadError,
    NotFoundError,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Analytics")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _parse_datetime(raw: Optional[str], label: str) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label} date") from exc


def _raise_for_write_error(exc: ValueError) -> NoReturn:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, DuplicateBudgetItemError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/csrf-token")
def api_csrf_token():
    return {"token": generate_csrf_token()}


@app.get("/api/budget-presets", response_model=PresetOut)
def api_budget_presets(request: Request):
    try:
        query = PresetQuery(**request.query_params)
        date_range, name = resolve_preset(
            query.kind,
            year=query.year,
            month=query.month,
            start=query.start,
            end=query.end,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return PresetOut(
        kind=query.kind, start=date_range.start, end=date_range.end, name=name
    )


@app.get("/api/budgets")
def api_budgets(request: Request, db: Session = Depends(get_db)):
    date_from = _parse_datetime(request.query_params.get("from"), "from")
    date_to = _parse_datetime(request.query_params.get("to"), "to")
    budgets = BudgetService(db).list(date_from=date_from, date_to=date_to)
    return {"data": [budget_out(budget) for budget in budgets]}


@app.post(
    "/api/budgets",
    status_code=201,
    response_model=BudgetOut,
    dependencies=[Depends(require_csrf)],
)
def api_create_budget(data: BudgetIn, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db).create(data)
    except ValueError as exc:
        _raise_for_write_error(exc)
    return budget_out(budget)


@app.get("/api/budgets/overview", response_model=BudgetsOverviewResponse)
def api_budgets_overview(db: Session = Depends(get_db)):
    try:
        return BudgetAnalyticsService(db).overview()
    except FatalReadError:
        logging.exception("Error building budgets overview")
        raise


@app.get("/api/budgets/{budget_id}", response_model=BudgetOut)
def api_budget(budget_id: int, db: Session = Depends(get_db)):
    budget = BudgetService(db).get(budget_id)
    if budget is None:
        raise HTTPException(status_code=404, detail="Budget not found")
    return budget_out(budget)


@app.patch(
    "/api/budgets/{budget_id}",
    response_model=BudgetOut,
    dependencies=[Depends(require_csrf)],
)
def api_update_budget(
    budget_id: int, data: BudgetUpdateIn, db: Session = Depends(get_db)
):
    try:
        budget = BudgetService(db).update(budget_id, data)
    except ValueError as exc:
        _raise_for_write_error(exc)
    return budget_out(budget)


@app.delete("/api/budgets/{budget_id}", dependencies=[Depends(require_csrf)])
def api_delete_budget(budget_id: int, db: Session = Depends(get_db)):
    try:
        BudgetService(db).delete(budget_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/budgets/{budget_id}/comparison", response_model=BudgetComparison)
def api_budget_comparison(budget_id: int, db: Session = Depends(get_db)):
    try:
        return BudgetAnalyticsService(db).compare_budget(budget_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except FatalReadError:
        logging.exception(f"Error comparing budget {budget_id}")
        raise
