import logging
from datetime import date
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy.orm import Session, sessionmaker

from advice import AdviceService, AdviceUnavailable
from config import get_settings
from database import SessionLocal
from models import DebtStatus
from periods import Granularity, parse_target_date, today_in
from scheduler import SchedulerManager
from schemas import (
    AdviceOut,
    CategoryTotalOut,
    DebtIn,
    DebtOut,
    DebtUpdate,
    MonthlyTrendOut,
    SavingsGoalIn,
    SavingsGoalOut,
    SavingsGoalUpdate,
    SummaryOut,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
)
from services import (
    AnalyticsService,
    DebtService,
    ExpenseService,
    IncomeService,
    InvalidView,
    ReportService,
    SavingsGoalService,
    StorageError,
    SummaryService,
    SummaryView,
    TransactionService,
    ViewNotImplemented,
    invalidate_summaries,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

app = FastAPI(title="Finance Tracker")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    return SessionLocal


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def pagination(page: Optional[str], limit: Optional[str]) -> tuple[int, int]:
    try:
        page_value = int(page) if page else 1
    except ValueError:
        page_value = 1
    try:
        limit_value = int(limit) if limit else 10
    except ValueError:
        limit_value = 10
    page_value = max(page_value, 1)
    if limit_value < 1:
        limit_value = 10
    return (page_value - 1) * limit_value, limit_value


def parse_query_date(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail=f"Invalid {name} format. Use YYYY-MM-DD."
        ) from exc


def register_transaction_routes(path: str, service_cls: type[TransactionService]):
    label = service_cls.label.lower()

    @app.post(path, status_code=201, response_model=TransactionOut)
    def create_record(
        payload: TransactionIn,
        background_tasks: BackgroundTasks,
        db: Session = Depends(get_db),
        session_factory: sessionmaker = Depends(get_session_factory),
    ):
        record = service_cls(db).create(payload)
        background_tasks.add_task(invalidate_summaries, session_factory, [record.date])
        return record

    @app.get(path, response_model=list[TransactionOut])
    def list_records(
        page: Optional[str] = None,
        limit: Optional[str] = None,
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        db: Session = Depends(get_db),
    ):
        offset, size = pagination(page, limit)
        return service_cls(db).list(
            offset=offset,
            limit=size,
            start=parse_query_date(start_date, "startDate"),
            end=parse_query_date(end_date, "endDate"),
        )

    @app.get(path + "/{record_id}", response_model=TransactionOut)
    def get_record(record_id: int, db: Session = Depends(get_db)):
        try:
            return service_cls(db).get(record_id)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.put(path + "/{record_id}", response_model=TransactionOut)
    def update_record(
        record_id: int,
        payload: TransactionUpdate,
        background_tasks: BackgroundTasks,
        db: Session = Depends(get_db),
        session_factory: sessionmaker = Depends(get_session_factory),
    ):
        if not payload.model_dump(exclude_unset=True):
            raise HTTPException(
                status_code=400,
                detail="At least one field must be provided for update",
            )
        service = service_cls(db)
        try:
            previous_date = service.get(record_id).date
            record = service.update(record_id, payload)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        background_tasks.add_task(
            invalidate_summaries, session_factory, [previous_date, record.date]
        )
        return record

    @app.delete(path + "/{record_id}", status_code=204)
    def delete_record(
        record_id: int,
        background_tasks: BackgroundTasks,
        db: Session = Depends(get_db),
        session_factory: sessionmaker = Depends(get_session_factory),
    ):
        try:
            item_date = service_cls(db).delete(record_id)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        logger.info(f"{label}_deleted: id={record_id} date={item_date}")
        background_tasks.add_task(invalidate_summaries, session_factory, [item_date])
        return Response(status_code=204)


register_transaction_routes(f"{API_PREFIX}/incomes", IncomeService)
register_transaction_routes(f"{API_PREFIX}/expenses", ExpenseService)


@app.post(f"{API_PREFIX}/debts", status_code=201, response_model=DebtOut)
def create_debt(payload: DebtIn, db: Session = Depends(get_db)):
    return DebtService(db).create(payload)


@app.get(f"{API_PREFIX}/debts", response_model=list[DebtOut])
def list_debts(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
):
    offset, size = pagination(page, limit)
    status_filter = None
    if status:
        try:
            status_filter = DebtStatus(status)
        except ValueError as exc:
            allowed = ", ".join(s.value for s in DebtStatus)
            raise HTTPException(
                status_code=400,
                detail=f"Invalid status filter. Allowed values: {allowed}",
            ) from exc
    return DebtService(db).list(offset=offset, limit=size, status=status_filter)


@app.get(f"{API_PREFIX}/debts/{{debt_id}}", response_model=DebtOut)
def get_debt(debt_id: int, db: Session = Depends(get_db)):
    try:
        return DebtService(db).get(debt_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put(f"{API_PREFIX}/debts/{{debt_id}}", response_model=DebtOut)
def update_debt(debt_id: int, payload: DebtUpdate, db: Session = Depends(get_db)):
    if not payload.model_dump(exclude_unset=True):
        raise HTTPException(
            status_code=400, detail="At least one field must be provided for update"
        )
    try:
        return DebtService(db).update(debt_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete(f"{API_PREFIX}/debts/{{debt_id}}", status_code=204)
def delete_debt(debt_id: int, db: Session = Depends(get_db)):
    try:
        DebtService(db).delete(debt_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post(f"{API_PREFIX}/savings", status_code=201, response_model=SavingsGoalOut)
def create_savings_goal(payload: SavingsGoalIn, db: Session = Depends(get_db)):
    return SavingsGoalService(db).create(payload)


@app.get(f"{API_PREFIX}/savings", response_model=list[SavingsGoalOut])
def list_savings_goals(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    db: Session = Depends(get_db),
):
    offset, size = pagination(page, limit)
    return SavingsGoalService(db).list(offset=offset, limit=size)


@app.get(f"{API_PREFIX}/savings/{{goal_id}}", response_model=SavingsGoalOut)
def get_savings_goal(goal_id: int, db: Session = Depends(get_db)):
    try:
        return SavingsGoalService(db).get(goal_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put(f"{API_PREFIX}/savings/{{goal_id}}", response_model=SavingsGoalOut)
def update_savings_goal(
    goal_id: int, payload: SavingsGoalUpdate, db: Session = Depends(get_db)
):
    if not payload.model_dump(exclude_unset=True):
        raise HTTPException(
            status_code=400, detail="At least one field must be provided for update"
        )
    try:
        return SavingsGoalService(db).update(goal_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete(f"{API_PREFIX}/savings/{{goal_id}}", status_code=204)
def delete_savings_goal(goal_id: int, db: Session = Depends(get_db)):
    try:
        SavingsGoalService(db).delete(goal_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get(f"{API_PREFIX}/summary/{{granularity}}", response_model=SummaryOut)
def get_summary(
    granularity: str,
    target: Optional[str] = Query(None, alias="date"),
    view: str = SummaryView.overall.value,
    db: Session = Depends(get_db),
):
    try:
        target_date = parse_target_date(
            target, granularity, today=today_in(get_settings().timezone)
        )
        return SummaryService(db).get_or_create_summary(granularity, target_date, view)
    except ViewNotImplemented as exc:
        raise HTTPException(status_code=501, detail=str(exc)) from exc
    except (InvalidView, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StorageError as exc:
        logger.error(f"summary_request_failed: granularity={granularity} error={exc}")
        raise HTTPException(
            status_code=500, detail=f"Failed to get or create {granularity} summary"
        ) from exc


@app.get(f"{API_PREFIX}/reports/csv")
def export_csv_report(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
):
    start = parse_query_date(start_date, "startDate")
    end = parse_query_date(end_date, "endDate")
    if start is None or end is None:
        raise HTTPException(
            status_code=400,
            detail=(
                "startDate and endDate query parameters are required "
                "in YYYY-MM-DD format."
            ),
        )
    try:
        content = ReportService(db).transactions_csv(start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    filename = ReportService.filename(start, end)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get(
    f"{API_PREFIX}/analytics/expense-categories",
    response_model=list[CategoryTotalOut],
)
def expense_categories(
    target: Optional[str] = Query(None, alias="date"),
    db: Session = Depends(get_db),
):
    try:
        target_date = parse_target_date(
            target, Granularity.monthly, today=today_in(get_settings().timezone)
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return AnalyticsService(db).expense_breakdown(target_date)


@app.get(
    f"{API_PREFIX}/analytics/income-expense-trend",
    response_model=list[MonthlyTrendOut],
)
def income_expense_trend(
    months: int = Query(6, ge=1, le=36),
    db: Session = Depends(get_db),
):
    try:
        return AnalyticsService(db).income_expense_trend(months)
    except StorageError as exc:
        raise HTTPException(
            status_code=500, detail="Failed to load income/expense trend"
        ) from exc


@app.get(f"{API_PREFIX}/advice", response_model=AdviceOut)
def get_advice(db: Session = Depends(get_db)):
    try:
        summary = SummaryService(db).get_or_create_summary(
            Granularity.monthly,
            today_in(get_settings().timezone),
            SummaryView.overall,
        )
    except StorageError as exc:
        raise HTTPException(
            status_code=500, detail="Failed to get financial summary"
        ) from exc
    try:
        advice = AdviceService().financial_advice(summary)
    except AdviceUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except RuntimeError as exc:
        raise HTTPException(
            status_code=502, detail=f"Failed to get financial advice: {exc}"
        ) from exc
    return AdviceOut(advice=advice)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
