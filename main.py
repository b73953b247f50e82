import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy.orm import Session

from database import session_factory
from jobs import (
    BackfillJob,
    DateShiftJob,
    InstallmentDedupJob,
    ReconciliationJob,
    RegenerationJob,
    TemplateDedupJob,
    category_relabel_job,
    sector_relabel_job,
)
from ledger import LedgerRow
from ledger_client import FetchError, LedgerClient
from scheduler import SchedulerManager
from schemas import CategoryRelabelIn, DateShiftIn, SectorRelabelIn, TemplateIn
from services import FixedExpenseService

logger = logging.getLogger(__name__)

app = FastAPI(title="Fixed Expenses")


def get_db():
    db = session_factory()()
    try:
        yield db
    finally:
        db.close()


def get_client(db: Session = Depends(get_db)) -> LedgerClient:
    return LedgerClient(db)


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def _startup() -> None:
    scheduler_manager.start()


@app.on_event("shutdown")
def _shutdown() -> None:
    scheduler_manager.stop()


def row_payload(row: LedgerRow) -> dict:
    return {
        "id": row.id,
        "kind": row.kind.value,
        "description": row.description,
        "cost_center_id": row.cost_center_id,
        "date": row.date.isoformat(),
        "value": str(row.value),
        "category": row.category,
        "sector": row.sector,
        "is_template": row.is_template,
        "duration_months": row.duration_months,
        "installment_number": row.installment_number,
    }


def run_job(job: ReconciliationJob, execute: bool) -> dict:
    try:
        report = job.run(apply=execute)
    except FetchError as exc:
        logger.error(f"job_failed: job={job.name} error={exc}")
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return report.to_dict()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/templates")
def list_templates(client: LedgerClient = Depends(get_client)):
    return [row_payload(r) for r in FixedExpenseService(client).list_templates()]


@app.post("/templates", status_code=201)
def create_template(data: TemplateIn, client: LedgerClient = Depends(get_client)):
    try:
        created = FixedExpenseService(client).create(data)
    except FetchError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if created.template is None:
        raise HTTPException(status_code=502, detail="Template could not be stored")
    return {
        "template": row_payload(created.template),
        "installments": [row_payload(r) for r in created.installments],
        "failures": [str(r.error) for r in created.failures],
    }


@app.post("/jobs/dedup-installments")
def dedup_installments(execute: bool = False, client: LedgerClient = Depends(get_client)):
    return run_job(InstallmentDedupJob(client), execute)


@app.post("/jobs/dedup-templates")
def dedup_templates(execute: bool = False, client: LedgerClient = Depends(get_client)):
    return run_job(TemplateDedupJob(client), execute)


@app.post("/jobs/regenerate")
def regenerate(
    template_id: Optional[str] = None,
    execute: bool = False,
    client: LedgerClient = Depends(get_client),
):
    return run_job(RegenerationJob(client, template_id=template_id), execute)


@app.post("/jobs/backfill")
def backfill(execute: bool = False, client: LedgerClient = Depends(get_client)):
    return run_job(BackfillJob(client), execute)


@app.post("/jobs/shift-date")
def shift_date(
    data: DateShiftIn, execute: bool = False, client: LedgerClient = Depends(get_client)
):
    job = DateShiftJob(
        client,
        data.description_contains,
        target_year=data.target_year,
        target_month=data.target_month,
        anchor_day=data.anchor_day,
    )
    return run_job(job, execute)


@app.post("/jobs/relabel-sector")
def relabel_sector(
    data: SectorRelabelIn, execute: bool = False, client: LedgerClient = Depends(get_client)
):
    return run_job(sector_relabel_job(client, data.description_contains, data.sector), execute)


@app.post("/jobs/relabel-category")
def relabel_category(
    data: CategoryRelabelIn, execute: bool = False, client: LedgerClient = Depends(get_client)
):
    return run_job(category_relabel_job(client, data.old_category, data.new_category), execute)
