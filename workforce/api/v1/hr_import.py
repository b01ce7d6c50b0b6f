import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel

from workforce.core.security import require_admin
from workforce.core.tenancy import TenantContext
from workforce.db import models
from workforce.db.session import get_db
from workforce.hr_import.errors import (
    AlreadyProcessing,
    CatastrophicFailure,
    EmptyImport,
    ImportConfigError,
    JobNotFound,
)
from workforce.hr_import.report import build_error_report
from workforce.hr_import.service import (
    dispatch_processing,
    process_job,
    reclaim_stale_jobs,
    submit_import,
    trigger_processing,
)
from workforce.hr_import.store import JobStore
from workforce.hr_import.tasks import SECRET_HEADER

router = APIRouter(prefix="/hr-import", tags=["HR Import"])
logger = logging.getLogger("workforce.api.hr_import")


class DepartmentRef(BaseModel):
    id: str
    name: str


class StartImportRequest(BaseModel):
    data: List[Dict[str, Any]]
    config: Optional[Dict[str, Any]] = None
    departments: Optional[List[DepartmentRef]] = None


class TriggerProcessRequest(BaseModel):
    job_id: str
    departments: Optional[List[DepartmentRef]] = None


def _departments(items: Optional[List[DepartmentRef]]):
    if items is None:
        return None
    return [item.model_dump() for item in items]


def _serialize_job(job: models.ImportJob) -> dict:
    return {
        "id": job.id,
        "tenant_id": job.tenant_id,
        "user_id": job.user_id,
        "status": job.status,
        "total_rows": job.total_rows,
        "processed_rows": job.processed_rows,
        "success_count": job.success_count,
        "failed_count": job.failed_count,
        "auth_created_count": job.auth_created_count,
        "errors": job.errors or [],
        "config": job.config,
        "result": job.result,
        "dispatch_attempts": job.dispatch_attempts,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
    }


def _summarize_job(job: models.ImportJob) -> dict:
    return {
        "id": job.id,
        "status": job.status,
        "total_rows": job.total_rows,
        "processed_rows": job.processed_rows,
        "success_count": job.success_count,
        "failed_count": job.failed_count,
        "auth_created_count": job.auth_created_count,
        "error_count": len(job.errors or []),
        "result": job.result,
        "created_at": job.created_at,
        "completed_at": job.completed_at,
    }


@router.post("/start")
def start_import(
    payload: StartImportRequest,
    background: BackgroundTasks,
    db=Depends(get_db),
    tenant: TenantContext = Depends(require_admin),
):
    try:
        job = submit_import(db, tenant, payload.data, payload.config, _departments(payload.departments))
    except EmptyImport as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ImportConfigError as exc:
        raise HTTPException(status_code=400 if payload.config is None else 422, detail=str(exc))

    how = dispatch_processing(db, job.id, background=background)
    logger.info("[hr-import %s] dispatched via %s", job.id, how)
    return {"job_id": job.id, "message": "Importacao iniciada"}


@router.post("/trigger-process")
def trigger_process(
    payload: TriggerProcessRequest,
    db=Depends(get_db),
    tenant: TenantContext = Depends(require_admin),
):
    try:
        return trigger_processing(db, tenant, payload.job_id, departments=_departments(payload.departments))
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job nao encontrado")
    except CatastrophicFailure as exc:
        raise HTTPException(status_code=500, detail=f"Falha no processamento: {exc.message}")


@router.post("/worker/process/{job_id}")
def run_process_worker(job_id: str, request: Request, db=Depends(get_db)):
    _verify_worker(request)
    try:
        job = process_job(db, job_id)
    except JobNotFound:
        return {"status": "not_found"}
    except AlreadyProcessing as exc:
        return {"status": exc.status, "message": str(exc)}
    except CatastrophicFailure as exc:
        raise HTTPException(status_code=500, detail=f"Falha no processamento: {exc.message}")
    return {"status": job.status}


@router.post("/worker/reclaim")
def run_reclaim_worker(request: Request, background: BackgroundTasks, db=Depends(get_db)):
    _verify_worker(request)
    return reclaim_stale_jobs(db, background=background)


@router.get("/status/{job_id}")
def get_import_status(
    job_id: str,
    db=Depends(get_db),
    tenant: TenantContext = Depends(require_admin),
):
    try:
        job = JobStore(db).get(job_id, tenant_id=tenant.tenant_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job nao encontrado")
    return _serialize_job(job)


@router.get("/jobs")
def list_import_jobs(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db=Depends(get_db),
    tenant: TenantContext = Depends(require_admin),
):
    jobs, total = JobStore(db).list_recent(tenant.tenant_id, limit=limit, offset=offset)
    return {"jobs": [_summarize_job(job) for job in jobs], "total": total, "limit": limit, "offset": offset}


@router.get("/jobs/{job_id}/errors.xlsx")
def download_import_errors(
    job_id: str,
    db=Depends(get_db),
    tenant: TenantContext = Depends(require_admin),
):
    try:
        job = JobStore(db).get(job_id, tenant_id=tenant.tenant_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job nao encontrado")
    content, filename = build_error_report(job)
    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def _verify_worker(request: Request) -> None:
    secret = os.getenv("HR_IMPORT_TASKS_SECRET")
    if secret:
        header = request.headers.get(SECRET_HEADER)
        if header != secret:
            raise HTTPException(status_code=403, detail="Acesso negado")
