import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from workforce.core.config import settings
from workforce.core.tenancy import TenantContext
from workforce.db import models
from workforce.hr_import.config import FieldMappingConfig, parse_mapping_config
from workforce.hr_import.errors import (
    AlreadyProcessing,
    CatastrophicFailure,
    EmptyImport,
    ImportConfigError,
    JobClaimLost,
    JobNotFound,
    RowError,
)
from workforce.hr_import.identity import get_identity_provider
from workforce.hr_import.orchestrator import BatchResult, run_batch
from workforce.hr_import.resolver import IdentityResolver
from workforce.hr_import.store import COMPLETED, FAILED, PENDING, JobStore
from workforce.hr_import.tasks import enqueue_http_task

logger = logging.getLogger("workforce.hr_import")

WORKER_PROCESS_PATH = "/api/hr-import/worker/process/{job_id}"
TIMEOUT_MESSAGE = "Processamento interrompido: sem heartbeat dentro do tempo limite"


def load_tenant_config(db: Session, tenant_id: str) -> Optional[FieldMappingConfig]:
    row = db.query(models.TenantConfig).filter(models.TenantConfig.tenant_id == tenant_id).first()
    if not row or not row.hr_import_config:
        return None
    return parse_mapping_config(row.hr_import_config)


def save_tenant_config(db: Session, tenant: TenantContext, config: FieldMappingConfig) -> models.TenantConfig:
    row = db.query(models.TenantConfig).filter(models.TenantConfig.tenant_id == tenant.tenant_id).first()
    if not row:
        row = models.TenantConfig(tenant_id=tenant.tenant_id)
        db.add(row)
    row.hr_import_config = config.to_wire()
    db.add(
        models.AuditLog(
            tenant_id=tenant.tenant_id,
            user_id=tenant.user_id,
            action="hr_import.config.saved",
            resource_type="tenant_config",
            resource_id=tenant.tenant_id,
            payload_resumo={"system_name": config.system_name, "mapped_fields": len(config.field_mapping)},
        )
    )
    db.commit()
    db.refresh(row)
    return row


def load_departments(db: Session, tenant_id: str) -> List[Dict[str, str]]:
    items = (
        db.query(models.Department)
        .filter(models.Department.tenant_id == tenant_id)
        .order_by(models.Department.name.asc())
        .all()
    )
    return [{"id": item.id, "name": item.name} for item in items]


def submit_import(
    db: Session,
    tenant: TenantContext,
    rows: Sequence[Mapping[str, Any]],
    config: Any = None,
    departments: Optional[Sequence[Mapping[str, str]]] = None,
) -> models.ImportJob:
    if not rows:
        raise EmptyImport("Nenhum dado informado para importacao")
    if config is None:
        mapping = load_tenant_config(db, tenant.tenant_id)
        if mapping is None:
            raise ImportConfigError("Configuracao de importacao nao encontrada para o tenant")
    else:
        mapping = parse_mapping_config(config)
    if departments is None:
        departments = load_departments(db, tenant.tenant_id)

    job = JobStore(db).create(tenant, rows, mapping, departments)
    _record_audit(db, job, "hr_import.submitted", {"total_rows": job.total_rows, "system": mapping.system_name})
    db.commit()
    logger.info("[hr-import %s] created job tenant=%s rows=%s", job.id, tenant.tenant_id, job.total_rows)
    return job


def dispatch_processing(db: Session, job_id: str, background=None) -> str:
    """Hand the job to a worker and record the attempt on the job.

    Cloud Tasks is used when configured; otherwise the job runs in a FastAPI
    background task, or inline when no background runner is given. A failed
    enqueue still counts as an attempt and leaves the job pending for the
    reclaim sweep, which gives up after ``HR_IMPORT_MAX_DISPATCH_ATTEMPTS``.
    """
    store = JobStore(db)
    try:
        queued = enqueue_http_task(WORKER_PROCESS_PATH.format(job_id=job_id), {"job_id": job_id})
    except Exception:
        logger.exception("[hr-import %s] failed to enqueue processing task", job_id)
        store.mark_dispatched(job_id)
        return "failed"
    store.mark_dispatched(job_id)
    if queued:
        return "cloud_tasks"
    if background is not None:
        background.add_task(run_job_inline, job_id)
        return "background"
    run_job_inline(job_id)
    return "inline"


def run_job_inline(job_id: str) -> None:
    from workforce.db.session import SessionLocal

    db = SessionLocal()
    try:
        process_job(db, job_id)
    except (AlreadyProcessing, JobNotFound) as exc:
        logger.info("[hr-import %s] inline run skipped: %s", job_id, exc)
    except CatastrophicFailure as exc:
        logger.error("[hr-import %s] inline run failed: %s", job_id, exc.message)
    finally:
        db.close()


def process_job(
    db: Session,
    job_id: str,
    departments: Optional[Sequence[Mapping[str, str]]] = None,
    provider=None,
    tenant: Optional[TenantContext] = None,
) -> models.ImportJob:
    store = JobStore(db)
    store.get(job_id, tenant_id=tenant.tenant_id if tenant else None)
    if not store.claim(job_id):
        current = store.get(job_id)
        logger.info("[hr-import %s] job already %s, skipping", job_id, current.status)
        raise AlreadyProcessing(job_id, current.status)

    started = time.monotonic()
    job = store.get(job_id)
    logger.info("[hr-import %s] processing started rows=%s", job_id, job.total_rows)

    def on_progress(processed: int, success: int, failed: int, auth_created: int) -> None:
        if not store.update_progress(job_id, processed, success, failed, auth_created):
            raise JobClaimLost(f"Job {job_id} nao esta mais em processamento")

    try:
        config = parse_mapping_config(job.config)
        job_tenant = TenantContext(tenant_id=job.tenant_id, user_id=job.user_id)
        if departments is None:
            departments = job.departments if job.departments is not None else load_departments(db, job.tenant_id)
        resolver = IdentityResolver(db, provider or get_identity_provider())
        result = run_batch(
            job.data or [],
            config,
            departments,
            job_tenant,
            resolver,
            job_id=job_id,
            on_progress=on_progress,
            progress_every=settings.HR_IMPORT_PROGRESS_EVERY,
        )
        duration = _elapsed_ms(started)
        finalized = store.finalize(
            job_id,
            COMPLETED,
            errors=result.errors,
            result=_summary(result, duration),
            counts=(job.total_rows, result.success_count, result.failed_count, result.auth_created_count),
        )
        if not finalized:
            raise JobClaimLost(f"Job {job_id} foi finalizado por outro processo")
    except JobClaimLost as exc:
        db.rollback()
        logger.warning("[hr-import %s] claim lost, stopping without further writes: %s", job_id, exc)
        return store.get(job_id)
    except Exception as exc:
        db.rollback()
        partial = exc.partial if isinstance(exc, CatastrophicFailure) else None
        message = exc.message if isinstance(exc, CatastrophicFailure) else (str(exc) or exc.__class__.__name__)
        logger.exception("[hr-import %s] processing failed: %s", job_id, message)
        _mark_failed(store, job_id, message, partial, _elapsed_ms(started))
        if isinstance(exc, CatastrophicFailure):
            raise
        raise CatastrophicFailure(message, partial=partial) from exc

    job = store.get(job_id)
    _record_audit(db, job, "hr_import.completed", job.result or {})
    db.commit()
    logger.info(
        "[hr-import %s] completed success=%s failed=%s auth_created=%s duration_ms=%s",
        job_id,
        job.success_count,
        job.failed_count,
        job.auth_created_count,
        duration,
    )
    return job


def trigger_processing(
    db: Session,
    tenant: TenantContext,
    job_id: str,
    departments: Optional[Sequence[Mapping[str, str]]] = None,
    provider=None,
) -> Dict[str, Any]:
    """Operator re-trigger for jobs stuck in pending; other states are reported as-is."""
    job = JobStore(db).get(job_id, tenant_id=tenant.tenant_id)
    if job.status != PENDING:
        return {"job_id": job.id, "status": job.status, "message": f"Job ja esta {job.status}"}
    logger.info("[hr-import %s] manual trigger by user=%s", job_id, tenant.user_id)
    try:
        job = process_job(db, job_id, departments=departments, provider=provider, tenant=tenant)
    except AlreadyProcessing as exc:
        return {"job_id": job_id, "status": exc.status, "message": str(exc)}
    return {"job_id": job.id, "status": job.status, "result": job.result}


def reclaim_stale_jobs(db: Session, background=None, now: Optional[datetime] = None) -> Dict[str, List[str]]:
    now = now or datetime.utcnow()
    store = JobStore(db)

    timed_out: List[str] = []
    processing_cutoff = now - timedelta(seconds=settings.HR_IMPORT_PROCESSING_TIMEOUT_SECONDS)
    stale = [
        (job.id, job.success_count, job.failed_count, job.auth_created_count, job.started_at)
        for job in store.stale_processing(processing_cutoff)
    ]
    for job_id, success, failed, auth_created, started_at in stale:
        duration = int((now - started_at).total_seconds() * 1000) if started_at else 0
        result = {
            "success": success,
            "failed": failed,
            "auth_created": auth_created,
            "duration": duration,
            "error": TIMEOUT_MESSAGE,
        }
        if store.finalize(job_id, FAILED, errors=[RowError(row=0, message=TIMEOUT_MESSAGE)], result=result):
            logger.warning("[hr-import %s] processing timed out, marked as failed", job_id)
            timed_out.append(job_id)

    pending_cutoff = now - timedelta(seconds=settings.HR_IMPORT_PENDING_RETRY_SECONDS)
    max_attempts = settings.HR_IMPORT_MAX_DISPATCH_ATTEMPTS
    exhausted: List[str] = []
    for job in store.exhausted_pending(pending_cutoff, max_attempts):
        logger.warning(
            "[hr-import %s] still pending after %s dispatch attempts, needs manual trigger",
            job.id,
            job.dispatch_attempts,
        )
        exhausted.append(job.id)

    redispatched: List[str] = []
    pending_ids = [job.id for job in store.stale_pending(pending_cutoff, max_attempts)]
    for job_id in pending_ids:
        logger.info("[hr-import %s] still pending, dispatching again", job_id)
        dispatch_processing(db, job_id, background=background)
        redispatched.append(job_id)

    return {"timed_out": timed_out, "redispatched": redispatched, "exhausted": exhausted}


def _mark_failed(
    store: JobStore, job_id: str, message: str, partial: Optional[BatchResult], duration: int
) -> None:
    errors = list(partial.errors) if partial else []
    if not errors:
        errors = [RowError(row=0, message=message)]
    counts = None
    summary = {"success": 0, "failed": 0, "auth_created": 0, "duration": duration, "error": message}
    if partial is not None:
        counts = (partial.processed, partial.success_count, partial.failed_count, partial.auth_created_count)
        summary.update(_summary(partial, duration))
    try:
        store.finalize(job_id, FAILED, errors=errors, result=summary, counts=counts)
    except Exception:
        store.db.rollback()
        logger.exception("[hr-import %s] could not record failed status", job_id)


def _summary(result: BatchResult, duration: int) -> Dict[str, int]:
    return {
        "success": result.success_count,
        "failed": result.failed_count,
        "auth_created": result.auth_created_count,
        "duration": duration,
    }


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _record_audit(db: Session, job: models.ImportJob, action: str, payload: dict) -> None:
    db.add(
        models.AuditLog(
            tenant_id=job.tenant_id,
            user_id=job.user_id,
            action=action,
            resource_type="import_job",
            resource_id=job.id,
            payload_resumo=payload,
        )
    )
