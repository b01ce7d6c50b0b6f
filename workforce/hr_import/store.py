from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import null, or_
from sqlalchemy.orm import Session, defer

from workforce.core.config import settings
from workforce.core.tenancy import TenantContext
from workforce.db import models
from workforce.hr_import.config import FieldMappingConfig
from workforce.hr_import.errors import JobNotFound, RowError

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

ACTIVE_STATUSES = {PENDING, PROCESSING}
TERMINAL_STATUSES = {COMPLETED, FAILED}


class JobStore:
    """Durable import job records.

    Every transition is a conditional UPDATE committed immediately, so a
    status poll issued right after a write observes it and concurrent
    processors cannot both move the same job forward.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def create(
        self,
        tenant: TenantContext,
        rows: Sequence[Mapping[str, object]],
        config: FieldMappingConfig,
        departments: Iterable[Mapping[str, str]],
    ) -> models.ImportJob:
        job = models.ImportJob(
            tenant_id=tenant.tenant_id,
            user_id=tenant.user_id,
            status=PENDING,
            total_rows=len(rows),
            config=config.to_wire(),
            data=[dict(row) for row in rows],
            departments=[{"id": d.get("id"), "name": d.get("name")} for d in departments],
            errors=[],
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        return job

    def get(self, job_id: str, tenant_id: Optional[str] = None) -> models.ImportJob:
        query = self.db.query(models.ImportJob).populate_existing().filter(models.ImportJob.id == job_id)
        if tenant_id is not None:
            query = query.filter(models.ImportJob.tenant_id == tenant_id)
        job = query.first()
        if not job:
            raise JobNotFound(job_id)
        return job

    def claim(self, job_id: str) -> bool:
        now = datetime.utcnow()
        updated = (
            self.db.query(models.ImportJob)
            .filter(models.ImportJob.id == job_id, models.ImportJob.status == PENDING)
            .update(
                {"status": PROCESSING, "started_at": now, "heartbeat_at": now, "updated_at": now},
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated == 1

    def update_progress(self, job_id: str, processed: int, success: int, failed: int, auth_created: int) -> bool:
        now = datetime.utcnow()
        updated = (
            self.db.query(models.ImportJob)
            .filter(
                models.ImportJob.id == job_id,
                models.ImportJob.status == PROCESSING,
                models.ImportJob.processed_rows <= processed,
                models.ImportJob.total_rows >= processed,
            )
            .update(
                {
                    "processed_rows": processed,
                    "success_count": success,
                    "failed_count": failed,
                    "auth_created_count": auth_created,
                    "heartbeat_at": now,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated == 1

    def finalize(
        self,
        job_id: str,
        status: str,
        *,
        errors: List[RowError],
        result: Optional[dict] = None,
        counts: Optional[Tuple[int, int, int, int]] = None,
    ) -> bool:
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Status final invalido: {status}")
        now = datetime.utcnow()
        values = {
            "status": status,
            "errors": [error.as_dict() for error in errors[: settings.HR_IMPORT_MAX_STORED_ERRORS]],
            "result": result,
            "data": null(),
            "completed_at": now,
            "heartbeat_at": now,
            "updated_at": now,
        }
        if counts is not None:
            processed, success, failed, auth_created = counts
            values.update(
                {
                    "processed_rows": processed,
                    "success_count": success,
                    "failed_count": failed,
                    "auth_created_count": auth_created,
                }
            )
        updated = (
            self.db.query(models.ImportJob)
            .filter(models.ImportJob.id == job_id, models.ImportJob.status.in_(ACTIVE_STATUSES))
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        return updated == 1

    def mark_dispatched(self, job_id: str) -> None:
        """Count one dispatch attempt, successful or not, and restart the retry clock."""
        now = datetime.utcnow()
        (
            self.db.query(models.ImportJob)
            .filter(models.ImportJob.id == job_id, models.ImportJob.status == PENDING)
            .update(
                {
                    "dispatch_attempts": models.ImportJob.dispatch_attempts + 1,
                    "dispatched_at": now,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()

    def list_recent(self, tenant_id: str, limit: int = 10, offset: int = 0) -> Tuple[List[models.ImportJob], int]:
        query = self.db.query(models.ImportJob).filter(models.ImportJob.tenant_id == tenant_id)
        total = query.count()
        items = (
            query.options(defer(models.ImportJob.data))
            .order_by(models.ImportJob.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    def stale_processing(self, cutoff: datetime) -> List[models.ImportJob]:
        return (
            self.db.query(models.ImportJob)
            .options(defer(models.ImportJob.data))
            .filter(
                models.ImportJob.status == PROCESSING,
                or_(models.ImportJob.heartbeat_at.is_(None), models.ImportJob.heartbeat_at < cutoff),
            )
            .all()
        )

    def stale_pending(self, cutoff: datetime, max_attempts: int) -> List[models.ImportJob]:
        return self._due_pending(cutoff).filter(models.ImportJob.dispatch_attempts < max_attempts).all()

    def exhausted_pending(self, cutoff: datetime, max_attempts: int) -> List[models.ImportJob]:
        return self._due_pending(cutoff).filter(models.ImportJob.dispatch_attempts >= max_attempts).all()

    def _due_pending(self, cutoff: datetime):
        return (
            self.db.query(models.ImportJob)
            .options(defer(models.ImportJob.data))
            .filter(
                models.ImportJob.status == PENDING,
                models.ImportJob.created_at < cutoff,
                or_(models.ImportJob.dispatched_at.is_(None), models.ImportJob.dispatched_at < cutoff),
            )
            .order_by(models.ImportJob.created_at)
        )
