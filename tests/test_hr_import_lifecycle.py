import logging
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from workforce.core.config import settings
from workforce.db import models
from workforce.hr_import import service
from workforce.hr_import.errors import AlreadyProcessing, CatastrophicFailure, EmptyImport, ImportConfigError
from workforce.hr_import.identity import LocalIdentityProvider
from workforce.hr_import.store import COMPLETED, FAILED, PENDING, PROCESSING, JobStore

VALID_ROW = {
    "Email": "a@x.com",
    "FirstName": "A",
    "LastName": "B",
    "EmployeeNumber": "E1",
    "HireDate": "2024-01-01",
}


def _submit(db, tenant_ctx, mapping_config, rows):
    return service.submit_import(db, tenant_ctx, rows, mapping_config)


def test_submit_requires_rows(db_session, tenant_ctx, mapping_config):
    with pytest.raises(EmptyImport):
        service.submit_import(db_session, tenant_ctx, [], mapping_config)


def test_submit_falls_back_to_tenant_config(db_session, tenant_ctx, mapping_config):
    with pytest.raises(ImportConfigError):
        service.submit_import(db_session, tenant_ctx, [VALID_ROW])

    service.save_tenant_config(db_session, tenant_ctx, service.parse_mapping_config(mapping_config))
    job = service.submit_import(db_session, tenant_ctx, [VALID_ROW])
    assert job.config["systemName"] == "BambooHR"
    assert job.departments[0]["name"] == "Engineering"
    audit = db_session.query(models.AuditLog).filter_by(action="hr_import.submitted").one()
    assert audit.resource_id == job.id


def test_valid_row_completes_with_new_identity(db_session, tenant_ctx, mapping_config):
    job = _submit(db_session, tenant_ctx, mapping_config, [VALID_ROW])
    done = service.process_job(db_session, job.id, provider=LocalIdentityProvider())
    assert done.status == COMPLETED
    assert (done.success_count, done.failed_count, done.auth_created_count) == (1, 0, 1)
    assert done.processed_rows == done.total_rows == 1
    assert done.data is None
    assert set(done.result) == {"success", "failed", "auth_created", "duration"}


def test_resubmitted_row_reuses_identity(db_session, tenant_ctx, mapping_config):
    first = _submit(db_session, tenant_ctx, mapping_config, [VALID_ROW])
    service.process_job(db_session, first.id)
    second = _submit(db_session, tenant_ctx, mapping_config, [VALID_ROW])
    done = service.process_job(db_session, second.id)
    assert done.status == COMPLETED
    assert (done.success_count, done.auth_created_count) == (1, 0)
    assert db_session.query(models.User).filter(models.User.email == "a@x.com").count() == 1


def test_missing_required_field_fails_only_the_row(db_session, tenant_ctx, mapping_config):
    row = dict(VALID_ROW)
    row.pop("EmployeeNumber")
    job = _submit(db_session, tenant_ctx, mapping_config, [row])
    done = service.process_job(db_session, job.id)
    assert done.status == COMPLETED
    assert (done.success_count, done.failed_count) == (0, 1)
    assert len(done.errors) == 1
    assert done.errors[0]["row"] == 1
    assert "employee_number" in done.errors[0]["message"]


def test_progress_is_persisted_while_processing(db_session, tenant_ctx, mapping_config, monkeypatch):
    monkeypatch.setattr(settings, "HR_IMPORT_PROGRESS_EVERY", 1)
    rows = [dict(VALID_ROW, Email=f"p{i}@x.com", EmployeeNumber=f"E{i}") for i in range(3)]
    job = _submit(db_session, tenant_ctx, mapping_config, rows)
    seen = []
    original = JobStore.update_progress

    def spy(self, job_id, processed, *counts):
        seen.append(processed)
        return original(self, job_id, processed, *counts)

    monkeypatch.setattr(JobStore, "update_progress", spy)
    done = service.process_job(db_session, job.id)
    assert seen == [1, 2, 3]
    assert done.processed_rows == 3


def test_second_processing_call_is_refused(session_factory, tenant_ctx, mapping_config):
    first, second = session_factory(), session_factory()
    try:
        job = _submit(first, tenant_ctx, mapping_config, [VALID_ROW])
        service.process_job(first, job.id)
        with pytest.raises(AlreadyProcessing) as exc:
            service.process_job(second, job.id)
        assert exc.value.status == COMPLETED
    finally:
        first.close()
        second.close()


def test_claimed_job_is_not_processed_twice(db_session, tenant_ctx, mapping_config):
    job = _submit(db_session, tenant_ctx, mapping_config, [VALID_ROW])
    JobStore(db_session).claim(job.id)
    with pytest.raises(AlreadyProcessing) as exc:
        service.process_job(db_session, job.id)
    assert exc.value.status == PROCESSING
    assert db_session.query(models.Profile).count() == 0


def test_unexpected_fault_marks_job_failed(db_session, tenant_ctx, mapping_config):
    rows = [dict(VALID_ROW, FirstName=""), dict(VALID_ROW, Email="b@x.com"), dict(VALID_ROW, Email="c@x.com")]
    job = _submit(db_session, tenant_ctx, mapping_config, rows)
    provider = MagicMock()
    provider.provision.side_effect = RuntimeError("auth backend down")

    with pytest.raises(CatastrophicFailure):
        service.process_job(db_session, job.id, provider=provider)

    failed = JobStore(db_session).get(job.id)
    assert failed.status == FAILED
    assert failed.data is None
    assert failed.processed_rows == 1
    assert [error["row"] for error in failed.errors] == [1]
    assert failed.result["error"] == "auth backend down"


def test_fault_without_row_errors_records_job_level_error(db_session, tenant_ctx, mapping_config):
    job = _submit(db_session, tenant_ctx, mapping_config, [VALID_ROW])
    provider = MagicMock()
    provider.provision.side_effect = RuntimeError("auth backend down")

    with pytest.raises(CatastrophicFailure):
        service.process_job(db_session, job.id, provider=provider)

    failed = JobStore(db_session).get(job.id)
    assert failed.errors == [{"row": 0, "message": "auth backend down"}]


def test_trigger_reports_current_state(db_session, tenant_ctx, mapping_config):
    job = _submit(db_session, tenant_ctx, mapping_config, [VALID_ROW])
    outcome = service.trigger_processing(db_session, tenant_ctx, job.id)
    assert outcome["status"] == COMPLETED
    assert outcome["result"]["success"] == 1

    again = service.trigger_processing(db_session, tenant_ctx, job.id)
    assert again == {"job_id": job.id, "status": COMPLETED, "message": "Job ja esta completed"}


def test_reclaim_fails_stuck_jobs_and_redispatches_pending(db_session, tenant_ctx, mapping_config):
    stuck = _submit(db_session, tenant_ctx, mapping_config, [VALID_ROW])
    JobStore(db_session).claim(stuck.id)
    waiting = _submit(db_session, tenant_ctx, mapping_config, [dict(VALID_ROW, Email="w@x.com")])
    later = datetime.utcnow() + timedelta(hours=2)

    background = MagicMock()
    outcome = service.reclaim_stale_jobs(db_session, background=background, now=later)

    assert outcome == {"timed_out": [stuck.id], "redispatched": [waiting.id], "exhausted": []}
    timed_out = JobStore(db_session).get(stuck.id)
    assert timed_out.status == FAILED
    assert timed_out.errors[0]["row"] == 0
    assert timed_out.result["error"] == service.TIMEOUT_MESSAGE
    background.add_task.assert_called_once_with(service.run_job_inline, waiting.id)
    assert JobStore(db_session).get(waiting.id).dispatch_attempts == 1


def test_slow_run_stops_after_reclaim(db_session, tenant_ctx, mapping_config, monkeypatch):
    monkeypatch.setattr(settings, "HR_IMPORT_PROGRESS_EVERY", 1)
    rows = [dict(VALID_ROW, Email=f"p{i}@x.com") for i in range(3)]
    job = _submit(db_session, tenant_ctx, mapping_config, rows)
    original = JobStore.update_progress

    def reclaimed_midway(self, job_id, processed, *counts):
        if processed == 2:
            self.finalize(job_id, FAILED, errors=[], result={"error": service.TIMEOUT_MESSAGE})
        return original(self, job_id, processed, *counts)

    monkeypatch.setattr(JobStore, "update_progress", reclaimed_midway)
    outcome = service.process_job(db_session, job.id)

    assert outcome.status == FAILED
    assert outcome.result == {"error": service.TIMEOUT_MESSAGE}
    assert outcome.processed_rows == 1
    assert db_session.query(models.Profile).count() == 2


def test_dispatch_prefers_cloud_tasks(db_session, tenant_ctx, mapping_config):
    job = _submit(db_session, tenant_ctx, mapping_config, [VALID_ROW])
    background = MagicMock()
    with patch("workforce.hr_import.service.enqueue_http_task", return_value=True) as enqueue:
        assert service.dispatch_processing(db_session, job.id, background=background) == "cloud_tasks"
    enqueue.assert_called_once_with(f"/api/hr-import/worker/process/{job.id}", {"job_id": job.id})
    background.add_task.assert_not_called()
    assert JobStore(db_session).get(job.id).dispatch_attempts == 1


def test_failed_enqueue_counts_as_attempt(db_session, tenant_ctx, mapping_config):
    job = _submit(db_session, tenant_ctx, mapping_config, [VALID_ROW])
    with patch("workforce.hr_import.service.enqueue_http_task", side_effect=RuntimeError("quota")):
        assert service.dispatch_processing(db_session, job.id, background=MagicMock()) == "failed"
    current = JobStore(db_session).get(job.id)
    assert current.status == PENDING
    assert current.dispatch_attempts == 1
    assert current.dispatched_at is not None


def test_reclaim_gives_up_on_failing_queue(db_session, tenant_ctx, mapping_config, monkeypatch, caplog):
    monkeypatch.setattr(settings, "HR_IMPORT_MAX_DISPATCH_ATTEMPTS", 2)
    job = _submit(db_session, tenant_ctx, mapping_config, [VALID_ROW])
    start = datetime.utcnow()

    outcomes = []
    with patch("workforce.hr_import.service.enqueue_http_task", side_effect=RuntimeError("quota")) as enqueue:
        with caplog.at_level(logging.WARNING, logger="workforce.hr_import"):
            for hours in (1, 2, 3):
                later = start + timedelta(hours=hours)
                outcomes.append(service.reclaim_stale_jobs(db_session, background=MagicMock(), now=later))

    assert [outcome["redispatched"] for outcome in outcomes] == [[job.id], [job.id], []]
    assert [outcome["exhausted"] for outcome in outcomes] == [[], [], [job.id]]
    assert enqueue.call_count == 2
    current = JobStore(db_session).get(job.id)
    assert (current.status, current.dispatch_attempts) == (PENDING, 2)
    assert f"[hr-import {job.id}] still pending after 2 dispatch attempts" in caplog.text


def test_inline_dispatch_runs_job(session_factory, db_session, tenant_ctx, mapping_config, monkeypatch):
    from workforce.db import session as session_module

    monkeypatch.setattr(session_module, "SessionLocal", session_factory)
    job = _submit(db_session, tenant_ctx, mapping_config, [VALID_ROW])
    assert service.dispatch_processing(db_session, job.id) == "inline"
    assert JobStore(db_session).get(job.id).status == COMPLETED
