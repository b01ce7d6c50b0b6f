import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Mapping, Optional, Sequence

from workforce.core.tenancy import TenantContext
from workforce.hr_import.config import FieldMappingConfig
from workforce.hr_import.errors import CatastrophicFailure, JobClaimLost, RowError, RowFailure
from workforce.hr_import.validator import validate_row

logger = logging.getLogger("workforce.hr_import.orchestrator")

ProgressCallback = Callable[[int, int, int, int], None]


@dataclass
class BatchResult:
    total: int
    processed: int = 0
    success_count: int = 0
    failed_count: int = 0
    auth_created_count: int = 0
    errors: List[RowError] = field(default_factory=list)
    duration_ms: int = 0


def run_batch(
    rows: Sequence[Mapping[str, object]],
    config: FieldMappingConfig,
    departments: Iterable[Mapping[str, str]],
    tenant: TenantContext,
    resolver,
    *,
    job_id: str = "-",
    on_progress: Optional[ProgressCallback] = None,
    progress_every: int = 50,
) -> BatchResult:
    """Validate and resolve every row in submission order.

    Row numbers are 1-based and follow the input order. Row-level failures are
    recorded and the loop continues; anything else is re-raised as
    ``CatastrophicFailure`` carrying the partial result. ``on_progress`` fires
    every ``progress_every`` rows and once after the last row. Nothing is
    persisted here.
    """
    started = time.monotonic()
    departments = list(departments)
    result = BatchResult(total=len(rows))
    every = max(1, progress_every)
    logger.info("[hr-import %s] batch started rows=%s", job_id, result.total)

    for index, row in enumerate(rows, start=1):
        try:
            record = validate_row(row, config)
            outcome = resolver.resolve(record, tenant, departments)
        except RowFailure as exc:
            result.failed_count += 1
            result.errors.append(RowError(row=index, message=exc.message, email=exc.email))
            logger.warning("[hr-import %s] row %s failed: %s", job_id, index, exc.message)
        except Exception as exc:
            result.duration_ms = int((time.monotonic() - started) * 1000)
            logger.exception("[hr-import %s] aborting at row %s", job_id, index)
            raise CatastrophicFailure(str(exc) or exc.__class__.__name__, partial=result) from exc
        else:
            result.success_count += 1
            if outcome.auth_created:
                result.auth_created_count += 1
        result.processed = index

        if on_progress is not None and (index % every == 0 or index == result.total):
            try:
                on_progress(
                    result.processed,
                    result.success_count,
                    result.failed_count,
                    result.auth_created_count,
                )
            except JobClaimLost:
                raise
            except Exception as exc:
                result.duration_ms = int((time.monotonic() - started) * 1000)
                raise CatastrophicFailure(
                    f"Falha ao registrar progresso: {exc}", partial=result
                ) from exc

    result.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "[hr-import %s] batch finished success=%s failed=%s auth_created=%s duration_ms=%s",
        job_id,
        result.success_count,
        result.failed_count,
        result.auth_created_count,
        result.duration_ms,
    )
    return result
