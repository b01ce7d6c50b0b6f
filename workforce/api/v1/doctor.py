import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from workforce.core import config
from workforce.core.firebase import firebase_configured
from workforce.db.session import get_db
from workforce.hr_import.tasks import tasks_configured

router = APIRouter()
logger = logging.getLogger("workforce.doctor")


@router.get("/doctor")
def doctor(db=Depends(get_db)):
    settings = config.settings
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError:
        logger.exception("doctor database check failed")
        db_ok = False
    tasks_ok = tasks_configured()
    provider = settings.HR_IMPORT_IDENTITY_PROVIDER
    auth_ok = provider == "local" or (provider == "firebase" and firebase_configured())

    overall = all([db_ok, tasks_ok, auth_ok])
    return {
        "status": "OK" if overall else "WARN",
        "database": "OK" if db_ok else "ERROR",
        "tasks": "OK" if tasks_ok else "INLINE",
        "identity_provider": provider,
        "auth": "OK" if auth_ok else "ERROR",
        "cors": "OK" if settings.BACKEND_CORS_ORIGINS else "ERROR",
    }
