import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from workforce.api.v1.auth import router as auth_router
from workforce.api.v1.doctor import router as doctor_router
from workforce.api.v1.hr_import import router as hr_import_router
from workforce.api.v1.hr_import_config import router as hr_import_config_router
from workforce.core.config import settings
from workforce.db import models
from workforce.db.init_db import ensure_schema, seed_initial_data
from workforce.db.session import SessionLocal, engine

if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO)

logger = logging.getLogger("workforce")

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Workforce - Importacao de colaboradores a partir do RH",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    models.Base.metadata.create_all(bind=engine)
    ensure_schema(engine)
    with SessionLocal() as db:
        seed_initial_data(db)
    if settings.ENV.lower() == "production":
        if settings.SECRET_KEY == "dev-secret-change-me":
            logger.warning("SECRET_KEY esta usando valor padrao em producao.")
        if settings.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
            logger.warning("SQLALCHEMY_DATABASE_URI aponta para SQLite em producao.")


app.include_router(auth_router, prefix="/api")
app.include_router(hr_import_router, prefix="/api")
app.include_router(hr_import_config_router, prefix="/api")
app.include_router(doctor_router, prefix="/api")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


@app.get("/api/health")
def health():
    return {"status": "ok"}
