import os
from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw.strip())


class Settings:
    def __init__(self) -> None:
        base_dir = Path(__file__).resolve().parent.parent.parent
        self.APP_NAME: str = os.getenv("APP_NAME", "Workforce API")
        self.SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-secret-change-me")
        self.ACCESS_TOKEN_EXPIRE_HOURS: int = _env_int("ACCESS_TOKEN_EXPIRE_HOURS", 8)
        self.ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
        self.SQLALCHEMY_DATABASE_URI: str = os.getenv(
            "SQLALCHEMY_DATABASE_URI",
            f"sqlite:///{(base_dir / 'workforce.db').as_posix()}",
        )
        self.ENV: str = os.getenv("ENV", "development")

        self.HR_IMPORT_PROGRESS_EVERY: int = _env_int("HR_IMPORT_PROGRESS_EVERY", 50)
        # Host ceiling for a single processing request; sent as the Cloud Tasks dispatch deadline.
        self.HR_IMPORT_MAX_SECONDS: int = _env_int("HR_IMPORT_MAX_SECONDS", 300)
        self.HR_IMPORT_PROCESSING_TIMEOUT_SECONDS: int = _env_int("HR_IMPORT_PROCESSING_TIMEOUT_SECONDS", 600)
        self.HR_IMPORT_PENDING_RETRY_SECONDS: int = _env_int("HR_IMPORT_PENDING_RETRY_SECONDS", 120)
        self.HR_IMPORT_MAX_DISPATCH_ATTEMPTS: int = _env_int("HR_IMPORT_MAX_DISPATCH_ATTEMPTS", 3)
        self.HR_IMPORT_MAX_STORED_ERRORS: int = _env_int("HR_IMPORT_MAX_STORED_ERRORS", 5000)
        self.HR_IMPORT_IDENTITY_PROVIDER: str = os.getenv("HR_IMPORT_IDENTITY_PROVIDER", "local").strip().lower()

        default_cors = [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ]
        cors_origins = os.getenv("BACKEND_CORS_ORIGINS")
        self.BACKEND_CORS_ORIGINS: List[str] = (
            [origin.strip() for origin in cors_origins.split(",") if origin.strip()]
            if cors_origins
            else default_cors
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
