import os

os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite://")
os.environ["HR_IMPORT_IDENTITY_PROVIDER"] = "local"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from workforce.core.security import get_password_hash
from workforce.core.tenancy import TenantContext
from workforce.db import models

TASK_ENV = (
    "GCP_PROJECT_ID",
    "CLOUD_TASKS_LOCATION",
    "CLOUD_TASKS_QUEUE",
    "CLOUD_TASKS_WORKER_URL",
    "HR_IMPORT_TASKS_SECRET",
)

ADMIN_PASSWORD = "senha-admin-1"


@pytest.fixture(autouse=True)
def _no_cloud_tasks(monkeypatch):
    for name in TASK_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    models.Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture()
def tenant_admin(db_session):
    tenant = models.Tenant(name="Acme", slug="acme", status="active")
    db_session.add(tenant)
    db_session.commit()
    admin = models.User(
        tenant_id=tenant.id,
        email="admin@acme.com",
        password_hash=get_password_hash(ADMIN_PASSWORD),
        role="admin",
        status="active",
    )
    engineering = models.Department(tenant_id=tenant.id, name="Engineering")
    db_session.add_all([admin, engineering])
    db_session.commit()
    return tenant, admin


@pytest.fixture()
def tenant_ctx(tenant_admin):
    _, admin = tenant_admin
    return TenantContext.from_user(admin)


@pytest.fixture()
def mapping_config():
    return {
        "systemName": "BambooHR",
        "sourceFields": ["Email", "FirstName", "LastName", "EmployeeNumber", "HireDate", "Department"],
        "fieldMapping": {
            "Email": "email",
            "FirstName": "first_name",
            "LastName": "last_name",
            "EmployeeNumber": "employee_number",
            "HireDate": "hire_date",
            "Department": "department",
        },
        "requiredFields": ["email", "first_name", "last_name", "employee_number"],
    }
