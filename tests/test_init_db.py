from sqlalchemy import create_engine, inspect, text

from workforce.core.security import verify_password
from workforce.db import models
from workforce.db.init_db import ensure_schema, seed_initial_data


def test_seed_is_skipped_without_admin_email(db_session, monkeypatch):
    monkeypatch.delenv("SEED_ADMIN_EMAIL", raising=False)
    assert seed_initial_data(db_session) is None
    assert db_session.query(models.Tenant).count() == 0


def test_seed_creates_tenant_admin_once(db_session, monkeypatch):
    monkeypatch.setenv("SEED_ADMIN_EMAIL", " Owner@Acme.com ")
    monkeypatch.setenv("SEED_ADMIN_PASSWORD", "pw-seed-1")
    monkeypatch.setenv("SEED_TENANT_NAME", "Acme Corp")

    admin = seed_initial_data(db_session)
    again = seed_initial_data(db_session)

    assert again.id == admin.id
    assert admin.email == "owner@acme.com"
    assert admin.role == "admin"
    assert verify_password("pw-seed-1", admin.password_hash)
    tenant = db_session.query(models.Tenant).one()
    assert tenant.slug == "acme-corp"


def test_ensure_schema_adds_missing_columns(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'old.db'}")
    with engine.begin() as connection:
        connection.execute(text("CREATE TABLE import_jobs (id VARCHAR PRIMARY KEY, tenant_id VARCHAR)"))
    ensure_schema(engine)
    columns = {col["name"] for col in inspect(engine).get_columns("import_jobs")}
    assert {"heartbeat_at", "dispatch_attempts", "data"} <= columns
    engine.dispose()
