import logging
import os

from sqlalchemy import func, inspect, text
from sqlalchemy.orm import Session

from workforce.core.security import get_password_hash
from workforce.db import models

logger = logging.getLogger("workforce.init_db")

RESET_DEFAULT_PASSWORDS = os.getenv("RESET_DEFAULT_PASSWORDS", "").strip().lower() in {"1", "true", "yes"}


def _slugify(value: str) -> str:
    return (
        value.strip()
        .lower()
        .replace(" ", "-")
        .replace("/", "-")
        .replace("\\", "-")
        .replace("--", "-")
    )


def ensure_schema(engine) -> None:
    """Back-fill columns added to the models on SQLite databases created before them."""
    if engine.dialect.name != "sqlite":
        return
    inspector = inspect(engine)
    preparer = engine.dialect.identifier_preparer
    existing_tables = set(inspector.get_table_names())
    for table_name, table in models.Base.metadata.tables.items():
        if table_name not in existing_tables:
            continue
        existing_columns = {col["name"] for col in inspector.get_columns(table_name)}
        for column in table.columns:
            if column.name in existing_columns:
                continue
            col_type = column.type.compile(dialect=engine.dialect)
            logger.info("adding missing column %s.%s", table_name, column.name)
            with engine.begin() as connection:
                connection.execute(
                    text(
                        f"ALTER TABLE {preparer.quote(table_name)} "
                        f"ADD COLUMN {preparer.quote(column.name)} {col_type}"
                    )
                )


def seed_initial_data(db: Session) -> models.User | None:
    """Create the first tenant and its admin when SEED_ADMIN_EMAIL is set."""
    admin_email = (os.getenv("SEED_ADMIN_EMAIL") or "").strip().lower()
    if not admin_email:
        return None
    admin_password = os.getenv("SEED_ADMIN_PASSWORD", "admin123")
    tenant_name = os.getenv("SEED_TENANT_NAME", "Workforce")

    tenant = db.query(models.Tenant).filter(models.Tenant.slug == _slugify(tenant_name)).first()
    if not tenant:
        tenant = models.Tenant(name=tenant_name, slug=_slugify(tenant_name), status="active")
        db.add(tenant)
        db.commit()
        db.refresh(tenant)

    admin_user = (
        db.query(models.User)
        .filter(models.User.tenant_id == tenant.id, func.lower(models.User.email) == admin_email)
        .first()
    )
    if not admin_user:
        admin_user = models.User(
            tenant_id=tenant.id,
            email=admin_email,
            password_hash=get_password_hash(admin_password),
            role="admin",
            status="active",
        )
        db.add(admin_user)
    else:
        admin_user.role = "admin"
        admin_user.status = "active"
        if RESET_DEFAULT_PASSWORDS or not admin_user.password_hash:
            admin_user.password_hash = get_password_hash(admin_password)
    db.commit()
    db.refresh(admin_user)
    logger.info("seed ok tenant=%s admin=%s", tenant.slug, admin_user.email)
    return admin_user
