import os

from workforce.db import models
from workforce.db.init_db import ensure_schema, seed_initial_data
from workforce.db.session import SessionLocal, engine


def main() -> None:
    if not os.getenv("SEED_ADMIN_EMAIL"):
        raise SystemExit("SEED_ADMIN_EMAIL nao definido.")
    models.Base.metadata.create_all(bind=engine)
    ensure_schema(engine)
    db = SessionLocal()
    try:
        admin = seed_initial_data(db)
        print(f"Admin ACTIVE: {admin.email} tenant={admin.tenant_id}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
