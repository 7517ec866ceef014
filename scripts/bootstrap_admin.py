import os
from datetime import datetime

from app.db import models
from app.db.init_db import ensure_rbac_defaults, init_schema
from app.db.session import SessionLocal, engine


def main() -> None:
    email = os.getenv("ADMIN_BOOTSTRAP_EMAIL")
    uid = os.getenv("ADMIN_BOOTSTRAP_UID")
    name = os.getenv("ADMIN_BOOTSTRAP_NAME")
    if not email:
        raise SystemExit("ADMIN_BOOTSTRAP_EMAIL nao definido.")
    email = email.strip().lower()

    init_schema(engine)
    db = SessionLocal()
    try:
        ensure_rbac_defaults(db)
        admin = db.query(models.User).filter(models.User.email == email).first()
        if not admin:
            admin = models.User(email=email, name=name or email.split("@")[0])
            if uid:
                admin.id = uid
            db.add(admin)
        admin.role = "system_admin"
        admin.approval_status = "approved"
        admin.approved_at = admin.approved_at or datetime.utcnow()
        admin.is_active = True
        db.commit()
        print(f"system_admin ativo: {admin.email} (id={admin.id})")
    finally:
        db.close()


if __name__ == "__main__":
    main()
