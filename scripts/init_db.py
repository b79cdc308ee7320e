import os
import sys
from datetime import datetime
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.adoptrees.models import User
from scripts._db_utils import script_session


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the admin account in an idempotent way.
    Does NOT overwrite an existing admin user's password; an existing customer
    account with the admin email is promoted instead.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@adoptrees.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    admin_name = (os.environ.get("ADMIN_NAME") or "Administrator").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///adoptrees.db").strip()

    with script_session(db_url) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        now = datetime.utcnow()
        if not user:
            user = User(
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                name=admin_name,
                user_type="individual",
                role="admin",
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            s.add(user)
            print(f"Created admin user {admin_email}", flush=True)
        elif user.role != "admin":
            user.role = "admin"
            user.updated_at = now
            print(f"Promoted {admin_email} to admin", flush=True)
        else:
            print(f"Admin user {admin_email} already present", flush=True)


def main() -> None:
    from alembic import command
    from alembic.config import Config

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///adoptrees.db").strip()
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")
    seed_only(database_url=db_url)


if __name__ == "__main__":
    main()
