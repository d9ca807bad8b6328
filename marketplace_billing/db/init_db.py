from marketplace_billing.db.session import engine
from marketplace_billing.db.base import Base


def init_db():
    """Create any missing tables (used when Alembic migrations are disabled)."""
    import marketplace_billing.db.models  # noqa: F401 - registers models on Base.metadata

    Base.metadata.create_all(bind=engine)
