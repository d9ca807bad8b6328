from datetime import datetime, timezone

from fastapi import APIRouter
from sqlalchemy import text

from marketplace_billing.core.dependencies import get_credentials
from marketplace_billing.db.session import SessionLocal

router = APIRouter(prefix="/system", tags=["System"])


@router.get("/health")
def system_health():
    """
    Health check for deployment monitoring.

    Reports database connectivity and which MercadoPago credentials are set.
    """
    db_ok = True
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception:
        db_ok = False
    finally:
        db.close()

    credentials = get_credentials()
    return {
        "status": "ok" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": "connected" if db_ok else "error",
        "mercadopago": {
            "subscriptions": bool(credentials.subscriptions_access_token),
            "marketplace": bool(credentials.marketplace_access_token),
        },
        "api_version": "1.0.0",
        "service": "Marketplace Billing API",
    }
