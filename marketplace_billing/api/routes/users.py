from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketplace_billing.db.models.user import User
from marketplace_billing.db.session import get_db
from marketplace_billing.schemas.billing import ERROR_RESPONSES
from marketplace_billing.services.errors import NotFound
from marketplace_billing.services.side_effects import get_entitlements

router = APIRouter(prefix="/users", tags=["Users"], responses=ERROR_RESPONSES)


@router.get("/{user_id}/entitlements")
def user_entitlements(user_id: str, db: Session = Depends(get_db)):
    """Publisher status and limits derived from the user's active subscription."""
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found")

    entitlements = dict(get_entitlements(db, user_id))
    entitlements["roles"] = user.roles or []
    return entitlements
