import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketplace_billing.core.credentials import CredentialSet
from marketplace_billing.core.dependencies import get_credentials, get_mercadopago_client
from marketplace_billing.db.session import get_db
from marketplace_billing.schemas.billing import (
    ERROR_RESPONSES,
    PlanListResponse,
    SyncPlanRequest,
    SyncPlanResponse,
    SyncPlansResponse,
)
from marketplace_billing.services.mercadopago_client import MercadoPagoClient
from marketplace_billing.services.plan_sync import PlanSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mercadopago", tags=["MercadoPago Plans"], responses=ERROR_RESPONSES)


def get_plan_sync(
    db: Session = Depends(get_db),
    client: MercadoPagoClient = Depends(get_mercadopago_client),
    credentials: CredentialSet = Depends(get_credentials),
) -> PlanSyncService:
    return PlanSyncService(db, client, credentials)


# ✅ SYNC ONE PLAN
@router.post("/sync-plan", response_model=SyncPlanResponse)
def sync_plan(payload: SyncPlanRequest, service: PlanSyncService = Depends(get_plan_sync)):
    """Create or update the MercadoPago preapproval plan behind a local plan."""
    return service.sync_plan(payload.plan_id)


# ✅ SYNC ALL ACTIVE PLANS
@router.post("/sync-plans", response_model=SyncPlansResponse)
def sync_plans(service: PlanSyncService = Depends(get_plan_sync)):
    return service.sync_all()


# ✅ PLANS WITH REMOTE STATUS
@router.get("/plans", response_model=PlanListResponse)
def list_plans(service: PlanSyncService = Depends(get_plan_sync)):
    return {"plans": service.list_plans()}
