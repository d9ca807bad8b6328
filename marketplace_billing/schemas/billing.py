"""
Pydantic schemas for MercadoPago billing endpoints.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class CreateSubscriptionRequest(BaseModel):
    """Request schema for creating a subscription."""
    plan_id: str = Field(..., alias="planId", description="Local plan ID")
    user_id: str = Field(..., alias="userId", description="Local user ID")
    card_token_id: str = Field(..., alias="cardTokenId", description="Single-use card token from MercadoPago.js")
    payer_email: Optional[str] = Field(None, alias="payerEmail", description="Required unless existingSubscriptionId is given")
    is_upgrade: bool = Field(False, alias="isUpgrade", description="Allow creation while a live subscription exists")
    existing_subscription_id: Optional[str] = Field(
        None, alias="existingSubscriptionId", description="Subscription to take the payer email and card from"
    )

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "planId": "3f0c8a7e2b5d4c1f9e6a8b7c6d5e4f3a",
                "userId": "a1b2c3d4e5f60718293a4b5c6d7e8f90",
                "cardTokenId": "ff8080814c11e237014c1ff593b57b4d",
                "payerEmail": "publisher@example.com",
                "isUpgrade": False,
            }
        }


class CreateSubscriptionResponse(BaseModel):
    """Response schema for subscription creation."""
    subscriptionId: str = Field(..., description="MercadoPago preapproval ID")
    initPoint: Optional[str] = Field(None, description="MercadoPago checkout URL")
    localSubscriptionId: str = Field(..., description="Local subscription row ID")
    publicKey: Optional[str] = Field(None, description="Public key of the subscriptions account")
    upgradeAttemptId: Optional[str] = Field(None, description="Upgrade attempt ID when isUpgrade is set")

    class Config:
        json_schema_extra = {
            "example": {
                "subscriptionId": "2c9380848e5d1b4a018e6a1f0b3c0a1d",
                "initPoint": "https://www.mercadopago.com.ar/subscriptions/checkout?preapproval_id=2c93...",
                "localSubscriptionId": "9d8c7b6a5f4e3d2c1b0a998877665544",
                "publicKey": "APP_USR-...",
            }
        }


class ChangePlanRequest(BaseModel):
    """Request schema for phase 2 of a plan upgrade."""
    user_id: str = Field(..., alias="userId")
    old_subscription_id: str = Field(..., alias="oldSubscriptionId", description="Local ID of the subscription to cancel")
    new_subscription_id: str = Field(
        ..., alias="newSubscriptionId", description="Local ID or MercadoPago preapproval ID of the new subscription"
    )
    upgrade_attempt_id: Optional[str] = Field(None, alias="upgradeAttemptId")

    class Config:
        populate_by_name = True


class UpgradeRequest(BaseModel):
    """Request schema for a one-call plan upgrade."""
    user_id: str = Field(..., alias="userId")
    plan_id: str = Field(..., alias="planId", description="Target plan ID")
    card_token_id: str = Field(..., alias="cardTokenId")
    existing_subscription_id: Optional[str] = Field(None, alias="existingSubscriptionId")
    payer_email: Optional[str] = Field(None, alias="payerEmail")

    class Config:
        populate_by_name = True


class UnsubscribeRequest(BaseModel):
    user_id: str = Field(..., alias="userId")
    subscription_id: str = Field(..., alias="subscriptionId", description="Local ID or MercadoPago preapproval ID")

    class Config:
        populate_by_name = True


class VerificationResponse(BaseModel):
    """Result of a verification poll."""
    status: Optional[str] = Field(None, description="Local subscription status")
    providerStatus: Optional[str] = Field(None, description="MercadoPago preapproval status")
    subscriptionId: Optional[str] = None
    updated: bool = False
    retryAfterSeconds: Optional[int] = Field(None, description="Set while MercadoPago has not authorized yet")
    mercadoPagoId: Optional[str] = Field(None, description="Preapproval ID, set in per-user results")
    error: Optional[str] = Field(None, description="Why this subscription could not be verified")


class VerificationListResponse(BaseModel):
    results: List[VerificationResponse]


class UpgradeAttemptResponse(BaseModel):
    id: str
    user_id: str
    target_plan_id: str
    old_subscription_id: Optional[str] = None
    new_subscription_id: Optional[str] = None
    phase: str
    outcome: str
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UpgradeAttemptListResponse(BaseModel):
    attempts: List[UpgradeAttemptResponse]


class BillingErrorResponse(BaseModel):
    """Error response schema for billing operations."""
    error: str = Field(..., description="Error code")
    detail: Optional[str] = Field(None, description="Human-readable message")

    class Config:
        extra = "allow"
        json_schema_extra = {
            "example": {
                "error": "duplicate_active_subscription",
                "detail": "User already has an active subscription",
                "existingSubscription": "9d8c7b6a5f4e3d2c1b0a998877665544",
            }
        }


# OpenAPI documentation for BillingError responses, shared by the routers
ERROR_RESPONSES = {
    status_code: {"model": BillingErrorResponse}
    for status_code in (400, 403, 404, 409, 500, 502)
}


class WebhookAck(BaseModel):
    """Webhook acknowledgement; always returned with HTTP 200."""
    received: bool = True
    outcome: Optional[Dict[str, Any]] = None


class SyncPlanRequest(BaseModel):
    plan_id: str = Field(..., alias="planId", description="Local plan ID")

    class Config:
        populate_by_name = True


class SyncPlanResponse(BaseModel):
    """Outcome of publishing one plan as a MercadoPago preapproval plan."""
    success: bool = True
    planId: str
    mercadoPagoPlanId: str = Field(..., description="Preapproval plan ID now stored on the plan")
    created: bool = Field(..., description="False when the linked remote plan was updated in place")


class SyncPlansResponse(BaseModel):
    success: int = Field(..., description="Plans synced")
    errors: int = Field(..., description="Plans that failed to sync")
    results: List[Dict[str, Any]]


class PlanStatusResponse(BaseModel):
    planId: str
    name: str
    price: float
    currency: Optional[str] = None
    billingCycle: Optional[str] = None
    isActive: bool
    mercadoPagoPlanId: Optional[str] = None
    mercadoPagoStatus: str = Field(..., description="Remote plan status, or not_synced, not_found, error")


class PlanListResponse(BaseModel):
    plans: List[PlanStatusResponse]
