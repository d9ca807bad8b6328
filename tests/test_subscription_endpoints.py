"""
Tests for the subscription endpoints, including the end-to-end flows.
"""
from marketplace_billing.db.models.payment import Payment
from marketplace_billing.db.models.subscription import Subscription
from marketplace_billing.db.models.user import User


def create(api_client, plan, user, **extra):
    body = {"planId": plan.id, "userId": user.id, "cardTokenId": "tok-1", "payerEmail": "ana@example.com"}
    body.update(extra)
    return api_client.post("/mercadopago/subscription-create", json=body)


def test_subscribe_and_activate_via_webhook(db, api_client, mp, dispatcher, user, plan):
    response = create(api_client, plan, user)

    assert response.status_code == 200
    body = response.json()
    assert body["publicKey"] == "APP_USR-public"
    assert "upgradeAttemptId" not in body
    local = db.get(Subscription, body["localSubscriptionId"])
    assert local.status == "pending"
    assert local.amount == 1000.0

    mp.authorize(body["subscriptionId"])
    event = {"type": "subscription_preapproval", "action": "updated", "data": {"id": body["subscriptionId"]}}
    api_client.post("/mercadopago/webhook", json=event)
    api_client.post("/mercadopago/webhook", json=event)

    db.refresh(local)
    assert local.status == "active"
    assert "publisher" in db.get(User, user.id).roles
    assert db.query(Payment).count() == 0
    assert dispatcher.recomputed == [user.id]


def test_duplicate_subscription_returns_409(api_client, mp, user, plan, subscription_factory):
    existing = subscription_factory(user, plan, status="active", mercadopago_subscription_id="pre-old")

    response = create(api_client, plan, user)

    assert response.status_code == 409
    assert response.json() == {
        "error": "duplicate_active_subscription",
        "detail": "User already has an active subscription",
        "existingSubscription": existing.id,
    }


def test_unsynced_plan_returns_400(api_client, user, plan_factory):
    response = create(api_client, plan_factory(name="Draft", mercadopago_plan_id=None), user)

    assert response.status_code == 400
    assert response.json()["error"] == "plan_not_synced"


def test_missing_body_fields_return_422(api_client):
    response = api_client.post("/mercadopago/subscription-create", json={"planId": "p"})
    assert response.status_code == 422


def test_upgrade_through_both_phases(db, api_client, mp, dispatcher, user, plan, plan_factory, subscription_factory):
    premium = plan_factory(name="Premium", price=2500.0, mercadopago_plan_id="2c938084plan0002")
    old = subscription_factory(user, plan, status="active", mercadopago_subscription_id="pre-old")

    phase_one = create(api_client, premium, user, isUpgrade=True, existingSubscriptionId=old.id, payerEmail=None)
    assert phase_one.status_code == 200
    created = phase_one.json()
    assert created["upgradeAttemptId"]
    db.refresh(old)
    assert old.status == "active"

    mp.authorize(created["subscriptionId"])
    phase_two = api_client.post("/mercadopago/change-plan", json={
        "userId": user.id,
        "oldSubscriptionId": old.id,
        "newSubscriptionId": created["subscriptionId"],
        "upgradeAttemptId": created["upgradeAttemptId"],
    })

    assert phase_two.status_code == 200
    db.refresh(old)
    assert old.status == "cancelled"
    assert db.get(Subscription, created["localSubscriptionId"]).status == "active"
    assert dispatcher.recomputed == [user.id, user.id]

    attempts = api_client.get("/mercadopago/upgrade-attempts", params={"userId": user.id}).json()["attempts"]
    assert [(a["phase"], a["outcome"]) for a in attempts] == [("completed", "succeeded")]


def test_partial_failure_returns_502(api_client, mp, user, plan, plan_factory, subscription_factory):
    premium = plan_factory(name="Premium", price=2500.0, mercadopago_plan_id="2c938084plan0002")
    old = subscription_factory(user, plan, status="active", mercadopago_subscription_id="pre-old")
    mp.fail_cancel = True

    response = api_client.post("/mercadopago/upgrade", json={
        "userId": user.id,
        "planId": premium.id,
        "cardTokenId": "tok-2",
        "existingSubscriptionId": old.id,
    })

    assert response.status_code == 502
    body = response.json()
    assert body["error"] == "upgrade_partial_failure"
    partial = api_client.get("/mercadopago/upgrade-attempts", params={"outcome": "partial_failure"}).json()
    assert [a["id"] for a in partial["attempts"]] == [body["upgradeAttemptId"]]


def test_check_subscription_status(api_client, mp, user, plan, subscription_factory):
    subscription_factory(user, plan, mercadopago_subscription_id="pre1")
    mp.preapprovals["pre1"] = {"id": "pre1", "status": "pending"}

    response = api_client.get("/mercadopago/check-subscription-status", params={"subscriptionId": "pre1"})

    assert response.status_code == 200
    assert response.json()["retryAfterSeconds"] > 0

    by_user = api_client.get("/mercadopago/check-subscription-status", params={"userId": user.id})
    assert by_user.json()["results"][0]["mercadoPagoId"] == "pre1"

    assert api_client.get("/mercadopago/check-subscription-status").status_code == 400


def test_unsubscribe_endpoint(db, api_client, mp, user, plan, subscription_factory):
    subscription = subscription_factory(user, plan, status="active", mercadopago_subscription_id="pre1")

    response = api_client.post("/mercadopago/unsubscribe", json={"userId": user.id, "subscriptionId": subscription.id})

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


def test_unsubscribe_paused_subscription_is_rejected(db, api_client, mp, user, plan, subscription_factory):
    subscription = subscription_factory(user, plan, status="paused", mercadopago_subscription_id="pre1")

    response = api_client.post("/mercadopago/unsubscribe", json={"userId": user.id, "subscriptionId": subscription.id})

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"
    assert response.json()["status"] == "paused"
    assert mp.calls_named("cancel_preapproval") == []


def test_entitlements_endpoint(api_client, user, plan, subscription_factory):
    subscription_factory(user, plan, status="active")

    response = api_client.get(f"/users/{user.id}/entitlements")

    assert response.status_code == 200
    assert response.json()["isPublisher"] is True
    assert api_client.get("/users/missing/entitlements").status_code == 404


def test_openapi_documents_response_schemas(api_client):
    schema = api_client.get("/openapi.json").json()

    components = schema["components"]["schemas"]
    for name in ("BillingErrorResponse", "VerificationResponse", "WebhookAck", "SyncPlanResponse"):
        assert name in components

    unsubscribe_responses = schema["paths"]["/mercadopago/unsubscribe"]["post"]["responses"]
    assert unsubscribe_responses["409"]["content"]["application/json"]["schema"]["$ref"].endswith("/BillingErrorResponse")
    webhook_ok = schema["paths"]["/mercadopago/webhook"]["post"]["responses"]["200"]
    assert webhook_ok["content"]["application/json"]["schema"]["$ref"].endswith("/WebhookAck")
