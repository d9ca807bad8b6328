"""
Tests for publishing plans to MercadoPago as preapproval plans.
"""
import pytest

from marketplace_billing.core.credentials import CredentialSet
from marketplace_billing.services.errors import ConfigurationError, NotFound, ProviderUnavailable
from marketplace_billing.services.plan_sync import PlanSyncService

from conftest import SUBSCRIPTIONS_TOKEN


@pytest.fixture
def plan_sync(db, mp, credentials):
    return PlanSyncService(db, mp, credentials)


def test_unsynced_plan_is_created_and_linked(db, plan_sync, mp, plan_factory):
    plan = plan_factory(name="Pro", price=2500.0, mercadopago_plan_id=None)

    result = plan_sync.sync_plan(plan.id)

    db.refresh(plan)
    (_, body, token), = mp.calls_named("create_preapproval_plan")
    assert token == SUBSCRIPTIONS_TOKEN
    assert body["reason"] == "Subscription: Pro"
    assert body["external_reference"] == plan.id
    assert body["back_url"].endswith("/subscription/complete")
    assert body["auto_recurring"] == {
        "frequency": 1,
        "frequency_type": "months",
        "transaction_amount": 2500.0,
        "currency_id": "ARS",
    }
    assert result["created"] is True
    assert plan.mercadopago_plan_id == result["mercadoPagoPlanId"]
    assert plan.is_synced


def test_linked_plan_is_updated_in_place(db, plan_sync, mp, plan):
    mp.preapproval_plans[plan.mercadopago_plan_id] = {"id": plan.mercadopago_plan_id, "status": "active"}

    result = plan_sync.sync_plan(plan.id)

    db.refresh(plan)
    assert result == {"planId": plan.id, "mercadoPagoPlanId": "2c938084plan0001", "created": False}
    assert plan.mercadopago_plan_id == "2c938084plan0001"
    assert mp.calls_named("create_preapproval_plan") == []
    assert mp.preapproval_plans["2c938084plan0001"]["reason"] == "Subscription: Basic"


def test_rejected_update_falls_back_to_create(db, plan_sync, mp, plan):
    # Linked id no longer exists at MercadoPago
    result = plan_sync.sync_plan(plan.id)

    db.refresh(plan)
    assert len(mp.calls_named("update_preapproval_plan")) == 1
    assert len(mp.calls_named("create_preapproval_plan")) == 1
    assert result["created"] is True
    assert plan.mercadopago_plan_id == result["mercadoPagoPlanId"] != "2c938084plan0001"


def test_billing_cycle_maps_to_frequency(plan_sync, mp, plan_factory):
    yearly = plan_factory(name="Yearly", mercadopago_plan_id=None, billing_cycle="yearly")
    weekly = plan_factory(name="Weekly", mercadopago_plan_id=None, billing_cycle="weekly")

    plan_sync.sync_plan(yearly.id)
    plan_sync.sync_plan(weekly.id)

    yearly_body, weekly_body = [call[1] for call in mp.calls_named("create_preapproval_plan")]
    assert (yearly_body["auto_recurring"]["frequency"], yearly_body["auto_recurring"]["frequency_type"]) == (12, "months")
    assert (weekly_body["auto_recurring"]["frequency"], weekly_body["auto_recurring"]["frequency_type"]) == (7, "days")


def test_create_failure_leaves_plan_unlinked(db, plan_sync, mp, plan_factory):
    plan = plan_factory(mercadopago_plan_id=None)
    mp.fail_plan_create = True

    with pytest.raises(ProviderUnavailable):
        plan_sync.sync_plan(plan.id)

    db.refresh(plan)
    assert plan.mercadopago_plan_id is None


def test_sync_requires_credentials_and_known_plan(db, plan_sync, mp, plan):
    with pytest.raises(NotFound):
        plan_sync.sync_plan("missing-plan")

    with pytest.raises(ConfigurationError):
        PlanSyncService(db, mp, CredentialSet()).sync_plan(plan.id)
    assert mp.calls == []


def test_sync_all_reports_per_plan_failures(plan_sync, mp, plan, plan_factory):
    mp.preapproval_plans[plan.mercadopago_plan_id] = {"id": plan.mercadopago_plan_id, "status": "active"}
    unsynced = plan_factory(name="Pro", mercadopago_plan_id=None)
    plan_factory(name="Retired", mercadopago_plan_id=None, is_active=False)
    mp.fail_plan_create = True

    result = plan_sync.sync_all()

    assert result["success"] == 1
    assert result["errors"] == 1
    failed = [entry for entry in result["results"] if not entry["success"]]
    assert [entry["planId"] for entry in failed] == [unsynced.id]
    assert len(result["results"]) == 2


def test_list_plans_reports_remote_status(plan_sync, mp, plan, plan_factory):
    mp.preapproval_plans[plan.mercadopago_plan_id] = {"id": plan.mercadopago_plan_id, "status": "active"}
    unsynced = plan_factory(name="Pro", mercadopago_plan_id=None)
    stale = plan_factory(name="Stale", mercadopago_plan_id="2c938084gone0001")

    statuses = {entry["planId"]: entry["mercadoPagoStatus"] for entry in plan_sync.list_plans()}

    assert statuses == {plan.id: "active", unsynced.id: "not_synced", stale.id: "not_found"}


def test_plan_endpoints(db, api_client, mp, plan, plan_factory):
    unsynced = plan_factory(name="Pro", mercadopago_plan_id=None)

    synced = api_client.post("/mercadopago/sync-plan", json={"planId": unsynced.id})
    missing = api_client.post("/mercadopago/sync-plan", json={"planId": "missing-plan"})
    all_plans = api_client.post("/mercadopago/sync-plans")
    listed = api_client.get("/mercadopago/plans")

    assert synced.status_code == 200
    assert synced.json()["created"] is True
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"
    assert all_plans.status_code == 200
    assert all_plans.json()["errors"] == 0
    assert {entry["planId"] for entry in listed.json()["plans"]} == {plan.id, unsynced.id}
