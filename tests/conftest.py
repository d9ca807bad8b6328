"""
Shared fixtures: in-memory SQLite database, a fake MercadoPago API and a
dispatcher that records side-effect calls.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import marketplace_billing.db.models  # noqa: F401
from marketplace_billing.core.credentials import CredentialSet
from marketplace_billing.core.dependencies import (
    get_credentials,
    get_dispatcher,
    get_mercadopago_client,
)
from marketplace_billing.db.base import Base
from marketplace_billing.db.models.booking import Booking
from marketplace_billing.db.models.plan import Plan
from marketplace_billing.db.models.subscription import Subscription
from marketplace_billing.db.models.user import User
from marketplace_billing.db.session import get_db
from marketplace_billing.main import app
from marketplace_billing.services import external_reference
from marketplace_billing.services.mercadopago_client import MercadoPagoError
from marketplace_billing.services.reconciliation_engine import ReconciliationEngine
from marketplace_billing.services.side_effects import EntitlementCache, SideEffectDispatcher


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

SUBSCRIPTIONS_TOKEN = "APP_USR-subscriptions"
MARKETPLACE_TOKEN = "APP_USR-marketplace"


class FakeMercadoPago:
    """In-memory stand-in for ``MercadoPagoClient``."""

    def __init__(self):
        self.payments = {}
        self.preapprovals = {}
        self.preapproval_plans = {}
        # object id -> the only token allowed to read it
        self.payment_tokens = {}
        self.calls = []
        self.fail_create = False
        self.fail_cancel = False
        self.fail_reads = False
        self.fail_plan_create = False
        self._sequence = 0

    def _next_id(self) -> str:
        self._sequence += 1
        return f"2c9380848e{self._sequence:06d}"

    def get_payment(self, payment_id, access_token):
        payment_id = str(payment_id)
        self.calls.append(("get_payment", payment_id, access_token))
        if self.fail_reads:
            raise MercadoPagoError("MercadoPago request timed out")
        required = self.payment_tokens.get(payment_id)
        if required and required != access_token:
            raise MercadoPagoError("MercadoPago API error 401", status_code=401)
        if payment_id not in self.payments:
            raise MercadoPagoError("MercadoPago API error 404", status_code=404)
        return dict(self.payments[payment_id])

    def get_preapproval(self, preapproval_id, access_token):
        preapproval_id = str(preapproval_id)
        self.calls.append(("get_preapproval", preapproval_id, access_token))
        if self.fail_reads:
            raise MercadoPagoError("MercadoPago request timed out")
        if preapproval_id not in self.preapprovals:
            raise MercadoPagoError("MercadoPago API error 404", status_code=404)
        return dict(self.preapprovals[preapproval_id])

    def create_preapproval(self, body, access_token):
        self.calls.append(("create_preapproval", body, access_token))
        if self.fail_create:
            raise MercadoPagoError("MercadoPago API error 400: invalid card token", status_code=400)
        preapproval_id = self._next_id()
        preapproval = {
            "id": preapproval_id,
            "status": "pending",
            "init_point": f"https://www.mercadopago.com.ar/subscriptions/checkout?preapproval_id={preapproval_id}",
            "external_reference": body["external_reference"],
            "payer_email": body["payer_email"],
            "preapproval_plan_id": body["preapproval_plan_id"],
            "auto_recurring": body["auto_recurring"],
        }
        self.preapprovals[preapproval_id] = preapproval
        return dict(preapproval)

    def cancel_preapproval(self, preapproval_id, access_token):
        preapproval_id = str(preapproval_id)
        self.calls.append(("cancel_preapproval", preapproval_id, access_token))
        if self.fail_cancel:
            raise MercadoPagoError("MercadoPago request timed out: PUT /preapproval")
        preapproval = self.preapprovals.setdefault(preapproval_id, {"id": preapproval_id})
        preapproval["status"] = "cancelled"
        return dict(preapproval)

    def create_preapproval_plan(self, body, access_token):
        self.calls.append(("create_preapproval_plan", body, access_token))
        if self.fail_plan_create:
            raise MercadoPagoError("MercadoPago API error 400: invalid auto_recurring", status_code=400)
        plan_id = f"2c938084sync{len(self.preapproval_plans) + 1:04d}"
        self.preapproval_plans[plan_id] = dict(body, id=plan_id, status="active")
        return dict(self.preapproval_plans[plan_id])

    def get_preapproval_plan(self, preapproval_plan_id, access_token):
        self.calls.append(("get_preapproval_plan", preapproval_plan_id, access_token))
        if preapproval_plan_id not in self.preapproval_plans:
            raise MercadoPagoError("MercadoPago API error 404", status_code=404)
        return dict(self.preapproval_plans[preapproval_plan_id])

    def update_preapproval_plan(self, preapproval_plan_id, body, access_token):
        self.calls.append(("update_preapproval_plan", preapproval_plan_id, access_token))
        if preapproval_plan_id not in self.preapproval_plans:
            raise MercadoPagoError("MercadoPago API error 404", status_code=404)
        self.preapproval_plans[preapproval_plan_id].update(body)
        return dict(self.preapproval_plans[preapproval_plan_id])

    def close(self):
        pass

    # -- helpers for tests --------------------------------------------------

    def authorize(self, preapproval_id, card_id="9876543210"):
        self.preapprovals[preapproval_id]["status"] = "authorized"
        self.preapprovals[preapproval_id]["card_id"] = card_id

    def calls_named(self, name):
        return [call for call in self.calls if call[0] == name]


class RecordingDispatcher(SideEffectDispatcher):
    """Real dispatcher that also records every call."""

    def __init__(self, db, cache=None):
        super().__init__(db, cache or EntitlementCache())
        self.invalidated = []
        self.recomputed = []

    def invalidate_user_cache(self, user_id):
        self.invalidated.append(user_id)
        super().invalidate_user_cache(user_id)

    def recompute_roles_and_entitlements(self, user_id):
        self.recomputed.append(user_id)
        return super().recompute_roles_and_entitlements(user_id)


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def credentials():
    return CredentialSet(
        subscriptions_access_token=SUBSCRIPTIONS_TOKEN,
        subscriptions_public_key="APP_USR-public",
        marketplace_access_token=MARKETPLACE_TOKEN,
    )


@pytest.fixture
def mp():
    return FakeMercadoPago()


@pytest.fixture
def dispatcher(db):
    return RecordingDispatcher(db)


@pytest.fixture
def engine(db, mp, credentials, dispatcher):
    return ReconciliationEngine(db, mp, credentials, dispatcher=dispatcher)


@pytest.fixture
def user(db):
    user = User(name="Ana Publisher", email="ana@example.com", roles=["client"])
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_plan(
    db, name="Basic", price=1000.0, mercadopago_plan_id="2c938084plan0001", max_posts=5, max_bookings=20,
    billing_cycle="monthly", is_active=True,
):
    plan = Plan(
        name=name,
        price=price,
        currency="ARS",
        billing_cycle=billing_cycle,
        is_active=is_active,
        mercadopago_plan_id=mercadopago_plan_id,
        max_posts=max_posts,
        max_bookings=max_bookings,
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


def make_subscription(db, user, plan, status="pending", mercadopago_subscription_id=None, **extra):
    reference = external_reference.encode(plan.id, user.id)
    details = {"externalReference": reference}
    details.update(extra.pop("details", {}))
    subscription = Subscription(
        user_id=user.id,
        plan_id=plan.id,
        plan_name=plan.name,
        status=status,
        mercadopago_subscription_id=mercadopago_subscription_id,
        subscription_email=extra.pop("subscription_email", user.email),
        amount=plan.price,
        currency=plan.currency,
        billing_cycle=plan.billing_cycle,
        details=details,
        **extra,
    )
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    return subscription


def make_booking(db, user, status="confirmed", total_amount=2500.0):
    booking = Booking(user_id=user.id, status=status, total_amount=total_amount)
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


@pytest.fixture
def plan(db):
    return make_plan(db)


@pytest.fixture
def api_client(db, mp, credentials, dispatcher):
    """TestClient wired to the test database and the fake MercadoPago API."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mercadopago_client] = lambda: mp
    app.dependency_overrides[get_credentials] = lambda: credentials
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def plan_factory(db):
    return lambda **fields: make_plan(db, **fields)


@pytest.fixture
def subscription_factory(db):
    return lambda user, plan, **fields: make_subscription(db, user, plan, **fields)


@pytest.fixture
def booking_factory(db):
    return lambda user, **fields: make_booking(db, user, **fields)
