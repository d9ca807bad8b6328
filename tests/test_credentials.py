"""
Tests for candidate credential resolution.
"""
import pytest

from marketplace_billing.core.credentials import (
    AllCandidatesFailed,
    CredentialResolver,
    CredentialSet,
    first_success,
)
from marketplace_billing.db.models.mercadopago_account import MercadoPagoAccount


def test_first_success_returns_first_working_candidate():
    def attempt(token):
        if token != "good":
            raise RuntimeError(f"rejected {token}")
        return {"token": token}

    result, index = first_success(["bad", "good", "never-tried"], attempt)

    assert result == {"token": "good"}
    assert index == 1


def test_first_success_collects_all_errors():
    def attempt(token):
        raise RuntimeError(f"rejected {token}")

    with pytest.raises(AllCandidatesFailed) as exc_info:
        first_success(["a", "b"], attempt)

    assert exc_info.value.errors == [(0, "rejected a"), (1, "rejected b")]


def test_first_success_with_no_candidates():
    with pytest.raises(AllCandidatesFailed):
        first_success([], lambda token: token)


def test_candidates_order_publisher_marketplace_subscriptions(db, user, credentials):
    db.add(MercadoPagoAccount(user_id=user.id, mercadopago_user_id="777", access_token="APP_USR-publisher"))
    db.commit()
    resolver = CredentialResolver(credentials, db)

    candidates = resolver.candidates({"type": "payment", "user_id": 777})

    assert candidates == ["APP_USR-publisher", "APP_USR-marketplace", "APP_USR-subscriptions"]


def test_candidates_skip_unknown_publisher_and_unset_tokens(db):
    credentials = CredentialSet(subscriptions_access_token="SAME", marketplace_access_token="SAME")
    resolver = CredentialResolver(credentials, db)

    assert resolver.candidates({"type": "payment", "user_id": "999"}) == ["SAME"]
    assert CredentialResolver(CredentialSet(), db).candidates({}) == []


def test_inactive_publisher_account_is_ignored(db, user, credentials):
    db.add(MercadoPagoAccount(
        user_id=user.id, mercadopago_user_id="777", access_token="APP_USR-old", is_active=False,
    ))
    db.commit()

    assert CredentialResolver(credentials, db).publisher_token("777") is None


def test_repr_hides_tokens(credentials):
    text = repr(credentials)
    assert "APP_USR" not in text
    assert "subscriptions=set" in text
