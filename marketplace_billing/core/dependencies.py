"""
FastAPI dependencies for the billing routes.
"""
from functools import lru_cache
from typing import Iterator

from fastapi import Depends
from sqlalchemy.orm import Session

from marketplace_billing.core.credentials import CredentialSet
from marketplace_billing.db.session import get_db
from marketplace_billing.services.mercadopago_client import MercadoPagoClient
from marketplace_billing.services.reconciliation_engine import ReconciliationEngine
from marketplace_billing.services.side_effects import SideEffectDispatcher, entitlement_cache


@lru_cache()
def get_credentials() -> CredentialSet:
    """Platform credentials, read from the environment once per process."""
    return CredentialSet.from_config()


def get_mercadopago_client() -> Iterator[MercadoPagoClient]:
    client = MercadoPagoClient()
    try:
        yield client
    finally:
        client.close()


def get_dispatcher(db: Session = Depends(get_db)) -> SideEffectDispatcher:
    return SideEffectDispatcher(db, entitlement_cache)


def get_engine(
    db: Session = Depends(get_db),
    client: MercadoPagoClient = Depends(get_mercadopago_client),
    credentials: CredentialSet = Depends(get_credentials),
    dispatcher: SideEffectDispatcher = Depends(get_dispatcher),
) -> ReconciliationEngine:
    return ReconciliationEngine(db, client, credentials, dispatcher=dispatcher)
